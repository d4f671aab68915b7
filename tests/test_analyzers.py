"""
Tests for language, sentiment and intent analysis and translation.
"""

import pytest

from reply_engine.analysis import (
    IntentRecognizer,
    IntentType,
    LanguageCode,
    LanguageDetector,
    SentimentAnalyzer,
    SentimentType,
    Translator,
)
from reply_engine.analysis.models import validate_entities
from reply_engine.analysis.rules import PatternIntentClassifier, ScriptLanguageDetector
from reply_engine.errors import InvalidTargetLanguageError, UpstreamAnalysisError, ValidationError

from conftest import HAPPY_RESPONSES, scripted_llm


class TestLanguageDetector:
    """Test language detection."""

    @pytest.fixture
    def detector(self, happy_llm, fast_retry):
        return LanguageDetector({"language_confidence_threshold": 0.6}, happy_llm, fast_retry)

    @pytest.mark.asyncio
    async def test_detect(self, detector):
        result = await detector.analyze("How do I reset my password?")

        assert result.language is LanguageCode.EN
        assert result.confidence == 0.98
        assert not result.degraded
        assert detector.effective_language(result) is LanguageCode.EN

    @pytest.mark.asyncio
    async def test_low_confidence_is_unspecified(self, fast_retry):
        llm = scripted_llm({"Identify the language": {"language": "fr", "confidence": 0.3}})
        detector = LanguageDetector({}, llm, fast_retry)

        result = await detector.analyze("ok")

        assert result.language is LanguageCode.FR
        assert detector.effective_language(result) is LanguageCode.UNSPECIFIED

    @pytest.mark.asyncio
    async def test_unknown_code_maps_to_unspecified(self, fast_retry):
        llm = scripted_llm({"Identify the language": {"language": "klingon", "confidence": 0.9}})
        result = await LanguageDetector({}, llm, fast_retry).analyze("nuqneH")

        assert result.language is LanguageCode.UNSPECIFIED
        assert result.confidence == 0.0

    @pytest.mark.asyncio
    async def test_falls_back_to_rules_when_upstream_fails(self, fast_retry):
        """Test that an unavailable model degrades to script rules."""
        llm = scripted_llm({"Identify the language": ConnectionError("down")})
        result = await LanguageDetector({}, llm, fast_retry).analyze("How do I reset my password?")

        assert result.degraded
        assert result.language is LanguageCode.EN
        assert llm.generate.await_count == fast_retry.max_attempts

    @pytest.mark.asyncio
    async def test_upstream_error_without_rule_fallback(self, fast_retry):
        llm = scripted_llm({"Identify the language": "not json at all"})
        detector = LanguageDetector({"rule_fallback": False}, llm, fast_retry)

        with pytest.raises(UpstreamAnalysisError):
            await detector.analyze("Bonjour")

    @pytest.mark.asyncio
    async def test_empty_text(self, detector):
        with pytest.raises(ValidationError):
            await detector.analyze("  ")

    def test_script_rules(self):
        rules = ScriptLanguageDetector()

        assert rules.detect("パスワードを忘れました")[0] is LanguageCode.JA
        assert rules.detect("비밀번호를 잊었어요")[0] is LanguageCode.KO
        assert rules.detect("我们这个怎么办")[0] is LanguageCode.ZH_CN
        assert rules.detect("我們這個怎麼辦")[0] is LanguageCode.ZH_TW
        assert rules.detect("Comment je change mon mot de passe")[0] is LanguageCode.FR

    def test_parse_language_codes(self):
        assert LanguageCode.parse("zh_TW") is LanguageCode.ZH_TW
        assert LanguageCode.parse("zh-Hans") is LanguageCode.ZH_CN
        assert LanguageCode.parse("en-US") is LanguageCode.EN
        assert LanguageCode.parse("") is LanguageCode.UNSPECIFIED


class TestSentimentAnalyzer:
    """Test sentiment analysis."""

    @pytest.mark.asyncio
    async def test_analyze(self, happy_llm, fast_retry):
        result = await SentimentAnalyzer({}, happy_llm, fast_retry).analyze("How do I reset my password?")

        assert result.sentiment is SentimentType.NEUTRAL
        assert result.score == 0.9
        assert result.explanation

    @pytest.mark.asyncio
    async def test_score_is_clamped(self, fast_retry):
        llm = scripted_llm({"Analyze the sentiment": {"sentiment": "Very Negative", "score": 3, "explanation": ""}})
        result = await SentimentAnalyzer({}, llm, fast_retry).analyze("This is the worst service ever")

        assert result.sentiment is SentimentType.VERY_NEGATIVE
        assert result.score == 1.0
        assert result.explanation == "No explanation given"

    @pytest.mark.asyncio
    async def test_lexicon_fallback(self, fast_retry):
        llm = scripted_llm({"Analyze the sentiment": TimeoutError()})
        result = await SentimentAnalyzer({}, llm, fast_retry).analyze("This is terrible and unacceptable!")

        assert result.degraded
        assert result.sentiment is SentimentType.VERY_NEGATIVE


class TestIntentRecognizer:
    """Test intent recognition and entity extraction."""

    @pytest.mark.asyncio
    async def test_out_of_bounds_spans_are_dropped(self, fast_retry):
        text = "Where is order #12345?"
        llm = scripted_llm({
            "Identify the intent": {
                "intent": "shipping",
                "confidence": 0.8,
                "entities": [
                    {"type": "order_number", "value": "#12345", "position": [15, 21]},
                    {"type": "order_number", "value": "#99999", "position": [40, 46]},
                    {"type": "date", "value": "x", "position": [5, 5]},
                ],
            }
        })

        result = await IntentRecognizer({}, llm, fast_retry).analyze(text)

        assert result.intent is IntentType.SHIPPING
        assert len(result.entities) == 1
        start, end = result.entities[0].position
        assert text[start:end] == "#12345"

    @pytest.mark.asyncio
    async def test_pattern_fallback(self, fast_retry):
        text = "I want to return my jacket, order ABC-12345"
        llm = scripted_llm({"Identify the intent": ConnectionError("down")})

        result = await IntentRecognizer({}, llm, fast_retry).analyze(text)

        assert result.degraded
        assert result.intent is IntentType.RETURN
        assert all(0 <= e.position[0] < e.position[1] <= len(text) for e in result.entities)
        assert [e.value for e in result.entities if e.type == "order_number"] == ["ABC-12345"]

    def test_unknown_intent_is_other(self):
        assert IntentType.parse("escalate") is IntentType.OTHER

    def test_validate_entities_accepts_start_end(self):
        entities = validate_entities("hello world", [{"type": "word", "start": 6, "end": 11}])

        assert entities[0].value == "world"

    def test_pattern_classifier_how_to(self):
        intent, confidence = PatternIntentClassifier().classify("How do I reset my password?")

        assert intent is IntentType.HOW_TO
        assert 0.0 < confidence <= 0.65


class TestTranslator:
    """Test translation."""

    @pytest.fixture
    def translator(self, happy_llm, fast_retry):
        return Translator({"knowledge_base_language": "en", "supported_targets": ["en", "fr", "zh-TW"]}, happy_llm, fast_retry)

    @pytest.mark.asyncio
    async def test_translate(self, translator):
        result = await translator.translate("Hello", "fr", "en")

        assert result == HAPPY_RESPONSES["Translate the following"]

    @pytest.mark.asyncio
    async def test_same_language_is_passthrough(self, translator, happy_llm):
        assert await translator.translate("Hello", "en", "en") == "Hello"
        happy_llm.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invalid_target(self, translator):
        with pytest.raises(InvalidTargetLanguageError):
            await translator.translate("Hello", "xx")
        with pytest.raises(InvalidTargetLanguageError):
            await translator.translate("Hello", "de")
        with pytest.raises(ValidationError):
            await translator.translate("Hello", None)

    @pytest.mark.asyncio
    async def test_empty_translation_is_an_upstream_error(self, fast_retry):
        llm = scripted_llm({"Translate the following": "   "})
        translator = Translator({}, llm, fast_retry)

        with pytest.raises(UpstreamAnalysisError):
            await translator.translate("Hello", "fr")
