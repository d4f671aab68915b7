"""
Rule-based classifiers used when the external analysis API is unavailable.
"""

import logging
import re
from typing import Dict, List, Tuple

from .models import Entity, IntentType, LanguageCode, SentimentType

logger = logging.getLogger(__name__)


class ScriptLanguageDetector:
    """Language guess from Unicode script ranges and stopwords."""

    def __init__(self):
        self.script_ranges = [
            (LanguageCode.JA, re.compile(r"[぀-ヿ]")),
            (LanguageCode.KO, re.compile(r"[가-힯ᄀ-ᇿ]")),
            (LanguageCode.TH, re.compile(r"[฀-๿]")),
        ]
        self.han = re.compile(r"[一-鿿]")
        # Characters that only occur in one of the two Chinese scripts
        self.traditional_markers = set("們個這來說會與為對時還點發電視樣體麼後關")
        self.simplified_markers = set("们个这来说会与为对时还点发电视样体么后关")
        self.vietnamese = re.compile(r"[ăâđêôơưạảấầẩẫậắằẳẵặẹẻẽếềểễệỉịọỏốồổỗộớờởỡợụủứừửữựỳỵỷỹ]", re.IGNORECASE)
        self.stopwords = {
            LanguageCode.EN: {"the", "is", "my", "and", "how", "what", "you", "to", "do", "i", "can", "please"},
            LanguageCode.FR: {"le", "la", "les", "est", "et", "je", "vous", "mon", "comment", "pour", "une", "bonjour"},
            LanguageCode.ES: {"el", "la", "los", "es", "y", "yo", "usted", "mi", "como", "cómo", "para", "una", "hola"},
            LanguageCode.DE: {"der", "die", "das", "ist", "und", "ich", "sie", "mein", "wie", "für", "eine", "hallo"},
        }

    def detect(self, text: str) -> Tuple[LanguageCode, float]:
        """Return the best guess and a deliberately modest confidence."""
        if not text or not text.strip():
            return LanguageCode.UNSPECIFIED, 0.0

        for language, pattern in self.script_ranges:
            if pattern.search(text):
                return language, 0.7

        if self.han.search(text):
            traditional = sum(1 for ch in text if ch in self.traditional_markers)
            simplified = sum(1 for ch in text if ch in self.simplified_markers)
            if simplified > traditional:
                return LanguageCode.ZH_CN, 0.65
            return LanguageCode.ZH_TW, 0.6 if traditional else 0.5

        if self.vietnamese.search(text):
            return LanguageCode.VI, 0.65

        words = re.findall(r"[a-zà-ÿ]+", text.lower())
        if not words:
            return LanguageCode.UNSPECIFIED, 0.0

        scores = {
            language: sum(1 for word in words if word in vocabulary)
            for language, vocabulary in self.stopwords.items()
        }
        best, hits = max(scores.items(), key=lambda x: x[1])
        if hits == 0:
            return LanguageCode.EN, 0.4
        return best, min(0.65, 0.4 + 0.05 * hits)


class LexiconSentimentClassifier:
    """Keyword-weighted sentiment scoring."""

    def __init__(self):
        self.positive_words = [
            "thank", "thanks", "great", "love", "awesome", "excellent", "happy",
            "perfect", "appreciate", "wonderful", "good", "nice", "helpful",
        ]
        self.negative_words = [
            "problem", "issue", "broken", "wrong", "bad", "slow", "disappointed",
            "annoyed", "frustrated", "unhappy", "late", "missing", "error", "can't", "cannot",
        ]
        self.very_negative_words = [
            "terrible", "horrible", "worst", "furious", "unacceptable", "scam",
            "ridiculous", "angry", "disgusted", "lawyer", "refund now", "never again",
        ]

    def classify(self, text: str) -> Tuple[SentimentType, float, str]:
        text_lower = text.lower()

        positive = [w for w in self.positive_words if w in text_lower]
        negative = [w for w in self.negative_words if w in text_lower]
        very_negative = [w for w in self.very_negative_words if w in text_lower]
        exclamations = text.count("!")

        if very_negative or (len(negative) >= 2 and exclamations >= 2):
            matched = very_negative or negative
            return SentimentType.VERY_NEGATIVE, 0.6, f"Strong negative cues: {', '.join(matched)}"
        if len(negative) > len(positive):
            return SentimentType.NEGATIVE, 0.55, f"Negative cues: {', '.join(negative)}"
        if len(positive) > len(negative):
            return SentimentType.POSITIVE, 0.55, f"Positive cues: {', '.join(positive)}"
        return SentimentType.NEUTRAL, 0.5, "No clear sentiment cues"


class PatternIntentClassifier:
    """Pattern and keyword intent scoring with regex entity extraction."""

    def __init__(self):
        self.intent_patterns: Dict[IntentType, Dict[str, List[str]]] = {
            IntentType.HOW_TO: {
                "patterns": [r"how (do|can|should) i (.+)", r"how to (.+)", r"steps to (.+)", r"where (do|can) i (.+)"],
                "keywords": ["reset", "set up", "setup", "configure", "change", "enable", "install", "steps"],
            },
            IntentType.COMPLAINT: {
                "patterns": [r"(not|never) (working|arrived|received)", r"i want to complain", r"this is (unacceptable|ridiculous)"],
                "keywords": ["complain", "complaint", "broken", "terrible", "worst", "disappointed", "unacceptable"],
            },
            IntentType.RETURN: {
                "patterns": [r"(return|refund) (my|the|this) (.+)", r"can i (return|get a refund)"],
                "keywords": ["return", "refund", "send back", "money back"],
            },
            IntentType.EXCHANGE: {
                "patterns": [r"exchange (my|the|this|it) (.+)", r"swap (.+) for (.+)"],
                "keywords": ["exchange", "swap", "different size", "replace"],
            },
            IntentType.SHIPPING: {
                "patterns": [r"where is my (order|package|parcel)", r"when will (.+) (arrive|ship)"],
                "keywords": ["shipping", "delivery", "tracking", "package", "parcel", "courier", "arrive"],
            },
            IntentType.PRICE_INFO: {
                "patterns": [r"how much (is|does|are) (.+)", r"what is the price (.+)"],
                "keywords": ["price", "cost", "discount", "coupon", "cheaper", "fee"],
            },
            IntentType.PURCHASE: {
                "patterns": [r"i want to (buy|order|purchase) (.+)", r"can i (buy|order) (.+)"],
                "keywords": ["buy", "purchase", "order", "checkout", "in stock"],
            },
            IntentType.PRODUCT_INFO: {
                "patterns": [r"does (.+) (have|support|come with) (.+)", r"what are the (features|specs) (.+)"],
                "keywords": ["feature", "spec", "size", "color", "material", "compatible", "warranty"],
            },
            IntentType.GREETING: {
                "patterns": [r"^(hi|hello|hey|good (morning|afternoon|evening))\b"],
                "keywords": ["hello", "hi there", "good morning"],
            },
            IntentType.FAREWELL: {
                "patterns": [r"\b(bye|goodbye|see you)\b"],
                "keywords": ["bye", "goodbye", "see you"],
            },
            IntentType.THANKS: {
                "patterns": [r"^(thanks|thank you)\b"],
                "keywords": ["thank you", "thanks", "appreciate"],
            },
            IntentType.QUESTION: {
                "patterns": [r"\?\s*$", r"^(what|when|who|where|why|which|is|are|can|do|does) "],
                "keywords": ["question", "wondering", "could you tell"],
            },
        }

        self.entity_patterns = {
            "order_number": r"#?\b[A-Z]{2,4}-?\d{4,}\b|#\d{4,}\b",
            "email": r"\b[\w.+-]+@[\w-]+\.[\w.-]+\b",
            "price": r"[$€£¥]\s?\d+(?:[.,]\d{1,2})?",
            "date": r"\b\d{4}-\d{2}-\d{2}\b|\b\d{1,2}/\d{1,2}/\d{2,4}\b",
            "phone": r"\+?\d[\d\s-]{7,}\d",
        }

    def classify(self, text: str) -> Tuple[IntentType, float]:
        """Return the highest-scoring intent and its normalized score."""
        scores = self._calculate_intent_scores(text.lower().strip())
        if not scores:
            return IntentType.OTHER, 0.3

        intent, score = max(scores.items(), key=lambda x: x[1])
        total = sum(scores.values())
        return intent, round(min(0.65, score / total), 3)

    def _calculate_intent_scores(self, text: str) -> Dict[IntentType, float]:
        scores = {}
        for intent, config in self.intent_patterns.items():
            pattern_matches = sum(1 for pattern in config["patterns"] if re.search(pattern, text, re.IGNORECASE))
            keyword_matches = sum(1 for keyword in config["keywords"] if keyword in text)

            score = (pattern_matches * 0.7) + (keyword_matches * 0.3)
            # A trailing question mark alone is weak evidence
            if intent is IntentType.QUESTION:
                score *= 0.5
            if score > 0:
                scores[intent] = score
        return scores

    def extract_entities(self, text: str) -> Tuple[Entity, ...]:
        """Extract entities with exact character spans into the source text."""
        entities = []
        for entity_type, pattern in self.entity_patterns.items():
            for match in re.finditer(pattern, text):
                entities.append(Entity(type=entity_type, value=match.group(), position=(match.start(), match.end())))
        entities.sort(key=lambda e: e.position)
        return tuple(entities)
