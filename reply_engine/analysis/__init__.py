"""
Language, sentiment and intent analysis plus translation.
"""

from .models import (
    Entity,
    IntentResult,
    IntentType,
    LanguageCode,
    LanguageResult,
    SentimentResult,
    SentimentType,
    validate_entities,
)
from .language_detector import LanguageDetector
from .sentiment_analyzer import SentimentAnalyzer
from .intent_recognizer import IntentRecognizer
from .translator import Translator, LANGUAGE_NAMES
from .rules import ScriptLanguageDetector, LexiconSentimentClassifier, PatternIntentClassifier

__all__ = [
    "Entity", "IntentResult", "IntentType", "LanguageCode", "LanguageResult",
    "SentimentResult", "SentimentType", "validate_entities",
    "LanguageDetector", "SentimentAnalyzer", "IntentRecognizer", "Translator", "LANGUAGE_NAMES",
    "ScriptLanguageDetector", "LexiconSentimentClassifier", "PatternIntentClassifier",
]
