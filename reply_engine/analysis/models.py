"""
Data models for the signal analyzers.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class LanguageCode(Enum):
    """Languages the engine can detect, reply in and translate to."""
    ZH_TW = "zh-TW"
    ZH_CN = "zh-CN"
    EN = "en"
    JA = "ja"
    KO = "ko"
    TH = "th"
    VI = "vi"
    FR = "fr"
    ES = "es"
    DE = "de"
    UNSPECIFIED = "unspecified"

    @classmethod
    def parse(cls, value: Any) -> "LanguageCode":
        """
        Parse a loosely formatted language code.

        Unknown or empty codes map to UNSPECIFIED instead of raising.
        """
        if isinstance(value, LanguageCode):
            return value
        if not value or not isinstance(value, str):
            return cls.UNSPECIFIED

        normalized = value.strip().replace("_", "-").lower()
        aliases = {
            "zh": cls.ZH_CN,
            "zh-cn": cls.ZH_CN,
            "zh-hans": cls.ZH_CN,
            "zh-sg": cls.ZH_CN,
            "zh-tw": cls.ZH_TW,
            "zh-hant": cls.ZH_TW,
            "zh-hk": cls.ZH_TW,
        }
        if normalized in aliases:
            return aliases[normalized]

        base = normalized.split("-")[0]
        for code in cls:
            if code is not cls.UNSPECIFIED and code.value.lower() == base:
                return code
        return cls.UNSPECIFIED

    @property
    def is_known(self) -> bool:
        return self is not LanguageCode.UNSPECIFIED


class SentimentType(Enum):
    """Closed set of sentiment categories."""
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    VERY_NEGATIVE = "very_negative"

    @classmethod
    def parse(cls, value: Any) -> "SentimentType":
        normalized = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
        for sentiment in cls:
            if sentiment.value == normalized:
                return sentiment
        if "very" in normalized and "neg" in normalized:
            return cls.VERY_NEGATIVE
        if "neg" in normalized:
            return cls.NEGATIVE
        if "pos" in normalized:
            return cls.POSITIVE
        return cls.NEUTRAL


class IntentType(Enum):
    """Customer intents the reply pipeline adapts to."""
    QUESTION = "question"
    HOW_TO = "how_to"
    COMPLAINT = "complaint"
    PURCHASE = "purchase"
    RETURN = "return"
    EXCHANGE = "exchange"
    SHIPPING = "shipping"
    PRODUCT_INFO = "product_info"
    PRICE_INFO = "price_info"
    GREETING = "greeting"
    FAREWELL = "farewell"
    THANKS = "thanks"
    OTHER = "other"

    @classmethod
    def parse(cls, value: Any) -> "IntentType":
        normalized = str(value or "").strip().lower().replace(" ", "_").replace("-", "_")
        for intent in cls:
            if intent.value == normalized:
                return intent
        return cls.OTHER


@dataclass(frozen=True)
class Entity:
    """An entity extracted from text with its character span."""
    type: str
    value: str
    position: Tuple[int, int]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.type, "value": self.value, "position": list(self.position)}


@dataclass(frozen=True)
class LanguageResult:
    """Result of language detection."""
    language: LanguageCode
    confidence: float
    degraded: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"language": self.language.value, "confidence": self.confidence, "degraded": self.degraded}


@dataclass(frozen=True)
class SentimentResult:
    """Result of sentiment analysis."""
    sentiment: SentimentType
    score: float
    explanation: str
    degraded: bool = False

    @property
    def label(self) -> str:
        return self.sentiment.value

    @property
    def confidence(self) -> float:
        return self.score

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment.value,
            "score": self.score,
            "explanation": self.explanation,
            "degraded": self.degraded,
        }


@dataclass(frozen=True)
class IntentResult:
    """Result of intent recognition."""
    intent: IntentType
    confidence: float
    entities: Tuple[Entity, ...] = field(default_factory=tuple)
    degraded: bool = False

    @property
    def label(self) -> str:
        return self.intent.value

    def to_dict(self) -> Dict[str, Any]:
        return {
            "intent": self.intent.value,
            "confidence": self.confidence,
            "entities": [entity.to_dict() for entity in self.entities],
            "degraded": self.degraded,
        }


def clamp_confidence(value: Any, default: float = 0.5) -> float:
    """Coerce a model-reported score into [0, 1]."""
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    if number != number:  # NaN
        return default
    return max(0.0, min(1.0, number))


def validate_entities(text: str, raw_entities: Optional[List[Dict[str, Any]]]) -> Tuple[Entity, ...]:
    """
    Build entities from raw model output, dropping any whose span is out of bounds.

    A span is valid when 0 <= start < end <= len(text).
    """
    entities = []
    for raw in raw_entities or []:
        if not isinstance(raw, dict):
            continue
        position = raw.get("position")
        if position is None and "start" in raw and "end" in raw:
            position = (raw.get("start"), raw.get("end"))
        try:
            start, end = int(position[0]), int(position[1])
        except (TypeError, ValueError, IndexError, KeyError):
            continue
        if not 0 <= start < end <= len(text):
            continue
        entities.append(Entity(
            type=str(raw.get("type", "unknown")),
            value=str(raw.get("value", text[start:end])),
            position=(start, end),
        ))
    return tuple(entities)
