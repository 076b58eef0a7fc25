"""Lexicon based sentiment scoring and escalation detection for chat messages."""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .config import SentimentSettings, get_sentiment_settings

logger = logging.getLogger(__name__)

NEGATIVE_SENTIMENT_REASON = "Negative sentiment detected"
ESCALATION_KEYWORD_REASON = "Escalation keyword detected"

_TOKEN_PATTERN = re.compile(r"[a-z0-9']+")


class SentimentLabel(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class SentimentLexicon:
    """Term weights, negators and escalation vocabulary loaded from config data."""

    terms: Mapping[str, int]
    negators: frozenset[str] = frozenset()
    escalation_keywords: Tuple[str, ...] = ()

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "SentimentLexicon":
        terms = {str(term).lower(): int(weight) for term, weight in (data.get("terms") or {}).items()}
        negators = frozenset(str(token).lower() for token in data.get("negators") or [])
        keywords = tuple(str(keyword).lower() for keyword in data.get("escalation_keywords") or [])
        return cls(terms=terms, negators=negators, escalation_keywords=keywords)


@lru_cache(maxsize=8)
def load_lexicon(path: str) -> SentimentLexicon:
    """Read and cache a JSON lexicon file."""

    raw = Path(path).read_text(encoding="utf-8")
    return SentimentLexicon.from_mapping(json.loads(raw))


@dataclass(frozen=True)
class SentimentResult:
    """Outcome of scoring one message."""

    sentiment: SentimentLabel
    score: float
    escalation_triggered: bool = False
    escalation_reason: Optional[str] = None
    raw_score: int = 0
    comparative: float = 0.0
    words: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()

    @classmethod
    def unknown(cls) -> "SentimentResult":
        return cls(sentiment=SentimentLabel.UNKNOWN, score=0.0)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "sentiment": self.sentiment.value,
            "score": self.score,
            "escalation_triggered": self.escalation_triggered,
            "escalation_reason": self.escalation_reason,
            "raw_score": self.raw_score,
            "comparative": self.comparative,
            "words": list(self.words),
            "keywords": list(self.keywords),
        }


class SentimentAnalyzer:
    """Deterministic sentiment scorer used on every inbound customer message.

    The raw score is the sum of matched term weights (a negator directly in
    front of a scored term flips its sign). It is divided by the configured
    normalizer and clamped to [-1, 1]. Escalation fires when the normalized
    score reaches the escalation threshold or when any escalation keyword
    appears as a case-insensitive substring; the sentiment reason wins when
    both apply.
    """

    def __init__(
        self,
        lexicon: SentimentLexicon | None = None,
        settings: SentimentSettings | None = None,
    ) -> None:
        self._settings = settings or get_sentiment_settings()
        self._lexicon = lexicon or load_lexicon(str(self._settings.lexicon_path))

    @property
    def settings(self) -> SentimentSettings:
        return self._settings

    def analyze(self, text: Any) -> SentimentResult:
        if not isinstance(text, str) or not text.strip():
            return SentimentResult.unknown()
        try:
            return self._score(text)
        except Exception:  # pragma: no cover
            logger.exception("Sentiment analysis failed; returning unknown sentiment")
            return SentimentResult.unknown()

    def _score(self, text: str) -> SentimentResult:
        lowered = text.lower()
        tokens = [token.strip("'") for token in _TOKEN_PATTERN.findall(lowered)]
        tokens = [token for token in tokens if token]

        raw_score = 0
        words: List[str] = []
        previous: str | None = None
        for token in tokens:
            weight = self._lexicon.terms.get(token)
            if weight is not None:
                if previous is not None and previous in self._lexicon.negators:
                    weight = -weight
                raw_score += weight
                words.append(token)
            previous = token

        settings = self._settings
        score = max(-1.0, min(1.0, raw_score / settings.normalizer))
        comparative = raw_score / len(tokens) if tokens else 0.0

        if score >= settings.positive_threshold:
            label = SentimentLabel.POSITIVE
        elif score <= settings.negative_threshold:
            label = SentimentLabel.NEGATIVE
        else:
            label = SentimentLabel.NEUTRAL

        keywords = tuple(
            keyword for keyword in self._lexicon.escalation_keywords if keyword in lowered
        )

        triggered = False
        reason: str | None = None
        if score <= settings.escalation_threshold:
            triggered = True
            reason = NEGATIVE_SENTIMENT_REASON
        elif keywords:
            triggered = True
            reason = ESCALATION_KEYWORD_REASON

        return SentimentResult(
            sentiment=label,
            score=score,
            escalation_triggered=triggered,
            escalation_reason=reason,
            raw_score=raw_score,
            comparative=comparative,
            words=tuple(words),
            keywords=keywords,
        )


__all__ = [
    "ESCALATION_KEYWORD_REASON",
    "NEGATIVE_SENTIMENT_REASON",
    "SentimentAnalyzer",
    "SentimentLabel",
    "SentimentLexicon",
    "SentimentResult",
    "load_lexicon",
]
