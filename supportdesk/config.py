"""Runtime settings for session resolution and sentiment scoring.

Every policy number used by the chat core lives here as a named setting so it
can be tuned per deployment through environment variables:

- ``SESSION_INACTIVITY_HOURS``: idle time after which a returning customer
  starts a new logical session (default 24).
- ``CUSTOMER_FALLBACK_WINDOW_HOURS``: how far back a customer without a
  session token may read (default 24).
- ``SESSION_ID_PREFIX``: prefix of minted session tokens (default ``SESSION``).
- ``SENTIMENT_NORMALIZER``: divisor mapping raw lexicon sums onto [-1, 1]
  (default 5.0).
- ``SENTIMENT_POSITIVE_THRESHOLD`` / ``SENTIMENT_NEGATIVE_THRESHOLD``: label
  boundaries (defaults 0.3 / -0.3).
- ``SENTIMENT_ESCALATION_THRESHOLD``: score at or below which a message
  escalates on sentiment alone (default -0.7).
- ``SENTIMENT_LEXICON_PATH``: JSON lexicon with term weights, negators and
  escalation keywords.
"""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache
from pathlib import Path

DEFAULT_LEXICON_PATH = Path(__file__).resolve().parent / "data" / "sentiment_lexicon.json"


@dataclasses.dataclass(frozen=True)
class SessionSettings:
    """Policy constants for logical customer sessions."""

    inactivity_hours: float = 24.0
    customer_fallback_window_hours: float = 24.0
    session_id_prefix: str = "SESSION"


@dataclasses.dataclass(frozen=True)
class SentimentSettings:
    """Thresholds and lexicon location used by the sentiment analyzer."""

    normalizer: float = 5.0
    positive_threshold: float = 0.3
    negative_threshold: float = -0.3
    escalation_threshold: float = -0.7
    lexicon_path: Path = DEFAULT_LEXICON_PATH


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise RuntimeError(f"Environment variable '{name}' must be a number.") from exc


@lru_cache(maxsize=1)
def get_session_settings() -> SessionSettings:
    """Load session policy from the environment."""

    inactivity = _float_env("SESSION_INACTIVITY_HOURS", 24.0)
    fallback_window = _float_env("CUSTOMER_FALLBACK_WINDOW_HOURS", 24.0)
    if inactivity <= 0 or fallback_window <= 0:
        raise RuntimeError("Session windows must be positive numbers of hours.")
    return SessionSettings(
        inactivity_hours=inactivity,
        customer_fallback_window_hours=fallback_window,
        session_id_prefix=os.getenv("SESSION_ID_PREFIX", "SESSION").strip() or "SESSION",
    )


@lru_cache(maxsize=1)
def get_sentiment_settings() -> SentimentSettings:
    """Load sentiment thresholds from the environment."""

    normalizer = _float_env("SENTIMENT_NORMALIZER", 5.0)
    if normalizer <= 0:
        raise RuntimeError("SENTIMENT_NORMALIZER must be greater than zero.")
    lexicon_path = os.getenv("SENTIMENT_LEXICON_PATH")
    return SentimentSettings(
        normalizer=normalizer,
        positive_threshold=_float_env("SENTIMENT_POSITIVE_THRESHOLD", 0.3),
        negative_threshold=_float_env("SENTIMENT_NEGATIVE_THRESHOLD", -0.3),
        escalation_threshold=_float_env("SENTIMENT_ESCALATION_THRESHOLD", -0.7),
        lexicon_path=Path(lexicon_path) if lexicon_path else DEFAULT_LEXICON_PATH,
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_session_settings.cache_clear()
    get_sentiment_settings.cache_clear()


__all__ = [
    "DEFAULT_LEXICON_PATH",
    "SentimentSettings",
    "SessionSettings",
    "get_sentiment_settings",
    "get_session_settings",
    "reset_settings_cache",
]
