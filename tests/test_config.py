import pytest

from supportdesk.config import (
    DEFAULT_LEXICON_PATH,
    get_sentiment_settings,
    get_session_settings,
    reset_settings_cache,
)


def test_defaults(monkeypatch):
    for name in (
        "SESSION_INACTIVITY_HOURS",
        "CUSTOMER_FALLBACK_WINDOW_HOURS",
        "SESSION_ID_PREFIX",
        "SENTIMENT_NORMALIZER",
        "SENTIMENT_LEXICON_PATH",
    ):
        monkeypatch.delenv(name, raising=False)

    session = get_session_settings()
    sentiment = get_sentiment_settings()

    assert session.inactivity_hours == 24.0
    assert session.customer_fallback_window_hours == 24.0
    assert session.session_id_prefix == "SESSION"
    assert sentiment.normalizer == 5.0
    assert (sentiment.positive_threshold, sentiment.negative_threshold) == (0.3, -0.3)
    assert sentiment.escalation_threshold == -0.7
    assert sentiment.lexicon_path == DEFAULT_LEXICON_PATH
    assert DEFAULT_LEXICON_PATH.exists()


def test_environment_overrides(monkeypatch):
    monkeypatch.setenv("SESSION_INACTIVITY_HOURS", "12")
    monkeypatch.setenv("SESSION_ID_PREFIX", "CHAT")
    monkeypatch.setenv("SENTIMENT_ESCALATION_THRESHOLD", "-0.8")

    assert get_session_settings().inactivity_hours == 12.0
    assert get_session_settings().session_id_prefix == "CHAT"
    assert get_sentiment_settings().escalation_threshold == -0.8


def test_settings_are_cached_until_reset(monkeypatch):
    monkeypatch.setenv("SESSION_INACTIVITY_HOURS", "6")
    first = get_session_settings()
    monkeypatch.setenv("SESSION_INACTIVITY_HOURS", "8")

    assert get_session_settings() is first
    reset_settings_cache()
    assert get_session_settings().inactivity_hours == 8.0


@pytest.mark.parametrize(
    ("name", "value"),
    [
        ("SESSION_INACTIVITY_HOURS", "soon"),
        ("SESSION_INACTIVITY_HOURS", "0"),
        ("CUSTOMER_FALLBACK_WINDOW_HOURS", "-1"),
    ],
)
def test_invalid_session_values(monkeypatch, name, value):
    monkeypatch.setenv(name, value)

    with pytest.raises(RuntimeError):
        get_session_settings()


def test_invalid_normalizer(monkeypatch):
    monkeypatch.setenv("SENTIMENT_NORMALIZER", "0")

    with pytest.raises(RuntimeError):
        get_sentiment_settings()
