from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from supportdesk import copilot as copilot_module
from supportdesk.conversations.chat_session_schemas import ChatMessage
from supportdesk.copilot import (
    COMMON_PHRASES,
    CopilotService,
    common_phrase_suggestions,
)

NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


class FakeCompletions:
    def __init__(self, content=None, error=None):
        self.content = content
        self.error = error
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.error:
            raise self.error
        message = SimpleNamespace(content=self.content)
        return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def _client(content=None, error=None):
    completions = FakeCompletions(content, error)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions


def _message(idx, sender, content):
    return ChatMessage(
        id=idx, chat_session_id="cs-1", sender_type=sender, content=content, created_at=NOW
    )


def test_suggestions_parse_numbered_responses():
    client, completions = _client(
        "RESPONSE 1: I can help with that.\nRESPONSE 2: Let me check your order.\n"
        "RESPONSE 3: Could you share the order number?"
    )
    service = CopilotService(client, lang="en", clock=lambda: NOW)

    suggestions = service.suggest_responses("Where is my order?", [_message(1, "customer", "hi")])

    assert [s.text for s in suggestions] == [
        "I can help with that.",
        "Let me check your order.",
        "Could you share the order number?",
    ]
    assert [s.confidence for s in suggestions] == [0.9, 0.85, 0.8]
    assert suggestions[0].id == f"suggestion_{int(NOW.timestamp() * 1000)}_0"
    system_prompt = completions.calls[0]["messages"][0]["content"]
    assert "Reply in en." in system_prompt


def test_suggestions_fall_back_when_llm_fails():
    client, _ = _client(error=RuntimeError("rate limited"))
    service = CopilotService(client, lang="en", clock=lambda: NOW)

    suggestions = service.suggest_responses("Where is my order?")

    assert len(suggestions) == 3
    assert "Where is my order?" in suggestions[0].text


def test_fallback_without_client():
    service = CopilotService(clock=lambda: NOW)

    assert service.uses_llm is False
    assert len(service.suggest_responses("hello")) == 3


def test_auto_complete_prefixes_partial_text():
    client, _ = _client(
        "COMPLETION 1: with your refund today.\nCOMPLETION 2: , thanks for waiting."
    )
    service = CopilotService(client, lang="en")

    completions = service.auto_complete("I will help you ")

    assert [c.text for c in completions] == [
        "I will help you with your refund today.",
        "I will help you, thanks for waiting.",
    ]
    assert [c.id for c in completions] == ["completion_0", "completion_1"]


def test_auto_complete_fallback():
    completions = CopilotService().auto_complete("Thanks for reaching out")

    assert len(completions) == 3
    assert all(c.text.startswith("Thanks for reaching out") for c in completions)


def test_summary_uses_llm_text():
    client, _ = _client("  - Issue: late parcel\n- Status: resolved  ")
    service = CopilotService(client, lang="en")

    summary = service.summarize([_message(1, "customer", "late parcel")])

    assert summary == "- Issue: late parcel\n- Status: resolved"


def test_summary_fallback_and_empty():
    service = CopilotService()

    assert service.summarize([]) == "No messages exchanged yet."
    summary = service.summarize(
        [_message(1, "customer", "late parcel"), _message(2, "agent", "refund issued")]
    )
    assert "late parcel" in summary
    assert "refund issued" in summary


@pytest.mark.parametrize("context", sorted(COMMON_PHRASES))
def test_common_phrases_per_context(context):
    phrases = common_phrase_suggestions(context)

    assert [p.text for p in phrases] == COMMON_PHRASES[context]
    assert phrases[0].id == f"phrase_{context}_0"


def test_unknown_phrase_context_uses_greetings():
    phrases = common_phrase_suggestions("general")

    assert [p.text for p in phrases] == COMMON_PHRASES["greeting"]
    assert {p.category for p in phrases} == {"general"}


def test_openai_client_only_with_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)

    assert copilot_module.build_openai_client() is None
    assert CopilotService.from_env().uses_llm is False
