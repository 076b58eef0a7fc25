import logging
from datetime import datetime, timezone

import pytest
import requests

from supportdesk.conversations.models import EscalationEvent
from supportdesk.conversations.notifications import (
    CompositeEscalationNotifier,
    ConversationRoutingNotifier,
    DeferredEscalationNotifier,
    LoggingEscalationNotifier,
    WebhookEscalationNotifier,
    build_default_notifier,
)


def _event(**overrides):
    data = {
        "chat_session_id": "cs-1",
        "reason": "Escalation keyword detected",
        "escalated_at": datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc),
        "sentiment_score": -0.2,
        "ticket_id": "T-1",
        "agent_id": "agent-7",
        "client_id": "C1",
        "conversation_id": 42,
    }
    data.update(overrides)
    return EscalationEvent(**data)


class FakeResponse:
    def __init__(self, status_code=202):
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


class FakeSession:
    def __init__(self, status_code=202):
        self.calls = []
        self.status_code = status_code

    def post(self, url, json=None, headers=None, timeout=None):
        self.calls.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        return FakeResponse(self.status_code)


class FakeConversations:
    def __init__(self):
        self.handoffs = []

    def request_handoff(self, conversation_id, reason=None):
        self.handoffs.append((conversation_id, reason))


def test_webhook_posts_event_payload():
    session = FakeSession()
    notifier = WebhookEscalationNotifier("https://hooks.example/escalations", timeout=2.5, session=session)

    notifier.notify(_event())

    call = session.calls[0]
    assert call["url"] == "https://hooks.example/escalations"
    assert call["timeout"] == 2.5
    assert call["json"]["event"] == "chat_session.escalated"
    assert call["json"]["chat_session_id"] == "cs-1"
    assert call["json"]["escalated_at"] == "2024-03-01T12:00:00+00:00"
    assert call["headers"] == {}


def test_webhook_raises_on_error_status():
    notifier = WebhookEscalationNotifier("https://hooks.example", session=FakeSession(500))

    with pytest.raises(requests.HTTPError):
        notifier.notify(_event())


def test_webhook_requires_url():
    with pytest.raises(ValueError):
        WebhookEscalationNotifier("")


def test_routing_notifier_requests_handoff():
    conversations = FakeConversations()

    ConversationRoutingNotifier(conversations).notify(_event())
    ConversationRoutingNotifier(conversations).notify(_event(conversation_id=None))

    assert conversations.handoffs == [(42, "Escalation keyword detected")]


def test_composite_isolates_failures(caplog):
    delivered = []

    class Broken:
        def notify(self, event):
            raise ConnectionError("down")

    class Recording:
        def notify(self, event):
            delivered.append(event.chat_session_id)

    composite = CompositeEscalationNotifier([Broken(), Recording()])
    with caplog.at_level(logging.ERROR):
        composite.notify(_event())

    assert delivered == ["cs-1"]
    assert "Broken failed" in caplog.text


def test_logging_notifier_writes_warning(caplog):
    with caplog.at_level(logging.WARNING):
        LoggingEscalationNotifier().notify(_event())

    assert "cs-1 escalated" in caplog.text


def test_default_notifier_from_environment(monkeypatch):
    monkeypatch.setenv("ESCALATION_WEBHOOK_URL", "https://hooks.example/escalations")
    monkeypatch.setenv("ESCALATION_WEBHOOK_TIMEOUT", "3")

    notifier = build_default_notifier()

    kinds = [type(n).__name__ for n in notifier.notifiers]
    assert kinds == ["LoggingEscalationNotifier", "WebhookEscalationNotifier"]
    assert notifier.notifiers[-1].timeout == 3.0


def test_default_notifier_without_webhook(monkeypatch):
    monkeypatch.delenv("ESCALATION_WEBHOOK_URL", raising=False)

    notifier = build_default_notifier()

    assert [type(n).__name__ for n in notifier.notifiers] == ["LoggingEscalationNotifier"]


def test_deferred_notifier_delivers_only_on_flush():
    delivered = []

    class Recording:
        def notify(self, event):
            delivered.append(event.chat_session_id)

    outbox = DeferredEscalationNotifier(Recording())
    outbox.notify(_event())
    outbox.notify(_event(chat_session_id="cs-2"))

    assert delivered == []
    assert len(outbox.pending) == 2
    outbox.flush()
    assert delivered == ["cs-1", "cs-2"]
    assert outbox.pending == []
    outbox.flush()
    assert delivered == ["cs-1", "cs-2"]


def test_deferred_notifier_discard_drops_events():
    delivered = []

    class Recording:
        def notify(self, event):
            delivered.append(event)

    outbox = DeferredEscalationNotifier(Recording())
    outbox.notify(_event())
    outbox.discard()
    outbox.flush()

    assert delivered == []
