from contextlib import contextmanager

import psycopg
import pytest
from fastapi import HTTPException

from supportdesk.conversations import chat_session_schemas, schemas
from supportdesk.conversations.chat_session_repository import InMemoryChatSessionRepository
from supportdesk.conversations.repository import InMemoryConversationRepository
from supportdesk.copilot import CopilotService
from supportdesk.routers.dependencies import build_services, transaction_scope


class FakeConnection:
    def __init__(self, fail_commit=False):
        self.fail_commit = fail_commit
        self.commits = 0
        self.rollbacks = 0
        self.savepoints = 0

    @contextmanager
    def transaction(self):
        self.savepoints += 1
        yield

    def commit(self):
        if self.fail_commit:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1


class RecordingNotifier:
    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)


def _services(conn, clock, analyzer, webhook):
    return build_services(
        InMemoryConversationRepository(),
        InMemoryChatSessionRepository(),
        clock=clock,
        analyzer=analyzer,
        copilot=CopilotService(clock=clock),
        conn=conn,
        notifier=webhook,
    )


def _escalate(services):
    started = services.conversations.start_conversation(
        schemas.StartConversationRequest(client_id="C1", customer_email="a@x.com")
    )
    chat = services.chat_sessions.open_session(
        chat_session_schemas.ChatSessionCreate(
            ticket_id="T-1", agent_id="agent-7", conversation_id=started.conversation.id
        )
    )
    response = services.chat_sessions.record_message(
        chat.id, "customer", "This is unacceptable, I will sue you"
    )
    assert response.escalated is True
    return started.conversation.id


def test_escalation_is_announced_after_commit(clock, analyzer):
    conn = FakeConnection()
    webhook = RecordingNotifier()
    services = _services(conn, clock, analyzer, webhook)

    with transaction_scope(conn, services) as scoped:
        conversation_id = _escalate(scoped)
        assert webhook.events == []
        assert scoped.conversations.get_conversation(conversation_id).handoff_requested is True

    assert conn.commits == 1
    assert conn.savepoints == 1
    assert [event.conversation_id for event in webhook.events] == [conversation_id]


def test_failed_commit_discards_escalation_notifications(clock, analyzer):
    conn = FakeConnection(fail_commit=True)
    webhook = RecordingNotifier()
    services = _services(conn, clock, analyzer, webhook)

    with pytest.raises(HTTPException) as excinfo:
        with transaction_scope(conn, services) as scoped:
            _escalate(scoped)

    assert excinfo.value.status_code == 500
    assert conn.rollbacks == 1
    assert webhook.events == []
    assert services.outbox.pending == []


def test_domain_error_rolls_back_without_notifying(clock, analyzer):
    conn = FakeConnection()
    webhook = RecordingNotifier()
    services = _services(conn, clock, analyzer, webhook)

    with pytest.raises(HTTPException) as excinfo:
        with transaction_scope(conn, services) as scoped:
            _escalate(scoped)
            scoped.chat_sessions.get_session("missing")

    assert excinfo.value.status_code == 404
    assert conn.commits == 0
    assert conn.rollbacks == 1
    assert webhook.events == []


def test_in_memory_services_notify_immediately(clock, analyzer):
    webhook = RecordingNotifier()
    services = _services(None, clock, analyzer, webhook)

    _escalate(services)

    assert services.outbox is None
    assert len(webhook.events) == 1
