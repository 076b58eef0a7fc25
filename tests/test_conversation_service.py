import pytest

from conftest import sequential_ids
from supportdesk.config import SessionSettings
from supportdesk.conversations import schemas
from supportdesk.conversations.models import CustomerIdentity
from supportdesk.conversations.repository import InMemoryConversationRepository
from supportdesk.conversations.service import (
    ConversationNotFoundError,
    ConversationService,
    MessageNotFoundError,
)


@pytest.fixture
def service(clock):
    return ConversationService(
        InMemoryConversationRepository(),
        clock=clock,
        settings=SessionSettings(),
        id_factory=sequential_ids(),
    )


def _start(service, email="a@x.com", client_id="C1", **extra):
    return service.start_conversation(
        schemas.StartConversationRequest(client_id=client_id, customer_email=email, **extra)
    )


def test_start_creates_conversation_with_request_details(service):
    started = _start(
        service,
        customer_name="Ana",
        channel="email",
        subject="Billing",
        metadata={"page": "/pricing"},
    )

    convo = started.conversation
    assert convo.customer_name == "Ana"
    assert convo.channel is schemas.ConversationChannel.EMAIL
    assert convo.subject == "Billing"
    assert convo.metadata == {"page": "/pricing"}
    assert convo.session_id == started.session.session_id
    assert started.session.conversation_id == convo.id


def test_messages_are_tagged_with_current_session(service, clock):
    started = _start(service)
    first = service.add_message(started.conversation.id, sender_type="customer", message="hi")
    clock.advance(hours=26)
    rotated = _start(service)
    second = service.add_message(rotated.conversation.id, sender_type="agent", message="hello")

    assert first.session_id == "SESS-1"
    assert second.session_id == "SESS-2"


def test_previous_sessions_are_append_only(service, clock):
    started = _start(service)
    service.add_message(started.conversation.id, sender_type="customer", message="one")
    clock.advance(hours=25)
    second = _start(service)
    sealed = second.conversation.previous_sessions[0]

    service.add_message(second.conversation.id, sender_type="customer", message="two")
    clock.advance(hours=25)
    third = _start(service)

    entries = third.conversation.previous_sessions
    assert [e.session_id for e in entries] == ["SESS-1", "SESS-2"]
    assert entries[0] == sealed


def test_history_lists_newest_first(service, clock):
    older = _start(service, client_id="C1")
    service.add_message(older.conversation.id, sender_type="customer", message="old")
    service.repository.create_conversation(
        CustomerIdentity.from_raw("a@x.com", "C1"),
        customer_name="Ana",
        session_id="SESS-X",
        started_at=clock.advance(hours=1),
    )

    history = service.get_conversation_history("A@X.com", "C1")

    assert history.total == 2
    assert [item.session_id for item in history.items] == ["SESS-X", "SESS-1"]
    assert history.items[0].is_current is True
    assert history.items[1].is_current is False
    assert history.items[1].message_count == 1


def test_session_summary_totals(service, clock):
    started = _start(service, customer_name="Ana")
    for text in ("a", "b"):
        service.add_message(started.conversation.id, sender_type="customer", message=text)
    clock.advance(hours=25)
    current = _start(service)
    service.add_message(current.conversation.id, sender_type="customer", message="c")

    summary = service.get_session_summary(current.conversation.id)

    assert summary.customer_name == "Ana"
    assert summary.current_session.session_id == "SESS-2"
    assert summary.current_session.message_count == 1
    assert [(p.session_id, p.message_count) for p in summary.previous_sessions] == [("SESS-1", 2)]
    assert summary.total_messages == 3
    assert summary.total_sessions == 2


def test_update_conversation_fields(service):
    started = _start(service)

    updated = service.update_conversation(
        started.conversation.id,
        schemas.ConversationUpdate(status="with_agent", assigned_to="agent-7", satisfaction_rating=5),
    )

    assert updated.status is schemas.ConversationStatus.WITH_AGENT
    assert updated.assigned_to == "agent-7"
    assert updated.satisfaction_rating == 5


def test_update_rejects_bad_rating():
    with pytest.raises(ValueError):
        schemas.ConversationUpdate(satisfaction_rating=6)


def test_request_handoff_marks_escalated(service):
    started = _start(service)

    updated = service.request_handoff(started.conversation.id, reason="Escalation keyword detected")

    assert updated.status is schemas.ConversationStatus.ESCALATED
    assert updated.handoff_requested is True
    assert updated.metadata["escalation_reason"] == "Escalation keyword detected"


def test_mark_message_read_is_idempotent(service, clock):
    started = _start(service)
    message = service.add_message(started.conversation.id, sender_type="agent", message="hi")

    first = service.mark_message_read(message.id)
    clock.advance(minutes=3)
    second = service.mark_message_read(message.id)

    assert first.read_at is not None
    assert second.read_at == first.read_at


def test_missing_records_raise(service):
    with pytest.raises(ConversationNotFoundError):
        service.get_conversation(999)
    with pytest.raises(ConversationNotFoundError):
        service.add_message(999, sender_type="customer", message="hi")
    with pytest.raises(ConversationNotFoundError):
        service.update_conversation(999, schemas.ConversationUpdate(tags=["vip"]))
    with pytest.raises(MessageNotFoundError):
        service.mark_message_read(999)
