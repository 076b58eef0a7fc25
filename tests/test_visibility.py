from conftest import sequential_ids
from supportdesk.config import SessionSettings
from supportdesk.conversations import schemas
from supportdesk.conversations.repository import InMemoryConversationRepository
from supportdesk.conversations.service import ConversationService
from supportdesk.conversations.visibility import MessageVisibilityFilter


def _two_session_conversation(clock):
    repo = InMemoryConversationRepository()
    service = ConversationService(
        repo, clock=clock, settings=SessionSettings(), id_factory=sequential_ids()
    )
    request = schemas.StartConversationRequest(client_id="C1", customer_email="a@x.com")

    first = service.start_conversation(request)
    service.add_message(first.conversation.id, sender_type="customer", message="s1 question")
    clock.advance(minutes=5)
    service.add_message(first.conversation.id, sender_type="agent", message="s1 answer")

    clock.advance(hours=30)
    second = service.start_conversation(request)
    service.add_message(second.conversation.id, sender_type="customer", message="s2 question")
    clock.advance(minutes=1)
    service.add_message(second.conversation.id, sender_type="bot", message="s2 answer")
    return repo, service, second.conversation.id


def test_customer_bound_to_session_never_sees_other_sessions(clock):
    repo, _, conversation_id = _two_session_conversation(clock)
    visibility = MessageVisibilityFilter(repo, clock=clock, settings=SessionSettings())

    messages = visibility.messages_for(conversation_id, "customer", "SESS-2")

    assert [m.message for m in messages] == ["s2 question", "s2 answer"]
    assert all(m.session_id == "SESS-2" for m in messages)


def test_agent_sees_union_in_chronological_order(clock):
    repo, _, conversation_id = _two_session_conversation(clock)
    visibility = MessageVisibilityFilter(repo, clock=clock, settings=SessionSettings())

    messages = visibility.messages_for(conversation_id, schemas.ViewerRole.AGENT)

    assert [m.message for m in messages] == [
        "s1 question",
        "s1 answer",
        "s2 question",
        "s2 answer",
    ]
    assert [m.created_at for m in messages] == sorted(m.created_at for m in messages)


def test_customer_without_session_gets_recent_window_only(clock):
    repo, _, conversation_id = _two_session_conversation(clock)
    visibility = MessageVisibilityFilter(repo, clock=clock, settings=SessionSettings())

    messages = visibility.messages_for(conversation_id, "customer")

    assert [m.message for m in messages] == ["s2 question", "s2 answer"]


def test_unknown_session_token_yields_nothing(clock):
    repo, _, conversation_id = _two_session_conversation(clock)
    visibility = MessageVisibilityFilter(repo, clock=clock, settings=SessionSettings())

    assert visibility.messages_for(conversation_id, "customer", "SESS-404") == []


def test_visibility_does_not_mutate_messages(clock):
    repo, _, conversation_id = _two_session_conversation(clock)
    visibility = MessageVisibilityFilter(repo, clock=clock, settings=SessionSettings())
    before = repo.list_messages(conversation_id)

    visibility.messages_for(conversation_id, "customer", "SESS-1")
    visibility.messages_for(conversation_id, "agent")

    assert repo.list_messages(conversation_id) == before


def test_service_message_list_reports_viewer(clock):
    _, service, conversation_id = _two_session_conversation(clock)

    customer_view = service.messages_for(conversation_id, "customer", "SESS-1")
    agent_view = service.messages_for(conversation_id, "agent", "SESS-1")

    assert customer_view.total == 2
    assert customer_view.session_id == "SESS-1"
    assert agent_view.total == 4
    assert agent_view.session_id is None
