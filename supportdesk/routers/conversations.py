"""Agent-facing conversation routes."""

from __future__ import annotations

from fastapi import APIRouter, Query

from ..conversations import schemas
from . import dependencies

router = APIRouter(prefix="/api/conversations", tags=["conversations"])


@router.get("/history", response_model=schemas.ConversationHistory)
def conversation_history(
    client_id: str = Query(..., min_length=1),
    customer_email: str = Query(..., min_length=3),
) -> schemas.ConversationHistory:
    """All conversations of one customer, newest first."""
    with dependencies.service_context() as services:
        return services.conversations.get_conversation_history(customer_email, client_id)


@router.get("/{conversation_id}", response_model=schemas.ConversationDetail)
def get_conversation(conversation_id: int) -> schemas.ConversationDetail:
    with dependencies.service_context() as services:
        return services.conversations.get_conversation(conversation_id)


@router.get("/{conversation_id}/messages", response_model=schemas.MessageList)
def list_agent_messages(conversation_id: int) -> schemas.MessageList:
    """Every message of the conversation across all session tokens."""
    with dependencies.service_context() as services:
        return services.conversations.messages_for(conversation_id, schemas.ViewerRole.AGENT)


@router.get("/{conversation_id}/summary", response_model=schemas.SessionSummary)
def session_summary(conversation_id: int) -> schemas.SessionSummary:
    """Current session plus previous session statistics."""
    with dependencies.service_context() as services:
        return services.conversations.get_session_summary(conversation_id)


@router.put(
    "/messages/{message_id}/read", response_model=schemas.ConversationMessage
)
def mark_message_read(message_id: int) -> schemas.ConversationMessage:
    with dependencies.service_context() as services:
        return services.conversations.mark_message_read(message_id)
