"""Customer-facing chat widget routes."""

from __future__ import annotations

from fastapi import APIRouter, Query

from ..conversations import schemas
from . import dependencies

router = APIRouter(prefix="/api/widget", tags=["widget"])


@router.post("/conversation", response_model=schemas.StartConversationResponse)
def start_conversation(
    payload: schemas.StartConversationRequest,
) -> schemas.StartConversationResponse:
    """Start or resume the customer's logical session."""
    with dependencies.service_context() as services:
        return services.conversations.start_conversation(payload)


@router.post("/message", response_model=schemas.PostMessageResponse)
def post_message(payload: schemas.PostMessageRequest) -> schemas.PostMessageResponse:
    """Store a widget message after sentiment and escalation checks."""
    with dependencies.service_context() as services:
        return services.pipeline.handle(payload).as_response()


@router.get("/messages/{conversation_id}", response_model=schemas.MessageList)
def list_customer_messages(
    conversation_id: int,
    session_id: str | None = Query(None, max_length=128),
) -> schemas.MessageList:
    """Messages visible to the customer for the given session token."""
    with dependencies.service_context() as services:
        return services.conversations.messages_for(
            conversation_id, schemas.ViewerRole.CUSTOMER, session_id
        )


@router.put("/conversation/{conversation_id}", response_model=schemas.ConversationDetail)
def update_conversation(
    conversation_id: int,
    payload: schemas.ConversationUpdate,
) -> schemas.ConversationDetail:
    with dependencies.service_context() as services:
        return services.conversations.update_conversation(conversation_id, payload)
