"""Agent console chat session routes: lifecycle, messages and copilot."""

from __future__ import annotations

from fastapi import APIRouter, Query

from ..conversations import chat_session_schemas as schemas
from . import dependencies

router = APIRouter(prefix="/api/chat", tags=["chat-sessions"])


@router.post("/sessions", response_model=schemas.ChatSessionDetail)
def open_chat_session(payload: schemas.ChatSessionCreate) -> schemas.ChatSessionDetail:
    """Open a chat session, or return the one already open for the ticket and agent."""
    with dependencies.service_context() as services:
        return services.chat_sessions.open_session(payload)


@router.get("/sessions/{session_id}", response_model=schemas.ChatSessionDetail)
def get_chat_session(session_id: str) -> schemas.ChatSessionDetail:
    with dependencies.service_context() as services:
        return services.chat_sessions.get_session(session_id)


@router.post("/sessions/{session_id}/messages", response_model=schemas.AddMessageResponse)
def add_chat_message(
    session_id: str,
    payload: schemas.AddMessageRequest,
) -> schemas.AddMessageResponse:
    """Record a message; customer messages may escalate the session."""
    with dependencies.service_context() as services:
        return services.pipeline.handle_chat_message(session_id, payload)


@router.put("/sessions/{session_id}/close", response_model=schemas.ChatSessionDetail)
def close_chat_session(
    session_id: str,
    payload: schemas.CloseSessionRequest | None = None,
) -> schemas.ChatSessionDetail:
    notes = payload.notes if payload else None
    author_id = payload.author_id if payload else None
    with dependencies.service_context() as services:
        return services.chat_sessions.close(session_id, notes=notes, author_id=author_id)


@router.put("/sessions/{session_id}/hold", response_model=schemas.ChatSessionDetail)
def hold_chat_session(session_id: str) -> schemas.ChatSessionDetail:
    with dependencies.service_context() as services:
        return services.chat_sessions.hold(session_id)


@router.put("/sessions/{session_id}/resume", response_model=schemas.ChatSessionDetail)
def resume_chat_session(session_id: str) -> schemas.ChatSessionDetail:
    with dependencies.service_context() as services:
        return services.chat_sessions.resume(session_id)


@router.get("/agent/{agent_id}/active", response_model=schemas.ActiveSessionList)
def list_active_sessions(agent_id: str) -> schemas.ActiveSessionList:
    """Open (active or on-hold) sessions assigned to an agent."""
    with dependencies.service_context() as services:
        return services.chat_sessions.list_active(agent_id)


# Copilot ----------------------------------------------------------------


@router.post(
    "/sessions/{session_id}/response-suggestions",
    response_model=schemas.ResponseSuggestionList,
)
def response_suggestions(
    session_id: str,
    payload: schemas.ResponseSuggestionRequest,
) -> schemas.ResponseSuggestionList:
    with dependencies.service_context() as services:
        return services.chat_sessions.suggest_responses(session_id, payload.message)


@router.post("/sessions/{session_id}/auto-complete", response_model=schemas.AutoCompleteResponse)
def auto_complete(
    session_id: str,
    payload: schemas.AutoCompleteRequest,
) -> schemas.AutoCompleteResponse:
    with dependencies.service_context() as services:
        return services.chat_sessions.auto_complete(session_id, payload.current_text)


@router.get("/sessions/{session_id}/common-phrases", response_model=schemas.CommonPhraseList)
def common_phrases(
    session_id: str,
    context: str = Query("general", max_length=64),
) -> schemas.CommonPhraseList:
    with dependencies.service_context() as services:
        return services.chat_sessions.common_phrases(session_id, context)


@router.get("/sessions/{session_id}/summary", response_model=schemas.ChatSummaryResponse)
def chat_summary(session_id: str) -> schemas.ChatSummaryResponse:
    with dependencies.service_context() as services:
        return services.chat_sessions.summarize(session_id)
