"""Role-based partitioning of a conversation's messages."""

from __future__ import annotations

from datetime import timedelta

from ..config import SessionSettings, get_session_settings
from ..core.clock import Clock, utcnow
from . import schemas
from .repository import ConversationRepository


class MessageVisibilityFilter:
    """Return the slice of a conversation a given viewer is allowed to read.

    Agents see every message across all session tokens. Customers bound to a
    session token only see messages tagged with it; customers without a token
    fall back to the recent activity window.
    """

    def __init__(
        self,
        repository: ConversationRepository,
        *,
        clock: Clock | None = None,
        settings: SessionSettings | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or utcnow
        self._settings = settings or get_session_settings()

    def messages_for(
        self,
        conversation_id: int,
        viewer_role: schemas.ViewerRole | str,
        session_id: str | None = None,
    ) -> list[schemas.ConversationMessage]:
        role = schemas.ViewerRole(viewer_role)
        if role is schemas.ViewerRole.AGENT:
            return self._repository.list_messages(conversation_id)
        if session_id:
            return self._repository.list_messages(conversation_id, session_id=session_id)
        since = self._clock() - timedelta(hours=self._settings.customer_fallback_window_hours)
        return self._repository.list_messages(conversation_id, since=since)


__all__ = ["MessageVisibilityFilter"]
