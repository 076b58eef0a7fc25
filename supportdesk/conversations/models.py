"""Domain value types used by the session and escalation services."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..nlp import SentimentResult
from . import schemas


@dataclass(frozen=True)
class CustomerIdentity:
    """Email plus tenant pair identifying a widget customer.

    The email is only lowercased; no other normalisation is applied.
    """

    email: str
    client_id: str

    @classmethod
    def from_raw(cls, email: str, client_id: str) -> "CustomerIdentity":
        if not email or not email.strip():
            raise ValueError("customer email is required")
        if not client_id:
            raise ValueError("client id is required")
        return cls(email=email.lower(), client_id=str(client_id))

    @property
    def key(self) -> str:
        return f"{self.client_id}:{self.email}"


@dataclass(frozen=True)
class CustomerSession:
    """Logical session token with its validity window."""

    session_id: str
    conversation_id: int | None
    started_at: datetime
    expires_at: datetime

    def is_active(self, at: datetime) -> bool:
        return self.started_at <= at < self.expires_at

    def to_payload(self) -> schemas.CustomerSessionPayload:
        return schemas.CustomerSessionPayload(
            session_id=self.session_id,
            conversation_id=self.conversation_id,
            started_at=self.started_at,
            expires_at=self.expires_at,
        )


@dataclass(frozen=True)
class SessionDecision:
    identity: CustomerIdentity
    customer_name: str | None
    session: CustomerSession
    is_new_session: bool
    is_new_customer: bool
    previous_sessions: tuple[schemas.PreviousSession, ...] = ()
    hours_inactive: float | None = None
    degraded: bool = False
    latest_conversation_id: int | None = None

    @property
    def session_id(self) -> str:
        return self.session.session_id

    @property
    def resumes_existing(self) -> bool:
        return not self.is_new_session and self.latest_conversation_id is not None


@dataclass(frozen=True)
class EscalationEvent:
    """Emitted once, by the caller that won the escalation transition."""

    chat_session_id: str
    reason: str
    escalated_at: datetime
    sentiment_score: float
    ticket_id: str | None = None
    agent_id: str | None = None
    client_id: str | None = None
    conversation_id: int | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "event": "chat_session.escalated",
            "chat_session_id": self.chat_session_id,
            "reason": self.reason,
            "escalated_at": self.escalated_at.isoformat(),
            "sentiment_score": self.sentiment_score,
            "ticket_id": self.ticket_id,
            "agent_id": self.agent_id,
            "client_id": self.client_id,
            "conversation_id": self.conversation_id,
        }


@dataclass
class MessageOutcome:
    """Result of recording one message against a chat session."""

    chat_session_id: str
    sentiment: SentimentResult | None = None
    escalated: bool = False
    event: EscalationEvent | None = None


@dataclass
class InboundResult:
    message: schemas.ConversationMessage
    sentiment: SentimentResult | None = None
    outcome: MessageOutcome | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def escalated(self) -> bool:
        return bool(self.outcome and self.outcome.escalated)

    def as_response(self) -> schemas.PostMessageResponse:
        return schemas.PostMessageResponse(
            message=self.message,
            sentiment=self.sentiment.as_dict() if self.sentiment else None,
            chat_session_id=self.outcome.chat_session_id if self.outcome else None,
            escalated=self.escalated,
        )
