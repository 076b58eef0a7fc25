"""Service layer for agent chat sessions and the escalation state machine."""

from __future__ import annotations

import logging
from typing import Callable
from uuid import uuid4

from ..copilot import CopilotService, common_phrase_suggestions
from ..core.clock import Clock, utcnow
from ..nlp import SentimentAnalyzer, SentimentResult
from . import chat_session_schemas as schemas
from .chat_session_repository import ChatSessionRepository
from .models import EscalationEvent, MessageOutcome
from .notifications import EscalationNotifier, LoggingEscalationNotifier

logger = logging.getLogger(__name__)

Status = schemas.ChatSessionStatus

SUGGESTION_HISTORY_LIMIT = 10


class ChatSessionNotFoundError(RuntimeError):
    """Raised when a chat session id does not exist."""


class ChatSessionClosedError(RuntimeError):
    """Raised when a closed chat session receives a message or transition."""


class InvalidTransitionError(ValueError):
    """Raised when a status change is not allowed from the current status."""


class FeatureDisabledError(RuntimeError):
    """Raised when a copilot feature is switched off for the session."""


class ChatSessionService:
    """Orchestrates chat session lifecycle, sentiment tracking and escalation.

    Status graph::

        active  <-> on_hold        (agent hold / resume)
        active  ->  escalated      (first escalation trigger)
        on_hold ->  escalated      (first escalation trigger)
        *       ->  closed         (explicit close; final)

    Escalation is sticky: once ``escalation_triggered`` is set, later
    messages update the sentiment fields but never touch the escalation
    reason or timestamp.
    """

    def __init__(
        self,
        repository: ChatSessionRepository,
        *,
        analyzer: SentimentAnalyzer | None = None,
        notifier: EscalationNotifier | None = None,
        copilot: CopilotService | None = None,
        clock: Clock | None = None,
        id_factory: Callable[[], str] | None = None,
    ) -> None:
        self._repository = repository
        self._analyzer = analyzer or SentimentAnalyzer()
        self._notifier = notifier or LoggingEscalationNotifier()
        self._copilot = copilot or CopilotService(clock=clock)
        self._clock = clock or utcnow
        self._id_factory = id_factory or (lambda: str(uuid4()))

    @property
    def analyzer(self) -> SentimentAnalyzer:
        return self._analyzer

    # ------------------------------------------------------------------
    # Lifecycle

    def open_session(self, payload: schemas.ChatSessionCreate) -> schemas.ChatSessionDetail:
        """Return the open session for the ticket and agent, creating one if needed."""

        existing = self._repository.find_open_session(payload.ticket_id, payload.agent_id)
        if existing:
            return existing
        created = self._repository.create_session(
            self._id_factory(), payload, started_at=self._clock()
        )
        if created is not None:
            logger.info(
                "Opened chat session %s for ticket %s (agent %s)",
                created.id,
                created.ticket_id,
                created.agent_id,
            )
            return created
        # Lost the race against a concurrent open for the same pair.
        existing = self._repository.find_open_session(payload.ticket_id, payload.agent_id)
        if existing is None:
            raise RuntimeError(
                f"Failed to open chat session for ticket {payload.ticket_id}"
            )
        return existing

    def get_session(self, session_id: str) -> schemas.ChatSessionDetail:
        session = self._repository.get_session(session_id)
        if not session:
            raise ChatSessionNotFoundError(f"Chat session {session_id} not found")
        return session

    def find_for_conversation(self, conversation_id: int) -> schemas.ChatSessionDetail | None:
        return self._repository.find_open_for_conversation(conversation_id)

    def list_active(self, agent_id: str) -> schemas.ActiveSessionList:
        sessions = self._repository.list_open_for_agent(agent_id)
        return schemas.ActiveSessionList(
            agent_id=agent_id, active_sessions=sessions, count=len(sessions)
        )

    def hold(self, session_id: str) -> schemas.ChatSessionDetail:
        return self._transition(session_id, (Status.ACTIVE,), Status.ON_HOLD)

    def resume(self, session_id: str) -> schemas.ChatSessionDetail:
        return self._transition(session_id, (Status.ON_HOLD,), Status.ACTIVE)

    def close(
        self,
        session_id: str,
        notes: str | None = None,
        author_id: str | None = None,
    ) -> schemas.ChatSessionDetail:
        closed_at = self._clock()
        note = None
        if notes:
            note = schemas.ChatSessionNote(
                author_id=author_id, text=notes, is_internal=True, created_at=closed_at
            )
        closed = self._repository.close_session(session_id, closed_at=closed_at, note=note)
        if closed is None:
            self._raise_for_state(self.get_session(session_id), "close")
        logger.info("Closed chat session %s after %s seconds", session_id, closed.duration)
        return closed

    # ------------------------------------------------------------------
    # Messages

    def record_message(
        self,
        session_id: str,
        sender_type: str,
        content: str,
        *,
        sender_id: str | None = None,
        analyze_sentiment: bool = True,
        sentiment: SentimentResult | None = None,
    ) -> schemas.AddMessageResponse:
        """Count a message and, for customers, apply sentiment and escalation."""

        response, _ = self.record_with_outcome(
            session_id,
            sender_type,
            content,
            sender_id=sender_id,
            analyze_sentiment=analyze_sentiment,
            sentiment=sentiment,
        )
        return response

    def record_with_outcome(
        self,
        session_id: str,
        sender_type: str,
        content: str,
        *,
        sender_id: str | None = None,
        analyze_sentiment: bool = True,
        sentiment: SentimentResult | None = None,
    ) -> tuple[schemas.AddMessageResponse, MessageOutcome]:
        """Like :meth:`record_message`, also returning the escalation outcome.

        ``sentiment`` may carry a result already computed by the caller so the
        analyzer does not run twice for the same text.
        """

        if sender_type not in ("agent", "customer"):
            raise ValueError(f"Unsupported sender type: {sender_type}")
        session = self.get_session(session_id)
        if session.status is Status.CLOSED:
            raise ChatSessionClosedError(f"Chat session {session_id} is closed")

        now = self._clock()
        if not self._repository.increment_counters(session_id, sender_type, at=now):
            raise ChatSessionClosedError(f"Chat session {session_id} is closed")

        outcome = MessageOutcome(chat_session_id=session_id)
        if sender_type == "customer" and analyze_sentiment:
            outcome.sentiment = sentiment or self._analyzer.analyze(content)
            outcome.event = self._apply_sentiment(session, outcome.sentiment)
            outcome.escalated = outcome.event is not None

        message = self._repository.add_message(
            session_id,
            sender_type=sender_type,
            content=content,
            created_at=now,
            sender_id=sender_id,
            sentiment=outcome.sentiment.as_dict() if outcome.sentiment else None,
        )
        if outcome.event is not None:
            self._notify(outcome.event)

        refreshed = self.get_session(session_id)
        response = schemas.AddMessageResponse(
            message=message,
            sentiment_analysis=refreshed.sentiment_analysis if outcome.sentiment else None,
            escalated=outcome.escalated,
            session=refreshed,
        )
        return response, outcome

    def _apply_sentiment(
        self, session: schemas.ChatSessionDetail, result: SentimentResult
    ) -> EscalationEvent | None:
        now = self._clock()
        self._repository.update_sentiment(
            session.id, result.sentiment.value, result.score, at=now
        )
        if not result.escalation_triggered or not result.escalation_reason:
            return None
        won = self._repository.mark_escalated(session.id, result.escalation_reason, at=now)
        if won is None:
            # Already escalated (or closed) by someone else; first trigger stands.
            return None
        logger.info(
            "Chat session %s escalated: %s", won.id, won.sentiment_analysis.escalation_reason
        )
        return EscalationEvent(
            chat_session_id=won.id,
            reason=result.escalation_reason,
            escalated_at=now,
            sentiment_score=result.score,
            ticket_id=won.ticket_id,
            agent_id=won.agent_id,
            client_id=won.client_id,
            conversation_id=won.conversation_id,
        )

    def _notify(self, event: EscalationEvent) -> None:
        try:
            self._notifier.notify(event)
        except Exception:
            logger.exception("Escalation notification failed for chat session %s", event.chat_session_id)

    # ------------------------------------------------------------------
    # Copilot

    def suggest_responses(self, session_id: str, message: str) -> schemas.ResponseSuggestionList:
        session = self.get_session(session_id)
        if not (session.ai_copilot_enabled and session.ai_suggestions_enabled):
            raise FeatureDisabledError("AI suggestions are disabled for this session")
        history = self._repository.list_messages(session_id, limit=SUGGESTION_HISTORY_LIMIT)
        suggestions = self._copilot.suggest_responses(message, history)
        self._repository.save_suggestions(session_id, suggestions, at=self._clock())
        return schemas.ResponseSuggestionList(session_id=session_id, suggestions=suggestions)

    def auto_complete(self, session_id: str, current_text: str) -> schemas.AutoCompleteResponse:
        session = self.get_session(session_id)
        if not (session.ai_copilot_enabled and session.auto_complete_enabled):
            raise FeatureDisabledError("Auto-complete is disabled for this session")
        return schemas.AutoCompleteResponse(
            session_id=session_id,
            partial_text=current_text,
            completions=self._copilot.auto_complete(current_text),
        )

    def common_phrases(self, session_id: str, context: str = "general") -> schemas.CommonPhraseList:
        self.get_session(session_id)
        return schemas.CommonPhraseList(
            session_id=session_id, context=context, phrases=common_phrase_suggestions(context)
        )

    def summarize(self, session_id: str) -> schemas.ChatSummaryResponse:
        session = self.get_session(session_id)
        if not session.ai_copilot_enabled:
            raise FeatureDisabledError("AI copilot is disabled for this session")
        messages = self._repository.list_messages(session_id)
        return schemas.ChatSummaryResponse(
            session_id=session_id,
            summary=self._copilot.summarize(messages),
            message_count=len(messages),
        )

    # ------------------------------------------------------------------
    # Helpers

    def _transition(
        self,
        session_id: str,
        from_statuses: tuple[Status, ...],
        to_status: Status,
    ) -> schemas.ChatSessionDetail:
        updated = self._repository.transition_status(
            session_id, from_statuses, to_status, at=self._clock()
        )
        if updated is None:
            self._raise_for_state(self.get_session(session_id), to_status.value)
        return updated

    @staticmethod
    def _raise_for_state(session: schemas.ChatSessionDetail, action: str) -> None:
        if session.status is Status.CLOSED:
            raise ChatSessionClosedError(f"Chat session {session.id} is closed")
        raise InvalidTransitionError(
            f"Cannot move chat session {session.id} from {session.status.value} to {action}"
        )


__all__ = [
    "ChatSessionClosedError",
    "ChatSessionNotFoundError",
    "ChatSessionService",
    "FeatureDisabledError",
    "InvalidTransitionError",
]
