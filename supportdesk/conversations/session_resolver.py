"""Decide whether a returning widget customer resumes or starts a logical session."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from typing import Callable, Sequence
from uuid import uuid4

from ..config import SessionSettings, get_session_settings
from ..core.clock import Clock, utcnow
from . import schemas
from .models import CustomerIdentity, CustomerSession, SessionDecision
from .repository import ConversationRepository

logger = logging.getLogger(__name__)

SessionIdFactory = Callable[[datetime], str]


def make_session_id(prefix: str, now: datetime) -> str:
    """Return ``<prefix>-<epoch ms>-<9 hex chars>``."""

    millis = int(now.timestamp() * 1000)
    return f"{prefix}-{millis}-{uuid4().hex[:9]}"


def legacy_resume_token(conversation_id: int) -> str:
    return f"SESSION-{conversation_id}"


def legacy_summary_token(conversation_id: int) -> str:
    return f"OLD-{conversation_id}"


def summary_count_token(session_id: str) -> str | None:
    """Token to count a summary's messages by; legacy summaries count them all."""

    return None if session_id.startswith("OLD-") else session_id


class SessionResolver:
    """Applies the inactivity rule to a customer's conversation history.

    The resolver only reads. Applying the decision (creating, rotating or
    resuming a conversation) is left to :class:`ConversationService`, which
    holds the per-customer lock around both steps.
    """

    def __init__(
        self,
        repository: ConversationRepository,
        *,
        clock: Clock | None = None,
        settings: SessionSettings | None = None,
        id_factory: SessionIdFactory | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or utcnow
        self._settings = settings or get_session_settings()
        self._id_factory = id_factory or (
            lambda now: make_session_id(self._settings.session_id_prefix, now)
        )

    @property
    def settings(self) -> SessionSettings:
        return self._settings

    def resolve(
        self,
        customer_email: str,
        customer_name: str | None,
        client_id: str,
    ) -> SessionDecision:
        identity = CustomerIdentity.from_raw(customer_email, client_id)
        now = self._clock()
        try:
            conversations = self._repository.find_by_customer(identity)
            return self._decide(identity, customer_name, conversations, now)
        except Exception:
            logger.warning(
                "Session lookup failed for client %s; starting a fresh session",
                identity.client_id,
                exc_info=True,
            )
            return self._fresh(identity, customer_name, now, is_new_customer=False, degraded=True)

    # ------------------------------------------------------------------

    def _decide(
        self,
        identity: CustomerIdentity,
        customer_name: str | None,
        conversations: Sequence[schemas.ConversationDetail],
        now: datetime,
    ) -> SessionDecision:
        if not conversations:
            return self._fresh(identity, customer_name, now, is_new_customer=True)

        latest = conversations[0]
        hours_inactive = self._hours_inactive(latest, now)
        if hours_inactive > self._settings.inactivity_hours:
            previous = self._previous_sessions(conversations)
            decision = self._fresh(
                identity,
                customer_name,
                now,
                is_new_customer=False,
                previous_sessions=previous,
                hours_inactive=hours_inactive,
                latest_conversation_id=latest.id,
            )
            logger.info(
                "Starting new session %s for client %s after %.1f hours inactive",
                decision.session_id,
                identity.client_id,
                hours_inactive,
            )
            return decision

        window = timedelta(hours=self._settings.inactivity_hours)
        last_activity = latest.last_message_at or now
        session = CustomerSession(
            session_id=latest.session_id or legacy_resume_token(latest.id),
            conversation_id=latest.id,
            started_at=latest.session_started_at or latest.created_at,
            expires_at=last_activity + window,
        )
        return SessionDecision(
            identity=identity,
            customer_name=customer_name or latest.customer_name,
            session=session,
            is_new_session=False,
            is_new_customer=False,
            hours_inactive=hours_inactive,
            latest_conversation_id=latest.id,
        )

    def _fresh(
        self,
        identity: CustomerIdentity,
        customer_name: str | None,
        now: datetime,
        *,
        is_new_customer: bool,
        previous_sessions: tuple[schemas.PreviousSession, ...] = (),
        hours_inactive: float | None = None,
        latest_conversation_id: int | None = None,
        degraded: bool = False,
    ) -> SessionDecision:
        session = CustomerSession(
            session_id=self._id_factory(now),
            conversation_id=latest_conversation_id,
            started_at=now,
            expires_at=now + timedelta(hours=self._settings.inactivity_hours),
        )
        return SessionDecision(
            identity=identity,
            customer_name=customer_name,
            session=session,
            is_new_session=True,
            is_new_customer=is_new_customer,
            previous_sessions=previous_sessions,
            hours_inactive=hours_inactive,
            degraded=degraded,
            latest_conversation_id=latest_conversation_id,
        )

    def _previous_sessions(
        self, conversations: Sequence[schemas.ConversationDetail]
    ) -> tuple[schemas.PreviousSession, ...]:
        """Every prior session of the customer, oldest first.

        A conversation contributes the sessions already sealed on it (with
        fresh message counts) followed by the session that is ending now.
        """

        entries: list[schemas.PreviousSession] = []
        seen: set[str] = set()
        for convo in reversed(conversations):
            for sealed in convo.previous_sessions:
                if sealed.session_id in seen:
                    continue
                seen.add(sealed.session_id)
                count = self._repository.count_messages(
                    sealed.conversation_id, summary_count_token(sealed.session_id)
                )
                entries.append(sealed.model_copy(update={"message_count": count}))
            current = self._summarize(convo)
            if current.session_id not in seen:
                seen.add(current.session_id)
                entries.append(current)
        return tuple(entries)

    def _summarize(self, convo: schemas.ConversationDetail) -> schemas.PreviousSession:
        started_at = convo.session_started_at or convo.created_at
        return schemas.PreviousSession(
            session_id=convo.session_id or legacy_summary_token(convo.id),
            conversation_id=convo.id,
            started_at=started_at,
            ended_at=convo.last_message_at or started_at,
            message_count=self._repository.count_messages(convo.id, convo.session_id),
        )

    @staticmethod
    def _hours_inactive(convo: schemas.ConversationDetail, now: datetime) -> float:
        if convo.last_message_at is None:
            return math.inf
        return (now - convo.last_message_at).total_seconds() / 3600


__all__ = [
    "SessionIdFactory",
    "SessionResolver",
    "legacy_resume_token",
    "legacy_summary_token",
    "summary_count_token",
    "make_session_id",
]
