"""Service wiring shared by the HTTP routers.

With ``DATABASE_URL`` set every request gets its own psycopg connection that
is committed on success and rolled back on error. Without it the routers run
against a process-wide in-memory store, which is what the widget demo and
the API tests use.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from functools import lru_cache

import psycopg
from fastapi import HTTPException

from ..conversations.chat_session_repository import (
    ChatSessionRepository,
    InMemoryChatSessionRepository,
    PostgresChatSessionRepository,
)
from ..conversations.chat_session_service import (
    ChatSessionClosedError,
    ChatSessionNotFoundError,
    ChatSessionService,
    FeatureDisabledError,
    InvalidTransitionError,
)
from ..conversations.models import EscalationEvent
from ..conversations.notifications import (
    CompositeEscalationNotifier,
    ConversationRoutingNotifier,
    DeferredEscalationNotifier,
    EscalationNotifier,
    build_default_notifier,
)
from ..conversations.pipeline import InboundMessagePipeline
from ..conversations.repository import (
    ConversationRepository,
    InMemoryConversationRepository,
    PostgresConversationRepository,
)
from ..conversations.service import (
    ConversationNotFoundError,
    ConversationService,
    MessageNotFoundError,
)
from ..copilot import CopilotService
from ..core.clock import Clock, utcnow
from ..core.db import get_conn
from ..nlp import SentimentAnalyzer

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class SupportServices:
    conversations: ConversationService
    chat_sessions: ChatSessionService
    pipeline: InboundMessagePipeline
    outbox: DeferredEscalationNotifier | None = None

    def flush_notifications(self) -> None:
        if self.outbox is not None:
            self.outbox.flush()

    def discard_notifications(self) -> None:
        if self.outbox is not None:
            self.outbox.discard()


@lru_cache(maxsize=1)
def default_analyzer() -> SentimentAnalyzer:
    return SentimentAnalyzer()


@lru_cache(maxsize=1)
def default_copilot() -> CopilotService:
    return CopilotService.from_env()


class _SavepointNotifier:
    """Run a notifier inside a savepoint so its failure leaves the request usable."""

    def __init__(self, inner: EscalationNotifier, conn: psycopg.Connection) -> None:
        self._inner = inner
        self._conn = conn

    def notify(self, event: EscalationEvent) -> None:
        with self._conn.transaction():
            self._inner.notify(event)


def build_services(
    conversation_repository: ConversationRepository,
    chat_session_repository: ChatSessionRepository,
    *,
    clock: Clock | None = None,
    analyzer: SentimentAnalyzer | None = None,
    copilot: CopilotService | None = None,
    conn: psycopg.Connection | None = None,
    notifier: EscalationNotifier | None = None,
) -> SupportServices:
    """Assemble the conversation, chat session and pipeline services.

    ``notifier`` receives escalations outside the database (log, webhook) and
    defaults to :func:`build_default_notifier`. With ``conn`` the conversation
    handoff runs in a savepoint of the request transaction while ``notifier``
    is queued in an outbox that is flushed only after commit.
    """

    clock = clock or utcnow
    analyzer = analyzer or default_analyzer()
    conversations = ConversationService(conversation_repository, clock=clock)
    routing = ConversationRoutingNotifier(conversations)
    outbox: DeferredEscalationNotifier | None = None
    if conn is None:
        escalations: EscalationNotifier = CompositeEscalationNotifier(
            [routing, notifier or build_default_notifier()]
        )
    else:
        outbox = DeferredEscalationNotifier(notifier or build_default_notifier())
        escalations = CompositeEscalationNotifier([_SavepointNotifier(routing, conn), outbox])
    chat_sessions = ChatSessionService(
        chat_session_repository,
        analyzer=analyzer,
        notifier=escalations,
        copilot=copilot or default_copilot(),
        clock=clock,
    )
    pipeline = InboundMessagePipeline(conversations, chat_sessions, analyzer)
    return SupportServices(conversations, chat_sessions, pipeline, outbox)


_memory_lock = threading.Lock()
_memory_services: SupportServices | None = None


def in_memory_services() -> SupportServices:
    global _memory_services
    with _memory_lock:
        if _memory_services is None:
            _memory_services = build_services(
                InMemoryConversationRepository(), InMemoryChatSessionRepository()
            )
        return _memory_services


def set_in_memory_services(services: SupportServices | None) -> None:
    """Replace the process-wide in-memory services (``None`` resets them)."""

    global _memory_services
    with _memory_lock:
        _memory_services = services


@contextmanager
def translate_errors() -> Iterator[None]:
    """Map domain exceptions onto HTTP status codes."""

    try:
        yield
    except HTTPException:
        raise
    except (ConversationNotFoundError, ChatSessionNotFoundError, MessageNotFoundError) as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (ChatSessionClosedError, InvalidTransitionError) as exc:
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except FeatureDisabledError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc


def _get_conn() -> psycopg.Connection:
    try:
        return get_conn()
    except Exception as exc:  # pragma: no cover
        logger.exception("Database connection failed")
        raise HTTPException(status_code=500, detail="Database unavailable") from exc


@contextmanager
def transaction_scope(
    conn: psycopg.Connection, services: SupportServices
) -> Iterator[SupportServices]:
    """Commit or roll back ``conn`` around a request, then flush escalations.

    Queued escalation notifications leave the process only once the commit
    has succeeded; a rollback discards them.
    """

    try:
        with translate_errors():
            yield services
        conn.commit()
    except HTTPException:
        conn.rollback()
        services.discard_notifications()
        raise
    except Exception as exc:
        conn.rollback()
        services.discard_notifications()
        logger.exception("Request failed; transaction rolled back")
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    services.flush_notifications()


@contextmanager
def service_context() -> Iterator[SupportServices]:
    if not os.getenv("DATABASE_URL"):
        with translate_errors():
            yield in_memory_services()
        return

    conn = _get_conn()
    try:
        services = build_services(
            PostgresConversationRepository(conn),
            PostgresChatSessionRepository(conn),
            conn=conn,
        )
        with transaction_scope(conn, services) as scoped:
            yield scoped
    finally:
        conn.close()


__all__ = [
    "SupportServices",
    "build_services",
    "in_memory_services",
    "service_context",
    "set_in_memory_services",
    "transaction_scope",
    "translate_errors",
]
