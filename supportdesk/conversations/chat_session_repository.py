"""Repository for agent chat sessions and their messages.

Every state change is a single conditional statement so concurrent callers
cannot interleave a read and a write: counters are incremented in place,
escalation is a compare-and-set on ``status`` and ``escalation_triggered``,
and close only succeeds on a session that is not already closed.
"""

from __future__ import annotations

import itertools
import threading
from datetime import datetime
from typing import Any, Iterable, Protocol, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from . import chat_session_schemas as schemas

_SENTIMENT_COLUMNS = (
    "current_sentiment",
    "sentiment_score",
    "escalation_triggered",
    "escalation_reason",
    "escalation_timestamp",
)


class ChatSessionRepository(Protocol):
    def create_session(
        self, session_id: str, payload: schemas.ChatSessionCreate, *, started_at: datetime
    ) -> schemas.ChatSessionDetail | None: ...

    def get_session(self, session_id: str) -> schemas.ChatSessionDetail | None: ...

    def find_open_session(self, ticket_id: str, agent_id: str) -> schemas.ChatSessionDetail | None: ...

    def find_open_for_conversation(self, conversation_id: int) -> schemas.ChatSessionDetail | None: ...

    def list_open_for_agent(self, agent_id: str) -> list[schemas.ChatSessionDetail]: ...

    def add_message(
        self,
        session_id: str,
        *,
        sender_type: str,
        content: str,
        created_at: datetime,
        sender_id: str | None = None,
        sentiment: dict[str, Any] | None = None,
    ) -> schemas.ChatMessage: ...

    def list_messages(self, session_id: str, limit: int | None = None) -> list[schemas.ChatMessage]: ...

    def increment_counters(self, session_id: str, sender_type: str, *, at: datetime) -> bool: ...

    def update_sentiment(self, session_id: str, label: str, score: float, *, at: datetime) -> bool: ...

    def mark_escalated(
        self, session_id: str, reason: str, *, at: datetime
    ) -> schemas.ChatSessionDetail | None: ...

    def transition_status(
        self,
        session_id: str,
        from_statuses: Sequence[schemas.ChatSessionStatus],
        to_status: schemas.ChatSessionStatus,
        *,
        at: datetime,
    ) -> schemas.ChatSessionDetail | None: ...

    def close_session(
        self, session_id: str, *, closed_at: datetime, note: schemas.ChatSessionNote | None = None
    ) -> schemas.ChatSessionDetail | None: ...

    def save_suggestions(
        self, session_id: str, suggestions: Iterable[schemas.SuggestedResponse], *, at: datetime
    ) -> None: ...


def _hydrate_session(row: dict[str, Any]) -> schemas.ChatSessionDetail:
    data = dict(row)
    data["sentiment_analysis"] = {column: data.pop(column) for column in _SENTIMENT_COLUMNS}
    data["suggested_responses"] = data.get("suggested_responses") or []
    data["notes"] = data.get("notes") or []
    data["metadata"] = data.get("metadata") or {}
    return schemas.ChatSessionDetail(**data)


class PostgresChatSessionRepository:
    """PostgreSQL implementation of :class:`ChatSessionRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    def _fetch_session(self, query: str, params: Sequence[Any]) -> schemas.ChatSessionDetail | None:
        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return _hydrate_session(row) if row else None

    def create_session(
        self, session_id: str, payload: schemas.ChatSessionCreate, *, started_at: datetime
    ) -> schemas.ChatSessionDetail | None:
        """Insert an active session; ``None`` when the pair already has an open one."""
        return self._fetch_session(
            """
            INSERT INTO chat_sessions
                (id, ticket_id, agent_id, client_id, conversation_id, customer_name,
                 customer_email, status, ai_copilot_enabled, ai_suggestions_enabled,
                 auto_complete_enabled, metadata, started_at, created_at, updated_at)
            VALUES (%s, %s, %s, %s, %s, %s, %s, 'active', %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (ticket_id, agent_id) WHERE status IN ('active', 'on_hold') DO NOTHING
            RETURNING *
            """,
            (
                session_id,
                payload.ticket_id,
                payload.agent_id,
                payload.client_id,
                payload.conversation_id,
                payload.customer_name,
                payload.customer_email.lower() if payload.customer_email else None,
                payload.ai_copilot_enabled,
                payload.ai_suggestions_enabled,
                payload.auto_complete_enabled,
                Jsonb(payload.metadata),
                started_at,
                started_at,
                started_at,
            ),
        )

    def get_session(self, session_id: str) -> schemas.ChatSessionDetail | None:
        return self._fetch_session("SELECT * FROM chat_sessions WHERE id = %s", (session_id,))

    def find_open_session(self, ticket_id: str, agent_id: str) -> schemas.ChatSessionDetail | None:
        return self._fetch_session(
            """
            SELECT * FROM chat_sessions
            WHERE ticket_id = %s AND agent_id = %s AND status IN ('active', 'on_hold')
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (ticket_id, agent_id),
        )

    def find_open_for_conversation(self, conversation_id: int) -> schemas.ChatSessionDetail | None:
        return self._fetch_session(
            """
            SELECT * FROM chat_sessions
            WHERE conversation_id = %s AND status <> 'closed'
            ORDER BY created_at DESC
            LIMIT 1
            """,
            (conversation_id,),
        )

    def list_open_for_agent(self, agent_id: str) -> list[schemas.ChatSessionDetail]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM chat_sessions
                WHERE agent_id = %s AND status IN ('active', 'on_hold')
                ORDER BY updated_at DESC
                """,
                (agent_id,),
            )
            rows = cur.fetchall()
        return [_hydrate_session(row) for row in rows]

    def add_message(
        self,
        session_id: str,
        *,
        sender_type: str,
        content: str,
        created_at: datetime,
        sender_id: str | None = None,
        sentiment: dict[str, Any] | None = None,
    ) -> schemas.ChatMessage:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO chat_session_messages
                    (chat_session_id, sender_type, sender_id, content, sentiment, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    session_id,
                    sender_type,
                    sender_id,
                    content,
                    Jsonb(sentiment) if sentiment is not None else None,
                    created_at,
                ),
            )
            row = cur.fetchone()
        return schemas.ChatMessage(**row)

    def list_messages(self, session_id: str, limit: int | None = None) -> list[schemas.ChatMessage]:
        query = "SELECT * FROM chat_session_messages WHERE chat_session_id = %s ORDER BY created_at DESC, id DESC"
        params: list[Any] = [session_id]
        if limit is not None:
            query += " LIMIT %s"
            params.append(limit)
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.ChatMessage(**row) for row in reversed(rows)]

    def increment_counters(self, session_id: str, sender_type: str, *, at: datetime) -> bool:
        is_agent = sender_type == "agent"
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE chat_sessions
                SET total_messages = total_messages + 1,
                    agent_messages = agent_messages + %s,
                    customer_messages = customer_messages + %s,
                    updated_at = %s
                WHERE id = %s AND status <> 'closed'
                """,
                (1 if is_agent else 0, 0 if is_agent else 1, at, session_id),
            )
            return cur.rowcount > 0

    def update_sentiment(self, session_id: str, label: str, score: float, *, at: datetime) -> bool:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE chat_sessions
                SET current_sentiment = %s, sentiment_score = %s, updated_at = %s
                WHERE id = %s AND status <> 'closed'
                """,
                (label, score, at, session_id),
            )
            return cur.rowcount > 0

    def mark_escalated(
        self, session_id: str, reason: str, *, at: datetime
    ) -> schemas.ChatSessionDetail | None:
        return self._fetch_session(
            """
            UPDATE chat_sessions
            SET status = 'escalated',
                escalation_triggered = true,
                escalation_reason = %s,
                escalation_timestamp = %s,
                updated_at = %s
            WHERE id = %s
              AND status IN ('active', 'on_hold')
              AND NOT escalation_triggered
            RETURNING *
            """,
            (reason, at, at, session_id),
        )

    def transition_status(
        self,
        session_id: str,
        from_statuses: Sequence[schemas.ChatSessionStatus],
        to_status: schemas.ChatSessionStatus,
        *,
        at: datetime,
    ) -> schemas.ChatSessionDetail | None:
        return self._fetch_session(
            """
            UPDATE chat_sessions
            SET status = %s, updated_at = %s
            WHERE id = %s AND status = ANY(%s)
            RETURNING *
            """,
            (to_status.value, at, session_id, [status.value for status in from_statuses]),
        )

    def close_session(
        self, session_id: str, *, closed_at: datetime, note: schemas.ChatSessionNote | None = None
    ) -> schemas.ChatSessionDetail | None:
        notes = [note.model_dump(mode="json")] if note else []
        return self._fetch_session(
            """
            UPDATE chat_sessions
            SET status = 'closed',
                closed_at = %s,
                duration = round(extract(epoch FROM (%s - started_at)))::integer,
                notes = notes || %s,
                updated_at = %s
            WHERE id = %s AND status <> 'closed'
            RETURNING *
            """,
            (closed_at, closed_at, Jsonb(notes), closed_at, session_id),
        )

    def save_suggestions(
        self, session_id: str, suggestions: Iterable[schemas.SuggestedResponse], *, at: datetime
    ) -> None:
        payload = [suggestion.model_dump(mode="json") for suggestion in suggestions]
        with self._cursor() as cur:
            cur.execute(
                "UPDATE chat_sessions SET suggested_responses = %s, updated_at = %s WHERE id = %s",
                (Jsonb(payload), at, session_id),
            )


class InMemoryChatSessionRepository:
    """Thread-safe in-process repository; one lock serialises every mutation."""

    def __init__(self) -> None:
        self._sessions: dict[str, schemas.ChatSessionDetail] = {}
        self._messages: list[schemas.ChatMessage] = []
        self._message_ids = itertools.count(1)
        self._lock = threading.RLock()

    def create_session(
        self, session_id: str, payload: schemas.ChatSessionCreate, *, started_at: datetime
    ) -> schemas.ChatSessionDetail | None:
        data = payload.model_dump()
        if data.get("customer_email"):
            data["customer_email"] = data["customer_email"].lower()
        session = schemas.ChatSessionDetail(
            id=session_id,
            started_at=started_at,
            created_at=started_at,
            updated_at=started_at,
            **data,
        )
        with self._lock:
            if self._find_open(payload.ticket_id, payload.agent_id):
                return None
            self._sessions[session_id] = session
            return session.model_copy(deep=True)

    def get_session(self, session_id: str) -> schemas.ChatSessionDetail | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    def find_open_session(self, ticket_id: str, agent_id: str) -> schemas.ChatSessionDetail | None:
        with self._lock:
            return self._newest(self._find_open(ticket_id, agent_id))

    def _find_open(self, ticket_id: str, agent_id: str) -> list[schemas.ChatSessionDetail]:
        return [
            session
            for session in self._sessions.values()
            if session.ticket_id == ticket_id and session.agent_id == agent_id and session.is_open
        ]

    def find_open_for_conversation(self, conversation_id: int) -> schemas.ChatSessionDetail | None:
        with self._lock:
            matches = [
                session
                for session in self._sessions.values()
                if session.conversation_id == conversation_id
                and session.status is not schemas.ChatSessionStatus.CLOSED
            ]
            return self._newest(matches)

    def list_open_for_agent(self, agent_id: str) -> list[schemas.ChatSessionDetail]:
        with self._lock:
            matches = [
                session
                for session in self._sessions.values()
                if session.agent_id == agent_id and session.is_open
            ]
            matches.sort(key=lambda session: session.updated_at, reverse=True)
            return [session.model_copy(deep=True) for session in matches]

    def add_message(
        self,
        session_id: str,
        *,
        sender_type: str,
        content: str,
        created_at: datetime,
        sender_id: str | None = None,
        sentiment: dict[str, Any] | None = None,
    ) -> schemas.ChatMessage:
        with self._lock:
            message = schemas.ChatMessage(
                id=next(self._message_ids),
                chat_session_id=session_id,
                sender_type=sender_type,
                sender_id=sender_id,
                content=content,
                sentiment=sentiment,
                created_at=created_at,
            )
            self._messages.append(message)
            return message.model_copy(deep=True)

    def list_messages(self, session_id: str, limit: int | None = None) -> list[schemas.ChatMessage]:
        with self._lock:
            rows = [msg for msg in self._messages if msg.chat_session_id == session_id]
        rows.sort(key=lambda msg: (msg.created_at, msg.id))
        if limit is not None:
            rows = rows[-limit:] if limit > 0 else []
        return [msg.model_copy(deep=True) for msg in rows]

    def increment_counters(self, session_id: str, sender_type: str, *, at: datetime) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status is schemas.ChatSessionStatus.CLOSED:
                return False
            session.total_messages += 1
            if sender_type == "agent":
                session.agent_messages += 1
            else:
                session.customer_messages += 1
            session.updated_at = at
            return True

    def update_sentiment(self, session_id: str, label: str, score: float, *, at: datetime) -> bool:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status is schemas.ChatSessionStatus.CLOSED:
                return False
            session.sentiment_analysis.current_sentiment = label
            session.sentiment_analysis.sentiment_score = score
            session.updated_at = at
            return True

    def mark_escalated(
        self, session_id: str, reason: str, *, at: datetime
    ) -> schemas.ChatSessionDetail | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if (
                session is None
                or not session.is_open
                or session.sentiment_analysis.escalation_triggered
            ):
                return None
            session.status = schemas.ChatSessionStatus.ESCALATED
            session.sentiment_analysis.escalation_triggered = True
            session.sentiment_analysis.escalation_reason = reason
            session.sentiment_analysis.escalation_timestamp = at
            session.updated_at = at
            return session.model_copy(deep=True)

    def transition_status(
        self,
        session_id: str,
        from_statuses: Sequence[schemas.ChatSessionStatus],
        to_status: schemas.ChatSessionStatus,
        *,
        at: datetime,
    ) -> schemas.ChatSessionDetail | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status not in from_statuses:
                return None
            session.status = to_status
            session.updated_at = at
            return session.model_copy(deep=True)

    def close_session(
        self, session_id: str, *, closed_at: datetime, note: schemas.ChatSessionNote | None = None
    ) -> schemas.ChatSessionDetail | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or session.status is schemas.ChatSessionStatus.CLOSED:
                return None
            session.status = schemas.ChatSessionStatus.CLOSED
            session.closed_at = closed_at
            session.duration = round((closed_at - session.started_at).total_seconds())
            if note is not None:
                session.notes.append(note)
            session.updated_at = closed_at
            return session.model_copy(deep=True)

    def save_suggestions(
        self, session_id: str, suggestions: Iterable[schemas.SuggestedResponse], *, at: datetime
    ) -> None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return
            session.suggested_responses = list(suggestions)
            session.updated_at = at

    @staticmethod
    def _newest(
        sessions: list[schemas.ChatSessionDetail],
    ) -> schemas.ChatSessionDetail | None:
        if not sessions:
            return None
        newest = max(sessions, key=lambda session: session.created_at)
        return newest.model_copy(deep=True)


__all__ = [
    "ChatSessionRepository",
    "InMemoryChatSessionRepository",
    "PostgresChatSessionRepository",
]
