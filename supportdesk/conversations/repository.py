"""Persistence for customer conversations and their messages."""
from __future__ import annotations

import itertools
import threading
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Protocol, Sequence

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from . import schemas
from .models import CustomerIdentity

UPDATABLE_FIELDS = frozenset(
    {"status", "assigned_to", "satisfaction_rating", "tags", "handoff_requested", "metadata"}
)
_JSON_FIELDS = frozenset({"tags", "metadata"})


class ConversationRepository(Protocol):
    """Abstraction for persisting conversations and messages."""

    def customer_lock(self, identity: CustomerIdentity) -> Any: ...

    def find_by_customer(self, identity: CustomerIdentity) -> List[schemas.ConversationDetail]: ...

    def get_conversation(self, conversation_id: int) -> Optional[schemas.ConversationDetail]: ...

    def create_conversation(
        self,
        identity: CustomerIdentity,
        *,
        customer_name: Optional[str],
        session_id: str,
        started_at: datetime,
        channel: str = "website",
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.ConversationDetail: ...

    def rotate_session(
        self,
        conversation_id: int,
        *,
        session_id: str,
        started_at: datetime,
        previous_sessions: Sequence[schemas.PreviousSession],
        customer_name: Optional[str] = None,
    ) -> schemas.ConversationDetail: ...

    def mark_session_resumed(
        self, conversation_id: int, *, customer_name: Optional[str] = None
    ) -> schemas.ConversationDetail: ...

    def add_message(
        self,
        conversation_id: int,
        *,
        session_id: Optional[str],
        sender_type: str,
        message: str,
        created_at: datetime,
        sender_id: Optional[str] = None,
        sender_name: Optional[str] = None,
        message_type: str = "text",
        attachments: Optional[List[Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.ConversationMessage: ...

    def touch(self, conversation_id: int, *, last_message_at: datetime) -> None: ...

    def count_messages(self, conversation_id: int, session_id: Optional[str] = None) -> int: ...

    def list_messages(
        self,
        conversation_id: int,
        *,
        session_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[schemas.ConversationMessage]: ...

    def update_conversation(
        self, conversation_id: int, fields: Dict[str, Any]
    ) -> Optional[schemas.ConversationDetail]: ...

    def mark_message_read(
        self, message_id: int, *, read_at: datetime
    ) -> Optional[schemas.ConversationMessage]: ...


def _new_previous(
    existing: Sequence[schemas.PreviousSession],
    candidates: Sequence[schemas.PreviousSession],
) -> List[schemas.PreviousSession]:
    recorded = {entry.session_id for entry in existing}
    fresh: List[schemas.PreviousSession] = []
    for entry in candidates:
        if entry.session_id in recorded:
            continue
        recorded.add(entry.session_id)
        fresh.append(entry)
    return fresh


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`."""

    def __init__(self, conn: psycopg.Connection) -> None:
        self._conn = conn

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return self._conn.cursor(row_factory=dict_row)

    @contextmanager
    def customer_lock(self, identity: CustomerIdentity) -> Iterator[None]:
        # Transaction scoped: released on commit or rollback.
        with self._cursor() as cur:
            cur.execute("SELECT pg_advisory_xact_lock(hashtextextended(%s, 0))", (identity.key,))
        yield

    # Conversation operations --------------------------------------------------
    def find_by_customer(self, identity: CustomerIdentity) -> List[schemas.ConversationDetail]:
        with self._conn.transaction():
            with self._cursor() as cur:
                cur.execute(
                    """
                    SELECT * FROM conversations
                    WHERE customer_email = %s AND client_id = %s
                    ORDER BY created_at DESC, id DESC
                    """,
                    (identity.email, identity.client_id),
                )
                rows = cur.fetchall()
        return [self._hydrate_conversation(row) for row in rows]

    def get_conversation(self, conversation_id: int) -> Optional[schemas.ConversationDetail]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM conversations WHERE id = %s", (conversation_id,))
            row = cur.fetchone()
        if not row:
            return None
        return self._hydrate_conversation(row)

    def create_conversation(
        self,
        identity: CustomerIdentity,
        *,
        customer_name: Optional[str],
        session_id: str,
        started_at: datetime,
        channel: str = "website",
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.ConversationDetail:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations
                    (client_id, customer_email, customer_name, session_id, session_started_at,
                     is_new_session, previous_sessions, last_message_at, channel, subject,
                     metadata, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, true, '[]'::jsonb, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    identity.client_id,
                    identity.email,
                    customer_name,
                    session_id,
                    started_at,
                    started_at,
                    channel,
                    subject or "Chat Conversation",
                    Jsonb(metadata or {}),
                    started_at,
                    started_at,
                ),
            )
            row = cur.fetchone()
        return self._hydrate_conversation(row)

    def rotate_session(
        self,
        conversation_id: int,
        *,
        session_id: str,
        started_at: datetime,
        previous_sessions: Sequence[schemas.PreviousSession],
        customer_name: Optional[str] = None,
    ) -> schemas.ConversationDetail:
        current = self.get_conversation(conversation_id)
        if current is None:
            raise LookupError(f"Conversation {conversation_id} not found")
        fresh = _new_previous(current.previous_sessions, previous_sessions)
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET session_id = %s,
                    session_started_at = %s,
                    is_new_session = true,
                    previous_sessions = previous_sessions || %s,
                    last_message_at = %s,
                    customer_name = coalesce(%s, customer_name),
                    updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (
                    session_id,
                    started_at,
                    Jsonb([entry.model_dump(mode="json") for entry in fresh]),
                    started_at,
                    customer_name,
                    started_at,
                    conversation_id,
                ),
            )
            row = cur.fetchone()
        return self._hydrate_conversation(row)

    def mark_session_resumed(
        self, conversation_id: int, *, customer_name: Optional[str] = None
    ) -> schemas.ConversationDetail:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET is_new_session = false,
                    customer_name = coalesce(%s, customer_name),
                    updated_at = now()
                WHERE id = %s
                RETURNING *
                """,
                (customer_name, conversation_id),
            )
            row = cur.fetchone()
        if not row:
            raise LookupError(f"Conversation {conversation_id} not found")
        return self._hydrate_conversation(row)

    def add_message(
        self,
        conversation_id: int,
        *,
        session_id: Optional[str],
        sender_type: str,
        message: str,
        created_at: datetime,
        sender_id: Optional[str] = None,
        sender_name: Optional[str] = None,
        message_type: str = "text",
        attachments: Optional[List[Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.ConversationMessage:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversation_messages
                    (conversation_id, session_id, sender_type, sender_id, sender_name,
                     message, message_type, attachments, metadata, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (
                    conversation_id,
                    session_id,
                    sender_type,
                    sender_id,
                    sender_name,
                    message,
                    message_type,
                    Jsonb(attachments or []),
                    Jsonb(metadata or {}),
                    created_at,
                ),
            )
            row = cur.fetchone()
        return schemas.ConversationMessage(**row)

    def touch(self, conversation_id: int, *, last_message_at: datetime) -> None:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET last_message_at = greatest(coalesce(last_message_at, %s), %s), updated_at = %s
                WHERE id = %s
                """,
                (last_message_at, last_message_at, last_message_at, conversation_id),
            )

    def count_messages(self, conversation_id: int, session_id: Optional[str] = None) -> int:
        query = "SELECT COUNT(*) AS total FROM conversation_messages WHERE conversation_id = %s"
        params: List[Any] = [conversation_id]
        if session_id is not None:
            query += " AND session_id = %s"
            params.append(session_id)
        with self._conn.transaction():
            with self._cursor() as cur:
                cur.execute(query, params)
                row = cur.fetchone()
        return int(row["total"]) if row else 0

    def list_messages(
        self,
        conversation_id: int,
        *,
        session_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[schemas.ConversationMessage]:
        clauses = ["conversation_id = %s"]
        params: List[Any] = [conversation_id]
        if session_id is not None:
            clauses.append("session_id = %s")
            params.append(session_id)
        if since is not None:
            clauses.append("created_at >= %s")
            params.append(since)
        query = (
            "SELECT * FROM conversation_messages WHERE "
            f"{' AND '.join(clauses)} "
            "ORDER BY created_at ASC, id ASC"
        )
        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()
        return [schemas.ConversationMessage(**row) for row in rows]

    def update_conversation(
        self, conversation_id: int, fields: Dict[str, Any]
    ) -> Optional[schemas.ConversationDetail]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported conversation fields: {', '.join(sorted(unknown))}")
        if not fields:
            return self.get_conversation(conversation_id)
        assignments: List[str] = []
        values: List[Any] = []
        for name, value in fields.items():
            assignments.append(f"{name} = %s")
            values.append(Jsonb(value) if name in _JSON_FIELDS else value)
        values.append(conversation_id)
        query = (
            "UPDATE conversations SET "
            f"{', '.join(assignments)}, updated_at = now() "
            "WHERE id = %s RETURNING *"
        )
        with self._conn.transaction():
            with self._cursor() as cur:
                cur.execute(query, values)
                row = cur.fetchone()
        if not row:
            return None
        return self._hydrate_conversation(row)

    def mark_message_read(
        self, message_id: int, *, read_at: datetime
    ) -> Optional[schemas.ConversationMessage]:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversation_messages
                SET read_at = coalesce(read_at, %s)
                WHERE id = %s
                RETURNING *
                """,
                (read_at, message_id),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.ConversationMessage(**row)

    # Helpers ------------------------------------------------------------------
    def _hydrate_conversation(self, row: Dict[str, Any]) -> schemas.ConversationDetail:
        data = dict(row)
        data["previous_sessions"] = data.get("previous_sessions") or []
        data["tags"] = data.get("tags") or []
        data["metadata"] = data.get("metadata") or {}
        return schemas.ConversationDetail(**data)


class InMemoryConversationRepository:
    """Process-local repository used by tests and database-less deployments."""

    def __init__(self) -> None:
        self._conversations: Dict[int, schemas.ConversationDetail] = {}
        self._messages: Dict[int, schemas.ConversationMessage] = {}
        self._conversation_ids = itertools.count(1)
        self._message_ids = itertools.count(1)
        self._store_lock = threading.RLock()
        self._locks_guard = threading.Lock()
        self._customer_locks: Dict[str, threading.Lock] = {}
        self.fail_lookups = False

    @contextmanager
    def customer_lock(self, identity: CustomerIdentity) -> Iterator[None]:
        with self._locks_guard:
            lock = self._customer_locks.setdefault(identity.key, threading.Lock())
        with lock:
            yield

    def find_by_customer(self, identity: CustomerIdentity) -> List[schemas.ConversationDetail]:
        if self.fail_lookups:
            raise ConnectionError("conversation store unavailable")
        with self._store_lock:
            matches = [
                convo
                for convo in self._conversations.values()
                if convo.customer_email == identity.email and convo.client_id == identity.client_id
            ]
            matches.sort(key=lambda convo: (convo.created_at, convo.id), reverse=True)
            return [convo.model_copy(deep=True) for convo in matches]

    def get_conversation(self, conversation_id: int) -> Optional[schemas.ConversationDetail]:
        with self._store_lock:
            convo = self._conversations.get(conversation_id)
            return convo.model_copy(deep=True) if convo else None

    def create_conversation(
        self,
        identity: CustomerIdentity,
        *,
        customer_name: Optional[str],
        session_id: str,
        started_at: datetime,
        channel: str = "website",
        subject: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.ConversationDetail:
        with self._store_lock:
            convo = schemas.ConversationDetail(
                id=next(self._conversation_ids),
                client_id=identity.client_id,
                customer_email=identity.email,
                customer_name=customer_name,
                session_id=session_id,
                session_started_at=started_at,
                is_new_session=True,
                last_message_at=started_at,
                channel=channel,
                subject=subject or "Chat Conversation",
                metadata=dict(metadata or {}),
                created_at=started_at,
                updated_at=started_at,
            )
            self._conversations[convo.id] = convo
            return convo.model_copy(deep=True)

    def rotate_session(
        self,
        conversation_id: int,
        *,
        session_id: str,
        started_at: datetime,
        previous_sessions: Sequence[schemas.PreviousSession],
        customer_name: Optional[str] = None,
    ) -> schemas.ConversationDetail:
        with self._store_lock:
            convo = self._require(conversation_id)
            fresh = _new_previous(convo.previous_sessions, previous_sessions)
            convo.previous_sessions = [*convo.previous_sessions, *fresh]
            convo.session_id = session_id
            convo.session_started_at = started_at
            convo.is_new_session = True
            convo.last_message_at = started_at
            convo.customer_name = customer_name or convo.customer_name
            convo.updated_at = started_at
            return convo.model_copy(deep=True)

    def mark_session_resumed(
        self, conversation_id: int, *, customer_name: Optional[str] = None
    ) -> schemas.ConversationDetail:
        with self._store_lock:
            convo = self._require(conversation_id)
            convo.is_new_session = False
            convo.customer_name = customer_name or convo.customer_name
            return convo.model_copy(deep=True)

    def add_message(
        self,
        conversation_id: int,
        *,
        session_id: Optional[str],
        sender_type: str,
        message: str,
        created_at: datetime,
        sender_id: Optional[str] = None,
        sender_name: Optional[str] = None,
        message_type: str = "text",
        attachments: Optional[List[Dict[str, Any]]] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> schemas.ConversationMessage:
        with self._store_lock:
            self._require(conversation_id)
            stored = schemas.ConversationMessage(
                id=next(self._message_ids),
                conversation_id=conversation_id,
                session_id=session_id,
                sender_type=sender_type,
                sender_id=sender_id,
                sender_name=sender_name,
                message=message,
                message_type=message_type,
                attachments=list(attachments or []),
                metadata=dict(metadata or {}),
                created_at=created_at,
            )
            self._messages[stored.id] = stored
            return stored.model_copy(deep=True)

    def touch(self, conversation_id: int, *, last_message_at: datetime) -> None:
        with self._store_lock:
            convo = self._require(conversation_id)
            if convo.last_message_at is None or last_message_at > convo.last_message_at:
                convo.last_message_at = last_message_at
            convo.updated_at = last_message_at

    def count_messages(self, conversation_id: int, session_id: Optional[str] = None) -> int:
        with self._store_lock:
            return sum(
                1
                for msg in self._messages.values()
                if msg.conversation_id == conversation_id
                and (session_id is None or msg.session_id == session_id)
            )

    def list_messages(
        self,
        conversation_id: int,
        *,
        session_id: Optional[str] = None,
        since: Optional[datetime] = None,
    ) -> List[schemas.ConversationMessage]:
        with self._store_lock:
            rows = [
                msg
                for msg in self._messages.values()
                if msg.conversation_id == conversation_id
                and (session_id is None or msg.session_id == session_id)
                and (since is None or msg.created_at >= since)
            ]
            rows.sort(key=lambda msg: (msg.created_at, msg.id))
            return [msg.model_copy(deep=True) for msg in rows]

    def update_conversation(
        self, conversation_id: int, fields: Dict[str, Any]
    ) -> Optional[schemas.ConversationDetail]:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Unsupported conversation fields: {', '.join(sorted(unknown))}")
        with self._store_lock:
            convo = self._conversations.get(conversation_id)
            if convo is None:
                return None
            data = convo.model_dump()
            data.update(fields)
            updated = schemas.ConversationDetail.model_validate(data)
            self._conversations[conversation_id] = updated
            return updated.model_copy(deep=True)

    def mark_message_read(
        self, message_id: int, *, read_at: datetime
    ) -> Optional[schemas.ConversationMessage]:
        with self._store_lock:
            msg = self._messages.get(message_id)
            if msg is None:
                return None
            if msg.read_at is None:
                msg.read_at = read_at
            return msg.model_copy(deep=True)

    def _require(self, conversation_id: int) -> schemas.ConversationDetail:
        convo = self._conversations.get(conversation_id)
        if convo is None:
            raise LookupError(f"Conversation {conversation_id} not found")
        return convo


__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "PostgresConversationRepository",
    "UPDATABLE_FIELDS",
]
