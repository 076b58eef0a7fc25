import os

import psycopg
import pytest

from supportdesk.core import db


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, statement, params=None):
        self.conn.statements.append((" ".join(str(statement).split()), params))

    def fetchall(self):
        return [(migration_id,) for migration_id in self.conn.applied]


class FakeConnection:
    def __init__(self, applied=()):
        self.statements = []
        self.applied = list(applied)
        self.commits = 0
        self.rollbacks = 0

    def cursor(self):
        return FakeCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        self.rollbacks += 1

    def sql(self):
        return [statement for statement, _ in self.statements]


def test_ensure_schema_applies_migrations_in_order():
    conn = FakeConnection()

    applied = db.ensure_schema(conn)

    assert applied == ["001_create_conversation_tables", "002_create_chat_session_tables"]
    sql = conn.sql()
    conversations = next(i for i, s in enumerate(sql) if "CREATE TABLE IF NOT EXISTS conversations" in s)
    chat_sessions = next(i for i, s in enumerate(sql) if "CREATE TABLE IF NOT EXISTS chat_sessions" in s)
    assert conversations < chat_sessions
    recorded = [params for statement, params in conn.statements if statement.startswith("INSERT INTO")]
    assert recorded == [("001_create_conversation_tables",), ("002_create_chat_session_tables",)]


def test_chat_sessions_have_single_open_session_per_ticket_and_agent():
    conn = FakeConnection()

    db.ensure_schema(conn)

    index = next(s for s in conn.sql() if "ux_chat_sessions_open_pair" in s)
    assert index.startswith("CREATE UNIQUE INDEX IF NOT EXISTS ux_chat_sessions_open_pair")
    assert "(ticket_id, agent_id)" in index
    assert "WHERE status IN ('active', 'on_hold')" in index


def test_conversation_constraints_are_created():
    conn = FakeConnection()

    db.ensure_schema(conn)

    table = next(s for s in conn.sql() if "CREATE TABLE IF NOT EXISTS conversations" in s)
    assert "ck_conversations_satisfaction_rating" in table
    assert "GENERATED BY DEFAULT AS IDENTITY" in table
    messages = next(s for s in conn.sql() if "CREATE TABLE IF NOT EXISTS conversation_messages" in s)
    assert "REFERENCES conversations (id)" in messages


def test_applied_migrations_are_skipped():
    conn = FakeConnection(applied=["001_create_conversation_tables", "002_create_chat_session_tables"])

    assert db.ensure_schema(conn) == []
    assert not any("CREATE TABLE IF NOT EXISTS conversations" in s for s in conn.sql())


def test_get_conn_requires_database_url(monkeypatch):
    monkeypatch.delenv("DATABASE_URL", raising=False)

    with pytest.raises(RuntimeError):
        db.get_conn()


def test_ensure_schema_against_postgres():
    url = os.getenv("DATABASE_URL")
    if not url:
        pytest.skip("database not available")
    try:
        conn = psycopg.connect(url)
    except Exception:
        pytest.skip("database not available")
    with conn:
        db.ensure_schema(conn)
        with conn.cursor() as cur:
            cur.execute("SELECT to_regclass('chat_sessions'), to_regclass('conversations')")
            assert all(cur.fetchone())
