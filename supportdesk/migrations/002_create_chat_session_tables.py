"""Create ``chat_sessions`` and ``chat_session_messages``."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "002_create_chat_session_tables"
down_revision = "001_create_conversation_tables"
branch_labels = None
depends_on = None


_TIMESTAMPTZ = sa.TIMESTAMP(timezone=True)
_JSONB = postgresql.JSONB


def _counter(name: str) -> sa.Column:
    return sa.Column(name, sa.Integer, nullable=False, server_default=sa.text("0"))


def _flag(name: str, default: bool) -> sa.Column:
    return sa.Column(
        name, sa.Boolean, nullable=False, server_default=sa.text("true" if default else "false")
    )


def upgrade() -> None:
    """Create chat session tables.

    ``ux_chat_sessions_open_pair`` keeps at most one active or on-hold session
    per ticket and agent; inserts rely on it through ``ON CONFLICT``.
    """

    op.create_table(
        "chat_sessions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("ticket_id", sa.String(length=255), nullable=False),
        sa.Column("agent_id", sa.String(length=255), nullable=False),
        sa.Column("client_id", sa.String(length=255), nullable=True),
        sa.Column(
            "conversation_id",
            sa.BigInteger,
            sa.ForeignKey("conversations.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("customer_email", sa.String(length=320), nullable=True),
        sa.Column("status", sa.String(length=16), nullable=False, server_default=sa.text("'active'")),
        _flag("ai_copilot_enabled", True),
        _flag("ai_suggestions_enabled", True),
        _flag("auto_complete_enabled", True),
        sa.Column(
            "current_sentiment",
            sa.String(length=16),
            nullable=False,
            server_default=sa.text("'unknown'"),
        ),
        sa.Column("sentiment_score", sa.Float, nullable=False, server_default=sa.text("0")),
        _flag("escalation_triggered", False),
        sa.Column("escalation_reason", sa.Text, nullable=True),
        sa.Column("escalation_timestamp", _TIMESTAMPTZ, nullable=True),
        sa.Column(
            "suggested_responses", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        _counter("total_messages"),
        _counter("agent_messages"),
        _counter("customer_messages"),
        sa.Column("notes", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("metadata", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("started_at", _TIMESTAMPTZ, nullable=False, server_default=sa.text("now()")),
        sa.Column("closed_at", _TIMESTAMPTZ, nullable=True),
        _counter("duration"),
        sa.Column("created_at", _TIMESTAMPTZ, nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", _TIMESTAMPTZ, nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "status IN ('active', 'on_hold', 'closed', 'escalated')",
            name="ck_chat_sessions_status",
        ),
        sa.CheckConstraint(
            "current_sentiment IN ('positive', 'neutral', 'negative', 'unknown')",
            name="ck_chat_sessions_current_sentiment",
        ),
        sa.CheckConstraint(
            "sentiment_score BETWEEN -1 AND 1", name="ck_chat_sessions_sentiment_score"
        ),
        sa.CheckConstraint(
            "NOT escalation_triggered OR escalation_timestamp IS NOT NULL",
            name="ck_chat_sessions_escalation_stamped",
        ),
    )
    op.create_index("ix_chat_sessions_ticket_id", "chat_sessions", ["ticket_id"])
    op.create_index("ix_chat_sessions_agent_status", "chat_sessions", ["agent_id", "status"])
    op.create_index("ix_chat_sessions_conversation_id", "chat_sessions", ["conversation_id"])
    op.create_index(
        "ix_chat_sessions_escalation_triggered", "chat_sessions", ["escalation_triggered"]
    )
    op.create_index(
        "ux_chat_sessions_open_pair",
        "chat_sessions",
        ["ticket_id", "agent_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('active', 'on_hold')"),
    )

    op.create_table(
        "chat_session_messages",
        sa.Column("id", sa.BigInteger, sa.Identity(always=False), primary_key=True),
        sa.Column(
            "chat_session_id",
            sa.String(length=64),
            sa.ForeignKey("chat_sessions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("sender_type", sa.String(length=16), nullable=False),
        sa.Column("sender_id", sa.String(length=255), nullable=True),
        sa.Column("content", sa.Text, nullable=False),
        sa.Column("sentiment", _JSONB, nullable=True),
        sa.Column("created_at", _TIMESTAMPTZ, nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(
            "sender_type IN ('agent', 'customer')",
            name="ck_chat_session_messages_sender_type",
        ),
    )
    op.create_index(
        "ix_chat_session_messages_session_created",
        "chat_session_messages",
        ["chat_session_id", "created_at"],
    )


def downgrade() -> None:
    """Drop chat session tables and their indexes."""

    op.drop_index(
        "ix_chat_session_messages_session_created", table_name="chat_session_messages"
    )
    op.drop_table("chat_session_messages")

    op.drop_index("ux_chat_sessions_open_pair", table_name="chat_sessions")
    op.drop_index("ix_chat_sessions_escalation_triggered", table_name="chat_sessions")
    op.drop_index("ix_chat_sessions_conversation_id", table_name="chat_sessions")
    op.drop_index("ix_chat_sessions_agent_status", table_name="chat_sessions")
    op.drop_index("ix_chat_sessions_ticket_id", table_name="chat_sessions")
    op.drop_table("chat_sessions")
