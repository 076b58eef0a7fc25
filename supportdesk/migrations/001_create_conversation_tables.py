"""Create ``conversations`` and ``conversation_messages``."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_conversation_tables"
down_revision = None
branch_labels = None
depends_on = None


_TIMESTAMPTZ = sa.TIMESTAMP(timezone=True)
_JSONB = postgresql.JSONB


def _in(column: str, values: tuple[str, ...]) -> str:
    quoted = ", ".join(f"'{value}'" for value in values)
    return f"{column} IN ({quoted})"


CONVERSATION_STATUSES = (
    "active",
    "waiting",
    "resolved",
    "closed",
    "bot_active",
    "with_agent",
    "awaiting_agent",
    "escalated",
)
CHANNELS = ("website", "email", "phone", "social")
SENDER_TYPES = ("client", "customer", "agent", "ai", "bot", "system")
MESSAGE_TYPES = ("text", "image", "file", "system")


def upgrade() -> None:
    """Create conversation tables with lookup indexes."""

    op.create_table(
        "conversations",
        sa.Column("id", sa.BigInteger, sa.Identity(always=False), primary_key=True),
        sa.Column("client_id", sa.String(length=255), nullable=False),
        sa.Column("customer_email", sa.String(length=320), nullable=False),
        sa.Column("customer_name", sa.String(length=255), nullable=True),
        sa.Column("session_id", sa.String(length=128), nullable=True),
        sa.Column("session_started_at", _TIMESTAMPTZ, nullable=True),
        sa.Column("is_new_session", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column(
            "previous_sessions", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")
        ),
        sa.Column("last_message_at", _TIMESTAMPTZ, nullable=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default=sa.text("'active'")),
        sa.Column("channel", sa.String(length=32), nullable=False, server_default=sa.text("'website'")),
        sa.Column(
            "subject",
            sa.String(length=255),
            nullable=False,
            server_default=sa.text("'Chat Conversation'"),
        ),
        sa.Column("assigned_to", sa.String(length=255), nullable=True),
        sa.Column("handoff_requested", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("satisfaction_rating", sa.SmallInteger, nullable=True),
        sa.Column("tags", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("metadata", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("created_at", _TIMESTAMPTZ, nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", _TIMESTAMPTZ, nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(_in("status", CONVERSATION_STATUSES), name="ck_conversations_status"),
        sa.CheckConstraint(_in("channel", CHANNELS), name="ck_conversations_channel"),
        sa.CheckConstraint(
            "satisfaction_rating IS NULL OR satisfaction_rating BETWEEN 1 AND 5",
            name="ck_conversations_satisfaction_rating",
        ),
        sa.CheckConstraint(
            "customer_email = lower(customer_email)", name="ck_conversations_email_lowercase"
        ),
    )
    op.create_index(
        "ix_conversations_customer",
        "conversations",
        ["customer_email", "client_id", "created_at"],
    )
    op.create_index("ix_conversations_session_id", "conversations", ["session_id"])

    op.create_table(
        "conversation_messages",
        sa.Column("id", sa.BigInteger, sa.Identity(always=False), primary_key=True),
        sa.Column(
            "conversation_id",
            sa.BigInteger,
            sa.ForeignKey("conversations.id"),
            nullable=False,
        ),
        sa.Column("session_id", sa.String(length=128), nullable=True),
        sa.Column("sender_type", sa.String(length=16), nullable=False),
        sa.Column("sender_id", sa.String(length=255), nullable=True),
        sa.Column("sender_name", sa.String(length=255), nullable=True),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("message_type", sa.String(length=16), nullable=False, server_default=sa.text("'text'")),
        sa.Column("attachments", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("metadata", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("read_at", _TIMESTAMPTZ, nullable=True),
        sa.Column("edited", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column("edited_at", _TIMESTAMPTZ, nullable=True),
        sa.Column("created_at", _TIMESTAMPTZ, nullable=False, server_default=sa.text("now()")),
        sa.CheckConstraint(_in("sender_type", SENDER_TYPES), name="ck_conversation_messages_sender_type"),
        sa.CheckConstraint(
            _in("message_type", MESSAGE_TYPES), name="ck_conversation_messages_message_type"
        ),
    )
    op.create_index(
        "ix_conversation_messages_conversation_created",
        "conversation_messages",
        ["conversation_id", "created_at"],
    )
    op.create_index(
        "ix_conversation_messages_conversation_session",
        "conversation_messages",
        ["conversation_id", "session_id"],
    )


def downgrade() -> None:
    """Drop conversation tables and their indexes."""

    op.drop_index(
        "ix_conversation_messages_conversation_session", table_name="conversation_messages"
    )
    op.drop_index(
        "ix_conversation_messages_conversation_created", table_name="conversation_messages"
    )
    op.drop_table("conversation_messages")

    op.drop_index("ix_conversations_session_id", table_name="conversations")
    op.drop_index("ix_conversations_customer", table_name="conversations")
    op.drop_table("conversations")
