"""Pydantic schemas for customer conversations and their messages."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    WAITING = "waiting"
    RESOLVED = "resolved"
    CLOSED = "closed"
    BOT_ACTIVE = "bot_active"
    WITH_AGENT = "with_agent"
    AWAITING_AGENT = "awaiting_agent"
    ESCALATED = "escalated"


class ConversationChannel(str, Enum):
    WEBSITE = "website"
    EMAIL = "email"
    PHONE = "phone"
    SOCIAL = "social"


class SenderType(str, Enum):
    CLIENT = "client"
    CUSTOMER = "customer"
    AGENT = "agent"
    AI = "ai"
    BOT = "bot"
    SYSTEM = "system"


class MessageType(str, Enum):
    TEXT = "text"
    IMAGE = "image"
    FILE = "file"
    SYSTEM = "system"


class ViewerRole(str, Enum):
    AGENT = "agent"
    CUSTOMER = "customer"


class PreviousSession(BaseModel):
    """Sealed summary of a logical session that has ended."""

    model_config = ConfigDict(frozen=True)

    session_id: str
    conversation_id: int
    started_at: datetime
    ended_at: datetime | None = None
    message_count: int = 0


class ConversationMessage(BaseModel):
    id: int
    conversation_id: int
    session_id: str | None = None
    sender_type: SenderType
    sender_id: str | None = None
    sender_name: str | None = None
    message: str
    message_type: MessageType = MessageType.TEXT
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    read_at: datetime | None = None
    edited: bool = False
    edited_at: datetime | None = None
    created_at: datetime


class ConversationSummary(BaseModel):
    id: int
    client_id: str
    customer_email: str
    customer_name: str | None = None
    session_id: str | None = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    channel: ConversationChannel = ConversationChannel.WEBSITE
    last_message_at: datetime | None = None
    created_at: datetime


class ConversationDetail(ConversationSummary):
    subject: str = "Chat Conversation"
    session_started_at: datetime | None = None
    is_new_session: bool = True
    previous_sessions: list[PreviousSession] = Field(default_factory=list)
    assigned_to: str | None = None
    handoff_requested: bool = False
    satisfaction_rating: int | None = None
    tags: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: datetime | None = None


class StartConversationRequest(BaseModel):
    client_id: str = Field(min_length=1)
    customer_email: str = Field(min_length=3)
    customer_name: str | None = None
    channel: ConversationChannel = ConversationChannel.WEBSITE
    subject: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class CustomerSessionPayload(BaseModel):
    session_id: str
    conversation_id: int | None = None
    started_at: datetime
    expires_at: datetime


class StartConversationResponse(BaseModel):
    conversation: ConversationDetail
    session: CustomerSessionPayload
    is_new_session: bool
    is_new_customer: bool
    previous_sessions: list[PreviousSession] = Field(default_factory=list)
    degraded: bool = False


class PostMessageRequest(BaseModel):
    conversation_id: int
    message: str = Field(min_length=1)
    sender_type: SenderType = SenderType.CUSTOMER
    sender_id: str | None = None
    sender_name: str | None = None
    message_type: MessageType = MessageType.TEXT
    attachments: list[dict[str, Any]] = Field(default_factory=list)


class PostMessageResponse(BaseModel):
    message: ConversationMessage
    sentiment: dict[str, Any] | None = None
    chat_session_id: str | None = None
    escalated: bool = False


class MessageList(BaseModel):
    items: list[ConversationMessage]
    total: int
    viewer_role: ViewerRole
    session_id: str | None = None


class ConversationUpdate(BaseModel):
    status: ConversationStatus | None = None
    assigned_to: str | None = None
    satisfaction_rating: int | None = Field(default=None, ge=1, le=5)
    tags: list[str] | None = None


class ConversationHistoryItem(BaseModel):
    conversation_id: int
    session_id: str | None = None
    customer_name: str | None = None
    customer_email: str
    status: ConversationStatus
    started_at: datetime
    last_message_at: datetime | None = None
    message_count: int
    is_current: bool = False


class ConversationHistory(BaseModel):
    items: list[ConversationHistoryItem]
    total: int


class CurrentSessionStats(BaseModel):
    session_id: str | None = None
    message_count: int


class SessionSummary(BaseModel):
    customer_name: str | None = None
    customer_email: str
    current_session: CurrentSessionStats
    previous_sessions: list[PreviousSession] = Field(default_factory=list)
    total_messages: int
    total_sessions: int
