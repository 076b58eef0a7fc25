"""Pydantic schemas for agent chat sessions and the copilot APIs."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class ChatSessionStatus(str, Enum):
    ACTIVE = "active"
    ON_HOLD = "on_hold"
    CLOSED = "closed"
    ESCALATED = "escalated"


OPEN_STATUSES = (ChatSessionStatus.ACTIVE, ChatSessionStatus.ON_HOLD)


class SentimentAnalysis(BaseModel):
    """Sentiment and escalation state tracked on a chat session."""

    current_sentiment: Literal["positive", "neutral", "negative", "unknown"] = "unknown"
    sentiment_score: float = Field(default=0.0, ge=-1.0, le=1.0)
    escalation_triggered: bool = False
    escalation_reason: str | None = None
    escalation_timestamp: datetime | None = None


class SuggestedResponse(BaseModel):
    id: str
    text: str
    confidence: float
    uses_count: int = 0
    created_at: datetime | None = None


class ChatSessionNote(BaseModel):
    author_id: str | None = None
    text: str
    is_internal: bool = True
    created_at: datetime


class ChatMessage(BaseModel):
    """A single message exchanged inside a chat session."""

    id: int
    chat_session_id: str
    sender_type: Literal["agent", "customer"]
    sender_id: str | None = None
    content: str
    sentiment: dict[str, Any] | None = None
    created_at: datetime


class ChatSessionDetail(BaseModel):
    id: str
    ticket_id: str
    agent_id: str
    client_id: str | None = None
    conversation_id: int | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    status: ChatSessionStatus = ChatSessionStatus.ACTIVE
    ai_copilot_enabled: bool = True
    ai_suggestions_enabled: bool = True
    auto_complete_enabled: bool = True
    sentiment_analysis: SentimentAnalysis = Field(default_factory=SentimentAnalysis)
    suggested_responses: list[SuggestedResponse] = Field(default_factory=list)
    total_messages: int = 0
    agent_messages: int = 0
    customer_messages: int = 0
    notes: list[ChatSessionNote] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    started_at: datetime
    closed_at: datetime | None = None
    duration: int = 0
    created_at: datetime
    updated_at: datetime

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_STATUSES


class ChatSessionCreate(BaseModel):
    """Request to open (or reuse) the chat session for a ticket and agent."""

    ticket_id: str = Field(min_length=1)
    agent_id: str = Field(min_length=1)
    client_id: str | None = None
    conversation_id: int | None = None
    customer_name: str | None = None
    customer_email: str | None = None
    ai_copilot_enabled: bool = True
    ai_suggestions_enabled: bool = True
    auto_complete_enabled: bool = True
    metadata: dict[str, Any] = Field(default_factory=dict)


class AddMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    sender_type: Literal["agent", "customer"]
    sender_id: str | None = None
    analyze_sentiment: bool = True

    @field_validator("content")
    @classmethod
    def _strip_content(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("content must not be blank")
        return stripped


class AddMessageResponse(BaseModel):
    message: ChatMessage
    sentiment_analysis: SentimentAnalysis | None = None
    escalated: bool = False
    session: ChatSessionDetail


class CloseSessionRequest(BaseModel):
    notes: str | None = None
    author_id: str | None = None


class ActiveSessionList(BaseModel):
    agent_id: str
    active_sessions: list[ChatSessionDetail]
    count: int


class ResponseSuggestionRequest(BaseModel):
    message: str = Field(min_length=1)


class ResponseSuggestionList(BaseModel):
    session_id: str
    suggestions: list[SuggestedResponse]


class AutoCompleteRequest(BaseModel):
    current_text: str = Field(min_length=1)


class Completion(BaseModel):
    id: str
    text: str
    confidence: float


class AutoCompleteResponse(BaseModel):
    session_id: str
    partial_text: str
    completions: list[Completion]


class PhraseSuggestion(BaseModel):
    id: str
    text: str
    category: str
    uses_count: int = 0


class CommonPhraseList(BaseModel):
    session_id: str
    context: str
    phrases: list[PhraseSuggestion]


class ChatSummaryResponse(BaseModel):
    session_id: str
    summary: str
    message_count: int
