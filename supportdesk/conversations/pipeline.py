"""Inbound message composition: analyse, apply escalation, then store."""

from __future__ import annotations

import logging
from typing import Any

from ..nlp import SentimentAnalyzer, SentimentResult
from . import chat_session_schemas, schemas
from .chat_session_service import ChatSessionClosedError, ChatSessionService
from .models import InboundResult, MessageOutcome
from .service import ConversationService

logger = logging.getLogger(__name__)

_CUSTOMER_SENDERS = frozenset({schemas.SenderType.CUSTOMER, schemas.SenderType.CLIENT})


class InboundMessagePipeline:
    """Runs every widget message through sentiment and escalation before storage.

    Customer messages are scored once; the score is written onto the open chat
    session linked to the conversation (which may escalate it) and snapshotted
    into the stored message's metadata. Agent messages only bump the chat
    session counters. Bot, AI and system messages are stored as-is.
    """

    def __init__(
        self,
        conversations: ConversationService,
        chat_sessions: ChatSessionService,
        analyzer: SentimentAnalyzer | None = None,
    ) -> None:
        self._conversations = conversations
        self._chat_sessions = chat_sessions
        self._analyzer = analyzer or chat_sessions.analyzer

    def handle(self, request: schemas.PostMessageRequest) -> InboundResult:
        conversation = self._conversations.get_conversation(request.conversation_id)
        is_customer = request.sender_type in _CUSTOMER_SENDERS

        sentiment = self._analyzer.analyze(request.message) if is_customer else None
        outcome = None
        if is_customer or request.sender_type is schemas.SenderType.AGENT:
            outcome = self._record_on_chat_session(
                conversation.id,
                "customer" if is_customer else "agent",
                request,
                sentiment,
            )

        metadata: dict[str, Any] = {}
        if sentiment is not None:
            metadata["sentiment"] = sentiment.as_dict()
        if outcome is not None and outcome.event is not None:
            metadata["escalation"] = {
                "chat_session_id": outcome.chat_session_id,
                "reason": outcome.event.reason,
            }

        message = self._conversations.add_message(
            conversation.id,
            sender_type=request.sender_type,
            message=request.message,
            sender_id=request.sender_id,
            sender_name=request.sender_name or ("Customer" if is_customer else None),
            message_type=request.message_type,
            attachments=request.attachments,
            metadata=metadata,
        )
        return InboundResult(message=message, sentiment=sentiment, outcome=outcome, metadata=metadata)

    def handle_chat_message(
        self, session_id: str, request: chat_session_schemas.AddMessageRequest
    ) -> chat_session_schemas.AddMessageResponse:
        """Record an agent-console message and mirror it into the linked conversation."""

        response = self._chat_sessions.record_message(
            session_id,
            request.sender_type,
            request.content,
            sender_id=request.sender_id,
            analyze_sentiment=request.analyze_sentiment,
        )
        conversation_id = response.session.conversation_id
        if conversation_id is not None:
            metadata = {"chat_session_id": session_id}
            if response.message.sentiment is not None:
                metadata["sentiment"] = response.message.sentiment
            self._conversations.add_message(
                conversation_id,
                sender_type=request.sender_type,
                message=request.content,
                sender_id=request.sender_id,
                metadata=metadata,
            )
        return response

    def _record_on_chat_session(
        self,
        conversation_id: int,
        sender_type: str,
        request: schemas.PostMessageRequest,
        sentiment: SentimentResult | None,
    ) -> MessageOutcome | None:
        chat_session = self._chat_sessions.find_for_conversation(conversation_id)
        if chat_session is None:
            return None
        try:
            _, outcome = self._chat_sessions.record_with_outcome(
                chat_session.id,
                sender_type,
                request.message,
                sender_id=request.sender_id,
                sentiment=sentiment,
            )
        except ChatSessionClosedError:
            logger.info(
                "Chat session %s closed before message for conversation %s was recorded",
                chat_session.id,
                conversation_id,
            )
            return None
        return outcome


__all__ = ["InboundMessagePipeline"]
