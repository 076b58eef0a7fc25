"""Customer conversation orchestration: session start, messages and summaries."""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from ..config import SessionSettings, get_session_settings
from ..core.clock import Clock, utcnow
from . import schemas
from .models import CustomerIdentity, SessionDecision
from .repository import ConversationRepository
from .session_resolver import SessionIdFactory, SessionResolver, summary_count_token
from .visibility import MessageVisibilityFilter

logger = logging.getLogger(__name__)


class ConversationNotFoundError(RuntimeError):
    """Raised when a conversation id does not exist."""


class MessageNotFoundError(RuntimeError):
    """Raised when a conversation message id does not exist."""


class ConversationService:
    """Coordinates session resolution, message storage and agent-facing views."""

    def __init__(
        self,
        repository: ConversationRepository,
        *,
        clock: Clock | None = None,
        settings: SessionSettings | None = None,
        resolver: SessionResolver | None = None,
        visibility: MessageVisibilityFilter | None = None,
        id_factory: SessionIdFactory | None = None,
    ) -> None:
        self._repository = repository
        self._clock = clock or utcnow
        self._settings = settings or get_session_settings()
        self._resolver = resolver or SessionResolver(
            repository, clock=self._clock, settings=self._settings, id_factory=id_factory
        )
        self._visibility = visibility or MessageVisibilityFilter(
            repository, clock=self._clock, settings=self._settings
        )

    @property
    def repository(self) -> ConversationRepository:
        return self._repository

    # ------------------------------------------------------------------
    # Session start

    def start_conversation(
        self, request: schemas.StartConversationRequest
    ) -> schemas.StartConversationResponse:
        """Resolve the customer's logical session and apply it.

        Resolution and the write that follows run under the per-customer lock
        so two concurrent starts for the same identity cannot both mint a
        session.
        """

        identity = CustomerIdentity.from_raw(request.customer_email, request.client_id)
        with self._repository.customer_lock(identity):
            decision = self._resolver.resolve(
                request.customer_email, request.customer_name, request.client_id
            )
            conversation = self._apply_decision(decision, request)

        session = dataclasses.replace(decision.session, conversation_id=conversation.id)
        logger.info(
            "Conversation %s for client %s: session=%s new_session=%s new_customer=%s",
            conversation.id,
            identity.client_id,
            session.session_id,
            decision.is_new_session,
            decision.is_new_customer,
        )
        return schemas.StartConversationResponse(
            conversation=conversation,
            session=session.to_payload(),
            is_new_session=decision.is_new_session,
            is_new_customer=decision.is_new_customer,
            previous_sessions=list(decision.previous_sessions),
            degraded=decision.degraded,
        )

    def _apply_decision(
        self, decision: SessionDecision, request: schemas.StartConversationRequest
    ) -> schemas.ConversationDetail:
        if decision.latest_conversation_id is None:
            return self._repository.create_conversation(
                decision.identity,
                customer_name=decision.customer_name,
                session_id=decision.session_id,
                started_at=decision.session.started_at,
                channel=request.channel.value,
                subject=request.subject,
                metadata=request.metadata,
            )
        if decision.is_new_session:
            return self._repository.rotate_session(
                decision.latest_conversation_id,
                session_id=decision.session_id,
                started_at=decision.session.started_at,
                previous_sessions=decision.previous_sessions,
                customer_name=decision.customer_name,
            )
        return self._repository.mark_session_resumed(
            decision.latest_conversation_id, customer_name=request.customer_name
        )

    # ------------------------------------------------------------------
    # Messages

    def get_conversation(self, conversation_id: int) -> schemas.ConversationDetail:
        conversation = self._repository.get_conversation(conversation_id)
        if not conversation:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def add_message(
        self,
        conversation_id: int,
        *,
        sender_type: schemas.SenderType | str,
        message: str,
        sender_id: str | None = None,
        sender_name: str | None = None,
        message_type: schemas.MessageType | str = schemas.MessageType.TEXT,
        attachments: list[dict[str, Any]] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> schemas.ConversationMessage:
        """Store a message tagged with the conversation's current session token."""

        conversation = self.get_conversation(conversation_id)
        now = self._clock()
        stored = self._repository.add_message(
            conversation_id,
            session_id=conversation.session_id,
            sender_type=schemas.SenderType(sender_type).value,
            message=message,
            created_at=now,
            sender_id=sender_id,
            sender_name=sender_name,
            message_type=schemas.MessageType(message_type).value,
            attachments=attachments,
            metadata=metadata,
        )
        self._repository.touch(conversation_id, last_message_at=now)
        return stored

    def messages_for(
        self,
        conversation_id: int,
        viewer_role: schemas.ViewerRole | str,
        session_id: str | None = None,
    ) -> schemas.MessageList:
        self.get_conversation(conversation_id)
        role = schemas.ViewerRole(viewer_role)
        items = self._visibility.messages_for(conversation_id, role, session_id)
        return schemas.MessageList(
            items=items,
            total=len(items),
            viewer_role=role,
            session_id=session_id if role is schemas.ViewerRole.CUSTOMER else None,
        )

    def mark_message_read(self, message_id: int) -> schemas.ConversationMessage:
        message = self._repository.mark_message_read(message_id, read_at=self._clock())
        if message is None:
            raise MessageNotFoundError(f"Message {message_id} not found")
        return message

    # ------------------------------------------------------------------
    # Conversation updates

    def update_conversation(
        self, conversation_id: int, update: schemas.ConversationUpdate
    ) -> schemas.ConversationDetail:
        fields = update.model_dump(mode="json", exclude_unset=True)
        updated = self._repository.update_conversation(conversation_id, fields)
        if updated is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return updated

    def request_handoff(self, conversation_id: int, reason: str | None = None) -> schemas.ConversationDetail:
        """Flag a conversation for human handling after an escalation."""

        conversation = self.get_conversation(conversation_id)
        metadata = dict(conversation.metadata)
        if reason:
            metadata["escalation_reason"] = reason
        updated = self._repository.update_conversation(
            conversation_id,
            {
                "status": schemas.ConversationStatus.ESCALATED.value,
                "handoff_requested": True,
                "metadata": metadata,
            },
        )
        if updated is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return updated

    # ------------------------------------------------------------------
    # Agent views

    def get_conversation_history(
        self, customer_email: str, client_id: str
    ) -> schemas.ConversationHistory:
        identity = CustomerIdentity.from_raw(customer_email, client_id)
        conversations = self._repository.find_by_customer(identity)
        items = [
            schemas.ConversationHistoryItem(
                conversation_id=convo.id,
                session_id=convo.session_id,
                customer_name=convo.customer_name,
                customer_email=convo.customer_email,
                status=convo.status,
                started_at=convo.created_at,
                last_message_at=convo.last_message_at,
                message_count=self._repository.count_messages(convo.id),
                is_current=index == 0,
            )
            for index, convo in enumerate(conversations)
        ]
        return schemas.ConversationHistory(items=items, total=len(items))

    def get_session_summary(self, conversation_id: int) -> schemas.SessionSummary:
        conversation = self.get_conversation(conversation_id)
        current_count = self._repository.count_messages(conversation.id, conversation.session_id)
        previous = [
            entry.model_copy(
                update={
                    "message_count": self._repository.count_messages(
                        entry.conversation_id, summary_count_token(entry.session_id)
                    )
                }
            )
            for entry in conversation.previous_sessions
        ]
        return schemas.SessionSummary(
            customer_name=conversation.customer_name,
            customer_email=conversation.customer_email,
            current_session=schemas.CurrentSessionStats(
                session_id=conversation.session_id, message_count=current_count
            ),
            previous_sessions=previous,
            total_messages=current_count + sum(entry.message_count for entry in previous),
            total_sessions=1 + len(previous),
        )


__all__ = [
    "ConversationNotFoundError",
    "ConversationService",
    "MessageNotFoundError",
]
