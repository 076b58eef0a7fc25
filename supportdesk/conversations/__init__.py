"""Customer conversations, logical sessions and agent chat sessions."""

from . import chat_session_schemas, schemas
from .models import CustomerIdentity, CustomerSession, EscalationEvent, SessionDecision
from .service import ConversationNotFoundError, ConversationService

__all__ = [
    "ConversationNotFoundError",
    "ConversationService",
    "CustomerIdentity",
    "CustomerSession",
    "EscalationEvent",
    "SessionDecision",
    "chat_session_schemas",
    "schemas",
]
