"""Escalation handoff notifiers.

A notifier is told about an escalation after the state change is committed
to the chat session. Failures are logged and never roll the escalation back.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from typing import TYPE_CHECKING, Protocol

import requests

from ..app_logging import current_request_id
from .models import EscalationEvent

if TYPE_CHECKING:
    from .service import ConversationService


class EscalationNotifier(Protocol):
    def notify(self, event: EscalationEvent) -> None: ...


class LoggingEscalationNotifier:
    """Write escalations to the application log."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self.logger = logger or logging.getLogger(__name__)

    def notify(self, event: EscalationEvent) -> None:
        self.logger.warning(
            "Chat session %s escalated: %s (score=%.2f, ticket=%s, agent=%s)",
            event.chat_session_id,
            event.reason,
            event.sentiment_score,
            event.ticket_id,
            event.agent_id,
        )


class WebhookEscalationNotifier:
    """POST escalation events as JSON to an external handoff endpoint."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        session: requests.Session | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        if not url:
            raise ValueError("Webhook notifier requires a URL")
        self.url = url
        self.timeout = timeout
        self.session = session or requests.Session()
        self.logger = logger or logging.getLogger(__name__)

    def notify(self, event: EscalationEvent) -> None:
        headers = {}
        request_id = current_request_id()
        if request_id:
            headers["X-Request-Id"] = request_id
        response = self.session.post(
            self.url, json=event.as_dict(), headers=headers, timeout=self.timeout
        )
        response.raise_for_status()
        self.logger.info(
            "Escalation webhook delivered for chat session %s (status %s)",
            event.chat_session_id,
            response.status_code,
        )


class ConversationRoutingNotifier:
    """Route the linked customer conversation to a human agent."""

    def __init__(self, conversations: "ConversationService") -> None:
        self._conversations = conversations

    def notify(self, event: EscalationEvent) -> None:
        if event.conversation_id is None:
            return
        self._conversations.request_handoff(event.conversation_id, reason=event.reason)


class CompositeEscalationNotifier:
    """Fan an event out to several notifiers, isolating their failures."""

    def __init__(
        self,
        notifiers: Iterable[EscalationNotifier],
        *,
        logger: logging.Logger | None = None,
    ) -> None:
        self._notifiers = list(notifiers)
        self.logger = logger or logging.getLogger(__name__)

    @property
    def notifiers(self) -> list[EscalationNotifier]:
        return list(self._notifiers)

    def notify(self, event: EscalationEvent) -> None:
        for notifier in self._notifiers:
            try:
                notifier.notify(event)
            except Exception:
                self.logger.exception(
                    "Escalation notifier %s failed for chat session %s",
                    type(notifier).__name__,
                    event.chat_session_id,
                )


class DeferredEscalationNotifier:
    """Hold events until the surrounding transaction has committed.

    ``flush`` hands the queued events to ``inner`` and ``discard`` drops them
    when the transaction rolls back.
    """

    def __init__(self, inner: EscalationNotifier) -> None:
        self._inner = inner
        self._pending: list[EscalationEvent] = []

    @property
    def pending(self) -> list[EscalationEvent]:
        return list(self._pending)

    def notify(self, event: EscalationEvent) -> None:
        self._pending.append(event)

    def flush(self) -> None:
        pending, self._pending = self._pending, []
        for event in pending:
            self._inner.notify(event)

    def discard(self) -> None:
        if self._pending:
            logging.getLogger(__name__).info(
                "Dropping %d escalation notification(s) after rollback", len(self._pending)
            )
        self._pending = []


def build_default_notifier() -> CompositeEscalationNotifier:
    """Assemble the notifiers that live outside the database.

    Logging is always enabled.
    ``ESCALATION_WEBHOOK_URL`` adds the webhook notifier with a timeout of
    ``ESCALATION_WEBHOOK_TIMEOUT`` seconds (default 5).
    """

    notifiers: list[EscalationNotifier] = [LoggingEscalationNotifier()]
    url = os.getenv("ESCALATION_WEBHOOK_URL")
    if url:
        timeout = float(os.getenv("ESCALATION_WEBHOOK_TIMEOUT", "5"))
        notifiers.append(WebhookEscalationNotifier(url, timeout=timeout))
    return CompositeEscalationNotifier(notifiers)


__all__ = [
    "CompositeEscalationNotifier",
    "ConversationRoutingNotifier",
    "DeferredEscalationNotifier",
    "EscalationNotifier",
    "LoggingEscalationNotifier",
    "WebhookEscalationNotifier",
    "build_default_notifier",
]
