"""Agent copilot: reply suggestions, auto-complete, phrase catalogue and summaries.

When ``OPENAI_API_KEY`` is set the copilot prompts an OpenAI chat model;
otherwise (or when a call fails) it answers with deterministic templates so
agents keep working in development and CI without network access.
"""

from __future__ import annotations

import logging
import os
import re
from collections.abc import Sequence
from typing import Any

from langdetect import DetectorFactory, LangDetectException, detect
from openai import OpenAI

from .conversations.chat_session_schemas import (
    ChatMessage,
    Completion,
    PhraseSuggestion,
    SuggestedResponse,
)
from .core.clock import Clock, utcnow

logger = logging.getLogger(__name__)

DetectorFactory.seed = 0

MAX_SUGGESTIONS = 3
MAX_COMPLETIONS = 5
HISTORY_WINDOW = 5
SUGGESTION_CONFIDENCE = (0.9, 0.85, 0.8)
COMPLETION_CONFIDENCE = (0.85, 0.82, 0.8, 0.78, 0.75)

COMMON_PHRASES: dict[str, list[str]] = {
    "greeting": [
        "Hello! Thank you for contacting us.",
        "Hi there! How can I help you today?",
        "Greetings! I'm here to assist you.",
    ],
    "acknowledgment": [
        "I understand your concern.",
        "Thank you for bringing this to our attention.",
        "I appreciate you providing those details.",
    ],
    "explanation": [
        "Let me explain what's happening.",
        "Here's what I found regarding your issue:",
        "Based on your description, here's what I recommend:",
    ],
    "solution": [
        "To resolve this, please try the following steps:",
        "Here's how we can fix this:",
        "The solution is straightforward:",
    ],
    "closing": [
        "Is there anything else I can help you with?",
        "Please let me know if you need further assistance.",
        "Feel free to reach out if you have any other questions.",
    ],
    "escalation": [
        "I understand this needs immediate attention. Let me escalate this to our specialist team.",
        "This requires expert assistance. I'm connecting you with our senior support team.",
        "Based on the complexity, I'm escalating this to ensure you get the best resolution.",
    ],
}
PHRASE_CONTEXTS = tuple(COMMON_PHRASES)

_RESPONSE_PATTERN = re.compile(r"RESPONSE\s*\d+\s*:(.+?)(?=RESPONSE\s*\d+\s*:|$)", re.S | re.I)
_COMPLETION_PATTERN = re.compile(
    r"COMPLETION\s*\d+\s*:(.+?)(?=COMPLETION\s*\d+\s*:|$)", re.S | re.I
)

_FALLBACK_COMPLETIONS = (
    " and I will get back to you shortly.",
    ". Please let me know if you have any questions.",
    ". Thank you for your patience.",
)


def common_phrase_suggestions(context: str = "general") -> list[PhraseSuggestion]:
    """Return the canned phrases for ``context`` (greetings when unknown)."""

    phrases = COMMON_PHRASES.get(context, COMMON_PHRASES["greeting"])
    return [
        PhraseSuggestion(id=f"phrase_{context}_{idx}", text=text, category=context)
        for idx, text in enumerate(phrases)
    ]


def parse_numbered(text: str, pattern: re.Pattern[str]) -> list[str]:
    return [match.strip() for match in pattern.findall(text or "") if match.strip()]


def build_openai_client() -> Any | None:
    if not os.getenv("OPENAI_API_KEY"):
        return None
    return OpenAI()


class CopilotService:
    """Generates assistive content for agents working a chat session."""

    def __init__(
        self,
        client: Any | None = None,
        *,
        model: str | None = None,
        lang: str | None = None,
        system_prompt: str | None = None,
        brand_name: str | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._client = client
        self._model = model or "gpt-3.5-turbo"
        self._lang = lang
        self._system_prompt = system_prompt
        self._brand_name = brand_name
        self._clock = clock or utcnow

    @classmethod
    def from_env(cls, clock: Clock | None = None) -> "CopilotService":
        return cls(
            build_openai_client(),
            model=os.getenv("OPENAI_MODEL", "gpt-3.5-turbo"),
            lang=os.getenv("OPENAI_LANG") or None,
            system_prompt=os.getenv("SYSTEM_PROMPT") or None,
            brand_name=os.getenv("BRAND_NAME") or None,
            clock=clock,
        )

    @property
    def uses_llm(self) -> bool:
        return self._client is not None

    # ------------------------------------------------------------------

    def suggest_responses(
        self, message: str, history: Sequence[ChatMessage] = ()
    ) -> list[SuggestedResponse]:
        context = "\n".join(f"{msg.sender_type}: {msg.content}" for msg in history[-HISTORY_WINDOW:])
        prompt = (
            f"Recent conversation:\n{context}\n\n"
            f'Customer\'s last message: "{message}"\n\n'
            "Generate 3 different response options the agent could send. Each response "
            "should be professional, helpful and based on the context.\n"
            "Format:\nRESPONSE 1: [response text]\nRESPONSE 2: [response text]\n"
            "RESPONSE 3: [response text]"
        )
        texts = parse_numbered(self._complete(prompt, message) or "", _RESPONSE_PATTERN)
        if not texts:
            texts = self._fallback_responses(message)
        now = self._clock()
        stamp = int(now.timestamp() * 1000)
        return [
            SuggestedResponse(
                id=f"suggestion_{stamp}_{idx}",
                text=text,
                confidence=SUGGESTION_CONFIDENCE[idx],
                created_at=now,
            )
            for idx, text in enumerate(texts[:MAX_SUGGESTIONS])
        ]

    def auto_complete(self, current_text: str) -> list[Completion]:
        prompt = (
            f'Based on this partial support response: "{current_text}"\n\n'
            "Provide 3-5 natural completions that would finish this message professionally. "
            "Return ONLY the completion text without the original partial message.\n"
            "Format:\nCOMPLETION 1: [completion text]\nCOMPLETION 2: [completion text]"
        )
        endings = parse_numbered(self._complete(prompt, current_text) or "", _COMPLETION_PATTERN)
        if endings:
            endings = [ending if ending[0] in ".,!?" else f" {ending}" for ending in endings]
        else:
            endings = list(_FALLBACK_COMPLETIONS)
        base = current_text.rstrip()
        return [
            Completion(id=f"completion_{idx}", text=base + ending, confidence=COMPLETION_CONFIDENCE[idx])
            for idx, ending in enumerate(endings[:MAX_COMPLETIONS])
        ]

    def summarize(self, messages: Sequence[ChatMessage]) -> str:
        if not messages:
            return "No messages exchanged yet."
        transcript = "\n".join(
            f"{'Agent' if msg.sender_type == 'agent' else 'Customer'}: {msg.content}"
            for msg in messages
        )
        prompt = (
            "Summarize this customer support conversation in 3-4 bullet points covering "
            "the main issue, the solution provided and the current status.\n\n"
            f"Conversation:\n{transcript}"
        )
        summary = self._complete(prompt, transcript)
        if summary:
            return summary.strip()
        return self._fallback_summary(messages)

    # ------------------------------------------------------------------

    def _lang_instruction(self, sample: str) -> str:
        lang = self._lang
        if not lang:
            try:
                lang = detect(sample)
            except LangDetectException:
                lang = None
        return f"Reply in {lang}." if lang else "Reply in the same language as the customer."

    def _complete(self, prompt: str, sample: str) -> str | None:
        if self._client is None:
            return None
        base_prompt = "You are an AI assistant helping a customer support agent."
        if self._brand_name:
            base_prompt = f"{base_prompt} The agent works for {self._brand_name}."
        system_prompt = f"{self._system_prompt} {base_prompt}" if self._system_prompt else base_prompt
        system_prompt = f"{system_prompt} {self._lang_instruction(sample)}"
        try:
            completion = self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": prompt},
                ],
            )
            return completion.choices[0].message.content or None
        except Exception as exc:
            logger.warning("OpenAI chat completion failed: %s", exc)
            return None

    def _fallback_responses(self, message: str) -> list[str]:
        snippet = " ".join(message.split())
        if len(snippet) > 80:
            snippet = snippet[:77] + "..."
        team = f"the {self._brand_name} team" if self._brand_name else "our team"
        return [
            f'Thank you for reaching out. I understand your concern about "{snippet}" and I\'m looking into it now.',
            "I'm sorry for the trouble. Could you share a few more details so I can resolve this quickly?",
            f"Thanks for your patience. I'm checking this with {team} and will update you shortly.",
        ]

    @staticmethod
    def _fallback_summary(messages: Sequence[ChatMessage]) -> str:
        customer = [msg for msg in messages if msg.sender_type == "customer"]
        agent = [msg for msg in messages if msg.sender_type != "customer"]
        lines = [
            f"- Main issue: {customer[0].content if customer else 'not stated by the customer'}",
            f"- Latest agent reply: {agent[-1].content if agent else 'no agent reply yet'}",
            f"- Messages exchanged: {len(messages)} ({len(customer)} customer, {len(agent)} agent)",
        ]
        return "\n".join(lines)


__all__ = [
    "COMMON_PHRASES",
    "CopilotService",
    "PHRASE_CONTEXTS",
    "build_openai_client",
    "common_phrase_suggestions",
    "parse_numbered",
]
