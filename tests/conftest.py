import itertools
import pathlib
import sys
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from supportdesk.app_logging import init_logging
from supportdesk.config import SentimentSettings, SessionSettings, reset_settings_cache
from supportdesk.conversations.chat_session_repository import InMemoryChatSessionRepository
from supportdesk.conversations.repository import InMemoryConversationRepository
from supportdesk.copilot import CopilotService
from supportdesk.nlp import SentimentAnalyzer
from supportdesk.routers import dependencies


class FakeClock:
    """Manually advanced clock used to simulate inactivity windows."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def sequential_ids(prefix: str = "SESS"):
    counter = itertools.count(1)
    return lambda _now: f"{prefix}-{next(counter)}"


@dataclass
class Harness:
    clock: FakeClock
    conversation_repo: InMemoryConversationRepository
    chat_repo: InMemoryChatSessionRepository
    services: dependencies.SupportServices


@pytest.fixture(autouse=True)
def _fresh_settings():
    reset_settings_cache()
    yield
    reset_settings_cache()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def session_settings() -> SessionSettings:
    return SessionSettings()


@pytest.fixture
def analyzer() -> SentimentAnalyzer:
    return SentimentAnalyzer(settings=SentimentSettings())


@pytest.fixture
def harness(monkeypatch, clock, analyzer) -> Harness:
    monkeypatch.delenv("ESCALATION_WEBHOOK_URL", raising=False)
    conversation_repo = InMemoryConversationRepository()
    chat_repo = InMemoryChatSessionRepository()
    services = dependencies.build_services(
        conversation_repo,
        chat_repo,
        clock=clock,
        analyzer=analyzer,
        copilot=CopilotService(clock=clock),
    )
    return Harness(clock, conversation_repo, chat_repo, services)


@pytest.fixture
def api_client(monkeypatch, tmp_path, harness):
    """TestClient backed by the in-memory services of ``harness``."""

    from fastapi.testclient import TestClient

    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.delenv("DATABASE_URL", raising=False)
    from supportdesk import main

    dependencies.set_in_memory_services(harness.services)
    try:
        with TestClient(main.app) as client:
            yield client
    finally:
        dependencies.set_in_memory_services(None)


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app
