"""FastAPI application wiring for SupportDesk.

- Configures logging, optional CORS for the widget origins and Prometheus
  metrics.
- Mounts the widget, conversation and chat session routers.
- Applies pending migrations on start-up when ``DATABASE_URL`` is set and
  ``SUPPORTDESK_AUTO_MIGRATE`` is not switched off.
"""

import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import get_session_settings
from .core.db import ensure_schema, get_conn
from .routers import chat_sessions, conversations, widget

load_dotenv()

logger = logging.getLogger("supportdesk.main")


def _auto_migrate_enabled() -> bool:
    return os.getenv("SUPPORTDESK_AUTO_MIGRATE", "true").lower() == "true"


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if os.getenv("DATABASE_URL") and _auto_migrate_enabled():
        with get_conn() as conn:
            applied = ensure_schema(conn)
        if applied:
            logger.info("Applied migrations: %s", ", ".join(applied))
    else:
        logger.info("Skipping schema migrations")
    yield


app = FastAPI(title="SupportDesk", version=__version__, lifespan=lifespan)
init_logging(app)

widget_origins = os.getenv("WIDGET_ORIGINS")
if widget_origins:
    origins = [o.strip() for o in widget_origins.split(",") if o.strip()]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

app.include_router(widget.router)
app.include_router(conversations.router)
app.include_router(chat_sessions.router)

Instrumentator().instrument(app).expose(
    app, include_in_schema=False, endpoint="/api/metrics"
)


@app.get("/api/health")
async def health():
    """Liveness/readiness probe with a minimal JSON body."""
    return {"status": "ok"}


@app.get("/api/version")
async def version():
    return {
        "version": __version__,
        "build_date": __build_date__,
        "commit_sha": __commit_sha__,
    }


@app.get("/api/config")
async def config():
    """Expose widget-relevant settings."""
    settings = get_session_settings()
    return {
        "BRAND_NAME": os.getenv("BRAND_NAME", "SupportDesk"),
        "SESSION_INACTIVITY_HOURS": settings.inactivity_hours,
        "CUSTOMER_FALLBACK_WINDOW_HOURS": settings.customer_fallback_window_hours,
        "STORAGE": "postgres" if os.getenv("DATABASE_URL") else "memory",
    }
