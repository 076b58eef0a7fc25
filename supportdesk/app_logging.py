"""Application and access logging setup.

``init_logging`` wires two rotating log files:

- ``supportdesk.log`` for the ``supportdesk`` logger tree (session rotation,
  escalations, notifier failures). Records emitted while a request is being
  served carry its request id.
- ``access.log`` for one structured line per HTTP request, with an
  ``X-Request-Id`` echoed back to the caller.

Customer identifiers and credentials are masked before anything reaches the
access log, including email addresses embedded in free text. Environment
variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import re
import time
from contextvars import ContextVar
from logging.handlers import TimedRotatingFileHandler
from typing import Any, cast
from uuid import uuid4

from fastapi import FastAPI, Request

APP_LOGGER_NAME = "supportdesk"
ACCESS_LOGGER_NAME = "uvicorn.access"
MASK = "***"

SENSITIVE_FIELDS = frozenset(
    {
        "authorization",
        "cookie",
        "set-cookie",
        "password",
        "token",
        "api_key",
        "x-api-key",
        "email",
        "customer_email",
    }
)
UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})

_EMAIL_PATTERN = re.compile(r"[\w.+-]+@[\w-]+(\.[\w-]+)+")
_request_id: ContextVar[str | None] = ContextVar("supportdesk_request_id", default=None)


def current_request_id() -> str | None:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Attach the id of the request being served (or ``-``) to each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get() or "-"
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "request_id": getattr(record, "request_id", "-"),
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _formatter(log_json: bool) -> logging.Formatter:
    if log_json:
        return JsonFormatter()
    return logging.Formatter(
        "[%(asctime)s] %(levelname)s %(name)s [%(request_id)s]: %(message)s"
    )


def scrub(data: object) -> object:
    """Return ``data`` with sensitive keys and email addresses masked."""

    if isinstance(data, dict):
        return {
            key: MASK if str(key).lower() in SENSITIVE_FIELDS else scrub(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [scrub(item) for item in data]
    if isinstance(data, str):
        return _EMAIL_PATTERN.sub(MASK, data)
    return data


def _file_handler(
    filename: str,
    *,
    log_dir: str,
    formatter: logging.Formatter,
    retention_days: int,
    rotate_utc: bool,
) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(log_dir, filename),
        when="midnight",
        backupCount=retention_days,
        utc=rotate_utc,
    )
    handler.setFormatter(formatter)
    handler.addFilter(RequestIdFilter())
    return handler


async def _read_body(request: Request) -> object | None:
    """Buffer the request body for logging and replay it to the endpoint."""

    body = await request.body()

    async def replay() -> dict:  # pragma: no cover - internal
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = replay  # type: ignore[attr-defined]
    if not body:
        return None
    try:
        return scrub(json.loads(body))
    except ValueError:
        return scrub(body.decode("utf-8", errors="replace"))


def _client_ip(request: Request) -> str | None:
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client is not None else None


def _install_access_logging(app: FastAPI) -> None:
    log_bodies = os.getenv("LOG_REQUEST_BODIES", "false").lower() == "true"
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)

    @app.middleware("http")
    async def access_log(request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        token = _request_id.set(request_id)
        try:
            return await _serve(request, call_next, request_id)
        finally:
            _request_id.reset(token)

    async def _serve(request: Request, call_next, request_id: str):
        started = time.perf_counter()
        body = await _read_body(request) if log_bodies else None
        response = await call_next(request)

        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "query": scrub(dict(request.query_params)),
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": _client_ip(request),
            "headers": scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body

        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str))
        return response


def init_logging(app: FastAPI | None = None) -> None:
    """Configure the ``supportdesk`` and access loggers, then hook ``app``."""

    log_dir = os.getenv("LOG_DIR", "logs")
    level = getattr(logging, os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)
    os.makedirs(log_dir, exist_ok=True)

    options = {
        "log_dir": log_dir,
        "formatter": _formatter(os.getenv("LOG_JSON", "false").lower() == "true"),
        "retention_days": int(os.getenv("LOG_RETENTION_DAYS", "7")),
        "rotate_utc": os.getenv("LOG_ROTATE_UTC", "false").lower() == "true",
    }

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if not app_logger.handlers:
        app_logger.addHandler(_file_handler("supportdesk.log", **options))
    app_logger.setLevel(level)

    # uvicorn installs its own access handler; replace it so lines land in access.log.
    access_logger = logging.getLogger(ACCESS_LOGGER_NAME)
    access_logger.handlers.clear()
    access_logger.addHandler(_file_handler("access.log", **options))
    access_logger.setLevel(level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app)


__all__ = ["APP_LOGGER_NAME", "current_request_id", "init_logging", "scrub"]
