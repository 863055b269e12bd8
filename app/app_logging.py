"""Logging for the chat service.

Three streams are configured here:

- the ``app`` logger hierarchy, written to ``app.log``;
- HTTP access records on ``uvicorn.access``, written to ``access.log`` by a
  middleware that also stamps every response with ``X-Request-Id``;
- WebSocket frames, recorded at DEBUG through :func:`log_event`.

Secrets are scrubbed from headers and bodies before anything is written, and
customer message text never reaches the event or access logs.

Environment variables: LOG_DIR, LOG_LEVEL, LOG_JSON, LOG_REQUEST_BODIES,
LOG_RETENTION_DAYS, LOG_ROTATE_UTC.
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from logging.handlers import TimedRotatingFileHandler
from typing import Any, FrozenSet, Mapping, cast
from uuid import uuid4

from fastapi import FastAPI, Request

from app.core.net import client_ip_from

ACCESS_LOGGER = "uvicorn.access"
UNLOGGED_PATHS = frozenset({"/api/health", "/api/metrics"})

SENSITIVE_FIELDS: FrozenSet[str] = frozenset(
    {"authorization", "cookie", "set-cookie", "password", "token", "access_token"}
)
# Message bodies are customer data.
EVENT_REDACTED_FIELDS: FrozenSet[str] = SENSITIVE_FIELDS | {"text"}


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).lower() == "true"


@dataclass(frozen=True)
class LoggingOptions:
    log_dir: str = "logs"
    level: int = logging.INFO
    json_lines: bool = False
    request_bodies: bool = False
    retention_days: int = 7
    rotate_utc: bool = False

    @classmethod
    def from_env(cls) -> "LoggingOptions":
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        return cls(
            log_dir=os.getenv("LOG_DIR", "logs"),
            level=getattr(logging, level_name, logging.INFO),
            json_lines=_env_flag("LOG_JSON"),
            request_bodies=_env_flag("LOG_REQUEST_BODIES"),
            retention_days=int(os.getenv("LOG_RETENTION_DAYS", "7")),
            rotate_utc=_env_flag("LOG_ROTATE_UTC"),
        )


class JsonFormatter(logging.Formatter):
    """One JSON object per line; enabled with LOG_JSON=true."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple
        payload = {
            "level": record.levelname,
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _formatter(options: LoggingOptions) -> logging.Formatter:
    if options.json_lines:
        return JsonFormatter()
    return logging.Formatter("[%(asctime)s] %(levelname)s in %(name)s: %(message)s")


def _scrub(data: object, fields: FrozenSet[str] = SENSITIVE_FIELDS) -> object:
    """Replace the values of ``fields`` with ``***`` at any nesting depth."""

    if isinstance(data, dict):
        return {
            key: "***" if str(key).lower() in fields else _scrub(value, fields)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [_scrub(item, fields) for item in data]
    return data


def log_event(
    logger: logging.Logger,
    direction: str,
    event: str,
    data: Mapping[str, Any],
    *,
    connection_id: str | None = None,
) -> None:
    """Record a WebSocket frame at DEBUG level with its payload scrubbed."""

    if not logger.isEnabledFor(logging.DEBUG):
        return
    record = {
        "direction": direction,
        "event": event,
        "connection_id": connection_id,
        "data": _scrub(dict(data), EVENT_REDACTED_FIELDS),
    }
    logger.debug(json.dumps(record, default=str))


async def _buffer_body(request: Request) -> object | None:
    """Read the request body and make it readable again for the endpoint."""

    body = await request.body()

    async def receive() -> dict:  # pragma: no cover - internal
        return {"type": "http.request", "body": body, "more_body": False}

    request._receive = receive  # type: ignore[attr-defined]
    if not body:
        return None
    try:
        return _scrub(json.loads(body), EVENT_REDACTED_FIELDS)
    except ValueError:
        return body.decode("utf-8", errors="replace")


def _install_access_logging(app: FastAPI, options: LoggingOptions | None = None) -> None:
    """Log one JSON line per HTTP request, except probes and metrics."""

    options = options or LoggingOptions.from_env()
    access_logger = logging.getLogger(ACCESS_LOGGER)

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        if request.url.path in UNLOGGED_PATHS:
            return await call_next(request)

        request_id = request.headers.get("X-Request-Id") or uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()
        body = await _buffer_body(request) if options.request_bodies else None

        response = await call_next(request)

        peer = request.client.host if request.client else None
        entry: dict[str, Any] = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status": response.status_code,
            "latency_ms": round((time.perf_counter() - started) * 1000, 2),
            "client_ip": client_ip_from(request.headers, peer),
            "headers": _scrub(dict(request.headers)),
        }
        if body is not None:
            entry["body"] = body
        response.headers["X-Request-Id"] = request_id
        access_logger.info(json.dumps(entry, default=str))
        return response


def _rotating_handler(options: LoggingOptions, filename: str) -> TimedRotatingFileHandler:
    handler = TimedRotatingFileHandler(
        os.path.join(options.log_dir, filename),
        when="midnight",
        backupCount=options.retention_days,
        utc=options.rotate_utc,
    )
    handler.setFormatter(_formatter(options))
    return handler


def init_logging(app: FastAPI | None = None) -> None:
    """Attach file handlers and, when ``app`` is given, the access middleware."""

    options = LoggingOptions.from_env()
    os.makedirs(options.log_dir, exist_ok=True)

    app_logger = logging.getLogger("app")
    if not app_logger.handlers:
        app_logger.addHandler(_rotating_handler(options, "app.log"))
    app_logger.setLevel(options.level)

    access_logger = logging.getLogger(ACCESS_LOGGER)
    access_logger.handlers.clear()
    access_logger.addHandler(_rotating_handler(options, "access.log"))
    access_logger.setLevel(options.level)

    if app is not None:
        cast(Any, app).logger = app_logger
        _install_access_logging(app, options)


__all__ = [
    "EVENT_REDACTED_FIELDS",
    "JsonFormatter",
    "LoggingOptions",
    "SENSITIVE_FIELDS",
    "init_logging",
    "log_event",
]
