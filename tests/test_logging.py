import json
import logging
from logging.handlers import TimedRotatingFileHandler

import pytest
from fastapi import FastAPI, Request
from starlette.testclient import TestClient

from app.app_logging import _install_access_logging, _scrub, init_logging, log_event


def _clear_handlers(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.handlers.clear()
    return logger


def _echo_app() -> FastAPI:
    app = FastAPI()

    @app.post("/echo")
    async def echo(request: Request):
        return {"rid": request.state.request_id}

    @app.get("/api/health")
    async def health():  # pragma: no cover - simple
        return {"status": "ok"}

    _install_access_logging(app)
    return app


@pytest.fixture
def clean_loggers():
    app_logger = _clear_handlers("app")
    access_logger = _clear_handlers("uvicorn.access")
    yield
    app_logger.handlers.clear()
    access_logger.handlers.clear()


def test_timed_rotating_handlers(tmp_path, monkeypatch, clean_loggers):
    monkeypatch.setenv("LOG_DIR", str(tmp_path))
    monkeypatch.setenv("LOG_RETENTION_DAYS", "5")

    init_logging()

    for name in ("app", "uvicorn.access"):
        handler = next(
            h for h in logging.getLogger(name).handlers if isinstance(h, TimedRotatingFileHandler)
        )
        assert handler.when == "MIDNIGHT"
        assert handler.backupCount == 5
    assert (tmp_path / "app.log").exists()
    assert (tmp_path / "access.log").exists()


def test_access_log_scrubs_headers_and_message_bodies(caplog, monkeypatch):
    monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
    app = _echo_app()

    with TestClient(app) as client, caplog.at_level(logging.INFO, logger="uvicorn.access"):
        resp = client.post(
            "/echo",
            json={"password": "hunter2", "text": "my card number", "role": "agent"},
            headers={
                "X-Request-Id": "abc",
                "Authorization": "Bearer secret",
                "X-Forwarded-For": "198.51.100.4, 10.0.0.2",
            },
        )
        assert resp.status_code == 200
        assert resp.headers["X-Request-Id"] == "abc"
        assert resp.json() == {"rid": "abc"}

        data = json.loads(caplog.records[0].getMessage())
        assert data["request_id"] == "abc"
        assert data["client_ip"] == "198.51.100.4"
        assert data["headers"]["authorization"] == "***"
        assert data["body"] == {"password": "***", "text": "***", "role": "agent"}

        caplog.clear()
        client.get("/api/health")
        assert len(caplog.records) == 0


def test_generated_request_id_is_echoed():
    with TestClient(_echo_app()) as client:
        resp = client.post("/echo", json={})
    assert len(resp.headers["X-Request-Id"]) == 32
    assert resp.json()["rid"] == resp.headers["X-Request-Id"]


def test_scrub_is_recursive():
    payload = {"outer": [{"Token": "t", "keep": 1}], "cookie": "c"}
    assert _scrub(payload) == {"outer": [{"Token": "***", "keep": 1}], "cookie": "***"}


def test_log_event_redacts_text_at_debug(caplog):
    logger = logging.getLogger("app.realtime.test")
    with caplog.at_level(logging.DEBUG, logger="app.realtime.test"):
        log_event(logger, "sent", "new-message", {"text": "secret", "role": "customer"}, connection_id="c1")

    record = json.loads(caplog.records[0].getMessage())
    assert record == {
        "direction": "sent",
        "event": "new-message",
        "connection_id": "c1",
        "data": {"text": "***", "role": "customer"},
    }


def test_log_event_is_silent_above_debug(caplog):
    logger = logging.getLogger("app.realtime.quiet")
    with caplog.at_level(logging.INFO, logger="app.realtime.quiet"):
        log_event(logger, "received", "heartbeat-response", {})
    assert caplog.records == []
