"""FastAPI application wiring for the support chat orchestrator.

This module bootstraps the process:

- Configures logging, optional CORS for the widget and dashboard origins,
  Prometheus metrics and rate limiting.
- Builds the :class:`~app.core.runtime.ChatRuntime` on startup and tears it
  down on shutdown (liveness sweep, background assistant replies, database
  connection).
- Mounts the WebSocket gateway at ``/chat`` and the staff HTTP API under
  ``/api``.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .__version__ import __build_date__, __commit_sha__, __version__
from .app_logging import init_logging
from .config import Settings, get_settings
from .core.rate_limit import limiter
from .core.runtime import ChatRuntime, build_runtime
from .realtime import gateway
from .routers import conversations, knowledge, staff

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    *,
    runtime: Optional[ChatRuntime] = None,
) -> FastAPI:
    """Assemble the application.

    ``runtime`` lets tests inject a pre-built runtime (fake providers, seeded
    staff); otherwise one is built from ``settings`` during startup.
    """

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = runtime or build_runtime(settings)
        app.state.runtime = active
        await active.start()
        logger.info("Chat runtime started (in_memory=%s)", settings.in_memory)
        try:
            yield
        finally:
            await active.stop()
            logger.info("Chat runtime stopped")

    app = FastAPI(title="Support Chat Orchestrator", version=__version__, lifespan=lifespan)
    init_logging(app)
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)
    if settings.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.allowed_origins),
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(gateway.router)
    app.include_router(conversations.router)
    app.include_router(knowledge.router)
    app.include_router(staff.router)

    @app.get("/api/health")
    async def health():
        """Liveness/readiness probe with a minimal JSON body."""
        return {"status": "ok"}

    @app.get("/api/version")
    async def version():
        """Return version information for the application."""
        return {
            "version": __version__,
            "build_date": __build_date__,
            "commit_sha": __commit_sha__,
        }

    @app.get("/api/config")
    async def config():
        """Non-sensitive limits the widget and dashboard need."""
        return {
            "chatMaxMessageLength": settings.chat_max_message_length,
            "heartbeatIntervalSeconds": settings.heartbeat_interval_seconds,
            "retrievalTopK": settings.retrieval_top_k,
            "retrievalThreshold": settings.retrieval_threshold,
        }

    # Expose Prometheus metrics
    Instrumentator().instrument(app).expose(
        app, include_in_schema=False, endpoint="/api/metrics"
    )
    return app


app = create_app()
