"""Runtime settings for the chat orchestrator.

Settings are read from the environment (a ``.env`` file is honoured through
python-dotenv) and cached for the lifetime of the process. Tests that tweak
environment variables should call :func:`reset_settings_cache` afterwards.
"""

from __future__ import annotations

import dataclasses
import os
from functools import lru_cache

from dotenv import load_dotenv

load_dotenv()


@dataclasses.dataclass(frozen=True)
class Settings:
    """Environment-driven configuration shared by every component."""

    database_url: str | None = None
    openai_model: str = "gpt-3.5-turbo"
    max_reply_tokens: int = 500
    embedding_provider: str = "openai"
    embedding_model: str = "text-embedding-ada-002"
    provider_timeout_seconds: float = 30.0
    provider_max_concurrency: int = 8
    heartbeat_interval_seconds: float = 30.0
    history_window: int = 20
    prompt_history_turns: int = 10
    retrieval_top_k: int = 5
    retrieval_threshold: float = 0.7
    chat_max_message_length: int = 5000
    allowed_origins: tuple[str, ...] = ()
    assignment_policy: str = "first-available"

    @property
    def in_memory(self) -> bool:
        """Return ``True`` when no database is configured."""

        return not self.database_url


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load :class:`Settings` from the environment."""

    origins = os.getenv("ALLOWED_ORIGINS", "")
    return Settings(
        database_url=os.getenv("DATABASE_URL") or None,
        openai_model=os.getenv("OPENAI_MODEL", "gpt-3.5-turbo"),
        max_reply_tokens=int(os.getenv("OPENAI_MAX_TOKENS", "500")),
        embedding_provider=os.getenv("EMBEDDING_PROVIDER", "openai").lower(),
        embedding_model=os.getenv("EMBEDDING_MODEL", "text-embedding-ada-002"),
        provider_timeout_seconds=float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "30")),
        provider_max_concurrency=int(os.getenv("PROVIDER_MAX_CONCURRENCY", "8")),
        heartbeat_interval_seconds=float(os.getenv("HEARTBEAT_INTERVAL_SECONDS", "30")),
        history_window=int(os.getenv("HISTORY_WINDOW", "20")),
        prompt_history_turns=int(os.getenv("PROMPT_HISTORY_TURNS", "10")),
        retrieval_top_k=int(os.getenv("RETRIEVAL_TOP_K", "5")),
        retrieval_threshold=float(os.getenv("RETRIEVAL_THRESHOLD", "0.7")),
        chat_max_message_length=int(os.getenv("CHAT_MAX_MESSAGE_LENGTH", "5000")),
        allowed_origins=tuple(o.strip() for o in origins.split(",") if o.strip()),
        assignment_policy=os.getenv("ASSIGNMENT_POLICY", "first-available").lower(),
    )


def reset_settings_cache() -> None:
    """Clear cached settings; useful in tests when env vars change."""

    get_settings.cache_clear()


__all__ = ["Settings", "get_settings", "reset_settings_cache"]
