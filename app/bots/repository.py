"""Read access to bot configurations.

Bot configuration CRUD belongs to the admin surface; the chat core only needs
to load a configuration (with its FAQs) by id or fall back to the newest one.
``create_bot_config`` exists for seeding and tests.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol
from uuid import UUID, uuid4

from psycopg.types.json import Jsonb

from app.core.db import ConnectionFactory, dict_cursor

from . import schemas


class BotConfigNotFoundError(RuntimeError):
    """Raised when a bot configuration could not be located."""


class BotConfigRepository(Protocol):
    def get_by_id(self, bot_config_id: UUID) -> Optional[schemas.BotConfig]: ...

    def get_latest(self) -> Optional[schemas.BotConfig]: ...

    def create_bot_config(self, payload: schemas.BotConfigCreate) -> schemas.BotConfig: ...


def resolve_bot_config(
    repository: BotConfigRepository, bot_config_id: Optional[UUID] = None
) -> schemas.BotConfig:
    """Load ``bot_config_id`` or the most recently created configuration."""

    config = repository.get_by_id(bot_config_id) if bot_config_id else repository.get_latest()
    if config is None:
        if bot_config_id:
            raise BotConfigNotFoundError(f"Bot configuration {bot_config_id} not found")
        raise BotConfigNotFoundError("No bot configuration found")
    return config


class PostgresBotConfigRepository:
    """PostgreSQL implementation of :class:`BotConfigRepository`."""

    def __init__(self, connect: ConnectionFactory) -> None:
        self._connect = connect

    def _cursor(self):
        return dict_cursor(self._connect)

    def _hydrate(self, row: dict) -> schemas.BotConfig:
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM faqs WHERE bot_config_id = %s ORDER BY created_at ASC, id ASC",
                (row["id"],),
            )
            faqs = [schemas.Faq(**faq) for faq in cur.fetchall()]
        tools = [schemas.ToolDefinition(**tool) for tool in (row.get("tools") or [])]
        return schemas.BotConfig(
            id=row["id"],
            name=row["name"],
            model=row["model"],
            temperature=row["temperature"],
            system_instructions=row["system_instructions"] or "",
            tools=tools,
            faqs=faqs,
            created_at=row["created_at"],
        )

    def get_by_id(self, bot_config_id: UUID) -> Optional[schemas.BotConfig]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM bot_configs WHERE id = %s", (bot_config_id,))
            row = cur.fetchone()
        return self._hydrate(row) if row else None

    def get_latest(self) -> Optional[schemas.BotConfig]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM bot_configs ORDER BY created_at DESC LIMIT 1")
            row = cur.fetchone()
        return self._hydrate(row) if row else None

    def create_bot_config(self, payload: schemas.BotConfigCreate) -> schemas.BotConfig:
        bot_config_id = uuid4()
        now = datetime.now(timezone.utc)
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO bot_configs
                    (id, name, model, temperature, system_instructions, tools, created_at)
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                """,
                (
                    bot_config_id,
                    payload.name,
                    payload.model,
                    payload.temperature,
                    payload.system_instructions,
                    Jsonb([tool.model_dump() for tool in payload.tools]),
                    now,
                ),
            )
            for faq in payload.faqs:
                cur.execute(
                    """
                    INSERT INTO faqs (id, bot_config_id, question, answer, created_at)
                    VALUES (%s, %s, %s, %s, %s)
                    """,
                    (uuid4(), bot_config_id, faq.question, faq.answer, now),
                )
        config = self.get_by_id(bot_config_id)
        assert config is not None
        return config


class InMemoryBotConfigRepository(BotConfigRepository):
    def __init__(self) -> None:
        self._configs: Dict[UUID, schemas.BotConfig] = {}
        self._order: List[UUID] = []

    def get_by_id(self, bot_config_id: UUID) -> Optional[schemas.BotConfig]:
        config = self._configs.get(bot_config_id)
        return config.model_copy(deep=True) if config else None

    def get_latest(self) -> Optional[schemas.BotConfig]:
        if not self._order:
            return None
        return self.get_by_id(self._order[-1])

    def create_bot_config(self, payload: schemas.BotConfigCreate) -> schemas.BotConfig:
        bot_config_id = uuid4()
        now = datetime.now(timezone.utc)
        config = schemas.BotConfig(
            id=bot_config_id,
            name=payload.name,
            model=payload.model,
            temperature=payload.temperature,
            system_instructions=payload.system_instructions,
            tools=[tool.model_copy() for tool in payload.tools],
            faqs=[
                schemas.Faq(
                    id=uuid4(),
                    bot_config_id=bot_config_id,
                    question=faq.question,
                    answer=faq.answer,
                    created_at=now,
                )
                for faq in payload.faqs
            ],
            created_at=now,
        )
        self._configs[bot_config_id] = config
        self._order.append(bot_config_id)
        return config.model_copy(deep=True)


__all__ = [
    "BotConfigNotFoundError",
    "BotConfigRepository",
    "InMemoryBotConfigRepository",
    "PostgresBotConfigRepository",
    "resolve_bot_config",
]
