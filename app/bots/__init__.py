"""Bot configuration access for the chat core."""

from .repository import (
    BotConfigNotFoundError,
    BotConfigRepository,
    InMemoryBotConfigRepository,
    PostgresBotConfigRepository,
    resolve_bot_config,
)

__all__ = [
    "BotConfigNotFoundError",
    "BotConfigRepository",
    "InMemoryBotConfigRepository",
    "PostgresBotConfigRepository",
    "resolve_bot_config",
]
