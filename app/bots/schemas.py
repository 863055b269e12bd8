"""Pydantic schemas for bot configurations and their FAQs."""

from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

DEFAULT_TOOL_PARAMETERS: dict[str, Any] = {"type": "object", "properties": {}, "required": []}


class ToolDefinition(BaseModel):
    """A named capability the generative model may call."""

    name: str = Field(min_length=1, max_length=64)
    description: str = ""
    parameters: dict[str, Any] = Field(default_factory=lambda: dict(DEFAULT_TOOL_PARAMETERS))


class Faq(BaseModel):
    id: UUID
    bot_config_id: UUID
    question: str
    answer: str
    created_at: datetime


class FaqCreate(BaseModel):
    question: str = Field(min_length=1)
    answer: str = Field(min_length=1)


class BotConfig(BaseModel):
    id: UUID
    name: str = "Support assistant"
    model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    system_instructions: str = ""
    tools: list[ToolDefinition] = Field(default_factory=list)
    faqs: list[Faq] = Field(default_factory=list)
    created_at: datetime


class BotConfigCreate(BaseModel):
    name: str = "Support assistant"
    model: str = "gpt-3.5-turbo"
    temperature: float = Field(default=0.7, ge=0.0, le=2.0)
    system_instructions: str = ""
    tools: list[ToolDefinition] = Field(default_factory=list)
    faqs: list[FaqCreate] = Field(default_factory=list)


__all__ = [
    "BotConfig",
    "BotConfigCreate",
    "DEFAULT_TOOL_PARAMETERS",
    "Faq",
    "FaqCreate",
    "ToolDefinition",
]
