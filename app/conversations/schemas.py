"""Pydantic schemas for conversations, messages and takeovers."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field

from .models import ConversationStatus, MessageRole


class Conversation(BaseModel):
    id: UUID
    customer_id: str
    bot_config_id: UUID
    status: ConversationStatus = ConversationStatus.AUTOMATED
    assigned_user_id: UUID | None = None
    customer_ip: str | None = None
    message_count: int = 0
    last_message_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class Message(BaseModel):
    id: UUID
    conversation_id: UUID
    text: str
    role: MessageRole
    author_user_id: UUID | None = None
    created_at: datetime


class TakeoverRecord(BaseModel):
    id: UUID
    conversation_id: UUID
    triggered_by_user_id: UUID | None = None
    reason: str
    created_at: datetime


class ConversationDetail(Conversation):
    takeovers: list[TakeoverRecord] = Field(default_factory=list)


class ConversationList(BaseModel):
    items: list[Conversation]
    total: int


class MessagePage(BaseModel):
    messages: list[Message]
    total: int
    limit: int
    offset: int
    has_more: bool


class ConversationCreate(BaseModel):
    customer_id: str = Field(min_length=1, max_length=255)
    bot_config_id: UUID | None = None
    assigned_user_id: UUID | None = None


class MessageCreate(BaseModel):
    text: str = Field(min_length=1)
    role: MessageRole = MessageRole.AGENT


class TakeoverRequest(BaseModel):
    reason: str | None = None


class TakeoverResponse(BaseModel):
    conversation: ConversationDetail
    takeover: TakeoverRecord | None = None
