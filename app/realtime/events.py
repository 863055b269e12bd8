"""Wire format for the ``/chat`` WebSocket.

Every frame is a JSON object ``{"event": <name>, "data": {...}}``. Payload
keys are camelCase on the wire and snake_case in Python.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Protocol
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.conversations import schemas
from app.conversations.models import MessageRole

# Inbound
JOIN_CONVERSATION = "join-conversation"
SEND_MESSAGE = "send-message"
WIDGET_CONNECT = "widget-connect"
WIDGET_SEND_MESSAGE = "widget-send-message"
HEARTBEAT_RESPONSE = "heartbeat-response"

# Outbound
JOINED_CONVERSATION = "joined-conversation"
WIDGET_CONNECTED = "widget-connected"
MESSAGE_SENT = "message-sent"
NEW_MESSAGE = "new-message"
STATUS_CHANGED = "conversation-status-changed"
HEARTBEAT = "heartbeat"
ERROR = "error"


class EventModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")


class Envelope(BaseModel):
    event: str = Field(min_length=1)
    data: dict[str, Any] = Field(default_factory=dict)


class JoinConversation(EventModel):
    conversation_id: UUID


class SendMessage(EventModel):
    conversation_id: UUID
    text: str
    role: MessageRole = MessageRole.CUSTOMER


class WidgetConnect(EventModel):
    customer_id: str = Field(min_length=1, max_length=255)


class WidgetSendMessage(EventModel):
    customer_id: str = Field(min_length=1, max_length=255)
    text: str
    bot_config_id: UUID
    conversation_id: UUID | None = None


class NewMessage(EventModel):
    id: UUID
    conversation_id: UUID
    text: str
    role: MessageRole
    author_user_id: UUID | None = None
    created_at: datetime


class AssignedAgent(EventModel):
    id: UUID
    name: str
    email: str


class StatusChanged(EventModel):
    conversation_id: UUID
    status: str
    assigned_agent: AssignedAgent | None = None


class _AgentLike(Protocol):
    id: UUID
    name: str
    email: str


def envelope(event: str, payload: dict[str, Any]) -> dict[str, Any]:
    return {"event": event, "data": payload}


def new_message_payload(message: schemas.Message) -> dict[str, Any]:
    return NewMessage(**message.model_dump()).to_wire()


def status_changed_payload(
    conversation: schemas.Conversation, agent: _AgentLike | None
) -> dict[str, Any]:
    assigned = (
        AssignedAgent(id=agent.id, name=agent.name, email=agent.email) if agent is not None else None
    )
    return StatusChanged(
        conversation_id=conversation.id,
        status=conversation.status.value,
        assigned_agent=assigned,
    ).to_wire()


def heartbeat_payload(now: datetime | None = None) -> dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    return {"timestamp": int(now.timestamp() * 1000)}


def error_payload(message: str) -> dict[str, Any]:
    return {"message": message}


__all__ = [
    "Envelope",
    "JoinConversation",
    "SendMessage",
    "WidgetConnect",
    "WidgetSendMessage",
    "envelope",
    "error_payload",
    "heartbeat_payload",
    "new_message_payload",
    "status_changed_payload",
]
