"""Domain models used by the conversation core."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, Union
from uuid import UUID

from app.security.tokens import StaffIdentity


class ConversationStatus(str, Enum):
    AUTOMATED = "automated"
    PENDING = "pending"
    HUMAN = "human"


class MessageRole(str, Enum):
    CUSTOMER = "customer"
    ASSISTANT = "assistant"
    AGENT = "agent"


@dataclass(frozen=True)
class WidgetIdentity:
    """Anonymous embeddable-widget connection."""

    customer_id: str | None = None


Identity = Union[StaffIdentity, WidgetIdentity]


@dataclass(frozen=True)
class ConnectionContext:
    """Who submitted a message and from where."""

    identity: Identity
    client_ip: str | None = None

    @property
    def is_staff(self) -> bool:
        return isinstance(self.identity, StaffIdentity)

    @property
    def staff_id(self) -> UUID | None:
        if isinstance(self.identity, StaffIdentity):
            return self.identity.agent_id
        return None


@dataclass
class IncomingMessage:
    """Uniform representation of a message submitted by a connection."""

    conversation_id: UUID
    text: str
    role: MessageRole | str = MessageRole.CUSTOMER
    author_user_id: UUID | None = None


class Broadcaster(Protocol):
    """Fan-out target for conversation events."""

    async def broadcast(self, conversation_id: UUID, event: str, payload: dict[str, Any]) -> int: ...


__all__ = [
    "Broadcaster",
    "ConnectionContext",
    "ConversationStatus",
    "Identity",
    "IncomingMessage",
    "MessageRole",
    "WidgetIdentity",
]
