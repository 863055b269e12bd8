"""Conversation status graph and per-conversation serialization.

Status only moves forward: ``automated -> pending -> human`` or straight from
``automated`` to ``human``. Going back to ``automated`` is an administrative
reset and never happens as a side effect of chat traffic.

Every operation that mutates a conversation (ingesting a message, posting an
assistant reply, escalating, resetting) runs while holding the conversation's
entry in :class:`ConversationLocks`. That gives strictly increasing message
timestamps, monotonic counters and at most one escalation per conversation.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Dict, Optional
from uuid import UUID

from app.core.locks import KeyedLocks

from . import schemas
from .errors import InvalidTransitionError
from .models import ConversationStatus
from .repository import ConversationRepository

_TRANSITIONS: Dict[ConversationStatus, frozenset[ConversationStatus]] = {
    ConversationStatus.AUTOMATED: frozenset({ConversationStatus.PENDING, ConversationStatus.HUMAN}),
    ConversationStatus.PENDING: frozenset({ConversationStatus.HUMAN}),
    ConversationStatus.HUMAN: frozenset(),
}

_TICK = timedelta(microseconds=1)


def can_transition(current: ConversationStatus, target: ConversationStatus) -> bool:
    return ConversationStatus(target) in _TRANSITIONS[ConversationStatus(current)]


def next_timestamp(last: Optional[datetime], now: Optional[datetime] = None) -> datetime:
    """Return a timestamp strictly later than ``last``.

    Wall clocks can stall or step backwards; message ordering must not.
    """

    now = now or datetime.now(timezone.utc)
    if last is not None and now <= last:
        return last + _TICK
    return now


class ConversationLocks(KeyedLocks):
    """Mutation locks keyed by conversation id."""


class ConversationStateMachine:
    """Validate and persist status transitions.

    Callers must hold the conversation's lock.
    """

    def __init__(self, repository: ConversationRepository) -> None:
        self._repository = repository

    def _apply(
        self,
        conversation: schemas.Conversation,
        target: ConversationStatus,
        *,
        assigned_user_id: Optional[UUID],
    ) -> schemas.Conversation:
        if not can_transition(conversation.status, target):
            raise InvalidTransitionError(
                f"Cannot move conversation {conversation.id} from "
                f"{conversation.status.value} to {ConversationStatus(target).value}"
            )
        return self._repository.set_status(
            conversation.id,
            target,
            assigned_user_id=assigned_user_id,
            updated_at=next_timestamp(conversation.updated_at),
        )

    def request_pending(self, conversation: schemas.Conversation) -> schemas.Conversation:
        """Mark an automated conversation as awaiting a human."""

        if conversation.status == ConversationStatus.PENDING:
            return conversation
        return self._apply(
            conversation,
            ConversationStatus.PENDING,
            assigned_user_id=conversation.assigned_user_id,
        )

    def assign_human(self, conversation: schemas.Conversation, agent_id: UUID) -> schemas.Conversation:
        """Bind ``agent_id`` and hand the conversation to a person."""

        return self._apply(conversation, ConversationStatus.HUMAN, assigned_user_id=agent_id)

    def reset_to_automated(self, conversation: schemas.Conversation) -> schemas.Conversation:
        """Administrative reversal: release the agent and resume automation."""

        return self._repository.set_status(
            conversation.id,
            ConversationStatus.AUTOMATED,
            assigned_user_id=None,
            updated_at=next_timestamp(conversation.updated_at),
        )


__all__ = [
    "ConversationLocks",
    "ConversationStateMachine",
    "can_transition",
    "next_timestamp",
]
