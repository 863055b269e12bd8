"""Hand conversations over to human agents."""

from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from app.conversations import schemas
from app.conversations.errors import InvalidTransitionError
from app.conversations.models import ConversationStatus, MessageRole
from app.conversations.service import ConversationService
from app.conversations.state import next_timestamp
from app.realtime import events

from .directory import StaffMember
from .policy import AssignmentPolicy

logger = logging.getLogger(__name__)

CUSTOMER_REQUEST_REASON = "Automatic takeover - customer requested human agent"
ASSISTANT_SUGGESTION_REASON = "Automatic takeover - AI suggested human assistance"
PENDING_RETRY_REASON = "Automatic takeover - customer waiting for human agent"
MANUAL_REASON = "Manual takeover"
JOIN_MESSAGE = "Human agent {name} has joined the conversation."


class EscalationManager:
    """Bind an agent, flip status to ``human`` and announce the handover.

    This is the only component that moves a conversation into ``human``.
    """

    def __init__(self, conversations: ConversationService, policy: AssignmentPolicy) -> None:
        self._conversations = conversations
        self._policy = policy

    async def escalate(self, conversation_id: UUID, reason: str) -> Optional[schemas.TakeoverRecord]:
        """Assign an available agent; ``None`` when nothing changed.

        A conversation that is already ``human`` is left alone, so concurrent
        triggers produce a single takeover.
        """

        async with self._conversations.locks.hold(conversation_id):
            conversation = self._conversations.require(conversation_id)
            if conversation.status == ConversationStatus.HUMAN:
                logger.debug("Conversation %s already handled by a human", conversation_id)
                return None
            agent = self._policy.find_available_agent()
            if agent is None:
                logger.warning(
                    "No available agent for conversation %s (status %s)",
                    conversation_id,
                    conversation.status.value,
                )
                return None
            return await self._hand_over(conversation, agent, reason)

    async def take_over(
        self,
        conversation_id: UUID,
        staff: StaffMember,
        reason: Optional[str] = None,
    ) -> Optional[schemas.TakeoverRecord]:
        """Let ``staff`` claim the conversation directly."""

        async with self._conversations.locks.hold(conversation_id):
            conversation = self._conversations.require(conversation_id)
            if conversation.status == ConversationStatus.HUMAN:
                if conversation.assigned_user_id == staff.id:
                    return None
                raise InvalidTransitionError(
                    f"Conversation {conversation_id} is already assigned to another agent"
                )
            return await self._hand_over(conversation, staff, reason or MANUAL_REASON)

    async def _hand_over(
        self,
        conversation: schemas.Conversation,
        agent: StaffMember,
        reason: str,
    ) -> schemas.TakeoverRecord:
        conversation = self._conversations.state.assign_human(conversation, agent.id)
        record = self._conversations.repository.add_takeover(
            conversation.id,
            agent.id,
            reason,
            next_timestamp(conversation.updated_at),
        )
        message, conversation = self._conversations.append_message(
            conversation,
            JOIN_MESSAGE.format(name=agent.name),
            MessageRole.AGENT,
            author_user_id=agent.id,
        )
        logger.info(
            "Conversation %s handed to agent %s: %s", conversation.id, agent.id, reason
        )
        await self._conversations.broadcast(
            conversation.id, events.NEW_MESSAGE, events.new_message_payload(message)
        )
        await self._conversations.broadcast(
            conversation.id,
            events.STATUS_CHANGED,
            events.status_changed_payload(conversation, agent),
        )
        return record


__all__ = [
    "ASSISTANT_SUGGESTION_REASON",
    "CUSTOMER_REQUEST_REASON",
    "EscalationManager",
    "JOIN_MESSAGE",
    "MANUAL_REASON",
    "PENDING_RETRY_REASON",
]
