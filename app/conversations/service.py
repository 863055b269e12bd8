"""Conversation queries and the shared message-append primitive."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from uuid import UUID

from ..bots.repository import BotConfigRepository, resolve_bot_config
from ..realtime import events
from . import schemas
from .errors import ConversationNotFoundError, MessageValidationError
from .models import Broadcaster, ConversationStatus, MessageRole
from .repository import ConversationRepository
from .state import ConversationLocks, ConversationStateMachine, next_timestamp

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
WIDGET_REUSABLE_STATUSES = (
    ConversationStatus.AUTOMATED,
    ConversationStatus.PENDING,
    ConversationStatus.HUMAN,
)


class ConversationService:
    """Coordinates conversation persistence, ordering and status changes."""

    def __init__(
        self,
        repository: ConversationRepository,
        bots: BotConfigRepository,
        *,
        locks: ConversationLocks | None = None,
        broadcaster: Broadcaster | None = None,
    ) -> None:
        self._repository = repository
        self._bots = bots
        self.locks = locks or ConversationLocks()
        self.state = ConversationStateMachine(repository)
        self._broadcaster = broadcaster

    @property
    def repository(self) -> ConversationRepository:
        return self._repository

    def bind_broadcaster(self, broadcaster: Broadcaster) -> None:
        self._broadcaster = broadcaster

    # ------------------------------------------------------------------
    # Creation

    def create_conversation(self, payload: schemas.ConversationCreate) -> schemas.Conversation:
        bot = resolve_bot_config(self._bots, payload.bot_config_id)
        conversation = self._repository.create_conversation(
            payload.customer_id,
            bot.id,
            created_at=datetime.now(timezone.utc),
            assigned_user_id=payload.assigned_user_id,
        )
        logger.info("Created conversation %s for customer %s", conversation.id, payload.customer_id)
        return conversation

    def find_or_create_for_widget(
        self,
        customer_id: str,
        bot_config_id: UUID,
        *,
        conversation_id: UUID | None = None,
        customer_ip: str | None = None,
    ) -> schemas.Conversation:
        """Resolve the conversation a widget message belongs to.

        An explicit ``conversation_id`` must exist. Otherwise the customer's
        most recently updated open conversation with ``bot_config_id`` is
        reused, and a new one is started when there is none.
        """

        if conversation_id is not None:
            return self.require(conversation_id)
        existing = self._repository.find_latest_for_customer(
            customer_id, bot_config_id, WIDGET_REUSABLE_STATUSES
        )
        if existing is not None:
            return existing
        bot = resolve_bot_config(self._bots, bot_config_id)
        conversation = self._repository.create_conversation(
            customer_id,
            bot.id,
            created_at=datetime.now(timezone.utc),
            customer_ip=customer_ip,
        )
        logger.info("Started widget conversation %s for customer %s", conversation.id, customer_id)
        return conversation

    # ------------------------------------------------------------------
    # Queries

    def require(self, conversation_id: UUID) -> schemas.Conversation:
        conversation = self._repository.get_conversation(conversation_id)
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def get_conversation(self, conversation_id: UUID) -> schemas.ConversationDetail:
        conversation = self.require(conversation_id)
        takeovers = self._repository.list_takeovers(conversation_id)
        return schemas.ConversationDetail(**conversation.model_dump(), takeovers=takeovers)

    def list_conversations(self, limit: int = 50, offset: int = 0) -> schemas.ConversationList:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        items = self._repository.list_conversations(limit=limit, offset=max(offset, 0))
        return schemas.ConversationList(items=items, total=self._repository.count_conversations())

    def list_messages(
        self,
        conversation_id: UUID,
        *,
        limit: int = 20,
        offset: int = 0,
        after: UUID | None = None,
        before: UUID | None = None,
    ) -> schemas.MessagePage:
        self.require(conversation_id)
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(offset, 0)
        after_message = self._resolve_cursor(conversation_id, after)
        before_message = self._resolve_cursor(conversation_id, before)
        messages = self._repository.list_messages(
            conversation_id,
            limit=limit,
            offset=offset,
            after=after_message,
            before=before_message,
        )
        total = self._repository.count_messages(
            conversation_id, after=after_message, before=before_message
        )
        return schemas.MessagePage(
            messages=messages,
            total=total,
            limit=limit,
            offset=offset,
            has_more=offset + len(messages) < total,
        )

    def recent_messages(self, conversation_id: UUID, limit: int) -> list[schemas.Message]:
        return self._repository.recent_messages(conversation_id, limit)

    def _resolve_cursor(self, conversation_id: UUID, message_id: UUID | None) -> schemas.Message | None:
        if message_id is None:
            return None
        message = self._repository.get_message(message_id)
        if message is None or message.conversation_id != conversation_id:
            raise MessageValidationError(f"Message {message_id} does not belong to this conversation")
        return message

    # ------------------------------------------------------------------
    # Mutations (callers hold ``self.locks`` for the conversation)

    def append_message(
        self,
        conversation: schemas.Conversation,
        text: str,
        role: MessageRole,
        *,
        author_user_id: UUID | None = None,
        customer_ip: str | None = None,
    ) -> tuple[schemas.Message, schemas.Conversation]:
        """Persist a message and bump the parent's counters.

        ``created_at`` is strictly later than anything previously recorded on
        the conversation.
        """

        created_at = next_timestamp(conversation.updated_at)
        message = self._repository.add_message(
            conversation.id, text, role, author_user_id, created_at
        )
        updated = self._repository.touch_conversation(
            conversation.id, last_message_at=created_at, customer_ip=customer_ip
        )
        return message, updated

    async def broadcast(self, conversation_id: UUID, event: str, payload: dict) -> None:
        if self._broadcaster is None:
            return
        await self._broadcaster.broadcast(conversation_id, event, payload)

    async def reset_to_automated(self, conversation_id: UUID) -> schemas.Conversation:
        """Administrative reversal back to automated handling."""

        async with self.locks.hold(conversation_id):
            conversation = self.require(conversation_id)
            if conversation.status == ConversationStatus.AUTOMATED:
                return conversation
            conversation = self.state.reset_to_automated(conversation)
            logger.info("Conversation %s reset to automated", conversation_id)
            await self.broadcast(
                conversation_id,
                events.STATUS_CHANGED,
                events.status_changed_payload(conversation, None),
            )
        return conversation


__all__ = ["ConversationService", "MAX_PAGE_SIZE", "WIDGET_REUSABLE_STATUSES"]
