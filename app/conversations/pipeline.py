"""Message ingestion: validate, persist, broadcast, then follow up.

For every inbound message the pipeline holds the conversation lock while it
validates the submitter, persists the message, bumps counters and broadcasts
``new-message``. Follow-up work runs after the lock is released:

* a customer message containing an escalation keyword goes straight to the
  escalation manager;
* a customer message on a ``pending`` conversation retries the escalation;
* a customer message on an ``automated`` conversation schedules an assistant
  reply as a background task.

The assistant follow-up re-acquires the lock and re-checks the status before
posting, so a reply that lost the race to a human takeover is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional, Set
from uuid import UUID

from app.assistant.heuristics import requests_escalation
from app.assistant.orchestrator import AssistantReply, ResponseOrchestrator
from app.escalation.manager import (
    ASSISTANT_SUGGESTION_REASON,
    CUSTOMER_REQUEST_REASON,
    PENDING_RETRY_REASON,
    EscalationManager,
)
from app.realtime import events

from . import schemas
from .errors import MessageValidationError
from .models import ConnectionContext, ConversationStatus, IncomingMessage, MessageRole
from .service import ConversationService

logger = logging.getLogger(__name__)

_STAFF_ROLES = frozenset({MessageRole.CUSTOMER, MessageRole.AGENT})
_WIDGET_ROLES = frozenset({MessageRole.CUSTOMER})


class MessageIngestionPipeline:
    def __init__(
        self,
        conversations: ConversationService,
        orchestrator: ResponseOrchestrator,
        escalation: EscalationManager,
        *,
        max_message_length: int = 5000,
        history_window: int = 20,
    ) -> None:
        self._conversations = conversations
        self._orchestrator = orchestrator
        self._escalation = escalation
        self._max_length = max_message_length
        self._history_window = history_window
        self._tasks: Set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # Validation

    def _validate(self, incoming: IncomingMessage, context: ConnectionContext) -> MessageRole:
        try:
            role = MessageRole(incoming.role)
        except ValueError as exc:
            raise MessageValidationError(f"Unknown role: {incoming.role}") from exc
        text = incoming.text or ""
        if not text.strip():
            raise MessageValidationError("Message text is required")
        if len(text) > self._max_length:
            raise MessageValidationError("Message too long")
        allowed = _STAFF_ROLES if context.is_staff else _WIDGET_ROLES
        if role not in allowed:
            raise MessageValidationError(f"Role '{role.value}' is not allowed for this connection")
        return role

    @staticmethod
    def _author(role: MessageRole, incoming: IncomingMessage, context: ConnectionContext) -> Optional[UUID]:
        if role == MessageRole.CUSTOMER:
            return None
        return incoming.author_user_id or context.staff_id

    # ------------------------------------------------------------------
    # Ingestion

    async def ingest(self, incoming: IncomingMessage, context: ConnectionContext) -> schemas.Message:
        """Persist and broadcast ``incoming``; schedule any follow-up."""

        role = self._validate(incoming, context)
        conversation_id = incoming.conversation_id
        async with self._conversations.locks.hold(conversation_id):
            conversation = self._conversations.require(conversation_id)
            message, conversation = self._conversations.append_message(
                conversation,
                incoming.text,
                role,
                author_user_id=self._author(role, incoming, context),
                customer_ip=context.client_ip if role == MessageRole.CUSTOMER else None,
            )
            await self._conversations.broadcast(
                conversation_id, events.NEW_MESSAGE, events.new_message_payload(message)
            )

        if role != MessageRole.CUSTOMER:
            return message

        if requests_escalation(message.text):
            await self._escalation.escalate(conversation_id, CUSTOMER_REQUEST_REASON)
        elif conversation.status == ConversationStatus.PENDING:
            await self._escalation.escalate(conversation_id, PENDING_RETRY_REASON)
        elif conversation.status == ConversationStatus.AUTOMATED:
            self._schedule(self._assistant_follow_up(conversation.id, conversation.bot_config_id, message))
        return message

    # ------------------------------------------------------------------
    # Assistant follow-up

    def _schedule(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _assistant_follow_up(
        self, conversation_id: UUID, bot_config_id: UUID, trigger: schemas.Message
    ) -> Optional[schemas.Message]:
        try:
            history = [
                m
                for m in self._conversations.recent_messages(conversation_id, self._history_window)
                if m.id != trigger.id
            ]
            reply = await self._orchestrator.respond(trigger.text, history, bot_config_id)
            return await self._post_reply(conversation_id, reply)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Assistant follow-up failed for conversation %s", conversation_id)
            return None

    async def _post_reply(self, conversation_id: UUID, reply: AssistantReply) -> Optional[schemas.Message]:
        async with self._conversations.locks.hold(conversation_id):
            conversation = self._conversations.require(conversation_id)
            if conversation.status != ConversationStatus.AUTOMATED:
                logger.info(
                    "Dropping assistant reply for conversation %s (status %s)",
                    conversation_id,
                    conversation.status.value,
                )
                return None
            if reply.escalate:
                conversation = self._conversations.state.request_pending(conversation)
            message, conversation = self._conversations.append_message(
                conversation, reply.text, MessageRole.ASSISTANT
            )
            await self._conversations.broadcast(
                conversation_id, events.NEW_MESSAGE, events.new_message_payload(message)
            )
            if reply.escalate:
                await self._conversations.broadcast(
                    conversation_id,
                    events.STATUS_CHANGED,
                    events.status_changed_payload(conversation, None),
                )

        if reply.escalate:
            reason = ASSISTANT_SUGGESTION_REASON
            if reply.reason:
                reason = f"{reason}: {reply.reason}"
            await self._escalation.escalate(conversation_id, reason)
        return message

    # ------------------------------------------------------------------
    # Lifecycle

    @property
    def pending_tasks(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every scheduled follow-up to finish."""

        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        await self.drain()


__all__ = ["MessageIngestionPipeline"]
