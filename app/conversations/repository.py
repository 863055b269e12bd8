"""Persistence for conversations, messages and takeover records."""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Optional, Protocol
from uuid import UUID, uuid4

from app.core.db import ConnectionFactory, dict_cursor

from . import schemas
from .models import ConversationStatus, MessageRole


class ConversationRepository(Protocol):
    """Abstraction for persisting conversation artefacts."""

    def create_conversation(
        self,
        customer_id: str,
        bot_config_id: UUID,
        *,
        created_at: datetime,
        assigned_user_id: Optional[UUID] = None,
        customer_ip: Optional[str] = None,
    ) -> schemas.Conversation: ...

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]: ...

    def find_latest_for_customer(
        self,
        customer_id: str,
        bot_config_id: UUID,
        statuses: Iterable[ConversationStatus],
    ) -> Optional[schemas.Conversation]: ...

    def list_conversations(self, limit: int = 50, offset: int = 0) -> List[schemas.Conversation]: ...

    def count_conversations(self) -> int: ...

    def touch_conversation(
        self,
        conversation_id: UUID,
        *,
        last_message_at: datetime,
        customer_ip: Optional[str] = None,
    ) -> schemas.Conversation: ...

    def set_status(
        self,
        conversation_id: UUID,
        status: ConversationStatus,
        *,
        assigned_user_id: Optional[UUID],
        updated_at: datetime,
    ) -> schemas.Conversation: ...

    def add_message(
        self,
        conversation_id: UUID,
        text: str,
        role: MessageRole,
        author_user_id: Optional[UUID],
        created_at: datetime,
    ) -> schemas.Message: ...

    def get_message(self, message_id: UUID) -> Optional[schemas.Message]: ...

    def list_messages(
        self,
        conversation_id: UUID,
        *,
        limit: int,
        offset: int = 0,
        after: Optional[schemas.Message] = None,
        before: Optional[schemas.Message] = None,
    ) -> List[schemas.Message]: ...

    def count_messages(
        self,
        conversation_id: UUID,
        *,
        after: Optional[schemas.Message] = None,
        before: Optional[schemas.Message] = None,
    ) -> int: ...

    def recent_messages(self, conversation_id: UUID, limit: int) -> List[schemas.Message]: ...

    def add_takeover(
        self,
        conversation_id: UUID,
        triggered_by_user_id: UUID,
        reason: str,
        created_at: datetime,
    ) -> schemas.TakeoverRecord: ...

    def list_takeovers(self, conversation_id: UUID) -> List[schemas.TakeoverRecord]: ...


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`.

    Each call opens its own autocommit connection through ``connect`` and
    issues a single statement.
    """

    def __init__(self, connect: ConnectionFactory) -> None:
        self._connect = connect

    # Utility -----------------------------------------------------------------
    def _cursor(self):
        return dict_cursor(self._connect)

    @staticmethod
    def _window_clause(
        after: Optional[schemas.Message], before: Optional[schemas.Message]
    ) -> tuple[str, list[object]]:
        clauses: list[str] = []
        params: list[object] = []
        if after is not None:
            clauses.append("(created_at, id) > (%s, %s)")
            params.extend([after.created_at, after.id])
        if before is not None:
            clauses.append("(created_at, id) < (%s, %s)")
            params.extend([before.created_at, before.id])
        sql = "".join(f" AND {clause}" for clause in clauses)
        return sql, params

    # Conversation operations --------------------------------------------------
    def create_conversation(
        self,
        customer_id: str,
        bot_config_id: UUID,
        *,
        created_at: datetime,
        assigned_user_id: Optional[UUID] = None,
        customer_ip: Optional[str] = None,
    ) -> schemas.Conversation:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO conversations
                    (id, customer_id, bot_config_id, status, assigned_user_id, customer_ip,
                     message_count, created_at, updated_at)
                VALUES (%s, %s, %s, %s, %s, %s, 0, %s, %s)
                RETURNING *
                """,
                (
                    uuid4(),
                    customer_id,
                    bot_config_id,
                    ConversationStatus.AUTOMATED.value,
                    assigned_user_id,
                    customer_ip,
                    created_at,
                    created_at,
                ),
            )
            row = cur.fetchone()
        return schemas.Conversation(**row)

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM conversations WHERE id = %s", (conversation_id,))
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Conversation(**row)

    def find_latest_for_customer(
        self,
        customer_id: str,
        bot_config_id: UUID,
        statuses: Iterable[ConversationStatus],
    ) -> Optional[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM conversations
                WHERE customer_id = %s AND bot_config_id = %s AND status = ANY(%s)
                ORDER BY updated_at DESC
                LIMIT 1
                """,
                (customer_id, bot_config_id, [ConversationStatus(s).value for s in statuses]),
            )
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Conversation(**row)

    def list_conversations(self, limit: int = 50, offset: int = 0) -> List[schemas.Conversation]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM conversations
                ORDER BY last_message_at DESC NULLS LAST, updated_at DESC
                LIMIT %s OFFSET %s
                """,
                (limit, offset),
            )
            rows = cur.fetchall()
        return [schemas.Conversation(**row) for row in rows]

    def count_conversations(self) -> int:
        with self._cursor() as cur:
            cur.execute("SELECT count(*) AS total FROM conversations")
            row = cur.fetchone()
        return int(row["total"]) if row else 0

    def touch_conversation(
        self,
        conversation_id: UUID,
        *,
        last_message_at: datetime,
        customer_ip: Optional[str] = None,
    ) -> schemas.Conversation:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET message_count = message_count + 1,
                    last_message_at = %s,
                    updated_at = %s,
                    customer_ip = coalesce(%s, customer_ip)
                WHERE id = %s
                RETURNING *
                """,
                (last_message_at, last_message_at, customer_ip, conversation_id),
            )
            row = cur.fetchone()
        if not row:
            raise LookupError(f"Conversation {conversation_id} not found")
        return schemas.Conversation(**row)

    def set_status(
        self,
        conversation_id: UUID,
        status: ConversationStatus,
        *,
        assigned_user_id: Optional[UUID],
        updated_at: datetime,
    ) -> schemas.Conversation:
        with self._cursor() as cur:
            cur.execute(
                """
                UPDATE conversations
                SET status = %s, assigned_user_id = %s, updated_at = %s
                WHERE id = %s
                RETURNING *
                """,
                (ConversationStatus(status).value, assigned_user_id, updated_at, conversation_id),
            )
            row = cur.fetchone()
        if not row:
            raise LookupError(f"Conversation {conversation_id} not found")
        return schemas.Conversation(**row)

    # Messages -----------------------------------------------------------------
    def add_message(
        self,
        conversation_id: UUID,
        text: str,
        role: MessageRole,
        author_user_id: Optional[UUID],
        created_at: datetime,
    ) -> schemas.Message:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO messages (id, conversation_id, text, role, author_user_id, created_at)
                VALUES (%s, %s, %s, %s, %s, %s)
                RETURNING *
                """,
                (uuid4(), conversation_id, text, MessageRole(role).value, author_user_id, created_at),
            )
            row = cur.fetchone()
        return schemas.Message(**row)

    def get_message(self, message_id: UUID) -> Optional[schemas.Message]:
        with self._cursor() as cur:
            cur.execute("SELECT * FROM messages WHERE id = %s", (message_id,))
            row = cur.fetchone()
        if not row:
            return None
        return schemas.Message(**row)

    def list_messages(
        self,
        conversation_id: UUID,
        *,
        limit: int,
        offset: int = 0,
        after: Optional[schemas.Message] = None,
        before: Optional[schemas.Message] = None,
    ) -> List[schemas.Message]:
        window_sql, window_params = self._window_clause(after, before)
        with self._cursor() as cur:
            cur.execute(
                "SELECT * FROM messages WHERE conversation_id = %s"
                + window_sql
                + " ORDER BY created_at ASC, id ASC LIMIT %s OFFSET %s",
                (conversation_id, *window_params, limit, offset),
            )
            rows = cur.fetchall()
        return [schemas.Message(**row) for row in rows]

    def count_messages(
        self,
        conversation_id: UUID,
        *,
        after: Optional[schemas.Message] = None,
        before: Optional[schemas.Message] = None,
    ) -> int:
        window_sql, window_params = self._window_clause(after, before)
        with self._cursor() as cur:
            cur.execute(
                "SELECT count(*) AS total FROM messages WHERE conversation_id = %s" + window_sql,
                (conversation_id, *window_params),
            )
            row = cur.fetchone()
        return int(row["total"]) if row else 0

    def recent_messages(self, conversation_id: UUID, limit: int) -> List[schemas.Message]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM (
                    SELECT * FROM messages
                    WHERE conversation_id = %s
                    ORDER BY created_at DESC, id DESC
                    LIMIT %s
                ) recent
                ORDER BY created_at ASC, id ASC
                """,
                (conversation_id, limit),
            )
            rows = cur.fetchall()
        return [schemas.Message(**row) for row in rows]

    # Takeovers ----------------------------------------------------------------
    def add_takeover(
        self,
        conversation_id: UUID,
        triggered_by_user_id: UUID,
        reason: str,
        created_at: datetime,
    ) -> schemas.TakeoverRecord:
        with self._cursor() as cur:
            cur.execute(
                """
                INSERT INTO takeover_records
                    (id, conversation_id, triggered_by_user_id, reason, created_at)
                VALUES (%s, %s, %s, %s, %s)
                RETURNING *
                """,
                (uuid4(), conversation_id, triggered_by_user_id, reason, created_at),
            )
            row = cur.fetchone()
        return schemas.TakeoverRecord(**row)

    def list_takeovers(self, conversation_id: UUID) -> List[schemas.TakeoverRecord]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT * FROM takeover_records
                WHERE conversation_id = %s
                ORDER BY created_at ASC
                """,
                (conversation_id,),
            )
            rows = cur.fetchall()
        return [schemas.TakeoverRecord(**row) for row in rows]


class InMemoryConversationRepository(ConversationRepository):
    def __init__(self) -> None:
        self._conversations: Dict[UUID, schemas.Conversation] = {}
        self._messages: Dict[UUID, List[schemas.Message]] = {}
        self._message_index: Dict[UUID, schemas.Message] = {}
        self._takeovers: Dict[UUID, List[schemas.TakeoverRecord]] = {}

    def create_conversation(
        self,
        customer_id: str,
        bot_config_id: UUID,
        *,
        created_at: datetime,
        assigned_user_id: Optional[UUID] = None,
        customer_ip: Optional[str] = None,
    ) -> schemas.Conversation:
        conversation = schemas.Conversation(
            id=uuid4(),
            customer_id=customer_id,
            bot_config_id=bot_config_id,
            assigned_user_id=assigned_user_id,
            customer_ip=customer_ip,
            created_at=created_at,
            updated_at=created_at,
        )
        self._conversations[conversation.id] = conversation
        self._messages[conversation.id] = []
        self._takeovers[conversation.id] = []
        return conversation.model_copy()

    def get_conversation(self, conversation_id: UUID) -> Optional[schemas.Conversation]:
        conversation = self._conversations.get(conversation_id)
        return conversation.model_copy() if conversation else None

    def find_latest_for_customer(
        self,
        customer_id: str,
        bot_config_id: UUID,
        statuses: Iterable[ConversationStatus],
    ) -> Optional[schemas.Conversation]:
        wanted = {ConversationStatus(s) for s in statuses}
        candidates = [
            c
            for c in self._conversations.values()
            if c.customer_id == customer_id and c.bot_config_id == bot_config_id and c.status in wanted
        ]
        if not candidates:
            return None
        latest = max(candidates, key=lambda c: c.updated_at)
        return latest.model_copy()

    def list_conversations(self, limit: int = 50, offset: int = 0) -> List[schemas.Conversation]:
        ordered = sorted(
            self._conversations.values(),
            key=lambda c: (
                c.last_message_at is not None,
                c.last_message_at or c.updated_at,
                c.updated_at,
            ),
            reverse=True,
        )
        return [c.model_copy() for c in ordered[offset : offset + limit]]

    def count_conversations(self) -> int:
        return len(self._conversations)

    def touch_conversation(
        self,
        conversation_id: UUID,
        *,
        last_message_at: datetime,
        customer_ip: Optional[str] = None,
    ) -> schemas.Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise LookupError(f"Conversation {conversation_id} not found")
        conversation.message_count += 1
        conversation.last_message_at = last_message_at
        conversation.updated_at = last_message_at
        if customer_ip:
            conversation.customer_ip = customer_ip
        return conversation.model_copy()

    def set_status(
        self,
        conversation_id: UUID,
        status: ConversationStatus,
        *,
        assigned_user_id: Optional[UUID],
        updated_at: datetime,
    ) -> schemas.Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise LookupError(f"Conversation {conversation_id} not found")
        conversation.status = ConversationStatus(status)
        conversation.assigned_user_id = assigned_user_id
        conversation.updated_at = updated_at
        return conversation.model_copy()

    def add_message(
        self,
        conversation_id: UUID,
        text: str,
        role: MessageRole,
        author_user_id: Optional[UUID],
        created_at: datetime,
    ) -> schemas.Message:
        message = schemas.Message(
            id=uuid4(),
            conversation_id=conversation_id,
            text=text,
            role=MessageRole(role),
            author_user_id=author_user_id,
            created_at=created_at,
        )
        self._messages.setdefault(conversation_id, []).append(message)
        self._message_index[message.id] = message
        return message.model_copy()

    def get_message(self, message_id: UUID) -> Optional[schemas.Message]:
        message = self._message_index.get(message_id)
        return message.model_copy() if message else None

    def _window(
        self,
        conversation_id: UUID,
        after: Optional[schemas.Message],
        before: Optional[schemas.Message],
    ) -> List[schemas.Message]:
        messages = sorted(self._messages.get(conversation_id, []), key=lambda m: (m.created_at, str(m.id)))
        if after is not None:
            messages = [m for m in messages if (m.created_at, str(m.id)) > (after.created_at, str(after.id))]
        if before is not None:
            messages = [m for m in messages if (m.created_at, str(m.id)) < (before.created_at, str(before.id))]
        return messages

    def list_messages(
        self,
        conversation_id: UUID,
        *,
        limit: int,
        offset: int = 0,
        after: Optional[schemas.Message] = None,
        before: Optional[schemas.Message] = None,
    ) -> List[schemas.Message]:
        window = self._window(conversation_id, after, before)
        return [m.model_copy() for m in window[offset : offset + limit]]

    def count_messages(
        self,
        conversation_id: UUID,
        *,
        after: Optional[schemas.Message] = None,
        before: Optional[schemas.Message] = None,
    ) -> int:
        return len(self._window(conversation_id, after, before))

    def recent_messages(self, conversation_id: UUID, limit: int) -> List[schemas.Message]:
        window = self._window(conversation_id, None, None)
        return [m.model_copy() for m in window[-limit:]] if limit > 0 else []

    def add_takeover(
        self,
        conversation_id: UUID,
        triggered_by_user_id: UUID,
        reason: str,
        created_at: datetime,
    ) -> schemas.TakeoverRecord:
        record = schemas.TakeoverRecord(
            id=uuid4(),
            conversation_id=conversation_id,
            triggered_by_user_id=triggered_by_user_id,
            reason=reason,
            created_at=created_at,
        )
        self._takeovers.setdefault(conversation_id, []).append(record)
        return record.model_copy()

    def list_takeovers(self, conversation_id: UUID) -> List[schemas.TakeoverRecord]:
        return [r.model_copy() for r in self._takeovers.get(conversation_id, [])]


__all__ = [
    "ConversationRepository",
    "InMemoryConversationRepository",
    "PostgresConversationRepository",
]
