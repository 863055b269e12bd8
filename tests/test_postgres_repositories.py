"""Repository round trips against a real Postgres with pgvector.

Set ``TEST_DATABASE_URL`` to run these; they are skipped otherwise.
"""

from __future__ import annotations

import os
import uuid
from datetime import datetime, timedelta, timezone

import pytest

from app.bots.repository import PostgresBotConfigRepository
from app.bots.schemas import BotConfigCreate, FaqCreate
from app.conversations.models import ConversationStatus, MessageRole
from app.conversations.repository import PostgresConversationRepository
from app.core.db import connection_factory
from app.knowledge.repository import PostgresDocumentRepository, PostgresKnowledgeRepository
from app.knowledge.schemas import DocumentChunk, SourceKind

DATABASE_URL = os.getenv("TEST_DATABASE_URL")

pytestmark = pytest.mark.skipif(not DATABASE_URL, reason="TEST_DATABASE_URL not set")


@pytest.fixture(scope="module")
def connect():
    from seed import _run_schema_migrations

    _run_schema_migrations(DATABASE_URL)
    return connection_factory(DATABASE_URL)


@pytest.fixture
def bot(connect):
    return PostgresBotConfigRepository(connect).create_bot_config(
        BotConfigCreate(
            name="Integration",
            model="gpt-4",
            system_instructions="Be brief.",
            faqs=[FaqCreate(question="Hours?", answer="Nine to five.")],
        )
    )


def test_bot_config_round_trip(connect, bot):
    repo = PostgresBotConfigRepository(connect)
    loaded = repo.get_by_id(bot.id)
    assert loaded is not None
    assert [faq.answer for faq in loaded.faqs] == ["Nine to five."]
    assert repo.get_latest().id == bot.id


def test_conversation_messages_and_takeovers(connect, bot):
    repo = PostgresConversationRepository(connect)
    start = datetime.now(timezone.utc)
    conversation = repo.create_conversation(
        "pg-cust", bot.id, created_at=start, customer_ip="192.0.2.1"
    )

    stamps = [start + timedelta(microseconds=i + 1) for i in range(3)]
    messages = []
    for i, stamp in enumerate(stamps):
        messages.append(repo.add_message(conversation.id, f"m{i}", MessageRole.CUSTOMER, None, stamp))
        touched = repo.touch_conversation(conversation.id, last_message_at=stamp)
    assert touched.message_count == 3
    assert touched.last_message_at == stamps[-1]
    assert touched.customer_ip == "192.0.2.1"

    page = repo.list_messages(conversation.id, limit=10, after=messages[0])
    assert [m.text for m in page] == ["m1", "m2"]
    assert repo.count_messages(conversation.id, before=messages[2]) == 2
    assert [m.text for m in repo.recent_messages(conversation.id, 2)] == ["m1", "m2"]

    found = repo.find_latest_for_customer(
        "pg-cust", bot.id, [ConversationStatus.AUTOMATED, ConversationStatus.PENDING]
    )
    assert found is not None and found.id == conversation.id

    staff_id = uuid.uuid4()
    with connect() as conn, conn.cursor() as cur:
        cur.execute(
            "INSERT INTO staff_users (id, email, name, password_hash, role, status, is_active,"
            " created_at, updated_at) VALUES (%s, %s, %s, %s, 'agent', 'available', true,"
            " now(), now())",
            (staff_id, f"{staff_id}@example.com", "Integration Agent", "x"),
        )
    record = repo.add_takeover(conversation.id, staff_id, "integration", stamps[-1])
    assert [t.id for t in repo.list_takeovers(conversation.id)] == [record.id]


def test_similarity_search_and_rebuild_cleanup(connect, bot):
    knowledge = PostgresKnowledgeRepository(connect)
    documents = PostgresDocumentRepository(connect)
    documents.add_document(
        bot.id,
        file_name="manual.pdf",
        chunks=[DocumentChunk(page=1, content="Reset your password", embedding=[0.0, 1.0, 0.0])],
    )
    assert [d.file_name for d in documents.list_documents(bot.id)] == ["manual.pdf"]

    close = knowledge.add_entry(bot.id, SourceKind.FAQ, "close", [1.0, 0.0, 0.0], {"type": "faq"})
    knowledge.add_entry(
        bot.id, SourceKind.DOCUMENT, "far", [0.0, 1.0, 0.0], {"file_name": "manual.pdf"}
    )

    hits = knowledge.similar([1.0, 0.1, 0.0], bot_config_id=bot.id, threshold=0.5, limit=5)
    assert [entry.id for entry, _ in hits] == [close.id]
    assert hits[0][1] == pytest.approx(0.995, abs=1e-3)

    assert knowledge.delete_for_config(bot.id) == 2
    assert knowledge.list_entries(bot.id) == []
