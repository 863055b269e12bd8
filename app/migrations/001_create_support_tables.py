"""Create staff, bot configuration, conversation and knowledge tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from pgvector.sqlalchemy import Vector
from sqlalchemy.dialects import postgresql


revision = "001_create_support_tables"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)
_JSONB = postgresql.JSONB(astext_type=sa.Text())


def _timestamp(name: str, *, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        nullable=nullable,
        server_default=None if nullable else sa.text("now()"),
    )


def upgrade() -> None:
    """Create every table used by the chat core, plus the vector extension."""

    # Embedding columns are dimensionless so switching models only needs a rebuild.
    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "staff_users",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column("email", sa.String(length=320), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("role", sa.String(length=32), nullable=False, server_default=sa.text("'agent'")),
        sa.Column(
            "status", sa.String(length=32), nullable=False, server_default=sa.text("'offline'")
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("role IN ('agent', 'admin')", name="ck_staff_users_role"),
        sa.CheckConstraint(
            "status IN ('available', 'busy', 'offline')", name="ck_staff_users_status"
        ),
    )
    op.create_index("ix_staff_users_email_unique", "staff_users", ["email"], unique=True)
    op.create_index("ix_staff_users_role_status", "staff_users", ["role", "status"])

    op.create_table(
        "bot_configs",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("model", sa.String(length=128), nullable=False),
        sa.Column("temperature", sa.Float(), nullable=False, server_default=sa.text("0.7")),
        sa.Column("system_instructions", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("tools", _JSONB, nullable=False, server_default=sa.text("'[]'::jsonb")),
        _timestamp("created_at"),
    )

    op.create_table(
        "faqs",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "bot_config_id",
            _UUID,
            sa.ForeignKey("bot_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("question", sa.Text(), nullable=False),
        sa.Column("answer", sa.Text(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_faqs_bot_config_id", "faqs", ["bot_config_id"])

    op.create_table(
        "conversations",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(length=255), nullable=False),
        sa.Column(
            "bot_config_id",
            _UUID,
            sa.ForeignKey("bot_configs.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column(
            "status", sa.String(length=16), nullable=False, server_default=sa.text("'automated'")
        ),
        sa.Column(
            "assigned_user_id",
            _UUID,
            sa.ForeignKey("staff_users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("customer_ip", sa.String(length=64), nullable=True),
        sa.Column("message_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _timestamp("last_message_at", nullable=True),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint(
            "status IN ('automated', 'pending', 'human')", name="ck_conversations_status"
        ),
        sa.CheckConstraint(
            "(status = 'human') = (assigned_user_id IS NOT NULL)",
            name="ck_conversations_assignee_matches_status",
        ),
    )
    op.create_index(
        "ix_conversations_customer",
        "conversations",
        ["customer_id", "bot_config_id", "updated_at"],
    )
    op.create_index("ix_conversations_last_message_at", "conversations", ["last_message_at"])

    op.create_table(
        "messages",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "conversation_id",
            _UUID,
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column(
            "author_user_id",
            _UUID,
            sa.ForeignKey("staff_users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "role IN ('customer', 'assistant', 'agent')", name="ck_messages_role"
        ),
    )
    op.create_index("ix_messages_conversation_created", "messages", ["conversation_id", "created_at", "id"])

    op.create_table(
        "takeover_records",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "conversation_id",
            _UUID,
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "triggered_by_user_id",
            _UUID,
            sa.ForeignKey("staff_users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reason", sa.Text(), nullable=False),
        _timestamp("created_at"),
    )
    op.create_index("ix_takeover_records_conversation", "takeover_records", ["conversation_id"])

    op.create_table(
        "documents",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "bot_config_id",
            _UUID,
            sa.ForeignKey("bot_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("file_name", sa.String(length=512), nullable=True),
        sa.Column("text", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "document_chunks",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "document_id",
            _UUID,
            sa.ForeignKey("documents.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("chunk_index", sa.Integer(), nullable=False),
        sa.Column("page", sa.Integer(), nullable=True),
        sa.Column("content", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(), nullable=True),
    )
    op.create_index("ix_document_chunks_document", "document_chunks", ["document_id", "chunk_index"])

    op.create_table(
        "knowledge_entries",
        sa.Column("id", _UUID, primary_key=True, nullable=False),
        sa.Column(
            "bot_config_id",
            _UUID,
            sa.ForeignKey("bot_configs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("source_kind", sa.String(length=16), nullable=False),
        sa.Column("text", sa.Text(), nullable=False),
        sa.Column("embedding", Vector(), nullable=False),
        sa.Column("metadata", _JSONB, nullable=False, server_default=sa.text("'{}'::jsonb")),
        _timestamp("created_at"),
        sa.CheckConstraint(
            "source_kind IN ('faq', 'document')", name="ck_knowledge_entries_source_kind"
        ),
    )
    op.create_index("ix_knowledge_entries_bot_config", "knowledge_entries", ["bot_config_id"])


def downgrade() -> None:
    """Drop the chat core tables in reverse dependency order."""

    op.drop_index("ix_knowledge_entries_bot_config", table_name="knowledge_entries")
    op.drop_table("knowledge_entries")
    op.drop_index("ix_document_chunks_document", table_name="document_chunks")
    op.drop_table("document_chunks")
    op.drop_table("documents")
    op.drop_index("ix_takeover_records_conversation", table_name="takeover_records")
    op.drop_table("takeover_records")
    op.drop_index("ix_messages_conversation_created", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ix_conversations_last_message_at", table_name="conversations")
    op.drop_index("ix_conversations_customer", table_name="conversations")
    op.drop_table("conversations")
    op.drop_index("ix_faqs_bot_config_id", table_name="faqs")
    op.drop_table("faqs")
    op.drop_table("bot_configs")
    op.drop_index("ix_staff_users_role_status", table_name="staff_users")
    op.drop_index("ix_staff_users_email_unique", table_name="staff_users")
    op.drop_table("staff_users")
