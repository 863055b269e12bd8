"""Staff account model.

Staff accounts are owned by account management; the chat core only reads them
to authenticate dashboard connections and to pick an agent when a
conversation is escalated. The table mirrors the DDL in
``app/migrations/001_create_support_tables.py``.
"""

from __future__ import annotations

import datetime as dt
import uuid

from sqlalchemy import DateTime, Index, String, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from . import Base

STAFF_ROLES = ("agent", "admin")
STAFF_STATUSES = ("available", "busy", "offline")


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class StaffUser(Base):
    """A support agent or administrator.

    Attributes:
        id: Primary key.
        email: Unique e-mail address used for authentication.
        name: Display name shown to customers when the agent joins.
        password_hash: Argon2 hash of the account password.
        role: ``agent`` or ``admin``.
        status: Presence reported by the dashboard (``available``, ``busy``
            or ``offline``). Only ``available`` agents receive escalations.
        is_active: Disabled accounts can neither log in nor be assigned.
    """

    __tablename__ = "staff_users"
    __table_args__ = (
        Index("ix_staff_users_email_unique", "email", unique=True),
        Index("ix_staff_users_role_status", "role", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    email: Mapped[str] = mapped_column(String(length=320), nullable=False)
    name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(length=255), nullable=False)
    role: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="agent",
        server_default=text("'agent'"),
    )
    status: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="offline",
        server_default=text("'offline'"),
    )
    is_active: Mapped[bool] = mapped_column(
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        onupdate=_utcnow,
    )
