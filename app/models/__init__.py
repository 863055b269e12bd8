"""SQLAlchemy declarative base and staff-facing models.

Conversation, message and knowledge tables are accessed through psycopg
repositories; only staff accounts go through the ORM. This package exposes the
single declarative ``Base`` used by those models and by the migrations.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


from .staff import STAFF_ROLES, STAFF_STATUSES, StaffUser


__all__ = [
    "Base",
    "STAFF_ROLES",
    "STAFF_STATUSES",
    "StaffUser",
]
