"""Staff accounts as seen by assignment, authentication and presence."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from app.models import STAFF_STATUSES, StaffUser
from app.security.passwords import verify_password

logger = logging.getLogger(__name__)


class StaffNotFoundError(RuntimeError):
    """Raised when a staff account does not exist."""


@dataclass(frozen=True)
class StaffMember:
    id: uuid.UUID
    email: str
    name: str
    role: str = "agent"
    status: str = "offline"
    is_active: bool = True

    @property
    def is_assignable(self) -> bool:
        return self.is_active and self.role == "agent" and self.status == "available"


def _from_model(user: StaffUser) -> StaffMember:
    return StaffMember(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role,
        status=user.status,
        is_active=user.is_active,
    )


def _check_status(status: str) -> None:
    if status not in STAFF_STATUSES:
        raise ValueError(f"Unknown staff status: {status}")


class StaffDirectory(Protocol):
    def get(self, staff_id: uuid.UUID) -> Optional[StaffMember]: ...

    def list_available_agents(self) -> List[StaffMember]: ...

    def authenticate(self, email: str, password: str) -> Optional[StaffMember]: ...

    def set_status(self, staff_id: uuid.UUID, status: str) -> StaffMember: ...


class SqlAlchemyStaffDirectory:
    """Staff lookups through the ORM session factory."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, staff_id: uuid.UUID) -> Optional[StaffMember]:
        with self._session_factory() as session:
            user = session.get(StaffUser, staff_id)
            return _from_model(user) if user is not None else None

    def list_available_agents(self) -> List[StaffMember]:
        stmt = (
            select(StaffUser)
            .where(StaffUser.role == "agent")
            .where(StaffUser.status == "available")
            .where(StaffUser.is_active.is_(True))
            .order_by(StaffUser.created_at.asc(), StaffUser.email.asc())
        )
        with self._session_factory() as session:
            return [_from_model(user) for user in session.execute(stmt).scalars()]

    def authenticate(self, email: str, password: str) -> Optional[StaffMember]:
        stmt = select(StaffUser).where(func.lower(StaffUser.email) == email.strip().lower())
        with self._session_factory() as session:
            user = session.execute(stmt).scalar_one_or_none()
            if user is None or not user.is_active:
                return None
            valid, replacement = verify_password(password, user.password_hash)
            if not valid:
                return None
            if replacement:
                user.password_hash = replacement
                session.commit()
                logger.info("Upgraded password hash for staff %s", user.id)
            return _from_model(user)

    def set_status(self, staff_id: uuid.UUID, status: str) -> StaffMember:
        _check_status(status)
        with self._session_factory() as session:
            user = session.get(StaffUser, staff_id)
            if user is None:
                raise StaffNotFoundError(f"Staff member {staff_id} not found")
            user.status = status
            user.updated_at = datetime.now(timezone.utc)
            session.commit()
            return _from_model(user)


class InMemoryStaffDirectory(StaffDirectory):
    def __init__(self, members: Optional[List[StaffMember]] = None) -> None:
        self._members: Dict[uuid.UUID, StaffMember] = {}
        self._password_hashes: Dict[uuid.UUID, str] = {}
        for member in members or []:
            self.add(member)

    def add(self, member: StaffMember, password_hash: Optional[str] = None) -> StaffMember:
        self._members[member.id] = member
        if password_hash:
            self._password_hashes[member.id] = password_hash
        return member

    def set_status(self, staff_id: uuid.UUID, status: str) -> StaffMember:
        _check_status(status)
        if staff_id not in self._members:
            raise StaffNotFoundError(f"Staff member {staff_id} not found")
        member = replace(self._members[staff_id], status=status)
        self._members[staff_id] = member
        return member

    def get(self, staff_id: uuid.UUID) -> Optional[StaffMember]:
        return self._members.get(staff_id)

    def list_available_agents(self) -> List[StaffMember]:
        return [m for m in self._members.values() if m.is_assignable]

    def authenticate(self, email: str, password: str) -> Optional[StaffMember]:
        wanted = email.strip().lower()
        for member in self._members.values():
            if member.email.lower() != wanted or not member.is_active:
                continue
            valid, replacement = verify_password(password, self._password_hashes.get(member.id))
            if not valid:
                return None
            if replacement:
                self._password_hashes[member.id] = replacement
            return member
        return None


__all__ = [
    "InMemoryStaffDirectory",
    "SqlAlchemyStaffDirectory",
    "StaffDirectory",
    "StaffMember",
    "StaffNotFoundError",
]
