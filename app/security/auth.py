"""JWT-backed authentication dependencies for FastAPI routers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Callable, Mapping

from fastapi import Depends, HTTPException, Request, status

from .tokens import (
    StaffIdentity,
    TokenConfigurationError,
    TokenValidationError,
    decode_access_token,
)

if TYPE_CHECKING:  # pragma: no cover - typing only
    from app.escalation.directory import StaffMember


_ROLE_LEVELS = {"agent": 1, "admin": 2}


def extract_bearer_token(headers: Mapping[str, str]) -> str | None:
    """Return the token from an ``Authorization: Bearer`` header, if any."""

    auth_header = headers.get("authorization") or headers.get("Authorization")
    if not auth_header:
        return None
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


async def get_current_identity(request: Request) -> StaffIdentity:
    """Decode and validate the bearer token from ``request``."""

    token = extract_bearer_token(request.headers)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing bearer token.",
        )
    try:
        return decode_access_token(token)
    except TokenConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(exc),
        ) from exc
    except TokenValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token.",
        ) from exc


async def get_current_staff(
    request: Request,
    identity: StaffIdentity = Depends(get_current_identity),
) -> "StaffMember":
    """Resolve the authenticated staff member from the token identity."""

    directory = request.app.state.runtime.staff_directory
    staff = directory.get(identity.agent_id)
    if staff is None or not staff.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User is inactive or no longer exists.",
        )
    return staff


def require_role(min_role: str) -> Callable[..., object]:
    """Create a dependency ensuring the caller has at least ``min_role`` privileges."""

    if min_role not in _ROLE_LEVELS:
        raise ValueError(f"Unknown role: {min_role}")

    async def dependency(staff: "StaffMember" = Depends(get_current_staff)) -> "StaffMember":
        level = _ROLE_LEVELS.get(staff.role)
        if level is None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="No roles assigned to user.",
            )
        if level < _ROLE_LEVELS[min_role]:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient role.",
            )
        return staff

    return dependency


__all__ = [
    "extract_bearer_token",
    "get_current_identity",
    "get_current_staff",
    "require_role",
]
