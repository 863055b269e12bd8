"""Helpers for issuing and verifying staff access tokens."""

from __future__ import annotations

import dataclasses
import datetime as dt
import os
import uuid
from functools import lru_cache
from typing import Any, Protocol

import jwt


class TokenConfigurationError(RuntimeError):
    """Raised when token settings are missing from the environment."""


class TokenValidationError(ValueError):
    """Raised when a bearer token cannot be verified."""


@dataclasses.dataclass(frozen=True)
class JWTSettings:
    """Runtime configuration for issuing authentication tokens."""

    secret: str
    issuer: str
    audience: str
    algorithm: str = "HS256"
    access_token_ttl_seconds: int = 60 * 60 * 8  # one working shift


@dataclasses.dataclass(frozen=True)
class StaffIdentity:
    """Claims carried by a verified staff access token."""

    agent_id: uuid.UUID
    role: str
    email: str | None = None


class _TokenSubject(Protocol):
    id: uuid.UUID
    role: str
    email: str


@lru_cache(maxsize=1)
def get_jwt_settings() -> JWTSettings:
    """Load token settings from the environment."""

    secret = os.getenv("AUTH_TOKEN_SECRET")
    issuer = os.getenv("AUTH_TOKEN_ISSUER")
    audience = os.getenv("AUTH_TOKEN_AUDIENCE")
    algorithm = os.getenv("AUTH_TOKEN_ALGORITHM", "HS256")
    if not secret or not issuer or not audience:
        raise TokenConfigurationError(
            "AUTH_TOKEN_SECRET, AUTH_TOKEN_ISSUER and AUTH_TOKEN_AUDIENCE must be set.",
        )
    access_ttl = int(os.getenv("ACCESS_TOKEN_TTL_SECONDS", str(60 * 60 * 8)))
    return JWTSettings(
        secret=secret,
        issuer=issuer,
        audience=audience,
        algorithm=algorithm,
        access_token_ttl_seconds=access_ttl,
    )


def reset_jwt_settings_cache() -> None:
    """Clear cached JWT settings; useful in tests when env vars change."""

    get_jwt_settings.cache_clear()


def _utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


def create_access_token(
    staff: _TokenSubject, *, settings: JWTSettings | None = None
) -> tuple[str, dt.datetime]:
    """Issue a signed JWT access token for ``staff``."""

    settings = settings or get_jwt_settings()
    now = _utcnow()
    expires_at = now + dt.timedelta(seconds=settings.access_token_ttl_seconds)
    payload: dict[str, Any] = {
        "sub": str(staff.id),
        "role": staff.role,
        "email": staff.email,
        "iss": settings.issuer,
        "aud": settings.audience,
        "iat": int(now.timestamp()),
        "exp": int(expires_at.timestamp()),
        "type": "access",
    }
    token = jwt.encode(payload, settings.secret, algorithm=settings.algorithm)
    return str(token), expires_at


def decode_access_token(token: str, *, settings: JWTSettings | None = None) -> StaffIdentity:
    """Verify ``token`` and return the staff identity it carries."""

    settings = settings or get_jwt_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret,
            algorithms=[settings.algorithm],
            audience=settings.audience,
            issuer=settings.issuer,
            options={"require": ["exp", "aud", "iss", "sub"]},
        )
    except jwt.PyJWTError as exc:
        raise TokenValidationError(str(exc)) from exc

    if payload.get("type", "access") != "access":
        raise TokenValidationError("Access token required.")
    try:
        agent_id = uuid.UUID(str(payload["sub"]))
    except (KeyError, ValueError) as exc:
        raise TokenValidationError("Invalid subject in token.") from exc
    role = payload.get("role")
    if not isinstance(role, str) or not role:
        raise TokenValidationError("Token carries no role.")
    email = payload.get("email")
    return StaffIdentity(agent_id=agent_id, role=role, email=email if isinstance(email, str) else None)


__all__ = [
    "JWTSettings",
    "StaffIdentity",
    "TokenConfigurationError",
    "TokenValidationError",
    "create_access_token",
    "decode_access_token",
    "get_jwt_settings",
    "reset_jwt_settings_cache",
]
