"""Tests for staff tokens, role checks and password hashing."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest
from fastapi import Depends, FastAPI
from fastapi.testclient import TestClient

from conftest import auth_header

from app.escalation.directory import InMemoryStaffDirectory, StaffMember
from app.security import (
    TokenConfigurationError,
    TokenValidationError,
    create_access_token,
    decode_access_token,
    extract_bearer_token,
    hash_password,
    require_role,
    reset_jwt_settings_cache,
    verify_password,
)

SECRET = "test-secret-key-with-enough-entropy"


def _member(role: str = "agent") -> StaffMember:
    return StaffMember(id=uuid.uuid4(), email=f"{role}@example.com", name=role.title(), role=role)


def _raw_token(**overrides: object) -> str:
    payload: dict[str, object] = {
        "sub": str(uuid.uuid4()),
        "role": "agent",
        "iss": "support.test",
        "aud": "support-dashboard",
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    payload.update(overrides)
    return jwt.encode(payload, SECRET, algorithm="HS256")


def test_round_trip_preserves_identity() -> None:
    member = _member("admin")
    token, expires_at = create_access_token(member)

    identity = decode_access_token(token)

    assert identity.agent_id == member.id
    assert identity.role == "admin"
    assert identity.email == "admin@example.com"
    assert expires_at > datetime.now(timezone.utc) + timedelta(hours=7)


@pytest.mark.parametrize(
    "overrides",
    [
        {"exp": datetime.now(timezone.utc) - timedelta(minutes=1)},
        {"aud": "someone-else"},
        {"iss": "evil.example"},
        {"sub": "not-a-uuid"},
        {"role": ""},
        {"type": "refresh"},
    ],
)
def test_invalid_claims_are_rejected(overrides: dict[str, object]) -> None:
    with pytest.raises(TokenValidationError):
        decode_access_token(_raw_token(**overrides))


def test_wrong_signature_is_rejected() -> None:
    token = jwt.encode(
        {"sub": str(uuid.uuid4())}, "another-secret-key-with-enough-entropy", algorithm="HS256"
    )
    with pytest.raises(TokenValidationError):
        decode_access_token(token)


def test_missing_configuration(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("AUTH_TOKEN_SECRET")
    reset_jwt_settings_cache()
    with pytest.raises(TokenConfigurationError):
        create_access_token(_member())


@pytest.mark.parametrize(
    "headers, expected",
    [
        ({"authorization": "Bearer abc"}, "abc"),
        ({"Authorization": "bearer  xyz "}, "xyz"),
        ({"authorization": "Basic abc"}, None),
        ({"authorization": "Bearer "}, None),
        ({}, None),
    ],
)
def test_extract_bearer_token(headers: dict[str, str], expected: str | None) -> None:
    assert extract_bearer_token(headers) == expected


def _role_app(directory: InMemoryStaffDirectory) -> FastAPI:
    app = FastAPI()

    class _Runtime:
        staff_directory = directory

    app.state.runtime = _Runtime()

    @app.get("/agent")
    async def agent_only(staff: StaffMember = Depends(require_role("agent"))):
        return {"id": str(staff.id)}

    @app.get("/admin")
    async def admin_only(staff: StaffMember = Depends(require_role("admin"))):
        return {"id": str(staff.id)}

    return app


def test_role_hierarchy() -> None:
    directory = InMemoryStaffDirectory()
    agent = directory.add(_member("agent"))
    admin = directory.add(_member("admin"))
    client = TestClient(_role_app(directory))

    assert client.get("/agent", headers=auth_header(agent)).status_code == 200
    assert client.get("/agent", headers=auth_header(admin)).status_code == 200
    assert client.get("/admin", headers=auth_header(admin)).status_code == 200
    assert client.get("/admin", headers=auth_header(agent)).status_code == 403


def test_unknown_role_and_inactive_staff() -> None:
    directory = InMemoryStaffDirectory()
    stranger = directory.add(_member("visitor"))
    inactive = directory.add(
        StaffMember(id=uuid.uuid4(), email="gone@example.com", name="Gone", is_active=False)
    )
    client = TestClient(_role_app(directory))

    response = client.get("/agent", headers=auth_header(stranger))
    assert response.status_code == 403
    assert response.json()["detail"] == "No roles assigned to user."

    response = client.get("/agent", headers=auth_header(inactive))
    assert response.status_code == 401


def test_require_role_rejects_unknown_levels() -> None:
    with pytest.raises(ValueError):
        require_role("owner")


def test_password_hashing() -> None:
    hashed = hash_password("correct horse")
    assert hashed.startswith("$argon2")
    assert verify_password("correct horse", hashed) == (True, None)
    assert verify_password("wrong horse", hashed)[0] is False
    assert verify_password("correct horse", None) == (False, None)


def test_short_passwords_are_refused() -> None:
    with pytest.raises(ValueError):
        hash_password("short")
