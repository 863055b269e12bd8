"""Staff password hashing with passlib's Argon2 scheme."""

from __future__ import annotations

from passlib.context import CryptContext

MIN_PASSWORD_LENGTH = 8

_context = CryptContext(schemes=["argon2"], deprecated="auto")


def hash_password(password: str) -> str:
    if len(password or "") < MIN_PASSWORD_LENGTH:
        raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    return _context.hash(password)


def verify_password(password: str, password_hash: str | None) -> tuple[bool, str | None]:
    """Check ``password`` and return ``(valid, replacement_hash)``.

    ``replacement_hash`` is set when the stored hash uses outdated parameters
    and should be persisted in place of the old one.
    """

    if not password or not password_hash:
        return False, None
    return _context.verify_and_update(password, password_hash)


__all__ = ["MIN_PASSWORD_LENGTH", "hash_password", "verify_password"]
