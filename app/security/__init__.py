"""Security utilities exposed for convenience."""

from .auth import extract_bearer_token, get_current_identity, get_current_staff, require_role
from .passwords import hash_password, verify_password
from .tokens import (
    JWTSettings,
    StaffIdentity,
    TokenConfigurationError,
    TokenValidationError,
    create_access_token,
    decode_access_token,
    get_jwt_settings,
    reset_jwt_settings_cache,
)

__all__ = [
    "JWTSettings",
    "StaffIdentity",
    "TokenConfigurationError",
    "TokenValidationError",
    "create_access_token",
    "decode_access_token",
    "extract_bearer_token",
    "get_current_identity",
    "get_current_staff",
    "get_jwt_settings",
    "hash_password",
    "require_role",
    "reset_jwt_settings_cache",
    "verify_password",
]
