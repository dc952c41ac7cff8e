"""Admin bearer tokens for the review endpoints."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt

from referral_ledger.core.settings import Settings

ADMIN_ROLE = "admin"


class TokenError(ValueError):
    """Raised when an admin token is missing, malformed, expired or lacks the admin role."""


def create_admin_token(subject: str, settings: Settings, *, role: str = ADMIN_ROLE) -> str:
    """Return a signed JWT for ``subject`` valid for ``admin_token_expire_minutes``."""
    if not settings.secret_key:
        raise TokenError("SECRET_KEY is not configured")
    expire = datetime.now(UTC) + timedelta(minutes=settings.admin_token_expire_minutes)
    to_encode: dict[str, object] = {"sub": subject, "role": role, "exp": expire}
    encoded_jwt: str = jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)
    return encoded_jwt


def decode_admin_token(token: str, settings: Settings) -> dict[str, Any]:
    """Validate ``token`` and return its claims.

    Raises:
        TokenError: If the token cannot be verified or is not an admin token.
    """
    if not settings.secret_key:
        raise TokenError("SECRET_KEY is not configured")
    try:
        payload: dict[str, Any] = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError as err:
        raise TokenError("Could not validate credentials") from err
    if payload.get("sub") is None or payload.get("role") != ADMIN_ROLE:
        raise TokenError("Admin role required")
    return payload
