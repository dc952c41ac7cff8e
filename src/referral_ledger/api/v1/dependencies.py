"""Shared API dependencies for the ledger and admin authentication."""

from typing import Annotated, Any

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from referral_ledger.core.security import TokenError, decode_admin_token
from referral_ledger.services.ledger import RewardsLedger

# HTTP Bearer scheme for admin JWT authentication
bearer_scheme = HTTPBearer()


def get_ledger(request: Request) -> RewardsLedger:
    """Return the ledger built at application startup."""
    ledger: RewardsLedger | None = getattr(request.app.state, "ledger", None)
    if ledger is None:  # pragma: no cover - startup always sets it
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Ledger is not ready",
        )
    return ledger


LedgerDep = Annotated[RewardsLedger, Depends(get_ledger)]


def require_admin(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(bearer_scheme)],
    ledger: LedgerDep,
) -> dict[str, Any]:
    """Return the admin token claims or reject the request.

    Raises:
        HTTPException: If the token is invalid, expired or lacks the admin role.
    """
    try:
        return decode_admin_token(credentials.credentials, ledger.settings)
    except TokenError as err:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        ) from err


AdminDep = Annotated[dict[str, Any], Depends(require_admin)]


def client_ip(request: Request) -> str | None:
    """Return the caller address, preferring the first X-Forwarded-For hop."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip() or None
    return request.client.host if request.client else None


ClientIpDep = Annotated[str | None, Depends(client_ip)]
