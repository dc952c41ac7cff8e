"""Error taxonomy shared by every ledger component.

Each component raises its own exception type, and every type carries a kind
from the shared ``ErrorKind`` enumeration. Callers branch on ``kind`` rather
than on the class hierarchy.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Reason codes surfaced to callers and API clients."""

    INVALID_WALLET_FORMAT = "InvalidWalletFormat"
    DEVICE_LIMIT_EXCEEDED = "DeviceLimitExceeded"
    DUPLICATE_REFERRAL = "DuplicateReferral"
    SUSPICIOUS_REFERRAL = "SuspiciousReferral"
    INVALID_REFERRAL_CODE = "InvalidReferralCode"
    INSUFFICIENT_BALANCE = "InsufficientBalance"
    CLAIM_LIMIT_EXCEEDED = "ClaimLimitExceeded"
    INVALID_CLAIM_AMOUNT = "InvalidClaimAmount"
    RATE_LIMIT_EXCEEDED = "RateLimitExceeded"
    PERSISTENCE_CONFLICT = "PersistenceConflict"
    NOT_FOUND = "NotFound"


RETRYABLE_KINDS: frozenset[ErrorKind] = frozenset(
    {ErrorKind.PERSISTENCE_CONFLICT, ErrorKind.RATE_LIMIT_EXCEEDED}
)


class LedgerError(Exception):
    """Base error carrying a reason code, a user-facing message and safe context."""

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        retry_after: int | None = None,
    ) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.context = dict(context or {})
        self.retry_after = retry_after

    @property
    def retryable(self) -> bool:
        """Return True if the operation may be attempted again safely."""
        return self.kind in RETRYABLE_KINDS

    def to_dict(self) -> dict[str, Any]:
        """Return the structured payload rendered by the HTTP layer."""
        body: dict[str, Any] = {
            "reason": self.kind.value,
            "message": self.message,
            "context": self.context,
        }
        if self.retry_after is not None:
            body["retry_after"] = self.retry_after
        return body

    def __repr__(self) -> str:
        return f"{type(self).__name__}(kind={self.kind.value!r}, message={self.message!r})"


class IdentityError(LedgerError):
    """Raised by the wallet/device identity resolver and session tracker."""


class ReferralError(LedgerError):
    """Raised by the referral processor."""


class ClaimError(LedgerError):
    """Raised by the claim ledger."""


class RateLimitError(LedgerError):
    """Raised when an identity exceeds its allowance for a window."""

    def __init__(
        self,
        message: str,
        *,
        retry_after: int,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            ErrorKind.RATE_LIMIT_EXCEEDED,
            message,
            context=context,
            retry_after=retry_after,
        )


class PersistenceConflictError(LedgerError):
    """Raised when a concurrent write was detected; the operation is safe to retry."""

    def __init__(self, message: str = "Concurrent update detected, please retry", **kwargs: Any):
        super().__init__(ErrorKind.PERSISTENCE_CONFLICT, message, **kwargs)
