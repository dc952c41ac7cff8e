"""Bounded retries for operations that may hit transient ledger conflicts."""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

from referral_ledger.core.errors import ErrorKind, LedgerError

T = TypeVar("T")

logger = logging.getLogger(__name__)


def run_with_retries(
    operation: Callable[[], T],
    *,
    attempts: int,
    backoff_seconds: float = 0.0,
    max_rate_limit_wait: float = 0.0,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run ``operation`` until it succeeds or a non-retryable error occurs.

    ``PersistenceConflict`` is retried with a linear backoff. ``RateLimitExceeded``
    is retried only when its ``retry_after`` hint is within
    ``max_rate_limit_wait``; otherwise it surfaces immediately. The last error
    is re-raised once ``attempts`` is exhausted.
    """
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except LedgerError as exc:
            if not exc.retryable or attempt == attempts:
                raise
            if exc.kind is ErrorKind.RATE_LIMIT_EXCEEDED:
                wait = float(exc.retry_after or 0)
                if wait > max_rate_limit_wait:
                    raise
            else:
                wait = backoff_seconds * attempt
            logger.debug(
                "Retrying after %s (attempt %d/%d, wait %.3fs)",
                exc.kind.value,
                attempt,
                attempts,
                wait,
            )
            if wait > 0:
                sleep(wait)
    raise AssertionError("unreachable")  # pragma: no cover
