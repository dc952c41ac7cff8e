"""Translate ledger errors into structured HTTP responses."""

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from referral_ledger.core.errors import ErrorKind, LedgerError
from referral_ledger.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.INVALID_WALLET_FORMAT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_CLAIM_AMOUNT: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INVALID_REFERRAL_CODE: status.HTTP_404_NOT_FOUND,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.DEVICE_LIMIT_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorKind.DUPLICATE_REFERRAL: status.HTTP_409_CONFLICT,
    ErrorKind.SUSPICIOUS_REFERRAL: status.HTTP_409_CONFLICT,
    ErrorKind.PERSISTENCE_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INSUFFICIENT_BALANCE: status.HTTP_409_CONFLICT,
    ErrorKind.CLAIM_LIMIT_EXCEEDED: status.HTTP_409_CONFLICT,
    ErrorKind.RATE_LIMIT_EXCEEDED: status.HTTP_429_TOO_MANY_REQUESTS,
}


# OpenAPI error bodies for every router.
ERROR_RESPONSES: dict[int | str, dict[str, Any]] = {
    code: {"model": ErrorResponse} for code in sorted(set(STATUS_BY_KIND.values()))
}


def error_response(exc: LedgerError) -> JSONResponse:
    status_code = STATUS_BY_KIND.get(exc.kind, status.HTTP_400_BAD_REQUEST)
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after is not None else None
    return JSONResponse(status_code=status_code, content=exc.to_dict(), headers=headers)


async def handle_ledger_error(request: Request, exc: LedgerError) -> JSONResponse:
    logger.info(
        "Request %s %s failed: %s %s",
        request.method,
        request.url.path,
        exc.kind.value,
        exc.context,
    )
    return error_response(exc)


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, handle_ledger_error)
