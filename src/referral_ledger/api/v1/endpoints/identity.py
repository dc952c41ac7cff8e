# src/referral_ledger/api/v1/endpoints/identity.py
"""Wallet connection, device and session endpoints."""

from typing import Annotated

from fastapi import APIRouter, Header, status

from referral_ledger.schemas.identity import (
    DeviceLinkResponse,
    IdentityResponse,
    SessionResponse,
    SessionStart,
    WalletConnect,
)

from ..dependencies import ClientIpDep, LedgerDep

router = APIRouter(prefix="/identity", tags=["identity"])


@router.post("/connect", response_model=IdentityResponse)
def connect_wallet(
    payload: WalletConnect,
    ledger: LedgerDep,
    ip: ClientIpDep,
    user_agent: Annotated[str | None, Header()] = None,
) -> IdentityResponse:
    """Register a wallet connection from a device."""
    identity = ledger.identity.resolve(
        payload.wallet_address,
        payload.device_id,
        user_agent,
        ip,
        wallet_type=payload.wallet_type,
        hardware_fingerprint=payload.hardware_fingerprint,
        email=payload.email,
    )
    return IdentityResponse.model_validate(identity)


@router.get("/{wallet_address}", response_model=IdentityResponse)
def get_identity(wallet_address: str, ledger: LedgerDep) -> IdentityResponse:
    return IdentityResponse.model_validate(ledger.identity.get(wallet_address))


@router.post("/{wallet_address}/devices/evict", response_model=DeviceLinkResponse | None)
def evict_stalest_device(wallet_address: str, ledger: LedgerDep) -> DeviceLinkResponse | None:
    """Free a device slot by deactivating the least recently seen device."""
    link = ledger.identity.evict_stalest_device(wallet_address)
    return DeviceLinkResponse.model_validate(link) if link is not None else None


@router.post("/sessions", response_model=SessionResponse, status_code=status.HTTP_201_CREATED)
def start_session(
    payload: SessionStart,
    ledger: LedgerDep,
    ip: ClientIpDep,
    user_agent: Annotated[str | None, Header()] = None,
) -> SessionResponse:
    record = ledger.sessions.start(payload.wallet_address, payload.device_id, ip, user_agent)
    return SessionResponse.model_validate(record)


@router.post("/sessions/{session_id}/heartbeat", response_model=SessionResponse)
def heartbeat(session_id: int, ledger: LedgerDep) -> SessionResponse:
    return SessionResponse.model_validate(ledger.sessions.heartbeat(session_id))


@router.post("/sessions/{session_id}/close", response_model=SessionResponse)
def close_session(session_id: int, ledger: LedgerDep) -> SessionResponse:
    return SessionResponse.model_validate(ledger.sessions.close(session_id))
