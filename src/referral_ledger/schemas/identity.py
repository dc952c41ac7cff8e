# src/referral_ledger/schemas/identity.py
"""Wallet identity and session schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from referral_ledger.models import WalletType


class WalletConnect(BaseModel):
    """Schema for a wallet connecting from a device."""

    wallet_address: str = Field(..., min_length=32, max_length=64)
    device_id: str = Field(..., min_length=1, max_length=128)
    wallet_type: WalletType | None = Field(
        None, description="Expected wallet family; detected from the address when omitted"
    )
    hardware_fingerprint: str | None = Field(None, max_length=128)
    email: str | None = Field(None, max_length=320)


class IdentityResponse(BaseModel):
    """Schema for wallet identity information returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    wallet_address: str
    wallet_type: str
    email: str | None
    first_seen_at: datetime
    last_seen_at: datetime
    active: bool
    device_ids: list[str]


class DeviceLinkResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    wallet_address: str
    device_id: str
    first_seen_at: datetime
    last_seen_at: datetime
    active: bool


class SessionStart(BaseModel):
    wallet_address: str = Field(..., min_length=32, max_length=64)
    device_id: str = Field(..., min_length=1, max_length=128)


class SessionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_address: str
    device_id: str
    start_time: datetime
    end_time: datetime | None
    last_active: datetime
    active: bool
    duration_seconds: float | None
    close_reason: str | None
