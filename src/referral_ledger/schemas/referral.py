# src/referral_ledger/schemas/referral.py
"""Referral-related Pydantic schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from referral_ledger.models import ReferralStatus


class ReferralRedeem(BaseModel):
    """Schema for redeeming a referral code."""

    referral_code: str = Field(..., min_length=1, max_length=16)
    referred_wallet: str = Field(..., min_length=32, max_length=64)
    device_id: str = Field(..., min_length=1, max_length=128)


class ReferralCodeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    wallet_address: str
    is_active: bool
    created_at: datetime


class ReferralCodeToggle(BaseModel):
    is_active: bool


class ReferralResponse(BaseModel):
    """Schema for a referral relationship returned by the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    referrer_wallet: str
    referred_wallet: str
    referral_code: str
    status: ReferralStatus
    fraud_score: float
    fraud_signals: dict[str, Any]
    rejection_reason: str | None
    created_at: datetime
    validated_at: datetime | None
    reviewed_at: datetime | None


class ReferralOutcomeResponse(BaseModel):
    relationship: ReferralResponse
    duplicate: bool
    reason: str | None = Field(
        None, description="DuplicateReferral or SuspiciousReferral when the redemption was not counted"
    )


class ReferralReview(BaseModel):
    """Schema for an admin review decision."""

    approve: bool
    reason: str | None = Field(None, max_length=64)


class ReferralStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    wallet_address: str
    code: str | None
    code_active: bool
    counts: dict[str, int]
    total: int
