# src/referral_ledger/schemas/reward.py
"""Reward balance schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict


class RewardBalanceResponse(BaseModel):
    """Schema for a wallet's reward balance."""

    model_config = ConfigDict(from_attributes=True)

    wallet_address: str
    tier_level: int
    total_accrued: Decimal
    total_claimed: Decimal
    available: Decimal
    last_claim_at: datetime | None
