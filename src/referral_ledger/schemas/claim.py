# src/referral_ledger/schemas/claim.py
"""Claim-related Pydantic schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Annotated

from pydantic import BaseModel, ConfigDict, Field, StringConstraints

from referral_ledger.models import SettlementStatus


class ClaimCreate(BaseModel):
    """Schema for a claim request."""

    wallet_address: str = Field(..., min_length=32, max_length=64)
    amount: Decimal = Field(..., description="Reward amount to claim, at most 8 decimal places")


class ClaimResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    wallet_address: str
    amount: Decimal
    token_amount: Decimal
    exchange_rate: Decimal
    token_symbol: str
    period_key: str
    claimed_at: datetime
    settlement_status: SettlementStatus
    transaction_hash: str | None


class SettlementReport(BaseModel):
    """Schema used by the reconciliation job to report an on-chain transfer."""

    transaction_hash: Annotated[
        str, StringConstraints(strip_whitespace=True, min_length=1, max_length=128)
    ]
