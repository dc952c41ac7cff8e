# src/referral_ledger/schemas/__init__.py
"""
Pydantic schemas for API request/response models.

These schemas define the structure of API data for serialization and validation.
"""

from .claim import ClaimCreate, ClaimResponse, SettlementReport
from .common import ErrorResponse
from .identity import (
    DeviceLinkResponse,
    IdentityResponse,
    SessionResponse,
    SessionStart,
    WalletConnect,
)
from .referral import (
    ReferralCodeResponse,
    ReferralCodeToggle,
    ReferralOutcomeResponse,
    ReferralRedeem,
    ReferralResponse,
    ReferralReview,
    ReferralStatsResponse,
)
from .reward import RewardBalanceResponse

__all__ = [
    "ClaimCreate", "ClaimResponse", "SettlementReport",
    "ErrorResponse",
    "DeviceLinkResponse", "IdentityResponse", "SessionResponse", "SessionStart", "WalletConnect",
    "ReferralCodeResponse", "ReferralCodeToggle", "ReferralOutcomeResponse", "ReferralRedeem",
    "ReferralResponse", "ReferralReview", "ReferralStatsResponse",
    "RewardBalanceResponse",
]
