# src/referral_ledger/models/__init__.py
"""SQLAlchemy models for the referral ledger."""

from .claim import ClaimPeriodTotal, ClaimRecord, SettlementStatus
from .identity import Device, WalletDevice, WalletIdentity, WalletType
from .referral import ReferralCode, ReferralRelationship, ReferralStatus
from .reward import RewardBalance
from .wallet_session import WalletSession

__all__ = [
    "ClaimPeriodTotal", "ClaimRecord", "SettlementStatus",
    "Device", "WalletDevice", "WalletIdentity", "WalletType",
    "ReferralCode", "ReferralRelationship", "ReferralStatus",
    "RewardBalance",
    "WalletSession",
]
