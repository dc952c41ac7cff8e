# src/referral_ledger/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .claims import router as claims_router
from .identity import router as identity_router
from .referrals import router as referrals_router
from .rewards import router as rewards_router

__all__ = [
    "claims_router",
    "identity_router",
    "referrals_router",
    "rewards_router",
]
