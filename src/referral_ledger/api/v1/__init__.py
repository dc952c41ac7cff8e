# src/referral_ledger/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    claims_router,
    identity_router,
    referrals_router,
    rewards_router,
)

__all__ = [
    "claims_router",
    "identity_router",
    "referrals_router",
    "rewards_router",
]
