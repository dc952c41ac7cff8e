"""Ledger services."""

from .claims import ClaimLedger, period_key
from .fraud import FraudAssessment, FraudEvidence, FraudScorer, compute_fraud_score
from .identity import IdentityResolver, normalize_wallet_address
from .ledger import RewardsLedger, build_ledger
from .rate_limiter import MemoryCounterStore, RateLimiter, RedisCounterStore
from .referrals import ReferralOutcome, ReferralProcessor, ReferralStats
from .rewards import RewardCalculator, accrued_for_count, tier_for_count
from .sessions import SessionTracker

__all__ = [
    "ClaimLedger", "period_key",
    "FraudAssessment", "FraudEvidence", "FraudScorer", "compute_fraud_score",
    "IdentityResolver", "normalize_wallet_address",
    "RewardsLedger", "build_ledger",
    "MemoryCounterStore", "RateLimiter", "RedisCounterStore",
    "ReferralOutcome", "ReferralProcessor", "ReferralStats",
    "RewardCalculator", "accrued_for_count", "tier_for_count",
    "SessionTracker",
]
