"""Tiered reward accrual for referrers."""

from __future__ import annotations

import logging
from collections.abc import Sequence
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from referral_ledger.core.settings import Settings, TierBand
from referral_ledger.db.session import unit_of_work
from referral_ledger.models import ReferralRelationship, ReferralStatus, RewardBalance
from referral_ledger.services.identity import normalize_wallet_address
from referral_ledger.utils.locks import KeyedLock
from referral_ledger.utils.retry import run_with_retries

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def tier_for_count(count: int, bands: Sequence[TierBand]) -> int:
    """Return the index of the band covering ``count`` validated referrals."""
    tier = 0
    for index, band in enumerate(bands):
        if count >= band.min_referrals:
            tier = index
    return tier


def accrued_for_count(
    count: int,
    bands: Sequence[TierBand],
    blending: str = "marginal",
) -> Decimal:
    """Return the total reward earned by ``count`` validated referrals.

    With ``marginal`` blending the k-th referral earns the rate of the band that
    k falls in, so with bands ``[(0, 1.0), (5, 1.5)]`` four referrals earn 4.0
    and five earn 5.5. With ``flat`` blending every referral earns the rate of
    the band the total count falls in. Band bonuses are added once each band is
    reached.
    """
    if count <= 0:
        return ZERO

    if blending == "flat":
        total = bands[tier_for_count(count, bands)].rate * count
    else:
        total = ZERO
        for index, band in enumerate(bands):
            first = max(band.min_referrals, 1)
            last = bands[index + 1].min_referrals - 1 if index + 1 < len(bands) else count
            last = min(last, count)
            if last >= first:
                total += band.rate * (last - first + 1)

    bonus = sum(
        (band.bonus for band in bands if count >= max(band.min_referrals, 1)),
        ZERO,
    )
    return total + bonus


def empty_balance(wallet_address: str) -> RewardBalance:
    """Return an unsaved zero balance for a wallet with no accrual yet."""
    return RewardBalance(
        wallet_address=wallet_address,
        tier_level=0,
        total_accrued=ZERO,
        total_claimed=ZERO,
        last_claim_at=None,
        version=0,
    )


class RewardCalculator:
    """Derive each referrer's accrued total and tier from validated referrals."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings,
        *,
        locks: KeyedLock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self.locks = locks if locks is not None else KeyedLock()

    def validated_count(self, db: Session, wallet_address: str) -> int:
        stmt = select(func.count()).select_from(ReferralRelationship).where(
            ReferralRelationship.referrer_wallet == wallet_address,
            ReferralRelationship.status == ReferralStatus.VALIDATED,
        )
        return int(db.scalar(stmt) or 0)

    def apply(self, db: Session, wallet_address: str) -> RewardBalance:
        """Bring the stored balance up to date inside the caller's transaction.

        The accrued total and tier only ever move up; a stored value above the
        computed one is kept as is.
        """
        count = self.validated_count(db, wallet_address)
        computed = accrued_for_count(count, self.settings.tiers, self.settings.reward_blending)
        derived_tier = tier_for_count(count, self.settings.tiers)

        balance = db.get(RewardBalance, wallet_address)
        if balance is None:
            balance = RewardBalance(
                wallet_address=wallet_address,
                tier_level=0,
                total_accrued=ZERO,
                total_claimed=ZERO,
            )
            db.add(balance)

        new_total = max(balance.total_accrued or ZERO, computed)
        new_tier = max(balance.tier_level or 0, derived_tier)
        if new_total != balance.total_accrued:
            logger.info(
                "REWARD_ACCRUED wallet=%s referrals=%d total=%s delta=%s",
                wallet_address[:10],
                count,
                new_total,
                new_total - (balance.total_accrued or ZERO),
            )
            balance.total_accrued = new_total
        if new_tier != balance.tier_level:
            logger.info(
                "TIER_CHANGED wallet=%s from=%s to=%d",
                wallet_address[:10],
                balance.tier_level,
                new_tier,
            )
            balance.tier_level = new_tier
        db.flush()
        return balance

    def recompute(self, wallet_address: str) -> RewardBalance:
        """Recompute and persist the referrer's balance. Safe to call repeatedly."""
        address, _ = normalize_wallet_address(wallet_address)

        def attempt() -> RewardBalance:
            with unit_of_work(self.session_factory) as db:
                return self.apply(db, address)

        with self.locks.hold(f"balance:{address}"):
            return run_with_retries(
                attempt,
                attempts=self.settings.retry_attempts,
                backoff_seconds=self.settings.retry_backoff_seconds,
            )

    def balance(self, wallet_address: str) -> RewardBalance:
        """Return the stored balance, or an unsaved zero balance if none exists."""
        address, _ = normalize_wallet_address(wallet_address)
        with self.session_factory() as db:
            return db.get(RewardBalance, address) or empty_balance(address)
