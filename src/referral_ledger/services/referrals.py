"""Referral code issuance, redemption and review."""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.orm import Session, sessionmaker

from referral_ledger.core.errors import ErrorKind, ReferralError
from referral_ledger.core.settings import Settings
from referral_ledger.db.session import unit_of_work
from referral_ledger.db.time import utcnow
from referral_ledger.models import (
    ReferralCode,
    ReferralRelationship,
    ReferralStatus,
    WalletIdentity,
)
from referral_ledger.services.fraud import FraudScorer
from referral_ledger.services.identity import normalize_device_id, normalize_wallet_address
from referral_ledger.services.notifications import (
    TEMPLATE_REFERRAL_VALIDATED,
    Notifier,
    NullNotifier,
)
from referral_ledger.services.rate_limiter import RateLimiter
from referral_ledger.services.rewards import RewardCalculator
from referral_ledger.utils.locks import KeyedLock
from referral_ledger.utils.retry import run_with_retries

logger = logging.getLogger(__name__)

CODE_LENGTH = 8
MAX_CODE_ATTEMPTS = 10

REASON_SELF_REFERRAL = "self_referral"
REASON_MANUAL_REVIEW = "manual_review"


@dataclass(frozen=True)
class ReferralOutcome:
    """Result of a redemption.

    ``duplicate`` is True when the referred wallet already had a live
    relationship; that existing row is returned unchanged.
    """

    relationship: ReferralRelationship
    duplicate: bool = False

    @property
    def reason(self) -> ErrorKind | None:
        if self.duplicate:
            return ErrorKind.DUPLICATE_REFERRAL
        if self.relationship.status == ReferralStatus.SUSPICIOUS:
            return ErrorKind.SUSPICIOUS_REFERRAL
        return None


@dataclass
class ReferralStats:
    wallet_address: str
    code: str | None
    code_active: bool
    counts: dict[str, int] = field(default_factory=dict)

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def generate_code(wallet_address: str, nonce: str) -> str:
    """Return the first eight hex characters of sha256(wallet + nonce), uppercased."""
    digest = hashlib.sha256(f"{wallet_address}{nonce}".encode()).hexdigest()
    return digest[:CODE_LENGTH].upper()


class ReferralProcessor:
    """Validate referral redemptions and keep referrer balances current."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings,
        *,
        rate_limiter: RateLimiter,
        scorer: FraudScorer,
        rewards: RewardCalculator,
        notifier: Notifier | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.scorer = scorer
        self.rewards = rewards
        self.notifier = notifier or NullNotifier()
        self.locks = locks if locks is not None else KeyedLock()

    def _retry(self, operation: Any) -> Any:
        return run_with_retries(
            operation,
            attempts=self.settings.retry_attempts,
            backoff_seconds=self.settings.retry_backoff_seconds,
            max_rate_limit_wait=self.settings.rate_limit_retry_max_wait_seconds,
        )

    # Codes

    def issue_code(self, wallet_address: str) -> ReferralCode:
        """Return the wallet's referral code, creating it on first request."""
        address, _ = normalize_wallet_address(wallet_address)

        def attempt() -> ReferralCode:
            with unit_of_work(self.session_factory) as db:
                if db.get(WalletIdentity, address) is None:
                    raise ReferralError(
                        ErrorKind.NOT_FOUND,
                        "Wallet has not connected yet",
                        context={"wallet": address[:10]},
                    )
                existing = db.scalars(
                    select(ReferralCode).where(ReferralCode.wallet_address == address)
                ).first()
                if existing is not None:
                    return existing

                for _ in range(MAX_CODE_ATTEMPTS):
                    code = generate_code(address, secrets.token_hex(8))
                    if db.get(ReferralCode, code) is None:
                        break
                else:
                    raise ReferralError(
                        ErrorKind.PERSISTENCE_CONFLICT,
                        "Could not allocate a unique referral code",
                        context={"wallet": address[:10]},
                    )
                record = ReferralCode(code=code, wallet_address=address, is_active=True)
                db.add(record)
                db.flush()
                logger.info("REFERRAL_CODE_ISSUED wallet=%s code=%s", address[:10], code)
                return record

        with self.locks.hold(f"code:{address}"):
            return self._retry(attempt)

    def set_code_active(self, wallet_address: str, active: bool) -> ReferralCode:
        address, _ = normalize_wallet_address(wallet_address)
        with unit_of_work(self.session_factory) as db:
            record = db.scalars(
                select(ReferralCode).where(ReferralCode.wallet_address == address)
            ).first()
            if record is None:
                raise ReferralError(
                    ErrorKind.NOT_FOUND,
                    "Wallet has no referral code",
                    context={"wallet": address[:10]},
                )
            if record.is_active != active:
                record.is_active = active
                logger.info(
                    "REFERRAL_CODE_TOGGLED wallet=%s code=%s active=%s",
                    address[:10],
                    record.code,
                    active,
                )
        return record

    # Redemption

    def process_referral(
        self,
        referral_code: str,
        referred_wallet: str,
        referred_device: str,
        *,
        ip: str | None = None,
        now: datetime | None = None,
    ) -> ReferralOutcome:
        """Redeem ``referral_code`` for ``referred_wallet``.

        Redemption attempts are counted per IP and per device; the highest of
        the two counts feeds the velocity signal, and an attempt past
        ``referral_attempts_hard_cap`` is refused outright.

        Returns:
            The new relationship, or the referred wallet's existing live
            relationship flagged as a duplicate.

        Raises:
            ReferralError: ``InvalidReferralCode`` for an unknown or inactive
                code, ``NotFound`` for a wallet that never connected.
            IdentityError: ``InvalidWalletFormat`` for a malformed address.
            RateLimitError: When the per-IP or per-device cap is exceeded.
        """
        address, _ = normalize_wallet_address(referred_wallet)
        device_id = normalize_device_id(referred_device)
        code = (referral_code or "").strip().upper()
        velocity_count = self._count_attempt(ip, device_id)

        def attempt() -> tuple[ReferralOutcome, str | None]:
            return self._redeem(code, address, device_id, ip, velocity_count, now or utcnow())

        with self.locks.hold(f"referral:{address}"):
            outcome, referrer_email = self._retry(attempt)

        relationship = outcome.relationship
        if not outcome.duplicate and relationship.status == ReferralStatus.VALIDATED:
            self._notify_validated(referrer_email, relationship)
        return outcome

    def _count_attempt(self, ip: str | None, device_id: str) -> int:
        window = self.settings.referral_velocity_window_seconds
        cap = self.settings.referral_attempts_hard_cap
        counts = [self.rate_limiter.hit(device_id, "referral_device", window, cap)]
        if ip:
            counts.append(self.rate_limiter.hit(ip, "referral_ip", window, cap))
        return max(counts)

    def _redeem(
        self,
        code: str,
        referred_wallet: str,
        device_id: str,
        ip: str | None,
        velocity_count: int,
        now: datetime,
    ) -> tuple[ReferralOutcome, str | None]:
        with unit_of_work(self.session_factory) as db:
            code_row = db.get(ReferralCode, code) if code else None
            if code_row is None or not code_row.is_active:
                raise ReferralError(
                    ErrorKind.INVALID_REFERRAL_CODE,
                    "Referral code is unknown or no longer active",
                    context={"code": code},
                )
            referrer = db.get(WalletIdentity, code_row.wallet_address)
            if referrer is None or not referrer.active:
                raise ReferralError(
                    ErrorKind.INVALID_REFERRAL_CODE,
                    "Referral code belongs to an inactive wallet",
                    context={"code": code, "reason": "inactive_referrer"},
                )
            referred = db.get(WalletIdentity, referred_wallet)
            if referred is None or not referred.active:
                raise ReferralError(
                    ErrorKind.NOT_FOUND,
                    "Referred wallet has not connected yet",
                    context={"wallet": referred_wallet[:10], "reason": "unknown_wallet"},
                )

            existing = db.scalars(
                select(ReferralRelationship).where(
                    ReferralRelationship.referred_wallet == referred_wallet,
                    ReferralRelationship.status != ReferralStatus.REJECTED,
                )
            ).first()
            if existing is not None:
                logger.info(
                    "DUPLICATE_REFERRAL referred=%s code=%s existing_code=%s status=%s",
                    referred_wallet[:10],
                    code,
                    existing.referral_code,
                    existing.status.value,
                )
                return ReferralOutcome(existing, duplicate=True), None

            assessment = self.scorer.score(
                db,
                referrer.wallet_address,
                referred_wallet,
                device_id,
                velocity_count=velocity_count,
                now=now,
            )
            relationship = ReferralRelationship(
                referrer_wallet=referrer.wallet_address,
                referred_wallet=referred_wallet,
                referral_code=code,
                fraud_score=assessment.score,
                fraud_signals=assessment.to_audit(),
                device_id=device_id,
                ip_address=ip,
                created_at=now,
            )

            if referrer.wallet_address == referred_wallet:
                relationship.status = ReferralStatus.REJECTED
                relationship.rejection_reason = REASON_SELF_REFERRAL
                db.add(relationship)
                db.flush()
                logger.warning(
                    "REFERRAL_REJECTED wallet=%s reason=%s", referred_wallet[:10], REASON_SELF_REFERRAL
                )
                return ReferralOutcome(relationship), None

            if assessment.suspicious:
                relationship.status = ReferralStatus.SUSPICIOUS
                db.add(relationship)
                db.flush()
                logger.warning(
                    "REFERRAL_SUSPICIOUS referrer=%s referred=%s score=%.3f",
                    referrer.wallet_address[:10],
                    referred_wallet[:10],
                    assessment.score,
                )
                return ReferralOutcome(relationship), None

            relationship.status = ReferralStatus.VALIDATED
            relationship.validated_at = now
            db.add(relationship)
            db.flush()
            balance = self.rewards.apply(db, referrer.wallet_address)
            logger.info(
                "REFERRAL_VALIDATED referrer=%s referred=%s score=%.3f total_accrued=%s",
                referrer.wallet_address[:10],
                referred_wallet[:10],
                assessment.score,
                balance.total_accrued,
            )
            return ReferralOutcome(relationship), referrer.email

    # Review

    def review(
        self,
        relationship_id: int,
        approve: bool,
        reason: str | None = None,
    ) -> ReferralRelationship:
        """Move a suspicious or pending relationship to its final status.

        A relationship that is already final is returned unchanged.
        """
        now = utcnow()

        def attempt() -> tuple[ReferralRelationship, str | None, bool]:
            with unit_of_work(self.session_factory) as db:
                relationship = db.get(
                    ReferralRelationship, relationship_id, with_for_update=True
                )
                if relationship is None:
                    raise ReferralError(
                        ErrorKind.NOT_FOUND,
                        "Referral relationship not found",
                        context={"relationship_id": relationship_id},
                    )
                if relationship.is_final:
                    return relationship, None, False

                relationship.reviewed_at = now
                if not approve:
                    relationship.status = ReferralStatus.REJECTED
                    relationship.rejection_reason = reason or REASON_MANUAL_REVIEW
                    db.flush()
                    logger.info(
                        "REFERRAL_REJECTED id=%s referred=%s reason=%s",
                        relationship.id,
                        relationship.referred_wallet[:10],
                        relationship.rejection_reason,
                    )
                    return relationship, None, False

                relationship.status = ReferralStatus.VALIDATED
                relationship.validated_at = now
                db.flush()
                self.rewards.apply(db, relationship.referrer_wallet)
                referrer = db.get(WalletIdentity, relationship.referrer_wallet)
                logger.info(
                    "REFERRAL_VALIDATED id=%s referrer=%s referred=%s reviewed=true",
                    relationship.id,
                    relationship.referrer_wallet[:10],
                    relationship.referred_wallet[:10],
                )
                return relationship, referrer.email if referrer else None, True

        relationship, referrer_email, validated = self._retry(attempt)
        if validated:
            self._notify_validated(referrer_email, relationship)
        return relationship

    def pending_review(self, limit: int = 50) -> list[ReferralRelationship]:
        """Return relationships waiting for a review decision, oldest first."""
        with self.session_factory() as db:
            stmt = (
                select(ReferralRelationship)
                .where(
                    ReferralRelationship.status.in_(
                        [ReferralStatus.SUSPICIOUS, ReferralStatus.PENDING]
                    )
                )
                .order_by(ReferralRelationship.created_at.asc(), ReferralRelationship.id.asc())
                .limit(limit)
            )
            return list(db.scalars(stmt))

    def stats(self, wallet_address: str) -> ReferralStats:
        """Summarize the wallet's code and its relationships by status."""
        address, _ = normalize_wallet_address(wallet_address)
        with self.session_factory() as db:
            record = db.scalars(
                select(ReferralCode).where(ReferralCode.wallet_address == address)
            ).first()
            rows = db.execute(
                select(ReferralRelationship.status, func.count())
                .where(ReferralRelationship.referrer_wallet == address)
                .group_by(ReferralRelationship.status)
            ).all()
        counts = {status.value: 0 for status in ReferralStatus}
        for status, count in rows:
            counts[ReferralStatus(status).value] = int(count)
        return ReferralStats(
            wallet_address=address,
            code=record.code if record else None,
            code_active=bool(record and record.is_active),
            counts=counts,
        )

    def _notify_validated(
        self,
        referrer_email: str | None,
        relationship: ReferralRelationship,
    ) -> None:
        if not referrer_email:
            return
        self.notifier.notify(
            referrer_email,
            TEMPLATE_REFERRAL_VALIDATED,
            {
                "referrer_wallet": relationship.referrer_wallet,
                "referred_wallet": relationship.referred_wallet,
                "referral_code": relationship.referral_code,
            },
        )
