"""Claim ledger: the only writer of ``RewardBalance.total_claimed``."""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from referral_ledger.core.errors import ClaimError, ErrorKind, RateLimitError
from referral_ledger.core.settings import Settings
from referral_ledger.db.session import unit_of_work
from referral_ledger.db.time import as_utc, utcnow
from referral_ledger.models import (
    ClaimPeriodTotal,
    ClaimRecord,
    RewardBalance,
    SettlementStatus,
    WalletIdentity,
)
from referral_ledger.services.identity import normalize_wallet_address
from referral_ledger.services.notifications import (
    TEMPLATE_CLAIM_COMPLETED,
    Notifier,
    NullNotifier,
)
from referral_ledger.services.rate_limiter import RateLimiter
from referral_ledger.services.settlement import (
    ExchangeRateSource,
    NullSettlementGateway,
    SettlementError,
    SettlementGateway,
)
from referral_ledger.utils.locks import KeyedLock
from referral_ledger.utils.retry import run_with_retries

logger = logging.getLogger(__name__)

AMOUNT_QUANTUM = Decimal("0.00000001")


def period_key(now: datetime, period: str = "day") -> str:
    """Return the claim period containing ``now``: ``YYYY-MM-DD`` or ISO week ``YYYY-Www``."""
    now = as_utc(now)
    if period == "week":
        iso = now.isocalendar()
        return f"{iso.year}-W{iso.week:02d}"
    return now.strftime("%Y-%m-%d")


def period_start(now: datetime, period: str = "day") -> datetime:
    now = as_utc(now)
    start = now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        start -= timedelta(days=now.weekday())
    return start


def seconds_until_next_period(now: datetime, period: str = "day") -> int:
    """Return the whole seconds until the next claim period begins (at least 1)."""
    length = timedelta(weeks=1) if period == "week" else timedelta(days=1)
    remaining = period_start(now, period) + length - as_utc(now)
    return max(1, math.ceil(remaining.total_seconds()))


def parse_amount(value: Decimal | str | int | float) -> Decimal:
    """Return ``value`` as a positive Decimal with at most eight decimal places."""
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ClaimError(
            ErrorKind.INVALID_CLAIM_AMOUNT,
            "Claim amount is not a number",
            context={"amount": str(value)},
        ) from exc
    if not amount.is_finite() or amount <= 0 or amount != amount.quantize(AMOUNT_QUANTUM):
        raise ClaimError(
            ErrorKind.INVALID_CLAIM_AMOUNT,
            "Claim amount must be positive with at most 8 decimal places",
            context={"amount": str(value)},
        )
    return amount


class ClaimLedger:
    """Convert accrued rewards into claims, bounded per period."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        settings: Settings,
        *,
        rate_limiter: RateLimiter,
        exchange_rate: ExchangeRateSource,
        settlement: SettlementGateway | None = None,
        notifier: Notifier | None = None,
        locks: KeyedLock | None = None,
    ) -> None:
        self.session_factory = session_factory
        self.settings = settings
        self.rate_limiter = rate_limiter
        self.exchange_rate = exchange_rate
        self.settlement = settlement or NullSettlementGateway()
        self.notifier = notifier or NullNotifier()
        self.locks = locks if locks is not None else KeyedLock()

    def claim(
        self,
        wallet_address: str,
        requested_amount: Decimal | str | int | float,
        *,
        now: datetime | None = None,
    ) -> ClaimRecord:
        """Claim ``requested_amount`` of the wallet's available reward.

        The balance update, the period total and the claim record are written
        in one transaction. Settlement and notification run after commit; a
        settlement failure marks the record ``failed`` but never reverts it.

        Raises:
            ClaimError: ``InvalidClaimAmount``, ``InsufficientBalance`` or
                ``ClaimLimitExceeded``.
            RateLimitError: Too many attempts this period, or the minimum
                interval since the last claim has not elapsed.
            PersistenceConflictError: A concurrent claim kept winning the race.
        """
        address, _ = normalize_wallet_address(wallet_address)
        amount = parse_amount(requested_amount)
        now = now or utcnow()
        period = period_key(now, self.settings.claim_period)

        self._count_attempt(address, period, now)
        rate = self.exchange_rate.current_rate()

        def attempt() -> tuple[ClaimRecord, str | None]:
            return self._claim_once(address, amount, rate, period, now)

        with self.locks.hold(f"balance:{address}"):
            record, email = run_with_retries(
                attempt,
                attempts=self.settings.retry_attempts,
                backoff_seconds=self.settings.retry_backoff_seconds,
                max_rate_limit_wait=self.settings.rate_limit_retry_max_wait_seconds,
            )

        record = self._settle(record)
        if email:
            self.notifier.notify(
                email,
                TEMPLATE_CLAIM_COMPLETED,
                {
                    "wallet_address": record.wallet_address,
                    "amount": str(record.amount),
                    "token_amount": str(record.token_amount),
                    "token_symbol": record.token_symbol,
                    "claim_id": record.id,
                },
            )
        return record

    def _count_attempt(self, address: str, period: str, now: datetime) -> None:
        window = self.settings.claim_period_seconds
        key = self.rate_limiter.key_for(f"{address}:{period}", "claim", window)
        attempts = self.rate_limiter.increment(key, window)
        limit = self.settings.claim_max_per_period
        if attempts > limit:
            retry_after = seconds_until_next_period(now, self.settings.claim_period)
            logger.warning(
                "CLAIM_ATTEMPTS_EXCEEDED wallet=%s period=%s attempts=%d limit=%d",
                address[:10],
                period,
                attempts,
                limit,
            )
            raise RateLimitError(
                "Too many claim attempts this period",
                retry_after=retry_after,
                context={"wallet": address[:10], "period": period, "limit": limit},
            )

    def _claim_once(
        self,
        address: str,
        amount: Decimal,
        rate: Decimal,
        period: str,
        now: datetime,
    ) -> tuple[ClaimRecord, str | None]:
        with unit_of_work(self.session_factory) as db:
            balance = db.get(RewardBalance, address, with_for_update=True)
            available = balance.available if balance is not None else Decimal("0")
            if balance is None or amount > available:
                raise ClaimError(
                    ErrorKind.INSUFFICIENT_BALANCE,
                    "Requested amount exceeds the available reward balance",
                    context={
                        "wallet": address[:10],
                        "requested": str(amount),
                        "available": str(available),
                    },
                )

            min_interval = self.settings.claim_min_interval_seconds
            if min_interval and balance.last_claim_at is not None:
                elapsed = (now - as_utc(balance.last_claim_at)).total_seconds()
                if elapsed < min_interval:
                    raise RateLimitError(
                        "Claims are too frequent, wait before claiming again",
                        retry_after=max(1, math.ceil(min_interval - elapsed)),
                        context={"wallet": address[:10], "reason": "cooldown"},
                    )

            total = db.get(ClaimPeriodTotal, (address, period), with_for_update=True)
            claimed = total.total_amount if total is not None else Decimal("0")
            cap = self.settings.claim_period_cap
            if claimed + amount > cap:
                logger.info(
                    "CLAIM_LIMIT_EXCEEDED wallet=%s period=%s claimed=%s requested=%s cap=%s",
                    address[:10],
                    period,
                    claimed,
                    amount,
                    cap,
                )
                raise ClaimError(
                    ErrorKind.CLAIM_LIMIT_EXCEEDED,
                    "This claim would exceed the limit for the current period",
                    context={
                        "wallet": address[:10],
                        "period": period,
                        "cap": str(cap),
                        "claimed": str(claimed),
                    },
                    retry_after=seconds_until_next_period(now, self.settings.claim_period),
                )

            if total is None:
                total = ClaimPeriodTotal(
                    wallet_address=address,
                    period_key=period,
                    total_amount=Decimal("0"),
                    claim_count=0,
                )
                db.add(total)
            total.total_amount = claimed + amount
            total.claim_count = (total.claim_count or 0) + 1

            balance.total_claimed = (balance.total_claimed or Decimal("0")) + amount
            balance.last_claim_at = now

            record = ClaimRecord(
                wallet_address=address,
                amount=amount,
                token_amount=amount * rate,
                exchange_rate=rate,
                token_symbol=self.settings.settlement_token_symbol,
                period_key=period,
                claimed_at=now,
                settlement_status=SettlementStatus.PENDING,
            )
            db.add(record)
            db.flush()

            identity = db.get(WalletIdentity, address)
            logger.info(
                "CLAIM_RECORDED id=%s wallet=%s amount=%s tokens=%s period=%s",
                record.id,
                address[:10],
                amount,
                record.token_amount,
                period,
            )
            return record, identity.email if identity else None

    def _settle(self, record: ClaimRecord) -> ClaimRecord:
        try:
            tx_hash = self.settlement.submit(record)
        except SettlementError as exc:
            logger.error("SETTLEMENT_FAILED claim=%s reason=%s", record.id, exc)
            return self._mark(record.id, SettlementStatus.FAILED)
        except Exception:
            # The claim is already committed; the gateway must not fail the caller.
            logger.exception("SETTLEMENT_FAILED claim=%s reason=unexpected", record.id)
            return self._mark(record.id, SettlementStatus.FAILED)
        if tx_hash:
            return self._mark(record.id, SettlementStatus.SUBMITTED, tx_hash)
        return record

    def _mark(
        self,
        claim_id: int,
        status: SettlementStatus,
        tx_hash: str | None = None,
    ) -> ClaimRecord:
        with unit_of_work(self.session_factory) as db:
            record = self._require(db, claim_id)
            record.settlement_status = status
            if tx_hash:
                record.transaction_hash = tx_hash
        return record

    def record_settlement(self, claim_id: int, transaction_hash: str) -> ClaimRecord:
        """Mark a claim settled with its on-chain transaction hash.

        Repeating the call with the same hash is a no-op; a different hash for
        an already-hashed claim is a conflict.
        """
        tx_hash = (transaction_hash or "").strip()
        if not tx_hash:
            raise ValueError("transaction hash is required")
        with unit_of_work(self.session_factory) as db:
            record = self._require(db, claim_id, for_update=True)
            if record.transaction_hash and record.transaction_hash != tx_hash:
                raise ClaimError(
                    ErrorKind.PERSISTENCE_CONFLICT,
                    "Claim already carries a different transaction hash",
                    context={"claim_id": claim_id},
                )
            if record.settlement_status != SettlementStatus.SETTLED:
                record.transaction_hash = tx_hash
                record.settlement_status = SettlementStatus.SETTLED
                logger.info("CLAIM_SETTLED id=%s tx=%s", claim_id, tx_hash)
        return record

    def history(self, wallet_address: str, limit: int = 50) -> list[ClaimRecord]:
        address, _ = normalize_wallet_address(wallet_address)
        with self.session_factory() as db:
            stmt = (
                select(ClaimRecord)
                .where(ClaimRecord.wallet_address == address)
                .order_by(ClaimRecord.claimed_at.desc(), ClaimRecord.id.desc())
                .limit(limit)
            )
            return list(db.scalars(stmt))

    def get(self, claim_id: int) -> ClaimRecord:
        with self.session_factory() as db:
            return self._require(db, claim_id)

    @staticmethod
    def _require(db: Session, claim_id: int, *, for_update: bool = False) -> ClaimRecord:
        record = db.get(ClaimRecord, claim_id, with_for_update=for_update)
        if record is None:
            raise ClaimError(
                ErrorKind.NOT_FOUND,
                "Claim not found",
                context={"claim_id": claim_id},
            )
        return record
