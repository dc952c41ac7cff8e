# src/referral_ledger/models/reward.py
"""Per-wallet reward balance maintained by the reward calculator and claim ledger."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal

from sqlalchemy import CheckConstraint, Integer, Numeric, SmallInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from referral_ledger.db.session import Base
from referral_ledger.db.time import UTCDateTime

AMOUNT = Numeric(20, 8)


class RewardBalance(Base):
    """Accrued and claimed totals for one wallet.

    ``version`` is bumped on every write; a stale writer fails at flush time
    instead of overwriting a concurrent update.
    """

    __tablename__ = "reward_balance"
    __table_args__ = (
        CheckConstraint("total_claimed <= total_accrued", name="ck_reward_balance_claimed_le_accrued"),
        CheckConstraint("total_claimed >= 0", name="ck_reward_balance_claimed_non_negative"),
    )

    wallet_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    tier_level: Mapped[int] = mapped_column(SmallInteger, nullable=False, default=0)
    total_accrued: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    total_claimed: Mapped[Decimal] = mapped_column(AMOUNT, nullable=False, default=Decimal("0"))
    last_claim_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    @property
    def available(self) -> Decimal:
        """Return the amount that may still be claimed."""
        return (self.total_accrued or Decimal("0")) - (self.total_claimed or Decimal("0"))
