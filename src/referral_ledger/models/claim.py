# src/referral_ledger/models/claim.py
"""Models recording reward claims and their per-period totals."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import Enum, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from referral_ledger.db.session import Base, BigIntegerId
from referral_ledger.db.time import UTCDateTime, utcnow


class SettlementStatus(StrEnum):
    """Progress of the on-chain transfer backing a claim."""

    PENDING = "pending"
    SUBMITTED = "submitted"
    SETTLED = "settled"
    FAILED = "failed"


class ClaimRecord(Base):
    """Append-only history of successful claims."""

    __tablename__ = "claim_record"
    __table_args__ = (
        Index("ix_claim_record_wallet_period", "wallet_address", "period_key"),
    )

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    token_amount: Mapped[Decimal] = mapped_column(Numeric(28, 8), nullable=False)
    exchange_rate: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False)
    token_symbol: Mapped[str] = mapped_column(String(16), nullable=False)
    period_key: Mapped[str] = mapped_column(String(16), nullable=False)
    claimed_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    settlement_status: Mapped[SettlementStatus] = mapped_column(
        Enum(
            SettlementStatus,
            native_enum=False,
            length=16,
            values_callable=lambda members: [member.value for member in members],
            name="settlement_status",
        ),
        nullable=False,
        default=SettlementStatus.PENDING,
    )
    # Filled in once the hot wallet reports the transfer.
    transaction_hash: Mapped[str | None] = mapped_column(String(128), nullable=True)


class ClaimPeriodTotal(Base):
    """Running total of claims for a wallet within one claim period."""

    __tablename__ = "claim_period_total"

    wallet_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    period_key: Mapped[str] = mapped_column(String(16), primary_key=True)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(20, 8), nullable=False, default=Decimal("0"))
    claim_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}
