# src/referral_ledger/models/referral.py
"""Models for referral codes and referrer/referred relationships."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import JSON, Boolean, Enum, Float, ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column

from referral_ledger.db.session import Base, BigIntegerId
from referral_ledger.db.time import UTCDateTime, utcnow


class ReferralStatus(StrEnum):
    """Lifecycle of a referral relationship.

    ``pending`` and ``suspicious`` rows move to ``validated`` or ``rejected``
    exactly once; final rows never change again.
    """

    PENDING = "pending"
    VALIDATED = "validated"
    REJECTED = "rejected"
    SUSPICIOUS = "suspicious"


FINAL_STATUSES = frozenset({ReferralStatus.VALIDATED, ReferralStatus.REJECTED})


class ReferralCode(Base):
    """Redeemable code issued to a single wallet."""

    __tablename__ = "referral_code"

    code: Mapped[str] = mapped_column(String(16), primary_key=True)
    wallet_address: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("wallet_identity.wallet_address"),
        unique=True,
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)


class ReferralRelationship(Base):
    """A redemption of a referral code by a referred wallet."""

    __tablename__ = "referral_relationship"
    __table_args__ = (
        # At most one live (non-rejected) relationship per referred wallet.
        Index(
            "uq_referral_relationship_live_referred",
            "referred_wallet",
            unique=True,
            sqlite_where=text("status != 'rejected'"),
            postgresql_where=text("status != 'rejected'"),
        ),
        Index("ix_referral_relationship_referrer_status", "referrer_wallet", "status"),
    )

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    referrer_wallet: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("wallet_identity.wallet_address"),
        nullable=False,
    )
    referred_wallet: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("wallet_identity.wallet_address"),
        nullable=False,
    )
    referral_code: Mapped[str] = mapped_column(
        String(16),
        ForeignKey("referral_code.code"),
        nullable=False,
    )
    status: Mapped[ReferralStatus] = mapped_column(
        Enum(
            ReferralStatus,
            native_enum=False,
            length=16,
            values_callable=lambda members: [member.value for member in members],
            name="referral_status",
        ),
        nullable=False,
        default=ReferralStatus.PENDING,
    )
    fraud_score: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    # Per-signal breakdown kept for the review audit trail.
    fraud_signals: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    device_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    validated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    @property
    def is_final(self) -> bool:
        """Return True once the relationship can no longer change status."""
        return self.status in FINAL_STATUSES
