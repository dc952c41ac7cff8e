# src/referral_ledger/models/wallet_session.py
"""Connection sessions opened by a wallet from a device."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, Float, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from referral_ledger.db.session import Base, BigIntegerId
from referral_ledger.db.time import UTCDateTime, utcnow


class WalletSession(Base):
    """Created on connect, refreshed by heartbeats, closed on logout or timeout."""

    __tablename__ = "wallet_session"
    __table_args__ = (
        Index("ix_wallet_session_active_last_active", "active", "last_active"),
        Index("ix_wallet_session_wallet", "wallet_address"),
    )

    id: Mapped[int] = mapped_column(BigIntegerId, primary_key=True, autoincrement=True)
    wallet_address: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("wallet_identity.wallet_address"),
        nullable=False,
    )
    device_id: Mapped[str] = mapped_column(String(128), nullable=False)
    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    end_time: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    last_active: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    duration_seconds: Mapped[float | None] = mapped_column(Float, nullable=True)
    # "logout" or "timeout"
    close_reason: Mapped[str | None] = mapped_column(String(16), nullable=True)
