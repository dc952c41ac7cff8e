# src/referral_ledger/models/identity.py
"""SQLAlchemy models for wallet identities and the devices they connect from."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from referral_ledger.db.session import Base
from referral_ledger.db.time import UTCDateTime, utcnow


class WalletType(StrEnum):
    """Address families accepted by the identity resolver."""

    EVM = "evm"
    SOLANA = "solana"


class WalletIdentity(Base):
    """A wallet seen by the platform, keyed by its canonical address.

    Identities are never hard-deleted; ``active`` is cleared instead.
    """

    __tablename__ = "wallet_identity"

    wallet_address: Mapped[str] = mapped_column(String(64), primary_key=True)
    wallet_type: Mapped[str] = mapped_column(String(16), nullable=False)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    deactivated_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    device_links: Mapped[list[WalletDevice]] = relationship(
        "WalletDevice",
        back_populates="identity",
        cascade="all, delete-orphan",
    )

    @property
    def device_ids(self) -> set[str]:
        """Return the ids of devices currently attached to this wallet."""
        return {link.device_id for link in self.device_links if link.active}


class Device(Base):
    """A browser or handset identified by a client-side fingerprint."""

    __tablename__ = "device"

    device_id: Mapped[str] = mapped_column(String(128), primary_key=True)
    hardware_fingerprint: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    first_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    wallet_links: Mapped[list[WalletDevice]] = relationship(
        "WalletDevice",
        back_populates="device",
    )


class WalletDevice(Base):
    """Link between a wallet and a device it has connected from."""

    __tablename__ = "wallet_device"
    __table_args__ = (
        Index("ix_wallet_device_device_id", "device_id", "last_seen_at"),
    )

    wallet_address: Mapped[str] = mapped_column(
        String(64),
        ForeignKey("wallet_identity.wallet_address", ondelete="CASCADE"),
        primary_key=True,
    )
    device_id: Mapped[str] = mapped_column(
        String(128),
        ForeignKey("device.device_id", ondelete="CASCADE"),
        primary_key=True,
    )
    first_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_seen_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    last_ip: Mapped[str | None] = mapped_column(String(64), nullable=True)
    # Evicted links stay for the audit trail but no longer count toward the cap.
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    identity: Mapped[WalletIdentity] = relationship("WalletIdentity", back_populates="device_links")
    device: Mapped[Device] = relationship("Device", back_populates="wallet_links")
