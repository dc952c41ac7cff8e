"""Wallet connection sessions: opened on connect, kept alive by heartbeats."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from referral_ledger.core.errors import ErrorKind, IdentityError
from referral_ledger.core.settings import Settings
from referral_ledger.db.session import unit_of_work
from referral_ledger.db.time import as_utc, utcnow
from referral_ledger.models import WalletIdentity, WalletSession
from referral_ledger.services.identity import normalize_device_id, normalize_wallet_address

logger = logging.getLogger(__name__)

CLOSE_REASON_LOGOUT = "logout"
CLOSE_REASON_TIMEOUT = "timeout"


def _close(record: WalletSession, end_time: datetime, reason: str) -> None:
    record.active = False
    record.end_time = end_time
    record.close_reason = reason
    record.duration_seconds = max(
        0.0, (as_utc(end_time) - as_utc(record.start_time)).total_seconds()
    )


class SessionTracker:
    """Track connection sessions per wallet and device."""

    def __init__(self, session_factory: sessionmaker[Session], settings: Settings) -> None:
        self.session_factory = session_factory
        self.settings = settings

    @property
    def idle_timeout(self) -> timedelta:
        return timedelta(seconds=self.settings.session_idle_timeout_seconds)

    def start(
        self,
        wallet_address: str,
        device_id: str,
        ip: str | None = None,
        user_agent: str | None = None,
        *,
        now: datetime | None = None,
    ) -> WalletSession:
        """Open a session for a wallet that has already been resolved."""
        address, _ = normalize_wallet_address(wallet_address)
        device_key = normalize_device_id(device_id)
        now = now or utcnow()
        with unit_of_work(self.session_factory) as db:
            if db.get(WalletIdentity, address) is None:
                raise IdentityError(
                    ErrorKind.NOT_FOUND,
                    "Wallet has not connected yet",
                    context={"wallet": address[:10]},
                )
            record = WalletSession(
                wallet_address=address,
                device_id=device_key,
                ip_address=ip,
                user_agent=user_agent,
                start_time=now,
                last_active=now,
                active=True,
            )
            db.add(record)
            db.flush()
            logger.info(
                "SESSION_STARTED id=%s wallet=%s device=%s", record.id, address[:10], device_key[:10]
            )
        return record

    def heartbeat(self, session_id: int, *, now: datetime | None = None) -> WalletSession:
        """Refresh ``last_active``; a session idle past the timeout is closed instead."""
        now = now or utcnow()
        with unit_of_work(self.session_factory) as db:
            record = self._require(db, session_id)
            if not record.active:
                return record
            if now - as_utc(record.last_active) > self.idle_timeout:
                _close(record, record.last_active, CLOSE_REASON_TIMEOUT)
                logger.info("SESSION_TIMED_OUT id=%s", record.id)
            else:
                record.last_active = now
        return record

    def close(
        self,
        session_id: int,
        *,
        reason: str = CLOSE_REASON_LOGOUT,
        now: datetime | None = None,
    ) -> WalletSession:
        """Close the session and compute its duration. Closing twice is a no-op."""
        with unit_of_work(self.session_factory) as db:
            record = self._require(db, session_id)
            if record.active:
                _close(record, now or utcnow(), reason)
                logger.info(
                    "SESSION_CLOSED id=%s reason=%s duration=%.1fs",
                    record.id,
                    reason,
                    record.duration_seconds,
                )
        return record

    def expire_idle(self, now: datetime | None = None) -> int:
        """Close every session idle past the timeout; returns how many were closed."""
        cutoff = (now or utcnow()) - self.idle_timeout
        with unit_of_work(self.session_factory) as db:
            stale = db.scalars(
                select(WalletSession).where(
                    WalletSession.active.is_(True),
                    WalletSession.last_active < cutoff,
                )
            ).all()
            for record in stale:
                _close(record, record.last_active, CLOSE_REASON_TIMEOUT)
        if stale:
            logger.info("SESSIONS_EXPIRED count=%d", len(stale))
        return len(stale)

    def active_sessions(self, wallet_address: str) -> list[WalletSession]:
        address, _ = normalize_wallet_address(wallet_address)
        with self.session_factory() as db:
            stmt = (
                select(WalletSession)
                .where(WalletSession.wallet_address == address, WalletSession.active.is_(True))
                .order_by(WalletSession.start_time.desc())
            )
            return list(db.scalars(stmt))

    def close_all(self, wallet_address: str, *, now: datetime | None = None) -> int:
        """Close every open session of a wallet, e.g. when it is deactivated."""
        address, _ = normalize_wallet_address(wallet_address)
        now = now or utcnow()
        with unit_of_work(self.session_factory) as db:
            records = db.scalars(
                select(WalletSession).where(
                    WalletSession.wallet_address == address,
                    WalletSession.active.is_(True),
                )
            ).all()
            for record in records:
                _close(record, now, CLOSE_REASON_LOGOUT)
        return len(records)

    @staticmethod
    def _require(db: Session, session_id: int) -> WalletSession:
        record = db.get(WalletSession, session_id)
        if record is None:
            raise IdentityError(
                ErrorKind.NOT_FOUND,
                "Session not found",
                context={"session_id": session_id},
            )
        return record
