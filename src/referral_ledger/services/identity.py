"""Wallet and device identity resolution.

The resolver owns ``WalletIdentity``, ``Device`` and their links. Addresses are
canonicalized here and nowhere else; every other component receives the
canonical form.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from referral_ledger.core.errors import ErrorKind, IdentityError
from referral_ledger.core.settings import Settings
from referral_ledger.db.session import unit_of_work
from referral_ledger.db.time import utcnow
from referral_ledger.models import Device, WalletDevice, WalletIdentity, WalletType
from referral_ledger.utils.locks import KeyedLock
from referral_ledger.utils.retry import run_with_retries

logger = logging.getLogger(__name__)

EVM_ADDRESS_PATTERN = re.compile(r"^0x[a-fA-F0-9]{40}$")
# Base58 alphabet: no 0, O, I or l.
SOLANA_ADDRESS_PATTERN = re.compile(r"^[1-9A-HJ-NP-Za-km-z]{32,44}$")

DEVICE_ID_MAX_LENGTH = 128


def normalize_wallet_address(
    address: str,
    wallet_type: WalletType | str | None = None,
) -> tuple[str, WalletType]:
    """Return the canonical form of ``address`` and its wallet family.

    EVM addresses are lowercased. Solana addresses are base58 and therefore
    case-sensitive, so only surrounding whitespace is removed. When
    ``wallet_type`` is omitted the family is detected from the format.

    Raises:
        IdentityError: If the address does not match the expected format.
    """
    candidate = (address or "").strip()
    expected = WalletType(wallet_type) if wallet_type else None

    if expected in (None, WalletType.EVM) and EVM_ADDRESS_PATTERN.match(candidate):
        return candidate.lower(), WalletType.EVM
    if expected in (None, WalletType.SOLANA) and SOLANA_ADDRESS_PATTERN.match(candidate):
        return candidate, WalletType.SOLANA

    raise IdentityError(
        ErrorKind.INVALID_WALLET_FORMAT,
        "Wallet address is not a valid address for the expected chain",
        context={
            "wallet": candidate[:10],
            "wallet_type": expected.value if expected else None,
        },
    )


def normalize_device_id(device_id: str) -> str:
    """Return a trimmed device id, rejecting empty or oversized values."""
    value = (device_id or "").strip()
    if not value or len(value) > DEVICE_ID_MAX_LENGTH:
        raise IdentityError(
            ErrorKind.INVALID_WALLET_FORMAT,
            "Device id is missing or too long",
            context={"reason": "invalid_device_id"},
        )
    return value


def wallets_on_device(db: Session, device_id: str, since: datetime | None = None) -> set[str]:
    """Return wallets linked to ``device_id``, optionally only those seen since ``since``.

    Evicted links are included; the device was still shared by those wallets.
    """
    stmt = select(WalletDevice.wallet_address).where(WalletDevice.device_id == device_id)
    if since is not None:
        stmt = stmt.where(WalletDevice.last_seen_at >= since)
    return set(db.scalars(stmt))


def devices_for_wallet(db: Session, wallet_address: str) -> set[str]:
    """Return every device id the wallet has ever been linked to."""
    stmt = select(WalletDevice.device_id).where(WalletDevice.wallet_address == wallet_address)
    return set(db.scalars(stmt))


class IdentityResolver:
    """Resolve wallet connections into identities, devices and links."""

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

    def resolve(
        self,
        wallet_address: str,
        device_id: str,
        user_agent: str | None = None,
        ip: str | None = None,
        *,
        wallet_type: WalletType | str | None = None,
        hardware_fingerprint: str | None = None,
        email: str | None = None,
    ) -> WalletIdentity:
        """Upsert the identity, device and link for a wallet connection.

        Args:
            wallet_address: Address as supplied by the wallet provider.
            device_id: Client-side device identifier.
            user_agent: Browser user agent, stored on the device.
            ip: Remote address, stored on the link.
            wallet_type: Expected wallet family; detected when omitted.
            hardware_fingerprint: Optional hardware fingerprint for the device.
            email: Optional contact address used for notifications.

        Returns:
            The resolved identity with its device links loaded.

        Raises:
            IdentityError: ``InvalidWalletFormat`` for malformed input, or
                ``DeviceLimitExceeded`` when the wallet already has the maximum
                number of active devices or the device is shared by too many
                wallets.
        """
        address, family = normalize_wallet_address(wallet_address, wallet_type)
        device_key = normalize_device_id(device_id)

        def attempt() -> WalletIdentity:
            return self._resolve_once(
                address, family, device_key, user_agent, ip, hardware_fingerprint, email
            )

        with self.locks.hold(f"identity:{address}"):
            return run_with_retries(
                attempt,
                attempts=self.settings.retry_attempts,
                backoff_seconds=self.settings.retry_backoff_seconds,
            )

    def _resolve_once(
        self,
        address: str,
        family: WalletType,
        device_id: str,
        user_agent: str | None,
        ip: str | None,
        hardware_fingerprint: str | None,
        email: str | None,
    ) -> WalletIdentity:
        now = utcnow()
        with unit_of_work(self.session_factory) as db:
            identity = db.get(WalletIdentity, address)
            if identity is None:
                identity = WalletIdentity(
                    wallet_address=address,
                    wallet_type=family.value,
                    first_seen_at=now,
                    last_seen_at=now,
                    active=True,
                    device_links=[],
                )
                db.add(identity)
                logger.info("IDENTITY_CREATED wallet=%s type=%s", address[:10], family.value)
            elif not identity.active:
                identity.active = True
                identity.deactivated_at = None
                logger.info("IDENTITY_REACTIVATED wallet=%s", address[:10])
            identity.last_seen_at = now
            if email:
                identity.email = email.strip()

            device = db.get(Device, device_id)
            if device is None:
                device = Device(device_id=device_id, first_seen_at=now)
                db.add(device)
            device.last_seen_at = now
            if user_agent:
                device.user_agent = user_agent
            if hardware_fingerprint:
                device.hardware_fingerprint = hardware_fingerprint

            link = next(
                (item for item in identity.device_links if item.device_id == device_id),
                None,
            )
            if link is None or not link.active:
                self._check_device_limits(db, identity, device_id, now)
                if link is None:
                    link = WalletDevice(device_id=device_id, first_seen_at=now, device=device)
                    identity.device_links.append(link)
                link.active = True
                logger.info(
                    "DEVICE_LINKED wallet=%s device=%s active_devices=%d",
                    address[:10],
                    device_id[:10],
                    len(identity.device_ids),
                )
            link.last_seen_at = now
            if ip:
                link.last_ip = ip
        return identity

    def _check_device_limits(
        self,
        db: Session,
        identity: WalletIdentity,
        device_id: str,
        now: datetime,
    ) -> None:
        active_devices = identity.device_ids
        limit = self.settings.device_limit_per_wallet
        if len(active_devices) >= limit:
            raise IdentityError(
                ErrorKind.DEVICE_LIMIT_EXCEEDED,
                f"Wallet already has {limit} active devices; remove one to continue",
                context={
                    "wallet": identity.wallet_address[:10],
                    "limit": limit,
                    "reason": "device_limit",
                },
            )

        since = now - timedelta(hours=self.settings.device_lookback_hours)
        others = wallets_on_device(db, device_id, since) - {identity.wallet_address}
        hard_limit = self.settings.device_wallet_hard_limit
        if len(others) >= hard_limit:
            logger.warning(
                "DEVICE_SHARED_LIMIT device=%s wallets=%d limit=%d",
                device_id[:10],
                len(others),
                hard_limit,
            )
            raise IdentityError(
                ErrorKind.DEVICE_LIMIT_EXCEEDED,
                "This device is already linked to too many wallets",
                context={
                    "wallet": identity.wallet_address[:10],
                    "limit": hard_limit,
                    "reason": "device_shared",
                },
            )

    def evict_stalest_device(self, wallet_address: str) -> WalletDevice | None:
        """Deactivate the wallet's least recently seen device link, if any."""
        address, _ = normalize_wallet_address(wallet_address)
        with self.locks.hold(f"identity:{address}"), unit_of_work(self.session_factory) as db:
            stmt = (
                select(WalletDevice)
                .where(
                    WalletDevice.wallet_address == address,
                    WalletDevice.active.is_(True),
                )
                .order_by(WalletDevice.last_seen_at.asc())
                .limit(1)
            )
            link = db.scalars(stmt).first()
            if link is None:
                return None
            link.active = False
            logger.info("DEVICE_EVICTED wallet=%s device=%s", address[:10], link.device_id[:10])
        return link

    def deactivate(self, wallet_address: str) -> WalletIdentity:
        """Mark the identity inactive; the row and its history are kept."""
        address, _ = normalize_wallet_address(wallet_address)
        with self.locks.hold(f"identity:{address}"), unit_of_work(self.session_factory) as db:
            identity = self._require(db, address)
            if identity.active:
                identity.active = False
                identity.deactivated_at = utcnow()
                logger.info("IDENTITY_DEACTIVATED wallet=%s", address[:10])
            identity.device_links  # noqa: B018 - load links before the session closes
        return identity

    def get(self, wallet_address: str) -> WalletIdentity:
        address, _ = normalize_wallet_address(wallet_address)
        with self.session_factory() as db:
            identity = self._require(db, address)
            identity.device_links  # noqa: B018
        return identity

    def wallets_on_device(self, device_id: str, since: datetime | None = None) -> set[str]:
        with self.session_factory() as db:
            return wallets_on_device(db, normalize_device_id(device_id), since)

    @staticmethod
    def _require(db: Session, address: str) -> WalletIdentity:
        identity = db.get(WalletIdentity, address)
        if identity is None:
            raise IdentityError(
                ErrorKind.NOT_FOUND,
                "Wallet has not connected yet",
                context={"wallet": address[:10]},
            )
        return identity
