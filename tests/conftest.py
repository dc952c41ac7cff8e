# tests/conftest.py
from __future__ import annotations

from collections.abc import Callable, Iterator
from decimal import Decimal
from itertools import count
from pathlib import Path
from threading import Lock
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from referral_ledger.core.security import create_admin_token
from referral_ledger.core.settings import Settings
from referral_ledger.db.session import (
    create_tables,
    drop_tables,
    make_engine,
    make_session_factory,
    unit_of_work,
)
from referral_ledger.main import create_app
from referral_ledger.models import ClaimRecord, RewardBalance
from referral_ledger.services.ledger import RewardsLedger, build_ledger
from referral_ledger.services.rate_limiter import MemoryCounterStore
from referral_ledger.services.settlement import SettlementError

TEST_SECRET_KEY = "test-secret-key-not-for-production"

_WALLET_COUNTER = count(1)
_DEVICE_COUNTER = count(1)


def make_wallet() -> str:
    """Return a fresh, valid, lowercase EVM address."""
    return "0x" + f"{next(_WALLET_COUNTER):040x}"


def make_device() -> str:
    return f"device-{next(_DEVICE_COUNTER):06d}"


def make_settings(database_path: Path, **overrides: Any) -> Settings:
    """Build isolated settings: no .env file, a file-backed SQLite database, no retry sleeps."""
    values: dict[str, Any] = {
        "database_url": f"sqlite:///{database_path}",
        "secret_key": TEST_SECRET_KEY,
        "retry_backoff_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


def seed_balance(
    session_factory: sessionmaker[Session],
    wallet_address: str,
    accrued: Decimal | str,
) -> None:
    """Give a wallet an accrued balance without going through referrals."""
    with unit_of_work(session_factory) as db:
        db.add(
            RewardBalance(
                wallet_address=wallet_address,
                tier_level=0,
                total_accrued=Decimal(accrued),
                total_claimed=Decimal("0"),
            )
        )


class RecordingNotifier:
    """Notifier that keeps every message instead of sending it."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, str, dict[str, Any]]] = []
        self._lock = Lock()

    def notify(self, email: str, template_kind: str, payload: dict[str, Any]) -> None:
        with self._lock:
            self.sent.append((email, template_kind, payload))

    def kinds(self) -> list[str]:
        return [kind for _, kind, _ in self.sent]

    def close(self) -> None:
        return None


class RecordingSettlement:
    """Settlement gateway that records submissions and can be told to fail."""

    def __init__(self, tx_hash: str | None = None, fail: bool = False) -> None:
        self.tx_hash = tx_hash
        self.fail = fail
        self.submitted: list[int] = []

    def submit(self, claim: ClaimRecord) -> str | None:
        self.submitted.append(claim.id)
        if self.fail:
            raise SettlementError("hot wallet offline")
        return self.tx_hash

    def close(self) -> None:
        return None


@pytest.fixture()
def database_path(tmp_path: Path) -> Path:
    return tmp_path / "ledger.db"


@pytest.fixture()
def test_settings(database_path: Path) -> Settings:
    """Provide settings pointing at a per-test database."""
    return make_settings(database_path)


@pytest.fixture()
def engine(test_settings: Settings) -> Iterator[Engine]:
    engine = make_engine(test_settings)
    create_tables(engine)
    try:
        yield engine
    finally:
        drop_tables(engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return make_session_factory(engine)


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def settlement() -> RecordingSettlement:
    return RecordingSettlement()


@pytest.fixture()
def ledger_factory(
    database_path: Path,
    session_factory: sessionmaker[Session],
    notifier: RecordingNotifier,
    settlement: RecordingSettlement,
) -> Callable[..., RewardsLedger]:
    """Return a builder for ledgers sharing the test database but with custom settings."""

    def _build(**overrides: Any) -> RewardsLedger:
        return build_ledger(
            make_settings(database_path, **overrides),
            session_factory,
            counter_store=MemoryCounterStore(),
            notifier=notifier,
            settlement=settlement,
        )

    return _build


@pytest.fixture()
def ledger(ledger_factory: Callable[..., RewardsLedger]) -> RewardsLedger:
    return ledger_factory()


@pytest.fixture()
def connect(ledger: RewardsLedger) -> Callable[..., str]:
    """Resolve a wallet on a device and return its canonical address."""

    def _connect(
        wallet: str | None = None,
        device: str | None = None,
        *,
        email: str | None = None,
        target: RewardsLedger | None = None,
    ) -> str:
        identity = (target or ledger).identity.resolve(
            wallet or make_wallet(),
            device or make_device(),
            "pytest-agent",
            "198.51.100.7",
            email=email,
        )
        return identity.wallet_address

    return _connect


@pytest.fixture()
def referrer(ledger: RewardsLedger, connect: Callable[..., str]) -> tuple[str, str]:
    """Return a connected referrer wallet with an email and its referral code."""
    wallet = connect(email="referrer@example.com")
    code = ledger.referrals.issue_code(wallet)
    return wallet, code.code


@pytest.fixture()
def client(ledger: RewardsLedger) -> Iterator[TestClient]:
    app = create_app(ledger=ledger)
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def admin_headers(test_settings: Settings) -> dict[str, str]:
    """Return authorization headers carrying an admin token."""
    token = create_admin_token("reviewer", test_settings)
    return {"Authorization": f"Bearer {token}"}
