"""Tests for the wallet session tracker."""

from datetime import timedelta

import pytest

from referral_ledger.core.errors import ErrorKind, IdentityError
from referral_ledger.db.time import utcnow
from tests.conftest import make_wallet


@pytest.fixture()
def started(ledger, connect):
    wallet = connect(device="d1")
    t0 = utcnow()
    record = ledger.sessions.start(wallet, "d1", "203.0.113.5", "agent", now=t0)
    return record, t0


def test_start_opens_active_session(started):
    record, t0 = started
    assert record.active
    assert record.start_time == t0
    assert record.last_active == t0
    assert record.end_time is None


def test_start_requires_known_wallet(ledger):
    with pytest.raises(IdentityError) as exc_info:
        ledger.sessions.start(make_wallet(), "d1")
    assert exc_info.value.kind is ErrorKind.NOT_FOUND


def test_heartbeat_refreshes_last_active(ledger, started):
    record, t0 = started
    beat = ledger.sessions.heartbeat(record.id, now=t0 + timedelta(seconds=10))
    assert beat.active
    assert beat.last_active == t0 + timedelta(seconds=10)


def test_heartbeat_after_idle_timeout_closes_session(ledger, started):
    record, t0 = started
    timeout = ledger.settings.session_idle_timeout_seconds

    beat = ledger.sessions.heartbeat(record.id, now=t0 + timedelta(seconds=timeout + 1))

    assert not beat.active
    assert beat.close_reason == "timeout"
    assert beat.end_time == t0
    assert beat.duration_seconds == 0.0


def test_close_computes_duration_and_is_idempotent(ledger, started):
    record, t0 = started

    closed = ledger.sessions.close(record.id, now=t0 + timedelta(seconds=70))
    again = ledger.sessions.close(record.id, now=t0 + timedelta(seconds=500))

    assert not closed.active
    assert closed.close_reason == "logout"
    assert closed.duration_seconds == pytest.approx(70.0)
    assert again.duration_seconds == pytest.approx(70.0)
    assert again.end_time == t0 + timedelta(seconds=70)


def test_expire_idle_closes_only_stale_sessions(ledger, connect):
    wallet = connect(device="d1")
    t0 = utcnow()
    stale = ledger.sessions.start(wallet, "d1", now=t0 - timedelta(hours=2))
    fresh = ledger.sessions.start(wallet, "d1", now=t0)

    closed = ledger.sessions.expire_idle(now=t0 + timedelta(seconds=5))

    assert closed == 1
    active_ids = [record.id for record in ledger.sessions.active_sessions(wallet)]
    assert active_ids == [fresh.id]
    assert stale.id not in active_ids


def test_unknown_session_is_not_found(ledger):
    with pytest.raises(IdentityError) as exc_info:
        ledger.sessions.heartbeat(999_999)
    assert exc_info.value.kind is ErrorKind.NOT_FOUND
