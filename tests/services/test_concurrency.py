"""Concurrent redemptions and claims against one ledger."""

from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from threading import Barrier

import pytest
from sqlalchemy import func, select

from referral_ledger.core.errors import ClaimError, ErrorKind, PersistenceConflictError
from referral_ledger.db.session import unit_of_work
from referral_ledger.models import ReferralRelationship, ReferralStatus
from tests.conftest import make_device, make_wallet, seed_balance


def test_parallel_redemptions_create_one_relationship(ledger_factory, connect, session_factory):
    busy = ledger_factory(referral_attempts_hard_cap=1000, referral_velocity_cap=10_000)
    referrer_wallet = connect(target=busy)
    code = busy.referrals.issue_code(referrer_wallet).code
    device = make_device()
    referred = connect(device=device, target=busy)
    workers = 100
    barrier = Barrier(workers)

    def redeem(_):
        barrier.wait()
        return busy.referrals.process_referral(code, referred, device)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(redeem, range(workers)))

    fresh = [outcome for outcome in outcomes if not outcome.duplicate]
    assert len(fresh) == 1
    assert fresh[0].relationship.status == ReferralStatus.VALIDATED
    assert {outcome.relationship.id for outcome in outcomes} == {fresh[0].relationship.id}
    with session_factory() as db:
        rows = db.scalar(
            select(func.count())
            .select_from(ReferralRelationship)
            .where(ReferralRelationship.referred_wallet == referred)
        )
    assert rows == 1
    assert busy.rewards.balance(referrer_wallet).total_accrued == Decimal("1.0")



def test_redemptions_across_processes_rely_on_the_unique_index(
    ledger_factory, connect, session_factory
):
    # Separate ledgers hold separate in-process locks, like separate workers.
    ledgers = [
        ledger_factory(
            referral_attempts_hard_cap=1000,
            referral_velocity_cap=10_000,
            retry_attempts=5,
        )
        for _ in range(4)
    ]
    referrer_wallet = connect(target=ledgers[0])
    code = ledgers[0].referrals.issue_code(referrer_wallet).code
    device = make_device()
    referred = connect(device=device, target=ledgers[0])
    workers = 8
    barrier = Barrier(workers)

    def redeem(index):
        barrier.wait()
        return ledgers[index % len(ledgers)].referrals.process_referral(code, referred, device)

    with ThreadPoolExecutor(max_workers=workers) as pool:
        outcomes = list(pool.map(redeem, range(workers)))

    assert sum(not outcome.duplicate for outcome in outcomes) == 1
    assert len({outcome.relationship.id for outcome in outcomes}) == 1
    with session_factory() as db:
        rows = db.scalar(
            select(func.count())
            .select_from(ReferralRelationship)
            .where(ReferralRelationship.referred_wallet == referred)
        )
    assert rows == 1
    assert ledgers[0].rewards.balance(referrer_wallet).total_accrued == Decimal("1.0")


def test_services_share_one_lock_table(ledger):
    locks = ledger.referrals.locks
    assert ledger.claims.locks is locks
    assert ledger.rewards.locks is locks
    assert ledger.identity.locks is locks

def test_parallel_claims_never_overdraw(ledger_factory, session_factory):
    busy = ledger_factory(claim_max_per_period=50)
    wallet = make_wallet()
    seed_balance(session_factory, wallet, "10")
    workers = 20
    barrier = Barrier(workers)

    def claim(_):
        barrier.wait()
        try:
            return busy.claims.claim(wallet, "1")
        except ClaimError as exc:
            return exc.kind

    with ThreadPoolExecutor(max_workers=workers) as pool:
        results = list(pool.map(claim, range(workers)))

    failures = [result for result in results if isinstance(result, ErrorKind)]
    assert len(failures) == 10
    assert set(failures) == {ErrorKind.INSUFFICIENT_BALANCE}
    balance = busy.rewards.balance(wallet)
    assert balance.total_claimed == Decimal("10")
    assert balance.available == Decimal("0")


def test_second_live_relationship_is_a_conflict(ledger, connect, referrer):
    _, code = referrer
    device = make_device()
    referred = connect(device=device)
    first = ledger.referrals.process_referral(code, referred, device).relationship

    with pytest.raises(PersistenceConflictError):
        with unit_of_work(ledger.session_factory) as db:
            db.add(
                ReferralRelationship(
                    referrer_wallet=first.referrer_wallet,
                    referred_wallet=referred,
                    referral_code=code,
                    status=ReferralStatus.SUSPICIOUS,
                    fraud_score=0.9,
                    fraud_signals={},
                )
            )
