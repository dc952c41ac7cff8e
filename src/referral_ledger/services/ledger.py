"""Wiring of the ledger services around one settings object and one database."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

from referral_ledger.core.settings import Settings
from referral_ledger.db.session import create_tables, make_engine, make_session_factory
from referral_ledger.services.claims import ClaimLedger
from referral_ledger.services.fraud import FraudScorer
from referral_ledger.services.identity import IdentityResolver
from referral_ledger.services.notifications import Notifier, build_notifier
from referral_ledger.services.rate_limiter import CounterStore, RateLimiter, build_counter_store
from referral_ledger.services.referrals import ReferralProcessor
from referral_ledger.services.rewards import RewardCalculator
from referral_ledger.services.sessions import SessionTracker
from referral_ledger.services.settlement import (
    ConfiguredExchangeRate,
    SettlementGateway,
    build_settlement_gateway,
)
from referral_ledger.utils.locks import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class RewardsLedger:
    """All ledger components sharing one configuration, store and lock table."""

    settings: Settings
    session_factory: sessionmaker[Session]
    identity: IdentityResolver
    sessions: SessionTracker
    rate_limiter: RateLimiter
    fraud: FraudScorer
    rewards: RewardCalculator
    referrals: ReferralProcessor
    claims: ClaimLedger
    notifier: Notifier
    settlement: SettlementGateway
    engine: Engine | None = None

    def close(self) -> None:
        self.notifier.close()
        self.settlement.close()
        if self.engine is not None:
            self.engine.dispose()


def build_ledger(
    settings: Settings,
    session_factory: sessionmaker[Session] | None = None,
    *,
    counter_store: CounterStore | None = None,
    notifier: Notifier | None = None,
    settlement: SettlementGateway | None = None,
) -> RewardsLedger:
    """Construct every ledger service from ``settings``.

    Collaborators that are not passed in are built from configuration. When
    no session factory is given an engine is created from
    ``settings.database_url`` and owned by the returned ledger.
    """
    engine: Engine | None = None
    if session_factory is None:
        engine = make_engine(settings)
        if settings.auto_create_tables:
            create_tables(engine)
        session_factory = make_session_factory(engine)

    locks = KeyedLock()
    if counter_store is None:
        counter_store = build_counter_store(settings)
    rate_limiter = RateLimiter(
        counter_store,
        prefix=settings.rate_limit_prefix,
    )
    notifier = notifier or build_notifier(settings)
    settlement = settlement or build_settlement_gateway(settings)

    fraud = FraudScorer(settings)
    rewards = RewardCalculator(session_factory, settings, locks=locks)
    referrals = ReferralProcessor(
        session_factory,
        settings,
        rate_limiter=rate_limiter,
        scorer=fraud,
        rewards=rewards,
        notifier=notifier,
        locks=locks,
    )
    claims = ClaimLedger(
        session_factory,
        settings,
        rate_limiter=rate_limiter,
        exchange_rate=ConfiguredExchangeRate(settings.settlement_exchange_rate),
        settlement=settlement,
        notifier=notifier,
        locks=locks,
    )
    logger.info(
        "Ledger ready (rate_limit_backend=%s, claim_period=%s, blending=%s)",
        settings.rate_limit_backend,
        settings.claim_period,
        settings.reward_blending,
    )
    return RewardsLedger(
        settings=settings,
        session_factory=session_factory,
        identity=IdentityResolver(session_factory, settings, locks=locks),
        sessions=SessionTracker(session_factory, settings),
        rate_limiter=rate_limiter,
        fraud=fraud,
        rewards=rewards,
        referrals=referrals,
        claims=claims,
        notifier=notifier,
        settlement=settlement,
        engine=engine,
    )
