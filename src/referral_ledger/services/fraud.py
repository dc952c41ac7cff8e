"""Fraud scoring for referral redemptions.

Scoring is split in two: ``FraudScorer.gather`` reads device and wallet history
from the database into an immutable ``FraudEvidence`` snapshot, and
``compute_fraud_score`` turns that snapshot into a score without touching any
state. The same evidence and settings always produce the same assessment.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from referral_ledger.core.settings import Settings
from referral_ledger.db.time import as_utc
from referral_ledger.models import WalletIdentity
from referral_ledger.services.identity import devices_for_wallet, wallets_on_device

logger = logging.getLogger(__name__)

SIGNAL_DEVICE_SHARING = "device_sharing"
SIGNAL_WALLET_AGE = "wallet_age"
SIGNAL_VELOCITY = "velocity"
SIGNAL_SELF_REFERRAL = "self_referral"


@dataclass(frozen=True)
class FraudEvidence:
    """Everything the score depends on, captured at redemption time."""

    referrer_wallet: str
    referred_wallet: str
    device_id: str | None
    now: datetime
    other_wallets_on_device: frozenset[str] = frozenset()
    shares_device: bool = False
    referred_first_seen_at: datetime | None = None
    velocity_count: int = 0
    velocity_cap: int = 1


@dataclass(frozen=True)
class FraudAssessment:
    score: float
    suspicious: bool
    signals: dict[str, float] = field(default_factory=dict)

    def to_audit(self) -> dict[str, Any]:
        """Return the JSON-safe breakdown stored on the relationship."""
        return {"score": self.score, "signals": dict(self.signals)}


def device_sharing_signal(evidence: FraudEvidence, saturation: int) -> float:
    """1.0 once the device is shared with ``saturation`` other wallets, linear below."""
    if not evidence.device_id:
        return 0.0
    return min(1.0, len(evidence.other_wallets_on_device) / max(1, saturation))


def wallet_age_signal(
    evidence: FraudEvidence,
    fresh_minutes: int,
    maturity_minutes: int,
) -> float:
    """1.0 for a wallet first seen within ``fresh_minutes``, decaying to 0 over the maturity window."""
    if evidence.referred_first_seen_at is None:
        return 1.0
    age_minutes = (
        as_utc(evidence.now) - as_utc(evidence.referred_first_seen_at)
    ).total_seconds() / 60
    if age_minutes <= fresh_minutes:
        return 1.0
    if maturity_minutes <= 0:
        return 0.0
    return max(0.0, 1.0 - (age_minutes - fresh_minutes) / maturity_minutes)


def velocity_signal(evidence: FraudEvidence) -> float:
    if evidence.velocity_cap <= 0:
        return 0.0
    return min(1.0, max(0, evidence.velocity_count) / evidence.velocity_cap)


def self_referral_signal(evidence: FraudEvidence) -> float:
    if evidence.referrer_wallet == evidence.referred_wallet or evidence.shares_device:
        return 1.0
    return 0.0


def compute_fraud_score(evidence: FraudEvidence, settings: Settings) -> FraudAssessment:
    """Combine the individual signals into a weighted score clamped to [0, 1].

    Args:
        evidence: Snapshot of the redemption being scored.
        settings: Source of the weights, threshold and signal windows.

    Returns:
        The score, the per-signal values and whether the score reaches
        ``settings.suspicious_threshold``.
    """
    weights = settings.fraud_weights
    signals = {
        SIGNAL_DEVICE_SHARING: device_sharing_signal(
            evidence, settings.device_sharing_saturation
        ),
        SIGNAL_WALLET_AGE: wallet_age_signal(
            evidence, settings.fresh_wallet_minutes, settings.wallet_maturity_minutes
        ),
        SIGNAL_VELOCITY: velocity_signal(evidence),
        SIGNAL_SELF_REFERRAL: self_referral_signal(evidence),
    }
    total = (
        weights.device_sharing * signals[SIGNAL_DEVICE_SHARING]
        + weights.wallet_age * signals[SIGNAL_WALLET_AGE]
        + weights.velocity * signals[SIGNAL_VELOCITY]
        + weights.self_referral * signals[SIGNAL_SELF_REFERRAL]
    )
    score = round(min(1.0, max(0.0, total)), 6)
    return FraudAssessment(
        score=score,
        suspicious=score >= settings.suspicious_threshold,
        signals={name: round(value, 6) for name, value in signals.items()},
    )


class FraudScorer:
    """Gather fraud evidence from the ledger database and score it."""

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    def gather(
        self,
        db: Session,
        referrer_wallet: str,
        referred_wallet: str,
        device_id: str | None,
        *,
        velocity_count: int,
        now: datetime,
    ) -> FraudEvidence:
        since = now - timedelta(hours=self.settings.device_lookback_hours)
        others: set[str] = set()
        if device_id:
            others = wallets_on_device(db, device_id, since) - {referred_wallet}

        referred_devices = devices_for_wallet(db, referred_wallet)
        if device_id:
            referred_devices.add(device_id)
        shares_device = bool(devices_for_wallet(db, referrer_wallet) & referred_devices)

        referred = db.get(WalletIdentity, referred_wallet)
        return FraudEvidence(
            referrer_wallet=referrer_wallet,
            referred_wallet=referred_wallet,
            device_id=device_id,
            now=now,
            other_wallets_on_device=frozenset(others),
            shares_device=shares_device,
            referred_first_seen_at=referred.first_seen_at if referred else None,
            velocity_count=velocity_count,
            velocity_cap=self.settings.referral_velocity_cap,
        )

    def score(
        self,
        db: Session,
        referrer_wallet: str,
        referred_wallet: str,
        device_id: str | None,
        *,
        velocity_count: int = 0,
        now: datetime,
    ) -> FraudAssessment:
        evidence = self.gather(
            db,
            referrer_wallet,
            referred_wallet,
            device_id,
            velocity_count=velocity_count,
            now=now,
        )
        assessment = compute_fraud_score(evidence, self.settings)
        if assessment.suspicious:
            logger.warning(
                "FRAUD_SCORE_HIGH referrer=%s referred=%s score=%.3f signals=%s",
                referrer_wallet[:10],
                referred_wallet[:10],
                assessment.score,
                assessment.signals,
            )
        else:
            logger.debug(
                "FRAUD_SCORE referrer=%s referred=%s score=%.3f",
                referrer_wallet[:10],
                referred_wallet[:10],
                assessment.score,
            )
        return assessment
