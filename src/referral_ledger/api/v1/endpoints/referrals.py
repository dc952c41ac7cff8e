# src/referral_ledger/api/v1/endpoints/referrals.py
"""Referral code and redemption endpoints."""

from fastapi import APIRouter, Query, status

from referral_ledger.schemas.referral import (
    ReferralCodeResponse,
    ReferralCodeToggle,
    ReferralOutcomeResponse,
    ReferralRedeem,
    ReferralResponse,
    ReferralReview,
    ReferralStatsResponse,
)

from ..dependencies import AdminDep, ClientIpDep, LedgerDep

router = APIRouter(prefix="/referrals", tags=["referrals"])


@router.post(
    "/codes/{wallet_address}",
    response_model=ReferralCodeResponse,
    status_code=status.HTTP_201_CREATED,
)
def issue_code(wallet_address: str, ledger: LedgerDep) -> ReferralCodeResponse:
    """Return the wallet's referral code, creating it if needed."""
    return ReferralCodeResponse.model_validate(ledger.referrals.issue_code(wallet_address))


@router.patch("/codes/{wallet_address}", response_model=ReferralCodeResponse)
def toggle_code(
    wallet_address: str,
    payload: ReferralCodeToggle,
    ledger: LedgerDep,
) -> ReferralCodeResponse:
    record = ledger.referrals.set_code_active(wallet_address, payload.is_active)
    return ReferralCodeResponse.model_validate(record)


@router.post("/redeem", response_model=ReferralOutcomeResponse)
def redeem(payload: ReferralRedeem, ledger: LedgerDep, ip: ClientIpDep) -> ReferralOutcomeResponse:
    """Redeem a referral code for a connected wallet.

    A wallet that already has a live referral gets that referral back with
    ``duplicate`` set; nothing is counted twice.
    """
    outcome = ledger.referrals.process_referral(
        payload.referral_code,
        payload.referred_wallet,
        payload.device_id,
        ip=ip,
    )
    return ReferralOutcomeResponse(
        relationship=ReferralResponse.model_validate(outcome.relationship),
        duplicate=outcome.duplicate,
        reason=outcome.reason.value if outcome.reason else None,
    )


@router.get("/stats/{wallet_address}", response_model=ReferralStatsResponse)
def referral_stats(wallet_address: str, ledger: LedgerDep) -> ReferralStatsResponse:
    return ReferralStatsResponse.model_validate(ledger.referrals.stats(wallet_address))


@router.get("/review", response_model=list[ReferralResponse])
def pending_review(
    ledger: LedgerDep,
    _admin: AdminDep,
    limit: int = Query(50, ge=1, le=500),
) -> list[ReferralResponse]:
    """List suspicious and pending referrals awaiting a decision."""
    return [ReferralResponse.model_validate(row) for row in ledger.referrals.pending_review(limit)]


@router.post("/{relationship_id}/review", response_model=ReferralResponse)
def review_referral(
    relationship_id: int,
    payload: ReferralReview,
    ledger: LedgerDep,
    _admin: AdminDep,
) -> ReferralResponse:
    relationship = ledger.referrals.review(relationship_id, payload.approve, payload.reason)
    return ReferralResponse.model_validate(relationship)
