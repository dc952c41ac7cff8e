# src/referral_ledger/api/v1/endpoints/claims.py
"""Claim endpoints."""

from fastapi import APIRouter, Query, status

from referral_ledger.schemas.claim import ClaimCreate, ClaimResponse, SettlementReport

from ..dependencies import AdminDep, LedgerDep

router = APIRouter(prefix="/claims", tags=["claims"])


@router.post("", response_model=ClaimResponse, status_code=status.HTTP_201_CREATED)
def create_claim(payload: ClaimCreate, ledger: LedgerDep) -> ClaimResponse:
    """Claim part of the wallet's available reward balance."""
    record = ledger.claims.claim(payload.wallet_address, payload.amount)
    return ClaimResponse.model_validate(record)


@router.get("/{wallet_address}", response_model=list[ClaimResponse])
def claim_history(
    wallet_address: str,
    ledger: LedgerDep,
    limit: int = Query(50, ge=1, le=500),
) -> list[ClaimResponse]:
    return [ClaimResponse.model_validate(row) for row in ledger.claims.history(wallet_address, limit)]


@router.post("/{claim_id}/settlement", response_model=ClaimResponse)
def report_settlement(
    claim_id: int,
    payload: SettlementReport,
    ledger: LedgerDep,
    _admin: AdminDep,
) -> ClaimResponse:
    """Record the on-chain transaction that settled a claim."""
    record = ledger.claims.record_settlement(claim_id, payload.transaction_hash)
    return ClaimResponse.model_validate(record)
