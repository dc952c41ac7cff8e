# src/referral_ledger/api/v1/endpoints/rewards.py
"""Reward balance endpoints."""

from fastapi import APIRouter

from referral_ledger.schemas.reward import RewardBalanceResponse

from ..dependencies import LedgerDep

router = APIRouter(prefix="/rewards", tags=["rewards"])


@router.get("/{wallet_address}", response_model=RewardBalanceResponse)
def get_balance(wallet_address: str, ledger: LedgerDep) -> RewardBalanceResponse:
    return RewardBalanceResponse.model_validate(ledger.rewards.balance(wallet_address))


@router.post("/{wallet_address}/recompute", response_model=RewardBalanceResponse)
def recompute_balance(wallet_address: str, ledger: LedgerDep) -> RewardBalanceResponse:
    """Recompute the accrued total from validated referrals."""
    return RewardBalanceResponse.model_validate(ledger.rewards.recompute(wallet_address))
