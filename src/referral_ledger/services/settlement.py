"""Settlement collaborators: token exchange rate and the hot-wallet transfer service."""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Protocol

import httpx

from referral_ledger.core.settings import Settings
from referral_ledger.models import ClaimRecord

logger = logging.getLogger(__name__)


class SettlementError(RuntimeError):
    """Raised when the hot-wallet service rejects or cannot receive a transfer."""


class ExchangeRateSource(Protocol):
    def current_rate(self) -> Decimal: ...


class ConfiguredExchangeRate:
    """Fixed reward-to-token conversion rate taken from configuration."""

    def __init__(self, rate: Decimal) -> None:
        if rate <= 0:
            raise ValueError("exchange rate must be positive")
        self.rate = Decimal(rate)

    def current_rate(self) -> Decimal:
        return self.rate


class SettlementGateway(Protocol):
    def submit(self, claim: ClaimRecord) -> str | None:
        """Request the on-chain transfer for ``claim``.

        Returns the transaction hash when the transfer is known immediately,
        or None when it will be reported later.
        """
        ...

    def close(self) -> None: ...


class NullSettlementGateway:
    """Leaves every claim pending for the reconciliation job."""

    def submit(self, claim: ClaimRecord) -> str | None:
        logger.debug("Settlement disabled, claim %s stays pending", claim.id)
        return None

    def close(self) -> None:
        return None


class HttpSettlementGateway:
    """Submit transfers to the hot-wallet service over HTTP."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=timeout)

    def submit(self, claim: ClaimRecord) -> str | None:
        payload = {
            "claim_id": claim.id,
            "wallet_address": claim.wallet_address,
            "token_symbol": claim.token_symbol,
            "token_amount": str(claim.token_amount),
        }
        try:
            response = self._client.post(f"{self.base_url}/transfers", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise SettlementError(
                f"Hot wallet rejected claim {claim.id}: {exc.response.status_code}"
            ) from exc
        except httpx.HTTPError as exc:
            raise SettlementError(f"Hot wallet unreachable: {exc}") from exc

        try:
            data = response.json() if response.content else {}
        except ValueError:
            logger.warning(
                "SETTLEMENT_UNREADABLE claim=%s status=%s, left pending for reconciliation",
                claim.id,
                response.status_code,
            )
            return None
        tx_hash = data.get("transaction_hash") if isinstance(data, dict) else None
        logger.info("SETTLEMENT_SUBMITTED claim=%s tx=%s", claim.id, tx_hash)
        return tx_hash

    def close(self) -> None:
        self._client.close()


def build_settlement_gateway(settings: Settings) -> SettlementGateway:
    if settings.settlement_url:
        return HttpSettlementGateway(
            settings.settlement_url, timeout=settings.settlement_timeout_seconds
        )
    return NullSettlementGateway()
