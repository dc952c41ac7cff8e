"""User notifications sent after ledger transitions.

Delivery is fire-and-forget: the ledger hands the message off and moves on,
and a failed delivery is logged without affecting the committed transition.
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Protocol

import httpx

from referral_ledger.core.settings import Settings

logger = logging.getLogger(__name__)

TEMPLATE_REFERRAL_VALIDATED = "referral_validated"
TEMPLATE_CLAIM_COMPLETED = "claim_completed"


class Notifier(Protocol):
    def notify(self, email: str, template_kind: str, payload: dict[str, Any]) -> None: ...

    def close(self) -> None: ...


class NullNotifier:
    """Notifier used when no mail service is configured."""

    def notify(self, email: str, template_kind: str, payload: dict[str, Any]) -> None:
        logger.debug("Mail delivery disabled, dropping %s notification", template_kind)

    def close(self) -> None:
        return None


class HttpMailNotifier:
    """POST notifications to the mail service webhook from a background thread."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        client: httpx.Client | None = None,
        max_workers: int = 2,
    ) -> None:
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="mail")

    def notify(self, email: str, template_kind: str, payload: dict[str, Any]) -> None:
        self._executor.submit(self._deliver, email, template_kind, payload)

    def _deliver(self, email: str, template_kind: str, payload: dict[str, Any]) -> None:
        body = {"to": email, "template": template_kind, "payload": payload}
        try:
            response = self._client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.error("MAIL_DELIVERY_FAILED template=%s reason=%s", template_kind, exc)
            return
        logger.info("MAIL_SENT template=%s status=%s", template_kind, response.status_code)

    def close(self) -> None:
        self._executor.shutdown(wait=True)
        self._client.close()


def build_notifier(settings: Settings) -> Notifier:
    if settings.mail_webhook_url:
        return HttpMailNotifier(settings.mail_webhook_url, timeout=settings.mail_timeout_seconds)
    return NullNotifier()
