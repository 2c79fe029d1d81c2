from __future__ import annotations

from typing import Any

import requests

from tickerpilot.core.config import settings
from tickerpilot.core.errors import ProviderTransientError
from tickerpilot.core.logging import get_logger
from tickerpilot.core.paddle_config import PADDLE_BASE_URL

logger = get_logger(__name__)


class PaddleClient:
    """
    Thin Paddle Billing API client: only the calls reconciliation needs.

    Network errors, timeouts and 5xx responses raise ProviderTransientError so
    the webhook is retried; 4xx responses return None.
    """

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str = PADDLE_BASE_URL,
        timeout: int | None = None,
        session: requests.Session | None = None,
    ):
        self.api_key = api_key if api_key is not None else settings.PADDLE_API_KEY
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout or settings.PADDLE_API_TIMEOUT_SECONDS
        self.session = session or requests.Session()

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _request(self, method: str, path: str, **kwargs) -> dict[str, Any] | None:
        url = f"{self.base_url}{path}"
        try:
            resp = self.session.request(
                method,
                url,
                headers=self._headers(),
                timeout=self.timeout,
                **kwargs,
            )
        except requests.RequestException as e:
            raise ProviderTransientError(f"Paddle {method} {path} failed: {e}") from e

        if resp.status_code >= 500:
            raise ProviderTransientError(f"Paddle {method} {path} returned {resp.status_code}")

        if not resp.ok:
            logger.error(
                "Paddle %s %s returned %s: %s",
                method,
                path,
                resp.status_code,
                resp.text[:500],
            )
            return None

        return (resp.json() or {}).get("data")

    def get_customer(self, customer_id: str) -> dict[str, Any] | None:
        return self._request("GET", f"/customers/{customer_id}")

    def cancel_subscription(
        self,
        subscription_id: str,
        effective_from: str = "next_billing_period",
    ) -> dict[str, Any] | None:
        data = self._request(
            "POST",
            f"/subscriptions/{subscription_id}/cancel",
            json={"effective_from": effective_from},
        )
        if data is not None:
            logger.info(
                "Paddle subscription cancelled subscription_id=%s effective_at=%s",
                subscription_id,
                (data.get("scheduled_change") or {}).get("effective_at"),
            )
        return data


_client: PaddleClient | None = None


def get_paddle_client() -> PaddleClient:
    global _client
    if _client is None:
        _client = PaddleClient()
    return _client
