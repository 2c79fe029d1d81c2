"""
Paddle payload adapters.

Paddle changed its webhook format between API generations. Each generation has
an adapter that turns the raw body into a BillingEvent, so the reconciler never
sees provider field names.

  billing  (current):  {"event_id", "event_type", "occurred_at", "data": {...}}
  classic  (legacy):   {"alert_id", "alert_name", "event_time", ...flat fields}
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable

from tickerpilot.core.errors import MalformedPayload
from tickerpilot.core.paddle_config import API_VERSION_BILLING, API_VERSION_CLASSIC
from tickerpilot.core.timeutil import parse_timestamp


@dataclass
class BillingEvent:
    """Provider-neutral view of one webhook delivery."""

    api_version: str
    event_type: str
    event_id: str | None = None
    occurred_at: datetime | None = None

    subscription_id: str | None = None
    customer_id: str | None = None
    status: str | None = None
    price_id: str | None = None
    product_id: str | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None

    # Correlation we attach at checkout ("custom_data" / "passthrough")
    custom_data: dict[str, Any] = field(default_factory=dict)

    attempt_number: int | None = None
    hard_failure: bool = False

    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def user_id(self) -> str | None:
        value = self.custom_data.get("user_id")
        return str(value) if value not in (None, "") else None

    @property
    def package_id(self) -> str | None:
        value = self.custom_data.get("package_id")
        return str(value) if value not in (None, "") else None

    @property
    def provider_data(self) -> dict[str, Any]:
        """The entity part of the payload, stored on the subscription row."""
        data = self.raw.get("data")
        return data if isinstance(data, dict) else dict(self.raw)


def _as_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _as_str(value: Any) -> str | None:
    if value in (None, ""):
        return None
    return str(value)


def _custom_data(value: Any) -> dict[str, Any]:
    # Classic passthrough is a JSON string; Billing custom_data is an object
    if isinstance(value, dict):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except ValueError:
            return {}
        return decoded if isinstance(decoded, dict) else {}
    return {}


def _expect(value: Any, kind: type, name: str) -> Any:
    if not isinstance(value, kind):
        raise MalformedPayload(f"{name} must be a {kind.__name__}, got {type(value).__name__}")
    return value


def _parse_billing(body: dict[str, Any]) -> BillingEvent:
    event_type = body.get("event_type")
    if not event_type:
        raise MalformedPayload("missing event_type")
    _expect(event_type, str, "event_type")

    data = body.get("data") or {}
    if not isinstance(data, dict):
        raise MalformedPayload("data must be an object")

    if event_type.startswith("subscription."):
        subscription_id = data.get("id")
    else:
        subscription_id = data.get("subscription_id")

    price_id = product_id = None
    items = _expect(data.get("items") or [], list, "items")
    if items:
        item = _expect(items[0], dict, "items[0]")
        price = _expect(item.get("price") or {}, dict, "items[0].price")
        product = _expect(item.get("product") or {}, dict, "items[0].product")
        price_id = price.get("id")
        product_id = price.get("product_id") or product.get("id")

    period = data.get("current_billing_period") or data.get("billing_period") or {}
    _expect(period, dict, "billing period")

    return BillingEvent(
        api_version=API_VERSION_BILLING,
        event_type=event_type,
        event_id=_as_str(body.get("event_id")),
        occurred_at=parse_timestamp(body.get("occurred_at")),
        subscription_id=_as_str(subscription_id),
        customer_id=_as_str(data.get("customer_id")),
        status=_as_str(data.get("status")),
        price_id=_as_str(price_id),
        product_id=_as_str(product_id),
        period_start=parse_timestamp(period.get("starts_at")),
        period_end=parse_timestamp(period.get("ends_at")),
        custom_data=_custom_data(data.get("custom_data")),
        attempt_number=_as_int(data.get("attempt_number")),
        hard_failure=_as_bool(data.get("hard_failure", False)),
        raw=body,
    )


def _parse_classic(body: dict[str, Any]) -> BillingEvent:
    event_type = body.get("alert_name") or body.get("event_type")
    if not event_type:
        raise MalformedPayload("missing alert_name")
    _expect(event_type, str, "alert_name")

    # Some relays wrap the flat alert in a "data" object
    data = body.get("data") if isinstance(body.get("data"), dict) else body

    return BillingEvent(
        api_version=API_VERSION_CLASSIC,
        event_type=event_type,
        event_id=_as_str(body.get("alert_id") or body.get("event_id")),
        occurred_at=parse_timestamp(body.get("event_time") or data.get("event_time")),
        subscription_id=_as_str(data.get("subscription_id")),
        customer_id=_as_str(data.get("user_id")),
        status=_as_str(data.get("status")),
        price_id=_as_str(data.get("subscription_plan_id")),
        product_id=_as_str(data.get("product_id")),
        period_start=None,
        period_end=parse_timestamp(data.get("next_bill_date")),
        custom_data=_custom_data(data.get("passthrough")),
        attempt_number=_as_int(data.get("attempt_number")),
        hard_failure=_as_bool(data.get("hard_failure", False)),
        raw=body,
    )


ADAPTERS: dict[str, Callable[[dict[str, Any]], BillingEvent]] = {
    API_VERSION_BILLING: _parse_billing,
    API_VERSION_CLASSIC: _parse_classic,
}


def decode_body(raw_body: bytes) -> dict[str, Any]:
    try:
        body = json.loads(raw_body)
    except (ValueError, UnicodeDecodeError) as e:
        raise MalformedPayload(f"invalid JSON: {e}") from e
    if not isinstance(body, dict):
        raise MalformedPayload("payload must be a JSON object")
    return body


def detect_api_version(body: dict[str, Any], *, legacy_signature: bool = False) -> str:
    if legacy_signature or "alert_name" in body:
        return API_VERSION_CLASSIC
    return API_VERSION_BILLING


def parse_event(body: dict[str, Any], *, api_version: str) -> BillingEvent:
    adapter = ADAPTERS.get(api_version)
    if adapter is None:
        raise MalformedPayload(f"unsupported api version: {api_version}")
    return adapter(body)
