import json
from datetime import datetime, timezone

import pytest

from tickerpilot.core.errors import MalformedPayload
from tickerpilot.services.paddle_payloads import decode_body, detect_api_version, parse_event


def test_billing_subscription_event():
    body = {
        "event_id": "evt_01",
        "event_type": "subscription.updated",
        "occurred_at": "2026-03-01T10:00:00.123Z",
        "data": {
            "id": "sub_01",
            "status": "past_due",
            "customer_id": "ctm_01",
            "items": [{"price": {"id": "pri_01", "product_id": "pro_01"}}],
            "current_billing_period": {
                "starts_at": "2026-03-01T00:00:00Z",
                "ends_at": "2026-04-01T00:00:00Z",
            },
            "custom_data": {"user_id": "u-1", "package_id": "p-1"},
        },
    }

    ev = parse_event(body, api_version="billing")

    assert ev.event_id == "evt_01"
    assert ev.subscription_id == "sub_01"
    assert ev.customer_id == "ctm_01"
    assert ev.status == "past_due"
    assert ev.price_id == "pri_01"
    assert ev.product_id == "pro_01"
    assert ev.period_end == datetime(2026, 4, 1, tzinfo=timezone.utc)
    assert ev.occurred_at.tzinfo is not None
    assert ev.user_id == "u-1"
    assert ev.package_id == "p-1"
    assert ev.provider_data["id"] == "sub_01"


def test_billing_transaction_event_uses_subscription_id_field():
    body = {
        "event_id": "evt_02",
        "event_type": "transaction.payment_failed",
        "data": {
            "id": "txn_01",
            "subscription_id": "sub_01",
            "customer_id": "ctm_01",
            "attempt_number": "2",
            "billing_period": {"starts_at": "2026-03-01T00:00:00Z", "ends_at": "2026-04-01T00:00:00Z"},
        },
    }

    ev = parse_event(body, api_version="billing")

    assert ev.subscription_id == "sub_01"
    assert ev.attempt_number == 2
    assert ev.hard_failure is False
    assert ev.period_start == datetime(2026, 3, 1, tzinfo=timezone.utc)
    assert ev.user_id is None


def test_classic_alert_with_passthrough():
    body = {
        "alert_id": "1234567",
        "alert_name": "subscription_payment_failed",
        "event_time": "2026-03-01 10:00:00",
        "subscription_id": "502198",
        "user_id": "1776",
        "status": "past_due",
        "subscription_plan_id": "9",
        "next_bill_date": "2026-03-08",
        "attempt_number": "3",
        "hard_failure": "true",
        "passthrough": json.dumps({"user_id": "u-9"}),
    }

    assert detect_api_version(body) == "classic"
    ev = parse_event(body, api_version="classic")

    assert ev.event_id == "1234567"
    assert ev.event_type == "subscription_payment_failed"
    assert ev.subscription_id == "502198"
    assert ev.customer_id == "1776"
    assert ev.price_id == "9"
    assert ev.period_end == datetime(2026, 3, 8, tzinfo=timezone.utc)
    assert ev.attempt_number == 3
    assert ev.hard_failure is True
    assert ev.user_id == "u-9"


def test_classic_passthrough_that_is_not_json_is_ignored():
    ev = parse_event(
        {"alert_id": "1", "alert_name": "subscription_created", "passthrough": "not json"},
        api_version="classic",
    )
    assert ev.custom_data == {}


def test_version_detection():
    assert detect_api_version({"event_type": "subscription.created"}) == "billing"
    assert detect_api_version({"event_type": "subscription.created"}, legacy_signature=True) == "classic"


@pytest.mark.parametrize("raw", [b"not json", b"[1, 2]", b"\xff\xfe"])
def test_decode_body_rejects_non_objects(raw):
    with pytest.raises(MalformedPayload):
        decode_body(raw)


def test_missing_event_type_is_malformed():
    with pytest.raises(MalformedPayload):
        parse_event({"event_id": "evt_x", "data": {}}, api_version="billing")


@pytest.mark.parametrize(
    "body",
    [
        {"event_id": "evt_x", "event_type": 123, "data": {}},
        {"event_id": "evt_x", "event_type": "subscription.updated", "data": {"items": {"x": 1}}},
        {"event_id": "evt_x", "event_type": "subscription.updated", "data": {"items": ["pri_01"]}},
        {"event_id": "evt_x", "event_type": "subscription.updated", "data": {"items": [{"price": "pri_01"}]}},
        {"event_id": "evt_x", "event_type": "subscription.updated", "data": {"current_billing_period": "soon"}},
        {"event_id": "evt_x", "event_type": "transaction.completed", "data": {"billing_period": ["2026-01-01"]}},
    ],
)
def test_wrong_field_types_are_malformed(body):
    with pytest.raises(MalformedPayload):
        parse_event(body, api_version="billing")


def test_classic_alert_name_must_be_text():
    with pytest.raises(MalformedPayload):
        parse_event({"alert_id": "1", "alert_name": ["subscription_created"]}, api_version="classic")


def test_out_of_range_timestamps_are_dropped():
    ev = parse_event(
        {"event_id": "evt_x", "event_type": "subscription.updated", "occurred_at": 10**20, "data": {}},
        api_version="billing",
    )
    assert ev.occurred_at is None
