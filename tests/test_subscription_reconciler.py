from tickerpilot.models.user import User
from tickerpilot.models.user_subscription import UserSubscription
from tickerpilot.models.webhook_event import WebhookEvent
from tickerpilot.services.subscription_service import ensure_active_subscription

from factories import (
    at,
    billing_event,
    count_rows,
    load_event,
    load_subscription,
    post_event,
    subscription_data,
    transaction_data,
)


async def _activate(client, user, *, sub_id="sub_01", customer_id="ctm_01", minutes=0):
    payload = billing_event(
        "subscription.created",
        subscription_data(sub_id=sub_id, customer_id=customer_id, custom_data={"user_id": str(user.id)}),
        occurred_at=at(minutes),
    )
    resp = await post_event(client, payload)
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "activated"


async def test_payment_failures_go_past_due_then_downgrade(client, session_factory, packages, user):
    await _activate(client, user)

    outcomes = []
    for attempt in (1, 2, 3):
        payload = billing_event(
            "transaction.payment_failed",
            transaction_data(status="past_due", attempt_number=attempt),
            occurred_at=at(attempt),
        )
        resp = await post_event(client, payload)
        assert resp.status_code == 200
        outcomes.append(resp.json()["outcome"])

        sub = await load_subscription(session_factory, user.id)
        if attempt < 3:
            assert sub.status == "past_due"
            assert sub.package_id == packages["pro"].id
        else:
            assert sub.status == "active"
            assert sub.package_id == packages["basic"].id
            assert sub.subscription_metadata["downgrade_reason"] == "payment_failed"

    assert outcomes == ["past_due", "past_due", "downgraded"]


async def test_hard_payment_failure_downgrades_immediately(client, session_factory, packages, user):
    await _activate(client, user)

    payload = billing_event(
        "transaction.payment_failed",
        transaction_data(attempt_number=1, hard_failure=True),
        occurred_at=at(1),
    )
    resp = await post_event(client, payload)

    assert resp.json()["outcome"] == "downgraded"
    sub = await load_subscription(session_factory, user.id)
    assert sub.package_id == packages["basic"].id


async def test_downgrade_is_idempotent(client, session_factory, packages, user):
    await _activate(client, user)

    for minutes in (1, 2):
        payload = billing_event(
            "subscription.canceled",
            subscription_data(status="canceled"),
            occurred_at=at(minutes),
        )
        resp = await post_event(client, payload)
        assert resp.status_code == 200
        assert resp.json()["outcome"] == "downgraded"

    sub = await load_subscription(session_factory, user.id)
    assert sub.package_id == packages["basic"].id
    assert sub.paddle_subscription_id is None
    assert await count_rows(session_factory, UserSubscription, UserSubscription.user_id == user.id) == 1


async def test_update_maps_status_and_switches_plan(client, session_factory, packages, user):
    await _activate(client, user)

    resp = await post_event(
        client,
        billing_event("subscription.updated", subscription_data(status="past_due"), occurred_at=at(1)),
    )
    assert resp.json()["outcome"] == "updated"
    sub = await load_subscription(session_factory, user.id)
    assert sub.status == "past_due"

    resp = await post_event(
        client,
        billing_event(
            "subscription.updated",
            subscription_data(status="active", price_id="pri_pro_yearly"),
            occurred_at=at(2),
        ),
    )
    assert resp.json()["outcome"] == "updated"
    sub = await load_subscription(session_factory, user.id)
    assert sub.status == "active"
    assert sub.package_id == packages["pro_yearly"].id
    assert sub.paddle_data["status"] == "active"


async def test_update_with_cancelled_status_downgrades(client, session_factory, packages, user):
    await _activate(client, user)

    resp = await post_event(
        client,
        billing_event("subscription.updated", subscription_data(status="canceled"), occurred_at=at(1)),
    )

    assert resp.json()["outcome"] == "downgraded"
    sub = await load_subscription(session_factory, user.id)
    assert sub.package_id == packages["basic"].id


async def test_out_of_order_event_is_skipped(client, session_factory, packages, user):
    await _activate(client, user, minutes=10)

    late = billing_event("subscription.canceled", subscription_data(status="canceled"), occurred_at=at(5))
    resp = await post_event(client, late)

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "stale"
    sub = await load_subscription(session_factory, user.id)
    assert sub.package_id == packages["pro"].id

    ev = await load_event(session_factory, late["event_id"])
    assert ev.processed_at is not None


async def test_event_for_replaced_subscription_is_skipped(client, session_factory, packages, user):
    await _activate(client, user, sub_id="sub_old", minutes=0)
    await _activate(client, user, sub_id="sub_new", minutes=1)

    resp = await post_event(
        client,
        billing_event("transaction.payment_failed", transaction_data(sub_id="sub_old", attempt_number=3), occurred_at=at(2)),
    )

    assert resp.status_code == 200
    assert resp.json()["outcome"] == "stale"
    sub = await load_subscription(session_factory, user.id)
    assert sub.paddle_subscription_id == "sub_new"
    assert sub.package_id == packages["pro"].id


async def test_conflicting_user_is_ambiguous(client, session_factory, packages, user):
    await _activate(client, user)

    async with session_factory() as db:
        other = User(email="other@example.com")
        db.add(other)
        await db.commit()

    payload = billing_event(
        "subscription.updated",
        subscription_data(status="active", custom_data={"user_id": str(other.id)}),
        occurred_at=at(1),
    )
    resp = await post_event(client, payload)

    assert resp.status_code == 500
    ev = await load_event(session_factory, payload["event_id"])
    assert "ambiguous" in ev.last_error
    assert await load_subscription(session_factory, other.id) is None


async def test_customer_lookup_through_provider(client, session_factory, packages, user, provider):
    provider.customers["ctm_lookup"] = {"id": "ctm_lookup", "custom_data": {"user_id": str(user.id)}}

    payload = billing_event(
        "subscription.created",
        subscription_data(sub_id="sub_lookup", customer_id="ctm_lookup"),
    )
    resp = await post_event(client, payload)

    assert resp.status_code == 200
    assert provider.customer_lookups == ["ctm_lookup"]
    sub = await load_subscription(session_factory, user.id)
    assert sub.paddle_customer_id == "ctm_lookup"


async def test_provider_outage_during_lookup_is_retried(client, session_factory, packages, user, provider):
    provider.unavailable = True

    payload = billing_event("subscription.created", subscription_data(sub_id="sub_x", customer_id="ctm_x"))
    resp = await post_event(client, payload)

    assert resp.status_code == 500
    ev = await load_event(session_factory, payload["event_id"])
    assert "ProviderTransientError" in ev.last_error


async def test_unknown_user_fails_without_side_effects(client, session_factory, packages):
    payload = billing_event(
        "subscription.created",
        subscription_data(custom_data={"user_id": "6f1c2b5e-0000-4000-8000-000000000000"}),
    )
    resp = await post_event(client, payload)

    assert resp.status_code == 500
    assert await count_rows(session_factory, UserSubscription) == 0
    assert await count_rows(session_factory, WebhookEvent) == 1


async def test_update_before_activation_is_retried_not_dropped(client, session_factory, packages, user):
    async with session_factory() as db:
        await ensure_active_subscription(db, user.id)

    custom = {"user_id": str(user.id)}
    early_update = billing_event(
        "subscription.updated",
        subscription_data(sub_id="sub_new", status="past_due", custom_data=custom),
        occurred_at=at(2),
    )

    resp = await post_event(client, early_update)
    assert resp.status_code == 500
    ev = await load_event(session_factory, early_update["event_id"])
    assert ev.processed_at is None
    assert "SubscriptionNotFound" in ev.last_error

    created = billing_event(
        "subscription.created",
        subscription_data(sub_id="sub_new", status="active", custom_data=custom),
        occurred_at=at(1),
    )
    resp = await post_event(client, created)
    assert resp.json()["outcome"] == "activated"

    # Paddle redelivers the update
    resp = await post_event(client, early_update)
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "updated"

    sub = await load_subscription(session_factory, user.id)
    assert sub.status == "past_due"
    assert sub.package_id == packages["pro"].id


async def test_payment_failed_before_activation_is_retried(client, session_factory, packages, user):
    async with session_factory() as db:
        await ensure_active_subscription(db, user.id)

    payload = billing_event(
        "transaction.payment_failed",
        transaction_data(sub_id="sub_new", custom_data={"user_id": str(user.id)}, attempt_number=1),
        occurred_at=at(2),
    )
    resp = await post_event(client, payload)

    assert resp.status_code == 500
    sub = await load_subscription(session_factory, user.id)
    assert sub.status == "active"
    assert sub.package_id == packages["basic"].id


async def test_update_for_ended_subscription_is_acknowledged(client, session_factory, packages, user):
    await _activate(client, user)

    resp = await post_event(
        client,
        billing_event("subscription.canceled", subscription_data(status="canceled"), occurred_at=at(1)),
    )
    assert resp.json()["outcome"] == "downgraded"

    resp = await post_event(
        client,
        billing_event("subscription.updated", subscription_data(status="canceled"), occurred_at=at(2)),
    )
    assert resp.status_code == 200
    assert resp.json()["outcome"] == "stale"

    sub = await load_subscription(session_factory, user.id)
    assert sub.package_id == packages["basic"].id
    assert sub.subscription_metadata["ended_paddle_subscription_id"] == "sub_01"
