from __future__ import annotations

import asyncio
import calendar
from dataclasses import dataclass
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.core.config import settings
from tickerpilot.core.errors import PackageNotFound, SubscriptionNotFound, UserNotFound
from tickerpilot.core.logging import get_logger
from tickerpilot.core.timeutil import as_utc, utcnow
from tickerpilot.models.package import BillingCycle, Package
from tickerpilot.models.user import User
from tickerpilot.models.user_subscription import SubscriptionStatus, UserSubscription
from tickerpilot.services.entitlement_service import (
    get_basic_package,
    is_subscription_active,
    resolve_package,
)
from tickerpilot.services.paddle_payloads import BillingEvent

logger = get_logger(__name__)

ACTIVE_PROVIDER_STATUSES = {"active", "trialing"}
PAST_DUE_PROVIDER_STATUSES = {"past_due", "paused"}
CANCELLED_PROVIDER_STATUSES = {"canceled", "cancelled", "deleted"}


@dataclass(frozen=True)
class HandlerResult:
    outcome: str
    subscription_id: UUID | None = None


# -----------------------------
# Helpers
# -----------------------------
def _as_uuid(value: Any) -> UUID | None:
    if value in (None, ""):
        return None
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except (TypeError, ValueError):
        return None


def _add_months(value: datetime, months: int) -> datetime:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def _cycle_months(package: Package) -> int:
    return 12 if package.billing_cycle == BillingCycle.yearly.value else 1


def billing_period(
    package: Package,
    starts_at: datetime | None,
    ends_at: datetime | None,
    now: datetime | None = None,
) -> tuple[datetime, datetime]:
    """
    Period bounds from the provider when present, otherwise derived from the
    package billing cycle (now -> +1 month / +1 year).
    """
    months = _cycle_months(package)
    if starts_at and ends_at:
        return starts_at, ends_at
    if ends_at:
        return _add_months(ends_at, -months), ends_at
    start = starts_at or now or utcnow()
    return start, _add_months(start, months)


async def _get_user(db: AsyncSession, user_id: UUID) -> User:
    user = (await db.execute(select(User).where(User.id == user_id))).scalar_one_or_none()
    if not user:
        raise UserNotFound(f"user {user_id} not found")
    return user


async def _lock_subscription(db: AsyncSession, *criteria) -> UserSubscription | None:
    # Row lock serializes concurrent events for the same user
    return (
        await db.execute(
            select(UserSubscription)
            .where(*criteria)
            .order_by(UserSubscription.created_at.desc())
            .limit(1)
            .with_for_update(of=UserSubscription)
            .execution_options(populate_existing=True)
        )
    ).scalar_one_or_none()


async def _user_id_from_provider_customer(provider, customer_id: str) -> UUID | None:
    if provider is None:
        return None
    customer = await asyncio.to_thread(provider.get_customer, customer_id)
    if not customer:
        return None
    return _as_uuid((customer.get("custom_data") or {}).get("user_id"))


async def resolve_target(
    db: AsyncSession,
    event: BillingEvent,
    provider=None,
) -> tuple[UUID | None, UserSubscription | None]:
    """
    Find the user and subscription row an event is about, locking the row.

    1) paddle_subscription_id exact match
    2) paddle_customer_id on an existing row; otherwise the provider's customer
       record (custom_data.user_id), only when the event carries no user id
    3) custom_data.user_id

    A custom user id that disagrees with 1) or 2) is ambiguous and raises.
    """
    claimed = _as_uuid(event.user_id)
    if event.user_id and claimed is None:
        raise UserNotFound(f"malformed user_id in custom data: {event.user_id!r}")

    row = None
    if event.subscription_id:
        row = await _lock_subscription(
            db, UserSubscription.paddle_subscription_id == event.subscription_id
        )

    if row is None and event.customer_id:
        row = await _lock_subscription(
            db, UserSubscription.paddle_customer_id == event.customer_id
        )
        if row is None and claimed is None:
            claimed = await _user_id_from_provider_customer(provider, event.customer_id)

    if row is not None:
        if claimed is not None and row.user_id != claimed:
            raise SubscriptionNotFound(
                f"ambiguous match: subscription row belongs to user {row.user_id}, "
                f"event names user {claimed}"
            )
        return row.user_id, row

    if claimed is None:
        return None, None

    await _get_user(db, claimed)
    row = await _lock_subscription(db, UserSubscription.user_id == claimed)
    return claimed, row


async def _require_subscription(db: AsyncSession, event: BillingEvent, provider) -> UserSubscription:
    _, row = await resolve_target(db, event, provider)
    if row is None:
        raise SubscriptionNotFound(
            f"no subscription for subscription_id={event.subscription_id!r} "
            f"customer_id={event.customer_id!r} user_id={event.user_id!r}"
        )
    return row


def _is_older(row: UserSubscription, event: BillingEvent) -> bool:
    occurred = as_utc(event.occurred_at)
    last = as_utc(row.last_event_at)
    return occurred is not None and last is not None and occurred < last


def _is_superseded(row: UserSubscription, event: BillingEvent) -> bool:
    if _is_older(row, event):
        return True

    # An event for an older subscription than the one now on the row
    return (
        event.subscription_id is not None
        and row.paddle_subscription_id is not None
        and row.paddle_subscription_id != event.subscription_id
    )


def _is_ended(row: UserSubscription, event: BillingEvent) -> bool:
    """The event is about the subscription a downgrade already ended."""
    if event.subscription_id is None or row.paddle_subscription_id is not None:
        return False
    ended = (row.subscription_metadata or {}).get("ended_paddle_subscription_id")
    return ended == event.subscription_id


def _touch(row: UserSubscription, event: BillingEvent | None) -> None:
    if event is None:
        return
    occurred = as_utc(event.occurred_at)
    if occurred is not None:
        last = as_utc(row.last_event_at)
        if last is None or occurred > last:
            row.last_event_at = occurred
    row.paddle_data = {**(row.paddle_data or {}), **event.provider_data}


def _require_known_subscription(row: UserSubscription, event: BillingEvent) -> None:
    """
    A row without a Paddle subscription has not seen the activation yet.
    Failing here makes Paddle redeliver the event once activation has run.
    """
    if event.subscription_id and row.paddle_subscription_id is None:
        raise SubscriptionNotFound(
            f"subscription {event.subscription_id} not active yet on row {row.id}, "
            f"{event.event_type} arrived before activation"
        )


def _stale(row: UserSubscription, event: BillingEvent) -> HandlerResult:
    logger.warning(
        "Skipping stale %s event_id=%s for subscription %s (row has %s, last_event_at=%s)",
        event.event_type,
        event.event_id,
        row.id,
        row.paddle_subscription_id,
        row.last_event_at,
    )
    return HandlerResult("stale", row.id)


# -----------------------------
# Transitions
# -----------------------------
async def downgrade_to_basic(
    db: AsyncSession,
    subscription: UserSubscription,
    *,
    reason: str,
    event: BillingEvent | None = None,
) -> UserSubscription:
    """
    Move the row to Basic: clear the provider subscription and period bounds,
    stamp cancelled_at. Calling it on a row that is already Basic only
    refreshes cancelled_at.
    """
    basic = await get_basic_package(db)
    now = utcnow()
    ended = {}
    if subscription.paddle_subscription_id:
        ended = {"ended_paddle_subscription_id": subscription.paddle_subscription_id}

    if subscription.package_id != basic.id:
        subscription.starts_at = now
    subscription.package = basic
    subscription.status = SubscriptionStatus.active.value
    subscription.paddle_subscription_id = None
    subscription.current_period_start = None
    subscription.current_period_end = None
    subscription.expires_at = None
    subscription.cancelled_at = now
    subscription.subscription_metadata = {
        **(subscription.subscription_metadata or {}),
        "downgrade_reason": reason,
        "downgraded_at": now.isoformat(),
        **ended,
    }
    _touch(subscription, event)

    await db.flush()

    logger.info(
        "Subscription %s for user %s downgraded to basic (reason=%s)",
        subscription.id,
        subscription.user_id,
        reason,
    )
    return subscription


async def handle_activation(db: AsyncSession, event: BillingEvent, provider=None) -> HandlerResult:
    """
    subscription.created / transaction.completed (and renewals): attach the
    Paddle ids, set the package and the billing period, status active.
    """
    if not event.subscription_id:
        logger.info(
            "%s event_id=%s has no subscription_id, nothing to activate",
            event.event_type,
            event.event_id,
        )
        return HandlerResult("ignored")

    user_id, row = await resolve_target(db, event, provider)
    if user_id is None:
        raise UserNotFound(
            f"cannot resolve user for {event.event_type} subscription_id={event.subscription_id!r}"
        )

    # A new subscription replacing the one on the row is applied; only
    # events older than the last applied one are skipped
    if row is not None and _is_older(row, event):
        return _stale(row, event)

    package = await resolve_package(
        db,
        event.custom_data,
        event.price_id,
        fallback_ids=(event.product_id,),
    )
    now = utcnow()
    period_start, period_end = billing_period(package, event.period_start, event.period_end, now)

    if row is None:
        row = UserSubscription(
            user_id=user_id,
            starts_at=now,
            subscription_metadata={"created_reason": event.event_type},
            paddle_data={},
        )
        db.add(row)
    elif row.package_id != package.id:
        row.starts_at = now

    row.package = package
    row.status = SubscriptionStatus.active.value
    row.paddle_subscription_id = event.subscription_id
    if event.customer_id:
        row.paddle_customer_id = event.customer_id
    row.current_period_start = period_start
    row.current_period_end = period_end
    row.expires_at = period_end
    row.cancelled_at = None
    _touch(row, event)

    await db.flush()

    logger.info(
        "Premium subscription active user_id=%s package=%s paddle_subscription_id=%s period_end=%s",
        user_id,
        package.name,
        event.subscription_id,
        period_end.isoformat(),
    )
    return HandlerResult("activated", row.id)


async def handle_subscription_updated(db: AsyncSession, event: BillingEvent, provider=None) -> HandlerResult:
    row = await _require_subscription(db, event, provider)
    if _is_superseded(row, event) or _is_ended(row, event):
        return _stale(row, event)
    _require_known_subscription(row, event)

    status = (event.status or "").lower()
    if status in CANCELLED_PROVIDER_STATUSES:
        await downgrade_to_basic(db, row, reason="subscription_cancelled", event=event)
        return HandlerResult("downgraded", row.id)

    if status in ACTIVE_PROVIDER_STATUSES:
        row.status = SubscriptionStatus.active.value
    elif status in PAST_DUE_PROVIDER_STATUSES:
        row.status = SubscriptionStatus.past_due.value
    elif status:
        logger.info("Unmapped Paddle status %r for subscription %s, status unchanged", status, row.id)

    if event.period_start:
        row.current_period_start = event.period_start
    if event.period_end:
        row.current_period_end = event.period_end
        row.expires_at = event.period_end

    # Plan switch: the price on the subscription is authoritative here
    if event.price_id or event.product_id:
        try:
            package = await resolve_package(db, None, event.price_id, fallback_ids=(event.product_id,))
        except PackageNotFound as e:
            logger.warning("Price on %s did not resolve (%s), package unchanged", event.event_id, e)
        else:
            if package.id != row.package_id and package.is_premium:
                logger.info("Subscription %s switched package to %s", row.id, package.name)
                row.package = package

    _touch(row, event)
    await db.flush()
    return HandlerResult("updated", row.id)


async def handle_subscription_cancelled(db: AsyncSession, event: BillingEvent, provider=None) -> HandlerResult:
    row = await _require_subscription(db, event, provider)
    if _is_superseded(row, event):
        return _stale(row, event)

    await downgrade_to_basic(db, row, reason="subscription_cancelled", event=event)
    return HandlerResult("downgraded", row.id)


async def handle_payment_failed(db: AsyncSession, event: BillingEvent, provider=None) -> HandlerResult:
    """
    Dunning: past_due while Paddle keeps retrying, Basic once the attempts are
    exhausted or the failure is hard.
    """
    row = await _require_subscription(db, event, provider)
    if _is_superseded(row, event) or _is_ended(row, event):
        return _stale(row, event)
    _require_known_subscription(row, event)

    attempt = event.attempt_number or 1
    max_attempts = settings.PAYMENT_MAX_ATTEMPTS

    if attempt >= max_attempts or event.hard_failure:
        logger.warning(
            "Payment failed (attempt %s/%s, hard_failure=%s), downgrading subscription %s",
            attempt,
            max_attempts,
            event.hard_failure,
            row.id,
        )
        await downgrade_to_basic(db, row, reason="payment_failed", event=event)
        return HandlerResult("downgraded", row.id)

    row.status = SubscriptionStatus.past_due.value
    _touch(row, event)
    await db.flush()

    logger.info(
        "Payment failed but will retry subscription=%s attempt=%s max_attempts=%s",
        row.id,
        attempt,
        max_attempts,
    )
    return HandlerResult("past_due", row.id)


# -----------------------------
# Account-level operations
# -----------------------------
def _needs_basic(row: UserSubscription | None) -> str | None:
    if row is None:
        return "missing"
    if row.status in (SubscriptionStatus.cancelled.value, SubscriptionStatus.replaced.value):
        return row.status
    if row.status == SubscriptionStatus.active.value and not is_subscription_active(row, row.package):
        return "expired"
    return None


async def ensure_active_subscription(db: AsyncSession, user_id: UUID) -> UserSubscription:
    """
    Make sure the user has a current subscription: create a Basic row at
    registration, and move cancelled/replaced or lapsed premium rows to Basic.
    """
    await _get_user(db, user_id)
    row = await _lock_subscription(db, UserSubscription.user_id == user_id)
    reason = _needs_basic(row)

    if reason == "missing":
        basic = await get_basic_package(db)
        row = UserSubscription(
            user_id=user_id,
            package=basic,
            status=SubscriptionStatus.active.value,
            starts_at=utcnow(),
            expires_at=None,
            subscription_metadata={"auto_created": True, "created_reason": "ensure_basic_subscription"},
            paddle_data={},
        )
        db.add(row)
    elif reason == "expired":
        await downgrade_to_basic(db, row, reason="expired")
    elif reason is not None:
        await downgrade_to_basic(db, row, reason="ensure_basic_subscription")

    await db.commit()
    return row


async def ensure_basic_subscriptions(db: AsyncSession, *, dry_run: bool = False) -> dict[str, Any]:
    """
    Sweep active users and apply ensure_active_subscription to every one
    that has no subscription or whose subscription ended.
    """
    user_ids = (
        await db.execute(select(User.id).where(User.is_active.is_(True)).order_by(User.created_at))
    ).scalars().all()

    changes = []
    for user_id in user_ids:
        row = (
            await db.execute(
                select(UserSubscription)
                .where(UserSubscription.user_id == user_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        reason = _needs_basic(row)
        if reason is None:
            continue

        changes.append({"user_id": str(user_id), "reason": reason})
        if not dry_run:
            await ensure_active_subscription(db, user_id)

    if dry_run:
        await db.rollback()
    else:
        logger.info("Moved %d user(s) to Basic", len(changes))

    return {"checked": len(user_ids), "changes": changes, "dry_run": dry_run}


async def cancel_user_subscription(db: AsyncSession, user_id: UUID, provider) -> dict[str, Any]:
    """
    User-initiated cancel: cancel at Paddle first, then move to Basic.
    The later subscription.canceled webhook is an idempotent no-op downgrade.
    """
    row = await _lock_subscription(db, UserSubscription.user_id == user_id)
    if row is None:
        await db.rollback()
        return {"ok": False, "error": "no_subscription"}

    if not row.package.is_premium:
        await db.rollback()
        return {"ok": False, "error": "cannot_cancel_basic"}

    cancelled_paddle_id = row.paddle_subscription_id
    if cancelled_paddle_id:
        result = await asyncio.to_thread(provider.cancel_subscription, cancelled_paddle_id)
        if result is None:
            await db.rollback()
            return {"ok": False, "error": "provider_cancel_failed"}

    await downgrade_to_basic(db, row, reason="user_cancelled")
    await db.commit()

    return {
        "ok": True,
        "subscription_id": str(row.id),
        "cancelled_paddle_subscription_id": cancelled_paddle_id,
        "package": row.package.name,
    }
