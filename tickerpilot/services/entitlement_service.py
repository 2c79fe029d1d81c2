# tickerpilot/services/entitlement_service.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.core.errors import PackageNotFound
from tickerpilot.core.logging import get_logger
from tickerpilot.core.timeutil import as_utc, utcnow
from tickerpilot.models.package import Package
from tickerpilot.models.user_subscription import SubscriptionStatus, UserSubscription

logger = get_logger(__name__)


def _as_uuid(value: Any) -> UUID | None:
    if value in (None, ""):
        return None
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except (TypeError, ValueError):
        return None


async def get_package(db: AsyncSession, package_id: Any) -> Package | None:
    pid = _as_uuid(package_id)
    if pid is None:
        return None
    return (
        await db.execute(select(Package).where(Package.id == pid))
    ).scalar_one_or_none()


async def resolve_package(
    db: AsyncSession,
    custom_data: dict[str, Any] | None,
    provider_product_id: str | None,
    *,
    fallback_ids: Iterable[str | None] = (),
) -> Package:
    """
    Map an event to an internal package.

    1) custom_data["package_id"], set by our own checkout step, is trusted first
    2) Package.paddle_product_id matching the provider price id, then any
       fallback ids (product id)

    Raises PackageNotFound rather than guessing.
    """
    package_id = (custom_data or {}).get("package_id")
    if package_id:
        package = await get_package(db, package_id)
        if package:
            return package
        logger.warning("custom_data package_id=%s did not resolve, trying provider ids", package_id)

    for candidate in (provider_product_id, *fallback_ids):
        if not candidate:
            continue
        package = (
            await db.execute(select(Package).where(Package.paddle_product_id == candidate))
        ).scalar_one_or_none()
        if package:
            return package

    raise PackageNotFound(
        f"no package for package_id={package_id!r} provider_id={provider_product_id!r}"
    )


async def get_basic_package(db: AsyncSession) -> Package:
    package = (
        await db.execute(
            select(Package)
            .where(
                Package.price == Decimal("0.00"),
                Package.is_premium.is_(False),
                Package.is_active.is_(True),
            )
            .limit(1)
        )
    ).scalar_one_or_none()

    if not package:
        raise PackageNotFound("Basic package not found (price 0, not premium, active)")
    return package


@dataclass(frozen=True)
class Entitlement:
    package_name: str
    is_premium: bool
    status: str
    current_period_end: datetime | None
    limits: dict[str, int]


def is_subscription_active(
    subscription: UserSubscription,
    package: Package,
    now: datetime | None = None,
) -> bool:
    if subscription.status != SubscriptionStatus.active.value:
        return False

    # Basic never expires
    if package.is_free():
        return True

    now = now or utcnow()
    expiration = as_utc(subscription.current_period_end or subscription.expires_at)
    return expiration is None or expiration > now


async def get_entitlement(
    db: AsyncSession,
    user_id: UUID,
    now: datetime | None = None,
) -> Entitlement:
    """
    Access level derived from the user's subscription row. Premium needs an
    active row on a premium package whose period has not ended.
    """
    subscription = (
        await db.execute(select(UserSubscription).where(UserSubscription.user_id == user_id))
    ).scalar_one_or_none()

    if subscription is None:
        basic = await get_basic_package(db)
        return Entitlement(
            package_name=basic.name,
            is_premium=False,
            status="inactive",
            current_period_end=None,
            limits=_limits(basic),
        )

    package = subscription.package
    active = is_subscription_active(subscription, package, now)

    if active:
        limits_from = package
    else:
        # Lapsed premium falls back to Basic limits
        limits_from = await get_basic_package(db)

    return Entitlement(
        package_name=package.name,
        is_premium=bool(package.is_premium and active),
        status=subscription.status,
        current_period_end=as_utc(subscription.current_period_end),
        limits=_limits(limits_from),
    )


def _limits(package: Package) -> dict[str, int]:
    return {
        "max_watchlists": package.max_watchlists,
        "max_stocks_per_watchlist": package.max_stocks_per_watchlist,
        "max_chart_layouts": package.max_chart_layouts,
    }
