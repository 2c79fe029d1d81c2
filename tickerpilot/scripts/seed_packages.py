# tickerpilot/scripts/seed_packages.py
import asyncio
import os
from decimal import Decimal

from sqlalchemy import select

from tickerpilot.db.base import import_models
from tickerpilot.db.session import async_session
from tickerpilot.models.package import BillingCycle, Package

import_models()

# -----------------------------
# Plans
# -----------------------------
# Paddle price ids differ between sandbox and production; set them via env
PACKAGES = [
    {
        "name": "Basic",
        "paddle_product_id": None,
        "price": Decimal("0.00"),
        "billing_cycle": BillingCycle.monthly.value,
        "is_premium": False,
        "max_watchlists": 1,
        "max_stocks_per_watchlist": 10,
        "max_chart_layouts": 5,
    },
    {
        "name": "Pro Monthly",
        "paddle_product_id": os.getenv("PADDLE_PRICE_PRO_MONTHLY"),
        "price": Decimal("9.99"),
        "billing_cycle": BillingCycle.monthly.value,
        "is_premium": True,
        "max_watchlists": 20,
        "max_stocks_per_watchlist": 100,
        "max_chart_layouts": 50,
    },
    {
        "name": "Pro Yearly",
        "paddle_product_id": os.getenv("PADDLE_PRICE_PRO_YEARLY"),
        "price": Decimal("99.00"),
        "billing_cycle": BillingCycle.yearly.value,
        "is_premium": True,
        "max_watchlists": 20,
        "max_stocks_per_watchlist": 100,
        "max_chart_layouts": 50,
    },
]


async def main() -> None:
    async with async_session() as db:
        for spec in PACKAGES:
            existing = (
                await db.execute(select(Package).where(Package.name == spec["name"]))
            ).scalar_one_or_none()

            if existing:
                for field, value in spec.items():
                    if value is not None:
                        setattr(existing, field, value)
                print(f"ℹ️ Package already exists: {existing.name} (ID: {existing.id})")
                continue

            pkg = Package(**spec)
            db.add(pkg)
            await db.flush()
            print(f"✅ Created package: {pkg.name} (ID: {pkg.id})")

        await db.commit()


if __name__ == "__main__":
    asyncio.run(main())
