from __future__ import annotations

import enum
import uuid
from decimal import Decimal

from sqlalchemy import String, Boolean, Integer, Numeric, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tickerpilot.db.base import Base


class BillingCycle(str, enum.Enum):
    monthly = "monthly"
    yearly = "yearly"


class Package(Base):
    """
    Plan definition. Exactly one active package with price 0 and
    is_premium False exists: "Basic", the target of every downgrade.
    """
    __tablename__ = "packages"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Paddle price id (pri_...) or product id (pro_...)
    paddle_product_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
    )

    price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0.00"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False, default=BillingCycle.monthly.value)

    # Quota limits
    max_watchlists: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_stocks_per_watchlist: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_chart_layouts: Mapped[int] = mapped_column(Integer, nullable=False, default=5)

    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    def is_free(self) -> bool:
        return Decimal(self.price or 0) == 0

    def is_basic(self) -> bool:
        return self.is_free() and not self.is_premium

    def __repr__(self) -> str:
        return f"<Package id={self.id} name={self.name} premium={self.is_premium}>"
