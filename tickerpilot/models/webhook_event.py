import uuid
from datetime import datetime

from sqlalchemy import String, DateTime, Integer, Text, ForeignKey, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from tickerpilot.core.timeutil import utcnow
from tickerpilot.db.base import Base, JSONType


class WebhookEvent(Base):
    """
    Every Paddle webhook we accepted, keyed by Paddle's event id (idempotency).
    Append-only: rows are never deleted, only their processing state changes.
    """
    __tablename__ = "paddle_webhook_events"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4,
    )

    # Unique where present; NULLs do not collide
    provider_event_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        index=True,
    )

    event_type: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    api_version: Mapped[str] = mapped_column(String(20), nullable=False, default="billing")

    payload: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    received_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False,
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)

    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)

    subscription_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid,
        ForeignKey("user_subscriptions.id"),
        nullable=True,
        index=True,
    )

    @property
    def is_processed(self) -> bool:
        return self.processed_at is not None
