from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.core.errors import PersistenceError
from tickerpilot.core.logging import get_logger
from tickerpilot.core.timeutil import utcnow
from tickerpilot.models.webhook_event import WebhookEvent

logger = get_logger(__name__)

_MAX_ERROR_LEN = 2000


def _safe_error_summary(err: str | None, max_len: int = 200) -> str | None:
    if not err:
        return None
    s = str(err).replace("\n", " ").replace("\r", " ").strip()
    if len(s) <= max_len:
        return s
    return s[:max_len] + "…"


async def record_if_new(
    db: AsyncSession,
    *,
    provider_event_id: str | None,
    event_type: str,
    payload: dict[str, Any],
    api_version: str,
) -> tuple[WebhookEvent, bool]:
    """
    Persist a received event, or find the one already stored under the same
    Paddle event id.

    The insert goes first and the UNIQUE constraint on provider_event_id
    decides the race between concurrent deliveries. Returns (record,
    is_duplicate); is_duplicate is True only when the stored event was already
    processed. A stored event whose earlier attempt failed comes back with
    is_duplicate=False so the provider's retry re-runs it.
    """
    record = WebhookEvent(
        provider_event_id=provider_event_id,
        event_type=event_type,
        api_version=api_version,
        payload=payload,
        attempts=0,
    )
    db.add(record)

    try:
        await db.commit()
        return record, False
    except IntegrityError as e:
        await db.rollback()
        if provider_event_id is None:
            raise PersistenceError(f"could not store webhook event: {e}") from e
    except SQLAlchemyError as e:
        await db.rollback()
        raise PersistenceError(f"could not store webhook event: {e}") from e

    existing = (
        await db.execute(
            select(WebhookEvent).where(WebhookEvent.provider_event_id == provider_event_id)
        )
    ).scalar_one()

    if existing.is_processed:
        logger.info("Webhook already processed event_id=%s", provider_event_id)
        return existing, True

    logger.info(
        "Webhook redelivered after %s failed attempt(s) event_id=%s",
        existing.attempts,
        provider_event_id,
    )
    return existing, False


async def lock_for_processing(db: AsyncSession, record_id: UUID) -> WebhookEvent:
    """
    Claim the event row for the processing transaction. A concurrent delivery
    of the same event waits here and then sees processed_at set.

    The no-op UPDATE takes the write lock before anything is read: a row lock
    on PostgreSQL, the database lock on SQLite (which ignores FOR UPDATE).
    """
    await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == record_id)
        .values(attempts=WebhookEvent.attempts)
        .execution_options(synchronize_session=False)
    )
    return (
        await db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.id == record_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
    ).scalar_one()


def mark_processed(record: WebhookEvent, *, subscription_id: UUID | None = None) -> None:
    """Flag the event processed; committed together with the subscription change."""
    record.processed_at = utcnow()
    record.attempts = (record.attempts or 0) + 1
    record.last_error = None
    if subscription_id is not None:
        record.subscription_id = subscription_id


async def mark_failed(db: AsyncSession, record_id: UUID, error: str) -> None:
    """
    Record a failed attempt in its own transaction, after the processing
    transaction was rolled back.
    """
    await db.execute(
        update(WebhookEvent)
        .where(WebhookEvent.id == record_id)
        .values(
            attempts=WebhookEvent.attempts + 1,
            last_error=(error or "")[:_MAX_ERROR_LEN],
        )
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def get_event(db: AsyncSession, record_id: UUID) -> WebhookEvent | None:
    return (
        await db.execute(select(WebhookEvent).where(WebhookEvent.id == record_id))
    ).scalar_one_or_none()


def serialize_event(ev: WebhookEvent) -> dict[str, Any]:
    # Raw payload and full error stay internal
    return {
        "id": str(ev.id),
        "provider_event_id": ev.provider_event_id,
        "event_type": ev.event_type,
        "api_version": ev.api_version,
        "received_at": ev.received_at,
        "processed_at": ev.processed_at,
        "attempts": ev.attempts,
        "error_summary": _safe_error_summary(ev.last_error),
        "subscription_id": str(ev.subscription_id) if ev.subscription_id else None,
    }


async def list_failed_events(db: AsyncSession, *, limit: int = 50) -> dict[str, Any]:
    """
    Every event not yet processed, oldest first. This includes rows whose
    processing never recorded an attempt (crash between insert and dispatch).
    """
    events = (
        await db.execute(
            select(WebhookEvent)
            .where(WebhookEvent.processed_at.is_(None))
            .order_by(WebhookEvent.received_at)
            .limit(limit)
        )
    ).scalars().all()

    items = [serialize_event(ev) for ev in events]
    return {"items": items, "count": len(items)}
