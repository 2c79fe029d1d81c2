from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.core.config import settings
from tickerpilot.core.errors import DuplicateEvent, InvalidSignature, WebhookProcessingError
from tickerpilot.core.logging import get_logger
from tickerpilot.services.paddle_payloads import (
    BillingEvent,
    decode_body,
    detect_api_version,
    parse_event,
)
from tickerpilot.services.signature_service import is_legacy_signature, verify
from tickerpilot.services.webhook_event_service import (
    lock_for_processing,
    mark_failed,
    mark_processed,
    record_if_new,
)
from tickerpilot.services.webhook_handlers import HANDLERS

logger = get_logger(__name__)


@dataclass(frozen=True)
class DispatchOutcome:
    outcome: str
    record_id: UUID
    subscription_id: UUID | None = None
    event_id: str | None = None
    handler: str | None = None

    @property
    def duplicate(self) -> bool:
        return self.outcome == "duplicate"

    @property
    def ignored(self) -> bool:
        return self.outcome == "ignored"


async def dispatch(
    db: AsyncSession,
    event: BillingEvent,
    record_id: UUID,
    *,
    provider=None,
) -> DispatchOutcome:
    """
    Route a stored event to its handler.

    Handler mutation and the processed marker commit together. On any error
    the transaction is rolled back, the failed attempt is recorded separately,
    and WebhookProcessingError is raised so the caller answers 500.
    """
    spec = HANDLERS.get(event.event_type)

    try:
        record = await lock_for_processing(db, record_id)

        # A concurrent delivery finished while we waited on the lock
        if record.is_processed:
            raise DuplicateEvent(event.event_id, record.subscription_id)

        if spec is None:
            # Paddle adds event types over time; acknowledge, don't fail
            logger.info("Unhandled webhook type %s event_id=%s", event.event_type, event.event_id)
            mark_processed(record)
            await db.commit()
            return DispatchOutcome("ignored", record_id, event_id=event.event_id)

        result = await spec.handler(db, event, provider)
        mark_processed(record, subscription_id=result.subscription_id)
        await db.commit()

    except DuplicateEvent as dup:
        await db.rollback()
        logger.info("Webhook already processed event_id=%s", event.event_id)
        return DispatchOutcome(
            "duplicate",
            record_id,
            subscription_id=dup.subscription_id,
            event_id=event.event_id,
        )

    except Exception as e:
        await db.rollback()
        logger.exception(
            "Error processing Paddle webhook event_id=%s type=%s record=%s",
            event.event_id,
            event.event_type,
            record_id,
        )
        await mark_failed(db, record_id, f"{type(e).__name__}: {e}")
        raise WebhookProcessingError(record_id, e) from e

    logger.info(
        "Webhook processed event_id=%s type=%s handler=%s outcome=%s subscription=%s",
        event.event_id,
        event.event_type,
        spec.name,
        result.outcome,
        result.subscription_id,
    )
    return DispatchOutcome(
        result.outcome,
        record_id,
        subscription_id=result.subscription_id,
        event_id=event.event_id,
        handler=spec.name,
    )


async def process_webhook(
    db: AsyncSession,
    raw_body: bytes,
    *,
    signature_header: str | None,
    timestamp_header: str | None = None,
    secret: str | None = None,
    provider=None,
    now: float | None = None,
) -> DispatchOutcome:
    """
    verify -> parse -> store (dedupe) -> dispatch.

    InvalidSignature / MalformedPayload are raised before anything is stored.
    """
    secret = settings.PADDLE_WEBHOOK_SECRET if secret is None else secret
    # Replay protection cannot be switched off in production
    enforce = settings.PADDLE_ENFORCE_TIMESTAMP or settings.is_production

    verification = verify(
        raw_body,
        signature_header,
        secret,
        settings.PADDLE_WEBHOOK_TOLERANCE_SECONDS,
        timestamp_header=timestamp_header,
        now=now,
        enforce_tolerance=enforce,
    )
    if not verification:
        logger.warning("Invalid Paddle webhook signature (%s)", verification.reason)
        raise InvalidSignature(verification.reason)

    body = decode_body(raw_body)
    api_version = detect_api_version(body, legacy_signature=is_legacy_signature(signature_header))
    event = parse_event(body, api_version=api_version)

    logger.info(
        "Paddle webhook received event_id=%s type=%s api=%s",
        event.event_id,
        event.event_type,
        api_version,
    )

    record, is_duplicate = await record_if_new(
        db,
        provider_event_id=event.event_id,
        event_type=event.event_type,
        payload=body,
        api_version=api_version,
    )
    if is_duplicate:
        return DispatchOutcome(
            "duplicate",
            record.id,
            subscription_id=record.subscription_id,
            event_id=event.event_id,
        )

    return await dispatch(db, event, record.id, provider=provider)
