from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.core.config import settings
from tickerpilot.core.errors import WebhookProcessingError
from tickerpilot.core.logging import get_logger
from tickerpilot.services.job_queue import enqueue_webhook_replay
from tickerpilot.services.paddle_payloads import parse_event
from tickerpilot.services.webhook_dispatcher import DispatchOutcome, dispatch
from tickerpilot.services.webhook_event_service import (
    _safe_error_summary,
    get_event,
)

logger = get_logger(__name__)


async def replay_event(db: AsyncSession, record_id: UUID, *, provider=None) -> DispatchOutcome | None:
    """
    Re-run a stored event through the dispatcher.

    The signature is not checked again: the payload was verified when it was
    received and is never modified afterwards. Returns None when the record
    does not exist. Raises WebhookProcessingError if the replay fails again.
    """
    record = await get_event(db, record_id)
    if record is None:
        return None

    event = parse_event(record.payload, api_version=record.api_version)
    logger.info(
        "Replaying webhook record=%s event_id=%s type=%s attempts=%s",
        record_id,
        record.provider_event_id,
        record.event_type,
        record.attempts,
    )
    # Release the read before dispatch takes the row lock
    await db.rollback()

    return await dispatch(db, event, record_id, provider=provider)


async def requeue_failed_event(db: AsyncSession, record_id: UUID, *, provider=None) -> dict[str, Any]:
    """
    Operator replay: push to the ARQ worker when enabled, otherwise run inline.
    """
    record = await get_event(db, record_id)
    if record is None:
        return {"ok": False, "error": "event_not_found"}

    if record.is_processed:
        return {"ok": False, "error": "already_processed", "event_id": str(record_id)}

    if settings.USE_ARQ_WORKER:
        enqueue_info = await enqueue_webhook_replay(record_id)
        return {"ok": True, "event_id": str(record_id), "enqueue": enqueue_info}

    try:
        outcome = await replay_event(db, record_id, provider=provider)
    except WebhookProcessingError as e:
        return {
            "ok": False,
            "error": "replay_failed",
            "event_id": str(record_id),
            "error_summary": _safe_error_summary(str(e)),
        }

    return {
        "ok": True,
        "event_id": str(record_id),
        "outcome": outcome.outcome,
        "subscription_id": str(outcome.subscription_id) if outcome.subscription_id else None,
    }
