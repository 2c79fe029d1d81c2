from fastapi import APIRouter, Request, HTTPException, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.api.deps import get_provider
from tickerpilot.core.errors import (
    InvalidSignature,
    MalformedPayload,
    PersistenceError,
    WebhookProcessingError,
)
from tickerpilot.core.logging import get_logger
from tickerpilot.core.paddle_config import SIGNATURE_HEADER, TIMESTAMP_HEADER
from tickerpilot.db.session import get_async_db
from tickerpilot.models.common import WebhookAck
from tickerpilot.services.webhook_dispatcher import process_webhook

router = APIRouter()
logger = get_logger(__name__)


@router.post("/subscription/webhook", response_model=WebhookAck)
async def paddle_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    provider=Depends(get_provider),
):
    """
    Paddle webhook receiver.

    200 once the event is applied, ignored or recognized as a duplicate.
    400 when the signature or body is rejected (nothing stored).
    500 when processing failed; the event is stored as failed and Paddle retries.
    """
    payload = await request.body()

    try:
        outcome = await process_webhook(
            db,
            payload,
            signature_header=request.headers.get(SIGNATURE_HEADER),
            timestamp_header=request.headers.get(TIMESTAMP_HEADER),
            provider=provider,
        )
    except InvalidSignature:
        raise HTTPException(status_code=400, detail="Invalid webhook signature")
    except MalformedPayload as e:
        raise HTTPException(status_code=400, detail=f"Malformed webhook payload: {e}")
    except PersistenceError:
        logger.exception("Could not store Paddle webhook")
        raise HTTPException(status_code=500, detail="Webhook could not be stored")
    except WebhookProcessingError as e:
        raise HTTPException(
            status_code=500,
            detail=f"Webhook processing failed: {type(e.cause).__name__}",
        )

    return WebhookAck(
        event_id=outcome.event_id,
        duplicate=outcome.duplicate,
        ignored=outcome.ignored,
        outcome=outcome.outcome,
    )
