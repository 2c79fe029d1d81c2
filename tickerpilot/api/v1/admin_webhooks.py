from __future__ import annotations

from dataclasses import asdict
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.api.deps import get_provider, require_admin
from tickerpilot.core.errors import ProviderTransientError
from tickerpilot.db.session import get_async_db
from tickerpilot.services.entitlement_service import get_entitlement
from tickerpilot.services.subscription_service import cancel_user_subscription
from tickerpilot.services.webhook_event_service import (
    get_event,
    list_failed_events,
    serialize_event,
)
from tickerpilot.services.webhook_replay_service import requeue_failed_event

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/admin/webhooks/failed")
async def admin_list_failed_webhooks(
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_async_db),
):
    return await list_failed_events(db, limit=limit)


@router.get("/admin/webhooks/{event_id}")
async def admin_get_webhook(
    event_id: UUID,
    db: AsyncSession = Depends(get_async_db),
):
    ev = await get_event(db, event_id)
    if ev is None:
        raise HTTPException(status_code=404, detail="Webhook event not found")
    return serialize_event(ev)


@router.post("/admin/webhooks/{event_id}/replay")
async def admin_replay_webhook(
    event_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    provider=Depends(get_provider),
):
    res = await requeue_failed_event(db, event_id, provider=provider)
    if not res["ok"] and res["error"] == "event_not_found":
        raise HTTPException(status_code=404, detail="Webhook event not found")
    return res


@router.get("/admin/users/{user_id}/subscription")
async def admin_get_user_entitlement(
    user_id: UUID,
    db: AsyncSession = Depends(get_async_db),
):
    entitlement = await get_entitlement(db, user_id)
    return {"user_id": str(user_id), **asdict(entitlement)}


@router.post("/admin/users/{user_id}/subscription/cancel")
async def admin_cancel_user_subscription(
    user_id: UUID,
    db: AsyncSession = Depends(get_async_db),
    provider=Depends(get_provider),
):
    try:
        return await cancel_user_subscription(db, user_id, provider)
    except ProviderTransientError:
        await db.rollback()
        raise HTTPException(status_code=503, detail="Payment provider unavailable")
