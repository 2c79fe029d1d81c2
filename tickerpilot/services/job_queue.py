from __future__ import annotations

import asyncio
from typing import Any, Optional
from uuid import UUID

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings

from tickerpilot.core.config import settings
from tickerpilot.core.logging import get_logger

logger = get_logger(__name__)

TASK_REPLAY_WEBHOOK = "replay_webhook_event"

_pool: Optional[ArqRedis] = None
_lock = asyncio.Lock()


async def get_redis_pool() -> ArqRedis:
    """arq pool shared by the API process, opened on first use."""
    global _pool
    async with _lock:
        if _pool is None:
            _pool = await create_pool(RedisSettings.from_dsn(settings.REDIS_URL))
    return _pool


async def close_redis_pool() -> None:
    global _pool
    pool, _pool = _pool, None
    if pool is not None:
        await pool.aclose()


async def enqueue_webhook_replay(record_id: UUID) -> dict[str, Any]:
    """
    Queue a stored event for the worker. The job id is derived from the
    record id, so a second replay click while one is pending is a no-op.
    """
    pool = await get_redis_pool()
    job = await pool.enqueue_job(
        TASK_REPLAY_WEBHOOK,
        str(record_id),
        _job_id=f"{TASK_REPLAY_WEBHOOK}:{record_id}",
    )
    if job is None:
        logger.info("Replay already queued record=%s", record_id)

    return {"queued": job is not None, "queue": "arq", "job_id": job.job_id if job else None}
