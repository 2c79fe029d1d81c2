from __future__ import annotations

import json
from uuid import UUID

from dotenv import load_dotenv
load_dotenv()

from arq import Retry
from arq.connections import RedisSettings

from tickerpilot.core.config import settings
from tickerpilot.core.logging import get_logger, setup_logging
from tickerpilot.core.timeutil import utcnow
from tickerpilot.db.session import async_session
from tickerpilot.services.job_queue import TASK_REPLAY_WEBHOOK
from tickerpilot.services.paddle_service import get_paddle_client
from tickerpilot.services.webhook_event_service import _safe_error_summary
from tickerpilot.services.webhook_replay_service import replay_event

logger = get_logger(__name__)

DEADLETTER_LIST_KEY = "deadletter:paddle_webhooks"

# Seconds before the next try, multiplied by the try number
RETRY_BACKOFF_SECONDS = 30


async def _push_deadletter_redis(ctx, *, payload: dict) -> None:
    """
    Keep the last N exhausted replays in Redis for quick inspection.
    The webhook event row (attempts, last_error) stays the source of truth.
    """
    redis = ctx.get("redis")
    if redis is None:
        return

    await redis.lpush(DEADLETTER_LIST_KEY, json.dumps(payload))
    await redis.ltrim(DEADLETTER_LIST_KEY, 0, settings.DEADLETTER_MAX_ITEMS - 1)


async def replay_webhook_event(ctx, record_id: str) -> dict | None:
    """
    ARQ task entrypoint.
    """
    rid = UUID(record_id)

    try:
        async with async_session() as db:
            outcome = await replay_event(db, rid, provider=get_paddle_client())

    except Exception as e:
        job_try = int(ctx.get("job_try") or 1)
        max_tries = int(settings.ARQ_MAX_TRIES)
        err = str(e)

        if job_try >= max_tries:
            logger.error(
                "Webhook replay dead-lettered record=%s tries=%s error=%s",
                record_id,
                job_try,
                _safe_error_summary(err),
            )
            await _push_deadletter_redis(
                ctx,
                payload={
                    "record_id": record_id,
                    "error_summary": _safe_error_summary(err),
                    "failed_at": utcnow().isoformat(),
                    "job_try": job_try,
                    "queue": "arq",
                    "task": TASK_REPLAY_WEBHOOK,
                },
            )
            return None

        logger.warning(
            "Webhook replay failed record=%s try=%s/%s, retrying: %s",
            record_id,
            job_try,
            max_tries,
            _safe_error_summary(err),
        )
        # ARQ only retries on Retry; any other exception fails the job for good
        raise Retry(defer=RETRY_BACKOFF_SECONDS * job_try) from e

    if outcome is None:
        logger.warning("Replay requested for unknown webhook record=%s", record_id)
        return None

    return {"record_id": record_id, "outcome": outcome.outcome}


async def startup(ctx) -> None:
    setup_logging()


class WorkerSettings:
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    functions = [replay_webhook_event]
    on_startup = startup

    max_jobs = 10
    job_timeout = 60
    max_tries = settings.ARQ_MAX_TRIES
