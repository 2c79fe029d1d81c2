from __future__ import annotations

from contextlib import asynccontextmanager

from dotenv import load_dotenv
load_dotenv()

from fastapi import FastAPI

from tickerpilot.api.v1.router import router as api_router
from tickerpilot.core.config import settings
from tickerpilot.core.logging import get_logger, setup_logging
from tickerpilot.db.base import import_models
from tickerpilot.services.job_queue import close_redis_pool, get_redis_pool

# Populate Base.metadata
import_models()

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging()
    if not settings.PADDLE_WEBHOOK_SECRET:
        logger.warning("PADDLE_WEBHOOK_SECRET is not set; every webhook will be rejected")
    if settings.USE_ARQ_WORKER:
        await get_redis_pool()

    yield

    # Shutdown; a no-op when the pool was never opened
    await close_redis_pool()


app = FastAPI(title="TickerPilot Billing API", lifespan=lifespan)

app.include_router(api_router, prefix="/api/v1")
