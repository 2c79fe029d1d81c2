"""
Health check endpoints for monitoring application status
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.core.logging import get_logger
from tickerpilot.core.timeutil import utcnow
from tickerpilot.db.session import get_async_db
from tickerpilot.models.common import HealthResponse

router = APIRouter(prefix="/health")
logger = get_logger(__name__)

VERSION = "1.0.0"


@router.get("", response_model=HealthResponse)
async def health_check():
    """
    Health check endpoint to verify the API is running
    """
    return HealthResponse(
        status="healthy",
        message="TickerPilot Billing API is running",
        timestamp=utcnow(),
        version=VERSION,
    )


@router.get("/ready", response_model=HealthResponse)
async def readiness_check(db: AsyncSession = Depends(get_async_db)):
    """
    Readiness check: the database must answer before webhooks are accepted
    """
    try:
        await db.execute(text("SELECT 1"))
    except SQLAlchemyError:
        logger.exception("Readiness check failed: database unavailable")
        raise HTTPException(status_code=503, detail="Database unavailable")

    return HealthResponse(
        status="ready",
        message="TickerPilot Billing API is ready to accept requests",
        timestamp=utcnow(),
        version=VERSION,
    )
