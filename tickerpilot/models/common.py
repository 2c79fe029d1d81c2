"""
Common Pydantic models for the TickerPilot Billing API
"""
from pydantic import BaseModel
from datetime import datetime
from typing import Optional


class HealthResponse(BaseModel):
    """
    Health check response model
    """
    status: str
    message: str
    timestamp: datetime
    version: str


class WebhookAck(BaseModel):
    """
    Acknowledgement returned to Paddle
    """
    status: str = "ok"
    event_id: Optional[str] = None
    duplicate: bool = False
    ignored: bool = False
    outcome: Optional[str] = None
