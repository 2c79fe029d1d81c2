from fastapi import Header, HTTPException

from tickerpilot.core.config import settings
from tickerpilot.services.paddle_service import PaddleClient, get_paddle_client


# -----------------------------
# Dependency: Paddle API client
# -----------------------------
def get_provider() -> PaddleClient:
    """
    Paddle client used to look up customers and cancel subscriptions.
    Overridden in tests.
    """
    return get_paddle_client()


# -----------------------------
# Dependency: Admin key guard
# -----------------------------
def require_admin(
    x_admin_key: str | None = Header(default=None, alias="X-Admin-Key"),
) -> None:
    """
    404 while the admin API is disabled, 500 if enabled without a key,
    403 on a wrong key.
    """
    if not settings.ADMIN_API_ENABLED:
        raise HTTPException(status_code=404, detail="Admin API not enabled")
    if not settings.ADMIN_KEY:
        raise HTTPException(status_code=500, detail="ADMIN_KEY not configured")
    if not x_admin_key or x_admin_key != settings.ADMIN_KEY:
        raise HTTPException(status_code=403, detail="Forbidden")
