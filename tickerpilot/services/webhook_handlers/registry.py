from __future__ import annotations

from dataclasses import dataclass
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from tickerpilot.services.paddle_payloads import BillingEvent
from tickerpilot.services.subscription_service import HandlerResult

# A handler receives: (db, event, provider client) and applies the event
# inside the caller's transaction (flush only, never commit)
HandlerFn = Callable[[AsyncSession, BillingEvent, object], Awaitable[HandlerResult]]


@dataclass(frozen=True)
class HandlerSpec:
    name: str
    handler: HandlerFn
