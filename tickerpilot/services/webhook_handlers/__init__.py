from tickerpilot.services.webhook_handlers.registry import HandlerSpec
from tickerpilot.services.subscription_service import (
    HandlerResult,
    handle_activation,
    handle_payment_failed,
    handle_subscription_cancelled,
    handle_subscription_updated,
)

_ACTIVATE = HandlerSpec(name="activate", handler=handle_activation)
_UPDATE = HandlerSpec(name="update", handler=handle_subscription_updated)
_CANCEL = HandlerSpec(name="cancel", handler=handle_subscription_cancelled)
_PAYMENT_FAILED = HandlerSpec(name="payment_failed", handler=handle_payment_failed)

# Paddle Billing (current) event types
HANDLERS: dict[str, HandlerSpec] = {
    "subscription.created": _ACTIVATE,
    "subscription.activated": _ACTIVATE,
    "transaction.completed": _ACTIVATE,
    "subscription.updated": _UPDATE,
    "subscription.canceled": _CANCEL,
    "subscription.cancelled": _CANCEL,
    "transaction.payment_failed": _PAYMENT_FAILED,
}

# Paddle Classic (legacy) alert names
HANDLERS.update({
    "subscription_created": _ACTIVATE,
    "subscription_payment_succeeded": _ACTIVATE,
    "subscription_updated": _UPDATE,
    "subscription_cancelled": _CANCEL,
    "subscription_payment_failed": _PAYMENT_FAILED,
})

__all__ = ["HANDLERS", "HandlerResult", "HandlerSpec"]
