"""
Billing error taxonomy.

Verification and parsing errors end the request with a 4xx before anything is
stored. Everything raised while reconciling an event marks the stored event as
failed and surfaces as a 500 so the provider retries.
"""
from __future__ import annotations

from uuid import UUID


class BillingError(Exception):
    pass


class InvalidSignature(BillingError):
    pass


class MalformedPayload(BillingError):
    pass


class DuplicateEvent(BillingError):
    """Not a failure: the event was already processed. Answered with 200."""

    def __init__(self, event_id: str | None, subscription_id: UUID | None = None):
        super().__init__(f"event already processed: {event_id}")
        self.event_id = event_id
        self.subscription_id = subscription_id


class UserNotFound(BillingError):
    pass


class PackageNotFound(BillingError):
    pass


class SubscriptionNotFound(BillingError):
    pass


class ProviderTransientError(BillingError):
    """Network error or timeout talking to the payment provider API."""


class PersistenceError(BillingError):
    pass


class WebhookProcessingError(BillingError):
    def __init__(self, record_id: UUID, cause: Exception):
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.record_id = record_id
        self.cause = cause
