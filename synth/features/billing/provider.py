"""
The seam between subscription bookkeeping and the payment processor.

`synth.features.billing.service` only ever talks to a `BillingProvider`;
production wires in `StripeProvider`, tests hand in a fake that replays
queued events.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional, Protocol


class BillingProviderError(Exception):
    """The processor rejected or failed a call."""


class BillingWebhookError(BillingProviderError):
    """A webhook body could not be authenticated or decoded."""


@dataclass
class BillingWebhookResult:
    event_id: str
    event_type: str
    customer_id: Optional[str] = None
    subscription_id: Optional[str] = None
    price_id: Optional[str] = None
    # Checkout metadata carries the plan the user picked
    plan_id: Optional[str] = None
    status: Optional[str] = None
    trial_end: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at_period_end: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)
    already_processed: bool = False

    @property
    def is_subscription_event(self) -> bool:
        return self.event_type.startswith("customer.subscription.")

    def mark_already_processed(self) -> "BillingWebhookResult":
        return replace(self, already_processed=True)


@dataclass(frozen=True)
class SubscriptionChange:
    subscription_id: str
    status: Optional[str] = None
    current_period_end: Optional[datetime] = None


class BillingProvider(Protocol):
    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        """Customer id at the processor for `user_id`."""
        ...

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        """Hosted checkout URL for a one-seat subscription to `price_id`."""
        ...

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        ...

    def change_subscription_price(self, subscription_id: str, price_id: str) -> SubscriptionChange:
        """Swap the subscription's single price; takes effect from the next billing period."""
        ...

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        """Authenticate the raw body against its signature header; raise BillingWebhookError otherwise."""
        ...
