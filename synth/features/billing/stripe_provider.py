"""
Stripe-backed BillingProvider.

Every SDK call goes through `_stripe_call` so a `stripe.StripeError` always
surfaces as BillingProviderError. Webhook bodies are checked against
STRIPE_WEBHOOK_SECRET before `parse_event` looks at them.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import stripe

from synth.core.config import settings
from synth.core.logging import LOGGER_NAME
from synth.features.billing.provider import (
    BillingProviderError,
    BillingWebhookError,
    BillingWebhookResult,
    SubscriptionChange,
)

logger = logging.getLogger(f"{LOGGER_NAME}.billing")

SIGNATURE_HEADER = "stripe-signature"


def _epoch_to_datetime(value: Any) -> Optional[datetime]:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _ref(value: Any) -> Optional[str]:
    """Id of a Stripe reference, whether it arrived as an id or expanded."""
    if isinstance(value, dict):
        return value.get("id")
    return value if isinstance(value, str) else None


def _stripe_call(action: str, fn: Callable[..., Any], **params: Any) -> Any:
    try:
        return fn(**params)
    except stripe.StripeError as e:
        logger.warning("stripe.call_failed", extra={"action": action, "error_code": getattr(e, "code", None)})
        raise BillingProviderError(f"Stripe {action} failed: {e}") from e


class StripeProvider:
    def __init__(self, secret_key: Optional[str] = None, webhook_secret: Optional[str] = None):
        self.secret_key = secret_key or settings.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret or settings.STRIPE_WEBHOOK_SECRET
        if not self.secret_key:
            raise BillingProviderError("STRIPE_SECRET_KEY not configured")
        stripe.api_key = self.secret_key

    def ensure_customer(self, user_id: str, email: Optional[str] = None, name: Optional[str] = None) -> str:
        params: Dict[str, Any] = {"metadata": {"user_id": user_id}}
        params.update({key: value for key, value in (("email", email), ("name", name)) if value})
        return _stripe_call("customer creation", stripe.Customer.create, **params).id

    def create_checkout_session(
        self,
        customer_id: str,
        price_id: str,
        success_url: str,
        cancel_url: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> str:
        tags = dict(metadata or {})
        session = _stripe_call(
            "checkout session",
            stripe.checkout.Session.create,
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=tags,
            # Copied onto the subscription so later subscription events carry the plan too
            subscription_data={"metadata": tags},
        )
        return session.url

    def create_portal_session(self, customer_id: str, return_url: str) -> str:
        return _stripe_call(
            "portal session",
            stripe.billing_portal.Session.create,
            customer=customer_id,
            return_url=return_url,
        ).url

    def change_subscription_price(self, subscription_id: str, price_id: str) -> SubscriptionChange:
        subscription = _stripe_call("subscription lookup", stripe.Subscription.retrieve, id=subscription_id)
        items = (subscription.get("items") or {}).get("data") or []
        if not items:
            raise BillingProviderError("Subscription has no plan item")

        updated = _stripe_call(
            "subscription update",
            stripe.Subscription.modify,
            id=subscription_id,
            items=[{"id": items[0]["id"], "price": price_id}],
            proration_behavior="none",
        )
        return SubscriptionChange(
            subscription_id=updated.get("id") or subscription_id,
            status=updated.get("status"),
            current_period_end=_epoch_to_datetime(updated.get("current_period_end")),
        )

    def handle_webhook(self, headers: Dict[str, str], body: bytes) -> BillingWebhookResult:
        if not self.webhook_secret:
            raise BillingWebhookError("STRIPE_WEBHOOK_SECRET not configured")

        signature = next((value for key, value in headers.items() if key.lower() == SIGNATURE_HEADER), None)
        if not signature:
            raise BillingWebhookError(f"Missing {SIGNATURE_HEADER} header")

        try:
            event = stripe.Webhook.construct_event(body, signature, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise BillingWebhookError(f"Invalid signature: {e}") from e
        except ValueError as e:
            raise BillingWebhookError(f"Invalid payload: {e}") from e

        return parse_event(event.to_dict() if hasattr(event, "to_dict") else dict(event))


def parse_event(event: Dict[str, Any]) -> BillingWebhookResult:
    """Pull the ids, status and dates we persist out of a Stripe event payload."""
    obj = (event.get("data") or {}).get("object") or {}
    metadata = dict(obj.get("metadata") or {})
    result = BillingWebhookResult(
        event_id=event["id"],
        event_type=event["type"],
        customer_id=_ref(obj.get("customer")),
        plan_id=metadata.get("plan_id"),
        metadata=metadata,
    )

    if not result.is_subscription_event:
        # invoice.* and checkout.session.completed point at their subscription
        result.subscription_id = _ref(obj.get("subscription"))
        return result

    items = (obj.get("items") or {}).get("data") or []
    result.subscription_id = obj.get("id")
    result.price_id = _ref(items[0].get("price")) if items else None
    result.status = obj.get("status")
    result.trial_end = _epoch_to_datetime(obj.get("trial_end"))
    result.current_period_end = _epoch_to_datetime(obj.get("current_period_end")) or result.trial_end
    result.cancel_at_period_end = bool(obj.get("cancel_at_period_end"))
    return result
