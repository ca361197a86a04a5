"""
Billing service orchestrator.

Coordinates:
- Customer management
- Checkout, portal and in-place plan changes
- Webhook processing (idempotent by Stripe event id)
- Subscription state on the user row

Processor calls go through a BillingProvider; nothing here imports the SDK.
"""
import hashlib
import logging
from typing import Any, Dict, Optional, Tuple
from datetime import datetime
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from synth.core.clock import as_utc, now_or_utc, utc_now
from synth.core.config import settings
from synth.core.database import get_db_session, users, webhook_event_logs
from synth.core.errors import BillingDisabledError, NotFoundError, ValidationError
from synth.features.billing.provider import (
    BillingProvider,
    BillingProviderError,
    BillingWebhookResult,
)
from synth.features.billing.stripe_provider import StripeProvider
from synth.features.plans.catalog import is_known_plan, normalize_plan
from synth.features.subscriptions.service import (
    SubscriptionPolicy,
    is_in_trial,
    map_stripe_status,
    resolve_effective_plan,
)
from synth.features.users.service import get_or_create_user, get_user, update_subscription
from synth.models.plan import PlanId
from synth.models.subscription import SubscriptionState


logger = logging.getLogger(__name__)


def billing_enabled() -> bool:
    """Check if billing is enabled (Stripe configured)."""
    return bool(settings.STRIPE_SECRET_KEY)


def get_provider() -> Optional[BillingProvider]:
    """Get billing provider if billing is enabled."""
    if not billing_enabled():
        return None
    try:
        return StripeProvider()
    except BillingProviderError:
        logger.warning("[billing] provider unavailable")
        return None


def _price_map() -> Dict[str, PlanId]:
    mapping = {
        settings.STRIPE_PRICE_STARTER: PlanId.STARTER,
        settings.STRIPE_PRICE_PRO: PlanId.PRO,
        settings.STRIPE_PRICE_AGENCY: PlanId.AGENCY,
    }
    return {price: plan for price, plan in mapping.items() if price}


def get_plan_for_price(price_id: Optional[str]) -> Optional[PlanId]:
    """Map a Stripe price id to a paid plan; unknown prices map to None."""
    if not price_id:
        return None
    return _price_map().get(price_id)


def get_stripe_price_for_plan(plan_id: str) -> Optional[str]:
    """Map internal plan ID to Stripe price ID."""
    plan = normalize_plan(plan_id)
    for price, mapped in _price_map().items():
        if mapped == plan:
            return price
    return None


def _require_provider(provider: Optional[BillingProvider]) -> BillingProvider:
    provider = provider or get_provider()
    if provider is None:
        raise BillingDisabledError("Billing disabled. Stripe is not configured.")
    return provider


def ensure_customer_for_user(
    user_id: str,
    email: Optional[str] = None,
    name: Optional[str] = None,
    provider: Optional[BillingProvider] = None,
) -> str:
    """Return the user's Stripe customer id, creating one on first use."""
    provider = _require_provider(provider)
    user = get_or_create_user(user_id, email=email)
    if user.stripe_customer_id:
        return user.stripe_customer_id

    customer_id = provider.ensure_customer(user_id, email or user.email, name or user.display_name)
    update_subscription(user_id, stripe_customer_id=customer_id)
    logger.info("[billing] customer created", extra={"user_id": user_id})
    return customer_id


def _paid_plan_price(plan_id: str) -> Tuple[PlanId, str]:
    if not is_known_plan(plan_id) or normalize_plan(plan_id) == PlanId.FREE:
        raise ValidationError(f"Invalid paid plan: {plan_id}")

    plan = normalize_plan(plan_id)
    price_id = get_stripe_price_for_plan(plan.value)
    if not price_id:
        raise ValidationError(f"No Stripe price configured for plan: {plan.value}")
    return plan, price_id


def start_checkout(
    user_id: str,
    plan_id: str,
    success_url: str,
    cancel_url: str,
    provider: Optional[BillingProvider] = None,
) -> str:
    """
    Start checkout session for a paid plan.

    Raises:
        BillingDisabledError: Stripe not configured
        ValidationError: plan is free, unknown or has no configured price
    """
    provider = _require_provider(provider)
    plan, price_id = _paid_plan_price(plan_id)

    customer_id = ensure_customer_for_user(user_id, provider=provider)
    return provider.create_checkout_session(
        customer_id=customer_id,
        price_id=price_id,
        success_url=success_url,
        cancel_url=cancel_url,
        metadata={"plan_id": plan.value, "user_id": user_id},
    )


def start_portal(user_id: str, return_url: str, provider: Optional[BillingProvider] = None) -> str:
    provider = _require_provider(provider)
    user = get_user(user_id)
    if user is None or not user.stripe_customer_id:
        raise NotFoundError("Customer not found. Complete checkout first.")
    return provider.create_portal_session(customer_id=user.stripe_customer_id, return_url=return_url)


def change_plan(
    user_id: str,
    plan_id: str,
    provider: Optional[BillingProvider] = None,
) -> Dict[str, Any]:
    """
    Move an existing subscription to another paid plan.

    Stripe switches the price without proration. The new plan is only
    recorded as pending; invoice.payment_succeeded makes it the stored plan
    and invoice.payment_failed drops it.
    """
    provider = _require_provider(provider)
    plan, price_id = _paid_plan_price(plan_id)

    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.user_id == user_id)).first()
    if row is None:
        raise NotFoundError("User not found", details={"user_id": user_id})
    if not row.stripe_subscription_id:
        raise ValidationError("No subscription to change. Start a checkout instead.")
    if normalize_plan(row.subscription_plan) == plan and not row.pending_subscription_plan:
        raise ValidationError(f"Already on the {plan.value} plan")

    change = provider.change_subscription_price(row.stripe_subscription_id, price_id)
    update_subscription(
        user_id,
        pending_subscription_plan=plan.value,
        subscription_status=change.status or row.subscription_status,
        subscription_renewal_at=change.current_period_end or row.subscription_renewal_at,
    )
    logger.info(
        "[billing] plan change pending",
        extra={"user_id": user_id, "plan": row.subscription_plan, "pending_plan": plan.value},
    )
    return {
        "subscription_id": change.subscription_id,
        "status": change.status,
        "plan": row.subscription_plan,
        "pending_plan": plan.value,
        "renewal_at": _iso(change.current_period_end),
    }


def _find_user_row(session, *, customer_id: Optional[str] = None, subscription_id: Optional[str] = None):
    if customer_id:
        row = session.execute(select(users).where(users.c.stripe_customer_id == customer_id)).first()
        if row:
            return row
    if subscription_id:
        return session.execute(
            select(users).where(users.c.stripe_subscription_id == subscription_id)
        ).first()
    return None


def apply_billing_event(result: BillingWebhookResult, now: Optional[datetime] = None) -> Optional[str]:
    """
    Write the subscription effect of one event onto the matching user row.

    Returns the affected user_id, or None when the event matches no user or
    has no subscription effect.
    """
    current = now_or_utc(now)
    event_type = result.event_type

    with get_db_session() as session:
        if event_type in ("customer.subscription.created", "customer.subscription.updated"):
            row = _find_user_row(session, customer_id=result.customer_id)
            if row is None:
                return None
            values: Dict[str, Any] = {
                "stripe_subscription_id": result.subscription_id,
                "subscription_status": result.status,
                "trial_ends_at": result.trial_end,
                "subscription_ends_at": result.current_period_end,
                "subscription_renewal_at": result.current_period_end,
                "cancel_at_period_end": result.cancel_at_period_end,
            }
            plan = get_plan_for_price(result.price_id)
            if plan is None and is_known_plan(result.plan_id):
                plan = normalize_plan(result.plan_id)
            # Pending plan changes land on invoice.payment_succeeded
            if not row.pending_subscription_plan and plan is not None:
                values["subscription_plan"] = plan.value

        elif event_type == "customer.subscription.deleted":
            row = _find_user_row(session, customer_id=result.customer_id, subscription_id=result.subscription_id)
            if row is None:
                return None
            values = {
                "subscription_status": "canceled",
                "subscription_ends_at": current,
                "pending_subscription_plan": None,
                "cancel_at_period_end": False,
            }

        elif event_type == "invoice.payment_failed":
            row = _find_user_row(session, subscription_id=result.subscription_id)
            if row is None:
                return None
            values = {
                "subscription_status": "past_due",
                "pending_subscription_plan": None,
            }

        elif event_type == "invoice.payment_succeeded":
            row = _find_user_row(session, subscription_id=result.subscription_id)
            if row is None:
                return None
            values = {"subscription_status": "active"}
            if row.pending_subscription_plan:
                values["subscription_plan"] = normalize_plan(row.pending_subscription_plan).value
                values["pending_subscription_plan"] = None

        else:
            logger.info("[billing] unhandled event type", extra={"event_id": result.event_id, "event_type": event_type})
            return None

        session.execute(update(users).where(users.c.user_id == row.user_id).values(**values))

    logger.info(
        "[billing] subscription updated",
        extra={
            "event_id": result.event_id,
            "event_type": event_type,
            "user_id": row.user_id,
            "status": values.get("subscription_status"),
            "plan": values.get("subscription_plan"),
        },
    )
    return row.user_id


def process_webhook_event(
    headers: Dict[str, str],
    body: bytes,
    provider: Optional[BillingProvider] = None,
    now: Optional[datetime] = None,
) -> BillingWebhookResult:
    """
    Process billing webhook event (idempotent).

    1. Verify signature and parse
    2. Skip if this event id was already processed
    3. Record the event (unprocessed)
    4. Apply state changes
    5. Mark as processed

    A failure while applying stores the error, leaves the event unprocessed
    and re-raises so Stripe retries the delivery.

    Raises:
        BillingDisabledError: Stripe not configured
        BillingWebhookError: If signature invalid
    """
    provider = _require_provider(provider)
    result = provider.handle_webhook(headers, body)
    payload_hash = hashlib.sha256(body).hexdigest()

    with get_db_session() as session:
        existing = session.execute(
            select(webhook_event_logs.c.processed).where(
                webhook_event_logs.c.stripe_event_id == result.event_id
            )
        ).first()

    if existing is not None and existing.processed:
        logger.info(
            "[billing] webhook already processed",
            extra={"event_id": result.event_id, "event_type": result.event_type},
        )
        return result.mark_already_processed()

    if existing is None:
        try:
            with get_db_session() as session:
                session.execute(
                    insert(webhook_event_logs).values(
                        stripe_event_id=result.event_id,
                        event_type=result.event_type,
                        payload_hash=payload_hash,
                        processed=False,
                        received_at=utc_now(),
                    )
                )
        except IntegrityError:
            # Race condition: another delivery of the same event got here first
            logger.info("[billing] webhook insert raced", extra={"event_id": result.event_id})
            return result.mark_already_processed()

    logger.info(
        "[billing] webhook received",
        extra={"event_id": result.event_id, "event_type": result.event_type},
    )

    try:
        apply_billing_event(result, now=now)
        with get_db_session() as session:
            session.execute(
                update(webhook_event_logs)
                .where(webhook_event_logs.c.stripe_event_id == result.event_id)
                .values(processed=True, processed_at=utc_now(), error_message=None)
            )
    except Exception as e:
        logger.error(
            "[billing] webhook processing failed",
            exc_info=True,
            extra={"event_id": result.event_id, "event_type": result.event_type},
        )
        with get_db_session() as session:
            session.execute(
                update(webhook_event_logs)
                .where(webhook_event_logs.c.stripe_event_id == result.event_id)
                .values(error_message=str(e)[:2000])
            )
        raise

    return result


def _iso(value: Optional[datetime]) -> Optional[str]:
    value = as_utc(value)
    return value.isoformat() if value else None


def get_billing_status(user_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Get user's billing status.

    Returns the stored subscription fields next to the effective plan they
    resolve to right now.
    """
    with get_db_session() as session:
        row = session.execute(select(users).where(users.c.user_id == user_id)).first()
    if row is None:
        raise NotFoundError("User not found", details={"user_id": user_id})

    state = SubscriptionState(
        user_id=row.user_id,
        subscription_plan=row.subscription_plan,
        subscription_status=row.subscription_status,
        trial_ends_at=row.trial_ends_at,
        subscription_renewal_at=row.subscription_renewal_at,
        cancel_at_period_end=bool(row.cancel_at_period_end),
    )
    current = now_or_utc(now)
    effective = resolve_effective_plan(state, current, SubscriptionPolicy.from_settings())

    return {
        "enabled": billing_enabled(),
        "plan_id": row.subscription_plan,
        "effective_plan": effective.value,
        "status": row.subscription_status,
        "subscribed": map_stripe_status(row.subscription_status) == "SUBSCRIBED",
        "in_trial": is_in_trial(state, current),
        "trial_ends_at": _iso(row.trial_ends_at),
        "period_end": _iso(row.subscription_renewal_at),
        "cancel_at_period_end": bool(row.cancel_at_period_end),
        "pending_plan_id": row.pending_subscription_plan,
    }
