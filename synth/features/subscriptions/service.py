"""
synth/features/subscriptions/service.py

Subscription state reader.

Turns the raw subscription fields stored on a user row into the one plan
that governs access right now. The rules are explicit and small:

1. A trial that ends strictly after `now` grants the trial plan.
2. Otherwise an entitled status (active, trialing) grants the stored plan.
3. Anything else (canceled, past_due, incomplete, unpaid, missing) is free.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, FrozenSet, Optional

from synth.core.clock import as_utc, now_or_utc
from synth.core.config import settings
from synth.core.errors import NotFoundError
from synth.features.plans.catalog import TOP_PLAN, normalize_plan
from synth.models.plan import PlanId
from synth.models.subscription import SubscriptionState


DEFAULT_ENTITLED_STATUSES: FrozenSet[str] = frozenset({"active", "trialing"})

# Stripe statuses treated as a live subscription when syncing
SUBSCRIBED_STRIPE_STATUSES: FrozenSet[str] = frozenset({"active", "trialing", "cancels_at_period_end"})


@dataclass(frozen=True)
class SubscriptionPolicy:
    trial_grants_top_tier: bool = True
    trial_plan: PlanId = TOP_PLAN
    entitled_statuses: FrozenSet[str] = field(default_factory=lambda: DEFAULT_ENTITLED_STATUSES)

    @classmethod
    def from_settings(cls, cfg: Any = None) -> "SubscriptionPolicy":
        cfg = cfg or settings
        statuses = set(DEFAULT_ENTITLED_STATUSES)
        if getattr(cfg, "PAST_DUE_GRACE", False):
            statuses.add("past_due")
        trial_plan = normalize_plan(getattr(cfg, "TRIAL_PLAN", TOP_PLAN.value))
        # A trial that resolves to free would silently revoke access
        if trial_plan == PlanId.FREE:
            trial_plan = TOP_PLAN
        return cls(
            trial_grants_top_tier=bool(getattr(cfg, "TRIAL_GRANTS_TOP_TIER", True)),
            trial_plan=trial_plan,
            entitled_statuses=frozenset(statuses),
        )


def is_in_trial(state: SubscriptionState, now: Optional[datetime] = None) -> bool:
    """True when the trial end is strictly in the future."""
    trial_ends_at = as_utc(state.trial_ends_at)
    return trial_ends_at is not None and trial_ends_at > now_or_utc(now)


def resolve_effective_plan(
    state: SubscriptionState,
    now: Optional[datetime] = None,
    policy: Optional[SubscriptionPolicy] = None,
) -> PlanId:
    """
    Plan that governs access for this subscription state at `now`.

    Never raises on malformed stored values: unknown plans and statuses
    resolve to free.
    """
    policy = policy or SubscriptionPolicy.from_settings()

    if policy.trial_grants_top_tier and is_in_trial(state, now):
        return policy.trial_plan

    status = (state.subscription_status or "").strip().lower()
    if status in policy.entitled_statuses:
        return normalize_plan(state.subscription_plan)

    return PlanId.FREE


def map_stripe_status(status: Optional[str]) -> str:
    """Collapse a Stripe subscription status to SUBSCRIBED / UNSUBSCRIBED."""
    if (status or "").strip().lower() in SUBSCRIBED_STRIPE_STATUSES:
        return "SUBSCRIBED"
    return "UNSUBSCRIBED"


def load_subscription_state(store, user_id: str) -> SubscriptionState:
    """Read the stored subscription fields for a user through the store."""
    state = store.get_user(user_id)
    if state is None:
        raise NotFoundError("User not found", details={"user_id": user_id})
    return state
