"""
Entitlement API routes.

- GET /api/entitlements: plan summary for the current user
- GET /api/entitlements/{entitlement}: one decision (countable ones use live usage)
- GET /api/plans: the public plan catalog
"""
from datetime import datetime
from typing import Callable, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from synth.api.deps import get_clock, get_current_user_id, get_policy, get_store
from synth.features.entitlements.service import authorize_feature, get_plan_summary
from synth.features.entitlements.store import EntitlementStore
from synth.features.plans.catalog import all_plans, get_plan_entitlements
from synth.features.subscriptions.service import SubscriptionPolicy


router = APIRouter(tags=["entitlements"])


class EntitlementDecisionResponse(BaseModel):
    allowed: bool
    entitlement: str
    plan: str
    ceiling: Optional[int] = None
    current_usage: Optional[int] = None
    remaining: Optional[int] = None
    reason: Optional[str] = None
    upgrade_plan: Optional[str] = None


@router.get("/api/entitlements")
def read_plan_summary(
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    policy: SubscriptionPolicy = Depends(get_policy),
):
    return get_plan_summary(store, user_id, clock(), policy)


@router.get("/api/entitlements/{entitlement}", response_model=EntitlementDecisionResponse)
def read_entitlement(
    entitlement: str,
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    policy: SubscriptionPolicy = Depends(get_policy),
):
    """Unknown names come back as a denial rather than a 404."""
    decision = authorize_feature(store, user_id, entitlement, clock(), policy)
    return EntitlementDecisionResponse(
        allowed=decision.allowed,
        entitlement=decision.entitlement,
        plan=decision.plan.value,
        ceiling=decision.ceiling,
        current_usage=decision.current_usage,
        remaining=decision.remaining,
        reason=decision.reason,
        upgrade_plan=decision.upgrade_plan.value if decision.upgrade_plan else None,
    )


@router.get("/api/plans")
def list_plans():
    return {
        "plans": [
            {
                **config.model_dump(mode="json"),
                "entitlements": {
                    entitlement.value: value
                    for entitlement, value in get_plan_entitlements(config.plan_id).items()
                },
            }
            for config in all_plans()
        ]
    }
