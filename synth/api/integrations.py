"""
Integration catalog routes.

- GET  /api/integrations: integrations unlocked by the user's plan
- POST /api/integrations/{service}/check: 403 when the plan does not include it
"""
from datetime import datetime
from typing import Callable

from fastapi import APIRouter, Depends

from synth.api.deps import get_clock, get_current_user_id, get_policy, get_store
from synth.core.errors import EntitlementDeniedError
from synth.features.entitlements.service import authorize_integration, get_effective_plan
from synth.features.entitlements.store import EntitlementStore
from synth.features.plans.catalog import allowed_integrations
from synth.features.subscriptions.service import SubscriptionPolicy


router = APIRouter(prefix="/api/integrations", tags=["integrations"])


@router.get("")
def list_allowed(
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    policy: SubscriptionPolicy = Depends(get_policy),
):
    plan = get_effective_plan(store, user_id, clock(), policy)
    return {"plan": plan.value, "integrations": sorted(allowed_integrations(plan))}


@router.post("/{service}/check")
def check(
    service: str,
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    policy: SubscriptionPolicy = Depends(get_policy),
):
    decision = authorize_integration(store, user_id, service, clock(), policy)
    if not decision.allowed:
        raise EntitlementDeniedError(decision, code="integration_not_allowed")
    return {"allowed": True, "service": service.strip().lower(), "plan": decision.plan.value}
