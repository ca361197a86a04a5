"""
synth/features/entitlements/service.py

Entitlement resolver and request-level gates.

Handles:
- Pure decisions: (effective plan, entitlement, usage) -> EntitlementDecision
- Gates for creating, activating and running workflows, and for features
  and integrations, composing subscription state, usage counts and the resolver
- Plan summary for the dashboard

Denials are returned as values. The API layer turns a denial into a 403.
"""

from datetime import datetime
from typing import Any, Dict, Optional, Union
import logging

from synth.core.clock import as_utc, now_or_utc
from synth.features.plans.catalog import (
    INTEGRATIONS_BY_PLAN,
    coerce_entitlement,
    get_entitlement_value,
    get_plan_config,
    get_plan_entitlements,
    is_integration_allowed,
    minimum_plan_for,
    next_plan,
    normalize_plan,
    required_plan_for_integration,
)
from synth.features.subscriptions.service import (
    SubscriptionPolicy,
    is_in_trial,
    load_subscription_state,
    resolve_effective_plan,
)
from synth.features.usage.service import (
    count_active_workflows,
    count_executions_this_month,
    count_workflows,
    start_of_next_month,
)
from synth.models.entitlement import Entitlement, EntitlementDecision
from synth.models.plan import PlanId


logger = logging.getLogger(__name__)

FEATURE_LABELS = {
    Entitlement.ALLOW_WORKFLOW_EXECUTION: "Workflow execution",
    Entitlement.ADVANCED_INTEGRATIONS: "Advanced integrations",
    Entitlement.CUSTOM_INTEGRATIONS: "Custom integrations",
    Entitlement.CUSTOM_WEBHOOKS: "Custom webhooks",
    Entitlement.TEAM_COLLABORATION: "Team collaboration",
    Entitlement.WHITE_LABEL: "White-label branding",
    Entitlement.API_ACCESS: "API access",
}

FEATURE_ACTIONS = {
    Entitlement.ALLOW_WORKFLOW_EXECUTION: "execute workflows",
}


def _plan_name(plan: Optional[PlanId]) -> str:
    if plan is None:
        return ""
    return get_plan_config(plan).display_name


def _boolean_upgrade_plan(plan: PlanId, entitlement: Entitlement) -> Optional[PlanId]:
    target = minimum_plan_for(entitlement)
    if target is None or get_plan_config(target).rank <= get_plan_config(plan).rank:
        return None
    return target


def _boolean_reason(plan: PlanId, entitlement: Entitlement, upgrade_plan: Optional[PlanId]) -> str:
    label = FEATURE_LABELS.get(entitlement, entitlement.value)
    message = f"{label} is not available on the {_plan_name(plan)} plan."
    if upgrade_plan is None:
        return message
    action = FEATURE_ACTIONS.get(entitlement, f"use {label.lower()}")
    return f"{message} Please upgrade to {_plan_name(upgrade_plan)} to {action}."


def _countable_reason(
    plan: PlanId,
    entitlement: Entitlement,
    ceiling: int,
    current_usage: int,
    upgrade_plan: Optional[PlanId],
) -> str:
    if entitlement == Entitlement.MAX_ACTIVE_WORKFLOWS:
        message = (
            f"Workflow limit reached. You have {current_usage} workflow(s). "
            f"Maximum allowed: {ceiling}."
        )
        if upgrade_plan is None:
            return f"{message} Please contact support to raise your limit."
        return f"{message} Please upgrade to {_plan_name(upgrade_plan)} to create more workflows."

    if entitlement == Entitlement.MAX_RUNS_PER_MONTH:
        message = (
            f"You have reached your monthly execution limit ({ceiling} runs) "
            f"for the {_plan_name(plan)} plan."
        )
        if upgrade_plan is None:
            return f"{message} Your limit resets next month."
        return f"{message} Please upgrade to increase your limit or wait until next month."

    return f"Limit reached for {entitlement.value}: {current_usage} of {ceiling} used."


def _log_decision(decision: EntitlementDecision, user_id: Optional[str] = None) -> None:
    extra = {
        "user_id": user_id,
        "entitlement": decision.entitlement,
        "plan": decision.plan.value,
        "ceiling": decision.ceiling,
        "current_usage": decision.current_usage,
    }
    if decision.allowed:
        logger.info("[entitlement] ALLOWED", extra=extra)
    else:
        logger.warning("[entitlement] DENIED", extra={**extra, "reason": decision.reason})


def check_entitlement(
    effective_plan: Union[PlanId, str, None],
    entitlement: Union[Entitlement, str],
    current_usage: Optional[int] = None,
    *,
    user_id: Optional[str] = None,
) -> EntitlementDecision:
    """
    Decide whether `effective_plan` may use `entitlement`.

    Boolean entitlements are allowed iff the plan table says True. Countable
    entitlements are allowed iff the ceiling is unlimited or
    current_usage < ceiling; a countable check without a usage figure is
    denied. Unknown entitlement names are denied, never raised.

    Same inputs always give the same decision.
    """
    plan = normalize_plan(effective_plan)
    resolved = coerce_entitlement(entitlement)

    if resolved is None:
        name = entitlement.value if isinstance(entitlement, Entitlement) else str(entitlement)
        decision = EntitlementDecision(
            allowed=False,
            entitlement=name,
            plan=plan,
            current_usage=current_usage,
            reason=f"Unknown entitlement '{name}'. This action is not available.",
        )
        logger.warning(
            "[entitlement] unknown entitlement name",
            extra={"user_id": user_id, "entitlement": name, "plan": plan.value},
        )
        return decision

    value = get_entitlement_value(plan, resolved)

    if not resolved.is_countable:
        allowed = value is True
        upgrade_plan = None if allowed else _boolean_upgrade_plan(plan, resolved)
        decision = EntitlementDecision(
            allowed=allowed,
            entitlement=resolved.value,
            plan=plan,
            reason=None if allowed else _boolean_reason(plan, resolved, upgrade_plan),
            upgrade_plan=upgrade_plan,
        )
        _log_decision(decision, user_id)
        return decision

    ceiling = None if value is None else int(value)

    if current_usage is None and ceiling is not None:
        decision = EntitlementDecision(
            allowed=False,
            entitlement=resolved.value,
            plan=plan,
            ceiling=ceiling,
            reason=f"Current usage for {resolved.value} could not be determined.",
        )
        _log_decision(decision, user_id)
        return decision

    allowed = ceiling is None or current_usage < ceiling
    upgrade_plan = None if allowed else next_plan(plan)
    decision = EntitlementDecision(
        allowed=allowed,
        entitlement=resolved.value,
        plan=plan,
        ceiling=ceiling,
        current_usage=current_usage,
        reason=None if allowed else _countable_reason(plan, resolved, ceiling, current_usage, upgrade_plan),
        upgrade_plan=upgrade_plan,
    )
    _log_decision(decision, user_id)
    return decision


def get_effective_plan(
    store,
    user_id: str,
    now: Optional[datetime] = None,
    policy: Optional[SubscriptionPolicy] = None,
) -> PlanId:
    state = load_subscription_state(store, user_id)
    return resolve_effective_plan(state, now_or_utc(now), policy)


def _current_usage(store, user_id: str, entitlement: Entitlement, now: datetime) -> Optional[int]:
    if entitlement == Entitlement.MAX_ACTIVE_WORKFLOWS:
        return count_active_workflows(store, user_id)
    if entitlement == Entitlement.MAX_RUNS_PER_MONTH:
        return count_executions_this_month(store, user_id, now)
    return None


def authorize_workflow_activation(
    store,
    user_id: str,
    now: Optional[datetime] = None,
    policy: Optional[SubscriptionPolicy] = None,
) -> EntitlementDecision:
    """May the user turn one more workflow on?"""
    current = now_or_utc(now)
    plan = get_effective_plan(store, user_id, current, policy)
    usage = count_active_workflows(store, user_id)
    return check_entitlement(plan, Entitlement.MAX_ACTIVE_WORKFLOWS, usage, user_id=user_id)


def authorize_workflow_creation(
    store,
    user_id: str,
    now: Optional[datetime] = None,
    policy: Optional[SubscriptionPolicy] = None,
) -> EntitlementDecision:
    """
    May the user store one more workflow?

    The workflow ceiling bounds stored workflows as well as active ones, so
    drafts count here whether or not they are switched on.
    """
    plan = get_effective_plan(store, user_id, now_or_utc(now), policy)
    usage = count_workflows(store, user_id)
    return check_entitlement(plan, Entitlement.MAX_ACTIVE_WORKFLOWS, usage, user_id=user_id)


def authorize_workflow_execution(
    store,
    user_id: str,
    now: Optional[datetime] = None,
    policy: Optional[SubscriptionPolicy] = None,
) -> EntitlementDecision:
    """
    May the user run a workflow right now?

    Execution must be enabled on the plan and the month's run count must be
    under the ceiling. The first failing check is returned.
    """
    current = now_or_utc(now)
    plan = get_effective_plan(store, user_id, current, policy)

    execution = check_entitlement(plan, Entitlement.ALLOW_WORKFLOW_EXECUTION, user_id=user_id)
    if not execution.allowed:
        return execution

    runs = count_executions_this_month(store, user_id, current)
    return check_entitlement(plan, Entitlement.MAX_RUNS_PER_MONTH, runs, user_id=user_id)


def authorize_feature(
    store,
    user_id: str,
    entitlement: Union[Entitlement, str],
    now: Optional[datetime] = None,
    policy: Optional[SubscriptionPolicy] = None,
) -> EntitlementDecision:
    """Single entitlement check for a user; countable ones use current usage."""
    current = now_or_utc(now)
    plan = get_effective_plan(store, user_id, current, policy)
    resolved = coerce_entitlement(entitlement)
    usage = _current_usage(store, user_id, resolved, current) if resolved is not None else None
    return check_entitlement(plan, entitlement, usage, user_id=user_id)


def check_integration(plan: Union[PlanId, str, None], service: str) -> EntitlementDecision:
    """Is an integration in the plan's catalog?"""
    plan_id = normalize_plan(plan)
    slug = (service or "").strip().lower()
    name = f"integration:{slug}"

    if is_integration_allowed(plan_id, slug):
        return EntitlementDecision(allowed=True, entitlement=name, plan=plan_id)

    required = required_plan_for_integration(slug)
    if required is None:
        reason = f"Unknown integration '{slug}'."
    elif plan_id == PlanId.FREE:
        reason = (
            "External app connections are not available on the Free plan. "
            f"Please upgrade to {_plan_name(required)} to connect integrations."
        )
    else:
        reason = (
            "This integration is not available on your current plan. "
            f"Please upgrade to {_plan_name(required)} or higher."
        )
    return EntitlementDecision(
        allowed=False,
        entitlement=name,
        plan=plan_id,
        reason=reason,
        upgrade_plan=required,
    )


def authorize_integration(
    store,
    user_id: str,
    service: str,
    now: Optional[datetime] = None,
    policy: Optional[SubscriptionPolicy] = None,
) -> EntitlementDecision:
    plan = get_effective_plan(store, user_id, now_or_utc(now), policy)
    decision = check_integration(plan, service)
    _log_decision(decision, user_id)
    return decision


def _usage_block(used: int, limit: Optional[int]) -> Dict[str, Any]:
    return {
        "used": used,
        "limit": limit,
        "remaining": None if limit is None else max(0, limit - used),
    }


def get_plan_summary(
    store,
    user_id: str,
    now: Optional[datetime] = None,
    policy: Optional[SubscriptionPolicy] = None,
) -> Dict[str, Any]:
    """Effective plan, trial flag, usage against ceilings and feature flags."""
    current = now_or_utc(now)
    state = load_subscription_state(store, user_id)
    plan = resolve_effective_plan(state, current, policy)
    config = get_plan_config(plan)
    values = get_plan_entitlements(plan)

    active_workflows = count_active_workflows(store, user_id)
    runs_this_month = count_executions_this_month(store, user_id, current)

    features = {
        entitlement.value: values.get(entitlement) is True
        for entitlement in Entitlement
        if not entitlement.is_countable
    }

    upgrade = next_plan(plan)
    return {
        "user_id": user_id,
        "plan": plan.value,
        "plan_name": config.display_name,
        "stored_plan": state.subscription_plan,
        "subscription_status": state.subscription_status,
        "in_trial": is_in_trial(state, current),
        "trial_ends_at": as_utc(state.trial_ends_at).isoformat() if state.trial_ends_at else None,
        "usage": {
            Entitlement.MAX_ACTIVE_WORKFLOWS.value: _usage_block(
                active_workflows, values.get(Entitlement.MAX_ACTIVE_WORKFLOWS)
            ),
            Entitlement.MAX_RUNS_PER_MONTH.value: _usage_block(
                runs_this_month, values.get(Entitlement.MAX_RUNS_PER_MONTH)
            ),
        },
        "usage_resets_at": start_of_next_month(current).isoformat(),
        "features": features,
        "log_retention_days": config.log_retention_days,
        "support_tier": config.support_tier,
        "integration_count": len(INTEGRATIONS_BY_PLAN.get(plan, ())),
        "upgrade_plan": upgrade.value if upgrade else None,
    }
