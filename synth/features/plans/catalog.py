"""
synth/features/plans/catalog.py

Plan table and integration catalog.

Handles:
- Plan → entitlement → value lookups (pure, no I/O)
- Plan name normalization (aliases, unknown names fail closed to free)
- Plan ordering (upgrade/downgrade, next tier, minimum tier for a capability)
- Integration availability per plan
"""

from typing import Dict, FrozenSet, List, Mapping, Optional, Union

from synth.models.entitlement import Entitlement, EntitlementValue
from synth.models.plan import PlanConfig, PlanId


E = Entitlement

# None as a ceiling means unlimited. Every plan lists every entitlement.
PLAN_TABLE: Dict[PlanId, Dict[Entitlement, EntitlementValue]] = {
    PlanId.FREE: {
        E.MAX_ACTIVE_WORKFLOWS: 1,
        E.MAX_RUNS_PER_MONTH: 0,
        E.ALLOW_WORKFLOW_EXECUTION: False,
        E.ADVANCED_INTEGRATIONS: False,
        E.CUSTOM_INTEGRATIONS: False,
        E.CUSTOM_WEBHOOKS: False,
        E.TEAM_COLLABORATION: False,
        E.WHITE_LABEL: False,
        E.API_ACCESS: False,
    },
    PlanId.STARTER: {
        E.MAX_ACTIVE_WORKFLOWS: 3,
        E.MAX_RUNS_PER_MONTH: 5000,
        E.ALLOW_WORKFLOW_EXECUTION: True,
        E.ADVANCED_INTEGRATIONS: False,
        E.CUSTOM_INTEGRATIONS: False,
        E.CUSTOM_WEBHOOKS: False,
        E.TEAM_COLLABORATION: False,
        E.WHITE_LABEL: False,
        E.API_ACCESS: False,
    },
    PlanId.PRO: {
        E.MAX_ACTIVE_WORKFLOWS: 10,
        E.MAX_RUNS_PER_MONTH: 25000,
        E.ALLOW_WORKFLOW_EXECUTION: True,
        E.ADVANCED_INTEGRATIONS: True,
        E.CUSTOM_INTEGRATIONS: False,
        E.CUSTOM_WEBHOOKS: True,
        E.TEAM_COLLABORATION: True,
        E.WHITE_LABEL: False,
        E.API_ACCESS: False,
    },
    PlanId.AGENCY: {
        E.MAX_ACTIVE_WORKFLOWS: 40,
        E.MAX_RUNS_PER_MONTH: 100000,
        E.ALLOW_WORKFLOW_EXECUTION: True,
        E.ADVANCED_INTEGRATIONS: True,
        E.CUSTOM_INTEGRATIONS: True,
        E.CUSTOM_WEBHOOKS: True,
        E.TEAM_COLLABORATION: True,
        E.WHITE_LABEL: True,
        E.API_ACCESS: True,
    },
}

PLAN_CONFIGS: Dict[PlanId, PlanConfig] = {
    PlanId.FREE: PlanConfig(
        plan_id=PlanId.FREE,
        display_name="Free",
        rank=0,
        monthly_price_usd=0,
        log_retention_days=0,
        support_tier="none",
        integration_tier="none",
    ),
    PlanId.STARTER: PlanConfig(
        plan_id=PlanId.STARTER,
        display_name="Starter",
        rank=1,
        monthly_price_usd=49,
        log_retention_days=7,
        support_tier="email",
        integration_tier="basic",
    ),
    PlanId.PRO: PlanConfig(
        plan_id=PlanId.PRO,
        display_name="Pro",
        rank=2,
        monthly_price_usd=149,
        log_retention_days=30,
        support_tier="priority",
        integration_tier="all",
    ),
    PlanId.AGENCY: PlanConfig(
        plan_id=PlanId.AGENCY,
        display_name="Agency",
        rank=3,
        monthly_price_usd=399,
        log_retention_days=90,
        support_tier="dedicated",
        integration_tier="all+custom",
    ),
}

# Marketing names used on the pricing page and in older rows
PLAN_ALIASES: Dict[str, PlanId] = {
    "growth": PlanId.PRO,
    "scale": PlanId.AGENCY,
}

TOP_PLAN = PlanId.AGENCY

_STARTER_INTEGRATIONS = frozenset({
    "gmail",
    "google-calendar",
    "google-sheets",
    "google-drive",
    "google-forms",
    "email-smtp",
    "webhooks",
    "slack",
    "discord",
    "zoom",
    "microsoft-outlook",
    "microsoft-onedrive",
    "microsoft-todo",
    "evernote",
    "todoist",
})

_PRO_INTEGRATIONS = _STARTER_INTEGRATIONS | frozenset({
    "notion",
    "airtable",
    "trello",
    "clickup",
    "monday",
    "asana",
    "dropbox-paper",
    "dropbox-core",
    "canva",
    "typeform",
    "hubspot-crm",
    "salesforce-essentials",
    "intercom",
    "calendly",
    "webflow",
})

_AGENCY_INTEGRATIONS = _PRO_INTEGRATIONS | frozenset({
    "stripe",
    "quickbooks",
    "xero",
    "shopify",
    "woocommerce",
    "custom-http-integrations",
    "highlevel",
    "make-connector",
    "linkedin-lead-gen",
    "meta-lead-ads",
})

INTEGRATIONS_BY_PLAN: Dict[PlanId, FrozenSet[str]] = {
    PlanId.FREE: frozenset(),
    PlanId.STARTER: _STARTER_INTEGRATIONS,
    PlanId.PRO: _PRO_INTEGRATIONS,
    PlanId.AGENCY: _AGENCY_INTEGRATIONS,
}


def normalize_plan(raw: Union[PlanId, str, None]) -> PlanId:
    """
    Map a stored plan name onto a PlanId.

    Exact names and the known aliases match case-insensitively. Anything else
    (None, "", "none", legacy names) resolves to free so a typo or a retired
    plan can never grant access.
    """
    if isinstance(raw, PlanId):
        return raw
    if not raw:
        return PlanId.FREE
    normalized = raw.strip().lower()
    try:
        return PlanId(normalized)
    except ValueError:
        return PLAN_ALIASES.get(normalized, PlanId.FREE)


def is_known_plan(raw: Optional[str]) -> bool:
    if not raw:
        return False
    normalized = raw.strip().lower()
    return normalized in PLAN_ALIASES or normalized in {p.value for p in PlanId}


def get_plan_entitlements(
    plan: Union[PlanId, str, None],
    table: Optional[Mapping[PlanId, Mapping[Entitlement, EntitlementValue]]] = None,
) -> Mapping[Entitlement, EntitlementValue]:
    """All entitlement values for a plan; unknown plans get free's values."""
    source = table if table is not None else PLAN_TABLE
    values = source.get(normalize_plan(plan))
    if values is None:
        values = source.get(PlanId.FREE, {})
    return values


def coerce_entitlement(entitlement: Union[Entitlement, str, None]) -> Optional[Entitlement]:
    """Entitlement member for a name, or None when the name is not one."""
    if isinstance(entitlement, Entitlement):
        return entitlement
    try:
        return Entitlement(entitlement)
    except ValueError:
        return None


def get_entitlement_value(
    plan: Union[PlanId, str, None],
    entitlement: Union[Entitlement, str],
    table: Optional[Mapping[PlanId, Mapping[Entitlement, EntitlementValue]]] = None,
) -> EntitlementValue:
    """
    Value of one entitlement for one plan.

    Returns bool for feature flags, int for ceilings, None for unlimited.
    Unknown plans fall back to free. Unknown entitlement names are False.
    """
    resolved = coerce_entitlement(entitlement)
    if resolved is None:
        return False
    return get_plan_entitlements(plan, table).get(resolved, 0 if resolved.is_countable else False)


def get_plan_config(plan: Union[PlanId, str, None]) -> PlanConfig:
    return PLAN_CONFIGS[normalize_plan(plan)]


def all_plans() -> List[PlanConfig]:
    """All plans ordered by rank (useful for pricing pages)."""
    return sorted(PLAN_CONFIGS.values(), key=lambda cfg: cfg.rank)


def compare_plans(current: Union[PlanId, str, None], target: Union[PlanId, str, None]) -> str:
    """Return "upgrade", "downgrade" or "same" moving from current to target."""
    current_rank = get_plan_config(current).rank
    target_rank = get_plan_config(target).rank
    if current_rank == target_rank:
        return "same"
    return "upgrade" if target_rank > current_rank else "downgrade"


def next_plan(plan: Union[PlanId, str, None]) -> Optional[PlanId]:
    """The tier directly above `plan`, or None at the top."""
    rank = get_plan_config(plan).rank
    for cfg in all_plans():
        if cfg.rank == rank + 1:
            return cfg.plan_id
    return None


def minimum_plan_for(entitlement: Entitlement) -> Optional[PlanId]:
    """
    Lowest plan granting an entitlement.

    For flags that is the first plan with True; for ceilings the first plan
    with a non-zero (or unlimited) ceiling.
    """
    for cfg in all_plans():
        value = PLAN_TABLE[cfg.plan_id].get(entitlement)
        if isinstance(value, bool):
            if value:
                return cfg.plan_id
            continue
        if value is None or value > 0:
            return cfg.plan_id
    return None


def allowed_integrations(plan: Union[PlanId, str, None]) -> FrozenSet[str]:
    return INTEGRATIONS_BY_PLAN.get(normalize_plan(plan), frozenset())


def _normalize_service(service: str) -> str:
    return (service or "").strip().lower()


def is_integration_allowed(plan: Union[PlanId, str, None], service: str) -> bool:
    return _normalize_service(service) in allowed_integrations(plan)


def required_plan_for_integration(service: str) -> Optional[PlanId]:
    """Lowest plan that unlocks an integration, or None if no plan does."""
    slug = _normalize_service(service)
    for cfg in all_plans():
        if slug in INTEGRATIONS_BY_PLAN[cfg.plan_id]:
            return cfg.plan_id
    return None
