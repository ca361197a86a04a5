"""
Plan table and catalog tests.

Pure lookups: no database, no clock.
"""
import pytest

from synth.features.plans.catalog import (
    PLAN_TABLE,
    all_plans,
    allowed_integrations,
    coerce_entitlement,
    compare_plans,
    get_entitlement_value,
    get_plan_config,
    is_integration_allowed,
    minimum_plan_for,
    next_plan,
    normalize_plan,
    required_plan_for_integration,
)
from synth.models.entitlement import Entitlement
from synth.models.plan import PlanId


def test_every_plan_defines_every_entitlement():
    for plan in PlanId:
        assert set(PLAN_TABLE[plan]) == set(Entitlement)


@pytest.mark.parametrize(
    "plan,workflows,runs",
    [
        (PlanId.FREE, 1, 0),
        (PlanId.STARTER, 3, 5000),
        (PlanId.PRO, 10, 25000),
        (PlanId.AGENCY, 40, 100000),
    ],
)
def test_ceilings(plan, workflows, runs):
    assert get_entitlement_value(plan, Entitlement.MAX_ACTIVE_WORKFLOWS) == workflows
    assert get_entitlement_value(plan, Entitlement.MAX_RUNS_PER_MONTH) == runs


def test_feature_flags_by_tier():
    assert get_entitlement_value(PlanId.FREE, Entitlement.ALLOW_WORKFLOW_EXECUTION) is False
    assert get_entitlement_value(PlanId.STARTER, Entitlement.ALLOW_WORKFLOW_EXECUTION) is True
    assert get_entitlement_value(PlanId.STARTER, Entitlement.CUSTOM_WEBHOOKS) is False
    assert get_entitlement_value(PlanId.PRO, Entitlement.CUSTOM_WEBHOOKS) is True
    assert get_entitlement_value(PlanId.PRO, Entitlement.WHITE_LABEL) is False
    assert get_entitlement_value(PlanId.AGENCY, Entitlement.API_ACCESS) is True


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("pro", PlanId.PRO),
        ("  PRO ", PlanId.PRO),
        ("Starter", PlanId.STARTER),
        ("growth", PlanId.PRO),
        ("SCALE", PlanId.AGENCY),
        ("agency", PlanId.AGENCY),
        (None, PlanId.FREE),
        ("", PlanId.FREE),
        ("none", PlanId.FREE),
        ("enterprise_legacy", PlanId.FREE),
        ("pro_plus", PlanId.FREE),
    ],
)
def test_normalize_plan(raw, expected):
    assert normalize_plan(raw) == expected


def test_unknown_plan_gets_free_values():
    for entitlement in Entitlement:
        assert get_entitlement_value("enterprise_legacy", entitlement) == PLAN_TABLE[PlanId.FREE][entitlement]


def test_entitlement_names_accepted_as_strings():
    assert get_entitlement_value("pro", "maxActiveWorkflows") == 10
    assert get_entitlement_value("agency", "maxRunsPerMonth") == 100000
    assert get_entitlement_value("starter", "allowWorkflowExecution") is True
    assert coerce_entitlement("apiAccess") is Entitlement.API_ACCESS


def test_unknown_entitlement_name_is_false():
    assert get_entitlement_value("pro", "bogus") is False
    assert get_entitlement_value("agency", "") is False
    assert coerce_entitlement("bogus") is None


def test_plans_ordered_by_rank():
    assert [cfg.plan_id for cfg in all_plans()] == [PlanId.FREE, PlanId.STARTER, PlanId.PRO, PlanId.AGENCY]
    assert get_plan_config("pro").monthly_price_usd == 149
    assert get_plan_config("agency").log_retention_days == 90


def test_compare_and_next_plan():
    assert compare_plans("free", "pro") == "upgrade"
    assert compare_plans("agency", "starter") == "downgrade"
    assert compare_plans("growth", "pro") == "same"
    assert next_plan(PlanId.STARTER) == PlanId.PRO
    assert next_plan(PlanId.AGENCY) is None


def test_minimum_plan_for():
    assert minimum_plan_for(Entitlement.ALLOW_WORKFLOW_EXECUTION) == PlanId.STARTER
    assert minimum_plan_for(Entitlement.TEAM_COLLABORATION) == PlanId.PRO
    assert minimum_plan_for(Entitlement.WHITE_LABEL) == PlanId.AGENCY
    assert minimum_plan_for(Entitlement.MAX_ACTIVE_WORKFLOWS) == PlanId.FREE
    assert minimum_plan_for(Entitlement.MAX_RUNS_PER_MONTH) == PlanId.STARTER


def test_integration_catalog_is_cumulative():
    assert allowed_integrations(PlanId.FREE) == frozenset()
    assert allowed_integrations(PlanId.STARTER) < allowed_integrations(PlanId.PRO)
    assert allowed_integrations(PlanId.PRO) < allowed_integrations(PlanId.AGENCY)


def test_integration_lookup():
    assert is_integration_allowed("starter", "Slack")
    assert not is_integration_allowed("starter", "notion")
    assert is_integration_allowed("pro", "notion")
    assert not is_integration_allowed("pro", "shopify")
    assert required_plan_for_integration("gmail") == PlanId.STARTER
    assert required_plan_for_integration("hubspot-crm") == PlanId.PRO
    assert required_plan_for_integration("quickbooks") == PlanId.AGENCY
    assert required_plan_for_integration("myspace") is None
