"""
Entitlement resolver tests.

check_entitlement is pure: plan + entitlement + usage in, decision out.
"""
import logging
from datetime import datetime, timedelta, timezone

import pytest

from synth.features.entitlements.service import check_entitlement
from synth.features.plans.catalog import PLAN_TABLE
from synth.features.subscriptions.service import SubscriptionPolicy, resolve_effective_plan
from synth.models.entitlement import Entitlement
from synth.models.plan import PlanId
from synth.models.subscription import SubscriptionState


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
BOOLEAN_ENTITLEMENTS = [e for e in Entitlement if not e.is_countable]
COUNTABLE_ENTITLEMENTS = [e for e in Entitlement if e.is_countable]


@pytest.mark.parametrize("plan", list(PlanId))
@pytest.mark.parametrize("entitlement", BOOLEAN_ENTITLEMENTS)
def test_boolean_matches_plan_table(plan, entitlement):
    decision = check_entitlement(plan, entitlement)
    assert decision.allowed == (PLAN_TABLE[plan][entitlement] is True)
    assert decision.ceiling is None
    assert (decision.reason is None) == decision.allowed


@pytest.mark.parametrize("plan", list(PlanId))
@pytest.mark.parametrize("entitlement", COUNTABLE_ENTITLEMENTS)
def test_countable_allows_strictly_below_ceiling(plan, entitlement):
    ceiling = PLAN_TABLE[plan][entitlement]
    for usage in {0, 1, max(0, ceiling - 1), ceiling, ceiling + 1}:
        decision = check_entitlement(plan, entitlement, usage)
        assert decision.ceiling == ceiling
        assert decision.allowed == (usage < ceiling)


def test_decision_is_idempotent():
    first = check_entitlement(PlanId.STARTER, Entitlement.MAX_ACTIVE_WORKFLOWS, 2)
    second = check_entitlement(PlanId.STARTER, Entitlement.MAX_ACTIVE_WORKFLOWS, 2)
    assert first == second
    assert first.remaining == 1


def test_starter_workflow_limit_reason():
    decision = check_entitlement(PlanId.STARTER, Entitlement.MAX_ACTIVE_WORKFLOWS, 3)
    assert decision.allowed is False
    assert decision.ceiling == 3
    assert decision.upgrade_plan == PlanId.PRO
    assert decision.reason == (
        "Workflow limit reached. You have 3 workflow(s). Maximum allowed: 3. "
        "Please upgrade to Pro to create more workflows."
    )


def test_free_execution_reason():
    decision = check_entitlement(PlanId.FREE, Entitlement.ALLOW_WORKFLOW_EXECUTION)
    assert decision.allowed is False
    assert decision.upgrade_plan == PlanId.STARTER
    assert decision.reason == (
        "Workflow execution is not available on the Free plan. "
        "Please upgrade to Starter to execute workflows."
    )


def test_monthly_run_limit_reason():
    decision = check_entitlement(PlanId.STARTER, Entitlement.MAX_RUNS_PER_MONTH, 5000)
    assert decision.allowed is False
    assert decision.reason == (
        "You have reached your monthly execution limit (5000 runs) for the Starter plan. "
        "Please upgrade to increase your limit or wait until next month."
    )


def test_top_tier_limit_has_no_upgrade():
    decision = check_entitlement(PlanId.AGENCY, Entitlement.MAX_ACTIVE_WORKFLOWS, 40)
    assert decision.allowed is False
    assert decision.upgrade_plan is None
    assert "40" in decision.reason


def test_countable_without_usage_is_denied():
    decision = check_entitlement(PlanId.AGENCY, Entitlement.MAX_RUNS_PER_MONTH)
    assert decision.allowed is False
    assert decision.reason


def test_unknown_entitlement_is_denied_not_raised(caplog):
    with caplog.at_level(logging.WARNING):
        decision = check_entitlement(PlanId.AGENCY, "teleportation")
    assert decision.allowed is False
    assert decision.entitlement == "teleportation"
    assert "teleportation" in decision.reason
    assert any("unknown entitlement" in r.getMessage() for r in caplog.records)


def test_entitlement_given_by_name():
    assert check_entitlement("pro", "customWebhooks").allowed is True
    assert check_entitlement("starter", "customWebhooks").allowed is False


def test_unknown_plan_resolves_to_free_values():
    decision = check_entitlement("enterprise_legacy", Entitlement.MAX_ACTIVE_WORKFLOWS, 1)
    assert decision.plan == PlanId.FREE
    assert decision.ceiling == 1
    assert decision.allowed is False
    assert check_entitlement("enterprise_legacy", Entitlement.ALLOW_WORKFLOW_EXECUTION).allowed is False


def test_denials_are_logged(caplog):
    with caplog.at_level(logging.INFO):
        check_entitlement(PlanId.FREE, Entitlement.API_ACCESS, user_id="user_log")
    denied = [r for r in caplog.records if r.getMessage() == "[entitlement] DENIED"]
    assert denied
    assert denied[0].user_id == "user_log"
    assert denied[0].entitlement == "apiAccess"


class TestScenarios:
    """End-to-end: stored subscription -> effective plan -> decision."""

    policy = SubscriptionPolicy()

    def _decide(self, state, entitlement, usage=None):
        plan = resolve_effective_plan(state, NOW, self.policy)
        return plan, check_entitlement(plan, entitlement, usage)

    def test_free_user_in_trial_can_execute(self):
        state = SubscriptionState(
            user_id="u", subscription_plan="free", trial_ends_at=NOW + timedelta(days=2)
        )
        plan, decision = self._decide(state, Entitlement.ALLOW_WORKFLOW_EXECUTION)
        assert plan == PlanId.AGENCY
        assert decision.allowed is True

    def test_past_due_pro_loses_pro_features(self):
        state = SubscriptionState(user_id="u", subscription_plan="pro", subscription_status="past_due")
        plan, decision = self._decide(state, Entitlement.TEAM_COLLABORATION)
        assert plan == PlanId.FREE
        assert decision.allowed is False
        _, webhooks = self._decide(state, Entitlement.CUSTOM_WEBHOOKS)
        assert webhooks.allowed is False

    @pytest.mark.parametrize("status", ["canceled", "past_due", "incomplete", "unpaid"])
    def test_lapsed_statuses_get_free_ceilings(self, status):
        state = SubscriptionState(user_id="u", subscription_plan="agency", subscription_status=status)
        plan, decision = self._decide(state, Entitlement.MAX_ACTIVE_WORKFLOWS, 1)
        assert plan == PlanId.FREE
        assert decision.ceiling == 1
        assert decision.allowed is False

    def test_legacy_plan_name_active(self):
        state = SubscriptionState(user_id="u", subscription_plan="enterprise_legacy", subscription_status="active")
        plan, decision = self._decide(state, Entitlement.MAX_ACTIVE_WORKFLOWS, 0)
        assert plan == PlanId.FREE
        assert decision.allowed is True
        assert decision.ceiling == 1
