"""Request-level gates composed over an in-memory store."""
from datetime import datetime, timedelta, timezone

import pytest

from synth.core.errors import NotFoundError
from synth.features.entitlements.service import (
    authorize_feature,
    authorize_integration,
    authorize_workflow_activation,
    authorize_workflow_creation,
    authorize_workflow_execution,
    get_plan_summary,
)
from synth.features.subscriptions.service import SubscriptionPolicy
from synth.models.entitlement import Entitlement
from synth.models.plan import PlanId


NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
POLICY = SubscriptionPolicy()


def test_activation_under_limit(fake_store):
    fake_store.add_user("u1", "starter", "active")
    fake_store.add_workflows("u1", active=2, inactive=5)
    decision = authorize_workflow_activation(fake_store, "u1", NOW, POLICY)
    assert decision.allowed is True
    assert decision.current_usage == 2


def test_activation_at_limit(fake_store):
    fake_store.add_user("u1", "starter", "active")
    fake_store.add_workflows("u1", active=3)
    decision = authorize_workflow_activation(fake_store, "u1", NOW, POLICY)
    assert decision.allowed is False
    assert "You have 3 workflow(s)" in decision.reason
    assert "Maximum allowed: 3" in decision.reason


def test_creation_counts_drafts(fake_store):
    fake_store.add_user("u1", "starter", "active")
    fake_store.add_workflows("u1", active=1, inactive=2)
    decision = authorize_workflow_creation(fake_store, "u1", NOW, POLICY)
    assert decision.allowed is False
    assert decision.current_usage == 3
    assert decision.upgrade_plan == PlanId.PRO

    # The same user may still switch a draft on
    assert authorize_workflow_activation(fake_store, "u1", NOW, POLICY).allowed is True


def test_trial_user_creates_under_agency_ceiling(fake_store):
    fake_store.add_user("u1", "free", None, trial_ends_at=NOW + timedelta(days=1))
    fake_store.add_workflows("u1", inactive=39)
    assert authorize_workflow_creation(fake_store, "u1", NOW, POLICY).allowed is True


def test_execution_denied_on_free_before_counting(fake_store):
    fake_store.add_user("u1", "free", None)
    decision = authorize_workflow_execution(fake_store, "u1", NOW, POLICY)
    assert decision.allowed is False
    assert decision.entitlement == Entitlement.ALLOW_WORKFLOW_EXECUTION.value


def test_execution_counts_only_current_month(fake_store):
    fake_store.add_user("u1", "starter", "active")
    last_month = datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc)
    fake_store.add_executions("u1", *([last_month] * 6000))
    fake_store.add_executions("u1", *([NOW - timedelta(hours=1)] * 10))

    decision = authorize_workflow_execution(fake_store, "u1", NOW, POLICY)
    assert decision.allowed is True
    assert decision.current_usage == 10


def test_execution_at_monthly_limit(fake_store):
    fake_store.add_user("u1", "starter", "active")
    fake_store.add_executions("u1", *([datetime(2026, 3, 1, tzinfo=timezone.utc)] * 5000))
    decision = authorize_workflow_execution(fake_store, "u1", NOW, POLICY)
    assert decision.allowed is False
    assert "(5000 runs)" in decision.reason


def test_trial_user_gets_agency_gates(fake_store):
    fake_store.add_user("u1", "free", None, trial_ends_at=NOW + timedelta(days=2))
    fake_store.add_workflows("u1", active=20)
    assert authorize_workflow_activation(fake_store, "u1", NOW, POLICY).allowed is True
    assert authorize_workflow_execution(fake_store, "u1", NOW, POLICY).allowed is True


def test_feature_gate_uses_live_usage_for_countables(fake_store):
    fake_store.add_user("u1", "pro", "active")
    fake_store.add_workflows("u1", active=4)
    decision = authorize_feature(fake_store, "u1", "maxActiveWorkflows", NOW, POLICY)
    assert decision.allowed is True
    assert decision.current_usage == 4
    assert decision.remaining == 6


def test_feature_gate_boolean(fake_store):
    fake_store.add_user("u1", "pro", "past_due")
    decision = authorize_feature(fake_store, "u1", Entitlement.TEAM_COLLABORATION, NOW, POLICY)
    assert decision.allowed is False
    assert decision.plan == PlanId.FREE


def test_integration_gate(fake_store):
    fake_store.add_user("u1", "starter", "active")
    assert authorize_integration(fake_store, "u1", "gmail", NOW, POLICY).allowed is True

    denied = authorize_integration(fake_store, "u1", "notion", NOW, POLICY)
    assert denied.allowed is False
    assert denied.upgrade_plan == PlanId.PRO
    assert "Pro" in denied.reason


def test_integration_gate_free_plan(fake_store):
    fake_store.add_user("u1", None, None)
    denied = authorize_integration(fake_store, "u1", "slack", NOW, POLICY)
    assert denied.allowed is False
    assert "not available on the Free plan" in denied.reason


def test_unknown_user_is_not_found(fake_store):
    with pytest.raises(NotFoundError):
        authorize_workflow_activation(fake_store, "ghost", NOW, POLICY)


def test_store_failure_propagates(fake_store):
    fake_store.add_user("u1", "agency", "active")
    fake_store.fail = TimeoutError("read timed out")
    with pytest.raises(TimeoutError):
        authorize_workflow_execution(fake_store, "u1", NOW, POLICY)


def test_plan_summary(fake_store):
    fake_store.add_user("u1", "growth", "active")
    fake_store.add_workflows("u1", active=2, inactive=1)
    fake_store.add_executions("u1", NOW, NOW - timedelta(days=1))

    summary = get_plan_summary(fake_store, "u1", NOW, POLICY)
    assert summary["plan"] == "pro"
    assert summary["stored_plan"] == "growth"
    assert summary["in_trial"] is False
    assert summary["usage"]["maxActiveWorkflows"] == {"used": 2, "limit": 10, "remaining": 8}
    assert summary["usage"]["maxRunsPerMonth"] == {"used": 2, "limit": 25000, "remaining": 24998}
    assert summary["usage_resets_at"] == "2026-04-01T00:00:00+00:00"
    assert summary["features"]["customWebhooks"] is True
    assert summary["features"]["whiteLabel"] is False
    assert summary["upgrade_plan"] == "agency"
