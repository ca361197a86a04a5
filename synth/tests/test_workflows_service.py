import json
from datetime import timedelta

import httpx
import pytest

from synth.core.errors import ConflictError, ExecutionProviderError, NotFoundError
from synth.features.entitlements.service import authorize_workflow_execution
from synth.features.entitlements.store import SqlEntitlementStore
from synth.features.usage.service import count_executions_this_month
from synth.features.workflows.pipedream import PipedreamClient
from synth.features.workflows.service import (
    create_workflow,
    delete_workflow,
    get_workflow,
    list_executions,
    list_workflows,
    run_workflow,
    set_workflow_active,
)
from synth.tests.mocks import FakeExecutionProvider, ManualClock


PLAN = {
    "name": "Daily digest",
    "trigger": {"type": "cron", "config": {"cronExpression": "0 8 * * *"}},
    "actions": [{"id": "send", "type": "email.send", "params": {"to": "me@example.com"}}],
}


@pytest.fixture
def deployed(make_user, now):
    make_user("u1", "starter", "active")
    workflow = create_workflow("u1", PLAN, pipedream_workflow_id="p_123", now=now)
    return set_workflow_active("u1", workflow.id, True, now=now)


def test_create_starts_inactive(make_user, now):
    make_user("u1")
    workflow = create_workflow("u1", PLAN, now=now)
    assert workflow.active is False
    assert workflow.user_id == "u1"
    assert workflow.created_at == now
    assert workflow.actions[0]["params"] == {"to": "me@example.com"}


def test_workflows_are_owner_scoped(make_user, now):
    make_user("u1")
    make_user("u2")
    workflow = create_workflow("u1", PLAN, now=now)

    with pytest.raises(NotFoundError):
        get_workflow("u2", workflow.id)
    with pytest.raises(NotFoundError):
        set_workflow_active("u2", workflow.id, True)
    assert list_workflows("u2") == []
    assert [w.id for w in list_workflows("u1")] == [workflow.id]


def test_list_active_only(make_user, now):
    make_user("u1")
    first = create_workflow("u1", PLAN, now=now)
    create_workflow("u1", PLAN, now=now)
    set_workflow_active("u1", first.id, True, now=now)
    assert [w.id for w in list_workflows("u1", active_only=True)] == [first.id]


def test_activation_can_attach_provider_id(make_user, now):
    make_user("u1")
    workflow = create_workflow("u1", PLAN, now=now)
    updated = set_workflow_active("u1", workflow.id, True, pipedream_workflow_id="p_9", now=now)
    assert updated.active is True
    assert updated.pipedream_workflow_id == "p_9"


def test_run_records_success(deployed, now):
    provider = FakeExecutionProvider(result={"sent": 1})
    execution = run_workflow("u1", deployed.id, {"day": "mon"}, provider, clock=lambda: now)

    assert execution.status == "success"
    assert execution.output == {"sent": 1}
    assert execution.input == {"day": "mon"}
    assert execution.started_at == now
    assert execution.duration_ms == 0
    assert provider.calls == [{"provider_workflow_id": "p_123", "payload": {"day": "mon"}}]


def test_run_failure_is_recorded_and_raised(deployed, now):
    provider = FakeExecutionProvider(error=RuntimeError("boom"))
    with pytest.raises(ExecutionProviderError):
        run_workflow("u1", deployed.id, None, provider, clock=lambda: now)

    [execution] = list_executions("u1", deployed.id)
    assert execution.status == "error"
    assert execution.error == "boom"
    assert execution.finished_at is not None


def test_run_requires_active_and_deployed(make_user, now):
    make_user("u1")
    workflow = create_workflow("u1", PLAN, now=now)
    with pytest.raises(ConflictError):
        run_workflow("u1", workflow.id, None, FakeExecutionProvider(), clock=lambda: now)

    set_workflow_active("u1", workflow.id, True, now=now)
    with pytest.raises(ConflictError):
        run_workflow("u1", workflow.id, None, FakeExecutionProvider(), clock=lambda: now)


def test_run_duration_comes_from_clock(deployed, now):
    clock = ManualClock(now)

    class SlowProvider(FakeExecutionProvider):
        def execute(self, provider_workflow_id, payload=None):
            clock.advance(milliseconds=300)
            return super().execute(provider_workflow_id, payload)

    execution = run_workflow("u1", deployed.id, None, SlowProvider(), clock=clock)
    assert execution.started_at == now
    assert execution.finished_at == now + timedelta(milliseconds=300)
    assert execution.duration_ms == 300


def test_failed_run_duration_comes_from_clock(deployed, now):
    clock = ManualClock(now)

    class TimingOut(FakeExecutionProvider):
        def execute(self, provider_workflow_id, payload=None):
            clock.advance(seconds=2)
            raise RuntimeError("timeout")

    with pytest.raises(ExecutionProviderError):
        run_workflow("u1", deployed.id, None, TimingOut(), clock=clock)
    [execution] = list_executions("u1", deployed.id)
    assert execution.duration_ms == 2000


def test_delete_keeps_run_history(deployed, now):
    for _ in range(3):
        run_workflow("u1", deployed.id, None, FakeExecutionProvider(), clock=lambda: now)

    delete_workflow("u1", deployed.id)

    with pytest.raises(NotFoundError):
        get_workflow("u1", deployed.id)
    history = list_executions("u1")
    assert len(history) == 3
    assert {execution.workflow_id for execution in history} == {None}


def test_delete_does_not_refund_monthly_runs(deployed, now):
    store = SqlEntitlementStore()
    for _ in range(3):
        run_workflow("u1", deployed.id, None, FakeExecutionProvider(), clock=lambda: now)
    assert authorize_workflow_execution(store, "u1", now).current_usage == 3

    delete_workflow("u1", deployed.id)

    decision = authorize_workflow_execution(store, "u1", now)
    assert decision.current_usage == 3
    assert count_executions_this_month(store, "u1", now) == 3


def test_pipedream_client_posts_payload():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["Authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"status": "queued"})

    client = PipedreamClient(api_key="pd_key", base_url="https://pd.test/v1/", transport=httpx.MockTransport(handler))
    assert client.execute("p_1", {"x": 1}) == {"status": "queued"}
    assert seen == {
        "url": "https://pd.test/v1/workflows/p_1/execute",
        "auth": "Bearer pd_key",
        "body": {"x": 1},
    }


def test_pipedream_client_error_status():
    transport = httpx.MockTransport(lambda request: httpx.Response(500, text="nope"))
    client = PipedreamClient(api_key="pd_key", base_url="https://pd.test", transport=transport)
    with pytest.raises(ExecutionProviderError) as exc:
        client.execute("p_1")
    assert exc.value.details["provider_status"] == 500


def test_pipedream_client_network_error():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    client = PipedreamClient(api_key="pd_key", base_url="https://pd.test", transport=httpx.MockTransport(handler))
    with pytest.raises(ExecutionProviderError) as exc:
        client.execute("p_1")
    assert exc.value.status_code == 502


def test_pipedream_client_without_key():
    client = PipedreamClient(api_key="", base_url="https://pd.test")
    with pytest.raises(ExecutionProviderError) as exc:
        client.execute("p_1")
    assert exc.value.code == "provider_not_configured"
    assert exc.value.status_code == 503
