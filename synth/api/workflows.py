"""
Workflow API routes.

- POST   /api/workflows               create (inactive), gated by the workflow ceiling
- GET    /api/workflows               list
- GET    /api/workflows/{id}          fetch
- DELETE /api/workflows/{id}          delete
- POST   /api/workflows/{id}/activate gated by maxActiveWorkflows
- POST   /api/workflows/{id}/deactivate
- POST   /api/workflows/{id}/run      gated by allowWorkflowExecution + maxRunsPerMonth
- GET    /api/workflows/{id}/executions
"""
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from fastapi import APIRouter, Body, Depends
from pydantic import BaseModel

from synth.api.deps import (
    get_clock,
    get_current_user_id,
    get_execution_provider,
    get_policy,
    get_store,
)
from synth.core.errors import EntitlementDeniedError
from synth.features.entitlements.service import (
    authorize_workflow_activation,
    authorize_workflow_creation,
    authorize_workflow_execution,
)
from synth.features.entitlements.store import EntitlementStore
from synth.features.subscriptions.service import SubscriptionPolicy
from synth.features.workflows.pipedream import ExecutionProvider
from synth.features.workflows.service import (
    create_workflow,
    delete_workflow,
    get_workflow,
    list_executions,
    list_workflows,
    run_workflow,
    set_workflow_active,
)
from synth.features.workflows.validation import validate_workflow_plan


router = APIRouter(prefix="/api/workflows", tags=["workflows"])


class ActivateRequest(BaseModel):
    pipedream_workflow_id: Optional[str] = None


def _workflow_json(workflow) -> Dict[str, Any]:
    return workflow.model_dump(mode="json")


def _execution_json(execution) -> Dict[str, Any]:
    return {**execution.model_dump(mode="json"), "duration_ms": execution.duration_ms}


@router.post("", status_code=201)
def create(
    payload: Dict[str, Any] = Body(...),
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    policy: SubscriptionPolicy = Depends(get_policy),
):
    raw = dict(payload)
    pipedream_workflow_id = raw.pop("pipedream_workflow_id", None)
    # Malformed plans are a 400 even for users at their ceiling
    plan = validate_workflow_plan(raw)

    now = clock()
    decision = authorize_workflow_creation(store, user_id, now, policy)
    if not decision.allowed:
        raise EntitlementDeniedError(decision)

    workflow = create_workflow(user_id, plan, pipedream_workflow_id=pipedream_workflow_id, now=now)
    return _workflow_json(workflow)


@router.get("")
def list_all(active_only: bool = False, user_id: str = Depends(get_current_user_id)):
    return {"workflows": [_workflow_json(w) for w in list_workflows(user_id, active_only=active_only)]}


@router.get("/{workflow_id}")
def read(workflow_id: str, user_id: str = Depends(get_current_user_id)):
    return _workflow_json(get_workflow(user_id, workflow_id))


@router.delete("/{workflow_id}")
def remove(workflow_id: str, user_id: str = Depends(get_current_user_id)):
    delete_workflow(user_id, workflow_id)
    return {"deleted": True, "id": workflow_id}


@router.post("/{workflow_id}/activate")
def activate(
    workflow_id: str,
    request: Optional[ActivateRequest] = None,
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    policy: SubscriptionPolicy = Depends(get_policy),
):
    now = clock()
    workflow = get_workflow(user_id, workflow_id)
    # Re-activating an active workflow does not consume a slot
    if not workflow.active:
        decision = authorize_workflow_activation(store, user_id, now, policy)
        if not decision.allowed:
            raise EntitlementDeniedError(decision)

    workflow = set_workflow_active(
        user_id,
        workflow_id,
        True,
        pipedream_workflow_id=request.pipedream_workflow_id if request else None,
        now=now,
    )
    return _workflow_json(workflow)


@router.post("/{workflow_id}/deactivate")
def deactivate(
    workflow_id: str,
    user_id: str = Depends(get_current_user_id),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    return _workflow_json(set_workflow_active(user_id, workflow_id, False, now=clock()))


@router.post("/{workflow_id}/run")
def run(
    workflow_id: str,
    payload: Optional[Dict[str, Any]] = Body(None),
    user_id: str = Depends(get_current_user_id),
    store: EntitlementStore = Depends(get_store),
    clock: Callable[[], datetime] = Depends(get_clock),
    policy: SubscriptionPolicy = Depends(get_policy),
    provider: ExecutionProvider = Depends(get_execution_provider),
):
    now = clock()
    get_workflow(user_id, workflow_id)

    decision = authorize_workflow_execution(store, user_id, now, policy)
    if not decision.allowed:
        raise EntitlementDeniedError(decision)

    execution = run_workflow(user_id, workflow_id, payload, provider, clock=clock)
    return _execution_json(execution)


@router.get("/{workflow_id}/executions")
def executions(workflow_id: str, limit: int = 50, user_id: str = Depends(get_current_user_id)):
    get_workflow(user_id, workflow_id)
    return {"executions": [_execution_json(e) for e in list_executions(user_id, workflow_id, limit=limit)]}
