"""
synth/features/workflows/service.py

Workflow persistence and execution.

Handles:
- Owner-scoped CRUD over the workflows table (plan gating happens in the caller)
- Activation toggles
- Runs: one executions row per attempt, running -> success | error.
  Execution rows are kept when their workflow is deleted.
"""

from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from uuid import uuid4
import logging

from sqlalchemy import delete, insert, select, update

from synth.core.clock import as_utc, now_or_utc, utc_now
from synth.core.database import executions, get_db_session, workflows
from synth.core.errors import AppError, ConflictError, ExecutionProviderError, NotFoundError
from synth.core.logging import log_event
from synth.features.workflows.pipedream import ExecutionProvider
from synth.features.workflows.validation import validate_workflow_plan
from synth.models.workflow import Execution, Workflow


logger = logging.getLogger(__name__)


def _to_workflow(row) -> Workflow:
    return Workflow(
        id=row.id,
        user_id=row.user_id,
        name=row.name,
        description=row.description,
        intent=row.intent,
        trigger=row.trigger,
        actions=row.actions,
        active=bool(row.active),
        pipedream_workflow_id=row.pipedream_workflow_id,
        created_at=as_utc(row.created_at),
        updated_at=as_utc(row.updated_at),
    )


def _to_execution(row) -> Execution:
    return Execution(
        id=row.id,
        workflow_id=row.workflow_id,
        user_id=row.user_id,
        status=row.status,
        input=row.input,
        output=row.output,
        error=row.error,
        started_at=as_utc(row.started_at),
        finished_at=as_utc(row.finished_at),
        created_at=as_utc(row.created_at),
    )


def create_workflow(
    user_id: str,
    raw_plan: Any,
    *,
    pipedream_workflow_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Workflow:
    """Validate and store a workflow. New workflows start inactive."""
    plan = validate_workflow_plan(raw_plan)
    current = now_or_utc(now)
    workflow_id = str(uuid4())

    with get_db_session() as session:
        session.execute(
            insert(workflows).values(
                id=workflow_id,
                user_id=user_id,
                name=plan.name,
                description=plan.description,
                intent=plan.intent,
                trigger=plan.trigger_dict(),
                actions=plan.actions_list(),
                active=False,
                pipedream_workflow_id=pipedream_workflow_id,
                created_at=current,
                updated_at=current,
            )
        )

    logger.info("[workflows] created", extra={"user_id": user_id, "workflow_id": workflow_id})
    return get_workflow(user_id, workflow_id)


def get_workflow(user_id: str, workflow_id: str) -> Workflow:
    """Fetch a workflow owned by user_id. Other users' workflows are 404."""
    with get_db_session() as session:
        row = session.execute(
            select(workflows)
            .where(workflows.c.id == workflow_id)
            .where(workflows.c.user_id == user_id)
        ).first()
    if row is None:
        raise NotFoundError("Workflow not found", details={"workflow_id": workflow_id})
    return _to_workflow(row)


def list_workflows(user_id: str, *, active_only: bool = False) -> List[Workflow]:
    stmt = select(workflows).where(workflows.c.user_id == user_id)
    if active_only:
        stmt = stmt.where(workflows.c.active.is_(True))
    stmt = stmt.order_by(workflows.c.created_at.desc())
    with get_db_session() as session:
        rows = session.execute(stmt).fetchall()
    return [_to_workflow(row) for row in rows]


def set_workflow_active(
    user_id: str,
    workflow_id: str,
    active: bool,
    *,
    pipedream_workflow_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Workflow:
    get_workflow(user_id, workflow_id)

    values: Dict[str, Any] = {"active": active, "updated_at": now_or_utc(now)}
    if pipedream_workflow_id:
        values["pipedream_workflow_id"] = pipedream_workflow_id

    with get_db_session() as session:
        session.execute(
            update(workflows)
            .where(workflows.c.id == workflow_id)
            .where(workflows.c.user_id == user_id)
            .values(**values)
        )

    logger.info(
        "[workflows] activation changed",
        extra={"user_id": user_id, "workflow_id": workflow_id, "active": active},
    )
    return get_workflow(user_id, workflow_id)


def delete_workflow(user_id: str, workflow_id: str) -> None:
    get_workflow(user_id, workflow_id)
    with get_db_session() as session:
        # Detach rather than delete: past runs still count toward the monthly quota
        session.execute(
            update(executions)
            .where(executions.c.workflow_id == workflow_id)
            .values(workflow_id=None)
        )
        session.execute(
            delete(workflows)
            .where(workflows.c.id == workflow_id)
            .where(workflows.c.user_id == user_id)
        )
    logger.info("[workflows] deleted", extra={"user_id": user_id, "workflow_id": workflow_id})


def list_executions(user_id: str, workflow_id: Optional[str] = None, limit: int = 50) -> List[Execution]:
    stmt = select(executions).where(executions.c.user_id == user_id)
    if workflow_id:
        stmt = stmt.where(executions.c.workflow_id == workflow_id)
    stmt = stmt.order_by(executions.c.created_at.desc()).limit(limit)
    with get_db_session() as session:
        rows = session.execute(stmt).fetchall()
    return [_to_execution(row) for row in rows]


def _finish_execution(execution_id: str, **values: Any) -> Execution:
    with get_db_session() as session:
        session.execute(update(executions).where(executions.c.id == execution_id).values(**values))
        row = session.execute(select(executions).where(executions.c.id == execution_id)).first()
    return _to_execution(row)


def run_workflow(
    user_id: str,
    workflow_id: str,
    payload: Optional[Dict[str, Any]],
    provider: ExecutionProvider,
    *,
    clock: Optional[Callable[[], datetime]] = None,
) -> Execution:
    """
    Execute an active, deployed workflow and record the run.

    Plan gating is the caller's job. `clock` is read once before and once
    after the provider call. Provider failures are recorded on the execution
    row and raised as ExecutionProviderError.
    """
    read_clock = clock or utc_now
    workflow = get_workflow(user_id, workflow_id)
    if not workflow.active:
        raise ConflictError("Workflow must be active to run", details={"workflow_id": workflow_id})
    if not workflow.pipedream_workflow_id:
        raise ConflictError("Workflow is not deployed", details={"workflow_id": workflow_id})

    started_at = now_or_utc(read_clock())
    execution_id = str(uuid4())
    with get_db_session() as session:
        session.execute(
            insert(executions).values(
                id=execution_id,
                workflow_id=workflow_id,
                user_id=user_id,
                status="running",
                input=payload or {},
                started_at=started_at,
                created_at=started_at,
            )
        )

    try:
        output = provider.execute(workflow.pipedream_workflow_id, payload or {})
    except Exception as exc:
        message = exc.message if isinstance(exc, AppError) else str(exc)
        _finish_execution(
            execution_id,
            status="error",
            error=message[:2000],
            finished_at=now_or_utc(read_clock()),
        )
        log_event(
            "error",
            "[workflows] run failed",
            logger=logger,
            user_id=user_id,
            workflow_id=workflow_id,
            execution_id=execution_id,
            error_code=getattr(exc, "code", "execution_failed"),
            error=message,
        )
        if isinstance(exc, ExecutionProviderError):
            raise
        raise ExecutionProviderError(
            "Workflow execution failed",
            details={"workflow_id": workflow_id, "execution_id": execution_id},
        ) from exc

    execution = _finish_execution(
        execution_id,
        status="success",
        output=output,
        finished_at=now_or_utc(read_clock()),
    )
    logger.info(
        "[workflows] run succeeded",
        extra={"user_id": user_id, "workflow_id": workflow_id, "execution_id": execution_id},
    )
    return execution
