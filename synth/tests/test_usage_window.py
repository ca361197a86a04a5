"""Monthly usage windows and SQL-backed counts."""
from datetime import datetime, timedelta, timezone
from uuid import uuid4

from sqlalchemy import insert

from synth.core.database import executions, get_db_session, workflows
from synth.features.entitlements.store import SqlEntitlementStore
from synth.features.usage.service import (
    count_active_workflows,
    count_executions_this_month,
    count_workflows,
    start_of_month,
    start_of_next_month,
)


def test_start_of_month_is_utc_midnight_day_one():
    assert start_of_month(datetime(2026, 3, 15, 12, 30, tzinfo=timezone.utc)) == datetime(
        2026, 3, 1, tzinfo=timezone.utc
    )


def test_start_of_month_converts_offsets_to_utc():
    # 2026-04-01 01:00 at UTC+3 is still March in UTC
    local = datetime(2026, 4, 1, 1, 0, tzinfo=timezone(timedelta(hours=3)))
    assert start_of_month(local) == datetime(2026, 3, 1, tzinfo=timezone.utc)


def test_naive_now_is_treated_as_utc():
    assert start_of_month(datetime(2026, 7, 9, 8, 0)) == datetime(2026, 7, 1, tzinfo=timezone.utc)


def test_start_of_next_month_rolls_year():
    assert start_of_next_month(datetime(2026, 12, 31, 23, 59, tzinfo=timezone.utc)) == datetime(
        2027, 1, 1, tzinfo=timezone.utc
    )
    assert start_of_next_month(datetime(2026, 2, 10, tzinfo=timezone.utc)) == datetime(
        2026, 3, 1, tzinfo=timezone.utc
    )


def _add_workflow(user_id: str, active: bool) -> str:
    workflow_id = str(uuid4())
    ts = datetime(2026, 1, 1, tzinfo=timezone.utc)
    with get_db_session() as session:
        session.execute(
            insert(workflows).values(
                id=workflow_id, user_id=user_id, name="wf", active=active, created_at=ts, updated_at=ts
            )
        )
    return workflow_id


def _add_execution(user_id: str, workflow_id: str, created_at: datetime) -> None:
    with get_db_session() as session:
        session.execute(
            insert(executions).values(
                id=str(uuid4()),
                workflow_id=workflow_id,
                user_id=user_id,
                status="success",
                started_at=created_at,
                created_at=created_at,
            )
        )


def test_sql_store_counts_active_workflows(make_user):
    make_user("u1", "starter", "active")
    make_user("u2", "starter", "active")
    _add_workflow("u1", True)
    _add_workflow("u1", True)
    _add_workflow("u1", False)
    _add_workflow("u2", True)

    store = SqlEntitlementStore()
    assert count_active_workflows(store, "u1") == 2
    assert count_workflows(store, "u1") == 3


def test_sql_store_counts_executions_from_month_start(make_user):
    make_user("u1", "starter", "active")
    workflow_id = _add_workflow("u1", True)
    _add_execution("u1", workflow_id, datetime(2026, 2, 28, 23, 59, 59, tzinfo=timezone.utc))
    _add_execution("u1", workflow_id, datetime(2026, 3, 1, 0, 0, 0, tzinfo=timezone.utc))
    _add_execution("u1", workflow_id, datetime(2026, 3, 14, 9, 0, tzinfo=timezone.utc))

    store = SqlEntitlementStore()
    now = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)
    assert count_executions_this_month(store, "u1", now) == 2


def test_sql_store_reads_subscription_state(make_user):
    trial_end = datetime(2026, 3, 20, tzinfo=timezone.utc)
    make_user("u1", "pro", "trialing", trial_ends_at=trial_end)

    state = SqlEntitlementStore().get_user("u1")
    assert state.subscription_plan == "pro"
    assert state.subscription_status == "trialing"
    assert state.trial_ends_at == trial_end
    assert SqlEntitlementStore().get_user("missing") is None
