"""
synth/features/entitlements/store.py

Read-side persistence for entitlement checks.

The resolver and request gates only ever talk to an EntitlementStore. The
SQL implementation is built once and injected by the API layer; tests pass
an in-memory store instead.
"""

from datetime import datetime
from typing import Callable, ContextManager, Optional, Protocol

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from synth.core.clock import as_utc
from synth.core.database import executions, get_db_session, users, workflows
from synth.models.subscription import SubscriptionState


class EntitlementStore(Protocol):
    def get_user(self, user_id: str) -> Optional[SubscriptionState]:
        ...

    def count_workflows(self, user_id: str, active_only: bool = True) -> int:
        ...

    def count_executions(self, user_id: str, since: datetime) -> int:
        ...


class SqlEntitlementStore:
    """EntitlementStore over the app_users / workflows / executions tables."""

    def __init__(self, session_factory: Callable[[], ContextManager[Session]] = get_db_session):
        self._session_factory = session_factory

    def get_user(self, user_id: str) -> Optional[SubscriptionState]:
        with self._session_factory() as session:
            row = session.execute(
                select(
                    users.c.user_id,
                    users.c.subscription_plan,
                    users.c.subscription_status,
                    users.c.trial_ends_at,
                    users.c.subscription_renewal_at,
                    users.c.cancel_at_period_end,
                ).where(users.c.user_id == user_id)
            ).first()
        if row is None:
            return None
        return SubscriptionState(
            user_id=row.user_id,
            subscription_plan=row.subscription_plan,
            subscription_status=row.subscription_status,
            trial_ends_at=as_utc(row.trial_ends_at),
            subscription_renewal_at=as_utc(row.subscription_renewal_at),
            cancel_at_period_end=bool(row.cancel_at_period_end),
        )

    def count_workflows(self, user_id: str, active_only: bool = True) -> int:
        stmt = select(func.count()).select_from(workflows).where(workflows.c.user_id == user_id)
        if active_only:
            stmt = stmt.where(workflows.c.active.is_(True))
        with self._session_factory() as session:
            return int(session.execute(stmt).scalar() or 0)

    def count_executions(self, user_id: str, since: datetime) -> int:
        since_utc = as_utc(since)
        stmt = (
            select(func.count())
            .select_from(executions)
            .where(executions.c.user_id == user_id)
            .where(executions.c.created_at >= since_utc)
        )
        with self._session_factory() as session:
            return int(session.execute(stmt).scalar() or 0)
