"""
User domain service.
- get_or_create_user(user_id)
- get_user(user_id)
- update_subscription(user_id, **fields)
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional
from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from synth.core.database import get_db_session, users as app_users
from synth.core.errors import NotFoundError
from synth.models.user import User


SUBSCRIPTION_FIELDS = frozenset({
    "subscription_plan",
    "subscription_status",
    "pending_subscription_plan",
    "trial_ends_at",
    "subscription_renewal_at",
    "subscription_ends_at",
    "cancel_at_period_end",
    "stripe_customer_id",
    "stripe_subscription_id",
})


def normalize_display_name(user_id: str, display_name: Optional[str] = None, email: Optional[str] = None) -> str:
    return User.display_name_for(user_id, display_name, email)


def _to_user(row) -> User:
    return User(
        user_id=row.user_id,
        created_at=row.created_at,
        email=row.email,
        display_name=row.display_name or normalize_display_name(row.user_id, email=row.email),
        stripe_customer_id=row.stripe_customer_id,
    )


def get_user(user_id: str) -> Optional[User]:
    with get_db_session() as session:
        row = session.execute(select(app_users).where(app_users.c.user_id == user_id)).first()
        if not row:
            return None
        return _to_user(row)


def get_or_create_user(user_id: str, email: Optional[str] = None, display_name: Optional[str] = None) -> User:
    """Fetch a user, creating a free-plan row on first sight."""
    existing = get_user(user_id)
    if existing:
        return existing

    now = datetime.now(timezone.utc)
    display = normalize_display_name(user_id, display_name, email)
    try:
        with get_db_session() as session:
            session.execute(
                insert(app_users).values(
                    user_id=user_id,
                    email=email,
                    display_name=display,
                    subscription_plan="free",
                    subscription_status=None,
                    cancel_at_period_end=False,
                    created_at=now,
                )
            )
    except IntegrityError:
        # Concurrent first request created the row
        existing = get_user(user_id)
        if existing:
            return existing
        raise

    return User(user_id=user_id, created_at=now, email=email, display_name=display)


def update_subscription(user_id: str, **fields: Any) -> None:
    """Write subscription columns on a user row. Unknown columns are rejected."""
    unknown = set(fields) - SUBSCRIPTION_FIELDS
    if unknown:
        raise ValueError(f"Unknown subscription fields: {', '.join(sorted(unknown))}")
    if not fields:
        return

    values: Dict[str, Any] = dict(fields)
    with get_db_session() as session:
        result = session.execute(
            update(app_users).where(app_users.c.user_id == user_id).values(**values)
        )
        if result.rowcount == 0:
            raise NotFoundError("User not found", details={"user_id": user_id})
