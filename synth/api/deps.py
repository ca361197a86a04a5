"""
Shared FastAPI dependencies.

Collaborators (store, clock, providers) are resolved here so routes never
reach for module state directly; tests swap them via dependency_overrides.
"""
from datetime import datetime, timezone
from typing import Callable, Optional

from synth.core.auth import get_current_user_id
from synth.features.billing.provider import BillingProvider
from synth.features.billing.service import get_provider
from synth.features.entitlements.store import EntitlementStore, SqlEntitlementStore
from synth.features.subscriptions.service import SubscriptionPolicy
from synth.features.workflows.pipedream import ExecutionProvider, PipedreamClient


def get_store() -> EntitlementStore:
    return SqlEntitlementStore()


def get_clock() -> Callable[[], datetime]:
    return lambda: datetime.now(timezone.utc)


def get_policy() -> SubscriptionPolicy:
    return SubscriptionPolicy.from_settings()


def get_execution_provider() -> ExecutionProvider:
    return PipedreamClient()


def get_billing_provider() -> Optional[BillingProvider]:
    return get_provider()


__all__ = [
    "get_current_user_id",
    "get_store",
    "get_clock",
    "get_policy",
    "get_execution_provider",
    "get_billing_provider",
]
