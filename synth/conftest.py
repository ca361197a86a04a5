# synth/conftest.py
import os

# In-memory SQLite unless a test database is provided
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")

from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient


FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """Fresh tables for every test."""
    from synth.core.database import reset_database

    reset_database()
    yield


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def fake_store():
    from synth.tests.mocks import InMemoryEntitlementStore

    return InMemoryEntitlementStore()


@pytest.fixture
def fake_executor():
    from synth.tests.mocks import FakeExecutionProvider

    return FakeExecutionProvider()


@pytest.fixture
def make_user():
    """Insert a user row with the given subscription fields."""
    from synth.features.users.service import get_or_create_user, update_subscription

    def _make(user_id: str, plan=None, status=None, **fields):
        get_or_create_user(user_id)
        update_subscription(user_id, subscription_plan=plan, subscription_status=status, **fields)
        return user_id

    return _make


@pytest.fixture
def client(fake_executor):
    """TestClient with a frozen clock and a fake execution provider."""
    from synth.api.deps import get_clock, get_execution_provider
    from synth.main import app

    app.dependency_overrides[get_clock] = lambda: (lambda: FIXED_NOW)
    app.dependency_overrides[get_execution_provider] = lambda: fake_executor
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
