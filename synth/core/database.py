"""
Persistence for the Synth backend.

- One engine per process, created lazily from DATABASE_URL
  (TEST_DATABASE_URL wins so the test suite never touches a real database)
- `get_db_session()` commits on success and rolls back on any error
- SQLAlchemy Core tables: users with their denormalized subscription state,
  workflows, executions and the Stripe webhook idempotency log

All timestamps are written in UTC. SQLite drops tzinfo on the way back, so
readers re-attach UTC to naive values.
"""
from contextlib import contextmanager
from typing import Iterator, Optional
import logging
import os

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    JSON,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func, select

from synth.core.config import settings


logger = logging.getLogger("synth")

metadata = MetaData()

POOL_OPTIONS = {
    "pool_size": 10,
    "max_overflow": 20,
    "pool_timeout": 30,
    "pool_recycle": 3600,
    "pool_pre_ping": True,
}

_engine: Optional[Engine] = None
_session_factory: Optional[sessionmaker] = None


def get_database_url() -> Optional[str]:
    return os.getenv("TEST_DATABASE_URL") or settings.TEST_DATABASE_URL or settings.DATABASE_URL


def _engine_for(url: str) -> Engine:
    if url.startswith("sqlite"):
        # In-memory SQLite lives on a single connection shared by every session
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool)
    return create_engine(url, **POOL_OPTIONS)


def init_engine(database_url: Optional[str] = None) -> Engine:
    """(Re)build the engine and session factory. Raises ValueError without a URL."""
    global _engine, _session_factory

    url = database_url or get_database_url()
    if not url:
        raise ValueError("DATABASE_URL is not configured. Set DATABASE_URL in the environment or .env file.")

    _engine = _engine_for(url)
    _session_factory = sessionmaker(bind=_engine, autoflush=False, expire_on_commit=False)
    logger.info("Database engine ready", extra={"dialect": _engine.dialect.name})
    return _engine


def get_engine() -> Engine:
    if _engine is None:
        return init_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    if _session_factory is None:
        init_engine()
    return _session_factory


@contextmanager
def get_db_session() -> Iterator[Session]:
    """Unit of work: commit on a clean exit, roll back and re-raise otherwise."""
    session = get_session_factory()()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def create_all_tables() -> None:
    metadata.create_all(bind=get_engine())


def reset_database() -> None:
    """Drop and recreate every table. Tests only."""
    engine = get_engine()
    metadata.drop_all(bind=engine)
    metadata.create_all(bind=engine)


def check_connection() -> bool:
    """True when a trivial query succeeds; failures are logged, not raised."""
    try:
        with get_engine().connect() as conn:
            conn.execute(select(1))
    except Exception as e:
        logger.warning("Database connection check failed", extra={"error": str(e)})
        return False
    return True


users = Table(
    'app_users',
    metadata,
    Column('user_id', String(100), primary_key=True),
    Column('email', String(320), nullable=True, unique=True),
    Column('display_name', Text, nullable=True),
    Column('subscription_plan', String(50), nullable=True),
    Column('subscription_status', String(50), nullable=True),
    Column('pending_subscription_plan', String(50), nullable=True),
    Column('trial_ends_at', DateTime(timezone=True), nullable=True),
    Column('subscription_renewal_at', DateTime(timezone=True), nullable=True),
    Column('subscription_ends_at', DateTime(timezone=True), nullable=True),
    Column('cancel_at_period_end', Boolean, nullable=False, server_default='0'),
    Column('stripe_customer_id', String(100), nullable=True, unique=True),
    Column('stripe_subscription_id', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_users_stripe_subscription_id', 'stripe_subscription_id'),
)

# Workflow definitions
workflows = Table(
    'workflows',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False, index=True),
    Column('name', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('intent', Text, nullable=True),
    Column('trigger', JSON, nullable=True),
    Column('actions', JSON, nullable=True),
    Column('active', Boolean, nullable=False, server_default='0'),
    Column('pipedream_workflow_id', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    # Composite index for active workflow counts per user
    Index('idx_workflows_user_active', 'user_id', 'active'),
)

# Workflow executions (one row per run)
executions = Table(
    'executions',
    metadata,
    Column('id', String(100), primary_key=True),
    # Runs outlive their workflow so monthly usage keeps counting them
    Column('workflow_id', String(100), ForeignKey('workflows.id', ondelete='SET NULL'), nullable=True, index=True),
    Column('user_id', String(100), ForeignKey('app_users.user_id'), nullable=False),
    Column('status', String(20), nullable=False),  # running, success, error
    Column('input', JSON, nullable=True),
    Column('output', JSON, nullable=True),
    Column('error', Text, nullable=True),
    Column('started_at', DateTime(timezone=True), nullable=False),
    Column('finished_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    # Composite index for monthly usage counts: (user_id, created_at)
    Index('idx_executions_user_created', 'user_id', 'created_at'),
)

# Stripe webhook events (idempotency log)
webhook_event_logs = Table(
    'webhook_event_logs',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('stripe_event_id', String(100), nullable=False),
    Column('event_type', String(100), nullable=False, index=True),
    Column('payload_hash', String(64), nullable=False),  # SHA256 of raw body
    Column('processed', Boolean, nullable=False, server_default='0', index=True),
    Column('processed_at', DateTime(timezone=True), nullable=True),
    Column('error_message', Text, nullable=True),
    Column('received_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('stripe_event_id', name='uq_webhook_event_logs_stripe_id'),
)
