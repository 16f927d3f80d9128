"""
Pytest fixtures for the approval engine test suite.

Provides:
- Structured logging configuration and a JSON log capture fixture
- A deterministic clock
- In-memory stores and an in-memory orchestrator
- An in-memory SQLite session for the SQLAlchemy stores

Environment Variables:
- DATABASE_URL: optional SQLAlchemy URL for the SQL store tests.
  Defaults to an in-memory SQLite database.
"""

import json
import logging
import os
from datetime import datetime, timezone
from io import StringIO

import pytest

from approval_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from approval_kernel.domain.clock import DeterministicClock
from approval_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from approval_kernel.stores.memory import (
    InMemoryDecisionStore,
    InMemoryInstanceStore,
    InMemoryRuleStore,
)
from approval_services.orchestrator import ApprovalOrchestrator

# Monday 2024-01-01 12:00 UTC
BASE_TIME = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)
TENANT = "tenant-a"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture approval_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            ...
            logs = captured_logs()
            assert any(r["message"] == "approval_requested" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("approval_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Clock and stores
# =============================================================================


@pytest.fixture
def clock() -> DeterministicClock:
    return DeterministicClock(BASE_TIME)


@pytest.fixture
def instance_store() -> InMemoryInstanceStore:
    return InMemoryInstanceStore()


@pytest.fixture
def rule_store(instance_store) -> InMemoryRuleStore:
    return InMemoryRuleStore(instance_store)


@pytest.fixture
def decision_store() -> InMemoryDecisionStore:
    return InMemoryDecisionStore()


@pytest.fixture
def orchestrator(clock) -> ApprovalOrchestrator:
    return ApprovalOrchestrator.in_memory(clock=clock)


# =============================================================================
# SQL session
# =============================================================================


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", "sqlite://")


@pytest.fixture
def session():
    """A fresh schema per test; the session is rolled back afterwards."""
    init_engine_from_url(get_database_url())
    create_tables()
    db = get_session()
    try:
        yield db
    finally:
        db.rollback()
        db.close()
        drop_tables()
        reset_engine()
