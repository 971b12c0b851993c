"""
Pytest fixtures for the payroll tax engine test suite.

Provides:
- Structured logging configured once per session, with log capture
- A database session per test, rolled back at teardown
- Deterministic clock, actor and organization identifiers
- Service fixtures wired to the shared session and clock

Environment Variables:
- DATABASE_URL: connection URL.  Defaults to in-memory SQLite; set a
  postgresql:// URL to run the same suite against PostgreSQL.
"""

import json
import logging
import os
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.orm import Session

from payroll_kernel.db.engine import (
    create_tables,
    drop_tables,
    init_engine_from_url,
    reset_engine,
)
from payroll_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from payroll_kernel.domain.clock import DeterministicClock
from payroll_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from payroll_kernel.services.audit_service import AuditService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

DEFAULT_DATABASE_URL = "sqlite://"


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
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
    Capture payroll_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs):
            calculator.calculate(request, context)
            logs = captured_logs()
            assert any(r["message"] == "paycheck_calculated" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("payroll_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables(db_engine)
    create_tables(db_engine)
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables(db_engine)


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Opens a dedicated connection with an outer transaction and a session
    that joins it; ``session.commit()`` inside a test only releases a
    savepoint.  At teardown the outer transaction is rolled back, undoing
    every change the test made.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def organization_id() -> UUID:
    return uuid4()


# Clock fixtures


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


# Service fixtures


@pytest.fixture
def audit_service(session: Session, deterministic_clock):
    """Provide an AuditService instance."""
    return AuditService(session, deterministic_clock)


@pytest.fixture
def rule_catalog_service(session: Session, deterministic_clock, audit_service):
    from payroll_services.rule_catalog import RuleCatalogService

    return RuleCatalogService(session, deterministic_clock, audit_service)


@pytest.fixture
def profile_service(session: Session, organization_id, deterministic_clock, audit_service):
    from payroll_services.profile_service import TaxProfileService

    return TaxProfileService(session, organization_id, deterministic_clock, audit_service)


@pytest.fixture
def assembler(session: Session, organization_id, deterministic_clock, audit_service):
    from payroll_services.assembler import PaycheckAssembler

    return PaycheckAssembler(session, organization_id, deterministic_clock, audit_service)


@pytest.fixture
def published_catalog(rule_catalog_service, session, organization_id, test_actor_id):
    """Monthly test schedules and salary components published for the organization."""
    from payroll_kernel.models.pay_component import PayComponentModel
    from tests.factories import (
        allowance,
        full_components,
        overtime_rule_set,
        wage_tax_rule_set,
    )

    rule_catalog_service.publish_rule_set(wage_tax_rule_set(), organization_id, test_actor_id)
    rule_catalog_service.publish_rule_set(overtime_rule_set(), organization_id, test_actor_id)
    rule_catalog_service.publish_allowance(allowance(), organization_id, test_actor_id)
    for component in full_components():
        session.add(PayComponentModel.from_dto(component, organization_id, created_by_id=test_actor_id))
    session.flush()
    return rule_catalog_service.load_catalog(organization_id)
