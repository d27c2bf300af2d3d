"""
Pytest fixtures for the ledger kernel test suite.

Provides:
- A fresh in-memory SQLite database per test (StaticPool, one connection)
- A session, a session factory and a deterministic clock
- A standard chart of accounts for tenant "t1"
- Captured structured logs

Environment Variables:
- DATABASE_URL: run against another database (e.g. PostgreSQL) instead of
  in-memory SQLite.  Tables are dropped after each test.
"""

import json
import logging
import os
from datetime import UTC, datetime
from io import StringIO

import pytest
from sqlalchemy.orm import sessionmaker

from ledger_kernel.db.engine import build_engine, create_tables, drop_tables
from ledger_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from ledger_kernel.domain.audit import AuditFailureLog, InMemoryAuditRecorder
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.services.audit_outbox import AuditOutbox
from ledger_kernel.services.chart_service import ChartOfAccountsService
from ledger_kernel.services.fifo_costing import FIFOCostingEngine
from ledger_kernel.services.ledger_service import LedgerService
from ledger_services.transaction_orchestrator import (
    PurchaseAccounts,
    SaleAccounts,
    TransactionOrchestrator,
    WriteOffAccounts,
)

TEST_TENANT = "t1"
TEST_ACTOR = "clerk-1"
TEST_LOCATION = "main"

CASH = "1000-Cash"
INVENTORY = "1200-Inventory"
PAYABLE = "2000-Payable"
EQUITY = "3000-Equity"
REVENUE = "4000-Revenue"
COGS = "5000-COGS"
RENT = "6100-Rent"
SHRINKAGE = "6900-Shrinkage"

STANDARD_ACCOUNTS = (
    (CASH, "Cash", "asset"),
    (INVENTORY, "Inventory", "asset"),
    (PAYABLE, "Accounts Payable", "liability"),
    (EQUITY, "Owner Equity", "equity"),
    (REVENUE, "Sales Revenue", "revenue"),
    (COGS, "Cost of Goods Sold", "expense"),
    (RENT, "Rent", "expense"),
    (SHRINKAGE, "Inventory Shrinkage", "expense"),
)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG, handler=logging.NullHandler())
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
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, ledger):
            ledger.create_entry(...)
            assert any(r["message"] == "entry_posted" for r in captured_logs())
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _immutability_listeners():
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()


@pytest.fixture
def engine():
    """A fresh database per test."""
    url = os.environ.get("DATABASE_URL", "sqlite:///:memory:")
    eng = build_engine(url)
    create_tables(eng)
    yield eng
    drop_tables(eng)
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


@pytest.fixture
def session(session_factory):
    """A session for direct service tests; rolled back and closed afterwards."""
    s = session_factory()
    yield s
    s.rollback()
    s.close()


@pytest.fixture
def deterministic_clock():
    return DeterministicClock(datetime(2024, 3, 1, 9, 0, 0, tzinfo=UTC))


@pytest.fixture
def ctx():
    return OperationContext(
        tenant_id=TEST_TENANT,
        actor_id=TEST_ACTOR,
        location_id=TEST_LOCATION,
        correlation_id="corr-test",
    )


@pytest.fixture
def other_tenant_ctx():
    return OperationContext(tenant_id="t2", actor_id=TEST_ACTOR, location_id=TEST_LOCATION)


# =============================================================================
# Service fixtures
# =============================================================================


@pytest.fixture
def audit_outbox():
    return AuditOutbox()


@pytest.fixture
def chart(session, deterministic_clock, audit_outbox):
    return ChartOfAccountsService(session, clock=deterministic_clock, audit_outbox=audit_outbox)


@pytest.fixture
def ledger(session, deterministic_clock, audit_outbox):
    return LedgerService(session, clock=deterministic_clock, audit_outbox=audit_outbox)


@pytest.fixture
def fifo(session, deterministic_clock, audit_outbox):
    return FIFOCostingEngine(session, clock=deterministic_clock, audit_outbox=audit_outbox)


@pytest.fixture
def standard_accounts(chart, ctx, session):
    """Create the standard chart for tenant t1 and return {code: AccountRecord}."""
    created = {
        code: chart.create(ctx, code, name, account_type)
        for code, name, account_type in STANDARD_ACCOUNTS
    }
    session.flush()
    return created


# =============================================================================
# Orchestrator fixtures
# =============================================================================


@pytest.fixture
def audit_recorder():
    return InMemoryAuditRecorder()


@pytest.fixture
def audit_failures():
    return AuditFailureLog()


@pytest.fixture
def orchestrator(session_factory, deterministic_clock, audit_recorder, audit_failures):
    return TransactionOrchestrator(
        session_factory,
        clock=deterministic_clock,
        audit_recorder=audit_recorder,
        on_audit_failure=audit_failures,
    )


@pytest.fixture
def committed_chart(orchestrator, ctx):
    """The standard chart, committed through a unit of work."""
    with orchestrator.unit_of_work(ctx) as uow:
        for code, name, account_type in STANDARD_ACCOUNTS:
            uow.chart.create(ctx, code, name, account_type)


@pytest.fixture
def sale_accounts():
    return SaleAccounts(
        cash_or_receivable=CASH,
        revenue=REVENUE,
        cost_of_goods_sold=COGS,
        inventory=INVENTORY,
    )


@pytest.fixture
def purchase_accounts():
    return PurchaseAccounts(inventory=INVENTORY, cash_or_payable=PAYABLE)


@pytest.fixture
def write_off_accounts():
    return WriteOffAccounts(loss_expense=SHRINKAGE, inventory=INVENTORY)
