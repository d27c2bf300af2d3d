"""
Tests for the module-level engine helpers.

Covers:
- get_engine/get_session_factory raise before initialization
- session_scope commits on success and rolls back on error
- reset_engine clears the module state
"""

import pytest

from ledger_kernel.db import engine as db_engine
from ledger_kernel.exceptions import DuplicateCodeError
from ledger_kernel.services.chart_service import ChartOfAccountsService


@pytest.fixture
def initialized(tmp_path):
    db_engine.init_engine_from_url(f"sqlite:///{tmp_path / 'scope.db'}")
    db_engine.create_tables()
    yield
    db_engine.reset_engine()


def test_uninitialized_engine_raises():
    db_engine.reset_engine()
    with pytest.raises(RuntimeError, match="not initialized"):
        db_engine.get_engine()
    with pytest.raises(RuntimeError):
        db_engine.get_session_factory()
    assert db_engine.is_postgres() is False


def test_session_scope_commits(initialized, ctx):
    with db_engine.session_scope() as session:
        ChartOfAccountsService(session).create(ctx, "1000", "Cash", "asset")

    with db_engine.session_scope() as session:
        assert ChartOfAccountsService(session).get_account(ctx, "1000").name == "Cash"


def test_session_scope_rolls_back(initialized, ctx):
    with pytest.raises(DuplicateCodeError):
        with db_engine.session_scope() as session:
            chart = ChartOfAccountsService(session)
            chart.create(ctx, "1000", "Cash", "asset")
            chart.create(ctx, "1000", "Cash again", "asset")

    with db_engine.session_scope() as session:
        assert ChartOfAccountsService(session).list_accounts(ctx) == []


def test_dialect_detection(initialized):
    assert db_engine.get_engine().dialect.name == "sqlite"
    assert db_engine.is_postgres() is False
