"""
Tests for ledger_config settings resolution.

Covers:
- packaged defaults load without overrides
- deployment YAML overrides a subset of keys
- environment overrides the database URL and log level
- unknown keys, wrong types and out-of-range values are rejected
- checksum is stable and changes with any value
- TransactionOrchestrator.from_settings wires a working instance
"""

import pytest

from ledger_config import LedgerSettings, load_settings
from ledger_kernel.domain.context import OperationContext
from ledger_kernel.domain.money import MoneyAmount
from ledger_services.transaction_orchestrator import TransactionOrchestrator


def write_yaml(tmp_path, text):
    path = tmp_path / "ledger.yaml"
    path.write_text(text)
    return path


class TestLoadSettings:
    def test_defaults(self):
        settings = load_settings(environ={})
        assert settings.database_url == "sqlite:///:memory:"
        assert settings.currency_decimal_places == 2
        assert settings.block_deactivation_with_open_balance is False
        assert settings.log_level == "INFO"

    def test_file_overrides_subset(self, tmp_path):
        path = write_yaml(
            tmp_path,
            "ledger:\n  currency_decimal_places: 3\n  block_deactivation_with_open_balance: true\n",
        )
        settings = load_settings(path, environ={})
        assert settings.currency_decimal_places == 3
        assert settings.block_deactivation_with_open_balance is True
        assert settings.pool_size == 20

    def test_environment_wins(self, tmp_path):
        path = write_yaml(tmp_path, "database:\n  url: sqlite:///from-file.db\n")
        settings = load_settings(
            path,
            environ={"LEDGER_DATABASE_URL": "postgresql://ledger@db/ledger", "LEDGER_LOG_LEVEL": "debug"},
        )
        assert settings.database_url == "postgresql://ledger@db/ledger"
        assert settings.log_level == "DEBUG"

    def test_unknown_key(self, tmp_path):
        path = write_yaml(tmp_path, "ledger:\n  decimal_places: 2\n")
        with pytest.raises(ValueError, match="unknown setting"):
            load_settings(path, environ={})

    def test_wrong_type(self, tmp_path):
        path = write_yaml(tmp_path, "database:\n  pool_size: true\n")
        with pytest.raises(ValueError):
            load_settings(path, environ={})

    def test_out_of_range(self, tmp_path):
        path = write_yaml(tmp_path, "ledger:\n  currency_decimal_places: 12\n")
        with pytest.raises(ValueError):
            load_settings(path, environ={})

    def test_bad_log_level(self):
        with pytest.raises(ValueError):
            load_settings(environ={"LEDGER_LOG_LEVEL": "chatty"})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_settings(tmp_path / "absent.yaml", environ={})


class TestChecksum:
    def test_stable_and_sensitive(self):
        a = load_settings(environ={})
        b = load_settings(environ={})
        c = LedgerSettings(**{**a.to_dict(), "pool_size": 5})

        assert a.checksum == b.checksum
        assert a.checksum != c.checksum


def test_orchestrator_from_settings(tmp_path):
    settings = load_settings(environ={"LEDGER_DATABASE_URL": f"sqlite:///{tmp_path / 'app.db'}"})
    orchestrator = TransactionOrchestrator.from_settings(settings)
    ctx = OperationContext(tenant_id="acme", actor_id="setup", location_id="hq")

    with orchestrator.unit_of_work(ctx) as uow:
        uow.chart.create(ctx, "1000", "Cash", "asset")
        uow.chart.create(ctx, "4000", "Sales", "revenue")

    result = orchestrator.record_income(ctx, "inc-1", orchestrator.parse_amount("12.34"), "4000", "1000")

    assert result.entry.total_debits == MoneyAmount(1234)
