"""
Runtime settings (``ledger_config.settings``).

Responsibility
--------------
Loads the packaged ``defaults.yaml``, overlays an optional deployment
YAML file and then the environment, and returns one frozen
``LedgerSettings``.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* Values are type-checked: integers must be ints (not bools), flags must
  be bools.
* ``LedgerSettings.checksum`` is a deterministic SHA-256 over the
  canonical JSON form, for change detection and audit traces.

Failure modes
-------------
* Missing deployment file -> ``FileNotFoundError`` propagates.
* Malformed YAML -> ``yaml.YAMLError`` propagates.
* Bad key or value -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

import yaml

DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

ENV_DATABASE_URL = "LEDGER_DATABASE_URL"
ENV_LOG_LEVEL = "LEDGER_LOG_LEVEL"

_LOG_LEVELS = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})

# (section, key) -> (field name, expected type)
_FIELDS: dict[tuple[str, str], tuple[str, type]] = {
    ("database", "url"): ("database_url", str),
    ("database", "echo"): ("echo_sql", bool),
    ("database", "pool_size"): ("pool_size", int),
    ("database", "max_overflow"): ("max_overflow", int),
    ("database", "pool_timeout"): ("pool_timeout", int),
    ("ledger", "currency_decimal_places"): ("currency_decimal_places", int),
    ("ledger", "block_deactivation_with_open_balance"): (
        "block_deactivation_with_open_balance",
        bool,
    ),
    ("logging", "level"): ("log_level", str),
}


@dataclass(frozen=True)
class LedgerSettings:
    """Resolved runtime settings."""

    database_url: str
    echo_sql: bool
    pool_size: int
    max_overflow: int
    pool_timeout: int
    currency_decimal_places: int
    block_deactivation_with_open_balance: bool
    log_level: str

    def __post_init__(self) -> None:
        if not self.database_url:
            raise ValueError("database.url must be non-empty")
        if not 0 <= self.currency_decimal_places <= 8:
            raise ValueError(
                f"ledger.currency_decimal_places must be between 0 and 8, "
                f"got {self.currency_decimal_places}"
            )
        if self.pool_size < 1 or self.max_overflow < 0 or self.pool_timeout < 1:
            raise ValueError("database pool settings must be positive")
        if self.log_level not in _LOG_LEVELS:
            raise ValueError(f"logging.level must be one of {sorted(_LOG_LEVELS)}")

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @property
    def checksum(self) -> str:
        canonical = json.dumps(self.to_dict(), sort_keys=True, default=str)
        return hashlib.sha256(canonical.encode()).hexdigest()

    @property
    def pool_options(self) -> dict[str, int]:
        """Keyword arguments for ledger_kernel.db.engine.build_engine."""
        return {
            "pool_size": self.pool_size,
            "max_overflow": self.max_overflow,
            "pool_timeout": self.pool_timeout,
        }


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load one YAML file as a dict (empty file -> empty dict)."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _flatten(data: Mapping[str, Any], origin: str) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for section, entries in data.items():
        if not isinstance(entries, Mapping):
            raise ValueError(f"{origin}: section '{section}' must be a mapping")
        for key, value in entries.items():
            spec = _FIELDS.get((section, key))
            if spec is None:
                raise ValueError(f"{origin}: unknown setting '{section}.{key}'")
            field_name, expected = spec
            if isinstance(value, bool) and expected is not bool:
                raise ValueError(f"{origin}: '{section}.{key}' must be {expected.__name__}")
            if not isinstance(value, expected):
                raise ValueError(
                    f"{origin}: '{section}.{key}' must be {expected.__name__}, "
                    f"got {type(value).__name__}"
                )
            values[field_name] = value
    return values


def _from_environment(environ: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    if environ.get(ENV_DATABASE_URL):
        values["database_url"] = environ[ENV_DATABASE_URL]
    if environ.get(ENV_LOG_LEVEL):
        values["log_level"] = environ[ENV_LOG_LEVEL].upper()
    return values


def load_settings(
    path: str | Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerSettings:
    """
    Resolve settings: packaged defaults, then ``path``, then environment.

    Args:
        path: Optional deployment YAML with any subset of the default keys.
        environ: Environment mapping; ``os.environ`` when None.

    Raises:
        FileNotFoundError: ``path`` does not exist.
        ValueError: unknown key, wrong type or out-of-range value.
    """
    values = _flatten(load_yaml_file(DEFAULTS_PATH), str(DEFAULTS_PATH))
    if path is not None:
        values.update(_flatten(load_yaml_file(Path(path)), str(path)))
    values.update(_from_environment(os.environ if environ is None else environ))
    return LedgerSettings(**values)
