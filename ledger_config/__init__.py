"""
ledger_config -- runtime settings for the ledger engine.

``load_settings()`` is the single entry point.  The kernel never reads
configuration files or environment variables itself; callers resolve a
``LedgerSettings`` here and pass the relevant values down.
"""

from ledger_config.settings import LedgerSettings, load_settings

__all__ = ["LedgerSettings", "load_settings"]
