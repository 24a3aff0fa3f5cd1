"""
Storage Layer for the Authorship Ledger

Provides:
- LedgerStore abstraction with three independent backends
  (in-memory, JSON-lines file, SQL)
- The independently hashed EventJournal
- Environment-based configuration
"""

from .store import LedgerStore, InMemoryLedgerStore, ensure_appendable
from .file_store import JsonlLedgerStore, LogScan, scan_log
from .sql_store import (
    SqlLedgerStore,
    SqlDialect,
    postgres_dialect,
    sqlite_dialect,
    postgres_connection_factory,
    sqlite_connection_factory,
)
from .journal import EventJournal, JournalRecord, JournalIntegrity
from .config import DatabaseConfig, LedgerConfig, StoreBackend, get_store_backend

__all__ = [
    "LedgerStore",
    "InMemoryLedgerStore",
    "ensure_appendable",
    "JsonlLedgerStore",
    "LogScan",
    "scan_log",
    "SqlLedgerStore",
    "SqlDialect",
    "postgres_dialect",
    "sqlite_dialect",
    "postgres_connection_factory",
    "sqlite_connection_factory",
    "EventJournal",
    "JournalRecord",
    "JournalIntegrity",
    "DatabaseConfig",
    "LedgerConfig",
    "StoreBackend",
    "get_store_backend",
]
