"""
Shared Ledger Instance

Builds the process-wide AuthorshipLedger from LedgerConfig and holds it
for the API and the CLIs.

Backend is determined by environment variables (see db/config.py):
- CODEX_LEDGER_BACKEND: Explicit selection (memory, jsonl, sqlite, postgres)
- DATABASE_URL or DATABASE_HOST: PostgreSQL (auto-selected)
- CODEX_LEDGER_PATH: JSON-lines file (auto-selected)
- Nothing set: in-memory (default for development)

A backend that is configured but cannot be reached is an error. There
is no silent fallback to a weaker store.
"""

from threading import Lock
from typing import Optional

from .core import AuthorshipLedger, ChainLinker, WitnessNode
from .db import (
    EventJournal,
    InMemoryLedgerStore,
    JsonlLedgerStore,
    LedgerConfig,
    LedgerStore,
    SqlLedgerStore,
    StoreBackend,
    postgres_connection_factory,
    postgres_dialect,
    sqlite_connection_factory,
    sqlite_dialect,
)
from .observability import get_logger

logger = get_logger(__name__)

_ledger: Optional[AuthorshipLedger] = None
_ledger_lock = Lock()


def create_store(config: LedgerConfig) -> LedgerStore:
    """
    Create the LedgerStore the configuration asks for.

    SQL backends get their schema created (idempotent).
    """
    if config.backend == StoreBackend.MEMORY:
        logger.info("Using in-memory store (no persistence)")
        return InMemoryLedgerStore()

    if config.backend == StoreBackend.JSONL:
        if not config.ledger_path:
            raise RuntimeError("CODEX_LEDGER_PATH must be set for the jsonl backend")
        logger.info("Using JSON-lines store", path=config.ledger_path)
        return JsonlLedgerStore(config.ledger_path)

    if config.backend == StoreBackend.SQLITE:
        if not config.sqlite_path:
            raise RuntimeError("CODEX_LEDGER_SQLITE_PATH must be set for the sqlite backend")
        store = SqlLedgerStore(sqlite_connection_factory(config.sqlite_path), sqlite_dialect())
        store.create_schema()
        logger.info("Using SQLite store", path=config.sqlite_path)
        return store

    if config.database is None:
        raise RuntimeError("postgres backend selected but no database is configured")
    store = SqlLedgerStore(postgres_connection_factory(config.database), postgres_dialect())
    store.create_schema()
    logger.info(
        "PostgreSQL connection established",
        database=config.database.to_url(include_password=False),
    )
    return store


def build_ledger(config: LedgerConfig, store: Optional[LedgerStore] = None) -> AuthorshipLedger:
    """Wire store, linker, witness and journal into a ledger."""
    if store is None:
        store = create_store(config)

    witnesses = []
    if config.witness_private_key:
        witnesses.append(WitnessNode(config.witness_id, config.witness_private_key))

    witness_keys = {}
    if config.witness_public_key:
        witness_keys[config.witness_id] = config.witness_public_key

    journal = EventJournal(config.journal_path) if config.journal_path else None

    ledger = AuthorshipLedger(
        store=store,
        linker=ChainLinker(config.secret),
        witnesses=witnesses,
        journal=journal,
        max_append_retries=config.max_append_retries,
        witness_keys=witness_keys,
    )
    logger.info(
        "Ledger ready",
        backend=store.backend_name,
        witness_id=config.witness_id if witnesses else None,
        journal=config.journal_path,
        ephemeral_secret=config.ephemeral_secret,
    )
    return ledger


def get_ledger() -> AuthorshipLedger:
    """The process-wide ledger, built from the environment on first use."""
    global _ledger
    if _ledger is None:
        with _ledger_lock:
            if _ledger is None:
                _ledger = build_ledger(LedgerConfig.from_env())
    return _ledger


def set_ledger(ledger: Optional[AuthorshipLedger]) -> None:
    """Replace (or clear) the process-wide ledger."""
    global _ledger
    with _ledger_lock:
        _ledger = ledger
