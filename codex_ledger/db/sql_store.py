"""
SQL LedgerStore

PostgreSQL (psycopg2) in production; SQLite for local runs and tests.
Both run the same statements; SqlDialect carries the differences.

TABLES:
    ledger_entries  one row per entry, append-only (triggers reject
                    UPDATE and DELETE)
    ledger_heads    one row per subject: the current tip

CONSTRAINTS:
    UNIQUE (block_hash)
    UNIQUE (subject_id, event_type, content_hash, event_timestamp)  natural key
    UNIQUE (subject_id, chain_link)                                 no forks

chain_link is previous_block_hash, or the genesis sentinel for the first
entry, so two first entries for one subject also collide.

APPEND:
    1. Lock the subject's head row (FOR UPDATE on PostgreSQL;
       BEGIN IMMEDIATE takes the database write lock on SQLite)
    2. Compare the entry's previous_block_hash with the head
    3. Insert the entry, move the head, commit

Any constraint violation that slips past step 2 under a race is
reported as ChainConflict; the retry then sees the real state.
Timeouts and driver failures are Unavailable.
"""

import json
import sqlite3
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional, Union
from uuid import UUID

import psycopg2

from ..core.chain import GENESIS_HASH
from ..core.hasher import Hasher
from ..errors import ChainConflict, LedgerError, Unavailable
from ..observability import get_logger
from ..schemas import EventType, LedgerEntry, LedgerFilter, Witness
from .config import DatabaseConfig
from .store import LedgerStore, ensure_appendable

logger = get_logger(__name__)


# ============================================================
# DIALECTS
# ============================================================

_TABLES = """
CREATE TABLE IF NOT EXISTS ledger_entries (
    sequence {serial},
    entry_id TEXT NOT NULL UNIQUE,
    event_type TEXT NOT NULL,
    subject_id TEXT NOT NULL,
    author_id TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    previous_block_hash TEXT,
    chain_link TEXT NOT NULL,
    block_hash TEXT NOT NULL UNIQUE,
    signature TEXT NOT NULL,
    event_timestamp TEXT NOT NULL,
    metadata_json {json} NOT NULL,
    witnesses_json {json} NOT NULL,
    created_at TEXT NOT NULL,
    UNIQUE (subject_id, event_type, content_hash, event_timestamp),
    UNIQUE (subject_id, chain_link)
)
---
CREATE INDEX IF NOT EXISTS idx_ledger_entries_subject
    ON ledger_entries (subject_id, sequence)
---
CREATE INDEX IF NOT EXISTS idx_ledger_entries_author
    ON ledger_entries (author_id, sequence)
---
CREATE TABLE IF NOT EXISTS ledger_heads (
    subject_id TEXT PRIMARY KEY,
    last_block_hash TEXT NOT NULL,
    last_sequence BIGINT NOT NULL
)
"""

_POSTGRES_TRIGGERS = """
CREATE OR REPLACE FUNCTION ledger_entries_append_only() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'ledger_entries is append-only';
END;
$$ LANGUAGE plpgsql
---
DROP TRIGGER IF EXISTS ledger_entries_append_only ON ledger_entries
---
CREATE TRIGGER ledger_entries_append_only
    BEFORE UPDATE OR DELETE ON ledger_entries
    FOR EACH ROW EXECUTE FUNCTION ledger_entries_append_only()
"""

_SQLITE_TRIGGERS = """
CREATE TRIGGER IF NOT EXISTS ledger_entries_no_update
    BEFORE UPDATE ON ledger_entries
BEGIN
    SELECT RAISE(ABORT, 'ledger_entries is append-only');
END
---
CREATE TRIGGER IF NOT EXISTS ledger_entries_no_delete
    BEFORE DELETE ON ledger_entries
BEGIN
    SELECT RAISE(ABORT, 'ledger_entries is append-only');
END
"""


def _statements(script: str) -> list[str]:
    return [s.strip() for s in script.split("---") if s.strip()]


@dataclass(frozen=True)
class SqlDialect:
    """What differs between the SQL backends."""
    name: str
    qmark: bool
    lock_suffix: str
    returning: bool
    schema: tuple[str, ...]
    integrity_error: type
    driver_error: type

    def sql(self, statement: str) -> str:
        """Statements are written with %s placeholders."""
        return statement.replace("%s", "?") if self.qmark else statement

    def begin(self, cursor: Any, lock_timeout_ms: int, statement_timeout_ms: int) -> None:
        if self.name == "postgres":
            # SET LOCAL keeps the timeouts scoped to this transaction
            cursor.execute(f"SET LOCAL lock_timeout = '{int(lock_timeout_ms)}ms'")
            cursor.execute(f"SET LOCAL statement_timeout = '{int(statement_timeout_ms)}ms'")
        else:
            cursor.execute("BEGIN IMMEDIATE")


def postgres_dialect() -> SqlDialect:
    tables = _TABLES.format(serial="BIGSERIAL PRIMARY KEY", json="JSONB")
    return SqlDialect(
        name="postgres",
        qmark=False,
        lock_suffix=" FOR UPDATE",
        returning=True,
        schema=tuple(_statements(tables) + _statements(_POSTGRES_TRIGGERS)),
        integrity_error=psycopg2.IntegrityError,
        driver_error=psycopg2.Error,
    )


def sqlite_dialect() -> SqlDialect:
    tables = _TABLES.format(serial="INTEGER PRIMARY KEY AUTOINCREMENT", json="TEXT")
    return SqlDialect(
        name="sqlite",
        qmark=True,
        lock_suffix="",
        returning=False,
        schema=tuple(_statements(tables) + _statements(_SQLITE_TRIGGERS)),
        integrity_error=sqlite3.IntegrityError,
        driver_error=sqlite3.Error,
    )


def postgres_connection_factory(config: DatabaseConfig) -> Callable[[], Any]:
    def connect():
        return psycopg2.connect(config.to_dsn())
    return connect


def sqlite_connection_factory(path: Union[str, Path], busy_timeout_s: float = 5.0) -> Callable[[], Any]:
    """
    Connections in autocommit mode; the store issues BEGIN IMMEDIATE itself.

    A file path is required: every call opens a new connection, and
    ":memory:" would give each one its own empty database.
    """
    def connect():
        return sqlite3.connect(str(path), timeout=busy_timeout_s, isolation_level=None)
    return connect


# ============================================================
# STORE
# ============================================================

_COLUMNS = """
    sequence, entry_id, event_type, subject_id, author_id, content_hash,
    previous_block_hash, block_hash, signature, event_timestamp,
    metadata_json, witnesses_json, created_at
"""


class SqlLedgerStore(LedgerStore):
    """
    LedgerStore over a SQL database.

    THREAD SAFETY:
    Every operation opens its own connection from connection_factory
    and closes it. Nothing transactional is kept on the store.

    Usage:
        store = SqlLedgerStore(postgres_connection_factory(config), postgres_dialect())
        store.create_schema()
    """

    # Timeouts to prevent hanging under load
    LOCK_TIMEOUT_MS = 2000
    STATEMENT_TIMEOUT_MS = 10000

    # PostgreSQL error codes for lock/statement timeout
    PGCODE_LOCK_NOT_AVAILABLE = "55P03"
    PGCODE_QUERY_CANCELED = "57014"

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        dialect: SqlDialect,
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        self._connection_factory = connection_factory
        self._dialect = dialect
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    @property
    def backend_name(self) -> str:
        return self._dialect.name

    def __repr__(self) -> str:
        return f"SqlLedgerStore(dialect={self._dialect.name!r})"

    def _connect(self) -> Any:
        try:
            return self._connection_factory()
        except self._dialect.driver_error as e:
            raise Unavailable(f"Cannot connect to {self._dialect.name}: {e}") from e

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        "lock", "statement", "timeout" (canceled, cause unclear) or None.

        PostgreSQL raises 57014 for both lock_timeout and statement_timeout;
        the message tells them apart. SQLite reports "database is locked".
        """
        pgcode = getattr(e, "pgcode", None)
        err_msg = (getattr(e, "pgerror", None) or str(e)).lower()

        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"
        if pgcode == self.PGCODE_QUERY_CANCELED:
            if "lock timeout" in err_msg or "lock_timeout" in err_msg:
                return "lock"
            if "statement timeout" in err_msg or "statement_timeout" in err_msg:
                return "statement"
            return "timeout"
        if "database is locked" in err_msg or "database is busy" in err_msg:
            return "lock"
        return None

    def _unavailable(self, e: Exception) -> Unavailable:
        kind = self._timeout_kind(e)
        if kind == "lock":
            return Unavailable("Ledger busy - could not acquire lock. Try again.")
        if kind in ("statement", "timeout"):
            return Unavailable("Ledger query timed out.")
        return Unavailable(f"{self._dialect.name} error: {e}")

    # ================================================================
    # SCHEMA
    # ================================================================

    def create_schema(self) -> None:
        """Create tables, indexes and immutability triggers. Idempotent."""
        conn = self._connect()
        try:
            cursor = conn.cursor()
            for statement in self._dialect.schema:
                cursor.execute(statement)
            conn.commit()
            cursor.close()
            logger.info("Ledger schema ready", backend=self._dialect.name)
        except self._dialect.driver_error as e:
            conn.rollback()
            raise self._unavailable(e) from e
        finally:
            conn.close()

    # ================================================================
    # WRITES
    # ================================================================

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        q = self._dialect.sql
        conn = self._connect()
        cursor = None
        try:
            cursor = conn.cursor()
            self._dialect.begin(cursor, self._lock_timeout_ms, self._statement_timeout_ms)

            cursor.execute(
                q("SELECT last_block_hash FROM ledger_heads WHERE subject_id = %s")
                + self._dialect.lock_suffix,
                (entry.subject_id,),
            )
            head = cursor.fetchone()
            tip_hash = head[0] if head else None

            event_timestamp = Hasher.format_timestamp(entry.timestamp)
            cursor.execute(
                q("""
                    SELECT 1 FROM ledger_entries
                    WHERE subject_id = %s AND event_type = %s
                      AND content_hash = %s AND event_timestamp = %s
                """),
                (entry.subject_id, entry.event_type.value, entry.content_hash, event_timestamp),
            )
            duplicate = cursor.fetchone() is not None
            cursor.execute(
                q("SELECT subject_id FROM ledger_entries WHERE block_hash = %s"),
                (entry.block_hash,),
            )
            owner = cursor.fetchone()

            ensure_appendable(entry, tip_hash, duplicate, owner[0] if owner else None)

            created_at = datetime.now(timezone.utc)
            params = (
                str(entry.entry_id),
                entry.event_type.value,
                entry.subject_id,
                entry.author_id,
                entry.content_hash,
                entry.previous_block_hash,
                entry.previous_block_hash or GENESIS_HASH,
                entry.block_hash,
                entry.signature,
                event_timestamp,
                json.dumps(entry.metadata, sort_keys=True),
                json.dumps([w.model_dump(mode="json") for w in entry.witnesses]),
                Hasher.format_timestamp(created_at),
            )
            insert = q("""
                INSERT INTO ledger_entries (
                    entry_id, event_type, subject_id, author_id, content_hash,
                    previous_block_hash, chain_link, block_hash, signature,
                    event_timestamp, metadata_json, witnesses_json, created_at
                ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            """)
            if self._dialect.returning:
                cursor.execute(insert + " RETURNING sequence", params)
                sequence = cursor.fetchone()[0]
            else:
                cursor.execute(insert, params)
                sequence = cursor.lastrowid

            if head is None:
                cursor.execute(
                    q("""
                        INSERT INTO ledger_heads (subject_id, last_block_hash, last_sequence)
                        VALUES (%s, %s, %s)
                    """),
                    (entry.subject_id, entry.block_hash, sequence),
                )
            else:
                cursor.execute(
                    q("""
                        UPDATE ledger_heads
                        SET last_block_hash = %s, last_sequence = %s
                        WHERE subject_id = %s AND last_block_hash = %s
                    """),
                    (entry.block_hash, sequence, entry.subject_id, tip_hash),
                )
                if cursor.rowcount != 1:
                    raise ChainConflict(f"Head of {entry.subject_id} moved during append")

            conn.commit()

        except LedgerError:
            conn.rollback()
            raise
        except self._dialect.integrity_error as e:
            conn.rollback()
            raise ChainConflict(f"Concurrent append to {entry.subject_id}: {e}") from e
        except self._dialect.driver_error as e:
            try:
                conn.rollback()
            except self._dialect.driver_error:
                logger.warning("Rollback failed on broken connection", backend=self._dialect.name)
            raise self._unavailable(e) from e
        finally:
            if cursor is not None:
                cursor.close()
            conn.close()

        return entry.model_copy(update={"sequence": sequence, "created_at": created_at})

    # ================================================================
    # READS
    # ================================================================

    def _fetch(self, statement: str, params: tuple = ()) -> list[tuple]:
        conn = self._connect()
        try:
            cursor = conn.cursor()
            cursor.execute(self._dialect.sql(statement), params)
            rows = cursor.fetchall()
            cursor.close()
            # Ends the read transaction psycopg2 opened implicitly
            conn.rollback()
            return rows
        except self._dialect.driver_error as e:
            raise self._unavailable(e) from e
        finally:
            conn.close()

    def query(self, filter: Optional[LedgerFilter] = None) -> list[LedgerEntry]:
        clauses = []
        params: list[Any] = []
        if filter is not None:
            if filter.subject_id is not None:
                clauses.append("subject_id = %s")
                params.append(filter.subject_id)
            if filter.author_id is not None:
                clauses.append("author_id = %s")
                params.append(filter.author_id)
            if filter.event_type is not None:
                clauses.append("event_type = %s")
                params.append(filter.event_type.value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self._fetch(
            f"SELECT {_COLUMNS} FROM ledger_entries {where} ORDER BY sequence",
            tuple(params),
        )
        return [self._row_to_entry(row) for row in rows]

    def latest(self, subject_id: str) -> Optional[LedgerEntry]:
        rows = self._fetch(
            f"""
                SELECT {_COLUMNS} FROM ledger_entries
                WHERE subject_id = %s
                ORDER BY sequence DESC
                LIMIT 1
            """,
            (subject_id,),
        )
        return self._row_to_entry(rows[0]) if rows else None

    def count(self) -> int:
        return self._fetch("SELECT COUNT(*) FROM ledger_entries")[0][0]

    def _row_to_entry(self, row: tuple) -> LedgerEntry:
        """Convert a database row to a LedgerEntry."""
        # JSONB comes back decoded from psycopg2, TEXT does not
        metadata = row[10]
        if isinstance(metadata, str):
            metadata = json.loads(metadata)
        witnesses = row[11]
        if isinstance(witnesses, str):
            witnesses = json.loads(witnesses)

        return LedgerEntry(
            sequence=row[0],
            entry_id=UUID(row[1]) if isinstance(row[1], str) else row[1],
            event_type=EventType(row[2]),
            subject_id=row[3],
            author_id=row[4],
            content_hash=row[5],
            previous_block_hash=row[6],
            block_hash=row[7],
            signature=row[8],
            timestamp=Hasher.parse_timestamp(row[9]),
            metadata=metadata,
            witnesses=[Witness.model_validate(w) for w in witnesses],
            created_at=Hasher.parse_timestamp(row[12]),
        )
