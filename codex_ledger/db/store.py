"""
Ledger Store Abstraction

This module defines the LedgerStore interface, the append guard every
backend applies, and the in-memory backend.

Other backends:
- file_store.JsonlLedgerStore: flat append-only JSON-lines log
- sql_store.SqlLedgerStore: PostgreSQL (production) or SQLite

The store is responsible for:
- Compare-and-append: an entry lands only if its previous_block_hash is
  still the subject's tip
- Rejecting double submission (natural key) and block hash reuse
- Assigning sequence and created_at
- Ordering and durability

The caller (AuthorshipLedger) is responsible for:
- Fingerprinting, linking and signing
- Lifecycle rules
- Retrying on ChainConflict

There is no update and no delete. Omission is the immutability mechanism.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timezone
from threading import Lock
from typing import Optional

from ..errors import ChainConflict, DuplicateEntry, InvalidEvent
from ..schemas import LedgerEntry, LedgerFilter


def ensure_appendable(
    entry: LedgerEntry,
    tip_hash: Optional[str],
    duplicate: bool,
    block_hash_owner: Optional[str] = None,
) -> None:
    """
    The append guard, shared by every backend.

    Must run while the backend holds its writer lock (or row lock),
    against the state that the write will be applied to.

    Raises:
        DuplicateEntry: Natural key or block hash already recorded
            for this subject
        ChainConflict: entry does not extend the current tip
        InvalidEvent: block hash already belongs to another subject

    block_hash_owner is the subject_id of the recorded entry with the
    same block hash, if any. The block hash does not bind the subject,
    so identical content, author and instant collide across subjects.
    """
    if duplicate:
        raise DuplicateEntry(
            f"{entry.event_type.value} for {entry.subject_id} with content "
            f"{entry.content_hash[:16]}... at {entry.timestamp.isoformat()} already recorded"
        )

    if entry.previous_block_hash != tip_hash:
        if tip_hash is None:
            raise ChainConflict(
                f"Chain for {entry.subject_id} is empty; first entry must not "
                f"reference a predecessor"
            )
        raise ChainConflict(
            f"Tip of {entry.subject_id} is {tip_hash[:16]}..., entry extends "
            f"{(entry.previous_block_hash or 'nothing')[:16]}..."
        )

    if block_hash_owner is None:
        return
    if block_hash_owner != entry.subject_id:
        raise InvalidEvent(
            f"Block hash {entry.block_hash[:16]}... collides with another subject's entry; "
            f"record {entry.subject_id} with a distinct timestamp"
        )
    raise DuplicateEntry(f"Block hash {entry.block_hash[:16]}... already recorded")


def stamp(entry: LedgerEntry, sequence: int, created_at: Optional[datetime] = None) -> LedgerEntry:
    """Copy of entry with its store-assigned fields set."""
    return entry.model_copy(update={
        "sequence": sequence,
        "created_at": created_at or datetime.now(timezone.utc),
    })


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class LedgerStore(ABC):
    """
    Append-only persistence for ledger entries.

    Implementations must ensure:
    1. append is all-or-nothing: a failed append leaves nothing visible
    2. Two appends racing from the same tip: exactly one lands, the
       other raises ChainConflict
    3. sequence strictly increases in append order (starting at 1)
    4. Backend failures and timeouts raise Unavailable

    Reads never wait for the writer lock to be released.
    """

    backend_name: str = "abstract"

    @abstractmethod
    def append(self, entry: LedgerEntry) -> LedgerEntry:
        """
        Append a fully linked and signed entry.

        Returns:
            The persisted entry, with sequence and created_at assigned

        Raises:
            DuplicateEntry, ChainConflict, InvalidEvent (block hash owned
            by another subject), Unavailable
        """

    @abstractmethod
    def query(self, filter: Optional[LedgerFilter] = None) -> list[LedgerEntry]:
        """Entries matching filter, ascending by sequence."""

    @abstractmethod
    def latest(self, subject_id: str) -> Optional[LedgerEntry]:
        """The tip of a subject's chain, or None if it has no entries."""

    @abstractmethod
    def count(self) -> int:
        """Total entries across all subjects."""


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryLedgerStore(LedgerStore):
    """
    In-memory LedgerStore.

    Suitable for tests, demos, and ephemeral runs. Nothing survives
    the process.
    """

    backend_name = "memory"

    def __init__(self):
        self._entries: list[LedgerEntry] = []
        self._tips: dict[str, LedgerEntry] = {}
        self._natural_keys: set[tuple] = set()
        self._block_owners: dict[str, str] = {}
        self._lock = Lock()

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        with self._lock:
            ensure_appendable(
                entry,
                self._tip_hash(entry.subject_id),
                duplicate=entry.natural_key in self._natural_keys,
                block_hash_owner=self._block_owners.get(entry.block_hash),
            )
            persisted = stamp(entry, sequence=len(self._entries) + 1)
            self._entries.append(persisted)
            self._tips[persisted.subject_id] = persisted
            self._natural_keys.add(persisted.natural_key)
            self._block_owners[persisted.block_hash] = persisted.subject_id
            return persisted

    def _tip_hash(self, subject_id: str) -> Optional[str]:
        tip = self._tips.get(subject_id)
        return tip.block_hash if tip is not None else None

    def query(self, filter: Optional[LedgerFilter] = None) -> list[LedgerEntry]:
        snapshot = list(self._entries)
        if filter is None:
            return snapshot
        return [e for e in snapshot if filter.matches(e)]

    def latest(self, subject_id: str) -> Optional[LedgerEntry]:
        return self._tips.get(subject_id)

    def count(self) -> int:
        return len(self._entries)

