"""
Event Journal

An audit log of committed ledger entries, one JSON object per line.
Each line carries its own entry_hash and nothing else: there is NO
linkage to the previous line.

That makes the journal a weaker contract than any LedgerStore. It can
show that a single line was altered, but not that a line was removed,
reordered or inserted. Never use it as a source of chain truth.

    entry_hash = SHA-256( canonical(record fields) + recorded_at )
"""

import os
from collections import Counter
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Optional, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, ValidationError

from ..core.hasher import Hasher
from ..errors import Unavailable
from ..observability import get_logger
from ..schemas import EventType, LedgerEntry, LedgerFilter, LedgerStats

logger = get_logger(__name__)


class JournalRecord(BaseModel):
    """One journal line."""
    journal_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    subject_id: str
    author_id: str
    content_hash: str
    block_hash: str
    sequence: Optional[int] = None
    timestamp: datetime
    metadata: dict[str, Any] = Field(default_factory=dict)
    recorded_at: datetime
    entry_hash: str = ""

    def compute_hash(self) -> str:
        fields = self.model_dump(mode="python", exclude={"entry_hash", "recorded_at"})
        return Hasher.sha256_hex(
            Hasher.canonicalize(fields) + Hasher.format_timestamp(self.recorded_at)
        )

    def matches(self, filter: Optional[LedgerFilter]) -> bool:
        if filter is None:
            return True
        if filter.subject_id is not None and self.subject_id != filter.subject_id:
            return False
        if filter.author_id is not None and self.author_id != filter.author_id:
            return False
        if filter.event_type is not None and self.event_type != filter.event_type:
            return False
        return True


class JournalIntegrity(BaseModel):
    valid: bool
    total_records: int
    corrupted_lines: list[int] = Field(default_factory=list)


class EventJournal:
    """Append-only, independently hashed JSON-lines journal."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = Lock()

    def __repr__(self) -> str:
        return f"EventJournal(path={str(self.path)!r})"

    def append(self, entry: LedgerEntry) -> JournalRecord:
        record = JournalRecord(
            event_type=entry.event_type,
            subject_id=entry.subject_id,
            author_id=entry.author_id,
            content_hash=entry.content_hash,
            block_hash=entry.block_hash,
            sequence=entry.sequence,
            timestamp=entry.timestamp,
            metadata=dict(entry.metadata),
            recorded_at=datetime.now(timezone.utc),
        )
        record = record.model_copy(update={"entry_hash": record.compute_hash()})
        line = (record.model_dump_json() + "\n").encode("utf-8")

        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                with open(self.path, "ab") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise Unavailable(f"Cannot write journal {self.path}: {e}") from e
        return record

    def _read_lines(self) -> list[tuple[int, bytes]]:
        try:
            data = self.path.read_bytes()
        except FileNotFoundError:
            return []
        except OSError as e:
            raise Unavailable(f"Cannot read journal {self.path}: {e}") from e
        # Anything after the last newline was never committed
        complete = data.split(b"\n")[:-1]
        return [(n, raw) for n, raw in enumerate(complete, start=1) if raw.strip()]

    def _parse(self) -> tuple[list[JournalRecord], list[int]]:
        records: list[JournalRecord] = []
        unreadable: list[int] = []
        for line_number, raw in self._read_lines():
            try:
                records.append(JournalRecord.model_validate_json(raw))
            except ValidationError:
                unreadable.append(line_number)
                logger.warning("Skipped malformed journal line", line=line_number)
        return records, unreadable

    def entries(self, filter: Optional[LedgerFilter] = None) -> list[JournalRecord]:
        records, _ = self._parse()
        return [r for r in records if r.matches(filter)]

    def verify_integrity(self) -> JournalIntegrity:
        """Recompute every line's entry_hash. Unreadable lines count as corrupted."""
        corrupted: list[int] = []
        total = 0
        for line_number, raw in self._read_lines():
            total += 1
            try:
                record = JournalRecord.model_validate_json(raw)
            except ValidationError:
                corrupted.append(line_number)
                continue
            if not Hasher.constant_time_compare(record.compute_hash(), record.entry_hash):
                corrupted.append(line_number)

        if corrupted:
            logger.warning("Journal integrity check failed", corrupted=len(corrupted))
        return JournalIntegrity(valid=not corrupted, total_records=total, corrupted_lines=corrupted)

    def stats(self) -> LedgerStats:
        records, _ = self._parse()
        return LedgerStats(
            total_entries=len(records),
            unique_subjects=len({r.subject_id for r in records}),
            unique_authors=len({r.author_id for r in records}),
            event_types=dict(Counter(r.event_type.value for r in records)),
        )
