"""
Flat-log LedgerStore: one JSON object per line.

FILE LAYOUT:
- UTF-8, newline-delimited, no header or footer
- Each line is LedgerEntry.model_dump_json() of a persisted entry
- Lines are only ever added at the end

CRASH TOLERANCE:
- An append is one write() of one full line, then flush + fsync
- Bytes after the last newline are an unfinished write: "not yet
  committed". Readers ignore them; the next append truncates them first.
- A complete line that does not parse is skipped with a warning. The
  verifier then reports the broken linkage around it.

Appends are serialized by a process-local lock. Only one process may
write a given file.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from threading import Lock
from typing import Optional, Union

from pydantic import ValidationError

from ..errors import Unavailable
from ..observability import get_logger
from ..schemas import LedgerEntry, LedgerFilter
from .store import LedgerStore, ensure_appendable, stamp

logger = get_logger(__name__)


@dataclass
class LogScan:
    """Everything one full read of the file found."""
    entries: list[LedgerEntry] = field(default_factory=list)
    line_count: int = 0
    skipped_lines: list[str] = field(default_factory=list)
    committed_bytes: int = 0
    uncommitted_bytes: int = 0

    @property
    def has_partial_tail(self) -> bool:
        return self.uncommitted_bytes > 0


def scan_log(path: Path) -> LogScan:
    """
    Parse a ledger log file.

    Raises:
        Unavailable: The file exists but cannot be read
    """
    try:
        data = path.read_bytes()
    except FileNotFoundError:
        return LogScan()
    except OSError as e:
        raise Unavailable(f"Cannot read ledger log {path}: {e}") from e

    *complete, tail = data.split(b"\n")
    scan = LogScan(
        committed_bytes=len(data) - len(tail),
        uncommitted_bytes=len(tail),
    )

    for line_number, raw in enumerate(complete, start=1):
        if not raw.strip():
            continue
        scan.line_count += 1
        try:
            scan.entries.append(LedgerEntry.model_validate_json(raw))
        except ValidationError as e:
            warning = f"Line {line_number}: unreadable entry skipped ({e.error_count()} errors)"
            scan.skipped_lines.append(warning)
            logger.warning("Skipped malformed ledger line", path=str(path), line=line_number)

    if scan.has_partial_tail:
        logger.info(
            "Ignoring uncommitted tail of ledger log",
            path=str(path),
            bytes=scan.uncommitted_bytes,
        )
    return scan


class JsonlLedgerStore(LedgerStore):
    """LedgerStore over an append-only JSON-lines file."""

    backend_name = "jsonl"

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)
        self._lock = Lock()

    def __repr__(self) -> str:
        return f"JsonlLedgerStore(path={str(self.path)!r})"

    def scan(self) -> LogScan:
        return scan_log(self.path)

    def append(self, entry: LedgerEntry) -> LedgerEntry:
        with self._lock:
            scan = self.scan()

            tip_hash: Optional[str] = None
            for existing in scan.entries:
                if existing.subject_id == entry.subject_id:
                    tip_hash = existing.block_hash
            ensure_appendable(
                entry,
                tip_hash,
                duplicate=any(e.natural_key == entry.natural_key for e in scan.entries),
                block_hash_owner=next(
                    (e.subject_id for e in scan.entries if e.block_hash == entry.block_hash), None
                ),
            )

            last_sequence = max((e.sequence or 0 for e in scan.entries), default=0)
            persisted = stamp(entry, sequence=max(last_sequence, scan.line_count) + 1)
            line = (persisted.model_dump_json() + "\n").encode("utf-8")

            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                if scan.has_partial_tail:
                    with open(self.path, "r+b") as f:
                        f.truncate(scan.committed_bytes)
                    logger.warning(
                        "Truncated uncommitted tail before append",
                        path=str(self.path),
                        bytes=scan.uncommitted_bytes,
                    )
                with open(self.path, "ab") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError as e:
                raise Unavailable(f"Cannot append to ledger log {self.path}: {e}") from e

            return persisted

    def query(self, filter: Optional[LedgerFilter] = None) -> list[LedgerEntry]:
        entries = sorted(self.scan().entries, key=lambda e: e.sequence or 0)
        if filter is None:
            return entries
        return [e for e in entries if filter.matches(e)]

    def latest(self, subject_id: str) -> Optional[LedgerEntry]:
        chain = self.query(LedgerFilter(subject_id=subject_id))
        return chain[-1] if chain else None

    def count(self) -> int:
        return len(self.scan().entries)
