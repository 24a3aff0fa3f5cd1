"""
Tests for the independently hashed event journal.

Each line proves only itself. These tests also pin down what the
journal cannot detect, so nobody mistakes it for a chain.
"""

import json

import pytest

from codex_ledger.db import EventJournal, InMemoryLedgerStore
from codex_ledger.errors import Unavailable
from codex_ledger.schemas import EventType, LedgerFilter


@pytest.fixture
def journal(tmp_path):
    return EventJournal(tmp_path / "journal.jsonl")


@pytest.fixture
def persisted(make_entry):
    store = InMemoryLedgerStore()
    first = store.append(make_entry())
    second = store.append(make_entry(previous=first, event_type=EventType.UPDATED, minute=1))
    third = store.append(make_entry(subject_id="other", author_id="grace", minute=2))
    return [first, second, third]


class TestEventJournal:

    def test_append_returns_hashed_record(self, journal, persisted):
        record = journal.append(persisted[0])
        assert record.entry_hash == record.compute_hash()
        assert record.block_hash == persisted[0].block_hash
        assert record.sequence == 1

    def test_entries_and_filter(self, journal, persisted):
        for entry in persisted:
            journal.append(entry)

        assert len(journal.entries()) == 3
        assert [r.sequence for r in journal.entries(LedgerFilter(subject_id="essay-1"))] == [1, 2]
        assert len(journal.entries(LedgerFilter(author_id="grace"))) == 1

    def test_verify_intact(self, journal, persisted):
        for entry in persisted:
            journal.append(entry)
        integrity = journal.verify_integrity()
        assert integrity.valid
        assert integrity.total_records == 3

    def test_altered_line_detected(self, journal, persisted):
        for entry in persisted:
            journal.append(entry)

        lines = journal.path.read_text().splitlines()
        record = json.loads(lines[1])
        record["author_id"] = "mallory"
        lines[1] = json.dumps(record)
        journal.path.write_text("\n".join(lines) + "\n")

        integrity = journal.verify_integrity()
        assert not integrity.valid
        assert integrity.corrupted_lines == [2]

    def test_unreadable_line_counts_as_corrupted(self, journal, persisted):
        journal.append(persisted[0])
        with open(journal.path, "a") as f:
            f.write("garbage\n")
        integrity = journal.verify_integrity()
        assert integrity.corrupted_lines == [2]
        assert len(journal.entries()) == 1

    def test_removed_line_not_detected(self, journal, persisted):
        """No linkage between lines: deletion goes unnoticed."""
        for entry in persisted:
            journal.append(entry)
        lines = journal.path.read_text().splitlines()
        journal.path.write_text(lines[0] + "\n" + lines[2] + "\n")

        assert journal.verify_integrity().valid

    def test_partial_tail_ignored(self, journal, persisted):
        journal.append(persisted[0])
        with open(journal.path, "a") as f:
            f.write('{"journal_id": "unfini')
        assert journal.verify_integrity().total_records == 1

    def test_stats(self, journal, persisted):
        for entry in persisted:
            journal.append(entry)
        stats = journal.stats()
        assert stats.total_entries == 3
        assert stats.unique_subjects == 2
        assert stats.unique_authors == 2
        assert stats.event_types == {"CREATED": 2, "UPDATED": 1}

    def test_missing_file_is_empty(self, journal):
        assert journal.entries() == []
        assert journal.verify_integrity().valid

    def test_unwritable_is_unavailable(self, tmp_path, persisted):
        blocker = tmp_path / "blocker"
        blocker.write_text("a file")
        with pytest.raises(Unavailable):
            EventJournal(blocker / "journal.jsonl").append(persisted[0])
