"""Shared fixtures for the authorship ledger tests."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from codex_ledger.core import AuthorshipLedger, ChainLinker, Fingerprinter, WitnessNode
from codex_ledger.db import InMemoryLedgerStore
from codex_ledger.observability import reset_metrics
from codex_ledger.schemas import EventDraft, EventType, LedgerEntry

TEST_SECRET = "test-chain-secret-not-for-production"
T0 = datetime(2024, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def fresh_metrics():
    reset_metrics()
    yield


@pytest.fixture
def linker():
    return ChainLinker(TEST_SECRET)


@pytest.fixture
def witness():
    return WitnessNode("primary-node")


@pytest.fixture
def store():
    return InMemoryLedgerStore()


@pytest.fixture
def ledger(store, linker, witness):
    return AuthorshipLedger(store=store, linker=linker, witnesses=[witness])


@pytest.fixture
def make_draft():
    """Factory for EventDrafts; timestamps default to T0 + `minute` minutes."""
    def _make(
        event_type: EventType = EventType.CREATED,
        subject_id: str = "essay-1",
        author_id: str = "ada",
        title: str = "On Tides",
        body: str = "The moon pulls; the sea answers.",
        minute: int = 0,
        **kwargs,
    ) -> EventDraft:
        kwargs.setdefault("timestamp", T0 + timedelta(minutes=minute))
        return EventDraft(
            event_type=event_type,
            subject_id=subject_id,
            author_id=author_id,
            title=title,
            body=body,
            **kwargs,
        )
    return _make


@pytest.fixture
def make_entry(linker):
    """
    Factory for linked, signed, unpersisted entries.

    Used to drive stores directly, without the ledger's lifecycle rules.
    """
    def _make(
        previous: Optional[LedgerEntry] = None,
        subject_id: str = "essay-1",
        event_type: EventType = EventType.CREATED,
        author_id: str = "ada",
        body: str = "The moon pulls; the sea answers.",
        minute: int = 0,
    ) -> LedgerEntry:
        timestamp = T0 + timedelta(minutes=minute)
        content_hash = Fingerprinter.fingerprint("On Tides", body, author_id, timestamp)
        previous_block_hash = previous.block_hash if previous is not None else None
        block_hash = linker.link(content_hash, previous_block_hash, timestamp, author_id)
        return LedgerEntry(
            event_type=event_type,
            subject_id=subject_id,
            author_id=author_id,
            content_hash=content_hash,
            previous_block_hash=previous_block_hash,
            block_hash=block_hash,
            signature=linker.sign(content_hash, block_hash, timestamp),
            timestamp=timestamp,
        )
    return _make
