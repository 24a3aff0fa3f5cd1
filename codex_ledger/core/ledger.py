"""
Authorship Ledger - The Heart of the System

This is an append-only, hash-chained ledger of content lifecycle events.
Nothing is "edited". Things happen to content.

The ledger:
- Accepts lifecycle events from the content workflow
- Enforces lifecycle rules
- Fingerprints, links, signs and witnesses each event
- Appends through the LedgerStore's compare-and-append
- Answers proof questions (verify, certify, history, authorship)

Rules (enforced in code):
- CREATED only on an empty chain
- UPDATED / DELETED / TRANSFERRED need an existing chain
- Nothing follows DELETED

CHAIN SCOPE:
One chain per subject_id. Append-linking and verification use the same
scope. Writers to different subjects never contend.

CONCURRENCY:
The tip is read, the entry linked against it, and the store appends only
if the tip is unchanged. On ChainConflict the tip is re-read and the
event re-linked, at most max_append_retries times. Nothing else is
retried here.
"""

import time
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Iterable, Optional, Union, TYPE_CHECKING

from ..errors import ChainConflict, DuplicateEntry, InvalidEvent, Unavailable
from ..observability import get_logger, get_metrics
from ..schemas import (
    AuthorshipReport,
    Certificate,
    CertificateValidation,
    EventDraft,
    EventType,
    HistoryItem,
    LedgerEntry,
    LedgerFilter,
    LedgerStats,
    VerificationResult,
)
from .certificates import CertificateIssuer, CertificateValidator
from .chain import ChainLinker, Fingerprinter
from .verifier import IntegrityVerifier
from .witness import WitnessNode

if TYPE_CHECKING:
    from ..db.journal import EventJournal
    from ..db.store import LedgerStore

logger = get_logger(__name__)

DEFAULT_MAX_APPEND_RETRIES = 3


def word_count(title: str, body: str) -> int:
    return len(f"{title} {body}".split())


class AuthorshipLedger:
    """
    The ledger facade.

    Storage is delegated to a LedgerStore; the chain secret lives in the
    ChainLinker. Both are injected, never looked up.

    Args:
        store: Any LedgerStore backend
        linker: ChainLinker holding the process-wide secret
        witnesses: Nodes that attest to every new block hash
        journal: Optional EventJournal mirror of committed entries
        max_append_retries: Re-reads of the tip after ChainConflict
        witness_keys: Extra witness_id -> public key pairs the verifier
            should check (keys of `witnesses` are always included)
    """

    def __init__(
        self,
        store: "LedgerStore",
        linker: ChainLinker,
        witnesses: Iterable[WitnessNode] = (),
        journal: Optional["EventJournal"] = None,
        max_append_retries: int = DEFAULT_MAX_APPEND_RETRIES,
        witness_keys: Optional[dict[str, str]] = None,
    ):
        if max_append_retries < 0:
            raise ValueError("max_append_retries must be >= 0")

        self._store = store
        self._linker = linker
        self._witnesses = list(witnesses)
        self._journal = journal
        self._max_append_retries = max_append_retries

        keys = {w.witness_id: w.public_key for w in self._witnesses}
        keys.update(witness_keys or {})
        self._verifier = IntegrityVerifier(store, linker, keys)
        self._issuer = CertificateIssuer(store, linker, self._verifier)
        self._validator = CertificateValidator(store, self._issuer, self._verifier)

    def __repr__(self) -> str:
        return f"AuthorshipLedger(store={self._store!r}, witnesses={len(self._witnesses)})"

    @property
    def store(self) -> "LedgerStore":
        return self._store

    @property
    def journal(self) -> Optional["EventJournal"]:
        return self._journal

    @property
    def verifier(self) -> IntegrityVerifier:
        return self._verifier

    # ================================================================
    # RECORDING
    # ================================================================

    def record_event(self, draft: EventDraft) -> LedgerEntry:
        """
        Record one lifecycle event.

        Returns:
            The persisted entry

        Raises:
            DuplicateEntry: This exact event is already recorded
            InvalidEvent: The event breaks the lifecycle rules, or its
                block hash collides with another subject's entry
            ChainConflict: The tip kept moving past the retry budget
            Unavailable: The store could not complete the append
        """
        timestamp = draft.timestamp or datetime.now(timezone.utc)
        content_hash = Fingerprinter.fingerprint(
            draft.title, draft.body, draft.author_id, timestamp
        )

        attempt = 0
        while True:
            attempt += 1
            start = time.perf_counter()

            tip = self._store.latest(draft.subject_id)
            if tip is not None:
                self._reject_resubmission(draft, content_hash, timestamp)
            self._check_lifecycle(draft, tip)

            entry = self._build_entry(draft, content_hash, timestamp, tip)
            try:
                persisted = self._store.append(entry)
            except ChainConflict:
                get_metrics().record_conflict()
                if attempt > self._max_append_retries:
                    logger.error(
                        "Append abandoned after repeated conflicts",
                        subject_id=draft.subject_id,
                        attempts=attempt,
                    )
                    raise
                logger.warning(
                    "Append conflict, re-reading tip",
                    subject_id=draft.subject_id,
                    attempt=attempt,
                )
                continue
            except DuplicateEntry:
                get_metrics().record_duplicate()
                logger.info(
                    "Duplicate event rejected",
                    subject_id=draft.subject_id,
                    event_type=draft.event_type.value,
                )
                raise

            get_metrics().record_append((time.perf_counter() - start) * 1000)
            logger.info(
                "Entry appended",
                subject_id=persisted.subject_id,
                event_type=persisted.event_type.value,
                sequence=persisted.sequence,
                block_hash=persisted.block_hash[:16],
            )
            self._mirror_to_journal(persisted)
            return persisted

    def _reject_resubmission(self, draft: EventDraft, content_hash: str, timestamp: datetime) -> None:
        """
        A resubmitted event is a duplicate, not a lifecycle violation.

        The store enforces this too; checking here first gives the
        resubmitted CREATED a DuplicateEntry instead of InvalidEvent.
        """
        key = (draft.subject_id, draft.event_type.value, content_hash, timestamp)
        recorded = self._store.query(
            LedgerFilter(subject_id=draft.subject_id, event_type=draft.event_type)
        )
        if any(e.natural_key == key for e in recorded):
            get_metrics().record_duplicate()
            raise DuplicateEntry(
                f"{draft.event_type.value} for {draft.subject_id} at "
                f"{timestamp.isoformat()} already recorded"
            )

    @staticmethod
    def _check_lifecycle(draft: EventDraft, tip: Optional[LedgerEntry]) -> None:
        if draft.event_type == EventType.CREATED:
            if tip is not None:
                raise InvalidEvent(f"Subject {draft.subject_id} was already created")
            return
        if tip is None:
            raise InvalidEvent(
                f"{draft.event_type.value} for {draft.subject_id} requires a prior CREATED"
            )
        if tip.event_type == EventType.DELETED:
            raise InvalidEvent(f"Subject {draft.subject_id} was deleted")

    def _build_entry(
        self,
        draft: EventDraft,
        content_hash: str,
        timestamp: datetime,
        tip: Optional[LedgerEntry],
    ) -> LedgerEntry:
        previous_block_hash = tip.block_hash if tip is not None else None
        block_hash = self._linker.link(content_hash, previous_block_hash, timestamp, draft.author_id)
        signature = self._linker.sign(content_hash, block_hash, timestamp)

        metadata: dict[str, Any] = {
            "title": draft.title,
            "license": draft.license,
            "word_count": word_count(draft.title, draft.body),
            "previous_version": tip.content_hash if tip is not None else None,
            "client_address": draft.request_context.client_address,
            "client_agent": draft.request_context.client_agent,
        }

        return LedgerEntry(
            event_type=draft.event_type,
            subject_id=draft.subject_id,
            author_id=draft.author_id,
            content_hash=content_hash,
            previous_block_hash=previous_block_hash,
            block_hash=block_hash,
            signature=signature,
            timestamp=timestamp,
            metadata={k: v for k, v in metadata.items() if v is not None},
            witnesses=[w.attest(block_hash) for w in self._witnesses],
        )

    def _mirror_to_journal(self, entry: LedgerEntry) -> None:
        """The ledger commit already happened; a journal failure must not undo it."""
        if self._journal is None:
            return
        try:
            self._journal.append(entry)
        except Unavailable:
            get_metrics().record_journal_failure()
            logger.exception(
                "Journal write failed after ledger commit",
                subject_id=entry.subject_id,
                sequence=entry.sequence,
            )

    # ================================================================
    # PROOF
    # ================================================================

    def verify_chain(self, subject_id: str) -> VerificationResult:
        result = self._verifier.verify_chain(subject_id)
        if not result.valid:
            get_metrics().record_verification_failure()
        return result

    def issue_certificate(self, subject_id: str) -> Certificate:
        return self._issuer.issue(subject_id)

    def validate_certificate(self, certificate: Union[Certificate, dict, Any]) -> CertificateValidation:
        return self._validator.validate(certificate)

    def get_history(self, subject_id: str) -> list[HistoryItem]:
        """Entry summaries for display, in chain order."""
        entries = self._store.query(LedgerFilter(subject_id=subject_id))
        return [HistoryItem.from_entry(e) for e in entries]

    def verify_authorship(self, subject_id: str, title: str, body: str) -> AuthorshipReport:
        """
        Does this content match the latest recorded version, on a chain
        that verifies?

        The content is fingerprinted with the tip's author and timestamp,
        so only the exact recorded title and body match.
        """
        entries = self._store.query(LedgerFilter(subject_id=subject_id))
        if not entries:
            return AuthorshipReport(
                subject_id=subject_id,
                is_valid=False,
                reason="No ledger entries for subject",
            )

        first, tip = entries[0], entries[-1]
        report = dict(
            subject_id=subject_id,
            original_author=first.author_id,
            creation_date=first.timestamp,
            last_modified=tip.timestamp,
            total_modifications=len(entries) - 1,
            entries=[HistoryItem.from_entry(e) for e in entries],
        )

        result = self._verifier.verify_entries(entries, subject_id=subject_id)
        if not result.valid:
            get_metrics().record_verification_failure()
            return AuthorshipReport(
                **report,
                is_valid=False,
                reason=f"Chain integrity compromised at entry {result.broken_at.index}",
            )

        expected = Fingerprinter.fingerprint(title, body, tip.author_id, tip.timestamp)
        if expected != tip.content_hash:
            return AuthorshipReport(
                **report,
                is_valid=False,
                reason="Content does not match the latest recorded version",
            )

        return AuthorshipReport(**report, is_valid=True)

    def get_stats(self) -> LedgerStats:
        entries = self._store.query()
        return LedgerStats(
            total_entries=len(entries),
            unique_subjects=len({e.subject_id for e in entries}),
            unique_authors=len({e.author_id for e in entries}),
            event_types=dict(Counter(e.event_type.value for e in entries)),
        )
