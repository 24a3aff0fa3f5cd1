"""
Integrity Verification

Walks one subject's chain in creation order and answers a single
question: is every entry both correctly linked and correctly derived?

Two checks per entry, because they catch different attacks:
- Linkage: entries[i].previous_block_hash == entries[i-1].block_hash
  (catches a severed chain or a removed/injected entry)
- Recomputation: block_hash and signature re-derive from the entry's own
  fields (catches a doctored entry whose links were left intact)

The first failure short-circuits. An empty chain is vacuously valid.
"""

from typing import Iterable, Optional, TYPE_CHECKING

from ..observability import get_logger
from ..schemas import (
    BreakPoint,
    BreakReason,
    LedgerEntry,
    LedgerFilter,
    VerificationResult,
)
from .chain import ChainLinker
from .witness import WitnessNode

if TYPE_CHECKING:
    from ..db.store import LedgerStore

logger = get_logger(__name__)


class IntegrityVerifier:
    """
    Re-derives a chain and reports where it first breaks.

    Args:
        store: Where chains are read from (optional for offline use)
        linker: Holds the chain secret. Without it, signatures are not
            checked and only structural integrity is verified.
        witness_keys: witness_id -> base64 public key. Attestations from
            witnesses not listed here are carried but not checked.
    """

    def __init__(
        self,
        store: Optional["LedgerStore"] = None,
        linker: Optional[ChainLinker] = None,
        witness_keys: Optional[dict[str, str]] = None,
    ):
        self._store = store
        self._linker = linker
        self._witness_keys = dict(witness_keys or {})

    @property
    def checks_signatures(self) -> bool:
        return self._linker is not None

    def verify_chain(self, subject_id: str) -> VerificationResult:
        if self._store is None:
            raise RuntimeError("verify_chain needs a store; use verify_entries offline")
        entries = self._store.query(LedgerFilter(subject_id=subject_id))
        return self.verify_entries(entries, subject_id=subject_id)

    def verify_entries(
        self,
        entries: Iterable[LedgerEntry],
        subject_id: Optional[str] = None,
    ) -> VerificationResult:
        """Verify an already-ordered sequence of entries from one chain."""
        chain = list(entries)
        if subject_id is None:
            subject_id = chain[0].subject_id if chain else ""

        previous: Optional[LedgerEntry] = None
        for index, entry in enumerate(chain):
            failure = self._check_entry(entry, previous, index)
            if failure is not None:
                reason, detail = failure
                broken_at = BreakPoint(
                    index=index,
                    entry_id=entry.entry_id,
                    block_hash=entry.block_hash,
                    reason=reason,
                    detail=detail,
                )
                logger.warning(
                    "Chain verification failed",
                    subject_id=subject_id,
                    index=index,
                    reason=reason.value,
                )
                return VerificationResult(
                    subject_id=subject_id,
                    valid=False,
                    chain_length=len(chain),
                    chain_tip=chain[-1].block_hash,
                    broken_at=broken_at,
                )
            previous = entry

        return VerificationResult(
            subject_id=subject_id,
            valid=True,
            chain_length=len(chain),
            chain_tip=chain[-1].block_hash if chain else None,
        )

    def _check_entry(
        self,
        entry: LedgerEntry,
        previous: Optional[LedgerEntry],
        index: int,
    ) -> Optional[tuple[BreakReason, str]]:
        if previous is None:
            if entry.previous_block_hash is not None:
                return (
                    BreakReason.GENESIS_HAS_PREDECESSOR,
                    f"First entry references predecessor {entry.previous_block_hash[:16]}...",
                )
        elif entry.previous_block_hash != previous.block_hash:
            return (
                BreakReason.BROKEN_LINK,
                f"Entry {index} does not link to entry {index - 1}",
            )

        expected = ChainLinker.link(
            entry.content_hash,
            entry.previous_block_hash,
            entry.timestamp,
            entry.author_id,
        )
        if expected != entry.block_hash:
            return (BreakReason.BLOCK_HASH_MISMATCH, "Block hash does not recompute")

        if self._linker is not None and not self._linker.verify_signature(entry):
            return (BreakReason.SIGNATURE_MISMATCH, "Signature does not recompute")

        for witness in entry.witnesses:
            public_key = self._witness_keys.get(witness.witness_id)
            if public_key is None:
                continue
            if not WitnessNode.check(witness, entry.block_hash, public_key):
                return (
                    BreakReason.WITNESS_SIGNATURE_INVALID,
                    f"Witness {witness.witness_id} did not sign this block",
                )
        return None
