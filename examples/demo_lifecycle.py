"""
Demonstration: Complete Authorship Lifecycle

This example follows one essay from first draft to deletion, then shows
what the proof operations say about it: history, chain verification,
authorship checks, and a certificate that goes stale.

Run with: python -m examples.demo_lifecycle
"""

import secrets

from codex_ledger.core import AuthorshipLedger, ChainLinker, Signer, WitnessNode
from codex_ledger.db import InMemoryLedgerStore
from codex_ledger.schemas import EventDraft, EventType


def banner(title):
    print("=" * 60)
    print(title)
    print("=" * 60)


def main():
    banner("Codex Ledger - Authorship Lifecycle Demonstration")
    print()

    private_key, public_key = Signer.generate_keypair()
    ledger = AuthorshipLedger(
        store=InMemoryLedgerStore(),
        linker=ChainLinker(secrets.token_hex(32)),
        witnesses=[WitnessNode("primary-node", private_key)],
    )
    print(f"Witness Public Key: {public_key[:32]}...")
    print()

    subject_id = "essay-on-tides"

    # ================================================================
    # STEP 1: CREATED
    # ================================================================
    banner("STEP 1: CREATED")
    created = ledger.record_event(EventDraft(
        event_type=EventType.CREATED,
        subject_id=subject_id,
        author_id="ada",
        title="On Tides",
        body="The moon pulls; the sea answers.",
        license="CC-BY-4.0",
    ))
    print(f"[OK] Sequence: {created.sequence}")
    print(f"   Block Hash: {created.block_hash[:16]}...")
    print(f"   Witnessed by: {', '.join(w.witness_id for w in created.witnesses)}")
    print()

    # ================================================================
    # STEP 2: UPDATED
    # ================================================================
    banner("STEP 2: UPDATED")
    updated = ledger.record_event(EventDraft(
        event_type=EventType.UPDATED,
        subject_id=subject_id,
        author_id="ada",
        title="On Tides",
        body="The moon pulls; the sea answers, twice a day.",
    ))
    print(f"[OK] Sequence: {updated.sequence}")
    print(f"   Links to: {updated.previous_block_hash[:16]}...")
    print()

    # ================================================================
    # STEP 3: CERTIFY
    # ================================================================
    banner("STEP 3: CERTIFY")
    certificate = ledger.issue_certificate(subject_id)
    print(f"[OK] Certificate {certificate.certificate_id}")
    print(f"   Author: {certificate.original_author}")
    print(f"   Chain length: {certificate.chain_length}")
    print(f"   Status now: {ledger.validate_certificate(certificate).status.value}")
    print()

    # ================================================================
    # STEP 4: TRANSFERRED
    # ================================================================
    banner("STEP 4: TRANSFERRED")
    ledger.record_event(EventDraft(
        event_type=EventType.TRANSFERRED,
        subject_id=subject_id,
        author_id="grace",
        title="On Tides",
        body="The moon pulls; the sea answers, twice a day.",
    ))
    validation = ledger.validate_certificate(certificate)
    print(f"[OK] Chain grew; the earlier certificate is now {validation.status.value}")
    print()

    # ================================================================
    # STEP 5: PROOF
    # ================================================================
    banner("STEP 5: PROOF")
    for item in ledger.get_history(subject_id):
        print(f"   #{item.sequence} {item.event_type.value:<12} by {item.author_id}")

    result = ledger.verify_chain(subject_id)
    print(f"\n   Chain valid: {result.valid} ({result.chain_length} entries)")

    report = ledger.verify_authorship(
        subject_id, "On Tides", "The moon pulls; the sea answers, twice a day."
    )
    print(f"   Authorship of current text: {report.is_valid}")
    report = ledger.verify_authorship(subject_id, "On Tides", "Someone else's words.")
    print(f"   Authorship of altered text: {report.is_valid} ({report.reason})")
    print()

    # ================================================================
    # STEP 6: DELETED
    # ================================================================
    banner("STEP 6: DELETED")
    ledger.record_event(EventDraft(
        event_type=EventType.DELETED,
        subject_id=subject_id,
        author_id="grace",
        title="On Tides",
        body="",
    ))
    stats = ledger.get_stats()
    print(f"[OK] Deletion recorded; the history is kept ({stats.total_entries} entries)")
    print(f"   Event types: {stats.event_types}")
    print()

    banner("Demonstration complete")


if __name__ == "__main__":
    main()
