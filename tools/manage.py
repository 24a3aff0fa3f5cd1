#!/usr/bin/env python3
"""
Codex Ledger Management CLI

Commands for operating the ledger:
- init-db: Create the SQL schema for the configured backend
- verify-chain: Verify one subject's chain, or every chain
- stats: Ledger-wide counts
- export-history: Export a subject's entries to JSON
- verify-journal: Check the event journal's record hashes
- generate-keys: Generate a chain secret and witness keypair
- health-check: Store connectivity and configuration

The ledger is built from the same environment variables as the API
(see codex_ledger/db/config.py).

Usage:
    python -m tools.manage <command> [options]

Examples:
    python -m tools.manage init-db
    python -m tools.manage verify-chain --subject essay-42
    python -m tools.manage export-history essay-42 -o essay-42.json
"""

import argparse
import json
import sys


def _load_ledger():
    from codex_ledger.db import LedgerConfig
    from codex_ledger.shared_ledger import build_ledger

    return build_ledger(LedgerConfig.from_env())


def cmd_init_db(args):
    """Create the schema for the configured SQL backend."""
    from codex_ledger.db import LedgerConfig, StoreBackend
    from codex_ledger.shared_ledger import create_store

    config = LedgerConfig.from_env()
    if config.backend not in (StoreBackend.SQLITE, StoreBackend.POSTGRES):
        print(f"Backend '{config.backend.value}' has no schema to create.")
        return 0

    store = create_store(config)
    print(f"[OK] Schema ready ({store.backend_name})")
    return 0


def cmd_verify_chain(args):
    """Verify the integrity of one chain or all chains."""
    from codex_ledger.schemas import LedgerFilter

    print("Loading ledger...")
    ledger = _load_ledger()

    if args.subject:
        subjects = [args.subject]
    else:
        subjects = sorted({e.subject_id for e in ledger.store.query(LedgerFilter())})
    print(f"Verifying {len(subjects)} chain(s)")

    failures = 0
    for subject_id in subjects:
        result = ledger.verify_chain(subject_id)
        if result.valid:
            tip = result.chain_tip[:16] + "..." if result.chain_tip else "empty"
            print(f"  [OK] {subject_id}: {result.chain_length} entries, tip {tip}")
        else:
            failures += 1
            broken = result.broken_at
            print(f"  [FAIL] {subject_id}: {broken.reason.value} at entry {broken.index}")

    if failures:
        print(f"\n[FAIL] {failures} chain(s) failed verification")
        return 1
    print("\n[OK] All chains verified")
    return 0


def cmd_stats(args):
    """Print ledger-wide counts."""
    ledger = _load_ledger()
    stats = ledger.get_stats()

    if args.json:
        print(stats.model_dump_json(indent=2))
        return 0

    print(f"Backend:         {ledger.store.backend_name}")
    print(f"Total entries:   {stats.total_entries}")
    print(f"Unique subjects: {stats.unique_subjects}")
    print(f"Unique authors:  {stats.unique_authors}")
    for event_type, count in sorted(stats.event_types.items()):
        print(f"  {event_type}: {count}")
    return 0


def cmd_export_history(args):
    """Export a subject's full entries to a JSON file."""
    from codex_ledger.schemas import LedgerFilter

    ledger = _load_ledger()
    entries = ledger.store.query(LedgerFilter(subject_id=args.subject))
    if not entries:
        print(f"Error: no entries for subject {args.subject}")
        return 1

    export_data = [e.model_dump(mode="json") for e in entries]
    output_file = args.output or f"{args.subject}_history.json"
    with open(output_file, "w", encoding="utf-8") as f:
        json.dump(export_data, f, indent=2)

    print(f"[OK] Exported {len(entries)} entries to {output_file}")
    return 0


def cmd_verify_journal(args):
    """Check every record hash in the event journal."""
    from codex_ledger.db import EventJournal

    journal = EventJournal(args.path)
    integrity = journal.verify_integrity()
    if integrity.valid:
        print(f"[OK] Journal verified: {integrity.total_records} records")
        return 0

    print(f"[FAIL] Journal verification failed ({integrity.total_records} records)")
    for line_number in integrity.corrupted_lines:
        print(f"  - line {line_number} does not match its hash")
    return 1


def cmd_generate_keys(args):
    """Generate a chain secret and a witness keypair."""
    import secrets

    from codex_ledger.core import Signer

    private_key, public_key = Signer.generate_keypair()
    print("Set these environment variables (KEEP THE FIRST TWO SECRET!):\n")
    print(f"CODEX_LEDGER_SECRET={secrets.token_hex(32)}")
    print(f"CODEX_LEDGER_WITNESS_PRIVATE_KEY={private_key}")
    print(f"CODEX_LEDGER_WITNESS_PUBLIC_KEY={public_key}")
    return 0


def cmd_health_check(args):
    """Run store connectivity and configuration checks."""
    from codex_ledger.observability import check_health

    print("=== Codex Ledger Health Check ===\n")
    ledger = _load_ledger()
    health = check_health(ledger)

    for name, check in health.checks.items():
        print(f"{name}:")
        for key, value in check.items():
            print(f"  {key}: {value}")

    if not health.healthy:
        print("\n[FAIL] Unhealthy")
        return 1
    print("\n=== Health Check Complete ===")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Codex Ledger Management CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("init-db", help="Create the SQL schema")

    p_verify = subparsers.add_parser("verify-chain", help="Verify chain integrity")
    p_verify.add_argument("--subject", help="Verify only this subject (default: all)")

    p_stats = subparsers.add_parser("stats", help="Ledger-wide counts")
    p_stats.add_argument("--json", action="store_true", help="Output as JSON")

    p_export = subparsers.add_parser("export-history", help="Export a subject's entries")
    p_export.add_argument("subject", help="Subject identifier")
    p_export.add_argument("--output", "-o", help="Output file (default: <subject>_history.json)")

    p_journal = subparsers.add_parser("verify-journal", help="Verify the event journal")
    p_journal.add_argument("path", help="Path to the journal file")

    subparsers.add_parser("generate-keys", help="Generate a secret and witness keypair")

    subparsers.add_parser("health-check", help="Run health checks")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    from codex_ledger.observability import setup_logging
    setup_logging()

    commands = {
        "init-db": cmd_init_db,
        "verify-chain": cmd_verify_chain,
        "stats": cmd_stats,
        "export-history": cmd_export_history,
        "verify-journal": cmd_verify_journal,
        "generate-keys": cmd_generate_keys,
        "health-check": cmd_health_check,
    }

    return commands[args.command](args) or 0


if __name__ == "__main__":
    sys.exit(main())
