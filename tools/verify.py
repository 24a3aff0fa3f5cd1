#!/usr/bin/env python3
"""
Codex Ledger Log Verifier

Verifies a JSON-lines ledger file offline. No server, no database.

Without the chain secret only structure is checked: linkage and block
hash recomputation. With it, every entry signature is checked too.
Witness attestations are checked for every --witness-key given.

Usage:
    python -m tools.verify ledger.jsonl
    python -m tools.verify ledger.jsonl --secret-env CODEX_LEDGER_SECRET
    python -m tools.verify ledger.jsonl --witness-key primary-node=<base64 public key>
    python -m tools.verify ledger.jsonl --json

Exit codes:
    0 - VERIFIED: All checks passed
    1 - TAMPERED: Broken link, hash/signature mismatch, or unreadable line
    2 - INCOMPLETE: Chains verify but the file ends in an unfinished write
    3 - INVALID_FORMAT: File missing or not a ledger log
"""

import argparse
import json
import os
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from codex_ledger.core import ChainLinker, IntegrityVerifier
from codex_ledger.db import scan_log
from codex_ledger.errors import Unavailable


class LogVerdict(Enum):
    VERIFIED = "VERIFIED"
    TAMPERED = "TAMPERED"
    INCOMPLETE = "INCOMPLETE"
    INVALID_FORMAT = "INVALID_FORMAT"


EXIT_CODES = {
    LogVerdict.VERIFIED: 0,
    LogVerdict.TAMPERED: 1,
    LogVerdict.INCOMPLETE: 2,
    LogVerdict.INVALID_FORMAT: 3,
}


@dataclass
class LogReport:
    result: LogVerdict
    path: str
    entry_count: int = 0
    subject_count: int = 0
    checks_passed: list[str] = field(default_factory=list)
    checks_failed: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    details: dict[str, Any] = field(default_factory=dict)


def verify_log(
    path: Path,
    linker: Optional[ChainLinker] = None,
    witness_keys: Optional[dict[str, str]] = None,
) -> LogReport:
    """Verify every subject chain in a ledger log file."""
    if not path.is_file():
        return LogReport(LogVerdict.INVALID_FORMAT, str(path), checks_failed=["File not found"])

    try:
        scan = scan_log(path)
    except Unavailable as e:
        return LogReport(LogVerdict.INVALID_FORMAT, str(path), checks_failed=[str(e)])

    report = LogReport(LogVerdict.VERIFIED, str(path), entry_count=len(scan.entries))

    if scan.line_count and not scan.entries:
        report.result = LogVerdict.INVALID_FORMAT
        report.checks_failed.append("No line parses as a ledger entry")
        return report

    if scan.skipped_lines:
        report.checks_failed.extend(scan.skipped_lines)
    else:
        report.checks_passed.append(f"All {scan.line_count} lines parse")

    if linker is None:
        report.warnings.append("No chain secret: signatures not checked")

    chains: dict[str, list] = {}
    for entry in sorted(scan.entries, key=lambda e: e.sequence or 0):
        chains.setdefault(entry.subject_id, []).append(entry)
    report.subject_count = len(chains)

    verifier = IntegrityVerifier(linker=linker, witness_keys=witness_keys)
    broken = {}
    for subject_id, entries in chains.items():
        result = verifier.verify_entries(entries, subject_id=subject_id)
        if result.valid:
            continue
        broken[subject_id] = result.broken_at.model_dump(mode="json")
        report.checks_failed.append(
            f"{subject_id}: {result.broken_at.reason.value} at entry {result.broken_at.index}"
        )

    if not broken:
        report.checks_passed.append(f"All {len(chains)} chains verify")
    report.details["broken_chains"] = broken

    if scan.has_partial_tail:
        report.warnings.append(
            f"File ends with {scan.uncommitted_bytes} bytes of an unfinished write"
        )

    if report.checks_failed:
        report.result = LogVerdict.TAMPERED
    elif scan.has_partial_tail:
        report.result = LogVerdict.INCOMPLETE
    return report


# ============================================================
# CLI
# ============================================================

def print_report(report: LogReport, json_output: bool = False) -> None:
    if json_output:
        output = {
            "result": report.result.value,
            "path": report.path,
            "entry_count": report.entry_count,
            "subject_count": report.subject_count,
            "checks_passed": report.checks_passed,
            "checks_failed": report.checks_failed,
            "warnings": report.warnings,
            "details": report.details,
        }
        print(json.dumps(output, indent=2))
        return

    banners = {
        LogVerdict.VERIFIED: "[VERIFIED] - All checks passed",
        LogVerdict.TAMPERED: "[TAMPERED] - Chain broken or entry altered",
        LogVerdict.INCOMPLETE: "[INCOMPLETE] - Unfinished write at end of file",
        LogVerdict.INVALID_FORMAT: "[INVALID_FORMAT] - Not a ledger log",
    }
    print("\n" + "=" * 60)
    print(f"  {banners[report.result]}")
    print("=" * 60)

    print(f"\nFile:     {report.path}")
    print(f"Entries:  {report.entry_count}")
    print(f"Subjects: {report.subject_count}")

    if report.checks_passed:
        print("\nPassed:")
        for check in report.checks_passed:
            print(f"  + {check}")
    if report.checks_failed:
        print("\nFailed:")
        for check in report.checks_failed:
            print(f"  - {check}")
    if report.warnings:
        print("\nWarnings:")
        for warning in report.warnings:
            print(f"  ! {warning}")
    print()


def _parse_witness_keys(pairs: list[str]) -> dict[str, str]:
    keys = {}
    for pair in pairs:
        witness_id, sep, public_key = pair.partition("=")
        if not sep or not witness_id or not public_key:
            raise argparse.ArgumentTypeError(f"Expected ID=PUBLIC_KEY, got {pair!r}")
        keys[witness_id] = public_key
    return keys


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Verify a Codex Ledger JSON-lines file",
        epilog="Exit codes: 0=VERIFIED, 1=TAMPERED, 2=INCOMPLETE, 3=INVALID_FORMAT",
    )
    parser.add_argument("ledger", type=str, help="Path to the ledger .jsonl file")
    parser.add_argument(
        "--secret-env",
        metavar="VAR",
        help="Environment variable holding the chain secret (enables signature checks)",
    )
    parser.add_argument(
        "--witness-key",
        action="append",
        default=[],
        metavar="ID=PUBLIC_KEY",
        help="Check attestations from this witness (repeatable)",
    )
    parser.add_argument("--json", action="store_true", help="Output result as JSON")
    args = parser.parse_args(argv)

    linker = None
    if args.secret_env:
        secret = os.environ.get(args.secret_env, "")
        if not secret:
            print(f"ERROR: {args.secret_env} is not set", file=sys.stderr)
            return EXIT_CODES[LogVerdict.INVALID_FORMAT]
        linker = ChainLinker(secret)

    try:
        witness_keys = _parse_witness_keys(args.witness_key)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    report = verify_log(Path(args.ledger), linker=linker, witness_keys=witness_keys)
    print_report(report, json_output=args.json)
    return EXIT_CODES[report.result]


if __name__ == "__main__":
    sys.exit(main())
