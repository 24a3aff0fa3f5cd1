"""
Ledger Error Taxonomy

Every failure the ledger can report is one of these types.
Callers decide the policy (retry, degrade, surface); the ledger only
reports, it never swallows.

- DuplicateEntry:       already recorded, do not retry
- ChainConflict:        tip moved under us, retry with a fresh tip
- InvalidChain:         broken link or doctored entry, never auto-repaired
- Unavailable:          backend could not complete, retry with backoff
- MalformedCertificate: structurally invalid certificate
"""

from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .schemas import BreakPoint


class LedgerError(Exception):
    """Base exception for ledger errors."""
    pass


class DuplicateEntry(LedgerError):
    """Raised when the natural key of an entry is already recorded."""
    pass


class ChainConflict(LedgerError):
    """Raised when another writer advanced the chain tip first."""
    pass


class InvalidChain(LedgerError):
    """
    Raised when a chain fails verification.

    The break location is kept on the exception so callers can show
    exactly where the chain was severed or doctored.
    """

    def __init__(self, message: str, broken_at: Optional["BreakPoint"] = None):
        super().__init__(message)
        self.broken_at = broken_at


class Unavailable(LedgerError):
    """Raised when the underlying store could not complete an operation."""
    pass


class MalformedCertificate(LedgerError):
    """Raised when a certificate cannot be parsed into its canonical shape."""
    pass


class InvalidEvent(LedgerError):
    """Raised when an event breaks the content lifecycle rules."""
    pass


class UnknownSubject(LedgerError):
    """Raised when no chain exists for the requested subject."""
    pass
