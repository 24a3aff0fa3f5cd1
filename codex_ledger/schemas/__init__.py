# Canonical schemas for the authorship ledger.
# These define the contract every backend and every verifier agrees on.

from .entry import (
    EventType,
    Witness,
    LedgerEntry,
    RequestContext,
    EventDraft,
    LedgerFilter,
    HistoryItem,
)
from .results import (
    BreakReason,
    BreakPoint,
    VerificationResult,
    AuthorshipReport,
    LedgerStats,
)
from .certificate import Certificate, CertificateStatus, CertificateValidation

__all__ = [
    # Entries
    "EventType",
    "Witness",
    "LedgerEntry",
    "RequestContext",
    "EventDraft",
    "LedgerFilter",
    "HistoryItem",
    # Results
    "BreakReason",
    "BreakPoint",
    "VerificationResult",
    "AuthorshipReport",
    "LedgerStats",
    # Certificates
    "Certificate",
    "CertificateStatus",
    "CertificateValidation",
]
