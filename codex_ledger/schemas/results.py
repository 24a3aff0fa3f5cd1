"""
Verification and reporting results.

These are returned, not raised: a broken chain is an answer,
not an accident.
"""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field

from .entry import HistoryItem


class BreakReason(str, Enum):
    """Why verification stopped at an entry."""
    GENESIS_HAS_PREDECESSOR = "genesis_has_predecessor"
    BROKEN_LINK = "broken_link"
    BLOCK_HASH_MISMATCH = "block_hash_mismatch"
    SIGNATURE_MISMATCH = "signature_mismatch"
    WITNESS_SIGNATURE_INVALID = "witness_signature_invalid"


class BreakPoint(BaseModel):
    """Location of the first failure in a chain walk."""
    index: int = Field(..., ge=0, description="Position in chain order (0 = first entry)")
    entry_id: UUID
    block_hash: str
    reason: BreakReason
    detail: str = ""


class VerificationResult(BaseModel):
    """Outcome of walking one subject's chain."""
    subject_id: str
    valid: bool
    chain_length: int
    chain_tip: Optional[str] = None
    broken_at: Optional[BreakPoint] = None


class AuthorshipReport(BaseModel):
    """Does the supplied content match the chain tip, and who wrote it first."""
    subject_id: str
    is_valid: bool
    reason: Optional[str] = None
    original_author: Optional[str] = None
    creation_date: Optional[datetime] = None
    last_modified: Optional[datetime] = None
    total_modifications: int = 0
    entries: list[HistoryItem] = Field(default_factory=list)


class LedgerStats(BaseModel):
    """Aggregate counts over the whole ledger."""
    total_entries: int
    unique_subjects: int
    unique_authors: int
    event_types: dict[str, int]
