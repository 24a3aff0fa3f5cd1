"""
Authorship Certificate Schema

A certificate is a disposable proof artifact: a signed snapshot saying
"at issued_at, this subject's chain verified, had this many entries,
and was first authored by original_author".

It is never stored as ledger truth. It can always be re-derived.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .entry import _require_aware
from .results import BreakPoint


class Certificate(BaseModel):
    """
    Signed authorship snapshot.

    certificate_hash and signature cover every other field
    (see core.certificates.canonical_fields). Unknown fields are
    rejected: nothing would have sealed them.
    """
    model_config = ConfigDict(frozen=True, extra="forbid")

    subject_id: str = Field(..., min_length=1)
    certificate_id: UUID
    issued_at: datetime
    original_author: str
    creation_date: datetime
    chain_length: int = Field(..., ge=1)
    chain_tip: str = Field(..., min_length=64, max_length=64)
    certificate_hash: str
    signature: str

    @field_validator("issued_at", "creation_date")
    @classmethod
    def normalize_instants(cls, value: datetime) -> datetime:
        return _require_aware(value)


class CertificateStatus(str, Enum):
    VALID = "VALID"
    STALE = "STALE"
    FORGED = "FORGED"
    CHAIN_BROKEN = "CHAIN_BROKEN"
    MALFORMED = "MALFORMED"


class CertificateValidation(BaseModel):
    """
    Result of re-checking a certificate.

    certificate_intact: the certificate's own hash and signature recompute
    chain_still_valid: the live chain verifies AND still matches the snapshot

    A stale certificate (chain grew since issuance) is intact but not
    chain_still_valid; a forged one is not intact.

    verified_at is when this check ran. A certificate's own issued_at is
    the instant its chain was last verified at issuance.
    """
    valid: bool
    certificate_intact: bool
    chain_still_valid: bool
    status: CertificateStatus

    hash_match: bool = False
    signature_match: bool = False
    chain_intact: bool = False
    drifted: bool = False

    subject_id: Optional[str] = None
    current_chain_length: Optional[int] = None
    broken_at: Optional[BreakPoint] = None
    detail: Optional[str] = None
    verified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
