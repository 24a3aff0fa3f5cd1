"""
Ledger Entry Schema

This is an append-only ledger, not CRUD.
Nothing is "edited". Things happen to content, and each happening
becomes one immutable entry:

- Fingerprinted (content_hash)
- Chained (previous_block_hash -> block_hash)
- Signed (keyed MAC over the binding)
- Witnessed (independent attestations over the block hash)
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    """
    Content lifecycle events.
    You can add more later, never remove.
    """
    CREATED = "CREATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    TRANSFERRED = "TRANSFERRED"


def _require_aware(value: datetime) -> datetime:
    if value.tzinfo is None:
        raise ValueError("timestamps must be timezone-aware")
    return value.astimezone(timezone.utc)


class Witness(BaseModel):
    """An independent attestation over a block hash."""
    model_config = ConfigDict(frozen=True)

    witness_id: str = Field(..., min_length=1)
    signature: str = Field(..., description="Base64 Ed25519 signature over the block hash")
    timestamp: datetime

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return _require_aware(value)


class LedgerEntry(BaseModel):
    """
    The atomic unit of the ledger.

    CHAIN RULES:
    - previous_block_hash is None ONLY for the first entry of a subject's chain
    - block_hash is a pure function of its own fields plus previous_block_hash
    - sequence and created_at are assigned by the store on append, never before
    """
    model_config = ConfigDict(frozen=True)

    entry_id: UUID = Field(default_factory=uuid4)
    event_type: EventType
    subject_id: str = Field(..., min_length=1)
    author_id: str = Field(..., min_length=1)

    content_hash: str = Field(..., min_length=64, max_length=64)
    previous_block_hash: Optional[str] = Field(default=None, min_length=64, max_length=64)
    block_hash: str = Field(..., min_length=64, max_length=64)
    signature: str = Field(..., min_length=64, max_length=64)

    # The instant bound into content_hash, block_hash and signature
    timestamp: datetime

    metadata: dict[str, Any] = Field(default_factory=dict)
    witnesses: list[Witness] = Field(default_factory=list)

    # Store-assigned
    sequence: Optional[int] = Field(default=None, ge=1)
    created_at: Optional[datetime] = None

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: datetime) -> datetime:
        return _require_aware(value)

    @field_validator("created_at")
    @classmethod
    def normalize_created_at(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return _require_aware(value)

    @property
    def is_genesis(self) -> bool:
        """First entry of its subject's chain."""
        return self.previous_block_hash is None

    @property
    def is_persisted(self) -> bool:
        return self.sequence is not None and self.created_at is not None

    @property
    def natural_key(self) -> tuple[str, str, str, datetime]:
        """Identity used to reject double submission of the same event."""
        return (self.subject_id, self.event_type.value, self.content_hash, self.timestamp)


class RequestContext(BaseModel):
    """Where an event came from, as reported by the content workflow."""
    client_address: Optional[str] = None
    client_agent: Optional[str] = None


class EventDraft(BaseModel):
    """
    A content lifecycle event as handed over by the content workflow.

    The ledger does not validate content shape; title and body are
    trusted as given.
    """
    event_type: EventType
    subject_id: str = Field(..., min_length=1)
    author_id: str = Field(..., min_length=1)
    title: str
    body: str
    license: Optional[str] = None
    timestamp: Optional[datetime] = Field(
        default=None,
        description="Event instant. Defaults to now when the event is recorded.",
    )
    request_context: RequestContext = Field(default_factory=RequestContext)

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is None:
            return None
        return _require_aware(value)


class LedgerFilter(BaseModel):
    """Query filter. Unset fields match everything."""
    subject_id: Optional[str] = None
    author_id: Optional[str] = None
    event_type: Optional[EventType] = None

    def matches(self, entry: LedgerEntry) -> bool:
        if self.subject_id is not None and entry.subject_id != self.subject_id:
            return False
        if self.author_id is not None and entry.author_id != self.author_id:
            return False
        if self.event_type is not None and entry.event_type != self.event_type:
            return False
        return True


class HistoryItem(BaseModel):
    """Display summary of one entry, for the presentation layer."""
    sequence: int
    event_type: EventType
    author_id: str
    timestamp: datetime
    created_at: datetime
    content_hash: str
    previous_block_hash: Optional[str]
    block_hash: str
    metadata: dict[str, Any]
    witness_ids: list[str]

    @classmethod
    def from_entry(cls, entry: LedgerEntry) -> "HistoryItem":
        return cls(
            sequence=entry.sequence,
            event_type=entry.event_type,
            author_id=entry.author_id,
            timestamp=entry.timestamp,
            created_at=entry.created_at,
            content_hash=entry.content_hash,
            previous_block_hash=entry.previous_block_hash,
            block_hash=entry.block_hash,
            metadata=dict(entry.metadata),
            witness_ids=[w.witness_id for w in entry.witnesses],
        )
