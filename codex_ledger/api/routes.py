"""
API Routes for the Authorship Ledger

Command endpoints (append-only; no PATCH, no PUT, no DELETE):
- POST /ledger/events                              - Record a lifecycle event

Proof endpoints:
- GET  /ledger/subjects/{subject_id}/history       - Entry summaries, chain order
- GET  /ledger/subjects/{subject_id}/verify        - Verify a subject's chain
- POST /ledger/subjects/{subject_id}/authorship    - Does this content match?
- POST /certificates/validate                      - Re-check a certificate
- POST /certificates/{subject_id}                  - Issue a certificate
- GET  /ledger/stats                               - Ledger-wide counts

/certificates/validate is declared before /certificates/{subject_id}, so
a subject literally named "validate" cannot be certified over HTTP.
"""

from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Request, status
from pydantic import BaseModel

from ..core.ledger import AuthorshipLedger
from ..errors import (
    ChainConflict,
    DuplicateEntry,
    InvalidChain,
    InvalidEvent,
    Unavailable,
    UnknownSubject,
)
from ..schemas import (
    AuthorshipReport,
    Certificate,
    CertificateValidation,
    EventDraft,
    HistoryItem,
    LedgerEntry,
    LedgerStats,
    RequestContext,
    VerificationResult,
)
from ..shared_ledger import get_ledger


router = APIRouter()


# ============================================================
# Request Models
# ============================================================

class AuthorshipRequest(BaseModel):
    """Content to check against the latest recorded version."""
    title: str
    body: str


def _unavailable(e: Unavailable) -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))


# ============================================================
# Command Endpoints
# ============================================================

@router.post(
    "/ledger/events",
    response_model=LedgerEntry,
    status_code=status.HTTP_201_CREATED,
    tags=["Ledger Commands"],
    summary="Record a content lifecycle event",
)
def record_event(
    draft: EventDraft,
    request: Request,
    ledger: AuthorshipLedger = Depends(get_ledger),
):
    """
    Fingerprint, link, sign and append one event.

    Without an explicit request_context, the caller's address and user
    agent are recorded.

    409 means the event is already recorded (do not retry) or the chain
    kept moving (retry later). 422 means the lifecycle forbids it.
    """
    if draft.request_context == RequestContext():
        draft = draft.model_copy(update={"request_context": RequestContext(
            client_address=request.client.host if request.client else None,
            client_agent=request.headers.get("user-agent"),
        )})

    try:
        return ledger.record_event(draft)
    except DuplicateEntry as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ChainConflict as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except InvalidEvent as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except Unavailable as e:
        raise _unavailable(e)


# ============================================================
# Proof Endpoints
# ============================================================

@router.get(
    "/ledger/subjects/{subject_id}/history",
    response_model=list[HistoryItem],
    tags=["Ledger Proof"],
)
def get_history(subject_id: str, ledger: AuthorshipLedger = Depends(get_ledger)):
    try:
        return ledger.get_history(subject_id)
    except Unavailable as e:
        raise _unavailable(e)


@router.get(
    "/ledger/subjects/{subject_id}/verify",
    response_model=VerificationResult,
    tags=["Ledger Proof"],
)
def verify_chain(subject_id: str, ledger: AuthorshipLedger = Depends(get_ledger)):
    """A broken chain is a 200 with valid=false and the break location."""
    try:
        return ledger.verify_chain(subject_id)
    except Unavailable as e:
        raise _unavailable(e)


@router.post(
    "/ledger/subjects/{subject_id}/authorship",
    response_model=AuthorshipReport,
    tags=["Ledger Proof"],
)
def verify_authorship(
    subject_id: str,
    request: AuthorshipRequest,
    ledger: AuthorshipLedger = Depends(get_ledger),
):
    try:
        return ledger.verify_authorship(subject_id, request.title, request.body)
    except Unavailable as e:
        raise _unavailable(e)


@router.post(
    "/certificates/validate",
    response_model=CertificateValidation,
    tags=["Certificates"],
)
def validate_certificate(
    certificate: Any = Body(...),
    ledger: AuthorshipLedger = Depends(get_ledger),
):
    """Any JSON body is accepted; a malformed one yields status MALFORMED."""
    try:
        return ledger.validate_certificate(certificate)
    except Unavailable as e:
        raise _unavailable(e)


@router.post(
    "/certificates/{subject_id}",
    response_model=Certificate,
    status_code=status.HTTP_201_CREATED,
    tags=["Certificates"],
)
def issue_certificate(subject_id: str, ledger: AuthorshipLedger = Depends(get_ledger)):
    try:
        return ledger.issue_certificate(subject_id)
    except UnknownSubject as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except InvalidChain as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail={
                "message": str(e),
                "broken_at": e.broken_at.model_dump(mode="json") if e.broken_at else None,
            },
        )
    except Unavailable as e:
        raise _unavailable(e)


@router.get("/ledger/stats", response_model=LedgerStats, tags=["Ledger Proof"])
def get_stats(ledger: AuthorshipLedger = Depends(get_ledger)):
    try:
        return ledger.get_stats()
    except Unavailable as e:
        raise _unavailable(e)
