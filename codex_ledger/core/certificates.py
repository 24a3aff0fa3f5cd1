"""
Authorship Certificates

Issuance: verify the chain, snapshot it, seal the snapshot.
Validation: re-seal the stated fields AND re-verify the live chain.

Two independent answers come back from validation:
- certificate_intact: the certificate is what we issued (hash + signature)
- chain_still_valid:  the chain it describes still verifies, unchanged

Intact but drifted is STALE (the chain grew). Not intact is FORGED.
These are never conflated.
"""

from datetime import datetime, timezone
from typing import Any, Optional, Union, TYPE_CHECKING
from uuid import uuid4

from pydantic import ValidationError

from ..errors import InvalidChain, MalformedCertificate, UnknownSubject
from ..observability import get_logger
from ..schemas import (
    Certificate,
    CertificateStatus,
    CertificateValidation,
    LedgerFilter,
)
from .chain import ChainLinker
from .hasher import Hasher
from .verifier import IntegrityVerifier

if TYPE_CHECKING:
    from ..db.store import LedgerStore

logger = get_logger(__name__)

SEALED_FIELDS = (
    "subject_id",
    "certificate_id",
    "issued_at",
    "original_author",
    "creation_date",
    "chain_length",
    "chain_tip",
)


def canonical_fields(certificate: Certificate) -> dict[str, Any]:
    """Everything the hash and signature cover: all fields but those two."""
    return {name: getattr(certificate, name) for name in SEALED_FIELDS}


def parse_certificate(data: Union[Certificate, dict, Any]) -> Certificate:
    """
    Coerce input into a Certificate.

    Raises:
        MalformedCertificate: If the input does not have a certificate's shape
    """
    if isinstance(data, Certificate):
        return data
    if not isinstance(data, dict):
        raise MalformedCertificate(
            f"Certificate must be an object, got {type(data).__name__}"
        )
    try:
        return Certificate.model_validate(data)
    except ValidationError as e:
        raise MalformedCertificate(str(e)) from e


class CertificateIssuer:
    """Produces sealed authorship snapshots."""

    def __init__(self, store: "LedgerStore", linker: ChainLinker, verifier: IntegrityVerifier):
        self._store = store
        self._linker = linker
        self._verifier = verifier

    def seal(self, fields: dict[str, Any]) -> tuple[str, str]:
        """Return (certificate_hash, signature) for the sealed fields."""
        canonical = Hasher.canonicalize(fields)
        return Hasher.sha256_hex(canonical), self._linker.mac(canonical)

    def issue(self, subject_id: str) -> Certificate:
        """
        Issue a certificate for a subject's current chain.

        Raises:
            UnknownSubject: No entries exist for the subject
            InvalidChain: The chain fails verification (carries broken_at)
        """
        entries = self._store.query(LedgerFilter(subject_id=subject_id))
        if not entries:
            raise UnknownSubject(f"No ledger entries for subject {subject_id}")

        result = self._verifier.verify_entries(entries, subject_id=subject_id)
        if not result.valid:
            raise InvalidChain(
                f"Chain for {subject_id} is broken at index {result.broken_at.index}",
                broken_at=result.broken_at,
            )

        first = entries[0]
        fields = {
            "subject_id": subject_id,
            "certificate_id": uuid4(),
            "issued_at": datetime.now(timezone.utc),
            "original_author": first.author_id,
            "creation_date": first.timestamp,
            "chain_length": len(entries),
            "chain_tip": entries[-1].block_hash,
        }
        certificate_hash, signature = self.seal(fields)
        certificate = Certificate(**fields, certificate_hash=certificate_hash, signature=signature)

        logger.info(
            "Certificate issued",
            subject_id=subject_id,
            certificate_id=str(certificate.certificate_id),
            chain_length=certificate.chain_length,
        )
        return certificate


class CertificateValidator:
    """Re-checks certificates against themselves and the live chain."""

    def __init__(self, store: "LedgerStore", issuer: CertificateIssuer, verifier: IntegrityVerifier):
        self._store = store
        self._issuer = issuer
        self._verifier = verifier

    def validate(self, certificate: Union[Certificate, dict, Any]) -> CertificateValidation:
        try:
            parsed = parse_certificate(certificate)
        except MalformedCertificate as e:
            logger.info("Malformed certificate rejected", error=str(e).splitlines()[0])
            return CertificateValidation(
                valid=False,
                certificate_intact=False,
                chain_still_valid=False,
                status=CertificateStatus.MALFORMED,
                detail=str(e),
            )

        expected_hash, expected_signature = self._issuer.seal(canonical_fields(parsed))
        hash_match = Hasher.constant_time_compare(expected_hash, parsed.certificate_hash)
        signature_match = Hasher.constant_time_compare(expected_signature, parsed.signature)
        intact = hash_match and signature_match

        entries = self._store.query(LedgerFilter(subject_id=parsed.subject_id))
        result = self._verifier.verify_entries(entries, subject_id=parsed.subject_id)
        chain_intact = result.valid and result.chain_length > 0
        drifted = chain_intact and (
            result.chain_length != parsed.chain_length
            or result.chain_tip != parsed.chain_tip
        )
        chain_still_valid = chain_intact and not drifted

        status = self._status(intact, chain_intact, drifted)
        detail: Optional[str] = None
        if status == CertificateStatus.STALE:
            detail = (
                f"Chain changed since issuance: {parsed.chain_length} -> "
                f"{result.chain_length} entries"
            )
        elif status == CertificateStatus.CHAIN_BROKEN and result.chain_length == 0:
            detail = "Subject has no ledger entries"

        if status != CertificateStatus.VALID:
            logger.info(
                "Certificate did not validate",
                subject_id=parsed.subject_id,
                status=status.value,
            )

        return CertificateValidation(
            valid=intact and chain_still_valid,
            certificate_intact=intact,
            chain_still_valid=chain_still_valid,
            status=status,
            hash_match=hash_match,
            signature_match=signature_match,
            chain_intact=chain_intact,
            drifted=drifted,
            subject_id=parsed.subject_id,
            current_chain_length=result.chain_length,
            broken_at=result.broken_at,
            detail=detail,
        )

    @staticmethod
    def _status(intact: bool, chain_intact: bool, drifted: bool) -> CertificateStatus:
        if not intact:
            return CertificateStatus.FORGED
        if not chain_intact:
            return CertificateStatus.CHAIN_BROKEN
        if drifted:
            return CertificateStatus.STALE
        return CertificateStatus.VALID
