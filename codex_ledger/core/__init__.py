# Core ledger services
from .hasher import Hasher, CanonicalSerializationError
from .signer import Signer
from .chain import GENESIS_HASH, ChainLinker, Fingerprinter
from .witness import DEFAULT_WITNESS_ID, WitnessNode
from .verifier import IntegrityVerifier
from .certificates import (
    CertificateIssuer,
    CertificateValidator,
    canonical_fields,
    parse_certificate,
)
from .ledger import AuthorshipLedger, DEFAULT_MAX_APPEND_RETRIES

__all__ = [
    "Hasher",
    "CanonicalSerializationError",
    "Signer",
    "GENESIS_HASH",
    "ChainLinker",
    "Fingerprinter",
    "DEFAULT_WITNESS_ID",
    "WitnessNode",
    "IntegrityVerifier",
    "CertificateIssuer",
    "CertificateValidator",
    "canonical_fields",
    "parse_certificate",
    "AuthorshipLedger",
    "DEFAULT_MAX_APPEND_RETRIES",
]
