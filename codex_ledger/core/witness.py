"""
Witness attestation.

A witness signs the block hash of each new entry with its own Ed25519
key. Verifiers that know the witness's public key can check the
attestation without the chain secret.
"""

from datetime import datetime, timezone
from typing import Optional

from ..schemas import Witness
from .signer import Signer

DEFAULT_WITNESS_ID = "primary-node"


class WitnessNode:
    """One attesting node: an id and an Ed25519 private key."""

    def __init__(self, witness_id: str = DEFAULT_WITNESS_ID, private_key: Optional[str] = None):
        if private_key is None:
            private_key, _ = Signer.generate_keypair()
        self.witness_id = witness_id
        self.__private_key = private_key
        self.public_key = Signer.public_key_for(private_key)

    def __repr__(self) -> str:
        return f"WitnessNode(witness_id={self.witness_id!r}, public_key={self.public_key!r})"

    def attest(self, block_hash: str, timestamp: Optional[datetime] = None) -> Witness:
        return Witness(
            witness_id=self.witness_id,
            signature=Signer.sign(block_hash, self.__private_key),
            timestamp=timestamp or datetime.now(timezone.utc),
        )

    @staticmethod
    def check(witness: Witness, block_hash: str, public_key: str) -> bool:
        return Signer.verify(block_hash, witness.signature, public_key)
