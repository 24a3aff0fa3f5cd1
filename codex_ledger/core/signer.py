"""
Ed25519 Signing

Witnesses attest to block hashes with Ed25519 signatures.
A witness signature says "this node saw this block", independent of the
HMAC secret that produced the entry signature.
"""

import base64
import binascii
from typing import Tuple

from nacl.exceptions import BadSignatureError, CryptoError
from nacl.signing import SigningKey, VerifyKey


class Signer:
    """
    Ed25519 sign/verify over UTF-8 strings, keys and signatures in base64.
    """

    @staticmethod
    def generate_keypair() -> Tuple[str, str]:
        """
        Generate a new Ed25519 keypair.

        Returns:
            Tuple of (private_key_b64, public_key_b64)
        """
        signing_key = SigningKey.generate()
        private_b64 = base64.b64encode(bytes(signing_key)).decode("utf-8")
        public_b64 = base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")
        return private_b64, public_b64

    @staticmethod
    def public_key_for(private_key_b64: str) -> str:
        """Derive the base64 public key from a base64 private key."""
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        return base64.b64encode(bytes(signing_key.verify_key)).decode("utf-8")

    @staticmethod
    def sign(message: str, private_key_b64: str) -> str:
        """
        Sign a message with Ed25519.

        Args:
            message: The string to sign (a block hash, in practice)
            private_key_b64: Base64-encoded private key

        Returns:
            Base64-encoded detached signature
        """
        signing_key = SigningKey(base64.b64decode(private_key_b64))
        signed = signing_key.sign(message.encode("utf-8"))
        return base64.b64encode(signed.signature).decode("utf-8")

    @staticmethod
    def verify(message: str, signature_b64: str, public_key_b64: str) -> bool:
        """
        Verify an Ed25519 signature. Never raises on bad input.

        Returns:
            True if signature is valid, False otherwise
        """
        try:
            verify_key = VerifyKey(base64.b64decode(public_key_b64))
            verify_key.verify(message.encode("utf-8"), base64.b64decode(signature_b64))
            return True
        except (BadSignatureError, CryptoError, binascii.Error, ValueError, TypeError):
            return False

    @staticmethod
    def validate_keypair(private_key_b64: str, public_key_b64: str) -> bool:
        """Check that a private and public key belong together."""
        try:
            probe = "keypair-validation-probe"
            return Signer.verify(probe, Signer.sign(probe, private_key_b64), public_key_b64)
        except (CryptoError, binascii.Error, ValueError, TypeError):
            return False
