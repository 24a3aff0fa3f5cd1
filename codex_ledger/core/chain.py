"""
Fingerprinting and Chain Linking

Two separate questions get two separate answers:

- Is this entry internally consistent?   block_hash recomputes
- Did a trusted writer produce it?       signature recomputes (needs the secret)

BLOCK HASH:
    SHA-256( previous_block_hash : content_hash : timestamp : author_id )

    A missing predecessor contributes GENESIS_HASH, so the first entry of
    a chain has a defined base case.

SIGNATURE:
    HMAC-SHA256( secret, content_hash : block_hash : timestamp )
"""

import hashlib
import hmac
from datetime import datetime
from typing import Optional

from ..schemas import LedgerEntry
from .hasher import Hasher

GENESIS_HASH = "0" * 64


class Fingerprinter:
    """Deterministic content hash for one content state."""

    @staticmethod
    def fingerprint(title: str, body: str, author_id: str, timestamp: datetime) -> str:
        """
        SHA-256 over the canonical JSON of the four fields.

        Any single-character change in title or body yields a different hash.
        """
        return Hasher.hash_data({
            "title": title,
            "body": body,
            "author_id": author_id,
            "timestamp": timestamp,
        })


class ChainLinker:
    """
    Computes and checks block hashes and entry signatures.

    The secret is injected once and never exposed: not in repr,
    not in logs, not as a public attribute.
    """

    def __init__(self, secret: bytes | str):
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if not secret:
            raise ValueError("Chain-linking secret must not be empty")
        self.__secret = secret

    def __repr__(self) -> str:
        return f"{type(self).__name__}(secret=<redacted>)"

    @staticmethod
    def link(
        content_hash: str,
        previous_block_hash: Optional[str],
        timestamp: datetime,
        author_id: str,
    ) -> str:
        material = ":".join([
            previous_block_hash or GENESIS_HASH,
            content_hash,
            Hasher.format_timestamp(timestamp),
            author_id,
        ])
        return Hasher.sha256_hex(material)

    def sign(self, content_hash: str, block_hash: str, timestamp: datetime) -> str:
        message = f"{content_hash}:{block_hash}:{Hasher.format_timestamp(timestamp)}"
        return self.mac(message)

    def mac(self, message: str) -> str:
        """HMAC-SHA256 of an arbitrary message under the chain secret, hex."""
        return hmac.new(self.__secret, message.encode("utf-8"), hashlib.sha256).hexdigest()

    def verify_block(self, entry: LedgerEntry) -> bool:
        """Does the stored block hash recompute from the entry's own fields?"""
        expected = self.link(
            entry.content_hash,
            entry.previous_block_hash,
            entry.timestamp,
            entry.author_id,
        )
        return Hasher.constant_time_compare(expected, entry.block_hash)

    def verify_signature(self, entry: LedgerEntry) -> bool:
        expected = self.sign(entry.content_hash, entry.block_hash, entry.timestamp)
        return Hasher.constant_time_compare(expected, entry.signature)
