"""
Canonical Hashing

Deterministic serialization and SHA-256 hashing for fingerprints and
certificates. Same logical input -> same hash, on every platform.

If this changes, every stored fingerprint and every issued certificate
stops verifying. Change it only behind a new SERIALIZATION_VERSION.

CANONICAL RULES:
1. "__canon_v" (serialization version) is injected into every output
2. Dictionary keys sorted recursively, keys must be strings
3. None values omitted; empty strings/lists/dicts preserved
4. Datetimes: timezone-aware only, UTC, microseconds, Z suffix
5. UUIDs lowercase, Enums by value, Decimals as strings
6. Floats, bytes and sets are rejected (no stable representation)
7. JSON output: no whitespace, ASCII only
"""

import hashlib
import hmac
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


class CanonicalSerializationError(Exception):
    """Raised when data cannot be canonically serialized."""
    pass


class Hasher:
    """Canonical serialization and SHA-256 digests."""

    SERIALIZATION_VERSION = 1

    @classmethod
    def format_timestamp(cls, dt: datetime) -> str:
        """
        Render a datetime in the one format that is ever hashed.

        Format: YYYY-MM-DDTHH:MM:SS.ffffffZ
        """
        if dt.tzinfo is None:
            raise CanonicalSerializationError(
                "Datetime is timezone-naive. Hashed timestamps must be timezone-aware."
            )
        utc = dt.astimezone(timezone.utc)
        return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond:06d}Z"

    @classmethod
    def parse_timestamp(cls, text: str) -> datetime:
        """Inverse of format_timestamp (also accepts any ISO 8601 with offset)."""
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            raise CanonicalSerializationError(f"Timestamp {text!r} carries no offset")
        return parsed.astimezone(timezone.utc)

    @classmethod
    def _serialize_value(cls, value: Any, path: str) -> Any:
        if value is None:
            return None
        if isinstance(value, bool):
            return value
        if isinstance(value, int):
            return value
        if isinstance(value, Enum):
            return value.value
        if isinstance(value, str):
            return value
        if isinstance(value, UUID):
            return str(value).lower()
        if isinstance(value, datetime):
            try:
                return cls.format_timestamp(value)
            except CanonicalSerializationError as e:
                raise CanonicalSerializationError(f"{e} (at {path})") from e
        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")
        if isinstance(value, Decimal):
            return str(value)
        if isinstance(value, float):
            raise CanonicalSerializationError(
                f"Cannot serialize float at {path}. Use Decimal or str."
            )
        if isinstance(value, (list, tuple)):
            return [cls._serialize_value(v, f"{path}[{i}]") for i, v in enumerate(value)]
        if isinstance(value, dict):
            return cls._to_canonical_dict(value, path)
        if hasattr(value, "model_dump"):
            return cls._to_canonical_dict(value.model_dump(mode="python"), path)
        raise CanonicalSerializationError(
            f"Cannot serialize {type(value).__name__} at {path}."
        )

    @classmethod
    def _to_canonical_dict(cls, data: dict[str, Any], path: str = "") -> dict[str, Any]:
        result = {}
        for key in sorted(data.keys()):
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"Dictionary key at {path or '<root>'} must be str, got {type(key).__name__}"
                )
            serialized = cls._serialize_value(data[key], f"{path}.{key}" if path else key)
            if serialized is not None:
                result[key] = serialized
        return result

    @classmethod
    def canonicalize(cls, data: dict[str, Any] | Any) -> str:
        """
        Convert a dict (or pydantic model) to its canonical JSON string.

        Raises:
            CanonicalSerializationError: If any value has no deterministic form
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python")
        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Top-level canonicalization requires a dict, got {type(data).__name__}"
            )
        canonical = {"__canon_v": cls.SERIALIZATION_VERSION, **cls._to_canonical_dict(data)}
        return json.dumps(
            canonical,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    @staticmethod
    def sha256_hex(text: str) -> str:
        return hashlib.sha256(text.encode("utf-8")).hexdigest()

    @classmethod
    def hash_data(cls, data: dict[str, Any] | Any) -> str:
        """SHA-256 of the canonical form (64 lowercase hex chars)."""
        return cls.sha256_hex(cls.canonicalize(data))

    @staticmethod
    def constant_time_compare(a: str, b: str) -> bool:
        """Compare two digests without leaking where they differ."""
        return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
