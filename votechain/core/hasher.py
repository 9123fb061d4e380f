"""
Cryptographic Hashing Service

Handles deterministic serialization and SHA-256 hashing of ledger entries.
Same content → same hash. Always. Forever.

If this breaks, every stored chain becomes unverifiable.
Every change here must be backward-compatible or versioned.

CANONICAL SERIALIZATION RULES:
1. Version: "__canon_v" injected into every canonical output (first key when sorted)
2. Dictionary keys: sorted recursively (Unicode codepoint order)
3. Nulls: omitted entirely (not serialized as null)
4. Empty strings, lists, dicts: preserved (they are valid data)
5. Lists: element order preserved (ballot options are ordered)
6. Datetimes: ISO 8601 with microseconds, forced to UTC, Z suffix
7. Dates: ISO 8601 (YYYY-MM-DD)
8. UUIDs: lowercase string representation
9. Enums: string value (not name)
10. Floats, sets, bytes: BANNED
11. JSON output: no extra whitespace, sorted keys, ASCII only
12. Top-level: must be dict/object (not list/primitive)

An entry's hash covers everything except ``entry_id`` and ``entry_hash``,
so ``previous_hash`` and ``sequence_position`` are bound into it.
"""

import hashlib
import json
import secrets
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


HEX_DIGITS = frozenset("0123456789abcdef")


class CanonicalSerializationError(Exception):
    """Raised when data cannot be canonically serialized."""
    pass


class Hasher:
    """
    Canonical serialization and hashing.

    IMMUTABLE CONTRACT:
    - Same logical input → same hash
    - Independent of dict insertion order
    - Across platforms and Python versions

    If you need to change serialization rules, you MUST version them.
    """

    # Increment this if serialization rules change in breaking ways
    SERIALIZATION_VERSION = 1

    @classmethod
    def _serialize_value(cls, value: Any, path: str = "") -> Any:
        """
        Convert Python objects to JSON-serializable canonical format.

        Raises:
            CanonicalSerializationError: If value cannot be serialized deterministically
        """
        if value is None:
            return None  # Filtered out by _to_canonical_dict

        if isinstance(value, UUID):
            return str(value).lower()

        if isinstance(value, datetime):
            return cls._serialize_datetime(value, path)

        if isinstance(value, date):
            return value.strftime("%Y-%m-%d")

        # Enum - use value, not name
        if isinstance(value, Enum):
            return value.value

        if isinstance(value, bool):
            return value

        if isinstance(value, int):
            return value

        # Floats are the #1 long-term determinism hazard
        if isinstance(value, float):
            raise CanonicalSerializationError(
                f"Cannot serialize float at {path}. "
                "Floats are banned in canonical payloads due to platform-dependent "
                "serialization. Use Decimal for precise numbers or string."
            )

        if isinstance(value, Decimal):
            return str(value)

        if isinstance(value, str):
            return value

        if isinstance(value, (list, tuple)):
            return [
                cls._serialize_value(v, f"{path}[{i}]")
                for i, v in enumerate(value)
            ]

        if isinstance(value, dict):
            return cls._to_canonical_dict(value, path)

        # Pydantic model - dump to dict first
        if hasattr(value, "model_dump"):
            return cls._to_canonical_dict(value.model_dump(mode="python"), path)

        if isinstance(value, bytes):
            raise CanonicalSerializationError(
                f"Cannot serialize bytes at {path}. "
                "Convert to base64 string first."
            )

        if isinstance(value, (set, frozenset)):
            raise CanonicalSerializationError(
                f"Cannot serialize set at {path}. "
                "Sets have no stable ordering. Convert to sorted list first."
            )

        raise CanonicalSerializationError(
            f"Cannot serialize {type(value).__name__} at {path}. "
            "Only JSON-compatible types are allowed."
        )

    @classmethod
    def _serialize_datetime(cls, dt: datetime, path: str) -> str:
        """
        Serialize datetime to canonical ISO 8601 format.

        Format: YYYY-MM-DDTHH:MM:SS.ffffffZ
        """
        if dt.tzinfo is None:
            raise CanonicalSerializationError(
                f"Datetime at {path} is timezone-naive. "
                "All datetimes must be timezone-aware for deterministic serialization. "
                "Use datetime.now(timezone.utc) or attach a timezone."
            )

        utc_dt = dt.astimezone(timezone.utc)
        return utc_dt.strftime("%Y-%m-%dT%H:%M:%S.") + \
               f"{utc_dt.microsecond:06d}Z"

    @classmethod
    def _to_canonical_dict(
        cls,
        data: dict[str, Any],
        path: str = ""
    ) -> dict[str, Any]:
        """
        Convert a dict to canonical form.

        RULES:
        - Keys sorted alphabetically (Unicode code point order)
        - None values omitted entirely
        - All values recursively serialized
        """
        result = {}

        for key in sorted(data.keys(), key=str):
            if not isinstance(key, str):
                raise CanonicalSerializationError(
                    f"Dictionary key at {path} must be string, "
                    f"got {type(key).__name__}"
                )

            key_path = f"{path}.{key}" if path else key
            serialized = cls._serialize_value(data[key], key_path)

            if serialized is not None:
                result[key] = serialized

        return result

    @classmethod
    def canonicalize(cls, data: dict[str, Any] | Any) -> str:
        """
        Convert data to canonical JSON string.

        Args:
            data: Dict or Pydantic model to serialize

        Returns:
            Canonical JSON string with version marker

        Raises:
            CanonicalSerializationError: If data cannot be deterministically serialized
        """
        if hasattr(data, "model_dump"):
            data = data.model_dump(mode="python")

        if not isinstance(data, dict):
            raise CanonicalSerializationError(
                f"Top-level canonicalization requires a dict/object, "
                f"got {type(data).__name__}. Entries must be objects."
            )

        canonical_dict = cls._to_canonical_dict(data)

        # "__canon_v" sorts first alphabetically due to underscore
        canonical_dict = {"__canon_v": cls.SERIALIZATION_VERSION, **canonical_dict}

        return json.dumps(
            canonical_dict,
            sort_keys=True,
            separators=(",", ":"),
            ensure_ascii=True,
            allow_nan=False,
        )

    @staticmethod
    def digest(data: bytes) -> str:
        """SHA-256 of raw bytes as 64 lowercase hex characters."""
        return hashlib.sha256(data).hexdigest()

    @classmethod
    def hash_data(cls, data: dict[str, Any] | Any) -> str:
        """Hash arbitrary canonicalizable data."""
        return cls.digest(cls.canonicalize(data).encode("utf-8"))

    @classmethod
    def hash_entry(cls, entry) -> str:
        """
        Compute the hash of a ledger entry.

        ``entry`` is a LedgerEntry (its id and hash are excluded) or a
        plain dict of the content fields.
        """
        content = entry.hashable_content() if hasattr(entry, "hashable_content") else entry
        return cls.hash_data(content)

    @classmethod
    def verify_entry(cls, entry) -> bool:
        """
        Check that an entry's stored hash matches its content.

        Returns False (never raises) for content that no longer canonicalizes.
        """
        try:
            computed = cls.hash_entry(entry)
        except CanonicalSerializationError:
            return False
        return cls._constant_time_compare(computed, str(entry.entry_hash).lower())

    @staticmethod
    def is_valid_hash(value: str) -> bool:
        """Check that ``value`` looks like a SHA-256 hex digest."""
        return (
            isinstance(value, str)
            and len(value) == 64
            and all(c in HEX_DIGITS for c in value.lower())
        )

    @staticmethod
    def _constant_time_compare(a: str, b: str) -> bool:
        return secrets.compare_digest(a.encode("utf-8"), b.encode("utf-8"))
