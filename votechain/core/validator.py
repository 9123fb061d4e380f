"""
Chain Validator

Walks entries in sequence order and checks:
- every entry's hash matches its content
- the first entry links to the genesis sentinel
- every later entry links to the hash of the one before it

Read-only. Operates on a snapshot, never on the store itself, so it
is safe to run concurrently with appends.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Sequence
from uuid import UUID

from ..schemas import GENESIS_HASH, LedgerEntry
from .hasher import Hasher


class FailureReason(str, Enum):
    HASH_MISMATCH = "HASH_MISMATCH"          # content edited after hashing
    BAD_GENESIS_LINK = "BAD_GENESIS_LINK"    # first entry not linked to genesis
    BROKEN_LINKAGE = "BROKEN_LINKAGE"        # previous_hash != prior entry hash
    SEQUENCE_ORDER = "SEQUENCE_ORDER"        # positions not strictly increasing


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a chain validation."""
    valid: bool
    message: str
    reason: Optional[FailureReason] = None
    offending_index: Optional[int] = None
    entry_id: Optional[UUID] = None
    entry_count: int = 0

    def to_dict(self) -> dict:
        data = {"valid": self.valid, "message": self.message, "entry_count": self.entry_count}
        if not self.valid:
            data["reason"] = self.reason.value if self.reason else None
            data["offending_index"] = self.offending_index
            data["entry_id"] = str(self.entry_id) if self.entry_id else None
        return data


class ChainValidator:
    """
    Verifies a complete chain.

    Stops at the first failure and reports its index and reason.
    """

    @staticmethod
    def _fail(
        reason: FailureReason,
        index: int,
        entry: LedgerEntry,
        message: str,
        count: int,
    ) -> ValidationResult:
        return ValidationResult(
            valid=False,
            message=message,
            reason=reason,
            offending_index=index,
            entry_id=entry.entry_id,
            entry_count=count,
        )

    @classmethod
    def validate(cls, entries: Sequence[LedgerEntry]) -> ValidationResult:
        """
        Validate entries already ordered by sequence_position.

        Returns:
            ValidationResult; valid only if every entry passes
        """
        count = len(entries)
        if count == 0:
            return ValidationResult(valid=True, message="Chain is empty", entry_count=0)

        first = entries[0]
        if not Hasher.verify_entry(first):
            return cls._fail(
                FailureReason.HASH_MISMATCH, 0, first,
                f"Entry 0 ({first.entry_id}): hash does not match content", count,
            )
        if first.previous_hash != GENESIS_HASH:
            return cls._fail(
                FailureReason.BAD_GENESIS_LINK, 0, first,
                f"Entry 0 ({first.entry_id}): previous_hash must be the genesis sentinel",
                count,
            )

        previous = first
        for index in range(1, count):
            entry = entries[index]

            if not Hasher.verify_entry(entry):
                return cls._fail(
                    FailureReason.HASH_MISMATCH, index, entry,
                    f"Entry {index} ({entry.entry_id}): hash does not match content",
                    count,
                )

            if entry.sequence_position <= previous.sequence_position:
                return cls._fail(
                    FailureReason.SEQUENCE_ORDER, index, entry,
                    f"Entry {index} ({entry.entry_id}): sequence position "
                    f"{entry.sequence_position} does not follow {previous.sequence_position}",
                    count,
                )

            if entry.previous_hash != previous.entry_hash:
                return cls._fail(
                    FailureReason.BROKEN_LINKAGE, index, entry,
                    f"Entry {index} ({entry.entry_id}): previous_hash "
                    f"'{entry.previous_hash[:16]}...' does not match prior entry "
                    f"'{previous.entry_hash[:16]}...'",
                    count,
                )

            previous = entry

        return ValidationResult(valid=True, message="Chain is valid", entry_count=count)
