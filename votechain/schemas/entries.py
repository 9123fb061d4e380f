"""
Canonical Entry Schema

The ledger is an append-only sequence of entries.
Nothing is "edited". Votes are defined, ballots are cast.

Each entry:
- Is immutable once committed
- Is hashed over its canonical content
- Links to the hash of the entry before it

Two payload shapes share one chain. They are modelled as a tagged
union discriminated by ``entry_type`` so every consumer (hasher,
validator, eligibility rules) handles each case explicitly.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator


# Fixed previous_hash of the first entry in the chain
GENESIS_HASH = "0" * 64

# Wildcard group: the vote is visible to every group
ALL_GROUPS = "all"


class EntryType(str, Enum):
    """
    All possible entry types.
    You can add more later, never remove.
    """
    VOTE_DEFINITION = "VOTE_DEFINITION"
    BALLOT = "BALLOT"


def _as_utc(value: datetime) -> datetime:
    # Naive instants are taken to be UTC; the hasher refuses naive datetimes.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


# ============================================================
# Entry Payloads
# ============================================================

class VoteDefinitionPayload(BaseModel):
    """
    Payload for a VOTE_DEFINITION entry.

    Declares a vote: its options, its closing instant and which
    groups may see it. At most one definition exists per vote_id.
    """
    model_config = ConfigDict(frozen=True)

    entry_type: Literal["VOTE_DEFINITION"] = "VOTE_DEFINITION"

    vote_id: str = Field(..., min_length=1)
    creator_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)

    # Order is significant: it is the ballot paper order
    options: list[str] = Field(
        ...,
        min_length=1,
        description="Distinct candidate labels, in display order"
    )

    end_date: datetime = Field(
        ...,
        description="Voting closes at this instant (exclusive)"
    )

    eligible_groups: list[str] = Field(
        default_factory=lambda: [ALL_GROUPS],
        description="Group identifiers allowed to see the vote, or ['all']"
    )

    @field_validator("options")
    @classmethod
    def options_distinct(cls, v: list[str]) -> list[str]:
        if any(not option for option in v):
            raise ValueError("options must be non-empty strings")
        if len(set(v)) != len(v):
            raise ValueError("options must be distinct")
        return v

    @field_validator("end_date")
    @classmethod
    def end_date_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @field_validator("eligible_groups")
    @classmethod
    def groups_normalized(cls, v: list[str]) -> list[str]:
        # A set in meaning; stored sorted so equal sets hash equally
        groups = sorted({g for g in v if g})
        return groups or [ALL_GROUPS]

    def is_visible_to(self, group_id: Optional[str]) -> bool:
        """Check whether a caller in ``group_id`` may see this vote."""
        return ALL_GROUPS in self.eligible_groups or group_id in self.eligible_groups

    def is_open_at(self, moment: datetime) -> bool:
        """Voting is open strictly before end_date."""
        return _as_utc(moment) < self.end_date


class BallotPayload(BaseModel):
    """
    Payload for a BALLOT entry.

    One voter, one vote, one candidate. At most one ballot exists
    per (voter_id, vote_id).
    """
    model_config = ConfigDict(frozen=True)

    entry_type: Literal["BALLOT"] = "BALLOT"

    voter_id: str = Field(..., min_length=1)
    vote_id: str = Field(..., min_length=1)
    candidate: str = Field(..., min_length=1)


EntryPayload = Annotated[
    Union[VoteDefinitionPayload, BallotPayload],
    Field(discriminator="entry_type"),
]


# ============================================================
# Ledger Entry
# ============================================================

class LedgerEntry(BaseModel):
    """
    The immutable ledger entry.

    This is the unit that gets stored, hashed, and chained.

    Hashed content is every field except ``entry_id`` (assigned by the
    store) and ``entry_hash`` itself. ``created_at`` is descriptive
    metadata; ordering comes from ``sequence_position`` alone.
    """
    model_config = ConfigDict(frozen=True)

    entry_id: Optional[UUID] = Field(
        default=None,
        description="Store-assigned identifier. Not part of the hashed content."
    )

    sequence_position: int = Field(
        ...,
        ge=0,
        description="Strictly increasing logical position in the chain"
    )

    previous_hash: str = Field(
        ...,
        description="Hash of the preceding entry, or GENESIS_HASH for the first entry"
    )
    entry_hash: str = Field(
        ...,
        description="SHA-256 of this entry's canonical content"
    )

    created_at: datetime = Field(
        ...,
        description="When this entry was recorded (metadata only)"
    )

    payload: EntryPayload

    @field_validator("created_at")
    @classmethod
    def created_at_utc(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def entry_type(self) -> EntryType:
        return EntryType(self.payload.entry_type)

    @property
    def vote_id(self) -> str:
        return self.payload.vote_id

    def hashable_content(self) -> dict:
        """Content covered by ``entry_hash``."""
        return self.model_dump(mode="python", exclude={"entry_id", "entry_hash"})

    def matches(self, entry_type: Optional[EntryType] = None, **fields) -> bool:
        """
        Check this entry against an equality filter.

        ``entry_type`` filters on the variant; every other keyword is
        compared with the payload attribute of the same name.
        """
        if entry_type is not None and self.entry_type != EntryType(entry_type):
            return False
        for name, expected in fields.items():
            if getattr(self.payload, name, None) != expected:
                return False
        return True
