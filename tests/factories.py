"""Entry and clock builders shared by the test modules."""

from datetime import datetime, timedelta, timezone
from typing import Optional

from votechain.core import Hasher
from votechain.schemas import GENESIS_HASH, BallotPayload, LedgerEntry, VoteDefinitionPayload


NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Settable clock; calling it returns the current fake time."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_definition(vote_id: str = "v1", options=("A", "B"), end_date: Optional[datetime] = None, **kwargs):
    return VoteDefinitionPayload(
        vote_id=vote_id,
        creator_id=kwargs.pop("creator_id", "admin1"),
        title=kwargs.pop("title", f"Vote {vote_id}"),
        description=kwargs.pop("description", "A test vote"),
        options=list(options),
        end_date=end_date or NOW + timedelta(days=7),
        **kwargs,
    )


def make_ballot(voter_id: str = "u1", vote_id: str = "v1", candidate: str = "A") -> BallotPayload:
    return BallotPayload(voter_id=voter_id, vote_id=vote_id, candidate=candidate)


def make_entry(
    payload,
    previous: Optional[LedgerEntry] = None,
    sequence: Optional[int] = None,
    previous_hash: Optional[str] = None,
    created_at: datetime = NOW,
) -> LedgerEntry:
    """Build a correctly hashed entry that links to ``previous``."""
    if sequence is None:
        sequence = previous.sequence_position + 1 if previous else 0
    if previous_hash is None:
        previous_hash = previous.entry_hash if previous else GENESIS_HASH
    draft = LedgerEntry(
        sequence_position=sequence,
        previous_hash=previous_hash,
        entry_hash="",
        created_at=created_at,
        payload=payload,
    )
    return draft.model_copy(update={"entry_hash": Hasher.hash_entry(draft)})


def rehash(entry: LedgerEntry, **updates) -> LedgerEntry:
    """Apply ``updates`` and recompute the hash, as a forger would."""
    changed = entry.model_copy(update=updates)
    return changed.model_copy(update={"entry_hash": Hasher.hash_entry(changed)})


def build_chain(count: int = 4) -> list[LedgerEntry]:
    """A valid chain: one definition followed by ``count - 1`` ballots."""
    entries = [make_entry(make_definition())]
    for i in range(1, count):
        entries.append(make_entry(make_ballot(voter_id=f"u{i}"), previous=entries[-1]))
    return entries
