"""
Eligibility Rules

Who may create a vote, who may cast a ballot, and when.

Two layers:
- Request-time checks (can_create_vote, can_cast_ballot): consult the
  identity service and the current store state, and reject early with a
  precise reason.
- Commit-time checks (check_append): re-run the uniqueness and voting
  window rules against the exact snapshot an append attempt is about to
  extend. Because the store only commits when the tail is unchanged,
  these checks hold for the committed chain, closing the gap between
  the request-time check and the write.

Rules:
- Only admins create votes
- Admins never vote
- One ballot per voter per vote
- Ballots only for existing votes, before end_date, for a listed option
- One definition per vote_id
"""

from datetime import datetime, timezone
from typing import Callable, Optional, Sequence, Union, TYPE_CHECKING

from ..schemas import (
    BallotPayload,
    EntryType,
    LedgerEntry,
    VoteDefinitionPayload,
)
from .errors import (
    AlreadyVoted,
    DuplicateVote,
    Forbidden,
    InvalidCandidate,
    VoteClosed,
    VoteNotFound,
)
from .identity import Identity, IdentityResolver

if TYPE_CHECKING:
    from ..db.store import EntryStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class EligibilityChecker:
    """
    Decision functions over ledger state plus identity lookups.

    Side-effect free. Raises a RuleViolation (or IdentityUnavailable)
    on rejection.
    """

    def __init__(
        self,
        store: "EntryStore",
        identity_resolver: IdentityResolver,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._identities = identity_resolver
        self._clock = clock

    def _resolve(self, user_id: str) -> Optional[Identity]:
        # IdentityUnavailable propagates: a failed lookup is never a grant
        return self._identities.resolve(user_id)

    def can_create_vote(self, creator_id: str) -> Identity:
        """Only admins may define votes."""
        identity = self._resolve(creator_id)
        if identity is None or not identity.is_admin:
            raise Forbidden(
                "Only administrators can create votes",
                user_id=creator_id,
            )
        return identity

    def can_cast_ballot(self, voter_id: str, vote_id: str) -> VoteDefinitionPayload:
        """
        Check that ``voter_id`` may vote in ``vote_id`` right now.

        Returns:
            The vote's definition, so the caller can check the candidate
        """
        identity = self._resolve(voter_id)
        if identity is None:
            raise Forbidden("Unknown user", user_id=voter_id)
        if identity.is_admin:
            raise Forbidden(
                "Administrators cannot take part in voting",
                user_id=voter_id,
            )

        if self._store.find_one(EntryType.BALLOT, voter_id=voter_id, vote_id=vote_id):
            raise AlreadyVoted(
                "You have already voted in this vote",
                voter_id=voter_id,
                vote_id=vote_id,
            )

        definition_entry = self._store.find_one(EntryType.VOTE_DEFINITION, vote_id=vote_id)
        if definition_entry is None:
            raise VoteNotFound("No such vote", vote_id=vote_id)

        definition = definition_entry.payload
        if not definition.is_open_at(self._clock()):
            raise VoteClosed("Voting has already ended", vote_id=vote_id)

        return definition

    @staticmethod
    def check_candidate(definition: VoteDefinitionPayload, candidate: str) -> None:
        if candidate not in definition.options:
            raise InvalidCandidate(
                "Invalid option for this vote",
                vote_id=definition.vote_id,
                candidate=candidate,
            )

    @classmethod
    def check_append(
        cls,
        snapshot: Sequence[LedgerEntry],
        payload: Union[VoteDefinitionPayload, BallotPayload],
        at: datetime,
    ) -> None:
        """
        Re-check uniqueness and the voting window against ``snapshot``.

        ``at`` is the created_at the new entry will carry.
        """
        if isinstance(payload, VoteDefinitionPayload):
            for entry in snapshot:
                if entry.matches(EntryType.VOTE_DEFINITION, vote_id=payload.vote_id):
                    raise DuplicateVote("This vote already exists", vote_id=payload.vote_id)
            return

        definition = None
        for entry in snapshot:
            if entry.matches(EntryType.BALLOT, voter_id=payload.voter_id, vote_id=payload.vote_id):
                raise AlreadyVoted(
                    "You have already voted in this vote",
                    voter_id=payload.voter_id,
                    vote_id=payload.vote_id,
                )
            if entry.matches(EntryType.VOTE_DEFINITION, vote_id=payload.vote_id):
                definition = entry.payload

        if definition is None:
            raise VoteNotFound("No such vote", vote_id=payload.vote_id)
        cls.check_candidate(definition, payload.candidate)
        if not definition.is_open_at(at):
            raise VoteClosed("Voting has already ended", vote_id=payload.vote_id)
