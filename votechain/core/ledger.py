"""
Ledger Service - The Heart of the System

An append-only, hash-linked ledger of vote definitions and ballots.
Nothing is edited. Nothing is deleted. Entries are appended.

The ledger:
- Accepts vote definitions from admins and ballots from users
- Checks eligibility against the identity service and the chain
- Links each entry to its predecessor by hash
- Tallies results and validates the chain on demand

ARCHITECTURE:
- LedgerService: operations callers see (create_vote, cast_ballot, tally, ...)
- AppendEngine: optimistic append with bounded retries
- EligibilityChecker: business rules, at request time and at commit time
- EntryStore: conditional append, ordering, durability, uniqueness

APPEND FLOW (AppendEngine.append):
1. Snapshot the chain (store.list_all)
2. Validate the snapshot; a broken chain is never extended
3. Derive the tail from the snapshot: sequence and previous hash
4. Run the commit-time guard against the same snapshot
5. Hash the entry and ask the store to commit it only if the tail is unchanged
6. On a lost race, back off and start over from step 1

The tail is re-derived on every attempt. Nothing about the chain is cached
across calls.
"""

import random
import time
from datetime import datetime, timedelta
from typing import Callable, Optional, Sequence, Union, TYPE_CHECKING

from pydantic import ValidationError

from ..observability import get_logger, get_metrics
from ..schemas import (
    BallotPayload,
    ChainDebugInfo,
    ChainEntrySummary,
    EntryType,
    LedgerEntry,
    VoteDefinitionPayload,
    VoteResults,
)
from .config import LedgerConfig
from .eligibility import EligibilityChecker, utc_now
from .errors import (
    AlreadyVoted,
    AppendConflict,
    ChainCorrupted,
    DuplicateVote,
    InvalidVoteDefinition,
    RuleViolation,
    ValidationFailure,
    VoteNotFound,
)
from .hasher import Hasher
from .identity import IdentityResolver, StaticIdentityResolver
from .validator import ChainValidator, ValidationResult

if TYPE_CHECKING:
    from ..db.store import EntryStore

logger = get_logger(__name__)

Payload = Union[VoteDefinitionPayload, BallotPayload]
CommitGuard = Callable[[Sequence[LedgerEntry], Payload, datetime], None]


class AppendEngine:
    """
    Appends entries with optimistic concurrency.

    Writers never hold a lock while hashing. Each attempt builds against a
    snapshot and the store commits it only if that snapshot's tail is still
    the tail. Losers retry with jittered exponential backoff until
    ``append_max_attempts`` is reached, then get AppendConflict.
    """

    def __init__(
        self,
        store: "EntryStore",
        config: Optional[LedgerConfig] = None,
        clock: Callable[[], datetime] = utc_now,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self._store = store
        self._config = config or LedgerConfig()
        self._clock = clock
        self._sleep = sleep

    def _backoff(self, attempt: int) -> float:
        """Seconds to wait after losing ``attempt`` (1-based)."""
        ceiling = min(
            self._config.append_backoff_max_ms,
            self._config.append_backoff_ms * (2 ** (attempt - 1)),
        )
        return random.uniform(ceiling / 2, ceiling) / 1000.0

    def _build(self, snapshot: list[LedgerEntry], payload: Payload, created_at: datetime) -> LedgerEntry:
        from ..db.store import ChainTail

        tail = ChainTail.of(snapshot)
        draft = LedgerEntry(
            sequence_position=tail.next_sequence,
            previous_hash=tail.link_hash,
            entry_hash="",
            created_at=created_at,
            payload=payload,
        )
        return draft.model_copy(update={"entry_hash": Hasher.hash_entry(draft)})

    def append(self, payload: Payload, guard: Optional[CommitGuard] = None) -> LedgerEntry:
        """
        Append ``payload`` as a new entry at the tail of the chain.

        Args:
            payload: Vote definition or ballot
            guard: Called with (snapshot, payload, created_at) before each
                   commit attempt; raises to reject the append

        Returns:
            The committed entry

        Raises:
            ChainCorrupted: the stored chain fails validation
            AppendConflict: every attempt lost the race for the tail
            RuleViolation: raised by ``guard`` or by storage-level uniqueness
        """
        # Import here to avoid circular imports
        from ..db.store import ChainIntegrityError, ConcurrencyError, UniquenessViolation

        metrics = get_metrics()
        max_attempts = self._config.append_max_attempts
        start = time.perf_counter()

        for attempt in range(1, max_attempts + 1):
            snapshot = self._store.list_all()

            result = ChainValidator.validate(snapshot)
            if not result.valid:
                logger.error(
                    "Refusing to extend a corrupted chain",
                    reason=result.reason.value if result.reason else None,
                    offending_index=result.offending_index,
                )
                raise ChainCorrupted(f"Chain validation failed: {result.message}", result)

            created_at = self._clock()
            if guard is not None:
                try:
                    guard(snapshot, payload, created_at)
                except RuleViolation:
                    metrics.record_rejection()
                    raise

            entry = self._build(snapshot, payload, created_at)

            try:
                stored = self._store.append_if_tail_matches(entry, entry.previous_hash)
            except ConcurrencyError as e:
                metrics.record_conflict()
                logger.info(
                    "Lost race for chain tail",
                    attempt=attempt,
                    max_attempts=max_attempts,
                    sequence=entry.sequence_position,
                    error=str(e),
                )
                if attempt < max_attempts:
                    self._sleep(self._backoff(attempt))
                continue
            except UniquenessViolation as e:
                metrics.record_rejection()
                if e.constraint == "vote_definition":
                    raise DuplicateVote("This vote already exists", vote_id=payload.vote_id) from e
                raise AlreadyVoted(
                    "You have already voted in this vote",
                    voter_id=getattr(payload, "voter_id", None),
                    vote_id=payload.vote_id,
                ) from e
            except ChainIntegrityError as e:
                raise ChainCorrupted(f"Store rejected entry: {e}") from e

            metrics.record_append((time.perf_counter() - start) * 1000)
            logger.info(
                "Entry appended",
                entry_type=stored.entry_type.value,
                vote_id=stored.vote_id,
                sequence=stored.sequence_position,
                entry_hash=stored.entry_hash[:16],
                attempts=attempt,
            )
            return stored

        metrics.record_exhausted()
        logger.warning("Append gave up after repeated conflicts", attempts=max_attempts)
        raise AppendConflict(
            f"Could not append after {max_attempts} attempts; ledger is busy",
            attempts=max_attempts,
        )


class LedgerService:
    """
    The core ledger service.

    Handles business rules and chain operations. Storage is delegated to an
    EntryStore, identity lookups to an IdentityResolver.

    CHAIN INTEGRITY GUARANTEES:
    - Sequence positions are strictly increasing (0, 1, 2, ...)
    - Entry 0 links to GENESIS_HASH; every other entry to its predecessor
    - A chain that fails validation is never extended

    VOTING GUARANTEES:
    - Only admins create votes; admins never vote
    - One definition per vote_id, one ballot per voter per vote
    - Ballots only for a listed option, before end_date
    These hold even under concurrent writers: the rules are re-checked
    against the exact snapshot each append extends, and the store enforces
    uniqueness on commit.
    """

    def __init__(
        self,
        store: Optional["EntryStore"] = None,
        identity_resolver: Optional[IdentityResolver] = None,
        config: Optional[LedgerConfig] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize LedgerService.

        Args:
            store: EntryStore implementation for persistence.
                   If None, creates an InMemoryEntryStore.
            identity_resolver: Role lookups. If None, an empty directory
                   (every user is unknown and therefore denied).
            config: Retry and default settings
            clock: Source of "now"; injectable for tests
        """
        # Import here to avoid circular imports
        if store is None:
            from ..db.store import InMemoryEntryStore
            store = InMemoryEntryStore()

        self._store = store
        self._config = config or LedgerConfig()
        self._clock = clock
        self._identities = identity_resolver or StaticIdentityResolver()
        self._eligibility = EligibilityChecker(store, self._identities, clock=clock)
        self._engine = AppendEngine(store, self._config, clock=clock)

    @property
    def store(self) -> "EntryStore":
        """Get the underlying entry store."""
        return self._store

    @property
    def entry_count(self) -> int:
        return self._store.get_entry_count()

    # ================================================================
    # WRITES
    # ================================================================

    def create_vote(
        self,
        vote_id: str,
        creator_id: str,
        title: str,
        description: str,
        options: list[str],
        end_date: Optional[datetime] = None,
        eligible_groups: Optional[list[str]] = None,
    ) -> LedgerEntry:
        """
        Define a new vote.

        ``end_date`` defaults to now plus ``default_vote_days``; when given
        it must lie in the future. ``eligible_groups`` defaults to ["all"].
        """
        self._eligibility.can_create_vote(creator_id)

        now = self._clock()
        if end_date is None:
            end_date = now + timedelta(days=self._config.default_vote_days)

        try:
            payload = VoteDefinitionPayload(
                vote_id=vote_id,
                creator_id=creator_id,
                title=title,
                description=description,
                options=options,
                end_date=end_date,
                eligible_groups=eligible_groups or [],
            )
        except ValidationError as e:
            raise InvalidVoteDefinition(
                "Invalid vote definition",
                vote_id=vote_id,
                errors=[err["msg"] for err in e.errors()],
            ) from e

        if payload.end_date <= now:
            raise InvalidVoteDefinition("End date must be in the future", vote_id=vote_id)

        if self._store.find_one(EntryType.VOTE_DEFINITION, vote_id=vote_id):
            raise DuplicateVote("This vote already exists", vote_id=vote_id)

        entry = self._engine.append(payload, guard=EligibilityChecker.check_append)
        logger.info(
            "Vote created",
            vote_id=vote_id,
            options=len(payload.options),
            end_date=payload.end_date.isoformat(),
        )
        return entry

    def cast_ballot(self, voter_id: str, vote_id: str, candidate: str) -> LedgerEntry:
        """Record ``voter_id``'s choice of ``candidate`` in ``vote_id``."""
        definition = self._eligibility.can_cast_ballot(voter_id, vote_id)
        self._eligibility.check_candidate(definition, candidate)

        payload = BallotPayload(voter_id=voter_id, vote_id=vote_id, candidate=candidate)
        entry = self._engine.append(payload, guard=EligibilityChecker.check_append)
        logger.info("Ballot cast", vote_id=vote_id, sequence=entry.sequence_position)
        return entry

    # ================================================================
    # READS
    # ================================================================

    def list_entries(self, group_id: Optional[str] = None) -> list[LedgerEntry]:
        """
        All entries in sequence order, optionally as seen by ``group_id``.

        Without a group every entry is listed. With one, ballots are always
        listed and vote definitions only when open to all groups or to
        ``group_id``.
        """
        entries = self._store.list_all()
        if group_id is None:
            return entries
        return [
            entry for entry in entries
            if entry.entry_type == EntryType.BALLOT
            or entry.payload.is_visible_to(group_id)
        ]

    def validate_chain(self) -> ValidationResult:
        """Validate the whole stored chain. Read-only."""
        return ChainValidator.validate(self._store.list_all())

    def verify_chain_integrity(self) -> ValidationResult:
        """
        Validate the stored chain and raise if it is broken.

        Raises:
            ValidationFailure: with the failing ValidationResult attached
        """
        result = self.validate_chain()
        if not result.valid:
            logger.error(
                "Chain integrity check failed",
                reason=result.reason.value if result.reason else None,
                offending_index=result.offending_index,
            )
            raise ValidationFailure(result.message, result)
        return result

    def tally(self, vote_id: str) -> VoteResults:
        """
        Count the ballots of ``vote_id``.

        Computed from a single snapshot so the definition and its ballots
        are read at the same point in the chain.
        """
        definition: Optional[VoteDefinitionPayload] = None
        ballots: list[BallotPayload] = []
        for entry in self._store.list_all():
            if entry.vote_id != vote_id:
                continue
            if entry.entry_type == EntryType.VOTE_DEFINITION:
                definition = entry.payload
            else:
                ballots.append(entry.payload)

        if definition is None:
            raise VoteNotFound("No such vote", vote_id=vote_id)

        results = {option: 0 for option in definition.options}
        for ballot in ballots:
            if ballot.candidate in results:
                results[ballot.candidate] += 1

        return VoteResults(
            vote_id=vote_id,
            title=definition.title,
            total_votes=sum(results.values()),
            results=results,
            is_active=definition.is_open_at(self._clock()),
        )

    def debug_chain(self) -> ChainDebugInfo:
        """Per-entry view of the chain with each entry's hash re-checked."""
        entries = self._store.list_all()
        return ChainDebugInfo(
            entry_count=len(entries),
            entries=[
                ChainEntrySummary(
                    entry_id=entry.entry_id,
                    sequence_position=entry.sequence_position,
                    entry_type=entry.entry_type.value,
                    vote_id=entry.vote_id,
                    created_at=entry.created_at,
                    previous_hash=entry.previous_hash,
                    entry_hash=entry.entry_hash,
                    is_valid_hash=Hasher.verify_entry(entry),
                )
                for entry in entries
            ],
        )
