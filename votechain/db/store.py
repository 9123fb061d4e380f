"""
Entry Store Abstraction

This module defines the EntryStore interface and provides two implementations:
- InMemoryEntryStore: For development and testing
- PostgresEntryStore: For production with full durability and concurrency safety

The EntryStore is responsible for:
- Conditional append: commit only if the chain tail is still the one the
  caller built against
- Storage-level uniqueness (one definition per vote_id, one ballot per
  voter per vote)
- Ordered, point-in-time snapshot reads

The ledger retains responsibility for:
- Hashing and chain validation
- Eligibility rules
- Retrying lost races

APPEND CONTRACT:

    stored = store.append_if_tail_matches(entry, expected_tail_hash)

raises ConcurrencyError if another writer extended the chain first, and
UniquenessViolation if the entry duplicates a vote or a ballot. On any
error nothing is written.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from threading import Lock
from typing import Any, Callable, Generator, Optional
from uuid import UUID, uuid4

import psycopg2
from psycopg2.extras import Json

from ..core.errors import StoreUnavailable
from ..core.hasher import Hasher
from ..schemas import GENESIS_HASH, EntryType, LedgerEntry


# ============================================================
# EXCEPTIONS
# ============================================================

class EntryStoreError(Exception):
    """Base exception for entry store errors."""
    pass


class ConcurrencyError(EntryStoreError):
    """Raised when the chain tail moved before the append could commit."""
    pass


class LockTimeoutError(ConcurrencyError):
    """Raised when lock acquisition times out (ledger busy)."""
    pass


class ChainIntegrityError(EntryStoreError):
    """Raised when an entry handed to the store is not a valid extension."""
    pass


class UniquenessViolation(EntryStoreError):
    """
    Raised when an entry duplicates an existing vote or ballot.

    ``constraint`` is "vote_definition" or "ballot".
    """

    def __init__(self, constraint: str, message: str):
        super().__init__(message)
        self.constraint = constraint


# Payload fields that may be used as lookup filters
FILTERABLE_FIELDS = frozenset({"vote_id", "voter_id", "creator_id", "candidate"})


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass(frozen=True)
class ChainTail:
    """
    Current state of the chain tail.

    Derived from the entry with the highest sequence position.
    """
    last_sequence: int  # -1 means empty ledger
    last_entry_hash: Optional[str]  # None means empty ledger

    @property
    def next_sequence(self) -> int:
        return self.last_sequence + 1

    @property
    def is_empty(self) -> bool:
        return self.last_sequence == -1

    @property
    def link_hash(self) -> str:
        """The previous_hash the next entry must carry."""
        return self.last_entry_hash or GENESIS_HASH

    @classmethod
    def of(cls, entries: list[LedgerEntry]) -> "ChainTail":
        if not entries:
            return cls(last_sequence=-1, last_entry_hash=None)
        last = entries[-1]
        return cls(last_sequence=last.sequence_position, last_entry_hash=last.entry_hash)


def _check_filters(fields: dict[str, Any]) -> None:
    unknown = set(fields) - FILTERABLE_FIELDS
    if unknown:
        raise ValueError(
            f"Unsupported filter field(s): {sorted(unknown)}. "
            f"Valid fields: {sorted(FILTERABLE_FIELDS)}"
        )


# ============================================================
# ABSTRACT BASE CLASS
# ============================================================

class EntryStore(ABC):
    """
    Abstract base class for entry storage.

    Implementations must ensure:
    1. Conditional append is atomic: the tail check and the insert happen
       as one step with respect to other writers
    2. No two entries share a sequence position or a previous_hash
    3. Uniqueness of vote definitions and ballots is enforced on commit
    4. list_all() is a single point-in-time read, ordered by sequence
    5. Entries are never updated or deleted
    """

    @abstractmethod
    def append_if_tail_matches(
        self,
        entry: LedgerEntry,
        expected_tail_hash: str,
    ) -> LedgerEntry:
        """
        Append ``entry`` only if the current tail hash equals ``expected_tail_hash``.

        ``expected_tail_hash`` is GENESIS_HASH for an empty store.

        Returns:
            The stored entry, with its store-assigned entry_id

        Raises:
            ConcurrencyError: the tail has moved
            UniquenessViolation: duplicate vote definition or ballot
            ChainIntegrityError: the entry does not extend the expected tail
        """
        pass

    @abstractmethod
    def list_all(self) -> list[LedgerEntry]:
        """List all entries ordered by sequence position ascending."""
        pass

    @abstractmethod
    def find_many(
        self,
        entry_type: Optional[EntryType] = None,
        **fields: Any,
    ) -> list[LedgerEntry]:
        """
        List entries matching an equality filter, in sequence order.

        Args:
            entry_type: Restrict to one variant
            **fields: Payload field equality filters (vote_id, voter_id, ...)
        """
        pass

    def find_one(
        self,
        entry_type: Optional[EntryType] = None,
        **fields: Any,
    ) -> Optional[LedgerEntry]:
        """Return the first entry matching the filter, or None."""
        matches = self.find_many(entry_type, **fields)
        return matches[0] if matches else None

    @abstractmethod
    def get_tail(self) -> ChainTail:
        """Get current chain tail without locking. For read-only use."""
        pass

    @abstractmethod
    def get_entry_count(self) -> int:
        """Get total number of entries in the store."""
        pass

    @staticmethod
    def _check_extends(entry: LedgerEntry, tail: ChainTail) -> None:
        """Shared commit-time checks: linkage, ordering and hash."""
        if entry.previous_hash != tail.link_hash:
            raise ChainIntegrityError(
                f"Previous hash mismatch: expected {tail.link_hash[:16]}..., "
                f"got {entry.previous_hash[:16]}..."
            )
        if entry.sequence_position <= tail.last_sequence:
            raise ChainIntegrityError(
                f"Sequence position {entry.sequence_position} does not follow "
                f"tail position {tail.last_sequence}"
            )
        computed_hash = Hasher.hash_entry(entry)
        if computed_hash != entry.entry_hash:
            raise ChainIntegrityError(
                f"Hash verification failed: computed {computed_hash[:16]}..., "
                f"claimed {entry.entry_hash[:16]}..."
            )


# ============================================================
# IN-MEMORY IMPLEMENTATION
# ============================================================

class InMemoryEntryStore(EntryStore):
    """
    In-memory implementation of EntryStore.

    Suitable for:
    - Development
    - Testing
    - Single-process deployments without persistence requirements

    A single lock serializes commits and snapshot reads, so every
    list_all() sees a fully committed prefix of the chain.
    """

    def __init__(self):
        self._entries: list[LedgerEntry] = []
        self._vote_ids: set[str] = set()
        self._ballots: set[tuple[str, str]] = set()
        self._lock = Lock()

    def append_if_tail_matches(
        self,
        entry: LedgerEntry,
        expected_tail_hash: str,
    ) -> LedgerEntry:
        with self._lock:
            tail = ChainTail.of(self._entries)

            if tail.link_hash != expected_tail_hash:
                raise ConcurrencyError(
                    f"Tail moved: expected {expected_tail_hash[:16]}..., "
                    f"current {tail.link_hash[:16]}..."
                )

            self._check_extends(entry, tail)

            payload = entry.payload
            if entry.entry_type == EntryType.VOTE_DEFINITION:
                if payload.vote_id in self._vote_ids:
                    raise UniquenessViolation(
                        "vote_definition",
                        f"Vote {payload.vote_id} already exists",
                    )
            else:
                if (payload.voter_id, payload.vote_id) in self._ballots:
                    raise UniquenessViolation(
                        "ballot",
                        f"Voter {payload.voter_id} already voted in {payload.vote_id}",
                    )

            stored = entry.model_copy(update={"entry_id": uuid4()})
            self._entries.append(stored)
            if stored.entry_type == EntryType.VOTE_DEFINITION:
                self._vote_ids.add(payload.vote_id)
            else:
                self._ballots.add((payload.voter_id, payload.vote_id))

            return stored

    def list_all(self) -> list[LedgerEntry]:
        with self._lock:
            return list(self._entries)

    def find_many(
        self,
        entry_type: Optional[EntryType] = None,
        **fields: Any,
    ) -> list[LedgerEntry]:
        _check_filters(fields)
        with self._lock:
            return [e for e in self._entries if e.matches(entry_type, **fields)]

    def get_tail(self) -> ChainTail:
        with self._lock:
            return ChainTail.of(self._entries)

    def get_entry_count(self) -> int:
        return len(self._entries)

    def clear(self) -> None:
        """Clear all entries (for testing only)."""
        with self._lock:
            self._entries.clear()
            self._vote_ids.clear()
            self._ballots.clear()


# ============================================================
# POSTGRESQL IMPLEMENTATION
# ============================================================

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS ledger_entries (
    entry_id            UUID PRIMARY KEY,
    sequence_position   BIGINT NOT NULL,
    previous_hash       CHAR(64) NOT NULL,
    entry_hash          CHAR(64) NOT NULL,
    entry_type          TEXT NOT NULL,
    vote_id             TEXT NOT NULL,
    voter_id            TEXT,
    created_at          TIMESTAMPTZ NOT NULL,
    payload_json        JSONB NOT NULL,
    payload_canon       TEXT NOT NULL,
    canon_version       INTEGER NOT NULL,
    CONSTRAINT ledger_entries_sequence_key UNIQUE (sequence_position),
    CONSTRAINT ledger_entries_previous_hash_key UNIQUE (previous_hash),
    CONSTRAINT ledger_entries_hash_key UNIQUE (entry_hash)
);

CREATE UNIQUE INDEX IF NOT EXISTS ledger_entries_vote_definition_uniq
    ON ledger_entries (vote_id) WHERE entry_type = 'VOTE_DEFINITION';

CREATE UNIQUE INDEX IF NOT EXISTS ledger_entries_ballot_uniq
    ON ledger_entries (voter_id, vote_id) WHERE entry_type = 'BALLOT';

CREATE TABLE IF NOT EXISTS ledger_head (
    id              BOOLEAN PRIMARY KEY DEFAULT TRUE CHECK (id),
    last_sequence   BIGINT NOT NULL DEFAULT -1,
    last_entry_hash CHAR(64)
);

INSERT INTO ledger_head (id, last_sequence, last_entry_hash)
VALUES (TRUE, -1, NULL)
ON CONFLICT (id) DO NOTHING;

CREATE OR REPLACE FUNCTION ledger_entries_append_only() RETURNS trigger AS $$
BEGIN
    RAISE EXCEPTION 'ledger_entries is append-only';
END;
$$ LANGUAGE plpgsql;

DROP TRIGGER IF EXISTS ledger_entries_no_mutation ON ledger_entries;
CREATE TRIGGER ledger_entries_no_mutation
    BEFORE UPDATE OR DELETE ON ledger_entries
    FOR EACH ROW EXECUTE FUNCTION ledger_entries_append_only();
"""

_SELECT_COLUMNS = """
    entry_id, sequence_position, previous_hash, entry_hash,
    created_at, payload_json
"""

# Unique indexes that encode business rules, by constraint name
_UNIQUENESS_CONSTRAINTS = {
    "ledger_entries_vote_definition_uniq": "vote_definition",
    "ledger_entries_ballot_uniq": "ballot",
}


class PostgresEntryStore(EntryStore):
    """
    PostgreSQL implementation of EntryStore.

    Provides:
    - Full ACID guarantees
    - Tail check under a FOR UPDATE lock on the single ledger_head row
    - Unique indexes for vote definitions and ballots (rejected atomically)
    - Lock/statement timeouts to prevent hanging

    THREAD SAFETY:
    Every call opens its own connection from ``connection_factory``;
    no transaction state lives on the store.
    """

    LOCK_TIMEOUT_MS = 2000
    STATEMENT_TIMEOUT_MS = 10000

    PGCODE_UNIQUE_VIOLATION = '23505'
    PGCODE_LOCK_NOT_AVAILABLE = '55P03'
    PGCODE_QUERY_CANCELED = '57014'

    def __init__(
        self,
        connection_factory: Callable[[], Any],
        lock_timeout_ms: int = LOCK_TIMEOUT_MS,
        statement_timeout_ms: int = STATEMENT_TIMEOUT_MS,
    ):
        """
        Initialize PostgreSQL entry store.

        Args:
            connection_factory: Callable that returns a psycopg2 connection.
            lock_timeout_ms: How long to wait for the head row lock (ms).
            statement_timeout_ms: Max statement execution time (ms).
        """
        self._connection_factory = connection_factory
        self._lock_timeout_ms = lock_timeout_ms
        self._statement_timeout_ms = statement_timeout_ms

    @contextmanager
    def _connection(self) -> Generator[Any, None, None]:
        """Open a connection, translating transport failures."""
        try:
            conn = self._connection_factory()
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            raise StoreUnavailable(f"Could not connect to entry store: {e}") from e
        try:
            yield conn
        except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
            raise StoreUnavailable(f"Entry store failed: {e}") from e
        finally:
            conn.close()

    def create_schema(self) -> None:
        """Create tables, indexes and the append-only trigger if missing."""
        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(SCHEMA_SQL)
            conn.commit()

    def append_if_tail_matches(
        self,
        entry: LedgerEntry,
        expected_tail_hash: str,
    ) -> LedgerEntry:
        stored = entry.model_copy(update={"entry_id": uuid4()})

        with self._connection() as conn:
            conn.autocommit = False
            cursor = conn.cursor()
            committed = False
            try:
                # SET LOCAL keeps timeouts transaction-scoped
                cursor.execute(f"SET LOCAL lock_timeout = '{self._lock_timeout_ms}ms'")
                cursor.execute(f"SET LOCAL statement_timeout = '{self._statement_timeout_ms}ms'")

                try:
                    cursor.execute("""
                        SELECT last_sequence, last_entry_hash
                        FROM ledger_head
                        WHERE id = TRUE
                        FOR UPDATE
                    """)
                except psycopg2.Error as e:
                    kind = self._timeout_kind(e)
                    if kind == "lock":
                        raise LockTimeoutError(
                            "Ledger busy - could not acquire lock. Try again."
                        ) from e
                    if kind == "statement":
                        raise StoreUnavailable(
                            "Query timed out - statement took too long."
                        ) from e
                    raise

                row = cursor.fetchone()
                if row is None:
                    raise StoreUnavailable(
                        "ledger_head row missing - run create_schema() first"
                    )

                tail = ChainTail(last_sequence=row[0], last_entry_hash=row[1])
                if tail.link_hash != expected_tail_hash:
                    raise ConcurrencyError(
                        f"Tail moved: expected {expected_tail_hash[:16]}..., "
                        f"current {tail.link_hash[:16]}..."
                    )

                self._check_extends(stored, tail)

                payload = stored.payload
                try:
                    cursor.execute("""
                        INSERT INTO ledger_entries (
                            entry_id,
                            sequence_position,
                            previous_hash,
                            entry_hash,
                            entry_type,
                            vote_id,
                            voter_id,
                            created_at,
                            payload_json,
                            payload_canon,
                            canon_version
                        ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    """, (
                        str(stored.entry_id),
                        stored.sequence_position,
                        stored.previous_hash,
                        stored.entry_hash,
                        stored.entry_type.value,
                        payload.vote_id,
                        getattr(payload, "voter_id", None),
                        stored.created_at,
                        Json(payload.model_dump(mode="json")),
                        Hasher.canonicalize(stored.hashable_content()),
                        Hasher.SERIALIZATION_VERSION,
                    ))
                except psycopg2.IntegrityError as e:
                    raise self._integrity_error(e) from e

                cursor.execute("""
                    UPDATE ledger_head
                    SET last_sequence = %s, last_entry_hash = %s
                    WHERE id = TRUE
                """, (stored.sequence_position, stored.entry_hash))

                conn.commit()
                committed = True
                return stored
            finally:
                if not committed:
                    try:
                        conn.rollback()
                    except psycopg2.Error:
                        pass  # Connection might be broken
                cursor.close()

    def _integrity_error(self, e: Exception) -> EntryStoreError:
        """Translate a unique violation into a store error."""
        diag = getattr(e, "diag", None)
        constraint = getattr(diag, "constraint_name", None) or ""
        if constraint in _UNIQUENESS_CONSTRAINTS:
            return UniquenessViolation(
                _UNIQUENESS_CONSTRAINTS[constraint],
                f"Duplicate entry rejected by {constraint}",
            )
        # Sequence or previous_hash collision: another writer won the tail
        return ConcurrencyError(f"Append collided with a concurrent writer ({constraint})")

    def _timeout_kind(self, e: Exception) -> Optional[str]:
        """
        Determine the type of timeout from a PostgreSQL exception.

        Returns:
            "lock" - Lock-related failure (timeout waiting, or NOWAIT refusal)
            "statement" - Statement timeout (query took too long)
            "timeout" - Some timeout but unclear which
            None - Not a timeout error

        NOTE: PostgreSQL uses 57014 (query_canceled) for BOTH lock_timeout and
        statement_timeout. We distinguish by checking the error message.
        """
        pgcode = getattr(e, 'pgcode', None)
        err_msg = (getattr(e, 'pgerror', None) or str(e)).lower()

        if pgcode == self.PGCODE_LOCK_NOT_AVAILABLE:
            return "lock"

        if pgcode == self.PGCODE_QUERY_CANCELED:
            if 'lock timeout' in err_msg or 'lock_timeout' in err_msg:
                return "lock"
            if 'statement timeout' in err_msg or 'statement_timeout' in err_msg:
                return "statement"
            return "timeout"

        return None

    def _query(self, sql: str, params: tuple = ()) -> list[LedgerEntry]:
        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute(sql, params)
                return [self._row_to_entry(row) for row in cursor.fetchall()]

    def list_all(self) -> list[LedgerEntry]:
        # A single statement is a consistent snapshot under READ COMMITTED
        return self._query(f"""
            SELECT {_SELECT_COLUMNS}
            FROM ledger_entries
            ORDER BY sequence_position
        """)

    def find_many(
        self,
        entry_type: Optional[EntryType] = None,
        **fields: Any,
    ) -> list[LedgerEntry]:
        _check_filters(fields)

        clauses = []
        params: list[Any] = []
        if entry_type is not None:
            clauses.append("entry_type = %s")
            params.append(EntryType(entry_type).value)
        # Field names are whitelisted above; only values are parameters
        for name, value in sorted(fields.items()):
            clauses.append(f"payload_json->>'{name}' = %s")
            params.append(value)

        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        return self._query(f"""
            SELECT {_SELECT_COLUMNS}
            FROM ledger_entries
            {where}
            ORDER BY sequence_position
        """, tuple(params))

    def get_tail(self) -> ChainTail:
        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("""
                    SELECT last_sequence, last_entry_hash
                    FROM ledger_head
                    WHERE id = TRUE
                """)
                row = cursor.fetchone()
        if row is None:
            return ChainTail(last_sequence=-1, last_entry_hash=None)
        return ChainTail(last_sequence=row[0], last_entry_hash=row[1])

    def get_entry_count(self) -> int:
        with self._connection() as conn:
            with conn.cursor() as cursor:
                cursor.execute("SELECT COUNT(*) FROM ledger_entries")
                return cursor.fetchone()[0]

    @staticmethod
    def _row_to_entry(row: tuple) -> LedgerEntry:
        """Convert a database row to a LedgerEntry."""
        entry_id = row[0] if isinstance(row[0], UUID) else UUID(str(row[0]))
        return LedgerEntry.model_validate({
            "entry_id": entry_id,
            "sequence_position": row[1],
            "previous_hash": row[2],
            "entry_hash": row[3],
            "created_at": row[4],
            "payload": row[5],
        })
