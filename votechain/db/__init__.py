"""
Database Layer for the Vote Ledger

Provides:
- EntryStore abstraction (InMemory for dev, Postgres for prod)
- PostgreSQL schema with storage-level uniqueness
- Environment-based configuration
"""

from .store import (
    ChainIntegrityError,
    ChainTail,
    ConcurrencyError,
    EntryStore,
    EntryStoreError,
    InMemoryEntryStore,
    LockTimeoutError,
    PostgresEntryStore,
    UniquenessViolation,
)
from .config import DatabaseConfig, EntryStoreDriver, get_database_url, get_entrystore_driver

__all__ = [
    "ChainIntegrityError",
    "ChainTail",
    "ConcurrencyError",
    "EntryStore",
    "EntryStoreError",
    "InMemoryEntryStore",
    "LockTimeoutError",
    "PostgresEntryStore",
    "UniquenessViolation",
    "DatabaseConfig",
    "EntryStoreDriver",
    "get_database_url",
    "get_entrystore_driver",
]
