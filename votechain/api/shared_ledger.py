"""
Shared Ledger Instance

This module holds the shared ledger, its entry store and its identity
resolver. Supports both in-memory (development) and PostgreSQL
(production) modes.

Mode is determined by environment variables:
- ENTRYSTORE_DRIVER: Explicit driver selection (memory, psycopg2)
- DATABASE_URL or DATABASE_HOST: Database connection (auto-selects psycopg2)
- Neither set: Use in-memory (default for development)

Identity source:
- VOTECHAIN_IDENTITY_URL: HTTP identity service
- VOTECHAIN_IDENTITIES_FILE: JSON identity directory
- Neither set: empty directory, every request is denied

Instances are created on first use, not at import time.
"""

from threading import Lock
from typing import Optional

import psycopg2

from ..core import (
    HttpIdentityResolver,
    IdentityResolver,
    LedgerConfig,
    LedgerService,
    StaticIdentityResolver,
)
from ..db.config import DatabaseConfig, EntryStoreDriver, get_database_url, get_entrystore_driver
from ..db.store import EntryStore, InMemoryEntryStore, PostgresEntryStore
from ..observability import get_logger

logger = get_logger(__name__)

_init_lock = Lock()
_ledger: Optional[LedgerService] = None


def _create_entry_store() -> EntryStore:
    """
    Create the appropriate EntryStore based on configuration.

    Returns:
        InMemoryEntryStore for development/testing
        PostgresEntryStore for production (when a database is configured)

    Raises:
        ValueError: if a database driver is selected but no database is
                    configured
    """
    driver = get_entrystore_driver()

    if driver == EntryStoreDriver.MEMORY:
        logger.info("Using in-memory entry store (no persistence)")
        return InMemoryEntryStore()

    db_url = get_database_url()
    if db_url is None:
        raise ValueError(
            f"ENTRYSTORE_DRIVER={driver.value} but no database is configured. "
            f"Set DATABASE_URL or DATABASE_HOST, or use ENTRYSTORE_DRIVER=memory"
        )

    config = DatabaseConfig.from_url(db_url) if "://" in db_url else DatabaseConfig.from_env()
    return create_postgres_store(config)


def create_postgres_store(config: DatabaseConfig) -> EntryStore:
    """Create PostgresEntryStore with psycopg2 and make sure the schema exists."""

    def connection_factory():
        return psycopg2.connect(config.to_dsn())

    store = PostgresEntryStore(connection_factory)
    # Fails loudly: a configured database that cannot be reached is not
    # silently replaced with a volatile store.
    store.create_schema()
    logger.info(
        "PostgreSQL entry store ready",
        host=config.host,
        port=config.port,
        database=config.database,
    )
    return store


def _create_identity_resolver(config: LedgerConfig) -> IdentityResolver:
    if config.identity_url:
        logger.info("Using HTTP identity service", url=config.identity_url)
        return HttpIdentityResolver(config.identity_url, timeout=config.identity_timeout_seconds)
    if config.identities_file:
        logger.info("Using identity directory file", path=config.identities_file)
        return StaticIdentityResolver.from_file(config.identities_file)
    logger.warning("No identity source configured; all users will be denied")
    return StaticIdentityResolver()


def create_ledger(
    store: Optional[EntryStore] = None,
    config: Optional[LedgerConfig] = None,
) -> LedgerService:
    """Build a LedgerService from environment configuration."""
    config = config or LedgerConfig.from_env()
    store = store or _create_entry_store()
    return LedgerService(
        store=store,
        identity_resolver=_create_identity_resolver(config),
        config=config,
    )


def get_ledger() -> LedgerService:
    """Get the shared ledger, creating it on first use."""
    global _ledger
    with _init_lock:
        if _ledger is None:
            _ledger = create_ledger()
        return _ledger


def get_entry_store() -> EntryStore:
    """Get the shared entry store instance."""
    return get_ledger().store
