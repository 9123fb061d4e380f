"""Shared fixtures for ledger tests."""

import pytest

from votechain.core import (
    ADMIN_ROLE,
    LedgerConfig,
    LedgerService,
    StaticIdentityResolver,
)
from votechain.db.store import InMemoryEntryStore

from factories import FakeClock


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def identities():
    resolver = StaticIdentityResolver()
    resolver.add("admin1", role=ADMIN_ROLE)
    resolver.add("u1", group_id="g1")
    resolver.add("u2", group_id="g2")
    resolver.add("u3", group_id="g1")
    return resolver


@pytest.fixture
def store():
    return InMemoryEntryStore()


@pytest.fixture
def config():
    return LedgerConfig(append_backoff_ms=0, append_backoff_max_ms=0)


@pytest.fixture
def ledger(store, identities, config, clock):
    return LedgerService(
        store=store,
        identity_resolver=identities,
        config=config,
        clock=clock,
    )
