# Canonical Schemas for the Vote Ledger
# These define the contract every stored entry must obey.

from .entries import (
    ALL_GROUPS,
    GENESIS_HASH,
    BallotPayload,
    EntryPayload,
    EntryType,
    LedgerEntry,
    VoteDefinitionPayload,
)
from .results import ChainDebugInfo, ChainEntrySummary, VoteResults

__all__ = [
    # Entries
    "ALL_GROUPS",
    "GENESIS_HASH",
    "BallotPayload",
    "EntryPayload",
    "EntryType",
    "LedgerEntry",
    "VoteDefinitionPayload",
    # Read models
    "ChainDebugInfo",
    "ChainEntrySummary",
    "VoteResults",
]
