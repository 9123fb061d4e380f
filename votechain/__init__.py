"""VoteChain - hash-linked voting ledger."""

__version__ = "1.0.0"
