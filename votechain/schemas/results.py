"""
Read models derived from the chain.

These are projections: they can be rebuilt from the entries at any
time and are never stored.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel


class VoteResults(BaseModel):
    """Tally for a single vote."""
    vote_id: str
    title: str
    total_votes: int
    # Every option is present, in ballot paper order
    results: dict[str, int]
    is_active: bool


class ChainEntrySummary(BaseModel):
    """One line of the debug chain view."""
    entry_id: Optional[UUID] = None
    sequence_position: int
    entry_type: str
    vote_id: str
    created_at: datetime
    previous_hash: str
    entry_hash: str
    is_valid_hash: bool


class ChainDebugInfo(BaseModel):
    entry_count: int
    entries: list[ChainEntrySummary]
