"""
API Routes for the Vote Ledger

Command endpoints (append-only, no PATCH, no PUT, no DELETE):
- POST /create_vote             - Define a new vote (admins only)
- POST /vote                    - Cast a ballot

Query endpoints (computed from the chain):
- GET /chain                    - List entries, optionally as seen by a group
- GET /validate                 - Validate the whole chain
- GET /debug/chain              - Per-entry hash check
- GET /results/{vote_id}        - Tally a vote

Handlers hold no business logic. Errors are raised as LedgerError and
mapped to HTTP statuses by the application's exception handler.
"""

from datetime import datetime
from typing import Any, Optional

from fastapi import APIRouter, Query, Request, status
from pydantic import BaseModel, Field

from ..core import LedgerService
from ..schemas import ChainDebugInfo, LedgerEntry, VoteResults


router = APIRouter(tags=["Ledger"])


# ============================================================
# Request Models
# ============================================================

class CreateVoteRequest(BaseModel):
    """Request to define a new vote."""
    vote_id: str
    creator_id: str
    title: str
    description: str
    options: list[str]
    end_date: Optional[datetime] = Field(
        default=None,
        description="Closing instant; defaults to 30 days from now"
    )
    eligible_groups: Optional[list[str]] = Field(
        default=None,
        description="Groups allowed to see the vote; defaults to ['all']"
    )


class CastBallotRequest(BaseModel):
    """Request to cast a ballot."""
    voter_id: str
    vote_id: str
    candidate: str


# ============================================================
# Helper Functions
# ============================================================

def get_ledger(request: Request) -> LedgerService:
    """Get ledger from app state."""
    return request.app.state.ledger


# ============================================================
# Endpoints
# ============================================================

@router.get("/chain", response_model=list[LedgerEntry])
def list_chain(request: Request, group_id: Optional[str] = Query(default=None)):
    """
    List all entries in sequence order.

    With ``group_id``, ballots are always included and vote definitions
    only when they are open to all groups or to that group.
    """
    return get_ledger(request).list_entries(group_id=group_id)


@router.get("/validate")
def validate_chain(request: Request) -> dict[str, Any]:
    """Validate hashes and linkage of the whole chain."""
    return get_ledger(request).validate_chain().to_dict()


@router.get("/debug/chain", response_model=ChainDebugInfo)
def debug_chain(request: Request):
    """Every entry with its linkage and a fresh hash check."""
    return get_ledger(request).debug_chain()


@router.post("/create_vote", response_model=LedgerEntry, status_code=status.HTTP_201_CREATED)
def create_vote(body: CreateVoteRequest, request: Request):
    return get_ledger(request).create_vote(
        vote_id=body.vote_id,
        creator_id=body.creator_id,
        title=body.title,
        description=body.description,
        options=body.options,
        end_date=body.end_date,
        eligible_groups=body.eligible_groups,
    )


@router.post("/vote", response_model=LedgerEntry, status_code=status.HTTP_201_CREATED)
def cast_ballot(body: CastBallotRequest, request: Request):
    return get_ledger(request).cast_ballot(
        voter_id=body.voter_id,
        vote_id=body.vote_id,
        candidate=body.candidate,
    )


@router.get("/results/{vote_id}", response_model=VoteResults)
def get_results(vote_id: str, request: Request):
    return get_ledger(request).tally(vote_id)
