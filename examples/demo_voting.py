"""
Demonstration: Complete Vote Lifecycle

Shows a vote flowing through the ledger from definition to tally, then
what validation reports when someone edits a stored ballot.

Run with: python -m examples.demo_voting
"""

from datetime import datetime, timedelta, timezone

from votechain.core import ADMIN_ROLE, AlreadyVoted, LedgerService, StaticIdentityResolver
from votechain.db.store import InMemoryEntryStore
from votechain.schemas import EntryType


def main():
    print("=" * 60)
    print("VoteChain - Vote Lifecycle Demonstration")
    print("=" * 60)
    print()

    # Initialize services
    identities = StaticIdentityResolver()
    identities.add("clerk", role=ADMIN_ROLE)
    identities.add("alice", group_id="district-1")
    identities.add("bob", group_id="district-1")
    identities.add("carol", group_id="district-2")

    store = InMemoryEntryStore()
    ledger = LedgerService(store=store, identity_resolver=identities)

    # ================================================================
    # STEP 1: VOTE DEFINED
    # ================================================================
    print("=" * 60)
    print("STEP 1: VOTE DEFINED")
    print("=" * 60)

    definition = ledger.create_vote(
        vote_id="park-2025",
        creator_id="clerk",
        title="Riverside park redesign",
        description="Choose the plan the city will build next spring.",
        options=["Playground", "Community garden", "Skate park"],
        end_date=datetime.now(timezone.utc) + timedelta(days=14),
    )

    print("[OK] Vote defined")
    print(f"   Sequence: {definition.sequence_position}")
    print(f"   Entry Hash: {definition.entry_hash[:16]}...")
    print(f"   Previous Hash: {definition.previous_hash[:16]}... (genesis)")
    print(f"   Options: {', '.join(definition.payload.options)}")
    print()

    # ================================================================
    # STEP 2: BALLOTS CAST
    # ================================================================
    print("=" * 60)
    print("STEP 2: BALLOTS CAST")
    print("=" * 60)

    for voter, choice in [("alice", "Community garden"), ("bob", "Playground"), ("carol", "Community garden")]:
        ballot = ledger.cast_ballot(voter, "park-2025", choice)
        print(f"[OK] {voter} voted (sequence {ballot.sequence_position}, hash {ballot.entry_hash[:16]}...)")

    try:
        ledger.cast_ballot("alice", "park-2025", "Skate park")
    except AlreadyVoted as e:
        print(f"[REJECTED] alice again: {e.message}")
    print()

    # ================================================================
    # STEP 3: RESULTS
    # ================================================================
    print("=" * 60)
    print("STEP 3: RESULTS")
    print("=" * 60)

    results = ledger.tally("park-2025")
    for option, count in results.results.items():
        print(f"   {option:<18} {count}")
    print(f"   Total votes: {results.total_votes}")
    print()

    # ================================================================
    # STEP 4: CHAIN VERIFICATION
    # ================================================================
    print("=" * 60)
    print("STEP 4: CHAIN VERIFICATION")
    print("=" * 60)

    result = ledger.validate_chain()
    print(f"[{'OK' if result.valid else 'FAIL'}] {result.message} ({result.entry_count} entries)")

    # Simulate someone editing a stored ballot behind the ledger's back
    index = next(
        i for i, entry in enumerate(store.list_all())
        if entry.entry_type == EntryType.BALLOT and entry.payload.voter_id == "bob"
    )
    original = store._entries[index]
    store._entries[index] = original.model_copy(
        update={"payload": original.payload.model_copy(update={"candidate": "Skate park"})}
    )

    result = ledger.validate_chain()
    print(f"[{'OK' if result.valid else 'FAIL'}] After editing bob's ballot: {result.message}")
    print(f"   Reason: {result.reason.value}, offending index: {result.offending_index}")
    print()


if __name__ == "__main__":
    main()
