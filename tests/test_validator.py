"""
Tests for chain validation: tampering, broken links, reordering.
"""

from votechain.core import ChainValidator, FailureReason
from votechain.schemas import GENESIS_HASH

from factories import build_chain, make_ballot, make_definition, make_entry, rehash


class TestChainValidator:

    def test_empty_chain_is_valid(self):
        result = ChainValidator.validate([])
        assert result.valid
        assert result.entry_count == 0

    def test_sequential_chain_is_valid(self):
        entries = build_chain(5)
        result = ChainValidator.validate(entries)
        assert result.valid
        assert result.entry_count == 5
        assert result.reason is None

    def test_first_entry_links_to_genesis(self):
        entries = build_chain(2)
        assert entries[0].previous_hash == GENESIS_HASH
        assert entries[1].previous_hash == entries[0].entry_hash

    def test_tampered_payload_reports_hash_mismatch(self):
        """Editing content without recomputing the hash is caught at that index."""
        entries = build_chain(4)
        entries[2] = entries[2].model_copy(update={"payload": make_ballot(voter_id="u2", candidate="B")})

        result = ChainValidator.validate(entries)
        assert not result.valid
        assert result.reason == FailureReason.HASH_MISMATCH
        assert result.offending_index == 2

    def test_tampered_genesis_entry(self):
        entries = build_chain(3)
        entries[0] = entries[0].model_copy(
            update={"payload": make_definition(options=("A", "B", "C"))}
        )

        result = ChainValidator.validate(entries)
        assert result.reason == FailureReason.HASH_MISMATCH
        assert result.offending_index == 0

    def test_rehashed_forgery_reports_broken_linkage(self):
        """A forger who recomputes one hash breaks the next entry's link."""
        entries = build_chain(4)
        entries[1] = rehash(entries[1], payload=make_ballot(voter_id="u1", candidate="B"))

        result = ChainValidator.validate(entries)
        assert not result.valid
        assert result.reason == FailureReason.BROKEN_LINKAGE
        assert result.offending_index == 2

    def test_unrelated_previous_hash_reports_broken_linkage(self):
        entries = build_chain(4)
        entries[3] = rehash(entries[3], previous_hash="f" * 64)

        result = ChainValidator.validate(entries)
        assert result.reason == FailureReason.BROKEN_LINKAGE
        assert result.offending_index == 3

    def test_broken_link_without_rehash_is_hash_mismatch(self):
        """Changing previous_hash alone also changes the hashed content."""
        entries = build_chain(3)
        entries[1] = entries[1].model_copy(update={"previous_hash": "f" * 64})

        result = ChainValidator.validate(entries)
        assert result.reason == FailureReason.HASH_MISMATCH
        assert result.offending_index == 1

    def test_bad_genesis_link(self):
        entry = make_entry(make_definition(), previous_hash="1" * 64)

        result = ChainValidator.validate([entry])
        assert not result.valid
        assert result.reason == FailureReason.BAD_GENESIS_LINK
        assert result.offending_index == 0

    def test_removed_entry_detected(self):
        entries = build_chain(5)
        del entries[2]

        result = ChainValidator.validate(entries)
        assert result.reason == FailureReason.BROKEN_LINKAGE
        assert result.offending_index == 2

    def test_sequence_must_increase(self):
        entries = build_chain(2)
        entries[1] = rehash(entries[1], sequence_position=entries[0].sequence_position)

        result = ChainValidator.validate(entries)
        assert result.reason == FailureReason.SEQUENCE_ORDER
        assert result.offending_index == 1

    def test_sequence_gaps_allowed(self):
        first = make_entry(make_definition())
        second = make_entry(make_ballot(), previous=first, sequence=5)
        assert ChainValidator.validate([first, second]).valid

    def test_result_to_dict(self):
        entries = build_chain(3)
        entries[1] = entries[1].model_copy(update={"payload": make_ballot(candidate="B")})

        data = ChainValidator.validate(entries).to_dict()
        assert data["valid"] is False
        assert data["reason"] == "HASH_MISMATCH"
        assert data["offending_index"] == 1
        assert data["entry_count"] == 3
