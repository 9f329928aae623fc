"""Integration tests for election-level Merkle aggregation."""

from datetime import timedelta

import pytest

from vote_integrity.aggregation import verify_proof
from vote_integrity.hash_generator import generate_nonce, generate_vote_hash
from vote_integrity.shared.errors import ElectionNotFoundError, ErrorCode, MerkleTreeError
from vote_integrity.shared.models import VoteRecord, VoteSubmission, VoteType


async def cast_referendum(caster, seeded, choices):
    """Cast one referendum vote per (voter email, vote type); returns receipts by email."""
    ballot_id = seeded.ballots["building"].id
    receipts = {}
    for email, vote_type in choices.items():
        result = await caster.cast_votes(email, seeded.election.id, [VoteSubmission(ballot_id, vote_type)])
        receipts[email] = result.receipts[0]
    return receipts


@pytest.mark.asyncio
class TestBuildTree:

    async def test_unknown_election(self, aggregator):
        with pytest.raises(ElectionNotFoundError) as exc_info:
            await aggregator.build_tree_for_election("missing")
        assert exc_info.value.code == ErrorCode.ELECTION_NOT_FOUND

    async def test_election_without_votes(self, aggregator, referendum_election):
        with pytest.raises(MerkleTreeError) as exc_info:
            await aggregator.build_tree_for_election(referendum_election.election.id)
        assert exc_info.value.code == ErrorCode.EMPTY_TREE

    async def test_tree_covers_committed_votes_only(self, aggregator, caster, referendum_election):
        receipts = await cast_referendum(caster, referendum_election, {
            "a@uni.edu": VoteType.YES,
            "b@uni.edu": VoteType.YES,
        })

        tree = await aggregator.build_tree_for_election(referendum_election.election.id)

        assert tree.leaf_count == 2
        assert all(tree.contains(r.commitment) for r in receipts.values())

    async def test_tree_info_before_seal(self, aggregator, caster, referendum_election):
        await cast_referendum(caster, referendum_election, {"a@uni.edu": VoteType.NO})

        info = await aggregator.get_tree_info(referendum_election.election.id)

        assert info["leaf_count"] == 1
        assert info["depth"] == 0
        assert info["sealed"] is False
        assert info["sealed_root"] is None
        assert info["root_matches_sealed"] is None


@pytest.mark.asyncio
class TestSealMerkleRoot:
    """Root sealing: after the window closes, exactly once."""

    async def test_seal_while_open_rejected(self, aggregator, caster, referendum_election):
        await cast_referendum(caster, referendum_election, {"a@uni.edu": VoteType.YES})

        with pytest.raises(MerkleTreeError) as exc_info:
            await aggregator.seal_merkle_root(referendum_election.election.id)
        assert exc_info.value.code == ErrorCode.TREE_NOT_SEALABLE

    async def test_seal_at_end_time_rejected(self, aggregator, caster, referendum_election):
        """Voting is still allowed at end_time, so sealing is not."""
        await cast_referendum(caster, referendum_election, {"a@uni.edu": VoteType.YES})

        with pytest.raises(MerkleTreeError) as exc_info:
            await aggregator.seal_merkle_root(
                referendum_election.election.id,
                now=referendum_election.election.end_time
            )
        assert exc_info.value.code == ErrorCode.TREE_NOT_SEALABLE

    async def test_seal_after_close_then_once_only(self, aggregator, caster, store, referendum_election):
        """Test: Seal after close and refuse a second seal.

        Flow:
        1. Two votes cast while open
        2. Seal one second after end_time
        3. Verify root stored on the election with vote count
        4. Second seal is ROOT_ALREADY_SEALED
        """
        election = referendum_election.election
        await cast_referendum(caster, referendum_election, {
            "a@uni.edu": VoteType.YES,
            "b@uni.edu": VoteType.NO,
        })
        after_close = election.end_time + timedelta(seconds=1)

        sealed = await aggregator.seal_merkle_root(election.id, now=after_close)

        tree = await aggregator.build_tree_for_election(election.id)
        assert sealed["merkle_root"] == tree.root
        assert sealed["vote_count"] == 2
        stored = await store.get_election(election.id)
        assert stored.merkle_root == tree.root
        assert stored.merkle_vote_count == 2
        assert stored.merkle_root_sealed_at == after_close

        with pytest.raises(MerkleTreeError) as exc_info:
            await aggregator.seal_merkle_root(election.id, now=after_close + timedelta(hours=1))
        assert exc_info.value.code == ErrorCode.ROOT_ALREADY_SEALED

    async def test_store_seal_is_compare_and_set(self, store, referendum_election):
        election = referendum_election.election
        when = election.end_time + timedelta(seconds=1)

        first = await store.seal_merkle_root(election.id, "aa" * 32, 1, when, {})
        second = await store.seal_merkle_root(election.id, "bb" * 32, 1, when, {})

        assert first is True
        assert second is False
        assert (await store.get_election(election.id)).merkle_root == "aa" * 32

    async def test_seal_empty_election(self, aggregator, referendum_election):
        election = referendum_election.election

        with pytest.raises(MerkleTreeError) as exc_info:
            await aggregator.seal_merkle_root(election.id, now=election.end_time + timedelta(seconds=1))
        assert exc_info.value.code == ErrorCode.EMPTY_TREE


@pytest.mark.asyncio
class TestProveInclusion:

    async def test_proof_verifies_against_sealed_root(self, aggregator, caster, referendum_election):
        election = referendum_election.election
        receipts = await cast_referendum(caster, referendum_election, {
            "a@uni.edu": VoteType.YES,
            "b@uni.edu": VoteType.NO,
            "c@uni.edu": VoteType.ABSTAIN,
        })
        sealed = await aggregator.seal_merkle_root(election.id, now=election.end_time + timedelta(seconds=1))

        for receipt in receipts.values():
            proof = await aggregator.prove_inclusion(election.id, receipt.commitment)
            assert verify_proof(proof, expected_root=sealed["merkle_root"])

    async def test_commitment_from_other_election_not_found(
        self, aggregator, caster, store, referendum_election, election_builders
    ):
        other = await election_builders["referendum"](store)
        receipts = await cast_referendum(caster, other, {"a@uni.edu": VoteType.YES})
        await cast_referendum(caster, referendum_election, {"a@uni.edu": VoteType.NO})

        with pytest.raises(MerkleTreeError) as exc_info:
            await aggregator.prove_inclusion(referendum_election.election.id, receipts["a@uni.edu"].commitment)
        assert exc_info.value.code == ErrorCode.PROOF_NOT_FOUND

    async def test_rebuilt_tree_must_match_sealed_root(self, aggregator, caster, store, referendum_election):
        """Test: A vote slipped in after sealing is detected.

        Flow:
        1. Cast and seal
        2. Write an extra record straight through the store
        3. Proof requests fail with TREE_ROOT_MISMATCH
        """
        election = referendum_election.election
        ballot_id = referendum_election.ballots["building"].id
        receipts = await cast_referendum(caster, referendum_election, {"a@uni.edu": VoteType.YES})
        await aggregator.seal_merkle_root(election.id, now=election.end_time + timedelta(seconds=1))

        late_voter = referendum_election.voters["b"]
        forged = generate_vote_hash(ballot_id, None, VoteType.NO, generate_nonce(), "x" * 32)
        await store.record_cast(
            late_voter,
            [VoteRecord(election.id, ballot_id, None, VoteType.NO, forged)],
            election.end_time + timedelta(minutes=5)
        )

        with pytest.raises(MerkleTreeError) as exc_info:
            await aggregator.prove_inclusion(election.id, receipts["a@uni.edu"].commitment)
        assert exc_info.value.code == ErrorCode.TREE_ROOT_MISMATCH

        info = await aggregator.get_tree_info(election.id)
        assert info["root_matches_sealed"] is False

    async def test_batch_prove(self, aggregator, caster, referendum_election):
        receipts = await cast_referendum(caster, referendum_election, {
            "a@uni.edu": VoteType.YES,
            "b@uni.edu": VoteType.NO,
        })
        requested = [receipts["a@uni.edu"].commitment, "0" * 64, receipts["b@uni.edu"].commitment]

        proofs = await aggregator.batch_prove(referendum_election.election.id, requested)

        assert proofs[1] is None
        assert proofs[0].leaf == requested[0]
        assert proofs[2].leaf == requested[2]
        assert all(verify_proof(p) for p in proofs if p is not None)

    async def test_batch_prove_size_limit(self, aggregator, caster, referendum_election):
        await cast_referendum(caster, referendum_election, {"a@uni.edu": VoteType.YES})

        with pytest.raises(ValueError):
            await aggregator.batch_prove(referendum_election.election.id, ["0" * 64] * 6)


@pytest.mark.asyncio
class TestReceipts:

    async def test_lookup_commitment(self, aggregator, caster, referendum_election):
        receipts = await cast_referendum(caster, referendum_election, {"a@uni.edu": VoteType.YES})
        commitment = receipts["a@uni.edu"].commitment

        found = await aggregator.lookup_commitment(commitment)
        missing = await aggregator.lookup_commitment("0" * 64)

        assert found["exists"]
        assert found["election_id"] == referendum_election.election.id
        assert found["ballot_id"] == referendum_election.ballots["building"].id
        assert not missing["exists"]

    async def test_verify_receipt(self, aggregator, caster, referendum_election):
        receipt = (await cast_referendum(caster, referendum_election, {"a@uni.edu": VoteType.YES}))["a@uni.edu"]

        honest = await aggregator.verify_receipt(
            receipt.commitment, receipt.ballot_id, None, VoteType.YES, receipt.nonce
        )
        wrong_choice = await aggregator.verify_receipt(
            receipt.commitment, receipt.ballot_id, None, VoteType.NO, receipt.nonce
        )

        assert honest["binds_vote"] and honest["recorded"]
        assert honest["election_id"] == referendum_election.election.id
        assert not wrong_choice["binds_vote"]
        assert wrong_choice["recorded"]
