"""Unit tests for the Merkle tree builder and proof functions."""

import hashlib
import random

import pytest

from vote_integrity.aggregation import (
    MerkleProof,
    batch_prove,
    batch_verify,
    build_merkle_tree,
    hash_leaf,
    hash_pair,
    prove_inclusion,
    verify_proof,
)
from vote_integrity.shared.errors import ErrorCode, MerkleTreeError


def commitment(i: int) -> str:
    return hashlib.sha256(f"vote-{i}".encode()).hexdigest()


COMMITMENTS = [commitment(i) for i in range(7)]


class TestBuildMerkleTree:

    def test_empty_input_rejected(self):
        with pytest.raises(MerkleTreeError) as exc_info:
            build_merkle_tree([])
        assert exc_info.value.code == ErrorCode.EMPTY_TREE

    def test_single_leaf_root_is_leaf_hash(self):
        tree = build_merkle_tree([COMMITMENTS[0]])

        assert tree.root == hash_leaf(COMMITMENTS[0]).hex()
        assert tree.depth == 0
        assert tree.leaf_count == 1

    def test_odd_node_is_promoted(self):
        tree = build_merkle_tree(COMMITMENTS[:3])
        a, b, c = sorted(hash_leaf(x) for x in COMMITMENTS[:3])

        assert tree.root == hash_pair(hash_pair(a, b), c).hex()
        assert tree.depth == 2

    def test_order_independent(self):
        shuffled = COMMITMENTS[:]
        random.Random(7).shuffle(shuffled)

        assert build_merkle_tree(COMMITMENTS).root == build_merkle_tree(shuffled).root
        assert build_merkle_tree(COMMITMENTS).root == build_merkle_tree(reversed(COMMITMENTS)).root

    def test_duplicates_collapse(self):
        tree = build_merkle_tree(COMMITMENTS[:2] + COMMITMENTS[:2])

        assert tree.leaf_count == 2
        assert tree.root == build_merkle_tree(COMMITMENTS[:2]).root

    def test_changed_character_changes_root(self):
        tampered = COMMITMENTS[:]
        tampered[3] = ("0" if tampered[3][0] != "0" else "1") + tampered[3][1:]

        assert build_merkle_tree(COMMITMENTS).root != build_merkle_tree(tampered).root

    def test_stats(self):
        stats = build_merkle_tree(COMMITMENTS).stats()

        assert stats["leaf_count"] == 7
        assert stats["depth"] == 3
        assert stats["layers"] == 4
        assert len(stats["root"]) == 64


class TestProofs:

    @pytest.mark.parametrize("size", [1, 2, 3, 4, 5, 7])
    def test_every_member_proves_and_verifies(self, size):
        tree = build_merkle_tree(COMMITMENTS[:size])

        for value in COMMITMENTS[:size]:
            proof = prove_inclusion(tree, value)
            assert proof is not None
            assert proof.root == tree.root
            assert len(proof.proof) <= tree.depth
            assert verify_proof(proof)
            assert verify_proof(proof, expected_root=tree.root)

    def test_single_leaf_proof_has_empty_path(self):
        tree = build_merkle_tree([COMMITMENTS[0]])
        proof = prove_inclusion(tree, COMMITMENTS[0])

        assert proof is not None
        assert proof.proof == []
        assert verify_proof(proof)

    def test_non_member_returns_none(self):
        tree = build_merkle_tree(COMMITMENTS[:4])

        assert prove_inclusion(tree, COMMITMENTS[5]) is None
        assert not tree.contains(COMMITMENTS[5])

    def test_stale_proof_fails_against_newer_root(self):
        old_tree = build_merkle_tree(COMMITMENTS[:2])
        new_tree = build_merkle_tree(COMMITMENTS[:3])
        proof = prove_inclusion(old_tree, COMMITMENTS[0])

        assert verify_proof(proof)
        assert not verify_proof(proof, expected_root=new_tree.root)

    def test_tampered_proof_fails(self):
        tree = build_merkle_tree(COMMITMENTS)
        proof = prove_inclusion(tree, COMMITMENTS[2])

        forged_leaf = MerkleProof(leaf=COMMITMENTS[6][::-1], proof=proof.proof, root=proof.root)
        first = proof.proof[0]
        flipped = ("f" if first[0] != "f" else "e") + first[1:]
        forged_path = MerkleProof(leaf=proof.leaf, proof=[flipped] + proof.proof[1:], root=proof.root)

        assert not verify_proof(forged_leaf)
        assert not verify_proof(forged_path)

    @pytest.mark.parametrize("proof", [
        MerkleProof(leaf="abc", proof=["not-hex"], root="00" * 32),
        MerkleProof(leaf="abc", proof=[], root="zz"),
        MerkleProof(leaf=None, proof=[], root="00" * 32),
        MerkleProof(leaf="abc", proof=None, root="00" * 32),
    ])
    def test_malformed_proof_is_false(self, proof):
        assert verify_proof(proof) is False

    def test_malformed_expected_root_is_false(self):
        tree = build_merkle_tree(COMMITMENTS[:2])

        assert not verify_proof(prove_inclusion(tree, COMMITMENTS[0]), expected_root="xyz")

    def test_json_form(self):
        tree = build_merkle_tree(COMMITMENTS[:5])
        proof = prove_inclusion(tree, COMMITMENTS[4])

        restored = MerkleProof.from_json(proof.to_json())

        assert proof.to_dict() == {"leaf": proof.leaf, "proof": proof.proof, "root": proof.root}
        assert restored == proof
        assert verify_proof(restored)


class TestBatch:

    def test_batch_prove_keeps_positions(self):
        tree = build_merkle_tree(COMMITMENTS[:4])
        requested = [COMMITMENTS[1], COMMITMENTS[6], COMMITMENTS[3]]

        proofs = batch_prove(tree, requested)

        assert [p.leaf if p else None for p in proofs] == [COMMITMENTS[1], None, COMMITMENTS[3]]

    def test_batch_verify_reports_each_item(self):
        tree = build_merkle_tree(COMMITMENTS)
        good = [prove_inclusion(tree, c) for c in COMMITMENTS[:3]]
        bad = MerkleProof(leaf=commitment(99), proof=good[0].proof, root=tree.root)

        outcome = batch_verify(good + [bad])

        assert outcome.total == 4
        assert outcome.verified == 3
        assert outcome.failed == 1
        assert [valid for _, valid in outcome.results] == [True, True, True, False]
