"""
Election-level Merkle aggregation.

Rebuilds an election's tree from the committed commitments on every request;
only the sealed root is durable. Once a root is sealed, every rebuild is
checked against it, so a commitment added or removed behind the store's back
shows up as TREE_ROOT_MISMATCH instead of a quietly different proof.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from prometheus_client import Counter, Histogram

from vote_integrity.aggregation.merkle import (
    MerkleProof,
    MerkleTree,
    batch_prove,
    build_merkle_tree,
    prove_inclusion,
)
from vote_integrity.hash_generator import verify_vote_hash
from vote_integrity.shared.errors import ElectionNotFoundError, ErrorCode, MerkleTreeError
from vote_integrity.shared.models import Election, VoteType
from vote_integrity.storage.base import VoteStore

logger = logging.getLogger(__name__)

# Prometheus metrics
merkle_builds_total = Counter(
    "vote_integrity_merkle_builds_total",
    "Total number of Merkle trees built"
)
merkle_build_latency = Histogram(
    "vote_integrity_merkle_build_duration_seconds",
    "Time taken to load commitments and build an election tree"
)
proofs_served_total = Counter(
    "vote_integrity_proofs_served_total",
    "Total number of inclusion proofs generated",
    ["outcome"]
)
merkle_errors_total = Counter(
    "vote_integrity_merkle_errors_total",
    "Total number of Merkle aggregation errors",
    ["error_code"]
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CommitmentAggregator:
    """Builds, seals and proves against per-election Merkle trees."""

    def __init__(
        self,
        store: VoteStore,
        secret_key: Union[str, bytes, None] = None,
        max_batch_proofs: int = 100
    ):
        self.store = store
        self.secret_key = secret_key
        self.max_batch_proofs = max_batch_proofs

    async def _get_election(self, election_id: str) -> Election:
        election = await self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFoundError(election_id)
        return election

    async def _build(self, election: Election) -> MerkleTree:
        with merkle_build_latency.time():
            commitments = await self.store.get_commitments(election.id)
            tree = build_merkle_tree(commitments)
        merkle_builds_total.inc()
        logger.debug(f"Built Merkle tree for election {election.id}: {tree.leaf_count} leaves")
        return tree

    async def _checked_tree(self, election: Election) -> MerkleTree:
        tree = await self._build(election)
        if election.merkle_root and tree.root != election.merkle_root:
            merkle_errors_total.labels(error_code=ErrorCode.TREE_ROOT_MISMATCH.value).inc()
            logger.error(
                f"Merkle root mismatch for election {election.id}: "
                f"sealed {election.merkle_root}, rebuilt {tree.root}"
            )
            raise MerkleTreeError(
                ErrorCode.TREE_ROOT_MISMATCH,
                "Stored commitments no longer match the sealed Merkle root"
            )
        return tree

    async def build_tree_for_election(self, election_id: str) -> MerkleTree:
        """
        Build the Merkle tree over every committed vote of an election.

        Raises:
            ElectionNotFoundError: unknown election
            MerkleTreeError: EMPTY_TREE with no votes
        """
        election = await self._get_election(election_id)
        return await self._build(election)

    async def get_tree_info(self, election_id: str) -> Dict[str, Any]:
        """Tree statistics plus the sealed root metadata, if any."""
        election = await self._get_election(election_id)
        tree = await self._build(election)
        info = tree.stats()
        info.update({
            "election_id": election.id,
            "election_name": election.name,
            "sealed": election.merkle_root is not None,
            "sealed_root": election.merkle_root,
            "sealed_at": election.merkle_root_sealed_at.isoformat() if election.merkle_root_sealed_at else None,
            "sealed_vote_count": election.merkle_vote_count,
            "root_matches_sealed": (tree.root == election.merkle_root) if election.merkle_root else None,
        })
        return info

    async def seal_merkle_root(self, election_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Store the election's Merkle root, once, after voting has closed.

        Raises:
            ElectionNotFoundError: unknown election
            MerkleTreeError: TREE_NOT_SEALABLE while voting is still open,
                ROOT_ALREADY_SEALED, or EMPTY_TREE
        """
        now = now or _utcnow()
        election = await self._get_election(election_id)

        if now <= election.end_time:
            raise MerkleTreeError(
                ErrorCode.TREE_NOT_SEALABLE,
                f"Voting is open until {election.end_time.isoformat()}; the root can only be sealed after it closes"
            )

        if election.merkle_root is not None:
            raise MerkleTreeError(
                ErrorCode.ROOT_ALREADY_SEALED,
                "Merkle root already sealed for this election"
            )

        tree = await self._build(election)
        stats = tree.stats()

        sealed = await self.store.seal_merkle_root(
            election_id,
            tree.root,
            tree.leaf_count,
            now,
            {
                "merkle_root": tree.root,
                "vote_count": tree.leaf_count,
                "tree_depth": tree.depth,
                "timestamp": now.isoformat(),
            }
        )
        if not sealed:
            raise MerkleTreeError(
                ErrorCode.ROOT_ALREADY_SEALED,
                "Merkle root already sealed for this election"
            )

        logger.info(f"Sealed Merkle root for election {election_id}: {tree.root} ({tree.leaf_count} votes)")
        return {
            "election_id": election_id,
            "merkle_root": stats["root"],
            "vote_count": stats["leaf_count"],
            "tree_depth": stats["depth"],
            "sealed_at": now.isoformat(),
        }

    async def prove_inclusion(self, election_id: str, commitment: str) -> MerkleProof:
        """
        Inclusion proof for one commitment of an election.

        Raises:
            ElectionNotFoundError: unknown election
            MerkleTreeError: EMPTY_TREE, PROOF_NOT_FOUND, or TREE_ROOT_MISMATCH
                against a sealed root
        """
        election = await self._get_election(election_id)
        tree = await self._checked_tree(election)

        proof = prove_inclusion(tree, commitment)
        if proof is None:
            proofs_served_total.labels(outcome="not_found").inc()
            raise MerkleTreeError(
                ErrorCode.PROOF_NOT_FOUND,
                "Vote hash not found in this election"
            )

        proofs_served_total.labels(outcome="found").inc()
        return proof

    async def batch_prove(self, election_id: str, commitments: List[str]) -> List[Optional[MerkleProof]]:
        """Proofs for several commitments against one tree, None where absent."""
        if len(commitments) > self.max_batch_proofs:
            raise ValueError(f"At most {self.max_batch_proofs} commitments per batch")

        election = await self._get_election(election_id)
        tree = await self._checked_tree(election)
        proofs = batch_prove(tree, commitments)

        found = sum(1 for proof in proofs if proof is not None)
        proofs_served_total.labels(outcome="found").inc(found)
        proofs_served_total.labels(outcome="not_found").inc(len(proofs) - found)
        return proofs

    async def lookup_commitment(self, commitment: str) -> Dict[str, Any]:
        """Public existence check for a vote hash. Never reveals the choice."""
        record = await self.store.find_vote_record(commitment)
        if record is None:
            return {"commitment": commitment, "exists": False, "election_id": None, "ballot_id": None}
        return {
            "commitment": commitment,
            "exists": True,
            "election_id": record.election_id,
            "ballot_id": record.ballot_id,
        }

    async def verify_receipt(
        self,
        commitment: str,
        ballot_id: str,
        candidate_id: Optional[str],
        vote_type: VoteType,
        nonce: str
    ) -> Dict[str, Any]:
        """
        Check a voter's receipt.

        `binds_vote` is True when the commitment is exactly the hash of the
        given content; `recorded` is True when the store holds a vote with
        that commitment on that ballot.
        """
        binds_vote = verify_vote_hash(
            commitment,
            ballot_id,
            candidate_id,
            vote_type,
            nonce,
            self.secret_key
        )
        record = await self.store.find_vote_record(commitment)
        recorded = record is not None and record.ballot_id == ballot_id
        return {
            "commitment": commitment,
            "binds_vote": binds_vote,
            "recorded": recorded,
            "election_id": record.election_id if record else None,
        }
