"""
Merkle tree over vote commitments.

Provides tree construction, inclusion proofs and proof verification for an
election's commitments.

Leaves are sha256(commitment) so a raw commitment is never a node value.
Leaves are de-duplicated and sorted before building, and every pair is
sorted before hashing, so:
- the same commitment set yields the same root whatever order the store
  returns it in;
- a proof is just the list of sibling hashes, with no left/right flags.
An odd node at the end of a level is promoted to the next level unchanged.
"""

import hashlib
import hmac
import json
from dataclasses import dataclass, asdict, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

from vote_integrity.shared.errors import ErrorCode, MerkleTreeError


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash_leaf(commitment: str) -> bytes:
    """Leaf hash for a commitment."""
    return sha256(commitment.encode("utf-8"))


def hash_pair(left: bytes, right: bytes) -> bytes:
    """Hash two sibling nodes, smaller first."""
    if right < left:
        left, right = right, left
    return sha256(left + right)


@dataclass
class MerkleProof:
    """
    Inclusion proof for one commitment.

    Attributes:
        leaf: The commitment being proven (not its leaf hash)
        proof: Sibling hashes from the leaf level up to just below the root
        root: Merkle root the proof resolves to
    """
    leaf: str
    proof: List[str]
    root: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)

    def to_json(self) -> str:
        """Convert to JSON string for storage or transmission."""
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'MerkleProof':
        """Create MerkleProof from dictionary."""
        return cls(leaf=data["leaf"], proof=list(data["proof"]), root=data["root"])

    @classmethod
    def from_json(cls, json_str: str) -> 'MerkleProof':
        """Create MerkleProof from JSON string."""
        return cls.from_dict(json.loads(json_str))


@dataclass
class BatchVerification:
    """Outcome of verifying several proofs independently."""
    total: int
    verified: int
    failed: int
    results: List[Tuple[MerkleProof, bool]] = field(default_factory=list)


class MerkleTree:
    """
    Binary Merkle tree with every layer kept, so proofs are O(log n).

    Raises MerkleTreeError(EMPTY_TREE) when built from no commitments.
    """

    def __init__(self, commitments: Iterable[str]):
        leaves = sorted({hash_leaf(commitment) for commitment in commitments})
        if not leaves:
            raise MerkleTreeError(
                ErrorCode.EMPTY_TREE,
                "Cannot build a Merkle tree with no vote commitments"
            )

        self.layers: List[List[bytes]] = self._build_layers(leaves)
        self._index: Dict[bytes, int] = {leaf: i for i, leaf in enumerate(leaves)}

    @staticmethod
    def _build_layers(leaves: List[bytes]) -> List[List[bytes]]:
        layers = [leaves]
        current_level = leaves

        while len(current_level) > 1:
            next_level = []
            for i in range(0, len(current_level), 2):
                if i + 1 < len(current_level):
                    next_level.append(hash_pair(current_level[i], current_level[i + 1]))
                else:
                    next_level.append(current_level[i])
            layers.append(next_level)
            current_level = next_level

        return layers

    @property
    def root(self) -> str:
        """Return the root hash of the tree as hex."""
        return self.layers[-1][0].hex()

    @property
    def leaf_count(self) -> int:
        return len(self.layers[0])

    @property
    def depth(self) -> int:
        return len(self.layers) - 1

    def contains(self, commitment: str) -> bool:
        return hash_leaf(commitment) in self._index

    def _path(self, index: int) -> List[bytes]:
        path = []
        for level in self.layers[:-1]:
            sibling_index = index ^ 1
            if sibling_index < len(level):
                path.append(level[sibling_index])
            index //= 2
        return path

    def get_proof(self, commitment: str) -> Optional[MerkleProof]:
        """
        Get an inclusion proof for a commitment.

        Returns:
            MerkleProof, or None if the commitment is not a leaf. A one-leaf
            tree yields a proof with an empty path.
        """
        index = self._index.get(hash_leaf(commitment))
        # Absent commitments walk a real path too, so misses are not early returns.
        path = self._path(index if index is not None else 0)
        if index is None:
            return None
        return MerkleProof(
            leaf=commitment,
            proof=[node.hex() for node in path],
            root=self.root
        )

    def stats(self) -> Dict[str, Any]:
        """Statistics about the tree."""
        return {
            "root": self.root,
            "depth": self.depth,
            "leaf_count": self.leaf_count,
            "layers": len(self.layers),
        }


def build_merkle_tree(commitments: Iterable[str]) -> MerkleTree:
    """Build a Merkle tree from an election's commitments."""
    return MerkleTree(commitments)


def prove_inclusion(tree: MerkleTree, commitment: str) -> Optional[MerkleProof]:
    """Inclusion proof for `commitment`, or None when it is not in the tree."""
    return tree.get_proof(commitment)


def verify_proof(proof: MerkleProof, expected_root: Optional[str] = None) -> bool:
    """
    Verify a Merkle inclusion proof.

    Needs nothing but the proof itself. When `expected_root` is given, the
    proof must also resolve to that root, which is how a stale proof is
    caught against a newer tree.

    Returns:
        True if the proof is valid; malformed input is False, never an error.
    """
    try:
        current = hash_leaf(proof.leaf)
        siblings = [bytes.fromhex(node) for node in proof.proof]
        root = bytes.fromhex(proof.root)
        expected = bytes.fromhex(expected_root) if expected_root is not None else root
    except (AttributeError, TypeError, ValueError):
        return False

    for sibling in siblings:
        current = hash_pair(current, sibling)

    root_matches = hmac.compare_digest(current, root)
    expected_matches = hmac.compare_digest(root, expected)
    return root_matches and expected_matches


def batch_prove(tree: MerkleTree, commitments: Iterable[str]) -> List[Optional[MerkleProof]]:
    """Proofs for several commitments, None where a commitment is absent."""
    return [tree.get_proof(commitment) for commitment in commitments]


def batch_verify(proofs: Iterable[MerkleProof]) -> BatchVerification:
    """Verify several proofs, each independently."""
    results = [(proof, verify_proof(proof)) for proof in proofs]
    verified = sum(1 for _, valid in results if valid)
    return BatchVerification(
        total=len(results),
        verified=verified,
        failed=len(results) - verified,
        results=results
    )
