"""Merkle aggregation of vote commitments."""

from .merkle import (
    MerkleTree,
    MerkleProof,
    BatchVerification,
    hash_leaf,
    hash_pair,
    build_merkle_tree,
    prove_inclusion,
    verify_proof,
    batch_prove,
    batch_verify,
)
from .aggregator import CommitmentAggregator

__all__ = [
    'MerkleTree',
    'MerkleProof',
    'BatchVerification',
    'hash_leaf',
    'hash_pair',
    'build_merkle_tree',
    'prove_inclusion',
    'verify_proof',
    'batch_prove',
    'batch_verify',
    'CommitmentAggregator',
]
