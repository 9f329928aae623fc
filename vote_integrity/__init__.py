"""Vote integrity subsystem: commitments, ballot validation and Merkle inclusion proofs."""

__version__ = '1.0.0'
