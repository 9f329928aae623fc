"""Vote commitment generation and verification."""

from .generator import (
    generate_nonce,
    generate_vote_hash,
    verify_vote_hash,
    encode_vote_content,
    COMMITMENT_HEX_LENGTH,
    MIN_KEY_BYTES,
)

__all__ = [
    'generate_nonce',
    'generate_vote_hash',
    'verify_vote_hash',
    'encode_vote_content',
    'COMMITMENT_HEX_LENGTH',
    'MIN_KEY_BYTES',
]
