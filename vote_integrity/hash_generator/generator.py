#!/usr/bin/env python3
"""
Vote commitment generator.

A commitment is HMAC-SHA256 over a canonical encoding of
(ballot_id, candidate_id, vote_type, nonce). The key never leaves the server,
so a commitment cannot be fabricated for a vote that was never cast, and the
per-vote nonce keeps two identical choices from producing equal hashes.
"""

import argparse
import hashlib
import hmac
import os
import secrets
import struct
import sys
from typing import Optional, Union

from vote_integrity.shared.models import VoteType

MIN_KEY_BYTES = 32
NONCE_BYTES = 32
COMMITMENT_HEX_LENGTH = 64

DOMAIN_TAG = b"vote-commitment:v1"
_ABSENT = b"\x00"
_PRESENT = b"\x01"


def generate_nonce() -> str:
    """Generate a fresh 32-byte nonce, hex encoded"""
    return secrets.token_hex(NONCE_BYTES)


def _length_prefixed(value: str) -> bytes:
    data = value.encode("utf-8")
    return struct.pack(">I", len(data)) + data


def encode_vote_content(
    ballot_id: str,
    candidate_id: Optional[str],
    vote_type: VoteType,
    nonce: str
) -> bytes:
    """
    Canonical byte encoding of one vote.

    Fields are written in a fixed order, each length-prefixed. A null
    candidate is a single absent marker, so `None` and `""` never collide.
    """
    if not isinstance(vote_type, VoteType):
        raise ValueError(f"Unknown vote type: {vote_type!r}")

    parts = [DOMAIN_TAG, _length_prefixed(ballot_id)]
    if candidate_id is None:
        parts.append(_ABSENT)
    else:
        parts.append(_PRESENT + _length_prefixed(candidate_id))
    parts.append(_length_prefixed(vote_type.value))
    parts.append(_length_prefixed(nonce))
    return b"".join(parts)


def _coerce_key(secret_key: Union[str, bytes, None]) -> bytes:
    if secret_key is None:
        raise ValueError("A vote hash secret is required to generate commitments")
    key = secret_key.encode("utf-8") if isinstance(secret_key, str) else bytes(secret_key)
    if len(key) < MIN_KEY_BYTES:
        raise ValueError(f"Vote hash secret must be at least {MIN_KEY_BYTES} bytes")
    return key


def generate_vote_hash(
    ballot_id: str,
    candidate_id: Optional[str],
    vote_type: VoteType,
    nonce: str,
    secret_key: Union[str, bytes]
) -> str:
    """
    Generate the commitment for one cast vote.

    Args:
        ballot_id: Ballot the vote was cast on
        candidate_id: Chosen candidate, or None for referendums and abstentions
        vote_type: Validated vote type
        nonce: Fresh nonce from generate_nonce()
        secret_key: Server-side HMAC key (at least 32 bytes)

    Returns:
        str: 64-character hexadecimal commitment
    """
    key = _coerce_key(secret_key)
    payload = encode_vote_content(ballot_id, candidate_id, vote_type, nonce)
    return hmac.new(key, payload, hashlib.sha256).hexdigest()


def verify_vote_hash(
    commitment: str,
    ballot_id: str,
    candidate_id: Optional[str],
    vote_type: VoteType,
    nonce: str,
    secret_key: Union[str, bytes]
) -> bool:
    """
    Check that a commitment binds the given vote content.

    Comparison is constant time; a malformed commitment is simply False.
    """
    expected = generate_vote_hash(ballot_id, candidate_id, vote_type, nonce, secret_key)
    if not isinstance(commitment, str) or len(commitment) != COMMITMENT_HEX_LENGTH:
        return False
    return hmac.compare_digest(expected, commitment.lower())


def main(argv=None):
    """Recompute a commitment from receipt fields"""
    parser = argparse.ArgumentParser(
        description='Recompute a vote commitment from receipt fields',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Referendum vote
  VOTE_HASH_SECRET=... python -m vote_integrity.hash_generator.generator \\
      --ballot-id b1 --vote-type YES --nonce 3f2a...

  # Candidate vote, checked against a receipt
  python -m vote_integrity.hash_generator.generator --ballot-id b2 \\
      --candidate-id c7 --vote-type CANDIDATE --nonce 91be... --expect 5d0c...
        """
    )

    parser.add_argument('--ballot-id', type=str, required=True, help='Ballot identifier')
    parser.add_argument('--candidate-id', type=str, default=None, help='Candidate identifier (omit for referendums and abstentions)')
    parser.add_argument(
        '--vote-type',
        type=str,
        required=True,
        choices=[vote_type.value for vote_type in VoteType],
        help='Vote type'
    )
    parser.add_argument('--nonce', type=str, required=True, help='Nonce from the voting receipt')
    parser.add_argument('--expect', type=str, default=None, help='Commitment from the receipt to compare against')
    parser.add_argument(
        '--secret',
        type=str,
        default=os.getenv('VOTE_HASH_SECRET'),
        help='HMAC secret (default: $VOTE_HASH_SECRET)'
    )

    args = parser.parse_args(argv)

    if not args.secret:
        parser.error("A secret is required (--secret or VOTE_HASH_SECRET)")

    try:
        commitment = generate_vote_hash(
            ballot_id=args.ballot_id,
            candidate_id=args.candidate_id,
            vote_type=VoteType(args.vote_type),
            nonce=args.nonce,
            secret_key=args.secret
        )
    except ValueError as e:
        parser.error(str(e))

    print(commitment)

    if args.expect is not None:
        matches = hmac.compare_digest(commitment, args.expect.lower())
        print("MATCH" if matches else "MISMATCH")
        return 0 if matches else 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
