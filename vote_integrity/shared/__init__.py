"""
Shared models and errors for the vote integrity subsystem.

This package contains common code used across all components:
- Data models (Election, Ballot, VoteRecord, receipts, enums)
- The tagged error taxonomy
"""

from .errors import (
    ErrorCode,
    VoteIntegrityError,
    VoteValidationError,
    ElectionNotFoundError,
    MerkleTreeError,
    ResultsError,
    DatabaseError,
)
from .models import (
    BallotType,
    VoteType,
    BallotShape,
    BALLOT_TYPE_ORDER,
    Election,
    Ballot,
    Candidate,
    EligibleVoter,
    VoteSubmission,
    VoteRecord,
    VoteReceipt,
    CastResult,
    EligibilityResult,
    VoteTally,
    CollegeTurnout,
)

__all__ = [
    'ErrorCode',
    'VoteIntegrityError',
    'VoteValidationError',
    'ElectionNotFoundError',
    'MerkleTreeError',
    'ResultsError',
    'DatabaseError',
    'BallotType',
    'VoteType',
    'BallotShape',
    'BALLOT_TYPE_ORDER',
    'Election',
    'Ballot',
    'Candidate',
    'EligibleVoter',
    'VoteSubmission',
    'VoteRecord',
    'VoteReceipt',
    'CastResult',
    'EligibilityResult',
    'VoteTally',
    'CollegeTurnout',
]
