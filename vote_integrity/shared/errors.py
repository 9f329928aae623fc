"""Error taxonomy for the vote integrity subsystem."""

from enum import Enum


class ErrorCode(str, Enum):
    """Tags carried by every rejection."""

    # Eligibility
    NOT_ELIGIBLE = "NOT_ELIGIBLE"
    ALREADY_VOTED = "ALREADY_VOTED"
    ELECTION_NOT_ACTIVE = "ELECTION_NOT_ACTIVE"
    ELECTION_NOT_STARTED = "ELECTION_NOT_STARTED"
    ELECTION_ENDED = "ELECTION_ENDED"

    # Ballot shape
    NO_VOTES = "NO_VOTES"
    DUPLICATE_BALLOT = "DUPLICATE_BALLOT"
    BALLOT_NOT_FOUND = "BALLOT_NOT_FOUND"
    CANDIDATE_NOT_FOUND = "CANDIDATE_NOT_FOUND"
    INVALID_COLLEGE = "INVALID_COLLEGE"
    INVALID_VOTE_TYPE = "INVALID_VOTE_TYPE"
    CANDIDATE_REQUIRED = "CANDIDATE_REQUIRED"
    CANDIDATE_NOT_ALLOWED = "CANDIDATE_NOT_ALLOWED"

    # Lookups shared by every service
    ELECTION_NOT_FOUND = "ELECTION_NOT_FOUND"

    # Merkle tree
    EMPTY_TREE = "EMPTY_TREE"
    PROOF_NOT_FOUND = "PROOF_NOT_FOUND"
    TREE_NOT_SEALABLE = "TREE_NOT_SEALABLE"
    ROOT_ALREADY_SEALED = "ROOT_ALREADY_SEALED"
    TREE_ROOT_MISMATCH = "TREE_ROOT_MISMATCH"

    # Results
    RESULTS_NOT_SEALED = "RESULTS_NOT_SEALED"


class VoteIntegrityError(Exception):
    """Base class for tagged, per-request failures."""

    def __init__(self, code: ErrorCode, message: str):
        super().__init__(message)
        self.code = code
        self.message = message

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.code.value}: {self.message})"


class VoteValidationError(VoteIntegrityError):
    """Raised when a voter or a vote set fails eligibility or ballot rules."""


class ElectionNotFoundError(VoteIntegrityError):
    """Raised when an election id does not exist."""

    def __init__(self, election_id: str):
        super().__init__(ErrorCode.ELECTION_NOT_FOUND, f"Election {election_id} not found")
        self.election_id = election_id


class MerkleTreeError(VoteIntegrityError):
    """Raised for tree construction and proof lookup failures."""


class ResultsError(VoteIntegrityError):
    """Raised when election results cannot be released."""


class DatabaseError(Exception):
    """Custom exception for database errors."""
    pass
