"""
Shared data models for the vote integrity subsystem.

This module contains:
- Enums for ballot types, vote types and ballot shapes
- Record types handed between the store, the validator and the orchestrator
- Receipt and cast result structures returned to voters
- Aggregate counts read back for results tallying
"""

from dataclasses import dataclass, asdict, field
from datetime import datetime
from enum import Enum
from typing import Optional, Dict, Any, List


class BallotType(str, Enum):
    """Ballot categories. Declaration order is the display order."""
    EXECUTIVE = "EXECUTIVE"
    DIRECTOR = "DIRECTOR"
    REFERENDUM = "REFERENDUM"


class VoteType(str, Enum):
    """Kinds of vote a voter can cast on a ballot."""
    CANDIDATE = "CANDIDATE"
    APPROVE = "APPROVE"
    OPPOSE = "OPPOSE"
    ABSTAIN = "ABSTAIN"
    YES = "YES"
    NO = "NO"


class BallotShape(str, Enum):
    """Shape of a ballot as far as the vote rules are concerned."""
    REFERENDUM = "referendum"
    SINGLE_CANDIDATE = "single_candidate"
    MULTI_CANDIDATE = "multi_candidate"


BALLOT_TYPE_ORDER = {ballot_type: index for index, ballot_type in enumerate(BallotType)}


@dataclass
class Election:
    """
    An election and its voting window.

    Attributes:
        id: Election identifier
        name: Display name
        start_time: When voting opens (timezone-aware)
        end_time: When voting closes (timezone-aware)
        is_active: Administrative on/off switch
        quorum: Participation threshold per ballot type (fraction of voters)
        merkle_root: Sealed Merkle root, once the election is closed
        merkle_root_sealed_at: When the root was sealed
        merkle_vote_count: Number of commitments covered by the sealed root
    """
    id: str
    name: str
    start_time: datetime
    end_time: datetime
    is_active: bool = True
    quorum: Dict[BallotType, float] = field(default_factory=dict)
    merkle_root: Optional[str] = None
    merkle_root_sealed_at: Optional[datetime] = None
    merkle_vote_count: Optional[int] = None

    def __post_init__(self):
        if self.start_time >= self.end_time:
            raise ValueError("Election start_time must be before end_time")


@dataclass
class Candidate:
    id: str
    ballot_id: str
    name: str
    statement: Optional[str] = None
    position: int = 0


@dataclass
class Ballot:
    """
    A ballot within an election.

    DIRECTOR ballots are restricted to voters of `college`. Referendum ballots
    usually have no candidates and carry a `question` instead.
    """
    id: str
    election_id: str
    title: str
    type: BallotType
    college: Optional[str] = None
    question: Optional[str] = None
    position: int = 0
    created_at: Optional[datetime] = None
    candidates: List[Candidate] = field(default_factory=list)

    @property
    def shape(self) -> BallotShape:
        if self.type == BallotType.REFERENDUM:
            return BallotShape.REFERENDUM
        if len(self.candidates) <= 1:
            return BallotShape.SINGLE_CANDIDATE
        return BallotShape.MULTI_CANDIDATE

    def find_candidate(self, candidate_id: str) -> Optional[Candidate]:
        for candidate in self.candidates:
            if candidate.id == candidate_id:
                return candidate
        return None


@dataclass
class EligibleVoter:
    """A voter registered for one election."""
    id: str
    election_id: str
    email: str
    college: str
    student_id: str
    first_name: str = ""
    last_name: str = ""
    has_voted: bool = False
    voted_at: Optional[datetime] = None


@dataclass
class VoteSubmission:
    """One proposed vote as submitted by a voter."""
    ballot_id: str
    vote_type: VoteType
    candidate_id: Optional[str] = None


@dataclass
class VoteRecord:
    """
    Persisted, anonymized vote.

    Carries no voter reference and no timestamp; the commitment is the only
    handle back to the cast.
    """
    election_id: str
    ballot_id: str
    candidate_id: Optional[str]
    vote_type: VoteType
    commitment: str


@dataclass
class VoteReceipt:
    """Receipt returned to the voter for one ballot."""
    ballot_id: str
    commitment: str
    nonce: str

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return asdict(self)


@dataclass
class CastResult:
    """Outcome of a successful cast."""
    election_id: str
    voted_at: datetime
    receipts: List[VoteReceipt]

    @property
    def vote_count(self) -> int:
        return len(self.receipts)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "election_id": self.election_id,
            "voted_at": self.voted_at.isoformat(),
            "vote_count": self.vote_count,
            "receipts": [receipt.to_dict() for receipt in self.receipts],
        }


@dataclass
class EligibilityResult:
    """
    Result of an eligibility check.

    When `eligible` is False, `error_code` and `reason` explain why and
    `ballots` is empty.
    """
    eligible: bool
    voter: Optional[EligibleVoter] = None
    ballots: List[Ballot] = field(default_factory=list)
    error_code: Optional[str] = None
    reason: Optional[str] = None

    @property
    def has_voted(self) -> bool:
        return bool(self.voter and self.voter.has_voted)

    @property
    def voted_at(self) -> Optional[datetime]:
        return self.voter.voted_at if self.voter else None


@dataclass
class VoteTally:
    """Number of stored votes with one (ballot, candidate, vote type) combination."""
    ballot_id: str
    candidate_id: Optional[str]
    vote_type: VoteType
    count: int


@dataclass
class CollegeTurnout:
    """Registered and voted counts for one college of an election."""
    college: str
    eligible: int
    voted: int
