"""Pydantic models for request/response validation."""
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, validator

from vote_integrity.aggregation.merkle import MerkleProof
from vote_integrity.config import settings
from vote_integrity.shared.models import Ballot, Candidate, VoteSubmission, VoteType

EXAMPLE_COMMITMENT = "9f2c6d0b7a1e4c3f8d5b2a6e0c9f7d1b3a5e8c2d4f6a0b9e7c1d3f5a7b9c0e2d"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VoteItem(BaseModel):
    """One vote within a cast."""

    ballot_id: str = Field(..., description="Ballot identifier")
    vote_type: VoteType = Field(..., description="Vote type")
    candidate_id: Optional[str] = Field(default=None, description="Candidate identifier, null for referendums and abstentions")

    @validator("ballot_id")
    def validate_ballot_id(cls, v):
        """Validate ballot_id is not empty."""
        if not v or not v.strip():
            raise ValueError("Ballot ID cannot be empty")
        return v.strip()

    def to_submission(self) -> VoteSubmission:
        return VoteSubmission(
            ballot_id=self.ballot_id,
            vote_type=self.vote_type,
            candidate_id=self.candidate_id
        )


class CastVotesRequest(BaseModel):
    """Vote cast request model."""

    votes: List[VoteItem] = Field(
        ...,
        max_length=settings.MAX_VOTES_PER_CAST,
        description=f"Every vote of the cast, at most one per ballot (at most {settings.MAX_VOTES_PER_CAST})"
    )

    class Config:
        json_schema_extra = {
            "example": {
                "votes": [
                    {"ballot_id": "b-president", "vote_type": "CANDIDATE", "candidate_id": "c-alice"},
                    {"ballot_id": "b-levy", "vote_type": "YES", "candidate_id": None}
                ]
            }
        }


class ReceiptResponse(BaseModel):
    """Receipt for one ballot."""

    ballot_id: str = Field(..., description="Ballot identifier")
    commitment: str = Field(..., description="Vote hash (64 hex characters)")
    nonce: str = Field(..., description="Nonce needed to re-derive the vote hash; shown once")


class CastVotesResponse(BaseModel):
    """Vote cast response model."""

    election_id: str = Field(..., description="Election identifier")
    voted_at: datetime = Field(..., description="When the cast was recorded")
    vote_count: int = Field(..., description="Number of ballots voted")
    receipts: List[ReceiptResponse] = Field(..., description="One receipt per ballot")

    class Config:
        json_schema_extra = {
            "example": {
                "election_id": "e-2025",
                "voted_at": "2025-03-04T10:30:00+00:00",
                "vote_count": 1,
                "receipts": [
                    {"ballot_id": "b-levy", "commitment": EXAMPLE_COMMITMENT, "nonce": "3f2a..."}
                ]
            }
        }


class CandidateInfo(BaseModel):
    """Candidate summary."""

    id: str
    name: str
    statement: Optional[str] = None
    position: int = 0

    @classmethod
    def from_candidate(cls, candidate: Candidate) -> "CandidateInfo":
        return cls(
            id=candidate.id,
            name=candidate.name,
            statement=candidate.statement,
            position=candidate.position
        )


class BallotInfo(BaseModel):
    """Ballot summary with its candidates."""

    id: str
    title: str
    type: str
    shape: str
    college: Optional[str] = None
    question: Optional[str] = None
    position: int = 0
    candidates: List[CandidateInfo] = Field(default_factory=list)

    @classmethod
    def from_ballot(cls, ballot: Ballot) -> "BallotInfo":
        return cls(
            id=ballot.id,
            title=ballot.title,
            type=ballot.type.value,
            shape=ballot.shape.value,
            college=ballot.college,
            question=ballot.question,
            position=ballot.position,
            candidates=[CandidateInfo.from_candidate(c) for c in ballot.candidates]
        )


class EligibilityResponse(BaseModel):
    """Eligibility check response model."""

    election_id: str = Field(..., description="Election identifier")
    eligible: bool = Field(..., description="Whether the voter may cast now")
    has_voted: bool = Field(default=False, description="Whether the voter already voted")
    voted_at: Optional[datetime] = Field(default=None, description="When the voter voted")
    error_code: Optional[str] = Field(default=None, description="Reason code when not eligible")
    reason: Optional[str] = Field(default=None, description="Reason message when not eligible")
    ballots: List[BallotInfo] = Field(default_factory=list, description="Ballots the voter may vote on")

    class Config:
        json_schema_extra = {
            "example": {
                "election_id": "e-2025",
                "eligible": False,
                "has_voted": True,
                "voted_at": "2025-03-04T10:30:00+00:00",
                "error_code": "ALREADY_VOTED",
                "reason": "You have already voted in this election",
                "ballots": []
            }
        }


class VotingStatusEntry(BaseModel):
    """Voting status for one election."""

    election_id: str
    election_name: str
    has_voted: bool
    voted_at: Optional[datetime] = None


class MerkleTreeInfoResponse(BaseModel):
    """Merkle tree information response model."""

    election_id: str
    election_name: str
    root: str = Field(..., description="Root of the tree rebuilt from stored commitments")
    depth: int
    leaf_count: int
    layers: int
    sealed: bool
    sealed_root: Optional[str] = None
    sealed_at: Optional[datetime] = None
    sealed_vote_count: Optional[int] = None
    root_matches_sealed: Optional[bool] = None


class SealResponse(BaseModel):
    """Merkle root seal response model."""

    election_id: str
    merkle_root: str
    vote_count: int
    tree_depth: int
    sealed_at: datetime


class MerkleProofModel(BaseModel):
    """Inclusion proof as plain JSON."""

    leaf: str = Field(..., description="Commitment being proven")
    proof: List[str] = Field(..., description="Sibling hashes, leaf level first")
    root: str = Field(..., description="Merkle root the proof resolves to")

    class Config:
        json_schema_extra = {
            "example": {
                "leaf": EXAMPLE_COMMITMENT,
                "proof": ["4be1...", "07c3..."],
                "root": "d41f..."
            }
        }

    @classmethod
    def from_proof(cls, proof: MerkleProof) -> "MerkleProofModel":
        return cls(leaf=proof.leaf, proof=proof.proof, root=proof.root)

    def to_proof(self) -> MerkleProof:
        return MerkleProof(leaf=self.leaf, proof=list(self.proof), root=self.root)


class ProofResponse(BaseModel):
    """Single proof response model."""

    election_id: str
    proof: MerkleProofModel


class BatchProofRequest(BaseModel):
    """Batch proof request model."""

    commitments: List[str] = Field(
        ...,
        max_length=settings.MAX_BATCH_PROOFS,
        description=f"Vote hashes to prove (at most {settings.MAX_BATCH_PROOFS})"
    )


class BatchProofResponse(BaseModel):
    """Batch proof response model."""

    election_id: str
    total: int
    found: int
    proofs: List[Optional[MerkleProofModel]] = Field(..., description="One entry per request item, null when absent")


class VerifyProofRequest(BaseModel):
    """Proof verification request model."""

    proof: MerkleProofModel
    expected_root: Optional[str] = Field(default=None, description="Root the proof must resolve to, e.g. a sealed root")


class VerifyProofResponse(BaseModel):
    """Proof verification response model."""

    valid: bool


class BatchVerifyRequest(BaseModel):
    """Batch proof verification request model."""

    proofs: List[MerkleProofModel] = Field(..., max_length=settings.MAX_BATCH_PROOFS)


class BatchVerifyResponse(BaseModel):
    """Batch proof verification response model."""

    total: int
    verified: int
    failed: int
    results: List[bool]


class CommitmentLookupResponse(BaseModel):
    """Commitment existence response model."""

    commitment: str
    exists: bool
    election_id: Optional[str] = None
    ballot_id: Optional[str] = None


class ReceiptVerifyRequest(BaseModel):
    """Receipt verification request model."""

    commitment: str = Field(..., description="Vote hash from the receipt")
    ballot_id: str = Field(..., description="Ballot identifier")
    candidate_id: Optional[str] = Field(default=None, description="Candidate voted for, if any")
    vote_type: VoteType = Field(..., description="Vote type cast")
    nonce: str = Field(..., description="Nonce from the receipt")

    @validator("commitment")
    def validate_commitment(cls, v):
        """Normalize the commitment to lowercase."""
        return v.strip().lower()


class ReceiptVerifyResponse(BaseModel):
    """Receipt verification response model."""

    commitment: str
    binds_vote: bool = Field(..., description="The vote hash is exactly the hash of the given content")
    recorded: bool = Field(..., description="A vote with this hash is stored on this ballot")
    election_id: Optional[str] = None


class CandidateResultModel(BaseModel):
    """Votes for one candidate."""

    candidate_id: str
    name: str
    votes: int = Field(..., description="CANDIDATE and APPROVE votes")
    opposed: int = Field(..., description="OPPOSE votes")
    percentage: float
    is_winner: bool
    is_tied: bool


class ReferendumResultModel(BaseModel):
    """Referendum outcome."""

    yes: int
    no: int
    abstain: int
    yes_percentage: float
    no_percentage: float
    total_votes: int
    passed: bool
    is_tied: bool


class BallotResultModel(BaseModel):
    """Counts and quorum outcome for one ballot."""

    ballot_id: str
    ballot_title: str
    ballot_type: str
    college: Optional[str] = None
    total_votes: int
    abstentions: int
    eligible_voters: int
    quorum_percentage: float
    quorum_threshold: int
    has_reached_quorum: bool
    candidates: List[CandidateResultModel] = Field(default_factory=list)
    referendum: Optional[ReferendumResultModel] = None


class ElectionResultsResponse(BaseModel):
    """Election results response model."""

    election_id: str
    election_name: str
    total_eligible_voters: int
    total_voted: int
    turnout_percentage: float
    sealed: bool = Field(..., description="Whether the Merkle root covering these votes is sealed")
    merkle_root: Optional[str] = None
    calculated_at: datetime
    summary: Dict[str, int]
    ballots: List[BallotResultModel]

    class Config:
        json_schema_extra = {
            "example": {
                "election_id": "e-2025",
                "election_name": "Student Union General Election",
                "total_eligible_voters": 3,
                "total_voted": 2,
                "turnout_percentage": 66.67,
                "sealed": True,
                "merkle_root": EXAMPLE_COMMITMENT,
                "calculated_at": "2025-03-08T09:00:00+00:00",
                "summary": {
                    "total_ballots": 1,
                    "ballots_with_ties": 0,
                    "ballots_below_quorum": 0,
                    "referendums_count": 1,
                    "referendums_passed": 1
                },
                "ballots": [
                    {
                        "ballot_id": "b-levy",
                        "ballot_title": "Student Levy",
                        "ballot_type": "REFERENDUM",
                        "college": None,
                        "total_votes": 2,
                        "abstentions": 0,
                        "eligible_voters": 3,
                        "quorum_percentage": 20.0,
                        "quorum_threshold": 1,
                        "has_reached_quorum": True,
                        "candidates": [],
                        "referendum": {
                            "yes": 2, "no": 0, "abstain": 0,
                            "yes_percentage": 100.0, "no_percentage": 0.0,
                            "total_votes": 2, "passed": True, "is_tied": False
                        }
                    }
                ]
            }
        }


class HealthResponse(BaseModel):
    """Health check response model."""

    status: Literal["healthy", "unhealthy"] = Field(..., description="Overall health status")
    services: dict = Field(..., description="Status of individual services")
    timestamp: datetime = Field(default_factory=_utcnow, description="Health check timestamp")

    class Config:
        json_schema_extra = {
            "example": {
                "status": "healthy",
                "services": {
                    "database": "connected"
                },
                "timestamp": "2025-03-04T10:30:00+00:00"
            }
        }


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error code")
    message: str = Field(..., description="Error message")
    details: dict = Field(default_factory=dict, description="Additional error details")

    class Config:
        json_schema_extra = {
            "example": {
                "error": "DUPLICATE_BALLOT",
                "message": "You cannot vote on the same ballot twice",
                "details": {}
            }
        }
