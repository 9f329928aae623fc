"""Vote store contract and row mapping shared by the storage backends."""

import json
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional, Tuple

from vote_integrity.shared.models import (
    Ballot,
    BallotType,
    Candidate,
    CollegeTurnout,
    Election,
    EligibleVoter,
    VoteRecord,
    VoteTally,
    VoteType,
)
from vote_integrity.storage.cipher import FieldCipher


def new_id() -> str:
    return uuid.uuid4().hex


def normalize_email(email: str) -> str:
    """Canonical form used for storing and matching voter emails."""
    return email.strip().lower()


def to_datetime(value: Any) -> Optional[datetime]:
    """Normalize a stored timestamp (ISO text or datetime) to an aware datetime."""
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value)
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value


def dump_quorum(quorum: Dict[BallotType, float]) -> str:
    return json.dumps({BallotType(key).value: value for key, value in quorum.items()})


def load_quorum(raw: Any) -> Dict[BallotType, float]:
    if not raw:
        return {}
    data = json.loads(raw) if isinstance(raw, str) else raw
    return {BallotType(key): float(value) for key, value in data.items()}


def election_from_row(row: Mapping) -> Election:
    return Election(
        id=row["id"],
        name=row["name"],
        start_time=to_datetime(row["start_time"]),
        end_time=to_datetime(row["end_time"]),
        is_active=bool(row["is_active"]),
        quorum=load_quorum(row["quorum"]),
        merkle_root=row["merkle_root"],
        merkle_root_sealed_at=to_datetime(row["merkle_root_sealed_at"]),
        merkle_vote_count=row["merkle_vote_count"],
    )


def ballot_from_row(row: Mapping) -> Ballot:
    return Ballot(
        id=row["id"],
        election_id=row["election_id"],
        title=row["title"],
        type=BallotType(row["type"]),
        college=row["college"],
        question=row["question"],
        position=row["position"],
        created_at=to_datetime(row["created_at"]),
    )


def candidate_from_row(row: Mapping) -> Candidate:
    return Candidate(
        id=row["id"],
        ballot_id=row["ballot_id"],
        name=row["name"],
        statement=row["statement"],
        position=row["position"],
    )


def voter_from_row(row: Mapping, cipher: FieldCipher) -> EligibleVoter:
    return EligibleVoter(
        id=row["id"],
        election_id=row["election_id"],
        email=row["email"],
        college=row["college"],
        student_id=cipher.decrypt(row["student_id"]),
        first_name=row["first_name"],
        last_name=row["last_name"],
        has_voted=bool(row["has_voted"]),
        voted_at=to_datetime(row["voted_at"]),
    )


def vote_record_from_row(row: Mapping) -> VoteRecord:
    return VoteRecord(
        election_id=row["election_id"],
        ballot_id=row["ballot_id"],
        candidate_id=row["candidate_id"],
        vote_type=VoteType(row["vote_type"]),
        commitment=row["commitment"],
    )


def attach_candidates(ballots: List[Ballot], candidates: List[Candidate]) -> List[Ballot]:
    by_ballot = {ballot.id: ballot for ballot in ballots}
    for candidate in candidates:
        ballot = by_ballot.get(candidate.ballot_id)
        if ballot is not None:
            ballot.candidates.append(candidate)
    return ballots


class VoteStore(ABC):
    """
    Transactional record store consumed by the integrity core.

    Implementations must make `record_cast` all-or-nothing and guard the
    has_voted flip with a compare-and-set, so concurrent casts for one voter
    serialize in the database rather than in process.
    """

    def __init__(self, cipher: Optional[FieldCipher] = None):
        self.cipher = cipher or FieldCipher(None)

    @abstractmethod
    async def initialize(self) -> None:
        """Open connections and create the schema if needed."""

    @abstractmethod
    async def close(self) -> None:
        pass

    @abstractmethod
    async def check_health(self) -> bool:
        pass

    # Setup writes (election administration lives outside this service)

    @abstractmethod
    async def create_election(self, election: Election) -> Election:
        pass

    @abstractmethod
    async def create_ballot(self, ballot: Ballot) -> Ballot:
        """Insert a ballot together with any candidates it carries."""

    @abstractmethod
    async def add_eligible_voter(self, voter: EligibleVoter) -> EligibleVoter:
        """Register a voter. The email is stored in normalized form."""

    # Reads

    @abstractmethod
    async def get_election(self, election_id: str) -> Optional[Election]:
        pass

    @abstractmethod
    async def get_ballots(self, election_id: str) -> List[Ballot]:
        """All ballots of an election with candidates, by position then creation."""

    @abstractmethod
    async def get_eligible_voter(self, election_id: str, email: str) -> Optional[EligibleVoter]:
        """Registration matching `email` in any letter case, or None."""

    @abstractmethod
    async def list_voter_registrations(self, email: str) -> List[Tuple[Election, EligibleVoter]]:
        """Every election `email` is registered for, newest start first."""

    @abstractmethod
    async def get_commitments(self, election_id: str) -> List[str]:
        pass

    @abstractmethod
    async def find_vote_record(self, commitment: str) -> Optional[VoteRecord]:
        pass

    @abstractmethod
    async def count_vote_records(self, election_id: str) -> int:
        pass

    @abstractmethod
    async def tally_votes(self, election_id: str) -> List[VoteTally]:
        """Vote counts grouped by ballot, candidate and vote type."""

    @abstractmethod
    async def count_voters_by_college(self, election_id: str) -> List[CollegeTurnout]:
        """Registered and voted counts per college, by college name."""

    # Atomic writes

    @abstractmethod
    async def record_cast(
        self,
        voter: EligibleVoter,
        records: List[VoteRecord],
        voted_at: datetime
    ) -> None:
        """
        Persist a whole cast in one transaction.

        Flips the voter's has_voted only if it is still false, inserts every
        VoteRecord and writes a `votes.cast` audit entry. Raises
        VoteValidationError(ALREADY_VOTED) and rolls back if the flip loses.
        """

    @abstractmethod
    async def seal_merkle_root(
        self,
        election_id: str,
        root: str,
        vote_count: int,
        sealed_at: datetime,
        details: Dict[str, Any]
    ) -> bool:
        """Store the election's Merkle root once. False if one is already sealed."""
