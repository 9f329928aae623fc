"""
Ballot validation engine.

Pure functions over records already loaded from the store. Every check
raises VoteValidationError with its own ErrorCode on the first violation;
nothing here touches the database, so a rejection can never leave a write
behind.

Rule order for a vote set:
1. NO_VOTES / DUPLICATE_BALLOT on the set as a whole
2. BALLOT_NOT_FOUND, CANDIDATE_NOT_FOUND for every vote
3. INVALID_COLLEGE for every vote
4. the per-shape decision table (SHAPE_RULES) for every vote
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, FrozenSet, Iterable, List, Optional

from vote_integrity.shared.errors import ErrorCode, VoteValidationError
from vote_integrity.shared.models import (
    BALLOT_TYPE_ORDER,
    Ballot,
    BallotShape,
    BallotType,
    Election,
    EligibleVoter,
    VoteSubmission,
    VoteType,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ShapeRule:
    """Allowed vote types for a ballot shape, and which of them name a candidate."""
    allowed: FrozenSet[VoteType]
    requires_candidate: FrozenSet[VoteType]


SHAPE_RULES: Dict[BallotShape, ShapeRule] = {
    BallotShape.REFERENDUM: ShapeRule(
        allowed=frozenset({VoteType.YES, VoteType.NO, VoteType.ABSTAIN}),
        requires_candidate=frozenset(),
    ),
    BallotShape.SINGLE_CANDIDATE: ShapeRule(
        allowed=frozenset({VoteType.CANDIDATE, VoteType.APPROVE, VoteType.OPPOSE, VoteType.ABSTAIN}),
        requires_candidate=frozenset({VoteType.CANDIDATE, VoteType.APPROVE, VoteType.OPPOSE}),
    ),
    BallotShape.MULTI_CANDIDATE: ShapeRule(
        allowed=frozenset({VoteType.CANDIDATE, VoteType.ABSTAIN}),
        requires_candidate=frozenset({VoteType.CANDIDATE}),
    ),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def check_voter_eligibility(
    election: Election,
    voter: Optional[EligibleVoter],
    now: Optional[datetime] = None
) -> EligibleVoter:
    """
    Check that a voter may cast in an election right now.

    Args:
        election: The election being voted in
        voter: The voter's registration for that election, or None
        now: Evaluation time (defaults to the current UTC time)

    Returns:
        EligibleVoter: the voter record, for convenience

    Raises:
        VoteValidationError: NOT_ELIGIBLE, ALREADY_VOTED, ELECTION_NOT_ACTIVE,
            ELECTION_NOT_STARTED or ELECTION_ENDED
    """
    now = now or _utcnow()

    if voter is None:
        raise VoteValidationError(
            ErrorCode.NOT_ELIGIBLE,
            "You are not registered to vote in this election"
        )

    if voter.has_voted:
        raise VoteValidationError(
            ErrorCode.ALREADY_VOTED,
            "You have already voted in this election"
        )

    if not election.is_active:
        raise VoteValidationError(
            ErrorCode.ELECTION_NOT_ACTIVE,
            "This election is not currently active"
        )

    if now < election.start_time:
        raise VoteValidationError(
            ErrorCode.ELECTION_NOT_STARTED,
            f"Voting has not started yet. Opens at {election.start_time.isoformat()}"
        )

    if now > election.end_time:
        raise VoteValidationError(
            ErrorCode.ELECTION_ENDED,
            f"Voting has ended. Closed at {election.end_time.isoformat()}"
        )

    return voter


def check_vote_shape(ballot: Ballot, vote: VoteSubmission) -> None:
    """
    Apply the decision table to one vote on an existing ballot.

    Raises:
        VoteValidationError: INVALID_VOTE_TYPE, CANDIDATE_REQUIRED or
            CANDIDATE_NOT_ALLOWED
    """
    shape = ballot.shape
    rule = SHAPE_RULES[shape]

    if vote.vote_type not in rule.allowed:
        allowed = ", ".join(sorted(v.value for v in rule.allowed))
        raise VoteValidationError(
            ErrorCode.INVALID_VOTE_TYPE,
            f"Vote type {vote.vote_type.value} is not allowed on ballot "
            f"'{ballot.title}' ({shape.value}); expected one of {allowed}"
        )

    if vote.vote_type in rule.requires_candidate:
        if vote.candidate_id is None:
            raise VoteValidationError(
                ErrorCode.CANDIDATE_REQUIRED,
                f"A {vote.vote_type.value} vote on ballot '{ballot.title}' must name a candidate"
            )
    elif vote.candidate_id is not None:
        raise VoteValidationError(
            ErrorCode.CANDIDATE_NOT_ALLOWED,
            f"A {vote.vote_type.value} vote on ballot '{ballot.title}' must not name a candidate"
        )


def validate_votes(
    ballots: Iterable[Ballot],
    voter_college: str,
    votes: List[VoteSubmission]
) -> Dict[str, Ballot]:
    """
    Validate a full vote set against the ballots of one election.

    Args:
        ballots: Every ballot of the election, with candidates loaded
        voter_college: College of the voting voter
        votes: The complete set of votes being cast

    Returns:
        dict: ballot id -> Ballot for each voted ballot

    Raises:
        VoteValidationError: on the first violated rule
    """
    if not votes:
        raise VoteValidationError(ErrorCode.NO_VOTES, "No votes provided")

    seen = set()
    for vote in votes:
        if vote.ballot_id in seen:
            raise VoteValidationError(
                ErrorCode.DUPLICATE_BALLOT,
                "You cannot vote on the same ballot twice"
            )
        seen.add(vote.ballot_id)

    by_id = {ballot.id: ballot for ballot in ballots}
    voted: Dict[str, Ballot] = {}

    for vote in votes:
        ballot = by_id.get(vote.ballot_id)
        if ballot is None:
            raise VoteValidationError(
                ErrorCode.BALLOT_NOT_FOUND,
                f"Ballot {vote.ballot_id} not found"
            )
        if (
            ballot.type != BallotType.REFERENDUM
            and vote.candidate_id is not None
            and ballot.find_candidate(vote.candidate_id) is None
        ):
            raise VoteValidationError(
                ErrorCode.CANDIDATE_NOT_FOUND,
                f"Candidate {vote.candidate_id} not found on ballot '{ballot.title}'"
            )
        voted[ballot.id] = ballot

    for vote in votes:
        ballot = voted[vote.ballot_id]
        if ballot.type == BallotType.DIRECTOR and ballot.college != voter_college:
            raise VoteValidationError(
                ErrorCode.INVALID_COLLEGE,
                f"You are not eligible to vote on the '{ballot.title}' ballot ({ballot.college} only)"
            )

    for vote in votes:
        check_vote_shape(voted[vote.ballot_id], vote)

    logger.debug(f"Validated {len(votes)} votes")
    return voted


def get_eligible_ballots(ballots: Iterable[Ballot], voter_college: str) -> List[Ballot]:
    """
    Ballots a voter of `voter_college` may vote on.

    EXECUTIVE and REFERENDUM ballots are open to everyone, DIRECTOR ballots
    only to their own college. Ordered EXECUTIVE, DIRECTOR, REFERENDUM, then
    by position and creation order within each group.
    """
    eligible = [
        ballot for ballot in ballots
        if ballot.type != BallotType.DIRECTOR or ballot.college == voter_college
    ]
    return sorted(
        eligible,
        key=lambda b: (
            BALLOT_TYPE_ORDER[b.type],
            b.position,
            b.created_at or datetime.min.replace(tzinfo=timezone.utc),
        )
    )
