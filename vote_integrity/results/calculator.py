"""
Election results from aggregate vote counts.

Everything here works on VoteTally and CollegeTurnout rows, never on
individual vote records, so results carry no commitments and nothing that
points back at a voter.

Quorum is a fraction of the voters eligible for a ballot: every registered
voter for EXECUTIVE and REFERENDUM ballots, the ballot's college for
DIRECTOR ballots. A ballot reaches quorum when its vote count, abstentions
included, is at least ceil(eligible * fraction).
"""

import math
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional

from vote_integrity.shared.models import (
    BALLOT_TYPE_ORDER,
    Ballot,
    BallotShape,
    BallotType,
    CollegeTurnout,
    Election,
    VoteTally,
    VoteType,
)

DEFAULT_QUORUM: Dict[BallotType, float] = {
    BallotType.EXECUTIVE: 0.10,
    BallotType.DIRECTOR: 0.10,
    BallotType.REFERENDUM: 0.20,
}


def _percent(part: int, whole: int) -> float:
    return round(part / whole * 100, 2) if whole else 0.0


def quorum_threshold(eligible: int, fraction: float) -> int:
    """Smallest vote count meeting `fraction` of `eligible` voters."""
    # round() drops float noise such as 10 * 0.3 == 3.0000000000000004
    return math.ceil(round(eligible * fraction, 9))


@dataclass
class CandidateResult:
    """
    Votes for one candidate.

    `votes` counts CANDIDATE and APPROVE votes, `opposed` counts OPPOSE votes.
    On a single-candidate ballot the candidate only wins with more votes
    than oppositions.
    """
    candidate_id: str
    name: str
    votes: int
    opposed: int
    percentage: float
    is_winner: bool
    is_tied: bool


@dataclass
class ReferendumResult:
    yes: int
    no: int
    abstain: int
    yes_percentage: float
    no_percentage: float
    total_votes: int
    passed: bool
    is_tied: bool


@dataclass
class BallotResult:
    """Counts and quorum outcome for one ballot."""
    ballot_id: str
    ballot_title: str
    ballot_type: BallotType
    college: Optional[str]
    total_votes: int
    abstentions: int
    eligible_voters: int
    quorum_percentage: float
    quorum_threshold: int
    has_reached_quorum: bool
    candidates: List[CandidateResult] = field(default_factory=list)
    referendum: Optional[ReferendumResult] = None

    @property
    def has_tie(self) -> bool:
        if self.referendum is not None:
            return self.referendum.is_tied
        return any(candidate.is_tied for candidate in self.candidates)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ballot_id": self.ballot_id,
            "ballot_title": self.ballot_title,
            "ballot_type": self.ballot_type.value,
            "college": self.college,
            "total_votes": self.total_votes,
            "abstentions": self.abstentions,
            "eligible_voters": self.eligible_voters,
            "quorum_percentage": self.quorum_percentage,
            "quorum_threshold": self.quorum_threshold,
            "has_reached_quorum": self.has_reached_quorum,
            "candidates": [vars(candidate).copy() for candidate in self.candidates],
            "referendum": vars(self.referendum).copy() if self.referendum else None,
        }


@dataclass
class ElectionResults:
    """Results for every ballot of an election plus overall turnout."""
    election_id: str
    election_name: str
    total_eligible_voters: int
    total_voted: int
    turnout_percentage: float
    ballots: List[BallotResult]
    sealed: bool
    merkle_root: Optional[str]
    calculated_at: datetime

    def summary(self) -> Dict[str, int]:
        referendums = [b for b in self.ballots if b.referendum is not None]
        return {
            "total_ballots": len(self.ballots),
            "ballots_with_ties": sum(1 for b in self.ballots if b.has_tie),
            "ballots_below_quorum": sum(1 for b in self.ballots if not b.has_reached_quorum),
            "referendums_count": len(referendums),
            "referendums_passed": sum(1 for b in referendums if b.referendum.passed),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "election_id": self.election_id,
            "election_name": self.election_name,
            "total_eligible_voters": self.total_eligible_voters,
            "total_voted": self.total_voted,
            "turnout_percentage": self.turnout_percentage,
            "sealed": self.sealed,
            "merkle_root": self.merkle_root,
            "calculated_at": self.calculated_at.isoformat(),
            "summary": self.summary(),
            "ballots": [ballot.to_dict() for ballot in self.ballots],
        }


def calculate_candidate_results(ballot: Ballot, tallies: Iterable[VoteTally]) -> List[CandidateResult]:
    """Per-candidate counts for an EXECUTIVE or DIRECTOR ballot, most votes first."""
    votes = {candidate.id: 0 for candidate in ballot.candidates}
    opposed = {candidate.id: 0 for candidate in ballot.candidates}
    total = 0

    for tally in tallies:
        total += tally.count
        if tally.candidate_id not in votes:
            continue
        if tally.vote_type in (VoteType.CANDIDATE, VoteType.APPROVE):
            votes[tally.candidate_id] += tally.count
        elif tally.vote_type == VoteType.OPPOSE:
            opposed[tally.candidate_id] += tally.count

    max_votes = max(votes.values(), default=0)
    single = ballot.shape == BallotShape.SINGLE_CANDIDATE
    winners = {
        candidate_id for candidate_id, count in votes.items()
        if count == max_votes and count > 0 and (not single or count > opposed[candidate_id])
    }
    tied = len(winners) > 1

    results = [
        CandidateResult(
            candidate_id=candidate.id,
            name=candidate.name,
            votes=votes[candidate.id],
            opposed=opposed[candidate.id],
            percentage=_percent(votes[candidate.id], total),
            is_winner=candidate.id in winners,
            is_tied=tied and candidate.id in winners,
        )
        for candidate in ballot.candidates
    ]
    results.sort(key=lambda r: (-r.votes, r.name))
    return results


def calculate_referendum_results(tallies: Iterable[VoteTally]) -> ReferendumResult:
    """YES/NO/ABSTAIN counts. Passes on a strict YES majority over NO."""
    counts = {VoteType.YES: 0, VoteType.NO: 0, VoteType.ABSTAIN: 0}
    for tally in tallies:
        if tally.vote_type in counts:
            counts[tally.vote_type] += tally.count

    yes, no, abstain = counts[VoteType.YES], counts[VoteType.NO], counts[VoteType.ABSTAIN]
    total = yes + no + abstain
    return ReferendumResult(
        yes=yes,
        no=no,
        abstain=abstain,
        yes_percentage=_percent(yes, total),
        no_percentage=_percent(no, total),
        total_votes=total,
        passed=yes > no,
        is_tied=yes == no and total > 0,
    )


def calculate_election_results(
    election: Election,
    ballots: Iterable[Ballot],
    tallies: Iterable[VoteTally],
    turnout: Iterable[CollegeTurnout],
    default_quorum: Optional[Mapping[BallotType, float]] = None,
    now: Optional[datetime] = None
) -> ElectionResults:
    """
    Combine tallies and turnout into results for every ballot.

    Args:
        election: The election, whose `quorum` overrides `default_quorum` per type
        ballots: Every ballot of the election, with candidates loaded
        tallies: Vote counts grouped by ballot, candidate and vote type
        turnout: Registered and voted counts per college
        default_quorum: Fraction per ballot type when the election sets none

    Returns:
        ElectionResults with ballots in display order
    """
    quorum = dict(DEFAULT_QUORUM if default_quorum is None else default_quorum)
    quorum.update(election.quorum)

    by_ballot = defaultdict(list)
    for tally in tallies:
        by_ballot[tally.ballot_id].append(tally)

    turnout = list(turnout)
    eligible_by_college = {row.college: row.eligible for row in turnout}
    total_eligible = sum(row.eligible for row in turnout)
    total_voted = sum(row.voted for row in turnout)

    ordered = sorted(
        ballots,
        key=lambda b: (
            BALLOT_TYPE_ORDER[b.type],
            b.position,
            b.created_at or datetime.min.replace(tzinfo=timezone.utc),
        )
    )

    results = []
    for ballot in ordered:
        ballot_tallies = by_ballot.get(ballot.id, [])
        total_votes = sum(t.count for t in ballot_tallies)
        abstentions = sum(t.count for t in ballot_tallies if t.vote_type == VoteType.ABSTAIN)

        if ballot.type == BallotType.DIRECTOR and ballot.college:
            eligible = eligible_by_college.get(ballot.college, 0)
        else:
            eligible = total_eligible

        fraction = quorum.get(ballot.type, 0.0)
        threshold = quorum_threshold(eligible, fraction)

        result = BallotResult(
            ballot_id=ballot.id,
            ballot_title=ballot.title,
            ballot_type=ballot.type,
            college=ballot.college,
            total_votes=total_votes,
            abstentions=abstentions,
            eligible_voters=eligible,
            quorum_percentage=round(fraction * 100, 2),
            quorum_threshold=threshold,
            has_reached_quorum=total_votes >= threshold,
        )
        if ballot.type == BallotType.REFERENDUM:
            result.referendum = calculate_referendum_results(ballot_tallies)
        else:
            result.candidates = calculate_candidate_results(ballot, ballot_tallies)
        results.append(result)

    return ElectionResults(
        election_id=election.id,
        election_name=election.name,
        total_eligible_voters=total_eligible,
        total_voted=total_voted,
        turnout_percentage=_percent(total_voted, total_eligible),
        ballots=results,
        sealed=election.merkle_root is not None,
        merkle_root=election.merkle_root,
        calculated_at=now or datetime.now(timezone.utc),
    )
