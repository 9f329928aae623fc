"""Loads aggregate counts from the store and turns them into election results."""

import logging
from datetime import datetime, timezone
from typing import Mapping, Optional

from prometheus_client import Counter, Histogram

from vote_integrity.results.calculator import ElectionResults, calculate_election_results
from vote_integrity.shared.errors import ElectionNotFoundError, ErrorCode, ResultsError
from vote_integrity.shared.models import BallotType
from vote_integrity.storage.base import VoteStore

logger = logging.getLogger(__name__)

# Prometheus metrics
results_tallied_total = Counter(
    "vote_integrity_results_tallied_total",
    "Total number of election result calculations"
)
results_tally_latency = Histogram(
    "vote_integrity_results_tally_duration_seconds",
    "Time taken to load counts and calculate election results"
)


class ResultsTallier:
    """Per-ballot counts, referendum outcomes, turnout and quorum for an election."""

    def __init__(self, store: VoteStore, default_quorum: Optional[Mapping[BallotType, float]] = None):
        self.store = store
        self.default_quorum = default_quorum

    async def get_election_results(
        self,
        election_id: str,
        require_sealed: bool = False,
        now: Optional[datetime] = None
    ) -> ElectionResults:
        """
        Calculate results from the votes committed so far.

        Args:
            election_id: Election to tally
            require_sealed: Refuse until the election's Merkle root is sealed
            now: Timestamp recorded on the results (defaults to now)

        Raises:
            ElectionNotFoundError: unknown election
            ResultsError: RESULTS_NOT_SEALED when `require_sealed` and the
                root is not sealed yet
        """
        election = await self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFoundError(election_id)

        if require_sealed and election.merkle_root is None:
            raise ResultsError(
                ErrorCode.RESULTS_NOT_SEALED,
                "Results are released once the election's Merkle root is sealed"
            )

        with results_tally_latency.time():
            ballots = await self.store.get_ballots(election_id)
            tallies = await self.store.tally_votes(election_id)
            turnout = await self.store.count_voters_by_college(election_id)
            results = calculate_election_results(
                election,
                ballots,
                tallies,
                turnout,
                default_quorum=self.default_quorum,
                now=now or datetime.now(timezone.utc)
            )

        results_tallied_total.inc()
        logger.info(
            f"Tallied election {election_id}: {results.total_voted}/{results.total_eligible_voters} voted, "
            f"{len(results.ballots)} ballots"
        )
        return results
