"""
Vote casting orchestrator.

Flow for one cast:
1. Load the election, the voter's registration and the election's ballots
2. Check eligibility and validate the whole vote set (nothing written yet)
3. Draw a fresh nonce per vote and compute its commitment
4. Hand the anonymized records to the store, which flips has_voted with a
   compare-and-set and inserts every record in one transaction
5. Return one receipt per vote

Nonces and commitments exist only in local state and in the returned
receipts; nothing here logs them alongside the voter's identity.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple, Union

from prometheus_client import Counter, Histogram

from vote_integrity.hash_generator import generate_nonce, generate_vote_hash
from vote_integrity.shared.errors import ElectionNotFoundError, VoteIntegrityError, VoteValidationError
from vote_integrity.shared.models import (
    Ballot,
    CastResult,
    Election,
    EligibilityResult,
    EligibleVoter,
    VoteReceipt,
    VoteRecord,
    VoteSubmission,
)
from vote_integrity.storage.base import VoteStore
from vote_integrity.validation import check_voter_eligibility, get_eligible_ballots, validate_votes

logger = logging.getLogger(__name__)

# Prometheus metrics
votes_cast_total = Counter(
    "vote_integrity_votes_cast_total",
    "Total number of vote records committed"
)
casts_total = Counter(
    "vote_integrity_casts_total",
    "Total number of successful ballot casts"
)
cast_rejections_total = Counter(
    "vote_integrity_cast_rejections_total",
    "Total number of rejected casts",
    ["error_code"]
)
cast_latency = Histogram(
    "vote_integrity_cast_duration_seconds",
    "Time spent validating, hashing and persisting a cast"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class VoteCaster:
    """
    Turns a validated vote set into anonymous commitments and persists them.

    The only per-voter mutual exclusion is the store's compare-and-set on
    has_voted; this class holds no locks and no state between calls.
    """

    def __init__(self, store: VoteStore, secret_key: Union[str, bytes, None]):
        self.store = store
        self.secret_key = secret_key

    async def _load(self, voter_email: str, election_id: str) -> Tuple[Election, Optional[EligibleVoter]]:
        election = await self.store.get_election(election_id)
        if election is None:
            raise ElectionNotFoundError(election_id)
        voter = await self.store.get_eligible_voter(election_id, voter_email)
        return election, voter

    async def check_eligibility(
        self,
        voter_email: str,
        election_id: str,
        now: Optional[datetime] = None
    ) -> EligibilityResult:
        """
        Report whether a voter may cast in an election right now.

        Never raises for an ineligible voter; the reason comes back in the
        result. The voter record is still returned when one exists, so
        callers can show when an earlier vote was cast.
        """
        election, voter = await self._load(voter_email, election_id)

        try:
            check_voter_eligibility(election, voter, now)
        except VoteValidationError as e:
            return EligibilityResult(
                eligible=False,
                voter=voter,
                error_code=e.code.value,
                reason=e.message
            )

        ballots = await self.store.get_ballots(election_id)
        return EligibilityResult(
            eligible=True,
            voter=voter,
            ballots=get_eligible_ballots(ballots, voter.college)
        )

    async def get_eligible_ballots(
        self,
        voter_email: str,
        election_id: str,
        now: Optional[datetime] = None
    ) -> List[Ballot]:
        """Ballots the voter may vote on; raises the eligibility error otherwise."""
        election, voter = await self._load(voter_email, election_id)
        voter = check_voter_eligibility(election, voter, now)
        ballots = await self.store.get_ballots(election_id)
        return get_eligible_ballots(ballots, voter.college)

    async def cast_votes(
        self,
        voter_email: str,
        election_id: str,
        votes: List[VoteSubmission],
        now: Optional[datetime] = None
    ) -> CastResult:
        """
        Cast a complete vote set for one voter.

        Args:
            voter_email: Authenticated voter email
            election_id: Election being voted in
            votes: Every vote of the cast, at most one per ballot
            now: Evaluation time for the voting window (defaults to now)

        Returns:
            CastResult with one receipt per vote

        Raises:
            VoteValidationError: eligibility or ballot rule violation, or
                ALREADY_VOTED when a concurrent cast won the race
            ElectionNotFoundError: the election does not exist
            DatabaseError: the store failed; nothing was written
        """
        now = now or _utcnow()

        with cast_latency.time():
            try:
                election, voter = await self._load(voter_email, election_id)
                voter = check_voter_eligibility(election, voter, now)
                ballots = await self.store.get_ballots(election_id)
                validate_votes(ballots, voter.college, votes)

                receipts: List[VoteReceipt] = []
                records: List[VoteRecord] = []
                for vote in votes:
                    nonce = generate_nonce()
                    commitment = generate_vote_hash(
                        vote.ballot_id,
                        vote.candidate_id,
                        vote.vote_type,
                        nonce,
                        self.secret_key
                    )
                    records.append(VoteRecord(
                        election_id=election_id,
                        ballot_id=vote.ballot_id,
                        candidate_id=vote.candidate_id,
                        vote_type=vote.vote_type,
                        commitment=commitment
                    ))
                    receipts.append(VoteReceipt(
                        ballot_id=vote.ballot_id,
                        commitment=commitment,
                        nonce=nonce
                    ))

                await self.store.record_cast(voter, records, now)

            except VoteIntegrityError as e:
                cast_rejections_total.labels(error_code=e.code.value).inc()
                logger.info(f"Cast rejected for election {election_id}: {e.code.value}")
                raise

        casts_total.inc()
        votes_cast_total.inc(len(records))
        logger.info(f"Cast recorded for election {election_id}: {len(records)} ballots")

        return CastResult(election_id=election_id, voted_at=now, receipts=receipts)

    async def get_voting_status(self, voter_email: str) -> List[Dict[str, Any]]:
        """One status entry per election the email is registered for."""
        registrations = await self.store.list_voter_registrations(voter_email)
        return [
            {
                "election_id": election.id,
                "election_name": election.name,
                "has_voted": voter.has_voted,
                "voted_at": voter.voted_at.isoformat() if voter.voted_at else None,
            }
            for election, voter in registrations
        ]
