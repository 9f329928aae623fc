#!/usr/bin/env python3
"""
Seed a demo election into the configured vote store.

Creates one election open for the next few hours, an executive ballot, a
director ballot per college, a referendum and a handful of eligible voters.
"""
import argparse
import asyncio
import logging
import sys
from datetime import datetime, timedelta, timezone

from vote_integrity.config import settings
from vote_integrity.shared.models import Ballot, BallotType, Candidate, Election, EligibleVoter
from vote_integrity.storage import create_store

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)

COLLEGES = ["Engineering", "Science", "Arts"]


async def seed(voter_count: int, hours_open: float, name: str) -> str:
    store = create_store(settings)
    await store.initialize()

    try:
        now = datetime.now(timezone.utc)
        election = await store.create_election(Election(
            id="",
            name=name,
            start_time=now,
            end_time=now + timedelta(hours=hours_open),
            is_active=True,
            quorum={BallotType.EXECUTIVE: 0.1, BallotType.DIRECTOR: 0.1, BallotType.REFERENDUM: 0.2}
        ))

        await store.create_ballot(Ballot(
            id="",
            election_id=election.id,
            title="President",
            type=BallotType.EXECUTIVE,
            position=0,
            candidates=[
                Candidate(id="", ballot_id="", name="Alex Martin", position=0),
                Candidate(id="", ballot_id="", name="Sam Okafor", position=1),
            ]
        ))

        for position, college in enumerate(COLLEGES):
            await store.create_ballot(Ballot(
                id="",
                election_id=election.id,
                title=f"{college} Director",
                type=BallotType.DIRECTOR,
                college=college,
                position=position,
                candidates=[Candidate(id="", ballot_id="", name=f"{college} Nominee")]
            ))

        await store.create_ballot(Ballot(
            id="",
            election_id=election.id,
            title="Student Levy",
            type=BallotType.REFERENDUM,
            question="Should the student levy increase by $5 per term?",
            position=0
        ))

        for i in range(voter_count):
            await store.add_eligible_voter(EligibleVoter(
                id="",
                election_id=election.id,
                email=f"voter{i:04d}@example.edu",
                college=COLLEGES[i % len(COLLEGES)],
                student_id=f"S{i:07d}",
                first_name="Demo",
                last_name=f"Voter {i}"
            ))

        logger.info(f"Seeded election {election.id} with {voter_count} voters")
        return election.id

    finally:
        await store.close()


def main(argv=None):
    parser = argparse.ArgumentParser(description='Seed a demo election into the vote store')
    parser.add_argument('--voters', type=int, default=25, help='Number of eligible voters (default: 25)')
    parser.add_argument('--hours', type=float, default=8.0, help='Hours the election stays open (default: 8)')
    parser.add_argument('--name', type=str, default='Demo Student Election', help='Election name')

    args = parser.parse_args(argv)

    if args.voters < 0:
        parser.error("--voters must not be negative")
    if args.hours <= 0:
        parser.error("--hours must be positive")

    election_id = asyncio.run(seed(args.voters, args.hours, args.name))
    print(election_id)
    return 0


if __name__ == '__main__':
    sys.exit(main())
