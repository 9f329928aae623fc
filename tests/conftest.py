"""Pytest fixtures shared by the unit and integration suites.

Integration fixtures run against a throwaway SQLite file per test, so the
transactional compare-and-set and rollback paths are exercised for real.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict

import pytest

from vote_integrity.aggregation import CommitmentAggregator
from vote_integrity.casting import VoteCaster
from vote_integrity.shared.models import Ballot, BallotType, Candidate, Election, EligibleVoter
from vote_integrity.storage import SQLiteStore

SECRET_KEY = "test-vote-hash-secret-0123456789abcdef"


@dataclass
class SeededElection:
    """Ids and records of an election created for a test."""
    election: Election
    ballots: Dict[str, Ballot] = field(default_factory=dict)
    voters: Dict[str, EligibleVoter] = field(default_factory=dict)


def voting_window(hours_before: float = 1, hours_after: float = 1):
    now = datetime.now(timezone.utc)
    return now - timedelta(hours=hours_before), now + timedelta(hours=hours_after)


async def add_voters(store, seeded: SeededElection, voters: Dict[str, str]) -> None:
    for index, (email, college) in enumerate(voters.items()):
        voter = await store.add_eligible_voter(EligibleVoter(
            id="",
            election_id=seeded.election.id,
            email=email,
            college=college,
            student_id=f"S{index:07d}",
            first_name=email.split("@")[0].title(),
            last_name="Tester"
        ))
        seeded.voters[email.split("@")[0]] = voter


async def build_general_election(store, start=None, end=None, is_active=True) -> SeededElection:
    """
    Election with one ballot of every shape.

    Ballots: president (EXECUTIVE, 2 candidates), treasurer (EXECUTIVE,
    1 candidate), eng_director / sci_director (DIRECTOR), levy (REFERENDUM).
    Voters: alice and carol (Engineering), bob (Science).
    """
    if start is None or end is None:
        start, end = voting_window()

    election = await store.create_election(Election(
        id="",
        name="Student Union General Election",
        start_time=start,
        end_time=end,
        is_active=is_active,
        quorum={BallotType.EXECUTIVE: 0.1, BallotType.REFERENDUM: 0.2}
    ))
    seeded = SeededElection(election=election)

    ballot_fields = {
        "levy": dict(
            title="Student Levy", type=BallotType.REFERENDUM, position=0,
            question="Increase the student levy by $5 per term?", candidates=[]
        ),
        "sci_director": dict(
            title="Science Director", type=BallotType.DIRECTOR, college="Science", position=1,
            candidates=["Noor Haddad", "Ivan Petrov"]
        ),
        "eng_director": dict(
            title="Engineering Director", type=BallotType.DIRECTOR, college="Engineering", position=0,
            candidates=["Mei Tanaka"]
        ),
        "treasurer": dict(
            title="Treasurer", type=BallotType.EXECUTIVE, position=1,
            candidates=["Riley Park"]
        ),
        "president": dict(
            title="President", type=BallotType.EXECUTIVE, position=0,
            candidates=["Avery Chen", "Jordan Lee"]
        ),
    }

    for key, fields in ballot_fields.items():
        names = fields.pop("candidates")
        ballot = await store.create_ballot(Ballot(
            id="",
            election_id=election.id,
            candidates=[
                Candidate(id="", ballot_id="", name=name, position=position)
                for position, name in enumerate(names)
            ],
            **fields
        ))
        seeded.ballots[key] = ballot

    await add_voters(store, seeded, {
        "alice@uni.edu": "Engineering",
        "bob@uni.edu": "Science",
        "carol@uni.edu": "Engineering",
    })
    return seeded


async def build_referendum_election(store, start=None, end=None) -> SeededElection:
    """One referendum ballot and three voters: a, b and c."""
    if start is None or end is None:
        start, end = voting_window()

    election = await store.create_election(Election(
        id="",
        name="Building Referendum",
        start_time=start,
        end_time=end
    ))
    seeded = SeededElection(election=election)
    seeded.ballots["building"] = await store.create_ballot(Ballot(
        id="",
        election_id=election.id,
        title="New Student Building",
        type=BallotType.REFERENDUM,
        question="Fund a new student building?"
    ))
    await add_voters(store, seeded, {
        "a@uni.edu": "Arts",
        "b@uni.edu": "Science",
        "c@uni.edu": "Engineering",
    })
    return seeded


@pytest.fixture
def secret_key() -> str:
    """HMAC key long enough for the commitment generator."""
    return SECRET_KEY


@pytest.fixture
def db_path(tmp_path) -> str:
    return str(tmp_path / "vote_integrity.db")


@pytest.fixture
async def store(db_path):
    """Initialized SQLite store on a fresh file."""
    store = SQLiteStore(db_path)
    await store.initialize()
    yield store
    await store.close()


@pytest.fixture
def caster(store, secret_key) -> VoteCaster:
    return VoteCaster(store, secret_key)


@pytest.fixture
def aggregator(store, secret_key) -> CommitmentAggregator:
    return CommitmentAggregator(store, secret_key, max_batch_proofs=5)


@pytest.fixture
async def general_election(store) -> SeededElection:
    return await build_general_election(store)


@pytest.fixture
async def referendum_election(store) -> SeededElection:
    return await build_referendum_election(store)


@pytest.fixture
def election_builders():
    """Seeding coroutines, for tests that manage their own store."""
    return {
        "general": build_general_election,
        "referendum": build_referendum_election,
    }


def pytest_configure(config):
    """Register custom pytest markers."""
    config.addinivalue_line(
        "markers",
        "postgres: mark test as requiring a running PostgreSQL server"
    )
    config.addinivalue_line(
        "markers",
        "slow: mark test as slow running"
    )
