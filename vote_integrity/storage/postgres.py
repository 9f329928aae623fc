"""PostgreSQL vote store."""
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from vote_integrity.shared.errors import DatabaseError, ErrorCode, VoteValidationError
from vote_integrity.shared.models import (
    Ballot,
    Candidate,
    CollegeTurnout,
    Election,
    EligibleVoter,
    VoteRecord,
    VoteTally,
    VoteType,
)
from vote_integrity.storage.base import (
    VoteStore,
    attach_candidates,
    ballot_from_row,
    candidate_from_row,
    dump_quorum,
    election_from_row,
    new_id,
    normalize_email,
    vote_record_from_row,
    voter_from_row,
)
from vote_integrity.storage.cipher import FieldCipher

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS elections (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    start_time TIMESTAMPTZ NOT NULL,
    end_time TIMESTAMPTZ NOT NULL,
    is_active BOOLEAN NOT NULL DEFAULT FALSE,
    quorum JSONB NOT NULL DEFAULT '{}'::jsonb,
    merkle_root TEXT,
    merkle_root_sealed_at TIMESTAMPTZ,
    merkle_vote_count INTEGER,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (start_time < end_time)
);

CREATE TABLE IF NOT EXISTS ballots (
    id TEXT PRIMARY KEY,
    election_id TEXT NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    title TEXT NOT NULL,
    type TEXT NOT NULL CHECK (type IN ('EXECUTIVE', 'DIRECTOR', 'REFERENDUM')),
    college TEXT,
    question TEXT,
    position INTEGER NOT NULL DEFAULT 0,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
CREATE INDEX IF NOT EXISTS ballots_election_id_idx ON ballots(election_id);

CREATE TABLE IF NOT EXISTS candidates (
    id TEXT PRIMARY KEY,
    ballot_id TEXT NOT NULL REFERENCES ballots(id) ON DELETE CASCADE,
    name TEXT NOT NULL,
    statement TEXT,
    position INTEGER NOT NULL DEFAULT 0
);
CREATE INDEX IF NOT EXISTS candidates_ballot_id_idx ON candidates(ballot_id);

CREATE TABLE IF NOT EXISTS eligible_voters (
    id TEXT PRIMARY KEY,
    election_id TEXT NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    email TEXT NOT NULL,
    college TEXT NOT NULL,
    student_id TEXT NOT NULL,
    first_name TEXT NOT NULL DEFAULT '',
    last_name TEXT NOT NULL DEFAULT '',
    has_voted BOOLEAN NOT NULL DEFAULT FALSE,
    voted_at TIMESTAMPTZ,
    UNIQUE (election_id, email)
);

CREATE TABLE IF NOT EXISTS votes (
    id TEXT PRIMARY KEY,
    election_id TEXT NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    ballot_id TEXT NOT NULL REFERENCES ballots(id) ON DELETE CASCADE,
    candidate_id TEXT REFERENCES candidates(id) ON DELETE CASCADE,
    vote_type TEXT NOT NULL,
    commitment TEXT NOT NULL UNIQUE
);
CREATE INDEX IF NOT EXISTS votes_election_id_idx ON votes(election_id);

CREATE TABLE IF NOT EXISTS audit_logs (
    id BIGSERIAL PRIMARY KEY,
    election_id TEXT NOT NULL,
    action TEXT NOT NULL,
    details JSONB NOT NULL,
    timestamp TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""


def _affected(status: str) -> int:
    """Row count from an asyncpg command status such as 'UPDATE 1'."""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


class PostgresStore(VoteStore):
    """Async PostgreSQL vote store on an asyncpg pool."""

    def __init__(
        self,
        dsn: str,
        cipher: Optional[FieldCipher] = None,
        min_size: int = 2,
        max_size: int = 10
    ):
        super().__init__(cipher)
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.pool: Optional[asyncpg.Pool] = None

    async def initialize(self) -> None:
        """Initialize database connection pool and schema."""
        try:
            self.pool = await asyncpg.create_pool(
                self.dsn,
                min_size=self.min_size,
                max_size=self.max_size,
                command_timeout=60
            )
            logger.info("PostgreSQL connection pool initialized successfully")

            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                logger.info("PostgreSQL connection verified")
                await conn.execute(SCHEMA)

        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"Failed to initialize PostgreSQL connection pool: {e}")
            raise DatabaseError(f"PostgreSQL initialization failed: {e}") from e

    async def close(self) -> None:
        """Close database connection pool."""
        if self.pool:
            await self.pool.close()
            self.pool = None
            logger.info("PostgreSQL connection pool closed successfully")

    async def check_health(self) -> bool:
        try:
            if not self.pool:
                return False
            async with self.pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
                return True
        except (OSError, asyncpg.PostgresError) as e:
            logger.error(f"PostgreSQL health check failed: {e}")
            return False

    async def create_election(self, election: Election) -> Election:
        election.id = election.id or new_id()
        async with self.pool.acquire() as conn:
            await conn.execute(
                """
                INSERT INTO elections (id, name, start_time, end_time, is_active, quorum)
                VALUES ($1, $2, $3, $4, $5, $6::jsonb)
                """,
                election.id, election.name, election.start_time, election.end_time,
                election.is_active, dump_quorum(election.quorum)
            )
        return election

    async def create_ballot(self, ballot: Ballot) -> Ballot:
        ballot.id = ballot.id or new_id()
        ballot.created_at = ballot.created_at or datetime.now(timezone.utc)
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute(
                    """
                    INSERT INTO ballots (id, election_id, title, type, college, question, position, created_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8)
                    """,
                    ballot.id, ballot.election_id, ballot.title, ballot.type.value,
                    ballot.college, ballot.question, ballot.position, ballot.created_at
                )
                for candidate in ballot.candidates:
                    candidate.id = candidate.id or new_id()
                    candidate.ballot_id = ballot.id
                    await self._insert_candidate(conn, candidate)
        return ballot

    async def _insert_candidate(self, conn, candidate: Candidate) -> None:
        await conn.execute(
            """
            INSERT INTO candidates (id, ballot_id, name, statement, position)
            VALUES ($1, $2, $3, $4, $5)
            """,
            candidate.id, candidate.ballot_id, candidate.name, candidate.statement, candidate.position
        )

    async def add_eligible_voter(self, voter: EligibleVoter) -> EligibleVoter:
        voter.id = voter.id or new_id()
        voter.email = normalize_email(voter.email)
        try:
            async with self.pool.acquire() as conn:
                await conn.execute(
                    """
                    INSERT INTO eligible_voters
                    (id, election_id, email, college, student_id, first_name, last_name, has_voted, voted_at)
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
                    """,
                    voter.id, voter.election_id, voter.email, voter.college,
                    self.cipher.encrypt(voter.student_id), voter.first_name, voter.last_name,
                    voter.has_voted, voter.voted_at
                )
        except asyncpg.UniqueViolationError as e:
            raise DatabaseError(f"Voter {voter.email} is already registered for this election") from e
        return voter

    async def get_election(self, election_id: str) -> Optional[Election]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM elections WHERE id = $1", election_id)
        return election_from_row(row) if row else None

    async def get_ballots(self, election_id: str) -> List[Ballot]:
        async with self.pool.acquire() as conn:
            ballot_rows = await conn.fetch(
                "SELECT * FROM ballots WHERE election_id = $1 ORDER BY position, created_at",
                election_id
            )
            candidate_rows = await conn.fetch(
                """
                SELECT c.* FROM candidates c
                JOIN ballots b ON c.ballot_id = b.id
                WHERE b.election_id = $1
                ORDER BY c.position, c.name
                """,
                election_id
            )
        return attach_candidates(
            [ballot_from_row(row) for row in ballot_rows],
            [candidate_from_row(row) for row in candidate_rows]
        )

    async def get_eligible_voter(self, election_id: str, email: str) -> Optional[EligibleVoter]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT * FROM eligible_voters WHERE election_id = $1 AND email = $2",
                election_id, normalize_email(email)
            )
        return voter_from_row(row, self.cipher) if row else None

    async def list_voter_registrations(self, email: str) -> List[Tuple[Election, EligibleVoter]]:
        email = normalize_email(email)
        async with self.pool.acquire() as conn:
            election_rows = await conn.fetch(
                """
                SELECT e.*, v.id AS voter_id FROM eligible_voters v
                JOIN elections e ON v.election_id = e.id
                WHERE v.email = $1
                ORDER BY e.start_time DESC
                """,
                email
            )
            voter_rows = await conn.fetch("SELECT * FROM eligible_voters WHERE email = $1", email)

        voters = {row["id"]: voter_from_row(row, self.cipher) for row in voter_rows}
        return [(election_from_row(row), voters[row["voter_id"]]) for row in election_rows]

    async def get_commitments(self, election_id: str) -> List[str]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch("SELECT commitment FROM votes WHERE election_id = $1", election_id)
        return [row["commitment"] for row in rows]

    async def find_vote_record(self, commitment: str) -> Optional[VoteRecord]:
        async with self.pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM votes WHERE commitment = $1", commitment)
        return vote_record_from_row(row) if row else None

    async def count_vote_records(self, election_id: str) -> int:
        async with self.pool.acquire() as conn:
            return await conn.fetchval("SELECT COUNT(*) FROM votes WHERE election_id = $1", election_id)

    async def tally_votes(self, election_id: str) -> List[VoteTally]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT ballot_id, candidate_id, vote_type, COUNT(*) AS total
                FROM votes WHERE election_id = $1
                GROUP BY ballot_id, candidate_id, vote_type
                """,
                election_id
            )
        return [
            VoteTally(row["ballot_id"], row["candidate_id"], VoteType(row["vote_type"]), row["total"])
            for row in rows
        ]

    async def count_voters_by_college(self, election_id: str) -> List[CollegeTurnout]:
        async with self.pool.acquire() as conn:
            rows = await conn.fetch(
                """
                SELECT college, COUNT(*) AS eligible, COUNT(*) FILTER (WHERE has_voted) AS voted
                FROM eligible_voters WHERE election_id = $1
                GROUP BY college ORDER BY college
                """,
                election_id
            )
        return [CollegeTurnout(row["college"], row["eligible"], row["voted"]) for row in rows]

    async def record_cast(
        self,
        voter: EligibleVoter,
        records: List[VoteRecord],
        voted_at: datetime
    ) -> None:
        try:
            async with self.pool.acquire() as conn:
                async with conn.transaction():
                    status = await conn.execute(
                        """
                        UPDATE eligible_voters
                        SET has_voted = TRUE, voted_at = $1
                        WHERE id = $2 AND has_voted = FALSE
                        """,
                        voted_at, voter.id
                    )
                    if _affected(status) != 1:
                        raise VoteValidationError(
                            ErrorCode.ALREADY_VOTED,
                            "You have already voted in this election"
                        )

                    await conn.executemany(
                        """
                        INSERT INTO votes (id, election_id, ballot_id, candidate_id, vote_type, commitment)
                        VALUES ($1, $2, $3, $4, $5, $6)
                        """,
                        [
                            (new_id(), r.election_id, r.ballot_id, r.candidate_id, r.vote_type.value, r.commitment)
                            for r in records
                        ]
                    )

                    await self._insert_audit(conn, voter.election_id, "votes.cast", {
                        "voter_id": voter.id,
                        "ballot_count": len(records),
                        "ballot_ids": [r.ballot_id for r in records],
                    })
        except asyncpg.PostgresError as e:
            logger.error(f"Error recording cast for election {voter.election_id}: {e}")
            raise DatabaseError(f"Failed to record votes: {e}") from e

    async def seal_merkle_root(
        self,
        election_id: str,
        root: str,
        vote_count: int,
        sealed_at: datetime,
        details: Dict[str, Any]
    ) -> bool:
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                status = await conn.execute(
                    """
                    UPDATE elections
                    SET merkle_root = $1, merkle_root_sealed_at = $2, merkle_vote_count = $3
                    WHERE id = $4 AND merkle_root IS NULL
                    """,
                    root, sealed_at, vote_count, election_id
                )
                if _affected(status) != 1:
                    return False
                await self._insert_audit(conn, election_id, "merkle_tree.sealed", details)
        return True

    async def _insert_audit(self, conn, election_id: str, action: str, details: Dict[str, Any]) -> None:
        await conn.execute(
            "INSERT INTO audit_logs (election_id, action, details) VALUES ($1, $2, $3::jsonb)",
            election_id, action, json.dumps(details)
        )
