"""SQLite vote store for local runs and tests."""
import json
import logging
import sqlite3
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite

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
    start_time TEXT NOT NULL,
    end_time TEXT NOT NULL,
    is_active INTEGER NOT NULL DEFAULT 0,
    quorum TEXT NOT NULL DEFAULT '{}',
    merkle_root TEXT,
    merkle_root_sealed_at TEXT,
    merkle_vote_count INTEGER,
    created_at TEXT NOT NULL,
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
    created_at TEXT NOT NULL
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
    has_voted INTEGER NOT NULL DEFAULT 0,
    voted_at TEXT,
    UNIQUE (election_id, email)
);

-- WITHOUT ROWID: no hidden sequential key, so row order does not follow cast order.
CREATE TABLE IF NOT EXISTS votes (
    id TEXT PRIMARY KEY,
    election_id TEXT NOT NULL REFERENCES elections(id) ON DELETE CASCADE,
    ballot_id TEXT NOT NULL REFERENCES ballots(id) ON DELETE CASCADE,
    candidate_id TEXT REFERENCES candidates(id) ON DELETE CASCADE,
    vote_type TEXT NOT NULL,
    commitment TEXT NOT NULL UNIQUE
) WITHOUT ROWID;
CREATE INDEX IF NOT EXISTS votes_election_id_idx ON votes(election_id);

CREATE TABLE IF NOT EXISTS audit_logs (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    election_id TEXT NOT NULL,
    action TEXT NOT NULL,
    details TEXT NOT NULL,
    timestamp TEXT NOT NULL
);
"""


def _now_text() -> str:
    return datetime.now(timezone.utc).isoformat()


class SQLiteStore(VoteStore):
    """
    Vote store on a SQLite file.

    Each operation opens its own connection in autocommit mode; writes that
    must be atomic run inside BEGIN IMMEDIATE, which takes the database write
    lock up front so concurrent casts queue on the busy timeout.
    """

    def __init__(self, db_path: str, cipher: Optional[FieldCipher] = None, timeout: float = 30.0):
        super().__init__(cipher)
        self.db_path = db_path
        self.timeout = timeout

    @asynccontextmanager
    async def _connect(self):
        async with aiosqlite.connect(self.db_path, timeout=self.timeout, isolation_level=None) as conn:
            conn.row_factory = aiosqlite.Row
            await conn.execute("PRAGMA foreign_keys = ON")
            yield conn

    @asynccontextmanager
    async def _transaction(self):
        async with self._connect() as conn:
            await conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                await conn.execute("ROLLBACK")
                raise
            await conn.execute("COMMIT")

    async def initialize(self) -> None:
        try:
            async with self._connect() as conn:
                await conn.execute("PRAGMA journal_mode = WAL")
                await conn.executescript(SCHEMA)
            logger.info(f"SQLite store initialized at {self.db_path}")
        except sqlite3.Error as e:
            logger.error(f"Failed to initialize SQLite store: {e}")
            raise DatabaseError(f"SQLite initialization failed: {e}") from e

    async def close(self) -> None:
        # Connections are per-operation; nothing is held open.
        logger.info("SQLite store closed")

    async def check_health(self) -> bool:
        try:
            async with self._connect() as conn:
                await conn.execute("SELECT 1")
            return True
        except sqlite3.Error as e:
            logger.error(f"SQLite health check failed: {e}")
            return False

    async def create_election(self, election: Election) -> Election:
        election.id = election.id or new_id()
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO elections (id, name, start_time, end_time, is_active, quorum, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    election.id,
                    election.name,
                    election.start_time.isoformat(),
                    election.end_time.isoformat(),
                    int(election.is_active),
                    dump_quorum(election.quorum),
                    _now_text(),
                )
            )
        return election

    async def create_ballot(self, ballot: Ballot) -> Ballot:
        ballot.id = ballot.id or new_id()
        ballot.created_at = ballot.created_at or datetime.now(timezone.utc)
        async with self._transaction() as conn:
            await conn.execute(
                """
                INSERT INTO ballots (id, election_id, title, type, college, question, position, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    ballot.id,
                    ballot.election_id,
                    ballot.title,
                    ballot.type.value,
                    ballot.college,
                    ballot.question,
                    ballot.position,
                    ballot.created_at.isoformat(),
                )
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
            VALUES (?, ?, ?, ?, ?)
            """,
            (candidate.id, candidate.ballot_id, candidate.name, candidate.statement, candidate.position)
        )

    async def add_eligible_voter(self, voter: EligibleVoter) -> EligibleVoter:
        voter.id = voter.id or new_id()
        voter.email = normalize_email(voter.email)
        try:
            async with self._transaction() as conn:
                await conn.execute(
                    """
                    INSERT INTO eligible_voters
                    (id, election_id, email, college, student_id, first_name, last_name, has_voted, voted_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        voter.id,
                        voter.election_id,
                        voter.email,
                        voter.college,
                        self.cipher.encrypt(voter.student_id),
                        voter.first_name,
                        voter.last_name,
                        int(voter.has_voted),
                        voter.voted_at.isoformat() if voter.voted_at else None,
                    )
                )
        except sqlite3.IntegrityError as e:
            raise DatabaseError(f"Voter {voter.email} is already registered for this election") from e
        return voter

    async def get_election(self, election_id: str) -> Optional[Election]:
        async with self._connect() as conn:
            cursor = await conn.execute("SELECT * FROM elections WHERE id = ?", (election_id,))
            row = await cursor.fetchone()
        return election_from_row(row) if row else None

    async def get_ballots(self, election_id: str) -> List[Ballot]:
        async with self._connect() as conn:
            cursor = await conn.execute(
                "SELECT * FROM ballots WHERE election_id = ? ORDER BY position, created_at",
                (election_id,)
            )
            ballots = [ballot_from_row(row) for row in await cursor.fetchall()]

            cursor = await conn.execute(
                """
                SELECT c.* FROM candidates c
                JOIN ballots b ON c.ballot_id = b.id
                WHERE b.election_id = ?
                ORDER BY c.position, c.name
                """,
                (election_id,)
            )
            candidates = [candidate_from_row(row) for row in await cursor.fetchall()]

        return attach_candidates(ballots, candidates)

    async def get_eligible_voter(self, election_id: str, email: str) -> Optional[EligibleVoter]:
        async with self._connect() as conn:
            cursor = await conn.execute(
                "SELECT * FROM eligible_voters WHERE election_id = ? AND email = ?",
                (election_id, normalize_email(email))
            )
            row = await cursor.fetchone()
        return voter_from_row(row, self.cipher) if row else None

    async def list_voter_registrations(self, email: str) -> List[Tuple[Election, EligibleVoter]]:
        email = normalize_email(email)
        async with self._connect() as conn:
            cursor = await conn.execute(
                """
                SELECT e.*, v.id AS voter_id FROM eligible_voters v
                JOIN elections e ON v.election_id = e.id
                WHERE v.email = ?
                ORDER BY e.start_time DESC
                """,
                (email,)
            )
            election_rows = await cursor.fetchall()
            cursor = await conn.execute("SELECT * FROM eligible_voters WHERE email = ?", (email,))
            voters = {row["id"]: voter_from_row(row, self.cipher) for row in await cursor.fetchall()}

        return [(election_from_row(row), voters[row["voter_id"]]) for row in election_rows]

    async def get_commitments(self, election_id: str) -> List[str]:
        async with self._connect() as conn:
            cursor = await conn.execute(
                "SELECT commitment FROM votes WHERE election_id = ?",
                (election_id,)
            )
            return [row["commitment"] for row in await cursor.fetchall()]

    async def find_vote_record(self, commitment: str) -> Optional[VoteRecord]:
        async with self._connect() as conn:
            cursor = await conn.execute("SELECT * FROM votes WHERE commitment = ?", (commitment,))
            row = await cursor.fetchone()
        return vote_record_from_row(row) if row else None

    async def count_vote_records(self, election_id: str) -> int:
        async with self._connect() as conn:
            cursor = await conn.execute(
                "SELECT COUNT(*) AS total FROM votes WHERE election_id = ?",
                (election_id,)
            )
            row = await cursor.fetchone()
        return row["total"]

    async def tally_votes(self, election_id: str) -> List[VoteTally]:
        async with self._connect() as conn:
            cursor = await conn.execute(
                """
                SELECT ballot_id, candidate_id, vote_type, COUNT(*) AS total
                FROM votes WHERE election_id = ?
                GROUP BY ballot_id, candidate_id, vote_type
                """,
                (election_id,)
            )
            rows = await cursor.fetchall()
        return [
            VoteTally(row["ballot_id"], row["candidate_id"], VoteType(row["vote_type"]), row["total"])
            for row in rows
        ]

    async def count_voters_by_college(self, election_id: str) -> List[CollegeTurnout]:
        async with self._connect() as conn:
            cursor = await conn.execute(
                """
                SELECT college, COUNT(*) AS eligible, SUM(has_voted) AS voted
                FROM eligible_voters WHERE election_id = ?
                GROUP BY college ORDER BY college
                """,
                (election_id,)
            )
            rows = await cursor.fetchall()
        return [CollegeTurnout(row["college"], row["eligible"], row["voted"] or 0) for row in rows]

    async def record_cast(
        self,
        voter: EligibleVoter,
        records: List[VoteRecord],
        voted_at: datetime
    ) -> None:
        try:
            async with self._transaction() as conn:
                cursor = await conn.execute(
                    """
                    UPDATE eligible_voters
                    SET has_voted = 1, voted_at = ?
                    WHERE id = ? AND has_voted = 0
                    """,
                    (voted_at.isoformat(), voter.id)
                )
                if cursor.rowcount != 1:
                    raise VoteValidationError(
                        ErrorCode.ALREADY_VOTED,
                        "You have already voted in this election"
                    )

                await conn.executemany(
                    """
                    INSERT INTO votes (id, election_id, ballot_id, candidate_id, vote_type, commitment)
                    VALUES (?, ?, ?, ?, ?, ?)
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
        except sqlite3.Error as e:
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
        async with self._transaction() as conn:
            cursor = await conn.execute(
                """
                UPDATE elections
                SET merkle_root = ?, merkle_root_sealed_at = ?, merkle_vote_count = ?
                WHERE id = ? AND merkle_root IS NULL
                """,
                (root, sealed_at.isoformat(), vote_count, election_id)
            )
            if cursor.rowcount != 1:
                return False
            await self._insert_audit(conn, election_id, "merkle_tree.sealed", details)
        return True

    async def _insert_audit(self, conn, election_id: str, action: str, details: Dict[str, Any]) -> None:
        await conn.execute(
            "INSERT INTO audit_logs (election_id, action, details, timestamp) VALUES (?, ?, ?, ?)",
            (election_id, action, json.dumps(details), _now_text())
        )
