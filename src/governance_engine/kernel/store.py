"""
SQLite Governance Store - Proposals, votes and the audit log

The store is the only shared mutable state of the engine. Several processes may
propose, vote and resolve against the same database at once, so every
correctness-critical write is a single atomic statement:

- one pending proposal per (community, law kind): a partial unique index
- one vote per (proposal, voter): a unique constraint
- votes only while open: the INSERT itself re-checks status and deadline
- single-fire resolution: UPDATE ... WHERE status = 'PENDING' (compare-and-swap)

No application-level lock is held anywhere.

Fun fact: SQLite has supported partial indexes since 3.8.0 (2013) - the
"WHERE status = 'PENDING'" clause is what lets one table hold both the single
live proposal and its whole resolved history.
"""

import json
import sqlite3
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Iterator

from governance_engine.kernel.errors import (
    AlreadyVoted,
    CooldownActive,
    DuplicatePending,
    StoreError,
)
from governance_engine.kernel.events import AuditEvent
from governance_engine.kernel.retry import retry_on_sqlite_lock
from governance_engine.laws.models import (
    ExecutionStatus,
    Proposal,
    ProposalStatus,
    Vote,
    VoteChoice,
)

_PROPOSAL_COLUMNS = """
    proposal_id, community_id, proposer_id, law_kind, governance_kind, status,
    metadata_json, created_at, expires_at, resolved_at, resolution_notes,
    execution_status, execution_attempts
"""


def to_db_time(dt: datetime) -> str:
    """
    Fixed-width UTC ISO timestamp

    Deadlines are compared as strings inside SQL, so every stored timestamp
    must have the same width and offset.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class SQLiteGovernanceStore:
    """
    SQLite-based proposal/vote store

    Uses WAL mode for concurrent readers while one writer commits. Each call
    opens its own connection, so the store is safe to share between threads.

    Schema:
    - proposals: one row per proposal, status is the terminal marker
    - votes: append-only, UNIQUE(proposal_id, voter_id)
    - audit_events: append-only, written in the same transaction as the change
    """

    def __init__(self, db_path: str | Path, busy_timeout_seconds: float = 5.0) -> None:
        """
        Initialize store with SQLite database

        Args:
            db_path: Path to SQLite database file
            busy_timeout_seconds: How long to wait on a locked database
        """
        self.db_path = Path(db_path)
        self.busy_timeout_seconds = busy_timeout_seconds
        self._initialize_schema()

    @retry_on_sqlite_lock()
    def _initialize_schema(self) -> None:
        """Create tables and indices if they don't exist"""
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")

            conn.execute("""
                CREATE TABLE IF NOT EXISTS proposals (
                    proposal_id TEXT PRIMARY KEY,
                    community_id TEXT NOT NULL,
                    proposer_id TEXT NOT NULL,
                    law_kind TEXT NOT NULL,
                    governance_kind TEXT NOT NULL,
                    status TEXT NOT NULL
                        CHECK (status IN ('PENDING', 'PASSED', 'REJECTED')),
                    metadata_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    expires_at TEXT NOT NULL,
                    resolved_at TEXT,
                    resolution_notes TEXT,
                    execution_status TEXT,
                    execution_attempts INTEGER NOT NULL DEFAULT 0
                )
            """)
            # At most one PENDING proposal per (community, law kind)
            conn.execute(
                "CREATE UNIQUE INDEX IF NOT EXISTS uq_proposals_one_pending "
                "ON proposals(community_id, law_kind) WHERE status = 'PENDING'"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_proposals_due "
                "ON proposals(status, expires_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_proposals_community "
                "ON proposals(community_id, created_at)"
            )

            conn.execute("""
                CREATE TABLE IF NOT EXISTS votes (
                    vote_id TEXT PRIMARY KEY,
                    proposal_id TEXT NOT NULL REFERENCES proposals(proposal_id),
                    voter_id TEXT NOT NULL,
                    voter_rank INTEGER NOT NULL,
                    choice TEXT NOT NULL CHECK (choice IN ('YES', 'NO')),
                    created_at TEXT NOT NULL,

                    UNIQUE(proposal_id, voter_id)
                )
            """)

            conn.execute("""
                CREATE TABLE IF NOT EXISTS audit_events (
                    event_id TEXT PRIMARY KEY,
                    event_type TEXT NOT NULL,
                    proposal_id TEXT NOT NULL,
                    community_id TEXT NOT NULL,
                    actor_id TEXT,
                    occurred_at TEXT NOT NULL,
                    payload_json TEXT NOT NULL
                )
            """)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_audit_proposal "
                "ON audit_events(proposal_id, occurred_at)"
            )

            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection that is always closed, never shared"""
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout_seconds)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    @retry_on_sqlite_lock()
    def insert_proposal(
        self, proposal: Proposal, event: AuditEvent, cooldown: timedelta | None = None
    ) -> Proposal:
        """
        Insert a PENDING proposal and its audit event atomically

        With a cooldown, the INSERT itself refuses to run while any proposal of
        the same (community, law kind) was created within the cooldown, so
        concurrent proposers cannot both slip past it.

        Raises:
            CooldownActive: A proposal of this kind was created too recently
            DuplicatePending: If a pending proposal exists for (community, law kind)
            StoreError: On other database errors
        """
        # A NULL cutoff disables the guard
        cutoff = to_db_time(proposal.created_at - cooldown) if cooldown is not None else None
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    f"INSERT INTO proposals ({_PROPOSAL_COLUMNS}) "
                    "SELECT ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ? "
                    "WHERE ? IS NULL OR NOT EXISTS ("
                    "    SELECT 1 FROM proposals"
                    "    WHERE community_id = ? AND law_kind = ? AND created_at > ?"
                    ")",
                    (
                        proposal.proposal_id,
                        proposal.community_id,
                        proposal.proposer_id,
                        proposal.law_kind,
                        proposal.governance_kind,
                        proposal.status.value,
                        json.dumps(proposal.metadata),
                        to_db_time(proposal.created_at),
                        to_db_time(proposal.expires_at),
                        None,
                        None,
                        None,
                        0,
                        cutoff,
                        proposal.community_id,
                        proposal.law_kind,
                        cutoff,
                    ),
                )
                if cursor.rowcount != 1 and cooldown is not None:
                    last_created = conn.execute(
                        "SELECT MAX(created_at) FROM proposals "
                        "WHERE community_id = ? AND law_kind = ?",
                        (proposal.community_id, proposal.law_kind),
                    ).fetchone()[0]
                    conn.rollback()
                    raise CooldownActive(
                        proposal.community_id,
                        proposal.law_kind,
                        from_db_time(last_created) + cooldown,
                    )
                self._insert_event(conn, event)
                conn.commit()
                return proposal

            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "proposals.community_id" in str(e):
                    raise DuplicatePending(proposal.community_id, proposal.law_kind) from e
                raise StoreError(f"Failed to insert proposal: {e}") from e

    def get_proposal(self, proposal_id: str) -> Proposal | None:
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT {_PROPOSAL_COLUMNS} FROM proposals WHERE proposal_id = ?",
                (proposal_id,),
            ).fetchone()
            return self._row_to_proposal(row) if row else None

    def list_proposals(
        self,
        community_id: str,
        status: ProposalStatus | None = None,
        limit: int | None = None,
    ) -> list[Proposal]:
        """Proposals of a community, newest first, optionally filtered by status"""
        query = f"SELECT {_PROPOSAL_COLUMNS} FROM proposals WHERE community_id = ?"
        params: list[Any] = [community_id]
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        query += " ORDER BY created_at DESC, proposal_id DESC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_proposal(row) for row in rows]

    def list_expired_pending(self, now: datetime, limit: int) -> list[Proposal]:
        """PENDING proposals whose deadline has passed, oldest deadline first"""
        with self._connect() as conn:
            rows = conn.execute(
                f"SELECT {_PROPOSAL_COLUMNS} FROM proposals "
                "WHERE status = 'PENDING' AND expires_at <= ? "
                "ORDER BY expires_at ASC, proposal_id ASC LIMIT ?",
                (to_db_time(now), limit),
            ).fetchall()
            return [self._row_to_proposal(row) for row in rows]

    def list_by_execution_status(
        self, execution_status: ExecutionStatus, limit: int | None = None
    ) -> list[Proposal]:
        query = (
            f"SELECT {_PROPOSAL_COLUMNS} FROM proposals "
            "WHERE execution_status = ? ORDER BY resolved_at ASC"
        )
        params: list[Any] = [execution_status.value]
        if limit:
            query += " LIMIT ?"
            params.append(limit)
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return [self._row_to_proposal(row) for row in rows]

    def last_proposal_created_at(self, community_id: str, law_kind: str) -> datetime | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT MAX(created_at) FROM proposals "
                "WHERE community_id = ? AND law_kind = ?",
                (community_id, law_kind),
            ).fetchone()
            return from_db_time(row[0])

    def count_proposals(self, status: ProposalStatus | None = None) -> int:
        with self._connect() as conn:
            if status is None:
                row = conn.execute("SELECT COUNT(*) FROM proposals").fetchone()
            else:
                row = conn.execute(
                    "SELECT COUNT(*) FROM proposals WHERE status = ?", (status.value,)
                ).fetchone()
            return row[0]

    @retry_on_sqlite_lock()
    def transition_status(
        self,
        proposal_id: str,
        to_status: ProposalStatus,
        resolved_at: datetime,
        notes: str,
        event: AuditEvent,
    ) -> bool:
        """
        Compare-and-swap PENDING → to_status

        A PASSED transition also marks the execution as owed in the same
        statement, so whoever wins the swap is the only dispatcher.

        Returns:
            True if this call performed the transition, False if the proposal
            was no longer PENDING (another resolver won)
        """
        if to_status == ProposalStatus.PENDING:
            raise ValueError("Cannot transition a proposal to PENDING")
        execution_status = (
            ExecutionStatus.PENDING.value if to_status == ProposalStatus.PASSED else None
        )

        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    UPDATE proposals
                    SET status = ?, resolved_at = ?, resolution_notes = ?,
                        execution_status = ?
                    WHERE proposal_id = ? AND status = 'PENDING'
                    """,
                    (
                        to_status.value,
                        to_db_time(resolved_at),
                        notes,
                        execution_status,
                        proposal_id,
                    ),
                )
                if cursor.rowcount != 1:
                    conn.rollback()
                    return False
                self._insert_event(conn, event)
                conn.commit()
                return True
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise StoreError(f"Failed to transition proposal {proposal_id}: {e}") from e

    @retry_on_sqlite_lock()
    def claim_execution_retry(self, proposal_id: str) -> bool:
        """Compare-and-swap FAILED → PENDING on a PASSED proposal's execution"""
        with self._connect() as conn:
            cursor = conn.execute(
                """
                UPDATE proposals SET execution_status = 'PENDING'
                WHERE proposal_id = ? AND status = 'PASSED' AND execution_status = 'FAILED'
                """,
                (proposal_id,),
            )
            conn.commit()
            return cursor.rowcount == 1

    @retry_on_sqlite_lock()
    def record_execution(
        self,
        proposal_id: str,
        execution_status: ExecutionStatus,
        note: str | None,
        event: AuditEvent,
    ) -> bool:
        """
        Record the outcome of a dispatch that holds the PENDING execution claim

        The note, when given, is appended to resolution_notes; the proposal's
        status is never touched.
        """
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    UPDATE proposals
                    SET execution_status = ?,
                        execution_attempts = execution_attempts + 1,
                        resolution_notes = CASE
                            WHEN ? IS NULL THEN resolution_notes
                            ELSE COALESCE(resolution_notes || char(10), '') || ?
                        END
                    WHERE proposal_id = ? AND execution_status = 'PENDING'
                    """,
                    (execution_status.value, note, note, proposal_id),
                )
                if cursor.rowcount != 1:
                    conn.rollback()
                    return False
                self._insert_event(conn, event)
                conn.commit()
                return True
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise StoreError(f"Failed to record execution for {proposal_id}: {e}") from e

    # ------------------------------------------------------------------
    # Votes
    # ------------------------------------------------------------------

    @retry_on_sqlite_lock()
    def insert_vote(self, vote: Vote, now: datetime, event: AuditEvent) -> bool:
        """
        Insert a vote only if the proposal is still PENDING and before its deadline

        Returns:
            True if inserted, False if the proposal closed in the meantime

        Raises:
            AlreadyVoted: If the voter already voted on this proposal
        """
        with self._connect() as conn:
            try:
                cursor = conn.execute(
                    """
                    INSERT INTO votes (
                        vote_id, proposal_id, voter_id, voter_rank, choice, created_at
                    )
                    SELECT ?, ?, ?, ?, ?, ?
                    WHERE EXISTS (
                        SELECT 1 FROM proposals
                        WHERE proposal_id = ? AND status = 'PENDING' AND expires_at > ?
                    )
                    """,
                    (
                        vote.vote_id,
                        vote.proposal_id,
                        vote.voter_id,
                        vote.voter_rank,
                        vote.choice.value,
                        to_db_time(vote.created_at),
                        vote.proposal_id,
                        to_db_time(now),
                    ),
                )
                if cursor.rowcount != 1:
                    conn.rollback()
                    return False
                self._insert_event(conn, event)
                conn.commit()
                return True

            except sqlite3.IntegrityError as e:
                conn.rollback()
                if "votes.proposal_id" in str(e):
                    raise AlreadyVoted(vote.proposal_id, vote.voter_id) from e
                raise StoreError(f"Failed to insert vote: {e}") from e

    def list_votes(self, proposal_id: str) -> list[Vote]:
        with self._connect() as conn:
            rows = conn.execute(
                """
                SELECT vote_id, proposal_id, voter_id, voter_rank, choice, created_at
                FROM votes WHERE proposal_id = ? ORDER BY created_at ASC, rowid ASC
                """,
                (proposal_id,),
            ).fetchall()
            return [
                Vote(
                    vote_id=row["vote_id"],
                    proposal_id=row["proposal_id"],
                    voter_id=row["voter_id"],
                    voter_rank=row["voter_rank"],
                    choice=VoteChoice(row["choice"]),
                    created_at=datetime.fromisoformat(row["created_at"]),
                )
                for row in rows
            ]

    def count_votes(self, proposal_id: str) -> int:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT COUNT(*) FROM votes WHERE proposal_id = ?", (proposal_id,)
            ).fetchone()
            return row[0]

    # ------------------------------------------------------------------
    # Audit log
    # ------------------------------------------------------------------

    def list_events(
        self, proposal_id: str | None = None, limit: int | None = None
    ) -> list[AuditEvent]:
        """Audit events in chronological (then append) order, optionally for one proposal"""
        query = (
            "SELECT event_id, event_type, proposal_id, community_id, actor_id, "
            "occurred_at, payload_json FROM audit_events"
        )
        params: list[Any] = []
        if proposal_id is not None:
            query += " WHERE proposal_id = ?"
            params.append(proposal_id)
        query += " ORDER BY occurred_at ASC, rowid ASC"
        if limit:
            query += " LIMIT ?"
            params.append(limit)

        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
            return [
                AuditEvent(
                    event_id=row["event_id"],
                    event_type=row["event_type"],
                    proposal_id=row["proposal_id"],
                    community_id=row["community_id"],
                    actor_id=row["actor_id"],
                    occurred_at=datetime.fromisoformat(row["occurred_at"]),
                    payload=json.loads(row["payload_json"]),
                )
                for row in rows
            ]

    def _insert_event(self, conn: sqlite3.Connection, event: AuditEvent) -> None:
        """Append an audit event inside the caller's transaction"""
        conn.execute(
            """
            INSERT INTO audit_events (
                event_id, event_type, proposal_id, community_id, actor_id,
                occurred_at, payload_json
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                event.event_id,
                event.event_type,
                event.proposal_id,
                event.community_id,
                event.actor_id,
                to_db_time(event.occurred_at),
                json.dumps(event.payload, default=str),
            ),
        )

    def _row_to_proposal(self, row: sqlite3.Row) -> Proposal:
        execution_status = row["execution_status"]
        return Proposal(
            proposal_id=row["proposal_id"],
            community_id=row["community_id"],
            proposer_id=row["proposer_id"],
            law_kind=row["law_kind"],
            governance_kind=row["governance_kind"],
            status=ProposalStatus(row["status"]),
            metadata=json.loads(row["metadata_json"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            resolved_at=from_db_time(row["resolved_at"]),
            resolution_notes=row["resolution_notes"],
            execution_status=ExecutionStatus(execution_status) if execution_status else None,
            execution_attempts=row["execution_attempts"],
        )
