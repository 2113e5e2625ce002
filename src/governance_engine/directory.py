"""
Local Directory - SQLite-backed communities, members and conflicts

The engine consumes membership, community settings and conflicts through
protocols. Deployments embedding the engine plug in their own systems; this
directory implements all three against a SQLite file so the CLI, the health
server and the tests have something real to talk to.
"""

import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Iterator

from pydantic import BaseModel

from governance_engine.kernel.errors import GovernanceError
from governance_engine.kernel.ids import generate_id
from governance_engine.kernel.logging import get_logger
from governance_engine.kernel.retry import retry_on_sqlite_lock
from governance_engine.kernel.store import from_db_time, to_db_time
from governance_engine.kernel.time import RealTimeProvider, TimeProvider
from governance_engine.laws.models import DEFAULT_GOVERNANCE_KIND, normalize_governance_kind

logger = get_logger(__name__)


class UnknownCommunity(GovernanceError):
    """Raised when a community does not exist in the directory"""

    def __init__(self, community_id: str) -> None:
        self.community_id = community_id
        super().__init__(f"Community {community_id} not found")


class Community(BaseModel):
    community_id: str
    name: str
    governance_kind: str
    successor_id: str | None = None
    announcement_title: str | None = None
    announcement_content: str | None = None
    work_tax_rate: float | None = None
    import_tariff_rate: float | None = None
    created_at: datetime


class Member(BaseModel):
    community_id: str
    actor_id: str
    rank: int


class Conflict(BaseModel):
    conflict_id: str
    initiator_community_id: str
    target_community_id: str
    idempotency_key: str
    opened_at: datetime


class SQLiteDirectory:
    """
    Membership provider, community service and conflict service in one

    Shares the engine's database file by default; the tables don't overlap.
    """

    def __init__(
        self,
        db_path: str | Path,
        time_provider: TimeProvider | None = None,
        busy_timeout_seconds: float = 5.0,
    ) -> None:
        self.db_path = Path(db_path)
        self.time_provider = time_provider or RealTimeProvider()
        self.busy_timeout_seconds = busy_timeout_seconds
        self._initialize_schema()

    @retry_on_sqlite_lock()
    def _initialize_schema(self) -> None:
        with self._connect() as conn:
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS communities (
                    community_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    governance_kind TEXT NOT NULL,
                    successor_id TEXT,
                    announcement_title TEXT,
                    announcement_content TEXT,
                    work_tax_rate REAL,
                    import_tariff_rate REAL,
                    created_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS members (
                    community_id TEXT NOT NULL REFERENCES communities(community_id),
                    actor_id TEXT NOT NULL,
                    rank INTEGER NOT NULL,
                    PRIMARY KEY (community_id, actor_id)
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS conflicts (
                    conflict_id TEXT PRIMARY KEY,
                    initiator_community_id TEXT NOT NULL,
                    target_community_id TEXT NOT NULL,
                    idempotency_key TEXT NOT NULL UNIQUE,
                    opened_at TEXT NOT NULL
                )
            """)
            conn.commit()

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(str(self.db_path), timeout=self.busy_timeout_seconds)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
        finally:
            conn.close()

    # Communities

    @retry_on_sqlite_lock()
    def create_community(
        self,
        community_id: str,
        name: str | None = None,
        governance_kind: str = DEFAULT_GOVERNANCE_KIND,
    ) -> Community:
        """
        Raises:
            ValueError: If the community already exists
        """
        community = Community(
            community_id=community_id,
            name=name or community_id,
            governance_kind=normalize_governance_kind(governance_kind),
            created_at=self.time_provider.now(),
        )
        with self._connect() as conn:
            try:
                conn.execute(
                    "INSERT INTO communities (community_id, name, governance_kind, created_at) "
                    "VALUES (?, ?, ?, ?)",
                    (
                        community.community_id,
                        community.name,
                        community.governance_kind,
                        to_db_time(community.created_at),
                    ),
                )
                conn.commit()
            except sqlite3.IntegrityError as e:
                conn.rollback()
                raise ValueError(f"Community {community_id} already exists") from e
        logger.info(
            "Community created",
            community_id=community_id,
            governance_kind=community.governance_kind,
        )
        return community

    def get_community(self, community_id: str) -> Community | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM communities WHERE community_id = ?", (community_id,)
            ).fetchone()
        if row is None:
            return None
        return Community(
            community_id=row["community_id"],
            name=row["name"],
            governance_kind=row["governance_kind"],
            successor_id=row["successor_id"],
            announcement_title=row["announcement_title"],
            announcement_content=row["announcement_content"],
            work_tax_rate=row["work_tax_rate"],
            import_tariff_rate=row["import_tariff_rate"],
            created_at=datetime.fromisoformat(row["created_at"]),
        )

    def list_communities(self) -> list[str]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT community_id FROM communities ORDER BY community_id"
            ).fetchall()
        return [row["community_id"] for row in rows]

    def get_governance_kind(self, community_id: str) -> str | None:
        community = self.get_community(community_id)
        return community.governance_kind if community else None

    def set_governance_kind(self, community_id: str, governance_kind: str) -> None:
        self._update_community(
            community_id, governance_kind=normalize_governance_kind(governance_kind)
        )

    def set_successor(self, community_id: str, successor_id: str) -> None:
        self._update_community(community_id, successor_id=successor_id)

    def set_announcement(self, community_id: str, title: str, content: str) -> None:
        self._update_community(
            community_id, announcement_title=title, announcement_content=content
        )

    def set_work_tax_rate(self, community_id: str, rate: float) -> None:
        self._update_community(community_id, work_tax_rate=rate)

    def set_import_tariff_rate(self, community_id: str, rate: float) -> None:
        self._update_community(community_id, import_tariff_rate=rate)

    @retry_on_sqlite_lock()
    def _update_community(self, community_id: str, **fields: object) -> None:
        assignments = ", ".join(f"{column} = ?" for column in fields)
        with self._connect() as conn:
            cursor = conn.execute(
                f"UPDATE communities SET {assignments} WHERE community_id = ?",
                (*fields.values(), community_id),
            )
            conn.commit()
        if cursor.rowcount != 1:
            raise UnknownCommunity(community_id)
        logger.info("Community updated", community_id=community_id, fields=sorted(fields))

    # Members

    @retry_on_sqlite_lock()
    def add_member(self, community_id: str, actor_id: str, rank: int) -> Member:
        """Add a member, or change the rank of an existing one"""
        if self.get_community(community_id) is None:
            raise UnknownCommunity(community_id)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO members (community_id, actor_id, rank) VALUES (?, ?, ?)
                ON CONFLICT(community_id, actor_id) DO UPDATE SET rank = excluded.rank
                """,
                (community_id, actor_id, rank),
            )
            conn.commit()
        return Member(community_id=community_id, actor_id=actor_id, rank=rank)

    @retry_on_sqlite_lock()
    def remove_member(self, community_id: str, actor_id: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute(
                "DELETE FROM members WHERE community_id = ? AND actor_id = ?",
                (community_id, actor_id),
            )
            conn.commit()
        return cursor.rowcount == 1

    def list_members(self, community_id: str) -> list[Member]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT community_id, actor_id, rank FROM members "
                "WHERE community_id = ? ORDER BY rank, actor_id",
                (community_id,),
            ).fetchall()
        return [Member(**dict(row)) for row in rows]

    def get_rank(self, community_id: str, actor_id: str) -> int | None:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT rank FROM members WHERE community_id = ? AND actor_id = ?",
                (community_id, actor_id),
            ).fetchone()
        return row["rank"] if row else None

    def count_members(self, community_id: str, ranks: Iterable[int]) -> int:
        ranks = list(ranks)
        if not ranks:
            return 0
        placeholders = ", ".join("?" for _ in ranks)
        with self._connect() as conn:
            row = conn.execute(
                f"SELECT COUNT(*) FROM members WHERE community_id = ? AND rank IN ({placeholders})",
                (community_id, *ranks),
            ).fetchone()
        return row[0]

    # Conflicts

    @retry_on_sqlite_lock()
    def open_conflict(
        self,
        initiator_community_id: str,
        target_community_id: str,
        idempotency_key: str,
    ) -> str:
        """Open a conflict; repeating the idempotency key returns the same id"""
        if self.get_community(target_community_id) is None:
            raise UnknownCommunity(target_community_id)
        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO conflicts (
                    conflict_id, initiator_community_id, target_community_id,
                    idempotency_key, opened_at
                ) VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(idempotency_key) DO NOTHING
                """,
                (
                    generate_id("conflict"),
                    initiator_community_id,
                    target_community_id,
                    idempotency_key,
                    to_db_time(self.time_provider.now()),
                ),
            )
            conn.commit()
            row = conn.execute(
                "SELECT conflict_id FROM conflicts WHERE idempotency_key = ?",
                (idempotency_key,),
            ).fetchone()
        logger.info(
            "Conflict opened",
            conflict_id=row["conflict_id"],
            initiator_community_id=initiator_community_id,
            target_community_id=target_community_id,
        )
        return row["conflict_id"]

    def list_conflicts(self, community_id: str | None = None) -> list[Conflict]:
        query = "SELECT * FROM conflicts"
        params: tuple[str, ...] = ()
        if community_id is not None:
            query += " WHERE initiator_community_id = ? OR target_community_id = ?"
            params = (community_id, community_id)
        query += " ORDER BY opened_at"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            Conflict(
                conflict_id=row["conflict_id"],
                initiator_community_id=row["initiator_community_id"],
                target_community_id=row["target_community_id"],
                idempotency_key=row["idempotency_key"],
                opened_at=from_db_time(row["opened_at"]),
            )
            for row in rows
        ]
