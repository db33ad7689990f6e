"""SQLite storage for memory facts."""

import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from ..clock import Clock, SystemClock, to_iso
from ..errors import NotFoundError, UserError
from . import search as fts
from .models import SCOPES, SOURCE_TYPES, TIERS, Fact, clamp_confidence
from .schema import MigrationReport, migrate
from .validation import parse_fact_ref, project_tag

logger = logging.getLogger(__name__)

DEFAULT_LIMIT = 100

UPSERT_SQL = """
    INSERT INTO facts (
        category, key, value, source, confidence, created, updated,
        scope, tier, expires_at, last_verified, source_type
    )
    VALUES (
        :category, :key, :value, :source, :confidence, :created, :updated,
        :scope, :tier, :expires_at, :last_verified, :source_type
    )
    ON CONFLICT(category, key) DO UPDATE SET
        value = excluded.value,
        source = excluded.source,
        confidence = excluded.confidence,
        scope = excluded.scope,
        tier = excluded.tier,
        expires_at = excluded.expires_at,
        last_verified = COALESCE(excluded.last_verified, facts.last_verified),
        source_type = excluded.source_type,
        updated = excluded.updated
"""


class MemoryStore:
    """Persistent storage for facts using SQLite.

    Facts are unique per ``(category, key)``; writing to an existing pair
    merges into the stored row. The schema migrates itself on ``init_db``.
    """

    def __init__(self, db_path: Path, clock: Clock | None = None) -> None:
        """Initialize the store with a database path.

        Args:
            db_path: Path to the SQLite database file.
            clock: Time source for timestamps and expiry checks.
        """
        self.db_path = Path(db_path)
        self.clock = clock or SystemClock()
        self._conn: sqlite3.Connection | None = None

    def _get_connection(self) -> sqlite3.Connection:
        """Get or create the database connection."""
        if self._conn is None:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            # Autocommit mode: multi-statement atomicity goes through transaction().
            self._conn = sqlite3.connect(self.db_path, isolation_level=None)
            self._conn.row_factory = sqlite3.Row
            self._conn.execute("PRAGMA journal_mode = WAL")
            self._conn.execute("PRAGMA foreign_keys = ON")
            self._conn.execute("PRAGMA busy_timeout = 5000")
        return self._conn

    def init_db(self) -> MigrationReport:
        """Create or upgrade the schema. Idempotent."""
        return migrate(self._get_connection())

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def now(self) -> str:
        return to_iso(self.clock.now())

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run a block atomically; nested uses join the outer transaction."""
        conn = self._get_connection()
        if conn.in_transaction:
            yield conn
            return

        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")

    # ------------------------------------------------------------------ #
    # Writes
    # ------------------------------------------------------------------ #

    def upsert(self, fact: Fact) -> Fact:
        """Insert a fact or merge it into the row with the same (category, key).

        ``last_verified`` is only overwritten when the incoming fact carries one.

        Raises:
            UserError: If scope, tier or source_type is not a known value.
        """
        self._check_enums(fact)
        ts = self.now()
        self._get_connection().execute(
            UPSERT_SQL,
            {
                "category": fact.category,
                "key": fact.key,
                "value": fact.value,
                "source": fact.source,
                "confidence": clamp_confidence(fact.confidence),
                "created": ts,
                "updated": ts,
                "scope": fact.scope,
                "tier": fact.tier,
                "expires_at": fact.expires_at,
                "last_verified": fact.last_verified,
                "source_type": fact.source_type,
            },
        )
        stored = self.get_one(fact.category, fact.key)
        if stored is None:
            raise sqlite3.DatabaseError(f"Upserted fact vanished: {fact.ref}")
        return stored

    def import_facts(self, facts: list[Fact]) -> int:
        """Upsert many facts in a single transaction."""
        with self.transaction():
            for fact in facts:
                self.upsert(fact)
        return len(facts)

    def remove(self, category: str, key: str) -> bool:
        """Delete a fact (and, by cascade, its relations).

        Returns:
            True if a fact was deleted, False otherwise.
        """
        cursor = self._get_connection().execute(
            "DELETE FROM facts WHERE category = ? AND key = ?", (category, key)
        )
        return cursor.rowcount > 0

    def expire(self) -> int:
        """Delete working-tier facts whose ``expires_at`` has passed.

        Returns:
            Number of facts removed.
        """
        cursor = self._get_connection().execute(
            """
            DELETE FROM facts
            WHERE tier = 'working' AND expires_at IS NOT NULL AND expires_at <= ?
            """,
            (self.now(),),
        )
        if cursor.rowcount:
            logger.info("Expired %d working-memory fact(s)", cursor.rowcount)
        return cursor.rowcount

    def prune(self, before: str | None = None, confidence_below: float | None = None) -> int:
        """Delete facts matching all given filters.

        Args:
            before: Delete facts updated strictly before this ISO timestamp.
            confidence_below: Delete facts with confidence strictly below this.

        Returns:
            Number of facts removed.

        Raises:
            UserError: If no filter is given.
        """
        where = []
        params: list[Any] = []
        if before is not None:
            where.append("updated < ?")
            params.append(before)
        if confidence_below is not None:
            where.append("confidence < ?")
            params.append(clamp_confidence(confidence_below))
        if not where:
            raise UserError("Provide at least one filter: --before or --confidence-below")

        cursor = self._get_connection().execute(
            f"DELETE FROM facts WHERE {' AND '.join(where)}", params
        )
        return cursor.rowcount

    # ------------------------------------------------------------------ #
    # Reads
    # ------------------------------------------------------------------ #

    def get(self, category: str, key: str | None = None) -> list[Fact]:
        """Get one fact by key, or every fact in a category ordered by key."""
        conn = self._get_connection()
        if key is not None:
            rows = conn.execute(
                "SELECT * FROM facts WHERE category = ? AND key = ?", (category, key)
            ).fetchall()
        else:
            rows = conn.execute(
                "SELECT * FROM facts WHERE category = ? ORDER BY key", (category,)
            ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def get_one(self, category: str, key: str) -> Fact | None:
        facts = self.get(category, key)
        return facts[0] if facts else None

    def get_by_ref(self, ref: str) -> Fact:
        """Resolve a ``category/key`` reference.

        Raises:
            UserError: If the reference is malformed.
            NotFoundError: If no such fact exists.
        """
        category, key = parse_fact_ref(ref)
        fact = self.get_one(category, key)
        if fact is None:
            raise NotFoundError(f"Fact not found: {category}/{key}")
        return fact

    def list_facts(
        self,
        category: str | None = None,
        scope: str | None = None,
        tier: str | None = None,
        limit: int = DEFAULT_LIMIT,
        recent: bool = False,
    ) -> list[Fact]:
        """List facts matching all given filters."""
        where = []
        params: list[Any] = []
        if category:
            where.append("category = ?")
            params.append(category)
        if scope:
            where.append("scope = ?")
            params.append(scope)
        if tier:
            where.append("tier = ?")
            params.append(tier)

        where_sql = f"WHERE {' AND '.join(where)}" if where else ""
        order_sql = "ORDER BY updated DESC" if recent else "ORDER BY category, key"
        rows = self._get_connection().execute(
            f"SELECT * FROM facts {where_sql} {order_sql} LIMIT ?", (*params, limit)
        ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def search(self, query: str) -> list[Fact]:
        """Ranked full-text search with a substring fallback."""
        return [self._row_to_fact(row) for row in fts.search(self._get_connection(), query)]

    def rebuild_search_index(self) -> None:
        fts.rebuild_index(self._get_connection())

    def working(self) -> list[Fact]:
        """Working-tier facts, soonest expiry first, no-TTL facts last."""
        rows = self._get_connection().execute(
            """
            SELECT * FROM facts
            WHERE tier = 'working'
            ORDER BY CASE WHEN expires_at IS NULL THEN 1 ELSE 0 END,
                     expires_at ASC, updated DESC
            """
        ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def select_for_injection(
        self,
        limit: int = DEFAULT_LIMIT,
        scope: str | None = None,
        project: str | None = None,
        include_working: bool = False,
    ) -> list[Fact]:
        """Pick unexpired facts for prompt injection, working memory first."""
        where = ["(expires_at IS NULL OR expires_at > ?)"]
        params: list[Any] = [self.now()]
        if scope:
            where.append("scope = ?")
            params.append(scope)
        if not include_working:
            where.append("tier = 'long-term'")
        if project:
            where.append("(scope = 'global' OR (scope = 'project' AND instr(source, ?) > 0))")
            params.append(project_tag(project))

        rows = self._get_connection().execute(
            f"""
            SELECT * FROM facts
            WHERE {' AND '.join(where)}
            ORDER BY CASE WHEN tier = 'working' THEN 0 ELSE 1 END, updated DESC
            LIMIT ?
            """,
            (*params, limit),
        ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def export_all(self) -> list[Fact]:
        rows = self._get_connection().execute(
            "SELECT * FROM facts ORDER BY category, key"
        ).fetchall()
        return [self._row_to_fact(row) for row in rows]

    def stats(self) -> dict[str, Any]:
        """Counts by category, scope and tier plus size information."""
        conn = self._get_connection()

        def grouped(column: str) -> dict[str, int]:
            rows = conn.execute(
                f"SELECT {column} AS name, COUNT(*) AS n FROM facts GROUP BY {column} ORDER BY {column}"
            ).fetchall()
            return {row["name"]: row["n"] for row in rows}

        return {
            "db_path": str(self.db_path),
            "db_size": self.db_path.stat().st_size if self.db_path.exists() else 0,
            "total": conn.execute("SELECT COUNT(*) FROM facts").fetchone()[0],
            "last_updated": conn.execute("SELECT MAX(updated) FROM facts").fetchone()[0],
            "by_category": grouped("category"),
            "by_scope": grouped("scope"),
            "by_tier": grouped("tier"),
        }

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #

    @staticmethod
    def _check_enums(fact: Fact) -> None:
        if fact.scope not in SCOPES:
            raise UserError(f"Scope must be one of: {', '.join(SCOPES)}")
        if fact.tier not in TIERS:
            raise UserError(f"Tier must be one of: {', '.join(TIERS)}")
        if fact.source_type not in SOURCE_TYPES:
            raise UserError(f"Source type must be one of: {', '.join(SOURCE_TYPES)}")

    @staticmethod
    def _row_to_fact(row: sqlite3.Row) -> Fact:
        """Convert a database row to a Fact."""
        confidence = row["confidence"]
        return Fact(
            id=row["id"],
            category=row["category"],
            key=row["key"],
            value=row["value"],
            source=row["source"],
            confidence=1.0 if confidence is None else confidence,
            scope=row["scope"] or "global",
            tier=row["tier"] or "long-term",
            expires_at=row["expires_at"],
            last_verified=row["last_verified"],
            source_type=row["source_type"] or "manual",
            created=row["created"],
            updated=row["updated"],
        )


def open_store(db_path: Path, clock: Clock | None = None) -> MemoryStore:
    """Open a store at ``db_path``, migrating its schema first."""
    store = MemoryStore(db_path, clock=clock)
    store.init_db()
    return store
