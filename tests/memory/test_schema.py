"""Tests for schema migration."""

import sqlite3
from pathlib import Path

import pytest

from mimir.memory import MemoryStore
from mimir.memory.schema import FACT_COLUMN_MIGRATIONS, fact_columns, migrate

LEGACY_SCHEMA = """
CREATE TABLE facts (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    category TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    source TEXT,
    confidence REAL DEFAULT 1.0,
    created TEXT NOT NULL,
    updated TEXT NOT NULL,
    UNIQUE(category, key)
);
INSERT INTO facts (category, key, value, created, updated)
VALUES ('person', 'cory.name', 'Cory the gardener', '2024-01-01T00:00:00.000Z',
        '2024-01-01T00:00:00.000Z');
"""


@pytest.fixture
def legacy_db(tmp_path: Path) -> Path:
    """A database created before scope, tier and the FTS index existed."""
    db_path = tmp_path / "legacy.db"
    conn = sqlite3.connect(db_path)
    conn.executescript(LEGACY_SCHEMA)
    conn.close()
    return db_path


class TestMigrate:
    """Tests for migrating older stores."""

    def test_fresh_database(self, tmp_path: Path):
        """A fresh database gets every table and the FTS index."""
        conn = sqlite3.connect(tmp_path / "fresh.db", isolation_level=None)
        report = migrate(conn)
        assert report.columns_added == []
        assert report.fts_created is True
        assert report.fts_rebuilt is True
        conn.close()

    def test_legacy_columns_added_in_order(self, legacy_db: Path):
        """Missing columns are added in declaration order."""
        conn = sqlite3.connect(legacy_db, isolation_level=None)
        report = migrate(conn)
        assert report.columns_added == [m.name for m in FACT_COLUMN_MIGRATIONS]
        assert {"scope", "tier", "expires_at", "last_verified", "source_type"} <= fact_columns(
            conn
        )
        conn.close()

    def test_legacy_rows_backfilled(self, legacy_db: Path):
        """Existing rows get default scope, tier and source_type."""
        store = MemoryStore(legacy_db)
        store.init_db()
        fact = store.get_one("person", "cory.name")
        assert fact.scope == "global"
        assert fact.tier == "long-term"
        assert fact.source_type == "manual"
        store.close()

    def test_legacy_rows_searchable_after_migration(self, legacy_db: Path):
        """Rows written before the FTS index existed are found by search."""
        store = MemoryStore(legacy_db)
        store.init_db()
        results = store.search("gardener")
        assert [f.key for f in results] == ["cory.name"]
        store.close()

    def test_backfills_blank_values(self, tmp_path: Path):
        """Blank enum values are backfilled on open."""
        store = MemoryStore(tmp_path / "blank.db")
        store.init_db()
        store._get_connection().execute(
            """
            INSERT INTO facts (category, key, value, created, updated, scope, tier, source_type)
            VALUES ('a', 'b', 'c', 'x', 'x', '  ', NULL, '')
            """
        )
        store.init_db()
        fact = store.get_one("a", "b")
        assert (fact.scope, fact.tier, fact.source_type) == ("global", "long-term", "manual")
        store.close()

    def test_migrate_twice_is_noop(self, legacy_db: Path):
        """A second migration adds nothing and does not rebuild."""
        conn = sqlite3.connect(legacy_db, isolation_level=None)
        migrate(conn)
        report = migrate(conn)
        assert report.columns_added == []
        assert report.fts_created is False
        assert report.fts_rebuilt is False
        conn.close()
