"""Self-migrating SQLite schema for the fact store.

Migrations are additive only: a fixed, ordered list of columns is added when
missing, legacy rows are backfilled, and the full-text index is rebuilt
whenever it may have fallen behind. Every step is idempotent, so opening a
store from any intermediate state converges on the current schema.
"""

import logging
import sqlite3
from dataclasses import dataclass, field

logger = logging.getLogger(__name__)

BASE_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS facts (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    category      TEXT NOT NULL,
    key           TEXT NOT NULL,
    value         TEXT NOT NULL,
    source        TEXT,
    confidence    REAL DEFAULT 1.0,
    created       TEXT NOT NULL,
    updated       TEXT NOT NULL,
    scope         TEXT DEFAULT 'global',
    tier          TEXT DEFAULT 'long-term',
    expires_at    TEXT,
    last_verified TEXT,
    source_type   TEXT DEFAULT 'manual',
    UNIQUE(category, key)
);

CREATE INDEX IF NOT EXISTS idx_facts_category ON facts(category);
CREATE INDEX IF NOT EXISTS idx_facts_key ON facts(key);
CREATE INDEX IF NOT EXISTS idx_facts_updated ON facts(updated);

CREATE TABLE IF NOT EXISTS relations (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    source_fact_id INTEGER NOT NULL,
    target_fact_id INTEGER NOT NULL,
    relation_type  TEXT NOT NULL,
    created        TEXT NOT NULL,
    FOREIGN KEY (source_fact_id) REFERENCES facts(id) ON DELETE CASCADE,
    FOREIGN KEY (target_fact_id) REFERENCES facts(id) ON DELETE CASCADE,
    UNIQUE(source_fact_id, target_fact_id, relation_type)
);

CREATE INDEX IF NOT EXISTS idx_relations_source ON relations(source_fact_id);
CREATE INDEX IF NOT EXISTS idx_relations_target ON relations(target_fact_id);

CREATE TABLE IF NOT EXISTS extraction_log (
    id           INTEGER PRIMARY KEY AUTOINCREMENT,
    file_path    TEXT NOT NULL,
    content_hash TEXT NOT NULL,
    engine       TEXT NOT NULL,
    model        TEXT NOT NULL,
    facts        INTEGER NOT NULL DEFAULT 0,
    inserted     INTEGER NOT NULL DEFAULT 0,
    updated      INTEGER NOT NULL DEFAULT 0,
    skipped      INTEGER NOT NULL DEFAULT 0,
    duration_ms  INTEGER NOT NULL DEFAULT 0,
    status       TEXT NOT NULL,
    error        TEXT,
    created      TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_extraction_log_file ON extraction_log(file_path, content_hash);
"""


@dataclass(frozen=True)
class ColumnMigration:
    """A column that older stores may lack, and how to add it."""

    name: str
    ddl: str


FACT_COLUMN_MIGRATIONS = (
    ColumnMigration("scope", "ALTER TABLE facts ADD COLUMN scope TEXT DEFAULT 'global'"),
    ColumnMigration("tier", "ALTER TABLE facts ADD COLUMN tier TEXT DEFAULT 'long-term'"),
    ColumnMigration("expires_at", "ALTER TABLE facts ADD COLUMN expires_at TEXT"),
    ColumnMigration("last_verified", "ALTER TABLE facts ADD COLUMN last_verified TEXT"),
    ColumnMigration("source_type", "ALTER TABLE facts ADD COLUMN source_type TEXT DEFAULT 'manual'"),
)

POST_MIGRATION_INDEXES_SQL = """
CREATE INDEX IF NOT EXISTS idx_facts_scope ON facts(scope);
CREATE INDEX IF NOT EXISTS idx_facts_tier ON facts(tier);
CREATE INDEX IF NOT EXISTS idx_facts_expires_at ON facts(expires_at);
"""

BACKFILL_SQL = """
UPDATE facts SET scope = 'global' WHERE scope IS NULL OR trim(scope) = '';
UPDATE facts SET tier = 'long-term' WHERE tier IS NULL OR trim(tier) = '';
UPDATE facts SET source_type = 'manual' WHERE source_type IS NULL OR trim(source_type) = '';
"""

FTS_SQL = """
CREATE VIRTUAL TABLE IF NOT EXISTS facts_fts USING fts5(
    key, value, content='facts', content_rowid='id'
);

CREATE TRIGGER IF NOT EXISTS facts_ai AFTER INSERT ON facts BEGIN
    INSERT INTO facts_fts(rowid, key, value) VALUES (new.id, new.key, new.value);
END;

CREATE TRIGGER IF NOT EXISTS facts_ad AFTER DELETE ON facts BEGIN
    INSERT INTO facts_fts(facts_fts, rowid, key, value)
    VALUES ('delete', old.id, old.key, old.value);
END;

CREATE TRIGGER IF NOT EXISTS facts_au AFTER UPDATE ON facts BEGIN
    INSERT INTO facts_fts(facts_fts, rowid, key, value)
    VALUES ('delete', old.id, old.key, old.value);
    INSERT INTO facts_fts(rowid, key, value) VALUES (new.id, new.key, new.value);
END;
"""


@dataclass
class MigrationReport:
    """What a call to :func:`migrate` changed."""

    columns_added: list[str] = field(default_factory=list)
    fts_created: bool = False
    fts_rebuilt: bool = False


def table_exists(conn: sqlite3.Connection, name: str) -> bool:
    row = conn.execute(
        "SELECT 1 FROM sqlite_master WHERE type = 'table' AND name = ?", (name,)
    ).fetchone()
    return row is not None


def fact_columns(conn: sqlite3.Connection) -> set[str]:
    return {row[1] for row in conn.execute("PRAGMA table_info(facts)").fetchall()}


def migrate_fact_columns(conn: sqlite3.Connection) -> list[str]:
    """Add every missing column from FACT_COLUMN_MIGRATIONS, in order."""
    existing = fact_columns(conn)
    added = []
    for migration in FACT_COLUMN_MIGRATIONS:
        if migration.name not in existing:
            conn.execute(migration.ddl)
            added.append(migration.name)
    return added


def backfill_facts(conn: sqlite3.Connection) -> None:
    conn.executescript(BACKFILL_SQL)


def rebuild_fts_index(conn: sqlite3.Connection) -> None:
    """Regenerate every posting in the full-text index from the facts table."""
    conn.execute("INSERT INTO facts_fts(facts_fts) VALUES ('rebuild')")


def migrate(conn: sqlite3.Connection) -> MigrationReport:
    """Bring the database up to the current schema.

    Safe to call on every open. Any DDL error propagates and aborts the open.
    """
    report = MigrationReport()

    conn.executescript(BASE_SCHEMA_SQL)
    had_fts = table_exists(conn, "facts_fts")

    report.columns_added = migrate_fact_columns(conn)
    conn.executescript(POST_MIGRATION_INDEXES_SQL)
    backfill_facts(conn)

    conn.executescript(FTS_SQL)
    report.fts_created = not had_fts
    if report.fts_created or report.columns_added:
        rebuild_fts_index(conn)
        report.fts_rebuilt = True

    if report.columns_added:
        logger.info("Migrated fact columns: %s", ", ".join(report.columns_added))
    if report.fts_rebuilt:
        logger.info("Rebuilt full-text index")

    return report
