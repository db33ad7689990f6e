"""Record of extraction attempts, used to skip unchanged files."""

import hashlib
from dataclasses import replace

from .models import ExtractionLogEntry
from .store import MemoryStore


def content_hash(content: str) -> str:
    """SHA-256 fingerprint of a file's text."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def was_already_extracted(store: MemoryStore, file_path: str, content: str) -> bool:
    """True if this exact content was extracted successfully before."""
    row = store._get_connection().execute(
        """
        SELECT 1 FROM extraction_log
        WHERE file_path = ? AND content_hash = ? AND status = 'ok'
        LIMIT 1
        """,
        (file_path, content_hash(content)),
    ).fetchone()
    return row is not None


def log_extraction(store: MemoryStore, entry: ExtractionLogEntry) -> ExtractionLogEntry:
    """Append an entry to the extraction log."""
    created = store.now()
    cursor = store._get_connection().execute(
        """
        INSERT INTO extraction_log (
            file_path, content_hash, engine, model, facts, inserted, updated,
            skipped, duration_ms, status, error, created
        )
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            entry.file_path,
            entry.content_hash,
            entry.engine,
            entry.model,
            entry.facts,
            entry.inserted,
            entry.updated,
            entry.skipped,
            entry.duration_ms,
            entry.status,
            entry.error,
            created,
        ),
    )
    return replace(entry, id=cursor.lastrowid, created=created)


def recent_extractions(store: MemoryStore, limit: int = 20) -> list[ExtractionLogEntry]:
    rows = store._get_connection().execute(
        "SELECT * FROM extraction_log ORDER BY id DESC LIMIT ?", (limit,)
    ).fetchall()
    return [
        ExtractionLogEntry(
            id=row["id"],
            file_path=row["file_path"],
            content_hash=row["content_hash"],
            engine=row["engine"],
            model=row["model"],
            status=row["status"],
            facts=row["facts"],
            inserted=row["inserted"],
            updated=row["updated"],
            skipped=row["skipped"],
            duration_ms=row["duration_ms"],
            error=row["error"],
            created=row["created"],
        )
        for row in rows
    ]
