"""Merge extracted fact candidates into the store.

Each candidate is compared with the stored fact at the same (category, key)
and classified before anything is written:

* no stored fact            -> INSERT
* stored fact, same value   -> TOUCH  (only ``last_verified`` moves)
* stored fact, other value  -> UPDATE (``source`` is kept from the stored row)
"""

import json
import logging
from enum import Enum

from .models import (
    SESSION_CATEGORY,
    ExtractedFact,
    Fact,
    MergeCounts,
    SessionSummary,
    clamp_confidence,
)
from .store import MemoryStore
from .ttl import ttl_to_expires_at

logger = logging.getLogger(__name__)

SUMMARY_CONFIDENCE = 0.9

INSERT_SQL = """
    INSERT INTO facts (
        category, key, value, source, confidence, created, updated,
        scope, tier, expires_at, last_verified, source_type
    )
    VALUES (?, ?, ?, NULL, ?, ?, ?, ?, ?, ?, ?, ?)
"""

UPDATE_SQL = """
    UPDATE facts
    SET value = ?, confidence = ?, scope = ?, tier = ?, expires_at = ?,
        source_type = ?, updated = ?
    WHERE category = ? AND key = ?
"""

TOUCH_SQL = "UPDATE facts SET last_verified = ? WHERE category = ? AND key = ?"


class Decision(Enum):
    """What merging a candidate does to the store."""

    INSERT = "insert"
    UPDATE = "update"
    TOUCH = "touch"


def decide(existing: Fact | None, candidate: ExtractedFact) -> Decision:
    """Classify a candidate against the stored fact with the same identity."""
    if existing is None:
        return Decision.INSERT
    if existing.value == candidate.value:
        return Decision.TOUCH
    return Decision.UPDATE


def plan_merge(
    store: MemoryStore, candidates: list[ExtractedFact]
) -> list[tuple[Decision, ExtractedFact]]:
    """Decide the outcome of every candidate without writing anything."""
    return [(decide(store.get_one(c.category, c.key), c), c) for c in candidates]


def apply_extracted_facts(store: MemoryStore, candidates: list[ExtractedFact]) -> MergeCounts:
    """Apply every candidate inside one transaction.

    If anything fails the transaction rolls back and the store is left
    exactly as it was.
    """
    counts = MergeCounts()
    with store.transaction() as conn:
        now_dt = store.clock.now()
        now = store.now()
        for decision, candidate in plan_merge(store, candidates):
            if decision is Decision.INSERT:
                conn.execute(
                    INSERT_SQL,
                    (
                        candidate.category,
                        candidate.key,
                        candidate.value,
                        clamp_confidence(candidate.confidence),
                        now,
                        now,
                        candidate.scope,
                        candidate.tier,
                        ttl_to_expires_at(candidate.ttl, now_dt),
                        now,
                        candidate.source_type,
                    ),
                )
                counts.inserted += 1
            elif decision is Decision.TOUCH:
                conn.execute(TOUCH_SQL, (now, candidate.category, candidate.key))
                counts.skipped += 1
            else:
                conn.execute(
                    UPDATE_SQL,
                    (
                        candidate.value,
                        clamp_confidence(candidate.confidence),
                        candidate.scope,
                        candidate.tier,
                        ttl_to_expires_at(candidate.ttl, now_dt),
                        candidate.source_type,
                        now,
                        candidate.category,
                        candidate.key,
                    ),
                )
                counts.updated += 1

    logger.info(
        "Merged %d candidate(s): inserted=%d updated=%d skipped=%d",
        len(candidates),
        counts.inserted,
        counts.updated,
        counts.skipped,
    )
    return counts


def summary_key(store: MemoryStore) -> str:
    """Timestamp-derived key for a session summary, e.g. ``summary.2025-01-31-14-05``."""
    return store.clock.now().strftime("summary.%Y-%m-%d-%H-%M")


def store_session_summary(store: MemoryStore, summary: SessionSummary) -> str | None:
    """Persist a non-empty session summary as a long-term fact.

    Returns:
        The fact key, or None if the summary was empty and nothing was stored.
    """
    if summary.is_empty():
        return None

    key = summary_key(store)
    store.upsert(
        Fact(
            category=SESSION_CATEGORY,
            key=key,
            value=json.dumps(summary.to_dict()),
            confidence=SUMMARY_CONFIDENCE,
            scope="global",
            tier="long-term",
            source_type="inferred",
        )
    )
    return key
