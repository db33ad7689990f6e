"""Full-text search over fact keys and values.

The FTS5 index is maintained by triggers (see ``schema.FTS_SQL``), so every
insert, update and delete on ``facts`` is reflected in the same transaction.
"""

import logging
import sqlite3

from ..errors import UserError
from .schema import rebuild_fts_index

logger = logging.getLogger(__name__)

FTS_SEARCH_SQL = """
    SELECT f.*
    FROM facts_fts
    JOIN facts f ON f.id = facts_fts.rowid
    WHERE facts_fts MATCH ?
    ORDER BY bm25(facts_fts), f.updated DESC
"""

SUBSTRING_SEARCH_SQL = """
    SELECT * FROM facts
    WHERE instr(lower(key), lower(?)) > 0 OR instr(lower(value), lower(?)) > 0
    ORDER BY updated DESC
"""


def to_fts_query(query: str) -> str:
    """Turn free text into an FTS5 query of quoted prefix terms ANDed together.

    Raises:
        UserError: If the query has no terms.
    """
    terms = [term.replace('"', '""') for term in str(query).split()]
    terms = [f'"{term}"*' for term in terms if term]
    if not terms:
        raise UserError("Search query cannot be empty")
    return " AND ".join(terms)


def search_index(conn: sqlite3.Connection, query: str) -> list[sqlite3.Row]:
    """Ranked search through the FTS index only."""
    fts_query = to_fts_query(query)
    try:
        return conn.execute(FTS_SEARCH_SQL, (fts_query,)).fetchall()
    except sqlite3.OperationalError as e:
        # Punctuation-only terms can trip the FTS5 query parser.
        logger.debug("FTS query %r rejected: %s", fts_query, e)
        return []


def search_substring(conn: sqlite3.Connection, query: str) -> list[sqlite3.Row]:
    """Case-insensitive literal substring match on key and value."""
    needle = str(query).strip()
    return conn.execute(SUBSTRING_SEARCH_SQL, (needle, needle)).fetchall()


def search(conn: sqlite3.Connection, query: str) -> list[sqlite3.Row]:
    """Search facts, falling back to substring matching when FTS finds nothing."""
    rows = search_index(conn, query)
    if rows:
        return rows
    logger.debug("No FTS hits for %r, falling back to substring match", query)
    return search_substring(conn, query)


def rebuild_index(conn: sqlite3.Connection) -> None:
    rebuild_fts_index(conn)
