"""Typed relations between facts and one-hop traversal."""

from __future__ import annotations

from typing import TYPE_CHECKING

from .models import FactGraph, GraphEdge, Relation
from .validation import parse_relation_type

if TYPE_CHECKING:
    from .store import MemoryStore

NEIGHBORS_SQL = """
    SELECT r.relation_type, 'outgoing' AS direction, t.*
    FROM relations r
    JOIN facts t ON t.id = r.target_fact_id
    WHERE r.source_fact_id = :id
    UNION ALL
    SELECT r.relation_type, 'incoming' AS direction, s.*
    FROM relations r
    JOIN facts s ON s.id = r.source_fact_id
    WHERE r.target_fact_id = :id
    ORDER BY relation_type, direction, category, key
"""


class RelationGraph:
    """Links facts with typed, directed edges.

    Edges are unique per ``(source, target, relation_type)``. Deleting a fact
    deletes its edges through the schema's ``ON DELETE CASCADE``.
    """

    def __init__(self, store: MemoryStore) -> None:
        self.store = store

    def link(self, from_ref: str, to_ref: str, relation_type: str = "related_to") -> Relation:
        """Create an edge between two existing facts; re-linking is a no-op.

        Raises:
            UserError: For malformed references or unknown relation types.
            NotFoundError: If either fact does not exist.
        """
        relation_type = parse_relation_type(relation_type)
        source = self.store.get_by_ref(from_ref)
        target = self.store.get_by_ref(to_ref)

        conn = self.store._get_connection()
        conn.execute(
            """
            INSERT INTO relations (source_fact_id, target_fact_id, relation_type, created)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(source_fact_id, target_fact_id, relation_type) DO NOTHING
            """,
            (source.id, target.id, relation_type, self.store.now()),
        )
        row = conn.execute(
            """
            SELECT * FROM relations
            WHERE source_fact_id = ? AND target_fact_id = ? AND relation_type = ?
            """,
            (source.id, target.id, relation_type),
        ).fetchone()
        return Relation(
            id=row["id"],
            source_id=row["source_fact_id"],
            target_id=row["target_fact_id"],
            relation_type=row["relation_type"],
            created=row["created"],
        )

    def neighbors(self, ref: str) -> FactGraph:
        """Return a fact and every fact one hop away, in either direction."""
        root = self.store.get_by_ref(ref)
        rows = self.store._get_connection().execute(NEIGHBORS_SQL, {"id": root.id}).fetchall()
        edges = [
            GraphEdge(
                direction=row["direction"],
                relation_type=row["relation_type"],
                fact=self.store._row_to_fact(row),
            )
            for row in rows
        ]
        return FactGraph(root=root, edges=edges)

    def relations(self) -> list[Relation]:
        rows = self.store._get_connection().execute(
            "SELECT * FROM relations ORDER BY id"
        ).fetchall()
        return [
            Relation(
                id=row["id"],
                source_id=row["source_fact_id"],
                target_id=row["target_fact_id"],
                relation_type=row["relation_type"],
                created=row["created"],
            )
            for row in rows
        ]
