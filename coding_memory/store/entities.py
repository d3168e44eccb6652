"""
Entity graph extracted from observations.

Nodes are named entities (technologies, libraries, files, ...) keyed by
``(name, entity_type)``; edges are typed relationships recorded against the
observation that asserted them.  Both are stored in SQLite.  Traversal is
a bounded breadth-first walk; :meth:`EntityGraph.neighborhood` hands the
result to networkx for callers that want graph algorithms.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import deque
from typing import Optional

import networkx as nx

from ..errors import ValidationError
from ..models import Entity, EntityRelation, EntityType, new_id, utc_now
from .database import Database
from .observations import fts_query

logger = logging.getLogger(__name__)

MAX_TRAVERSAL_DEPTH = 2
MAX_TRAVERSAL_NODES = 100


def _row_to_entity(row) -> Entity:
    return Entity(
        id=row["id"],
        name=row["name"],
        entity_type=row["entity_type"],
        first_seen_at=row["first_seen_at"],
        last_seen_at=row["last_seen_at"],
        mention_count=row["mention_count"],
    )


def _row_to_relation(row) -> EntityRelation:
    return EntityRelation(
        id=row["id"],
        source_entity_id=row["source_entity_id"],
        target_entity_id=row["target_entity_id"],
        relationship=row["relationship"],
        observation_id=row["observation_id"],
        created_at=row["created_at"],
    )


class EntityGraph:
    """
    Persistent entity/relationship graph.

    Parameters
    ----------
    db:
        Shared database handle.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    def upsert_entity(self, name: str, entity_type: str) -> Entity:
        """
        Insert an entity, or bump its mention count if it already exists.

        The ``(name, entity_type)`` pair is unique; a repeat sighting keeps
        the original id and ``first_seen_at`` and refreshes ``last_seen_at``.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Entity name must not be empty")
        if entity_type not in EntityType.ALL:
            raise ValidationError(
                f"Unknown entity type: {entity_type}",
                {"allowed": list(EntityType.ALL)},
            )
        now = utc_now()
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO entities (id, name, entity_type, first_seen_at, "
                "last_seen_at, mention_count) VALUES (?, ?, ?, ?, ?, 1) "
                "ON CONFLICT(name, entity_type) DO UPDATE SET "
                "mention_count = mention_count + 1, last_seen_at = excluded.last_seen_at",
                (new_id(), name, entity_type, now, now),
            )
            row = conn.execute(
                "SELECT * FROM entities WHERE name = ? AND entity_type = ?",
                (name, entity_type),
            ).fetchone()
        return _row_to_entity(row)

    def get_by_id(self, entity_id: str) -> Optional[Entity]:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM entities WHERE id = ?", (entity_id,)
            ).fetchone()
        return _row_to_entity(row) if row else None

    def get_by_name(self, name: str, entity_type: Optional[str] = None) -> list[Entity]:
        """Exact (case-insensitive) name lookup."""
        sql = "SELECT * FROM entities WHERE name = ? COLLATE NOCASE"
        params: list = [name]
        if entity_type:
            sql += " AND entity_type = ?"
            params.append(entity_type)
        with self._db.read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_entity(r) for r in rows]

    def find_by_name(self, text: str, limit: int = 20) -> list[Entity]:
        """Full-text name search.  Backend errors yield an empty list."""
        match = fts_query(text)
        if not match:
            return []
        try:
            with self._db.read() as conn:
                rows = conn.execute(
                    "SELECT e.* FROM entities_fts "
                    "JOIN entities e ON e._rowid = entities_fts.rowid "
                    "WHERE entities_fts MATCH ? ORDER BY rank LIMIT ?",
                    (match, limit),
                ).fetchall()
        except sqlite3.Error as exc:
            logger.warning("[EntityGraph] Name search failed for %r: %s", text, exc)
            return []
        return [_row_to_entity(r) for r in rows]

    def count(self) -> int:
        with self._db.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM entities").fetchone()[0]

    # ------------------------------------------------------------------
    # Relations
    # ------------------------------------------------------------------

    def create_relation(
        self,
        source_entity_id: str,
        target_entity_id: str,
        relationship: str,
        observation_id: str,
    ) -> Optional[EntityRelation]:
        """
        Record a directed relationship.

        Idempotent on ``(source, target, relationship)``: a duplicate call
        returns the edge that already exists.  Returns ``None`` when either
        endpoint is unknown.
        """
        relationship = (relationship or "").strip()
        if not relationship:
            raise ValidationError("Relationship must not be empty")
        with self._db.transaction() as conn:
            found = conn.execute(
                "SELECT COUNT(*) FROM entities WHERE id IN (?, ?)",
                (source_entity_id, target_entity_id),
            ).fetchone()[0]
            expected = 1 if source_entity_id == target_entity_id else 2
            if found < expected:
                return None
            conn.execute(
                "INSERT OR IGNORE INTO entity_relations (id, source_entity_id, "
                "target_entity_id, relationship, observation_id, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?)",
                (new_id(), source_entity_id, target_entity_id, relationship,
                 observation_id, utc_now()),
            )
            row = conn.execute(
                "SELECT * FROM entity_relations WHERE source_entity_id = ? "
                "AND target_entity_id = ? AND relationship = ?",
                (source_entity_id, target_entity_id, relationship),
            ).fetchone()
        return _row_to_relation(row)

    def get_relations_for(self, entity_id: str) -> list[EntityRelation]:
        """Every edge touching *entity_id*, in either direction."""
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM entity_relations "
                "WHERE source_entity_id = ? OR target_entity_id = ? "
                "ORDER BY created_at ASC",
                (entity_id, entity_id),
            ).fetchall()
        return [_row_to_relation(r) for r in rows]

    def traverse_relations(self, entity_id: str, depth: int = 1) -> set[str]:
        """
        Breadth-first walk over relations in both directions.

        Depth is clamped to ``MAX_TRAVERSAL_DEPTH`` and the visited set never
        grows beyond ``MAX_TRAVERSAL_NODES`` (seed included).

        Returns
        -------
        set[str]
            Ids of every entity reached, including *entity_id* itself.
        """
        depth = max(0, min(depth, MAX_TRAVERSAL_DEPTH))
        visited = {entity_id}
        frontier = deque([(entity_id, 0)])
        while frontier:
            current, level = frontier.popleft()
            if level >= depth:
                continue
            for rel in self.get_relations_for(current):
                neighbour = (
                    rel.target_entity_id
                    if rel.source_entity_id == current
                    else rel.source_entity_id
                )
                if neighbour in visited:
                    continue
                if len(visited) >= MAX_TRAVERSAL_NODES:
                    return visited
                visited.add(neighbour)
                frontier.append((neighbour, level + 1))
        return visited

    def neighborhood(self, entity_id: str, depth: int = 1) -> nx.DiGraph:
        """
        Materialise the bounded neighbourhood of *entity_id* as a DiGraph.

        Nodes carry ``name``, ``entity_type`` and ``mention_count``; edges
        carry ``relationship`` and ``observation_id``.
        """
        graph = nx.DiGraph()
        ids = self.traverse_relations(entity_id, depth)
        for node_id in ids:
            entity = self.get_by_id(node_id)
            if entity is None:
                continue
            graph.add_node(
                node_id,
                name=entity.name,
                entity_type=entity.entity_type,
                mention_count=entity.mention_count,
            )
        for node_id in ids:
            for rel in self.get_relations_for(node_id):
                if rel.source_entity_id in graph and rel.target_entity_id in graph:
                    graph.add_edge(
                        rel.source_entity_id,
                        rel.target_entity_id,
                        relationship=rel.relationship,
                        observation_id=rel.observation_id,
                    )
        return graph

    # ------------------------------------------------------------------
    # Observation links
    # ------------------------------------------------------------------

    def link_observation(self, entity_id: str, observation_id: str) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT OR IGNORE INTO entity_observations (entity_id, observation_id) "
                "VALUES (?, ?)",
                (entity_id, observation_id),
            )

    def get_observations_for_entity(self, entity_id: str) -> list[str]:
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT observation_id FROM entity_observations WHERE entity_id = ?",
                (entity_id,),
            ).fetchall()
        return [r["observation_id"] for r in rows]

    def get_entities_for_observation(self, observation_id: str) -> list[Entity]:
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT e.* FROM entities e "
                "JOIN entity_observations eo ON eo.entity_id = e.id "
                "WHERE eo.observation_id = ?",
                (observation_id,),
            ).fetchall()
        return [_row_to_entity(r) for r in rows]
