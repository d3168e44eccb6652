"""
Embedding vectors for observations.

Vectors live next to the records in ``observation_embeddings`` as float32
blobs; similarity is cosine, computed in numpy over the project's current
observations.  No external vector service is needed.
"""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np

from ..models import utc_now
from .database import Database

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _vec_to_bytes(vec: list[float]) -> bytes:
    return np.array(vec, dtype=np.float32).tobytes()


def _bytes_to_vec(buf: bytes) -> np.ndarray:
    return np.frombuffer(buf, dtype=np.float32).copy()


def _cosine_similarity_batch(query: np.ndarray, matrix: np.ndarray) -> np.ndarray:
    """Cosine similarity between *query* (1-D) and each row of *matrix*."""
    query_norm = np.linalg.norm(query)
    if query_norm == 0:
        return np.zeros(matrix.shape[0])
    row_norms = np.linalg.norm(matrix, axis=1)
    row_norms[row_norms == 0] = 1.0
    return (matrix @ query) / (row_norms * query_norm)


# ---------------------------------------------------------------------------
# VectorIndex
# ---------------------------------------------------------------------------

class VectorIndex:
    """Per-observation embedding storage with cosine-similarity lookup.

    Parameters
    ----------
    db:
        Shared database handle.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    def upsert(self, observation_id: str, vector: list[float], model: str = "") -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO observation_embeddings "
                "(observation_id, vector, model, created_at) VALUES (?, ?, ?, ?)",
                (observation_id, _vec_to_bytes(vector), model, utc_now()),
            )

    def delete(self, observation_id: str) -> None:
        with self._db.transaction() as conn:
            conn.execute(
                "DELETE FROM observation_embeddings WHERE observation_id = ?",
                (observation_id,),
            )

    def get(self, observation_id: str) -> Optional[np.ndarray]:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT vector FROM observation_embeddings WHERE observation_id = ?",
                (observation_id,),
            ).fetchone()
        return _bytes_to_vec(row["vector"]) if row else None

    def count(self) -> int:
        with self._db.read() as conn:
            return conn.execute("SELECT COUNT(*) FROM observation_embeddings").fetchone()[0]

    def missing(self, project_path: str, limit: int = 1000) -> list[str]:
        """Ids of current observations in *project_path* with no vector."""
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT o.id FROM observations o "
                "JOIN sessions s ON s.id = o.session_id "
                "LEFT JOIN observation_embeddings e ON e.observation_id = o.id "
                "WHERE s.project_path = ? AND e.observation_id IS NULL "
                "AND o.superseded_by IS NULL AND o.deleted_at IS NULL "
                "ORDER BY o.created_at ASC LIMIT ?",
                (project_path, limit),
            ).fetchall()
        return [r["id"] for r in rows]

    def prune_archived(self, dry_run: bool = False) -> int:
        """Drop vectors that belong to superseded, tombstoned or missing rows."""
        where = (
            "WHERE observation_id NOT IN (SELECT id FROM observations "
            "WHERE superseded_by IS NULL AND deleted_at IS NULL)"
        )
        if dry_run:
            with self._db.read() as conn:
                return conn.execute(
                    f"SELECT COUNT(*) FROM observation_embeddings {where}"
                ).fetchone()[0]
        with self._db.transaction() as conn:
            cur = conn.execute(f"DELETE FROM observation_embeddings {where}")
        return cur.rowcount

    def search(
        self,
        query_vector: list[float],
        project_path: str,
        top_k: int = 10,
        min_similarity: float = 0.3,
    ) -> list[tuple[str, float]]:
        """Cosine-similarity search over the project's current observations.

        Returns
        -------
        list[tuple[str, float]]
            ``(observation_id, similarity)`` pairs, most similar first.
        """
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT e.observation_id, e.vector FROM observation_embeddings e "
                "JOIN observations o ON o.id = e.observation_id "
                "JOIN sessions s ON s.id = o.session_id "
                "WHERE s.project_path = ? "
                "AND o.superseded_by IS NULL AND o.deleted_at IS NULL",
                (project_path,),
            ).fetchall()
        if not rows:
            return []

        query_arr = np.array(query_vector, dtype=np.float32)
        vectors = [_bytes_to_vec(r["vector"]) for r in rows]
        keep = [i for i, v in enumerate(vectors) if v.shape == query_arr.shape]
        if len(keep) < len(vectors):
            logger.warning(
                "[VectorIndex] Skipping %d vectors with mismatched dimension",
                len(vectors) - len(keep),
            )
        if not keep:
            return []
        matrix = np.stack([vectors[i] for i in keep])
        scores = _cosine_similarity_batch(query_arr, matrix)

        if len(scores) <= top_k:
            top_indices = np.argsort(scores)[::-1]
        else:
            top_indices = np.argpartition(scores, -top_k)[-top_k:]
            top_indices = top_indices[np.argsort(scores[top_indices])[::-1]]

        results = []
        for idx in top_indices:
            score = float(scores[idx])
            if score < min_similarity:
                continue
            results.append((rows[keep[idx]]["observation_id"], score))
        return results
