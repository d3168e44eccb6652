"""
Record store for observations.

Observations are append-only.  ``revise`` writes a successor row and marks
the predecessor superseded inside one ``BEGIN IMMEDIATE`` transaction;
``tombstone`` stamps ``deleted_at``.  Neither ever rewrites content.

Default reads return only *current* rows (not superseded, not tombstoned).
The ``*_including_archived`` variants are for lineage walks, diffs and
import de-duplication.
"""

from __future__ import annotations

import json
import logging
import sqlite3
from typing import Any, Optional

from ..errors import ConflictError, ValidationError
from ..models import (
    LineageState,
    Observation,
    ObservationIndex,
    estimate_tokens,
    new_id,
    utc_now,
)
from .database import Database

logger = logging.getLogger(__name__)

_COLUMNS = (
    "id", "session_id", "type", "title", "subtitle", "narrative", "facts",
    "concepts", "files_read", "files_modified", "raw_tool_output", "tool_name",
    "created_at", "token_count", "discovery_tokens", "importance",
    "revision_of", "superseded_by", "superseded_at", "deleted_at",
)
_LIST_COLUMNS = ("facts", "concepts", "files_read", "files_modified")

# Fields a revision may change.
PATCHABLE_FIELDS = (
    "title", "subtitle", "narrative", "type", "facts", "concepts",
    "files_read", "files_modified", "importance",
)

_CURRENT = "o.superseded_by IS NULL AND o.deleted_at IS NULL"

_STATE_CLAUSES = {
    LineageState.CURRENT: _CURRENT,
    LineageState.SUPERSEDED: "o.superseded_by IS NOT NULL AND o.deleted_at IS NULL",
    LineageState.TOMBSTONED: "o.deleted_at IS NOT NULL",
}

_SELECT = "SELECT o.* FROM observations o"
_SELECT_PROJECT = (
    "SELECT o.* FROM observations o JOIN sessions s ON s.id = o.session_id"
)


def _row_to_observation(row: sqlite3.Row) -> Observation:
    data = {col: row[col] for col in _COLUMNS}
    for col in _LIST_COLUMNS:
        try:
            data[col] = json.loads(data[col] or "[]")
        except (json.JSONDecodeError, TypeError):
            data[col] = []
    return Observation(**data)


def _observation_params(obs: Observation) -> tuple[Any, ...]:
    values = []
    for col in _COLUMNS:
        value = getattr(obs, col)
        if col in _LIST_COLUMNS:
            value = json.dumps(list(value))
        values.append(value)
    return tuple(values)


_INSERT = (
    f"INSERT INTO observations ({', '.join(_COLUMNS)}) "
    f"VALUES ({', '.join('?' for _ in _COLUMNS)})"
)


def fts_query(text: str) -> str:
    """
    Turn free text into a safe FTS5 MATCH expression.

    Each whitespace-separated term is double-quoted so punctuation cannot
    be read as query syntax; terms are OR-ed together.
    """
    terms = [t.replace('"', '""') for t in text.split() if t.strip()]
    return " OR ".join(f'"{t}"' for t in terms)


class ObservationStore:
    """
    SQLite-backed store of versioned observations.

    Parameters
    ----------
    db:
        Shared :class:`~coding_memory.store.database.Database`.
    """

    def __init__(self, db: Database) -> None:
        self._db = db

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        session_id: str,
        type: str,
        title: str,
        narrative: str = "",
        subtitle: str = "",
        facts: Optional[list[str]] = None,
        concepts: Optional[list[str]] = None,
        files_read: Optional[list[str]] = None,
        files_modified: Optional[list[str]] = None,
        raw_tool_output: str = "",
        tool_name: str = "",
        token_count: Optional[int] = None,
        discovery_tokens: int = 0,
        importance: int = 3,
    ) -> Observation:
        """Insert a new current observation and bump the session's count."""
        obs = Observation(
            id=new_id(),
            session_id=session_id,
            type=type,
            title=title,
            subtitle=subtitle,
            narrative=narrative,
            facts=list(facts or []),
            concepts=list(concepts or []),
            files_read=list(files_read or []),
            files_modified=list(files_modified or []),
            raw_tool_output=raw_tool_output,
            tool_name=tool_name,
            created_at=utc_now(),
            token_count=(
                token_count if token_count is not None
                else estimate_tokens(title + narrative)
            ),
            discovery_tokens=discovery_tokens,
            importance=importance,
        )
        with self._db.transaction() as conn:
            conn.execute(_INSERT, _observation_params(obs))
            conn.execute(
                "UPDATE sessions SET observation_count = observation_count + 1 "
                "WHERE id = ?",
                (obs.session_id,),
            )
        logger.debug("[ObservationStore] Created %s (%s)", obs.id, obs.type)
        return obs

    def import_observation(self, obs: Observation) -> None:
        """Insert *obs* verbatim, lineage fields included."""
        with self._db.transaction() as conn:
            conn.execute(_INSERT, _observation_params(obs))
            conn.execute(
                "UPDATE sessions SET observation_count = observation_count + 1 "
                "WHERE id = ?",
                (obs.session_id,),
            )

    def revise(self, observation_id: str, patch: dict[str, Any]) -> Optional[Observation]:
        """
        Create a successor of *observation_id* with *patch* applied.

        Returns
        -------
        Optional[Observation]
            The new current revision, or ``None`` when the id is unknown.

        Raises
        ------
        ConflictError
            If the target is already superseded or tombstoned, including
            when a concurrent reviser committed first.
        ValidationError
            If *patch* names a field that cannot be revised.
        """
        unknown = sorted(set(patch) - set(PATCHABLE_FIELDS))
        if unknown:
            raise ValidationError(
                f"Fields cannot be revised: {', '.join(unknown)}",
                {"fields": unknown},
            )

        with self._db.transaction() as conn:
            row = conn.execute(
                f"{_SELECT} WHERE o.id = ?", (observation_id,)
            ).fetchone()
            if row is None:
                return None
            previous = _row_to_observation(row)
            if previous.state != LineageState.CURRENT:
                raise ConflictError(
                    f"Observation {observation_id} is {previous.state} and cannot be revised",
                    {"id": observation_id, "state": previous.state},
                )

            now = utc_now()
            revised = Observation(**{
                col: getattr(previous, col) for col in _COLUMNS
            })
            for key, value in patch.items():
                setattr(revised, key, list(value) if key in _LIST_COLUMNS else value)
            revised.id = new_id()
            revised.created_at = now
            revised.revision_of = previous.id
            revised.superseded_by = None
            revised.superseded_at = None
            revised.deleted_at = None
            if "title" in patch or "narrative" in patch:
                revised.token_count = estimate_tokens(revised.title + revised.narrative)

            cur = conn.execute(
                "UPDATE observations SET superseded_by = ?, superseded_at = ? "
                "WHERE id = ? AND superseded_by IS NULL AND deleted_at IS NULL",
                (revised.id, now, previous.id),
            )
            if cur.rowcount == 0:
                raise ConflictError(
                    f"Observation {observation_id} was revised concurrently",
                    {"id": observation_id},
                )
            conn.execute(_INSERT, _observation_params(revised))

        logger.debug(
            "[ObservationStore] Revised %s -> %s", previous.id, revised.id
        )
        return revised

    def tombstone(self, observation_id: str) -> bool:
        """Mark a current observation deleted.  Returns ``True`` if it was."""
        with self._db.transaction() as conn:
            cur = conn.execute(
                "UPDATE observations SET deleted_at = ? "
                "WHERE id = ? AND superseded_by IS NULL AND deleted_at IS NULL",
                (utc_now(), observation_id),
            )
        return cur.rowcount > 0

    def hard_delete(self, observation_id: str) -> bool:
        """Physically remove a row.  Used only by overwrite imports."""
        with self._db.transaction() as conn:
            row = conn.execute(
                "SELECT session_id FROM observations WHERE id = ?", (observation_id,)
            ).fetchone()
            if row is None:
                return False
            cur = conn.execute(
                "DELETE FROM observations WHERE id = ?", (observation_id,)
            )
            conn.execute(
                "UPDATE sessions SET observation_count = MAX(observation_count - 1, 0) "
                "WHERE id = ?",
                (row["session_id"],),
            )
            conn.execute(
                "DELETE FROM observation_embeddings WHERE observation_id = ?",
                (observation_id,),
            )
        return cur.rowcount > 0

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_by_id(self, observation_id: str) -> Optional[Observation]:
        """Return the observation only if it is current."""
        with self._db.read() as conn:
            row = conn.execute(
                f"{_SELECT} WHERE o.id = ? AND {_CURRENT}", (observation_id,)
            ).fetchone()
        return _row_to_observation(row) if row else None

    def get_by_id_including_archived(self, observation_id: str) -> Optional[Observation]:
        with self._db.read() as conn:
            row = conn.execute(
                f"{_SELECT} WHERE o.id = ?", (observation_id,)
            ).fetchone()
        return _row_to_observation(row) if row else None

    def get_project_of(self, observation_id: str) -> Optional[str]:
        """Project path of the session that owns *observation_id*."""
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT s.project_path FROM observations o "
                "JOIN sessions s ON s.id = o.session_id WHERE o.id = ?",
                (observation_id,),
            ).fetchone()
        return row["project_path"] if row else None

    def get_by_session(
        self, session_id: str, include_archived: bool = False
    ) -> list[Observation]:
        sql = f"{_SELECT} WHERE o.session_id = ?"
        if not include_archived:
            sql += f" AND {_CURRENT}"
        sql += " ORDER BY o.created_at ASC, o._rowid ASC"
        with self._db.read() as conn:
            rows = conn.execute(sql, (session_id,)).fetchall()
        return [_row_to_observation(r) for r in rows]

    def list_by_project(
        self,
        project_path: Optional[str],
        limit: int = 50,
        offset: int = 0,
        type: Optional[str] = None,
        state: Optional[str] = LineageState.CURRENT,
        session_id: Optional[str] = None,
    ) -> list[Observation]:
        """
        List a project's observations, newest first.

        *state* selects one lineage state; ``None`` returns every row.
        A ``None`` *project_path* lists every project.
        """
        clauses = ["1 = 1"]
        params: list[Any] = []
        if project_path is not None:
            clauses.append("s.project_path = ?")
            params.append(project_path)
        if state is not None:
            if state not in _STATE_CLAUSES:
                raise ValidationError(f"Unknown state: {state}")
            clauses.append(_STATE_CLAUSES[state])
        if type:
            clauses.append("o.type = ?")
            params.append(type)
        if session_id:
            clauses.append("o.session_id = ?")
            params.append(session_id)
        sql = (
            f"{_SELECT_PROJECT} WHERE {' AND '.join(clauses)} "
            "ORDER BY o.created_at DESC, o._rowid DESC LIMIT ? OFFSET ?"
        )
        params.extend([limit, offset])
        with self._db.read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_observation(r) for r in rows]

    def get_index(self, project_path: str, limit: int = 20) -> list[ObservationIndex]:
        return [
            ObservationIndex(
                id=o.id,
                session_id=o.session_id,
                type=o.type,
                title=o.title,
                token_count=o.token_count,
                discovery_tokens=o.discovery_tokens,
                created_at=o.created_at,
                importance=o.importance,
            )
            for o in self.list_by_project(project_path, limit=limit)
        ]

    def get_count(
        self,
        project_path: Optional[str] = None,
        include_archived: bool = False,
    ) -> int:
        clauses: list[str] = []
        params: list[Any] = []
        if project_path is not None:
            clauses.append("s.project_path = ?")
            params.append(project_path)
        if not include_archived:
            clauses.append(_CURRENT)
        where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
        sql = (
            "SELECT COUNT(*) FROM observations o "
            "LEFT JOIN sessions s ON s.id = o.session_id" + where
        )
        with self._db.read() as conn:
            return conn.execute(sql, params).fetchone()[0]

    def search_lexical(
        self,
        query: str,
        project_path: str,
        limit: int = 20,
        type: Optional[str] = None,
    ) -> list[tuple[Observation, float, str]]:
        """
        Full-text search over current observations of one project.

        Returns ``(observation, bm25_rank, snippet)`` tuples, best first
        (lower rank is better).  Raises :class:`sqlite3.Error` on backend
        failure; callers decide how to degrade.
        """
        match = fts_query(query)
        if not match:
            return []
        clauses = ["observations_fts MATCH ?", "s.project_path = ?", _CURRENT]
        params: list[Any] = [match, project_path]
        if type:
            clauses.append("o.type = ?")
            params.append(type)
        sql = (
            "SELECT o.*, bm25(observations_fts, 10.0, 4.0, 2.0, 1.0, 3.0, 1.0, 1.0) AS rank, "
            "snippet(observations_fts, -1, '**', '**', '...', 16) AS snippet "
            "FROM observations_fts "
            "JOIN observations o ON o._rowid = observations_fts.rowid "
            "JOIN sessions s ON s.id = o.session_id "
            f"WHERE {' AND '.join(clauses)} ORDER BY rank LIMIT ?"
        )
        params.append(limit)
        with self._db.read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [
            (_row_to_observation(r), float(r["rank"]), r["snippet"] or "")
            for r in rows
        ]

    def rebuild_fts(self) -> None:
        """Rebuild the full-text index from the observations table."""
        with self._db.transaction() as conn:
            conn.execute("INSERT INTO observations_fts(observations_fts) VALUES('rebuild')")

    def get_stats(self, project_path: str) -> dict[str, Any]:
        """Aggregate counts over the project's current observations."""
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT COUNT(*) AS total, "
                "COALESCE(SUM(o.token_count), 0) AS tokens, "
                "COALESCE(SUM(CASE WHEN o.discovery_tokens > 0 "
                "THEN o.discovery_tokens - o.token_count ELSE 0 END), 0) AS saved "
                f"FROM observations o JOIN sessions s ON s.id = o.session_id "
                f"WHERE s.project_path = ? AND {_CURRENT}",
                (project_path,),
            ).fetchone()
            by_type = conn.execute(
                "SELECT o.type, COUNT(*) AS n FROM observations o "
                "JOIN sessions s ON s.id = o.session_id "
                f"WHERE s.project_path = ? AND {_CURRENT} GROUP BY o.type",
                (project_path,),
            ).fetchall()
        total = row["total"]
        return {
            "totalObservations": total,
            "totalTokens": row["tokens"],
            "tokensSaved": max(0, row["saved"]),
            "averageObservationSize": round(row["tokens"] / total, 1) if total else 0,
            "typeBreakdown": {r["type"]: r["n"] for r in by_type},
        }
