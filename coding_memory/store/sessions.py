"""
Session and session-summary storage.

A session belongs to exactly one project path; every project-scoped
query in the other stores joins through this table.
"""

from __future__ import annotations

import json
import logging
from typing import Optional

from ..models import Session, SessionSummary, new_id, utc_now
from .database import Database

logger = logging.getLogger(__name__)

_SUMMARY_LIST_COLUMNS = ("key_decisions", "files_modified", "concepts")
_SUMMARY_COLUMNS = (
    "id", "session_id", "summary", "key_decisions", "files_modified",
    "concepts", "created_at", "token_count", "request", "investigated",
    "learned", "completed", "next_steps",
)


def _row_to_session(row) -> Session:
    return Session(
        id=row["id"],
        project_path=row["project_path"],
        started_at=row["started_at"],
        ended_at=row["ended_at"],
        status=row["status"],
        observation_count=row["observation_count"],
        summary_id=row["summary_id"],
    )


def _row_to_summary(row) -> SessionSummary:
    data = {col: row[col] for col in _SUMMARY_COLUMNS}
    for col in _SUMMARY_LIST_COLUMNS:
        data[col] = json.loads(data[col] or "[]")
    return SessionSummary(**data)


class SessionStore:
    """CRUD for :class:`~coding_memory.models.Session` rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, session_id: str, project_path: str) -> Session:
        session = Session(id=session_id, project_path=project_path, started_at=utc_now())
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO sessions (id, project_path, started_at, status) "
                "VALUES (?, ?, ?, ?)",
                (session.id, session.project_path, session.started_at, session.status),
            )
        return session

    def get(self, session_id: str) -> Optional[Session]:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        return _row_to_session(row) if row else None

    def get_or_create(self, session_id: str, project_path: str) -> Session:
        with self._db.transaction():
            existing = self.get(session_id)
            if existing is not None:
                return existing
            return self.create(session_id, project_path)

    def mark_completed(self, session_id: str) -> Optional[Session]:
        with self._db.transaction() as conn:
            conn.execute(
                "UPDATE sessions SET status = 'completed', ended_at = ? "
                "WHERE id = ? AND status != 'completed'",
                (utc_now(), session_id),
            )
        return self.get(session_id)

    def count(self, project_path: str) -> int:
        with self._db.read() as conn:
            return conn.execute(
                "SELECT COUNT(*) FROM sessions WHERE project_path = ?", (project_path,)
            ).fetchone()[0]

    def list_by_project(self, project_path: str, limit: int = 20) -> list[Session]:
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM sessions WHERE project_path = ? "
                "ORDER BY started_at DESC LIMIT ?",
                (project_path, limit),
            ).fetchall()
        return [_row_to_session(r) for r in rows]


class SummaryStore:
    """CRUD for :class:`~coding_memory.models.SessionSummary` rows."""

    def __init__(self, db: Database) -> None:
        self._db = db

    def create(self, summary: SessionSummary) -> SessionSummary:
        if not summary.id:
            summary.id = new_id()
        if not summary.created_at:
            summary.created_at = utc_now()
        values = []
        for col in _SUMMARY_COLUMNS:
            value = getattr(summary, col)
            if col in _SUMMARY_LIST_COLUMNS:
                value = json.dumps(list(value))
            values.append(value)
        with self._db.transaction() as conn:
            conn.execute(
                f"INSERT INTO session_summaries ({', '.join(_SUMMARY_COLUMNS)}) "
                f"VALUES ({', '.join('?' for _ in _SUMMARY_COLUMNS)})",
                values,
            )
            conn.execute(
                "UPDATE sessions SET summary_id = ? WHERE id = ?",
                (summary.id, summary.session_id),
            )
        return summary

    def get(self, summary_id: str) -> Optional[SessionSummary]:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM session_summaries WHERE id = ?", (summary_id,)
            ).fetchone()
        return _row_to_summary(row) if row else None

    def delete(self, summary_id: str) -> bool:
        with self._db.transaction() as conn:
            cur = conn.execute(
                "DELETE FROM session_summaries WHERE id = ?", (summary_id,)
            )
        return cur.rowcount > 0

    def get_by_session(self, session_id: str) -> Optional[SessionSummary]:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM session_summaries WHERE session_id = ? "
                "ORDER BY created_at DESC LIMIT 1",
                (session_id,),
            ).fetchone()
        return _row_to_summary(row) if row else None

    def list_by_project(
        self, project_path: Optional[str], limit: int = 100
    ) -> list[SessionSummary]:
        """Summaries newest first; a ``None`` *project_path* lists every project."""
        sql = (
            "SELECT ss.* FROM session_summaries ss "
            "JOIN sessions s ON s.id = ss.session_id"
        )
        params: list = []
        if project_path is not None:
            sql += " WHERE s.project_path = ?"
            params.append(project_path)
        sql += " ORDER BY ss.created_at DESC LIMIT ?"
        params.append(limit)
        with self._db.read() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [_row_to_summary(r) for r in rows]
