"""
Embedded SQLite database shared by every store.

One connection per process, guarded by a re-entrant lock.  Writes go
through :meth:`Database.transaction`, which opens a ``BEGIN IMMEDIATE``
transaction so the write lock is taken before any row is read.  WAL mode
lets other processes read while one writes.

Storage: ``.coding-memory/memory.db`` under the project root by default.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterator

from ..errors import StorageError

logger = logging.getLogger(__name__)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS sessions (
    id                  TEXT PRIMARY KEY,
    project_path        TEXT NOT NULL,
    started_at          TEXT NOT NULL,
    ended_at            TEXT DEFAULT NULL,
    status              TEXT NOT NULL DEFAULT 'active',
    observation_count   INTEGER NOT NULL DEFAULT 0,
    summary_id          TEXT DEFAULT NULL
);

CREATE INDEX IF NOT EXISTS idx_sessions_project ON sessions(project_path);

CREATE TABLE IF NOT EXISTS observations (
    _rowid              INTEGER PRIMARY KEY AUTOINCREMENT,
    id                  TEXT UNIQUE NOT NULL,
    session_id          TEXT NOT NULL,
    type                TEXT NOT NULL,
    title               TEXT NOT NULL,
    subtitle            TEXT NOT NULL DEFAULT '',
    narrative           TEXT NOT NULL DEFAULT '',
    facts               TEXT NOT NULL DEFAULT '[]',
    concepts            TEXT NOT NULL DEFAULT '[]',
    files_read          TEXT NOT NULL DEFAULT '[]',
    files_modified      TEXT NOT NULL DEFAULT '[]',
    raw_tool_output     TEXT NOT NULL DEFAULT '',
    tool_name           TEXT NOT NULL DEFAULT '',
    created_at          TEXT NOT NULL,
    token_count         INTEGER NOT NULL DEFAULT 0,
    discovery_tokens    INTEGER NOT NULL DEFAULT 0,
    importance          INTEGER NOT NULL DEFAULT 3,
    revision_of         TEXT DEFAULT NULL,
    superseded_by       TEXT DEFAULT NULL,
    superseded_at       TEXT DEFAULT NULL,
    deleted_at          TEXT DEFAULT NULL
);

CREATE INDEX IF NOT EXISTS idx_observations_session ON observations(session_id);
CREATE INDEX IF NOT EXISTS idx_observations_created ON observations(created_at);

CREATE VIRTUAL TABLE IF NOT EXISTS observations_fts USING fts5(
    title, subtitle, narrative, facts, concepts, files_read, files_modified,
    content='observations', content_rowid='_rowid'
);

CREATE TRIGGER IF NOT EXISTS observations_ai AFTER INSERT ON observations BEGIN
    INSERT INTO observations_fts(rowid, title, subtitle, narrative, facts,
                                 concepts, files_read, files_modified)
    VALUES (new._rowid, new.title, new.subtitle, new.narrative, new.facts,
            new.concepts, new.files_read, new.files_modified);
END;

CREATE TRIGGER IF NOT EXISTS observations_ad AFTER DELETE ON observations BEGIN
    INSERT INTO observations_fts(observations_fts, rowid, title, subtitle,
                                 narrative, facts, concepts, files_read,
                                 files_modified)
    VALUES ('delete', old._rowid, old.title, old.subtitle, old.narrative,
            old.facts, old.concepts, old.files_read, old.files_modified);
END;

CREATE TABLE IF NOT EXISTS observation_embeddings (
    observation_id      TEXT PRIMARY KEY,
    vector              BLOB NOT NULL,
    model               TEXT NOT NULL DEFAULT '',
    created_at          TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS session_summaries (
    id                  TEXT PRIMARY KEY,
    session_id          TEXT NOT NULL,
    summary             TEXT NOT NULL,
    key_decisions       TEXT NOT NULL DEFAULT '[]',
    files_modified      TEXT NOT NULL DEFAULT '[]',
    concepts            TEXT NOT NULL DEFAULT '[]',
    created_at          TEXT NOT NULL,
    token_count         INTEGER NOT NULL DEFAULT 0,
    request             TEXT DEFAULT NULL,
    investigated        TEXT DEFAULT NULL,
    learned             TEXT DEFAULT NULL,
    completed           TEXT DEFAULT NULL,
    next_steps          TEXT DEFAULT NULL
);

CREATE INDEX IF NOT EXISTS idx_summaries_session ON session_summaries(session_id);

CREATE TABLE IF NOT EXISTS entities (
    _rowid              INTEGER PRIMARY KEY AUTOINCREMENT,
    id                  TEXT UNIQUE NOT NULL,
    name                TEXT NOT NULL,
    entity_type         TEXT NOT NULL,
    first_seen_at       TEXT NOT NULL,
    last_seen_at        TEXT NOT NULL,
    mention_count       INTEGER NOT NULL DEFAULT 1,
    UNIQUE(name, entity_type)
);

CREATE VIRTUAL TABLE IF NOT EXISTS entities_fts USING fts5(
    name, content='entities', content_rowid='_rowid'
);

CREATE TRIGGER IF NOT EXISTS entities_ai AFTER INSERT ON entities BEGIN
    INSERT INTO entities_fts(rowid, name) VALUES (new._rowid, new.name);
END;

CREATE TRIGGER IF NOT EXISTS entities_ad AFTER DELETE ON entities BEGIN
    INSERT INTO entities_fts(entities_fts, rowid, name)
    VALUES ('delete', old._rowid, old.name);
END;

CREATE TABLE IF NOT EXISTS entity_relations (
    id                  TEXT PRIMARY KEY,
    source_entity_id    TEXT NOT NULL,
    target_entity_id    TEXT NOT NULL,
    relationship        TEXT NOT NULL,
    observation_id      TEXT NOT NULL,
    created_at          TEXT NOT NULL,
    UNIQUE(source_entity_id, target_entity_id, relationship)
);

CREATE INDEX IF NOT EXISTS idx_relations_source ON entity_relations(source_entity_id);
CREATE INDEX IF NOT EXISTS idx_relations_target ON entity_relations(target_entity_id);

CREATE TABLE IF NOT EXISTS entity_observations (
    entity_id           TEXT NOT NULL,
    observation_id      TEXT NOT NULL,
    PRIMARY KEY (entity_id, observation_id)
);

CREATE TABLE IF NOT EXISTS config_audit_events (
    _rowid              INTEGER PRIMARY KEY AUTOINCREMENT,
    id                  TEXT UNIQUE NOT NULL,
    timestamp           TEXT NOT NULL,
    patch               TEXT NOT NULL DEFAULT '{}',
    previous_values     TEXT NOT NULL DEFAULT '{}',
    source              TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS maintenance_history (
    _rowid              INTEGER PRIMARY KEY AUTOINCREMENT,
    id                  TEXT UNIQUE NOT NULL,
    timestamp           TEXT NOT NULL,
    action              TEXT NOT NULL,
    dry_run             INTEGER NOT NULL DEFAULT 0,
    result              TEXT NOT NULL DEFAULT '{}'
);
"""

# Applied to databases created before lineage tracking existed.
_MIGRATIONS = [
    "ALTER TABLE observations ADD COLUMN importance INTEGER NOT NULL DEFAULT 3",
    "ALTER TABLE observations ADD COLUMN revision_of TEXT DEFAULT NULL",
    "ALTER TABLE observations ADD COLUMN superseded_by TEXT DEFAULT NULL",
    "ALTER TABLE observations ADD COLUMN superseded_at TEXT DEFAULT NULL",
    "ALTER TABLE observations ADD COLUMN deleted_at TEXT DEFAULT NULL",
]


class Database:
    """
    Owner of the single SQLite connection used by the memory stores.

    Parameters
    ----------
    db_path:
        Path to the database file, or ``":memory:"`` for a throwaway
        in-process database.
    """

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        if db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(db_path)), exist_ok=True)
        self._lock = threading.RLock()
        self._conn: sqlite3.Connection | None = None
        self._init_db()

    @property
    def path(self) -> str:
        return self._db_path

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _get_conn(self) -> sqlite3.Connection:
        if self._conn is None:
            # Autocommit mode; transactions are opened explicitly.
            conn = sqlite3.connect(
                self._db_path, timeout=10, check_same_thread=False,
                isolation_level=None,
            )
            conn.row_factory = sqlite3.Row
            conn.execute("PRAGMA journal_mode=WAL")
            conn.execute("PRAGMA synchronous=NORMAL")
            self._conn = conn
        return self._conn

    def _init_db(self) -> None:
        with self._lock:
            conn = self._get_conn()
            try:
                conn.executescript(_SCHEMA)
            except sqlite3.Error as exc:
                raise StorageError(f"Could not initialise schema: {exc}") from exc
            existing = {
                row["name"]
                for row in conn.execute("PRAGMA table_info(observations)").fetchall()
            }
            for stmt in _MIGRATIONS:
                column = stmt.split("ADD COLUMN ")[1].split()[0]
                if column not in existing:
                    conn.execute(stmt)
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_observations_revision_of "
                "ON observations(revision_of)"
            )
        logger.debug("[Database] Opened %s", self._db_path)

    def close(self) -> None:
        """Close the connection.  Safe to call more than once."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    # ------------------------------------------------------------------
    # Access
    # ------------------------------------------------------------------

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        """Yield the connection for read-only statements."""
        with self._lock:
            yield self._get_conn()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Run a block inside ``BEGIN IMMEDIATE``.

        Commits on success and rolls back on any exception.  Nested use on
        the same thread joins the outer transaction.
        """
        with self._lock:
            conn = self._get_conn()
            if conn.in_transaction:
                yield conn
                return
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except sqlite3.Error as exc:
                conn.rollback()
                raise StorageError(f"Database write failed: {exc}") from exc
            except BaseException:
                conn.rollback()
                raise
            else:
                conn.commit()

    def vacuum(self) -> None:
        """Reclaim free pages.  Must run outside any transaction."""
        with self._lock:
            self._get_conn().execute("VACUUM")
