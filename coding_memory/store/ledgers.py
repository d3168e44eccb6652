"""
Append-only ledgers for configuration changes and maintenance runs.

Each ledger has an abstract interface with two implementations: a SQLite
one used in production and an in-memory one for tests and ephemeral
engines.  Listings are newest first; ties on timestamp fall back to
insertion order, newest first.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from typing import Any, Callable, Optional

from ..models import (
    AuditSource,
    ConfigAuditEvent,
    MaintenanceHistoryItem,
    new_id,
    utc_now,
)
from .database import Database

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config audit
# ---------------------------------------------------------------------------

class ConfigAuditLedger(ABC):
    """Append-only record of configuration patches."""

    @abstractmethod
    def append(self, event: ConfigAuditEvent) -> ConfigAuditEvent:
        ...

    @abstractmethod
    def list(self) -> list[ConfigAuditEvent]:
        """All events, most recent first."""

    @abstractmethod
    def get_by_id(self, event_id: str) -> Optional[ConfigAuditEvent]:
        ...

    def record(
        self,
        patch: dict[str, Any],
        previous_values: dict[str, Any],
        source: str,
    ) -> ConfigAuditEvent:
        """Build and append an event stamped with a fresh id and time."""
        return self.append(ConfigAuditEvent(
            id=new_id(),
            timestamp=utc_now(),
            patch=dict(patch),
            previous_values=dict(previous_values),
            source=source,
        ))

    def rollback(
        self,
        event_id: str,
        apply_patch: Callable[[dict[str, Any]], Any],
    ) -> Optional[ConfigAuditEvent]:
        """
        Re-apply the previous values captured by *event_id*.

        On success a ``rollback`` event is appended whose patch is the
        restored values and whose previous values are the original patch.
        On failure a ``rollback-failed`` event is appended and the error is
        re-raised.

        Returns
        -------
        Optional[ConfigAuditEvent]
            The new rollback event, or ``None`` if *event_id* is unknown.
        """
        target = self.get_by_id(event_id)
        if target is None:
            return None
        try:
            apply_patch(dict(target.previous_values))
        except Exception as exc:
            logger.error("[ConfigAudit] Rollback of %s failed: %s", event_id, exc)
            self.record(target.previous_values, target.patch, AuditSource.ROLLBACK_FAILED)
            raise
        logger.info("[ConfigAudit] Rolled back %s", event_id)
        return self.record(target.previous_values, target.patch, AuditSource.ROLLBACK)


class SQLiteConfigAuditLedger(ConfigAuditLedger):

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(self, event: ConfigAuditEvent) -> ConfigAuditEvent:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO config_audit_events (id, timestamp, patch, "
                "previous_values, source) VALUES (?, ?, ?, ?, ?)",
                (event.id, event.timestamp, json.dumps(event.patch),
                 json.dumps(event.previous_values), event.source),
            )
        return event

    def list(self) -> list[ConfigAuditEvent]:
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM config_audit_events ORDER BY timestamp DESC, _rowid DESC"
            ).fetchall()
        return [self._to_event(r) for r in rows]

    def get_by_id(self, event_id: str) -> Optional[ConfigAuditEvent]:
        with self._db.read() as conn:
            row = conn.execute(
                "SELECT * FROM config_audit_events WHERE id = ?", (event_id,)
            ).fetchone()
        return self._to_event(row) if row else None

    @staticmethod
    def _to_event(row) -> ConfigAuditEvent:
        return ConfigAuditEvent(
            id=row["id"],
            timestamp=row["timestamp"],
            patch=json.loads(row["patch"]),
            previous_values=json.loads(row["previous_values"]),
            source=row["source"],
        )


class InMemoryConfigAuditLedger(ConfigAuditLedger):

    def __init__(self) -> None:
        self._events: list[ConfigAuditEvent] = []
        self._lock = threading.Lock()

    def append(self, event: ConfigAuditEvent) -> ConfigAuditEvent:
        with self._lock:
            self._events.append(event)
        return event

    def list(self) -> list[ConfigAuditEvent]:
        with self._lock:
            indexed = list(enumerate(self._events))
        indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [event for _, event in indexed]

    def get_by_id(self, event_id: str) -> Optional[ConfigAuditEvent]:
        with self._lock:
            for event in self._events:
                if event.id == event_id:
                    return event
        return None


# ---------------------------------------------------------------------------
# Maintenance history
# ---------------------------------------------------------------------------

class MaintenanceLedger(ABC):
    """Append-only record of maintenance runs."""

    @abstractmethod
    def append(self, item: MaintenanceHistoryItem) -> MaintenanceHistoryItem:
        ...

    @abstractmethod
    def list(self) -> list[MaintenanceHistoryItem]:
        """All runs, most recent first."""

    def record(self, action: str, dry_run: bool, result: dict[str, Any]) -> MaintenanceHistoryItem:
        return self.append(MaintenanceHistoryItem(
            id=new_id(),
            timestamp=utc_now(),
            action=action,
            dry_run=dry_run,
            result=dict(result),
        ))


class SQLiteMaintenanceLedger(MaintenanceLedger):

    def __init__(self, db: Database) -> None:
        self._db = db

    def append(self, item: MaintenanceHistoryItem) -> MaintenanceHistoryItem:
        with self._db.transaction() as conn:
            conn.execute(
                "INSERT INTO maintenance_history (id, timestamp, action, dry_run, result) "
                "VALUES (?, ?, ?, ?, ?)",
                (item.id, item.timestamp, item.action, int(item.dry_run),
                 json.dumps(item.result, default=str)),
            )
        return item

    def list(self) -> list[MaintenanceHistoryItem]:
        with self._db.read() as conn:
            rows = conn.execute(
                "SELECT * FROM maintenance_history ORDER BY timestamp DESC, _rowid DESC"
            ).fetchall()
        return [
            MaintenanceHistoryItem(
                id=r["id"],
                timestamp=r["timestamp"],
                action=r["action"],
                dry_run=bool(r["dry_run"]),
                result=json.loads(r["result"]),
            )
            for r in rows
        ]


class InMemoryMaintenanceLedger(MaintenanceLedger):

    def __init__(self) -> None:
        self._items: list[MaintenanceHistoryItem] = []
        self._lock = threading.Lock()

    def append(self, item: MaintenanceHistoryItem) -> MaintenanceHistoryItem:
        with self._lock:
            self._items.append(item)
        return item

    def list(self) -> list[MaintenanceHistoryItem]:
        with self._lock:
            indexed = list(enumerate(self._items))
        indexed.sort(key=lambda pair: (pair[1].timestamp, pair[0]), reverse=True)
        return [item for _, item in indexed]
