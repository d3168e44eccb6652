"""
Unit tests for the config-audit and maintenance ledgers (both backends).
"""

from __future__ import annotations

import pytest

from coding_memory.errors import ConfigLockedError
from coding_memory.models import AuditSource, ConfigAuditEvent, MaintenanceHistoryItem
from coding_memory.store import (
    Database,
    InMemoryConfigAuditLedger,
    InMemoryMaintenanceLedger,
    SQLiteConfigAuditLedger,
    SQLiteMaintenanceLedger,
)


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "memory.db"))
    yield database
    database.close()


@pytest.fixture(params=["sqlite", "memory"])
def audit_ledger(request, db):
    if request.param == "sqlite":
        return SQLiteConfigAuditLedger(db)
    return InMemoryConfigAuditLedger()


@pytest.fixture(params=["sqlite", "memory"])
def maintenance_ledger(request, db):
    if request.param == "sqlite":
        return SQLiteMaintenanceLedger(db)
    return InMemoryMaintenanceLedger()


class TestConfigAuditLedger:
    def test_record_and_get(self, audit_ledger):
        event = audit_ledger.record({"min_similarity": 0.5}, {"min_similarity": 0.3}, AuditSource.API)
        fetched = audit_ledger.get_by_id(event.id)
        assert fetched.patch == {"min_similarity": 0.5}
        assert fetched.previous_values == {"min_similarity": 0.3}
        assert fetched.source == "api"

    def test_unknown_id(self, audit_ledger):
        assert audit_ledger.get_by_id("nope") is None

    def test_list_newest_first(self, audit_ledger):
        audit_ledger.append(ConfigAuditEvent("e1", "2024-01-01T00:00:00+00:00", {}, {}, "api"))
        audit_ledger.append(ConfigAuditEvent("e2", "2024-03-01T00:00:00+00:00", {}, {}, "api"))
        audit_ledger.append(ConfigAuditEvent("e3", "2024-02-01T00:00:00+00:00", {}, {}, "mode"))
        assert [e.id for e in audit_ledger.list()] == ["e2", "e3", "e1"]

    def test_timestamp_ties_fall_back_to_insertion_order(self, audit_ledger):
        ts = "2024-01-01T00:00:00+00:00"
        for event_id in ("e1", "e2", "e3"):
            audit_ledger.append(ConfigAuditEvent(event_id, ts, {}, {}, "api"))
        assert [e.id for e in audit_ledger.list()] == ["e3", "e2", "e1"]

    def test_rollback_applies_previous_values(self, audit_ledger):
        applied = []
        event = audit_ledger.record({"lexical_weight": 2.0}, {"lexical_weight": 1.0}, AuditSource.API)

        rollback = audit_ledger.rollback(event.id, applied.append)

        assert applied == [{"lexical_weight": 1.0}]
        assert rollback.source == AuditSource.ROLLBACK
        assert rollback.patch == {"lexical_weight": 1.0}
        assert rollback.previous_values == {"lexical_weight": 2.0}
        assert audit_ledger.list()[0].id == rollback.id

    def test_rollback_failure_is_recorded_and_raised(self, audit_ledger):
        event = audit_ledger.record({"lexical_weight": 2.0}, {"lexical_weight": 1.0}, AuditSource.API)

        def refuse(patch):
            raise ConfigLockedError("pinned")

        with pytest.raises(ConfigLockedError):
            audit_ledger.rollback(event.id, refuse)

        sources = [e.source for e in audit_ledger.list()]
        assert sources.count(AuditSource.ROLLBACK_FAILED) == 1
        assert AuditSource.ROLLBACK not in sources

    def test_rollback_unknown(self, audit_ledger):
        assert audit_ledger.rollback("nope", lambda p: None) is None
        assert audit_ledger.list() == []


class TestMaintenanceLedger:
    def test_record(self, maintenance_ledger):
        item = maintenance_ledger.record("vacuum", True, {"database": "x.db"})
        listed = maintenance_ledger.list()
        assert len(listed) == 1
        assert listed[0].id == item.id
        assert listed[0].dry_run is True
        assert listed[0].result == {"database": "x.db"}

    def test_list_newest_first(self, maintenance_ledger):
        ts = "2024-01-01T00:00:00+00:00"
        maintenance_ledger.append(MaintenanceHistoryItem("m1", ts, "reindex", False))
        maintenance_ledger.append(MaintenanceHistoryItem("m2", ts, "vacuum", False))
        maintenance_ledger.append(
            MaintenanceHistoryItem("m0", "2023-01-01T00:00:00+00:00", "vacuum", False)
        )
        assert [i.id for i in maintenance_ledger.list()] == ["m2", "m1", "m0"]
