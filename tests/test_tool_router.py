"""
Tests for coding_memory.rpc: tool dispatch and the response envelope
returned for each tool.
"""

from __future__ import annotations

import json

import pytest
import yaml
from mcp.server import Server

from coding_memory import ConfigStore, MemoryEngine
from coding_memory.rpc import ToolRouter, build_server
from coding_memory.store import Database

TOOLS = [
    "memory.create",
    "memory.revise",
    "memory.remove",
    "memory.get",
    "memory.find",
    "memory.history",
    "memory.lineage",
    "memory.diff",
    "memory.transfer.export",
    "memory.transfer.import",
    "memory.config.audit",
    "memory.config.rollback",
    "memory.maintenance.history",
]


@pytest.fixture
def env():
    return {}


@pytest.fixture
def engine(tmp_path, env):
    path = tmp_path / "cfg.yaml"
    path.write_text(yaml.safe_dump({
        "project_path": str(tmp_path / "proj"),
        "db_path": str(tmp_path / "memory.db"),
    }), encoding="utf-8")
    store = ConfigStore(str(path), env=env)
    eng = MemoryEngine(Database(store.get().resolved_db_path), store)
    yield eng
    eng.close()


@pytest.fixture
def router(engine):
    return ToolRouter(engine)


def _create(router, title="Use WAL", **extra):
    args = {"sessionId": "s1", "title": title, "type": "decision"}
    args.update(extra)
    envelope = router.dispatch("memory.create", args)
    assert envelope["error"] is None, envelope["error"]
    return envelope["data"]


def test_tool_names(router):
    assert router.tool_names == TOOLS
    tools = router.list_tools()
    assert [t.name for t in tools] == TOOLS
    create = tools[0]
    assert create.inputSchema["required"] == ["sessionId", "title", "type"]


def test_unknown_tool(router):
    envelope = router.dispatch("memory.explode", {})
    assert envelope["error"]["code"] == "NOT_FOUND"


def test_non_object_arguments(router):
    envelope = router.dispatch("memory.get", ["o1"])
    assert envelope["error"]["code"] == "VALIDATION_ERROR"


def test_create_returns_camel_case(router):
    data = _create(router, filesRead=["a.py"], importance=4)
    assert data["sessionId"] == "s1"
    assert data["filesRead"] == ["a.py"]
    assert data["importance"] == 4
    assert data["revisionOf"] is None


def test_create_validation(router):
    envelope = router.dispatch("memory.create", {"sessionId": "s1", "title": "", "type": "decision"})
    assert envelope["error"]["code"] == "VALIDATION_ERROR"
    envelope = router.dispatch("memory.create", {"title": "x", "type": "decision"})
    assert envelope["error"]["code"] == "VALIDATION_ERROR"


def test_revise_lineage_and_diff(router):
    original = _create(router)
    envelope = router.dispatch("memory.revise", {"id": original["id"], "title": "Use WAL mode"})
    revised = envelope["data"]
    assert revised["revisionOf"] == original["id"]

    stale = router.dispatch("memory.revise", {"id": original["id"], "title": "again"})
    assert stale["error"]["code"] == "CONFLICT"

    missing = router.dispatch("memory.revise", {"id": "nope", "title": "x"})
    assert missing["error"]["code"] == "NOT_FOUND"

    chain = router.dispatch("memory.lineage", {"id": revised["id"]})["data"]
    assert [n["state"] for n in chain] == ["superseded", "current"]

    diff = router.dispatch("memory.diff", {"id": revised["id"], "againstId": original["id"]})["data"]
    assert diff["changedFields"] == [
        {"field": "title", "before": "Use WAL", "after": "Use WAL mode"}
    ]


def test_remove_and_get(router):
    a = _create(router, "a")
    b = _create(router, "b")
    envelope = router.dispatch("memory.remove", {"ids": [a["id"], b["id"], "missing"]})
    assert envelope["data"] == {"tombstoned": 2}

    assert router.dispatch("memory.get", {"id": a["id"]})["error"]["code"] == "NOT_FOUND"
    archived = router.dispatch("memory.get", {"id": a["id"], "includeArchived": True})
    assert archived["data"]["deletedAt"] is not None

    single = router.dispatch("memory.remove", {"id": b["id"]})
    assert single["data"] == {"tombstoned": 0}
    bad = router.dispatch("memory.remove", {"ids": "a"})
    assert bad["error"]["code"] == "VALIDATION_ERROR"


def test_find(router):
    created = _create(router, "Retry policy", narrative="exponential backoff")
    envelope = router.dispatch("memory.find", {"query": "backoff", "filters": {"limit": 5}})
    results = envelope["data"]
    assert [r["observation"]["id"] for r in results] == [created["id"]]
    assert results[0]["rank"] == 1
    assert results[0]["explain"]["matchedBy"] == ["lexical"]
    assert "rawToolOutput" not in results[0]["observation"]

    bad = router.dispatch("memory.find", {"query": "x", "filters": {"strategy": "psychic"}})
    assert bad["error"]["code"] == "VALIDATION_ERROR"


def test_history(router):
    _create(router, "first")
    _create(router, "second")
    envelope = router.dispatch("memory.history", {"limit": 1})
    assert [o["title"] for o in envelope["data"]] == ["second"]
    assert "durationMs" in envelope["meta"]
    assert router.dispatch("memory.history", {"limit": 0})["error"]["code"] == "VALIDATION_ERROR"


def test_transfer_round_trip(router):
    _create(router, "exported")
    doc = router.dispatch("memory.transfer.export", {})["data"]
    assert doc["version"] == 1

    envelope = router.dispatch("memory.transfer.import", {"payload": json.dumps(doc)})
    assert envelope["data"]["skipped"] == 1

    missing = router.dispatch("memory.transfer.import", {})
    assert missing["error"]["code"] == "VALIDATION_ERROR"
    broken = router.dispatch("memory.transfer.import", {"payload": "{"})
    assert broken["error"]["code"] == "VALIDATION_ERROR"


def test_config_audit_and_rollback(router, engine):
    event = engine.patch_config({"min_similarity": 0.5})
    timeline = router.dispatch("memory.config.audit", {})["data"]
    assert timeline[0]["id"] == event.id
    assert timeline[0]["previousValues"] == {"min_similarity": 0.3}

    rolled = router.dispatch("memory.config.rollback", {"eventId": event.id})
    assert rolled["data"]["source"] == "rollback"
    assert engine.config.min_similarity == 0.3

    missing = router.dispatch("memory.config.rollback", {"eventId": "nope"})
    assert missing["error"]["code"] == "NOT_FOUND"


def test_rollback_locked_by_env(router, engine, env):
    event = engine.patch_config({"min_similarity": 0.5})
    env["CODING_MEMORY_MIN_SIMILARITY"] = "0.9"

    envelope = router.dispatch("memory.config.rollback", {"eventId": event.id})

    assert envelope["error"]["code"] == "LOCKED_BY_ENV"
    timeline = router.dispatch("memory.config.audit", {})["data"]
    assert timeline[0]["source"] == "rollback-failed"


def test_maintenance_history(router, engine):
    engine.run_maintenance("vacuum", dry_run=True)
    data = router.dispatch("memory.maintenance.history", {})["data"]
    assert data[0]["action"] == "vacuum"
    assert data[0]["dryRun"] is True


def test_build_server(router):
    app = build_server(router)
    assert isinstance(app, Server)
    assert app.name == "coding-memory"
