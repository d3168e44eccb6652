"""
Unit tests for coding_memory.store.sessions
"""

from __future__ import annotations

import pytest

from coding_memory.models import SessionSummary
from coding_memory.store import Database, SessionStore, SummaryStore


@pytest.fixture
def db(tmp_path):
    database = Database(str(tmp_path / "memory.db"))
    yield database
    database.close()


class TestSessionStore:
    def test_create_and_get(self, db):
        store = SessionStore(db)
        session = store.create("s1", "/proj/a")
        fetched = store.get("s1")
        assert fetched.project_path == "/proj/a"
        assert fetched.status == "active"
        assert fetched.started_at == session.started_at

    def test_get_or_create(self, db):
        store = SessionStore(db)
        first = store.get_or_create("s1", "/proj/a")
        second = store.get_or_create("s1", "/proj/b")
        assert second.project_path == "/proj/a"
        assert second.started_at == first.started_at

    def test_mark_completed(self, db):
        store = SessionStore(db)
        store.create("s1", "/proj/a")
        done = store.mark_completed("s1")
        assert done.status == "completed"
        assert done.ended_at is not None
        again = store.mark_completed("s1")
        assert again.ended_at == done.ended_at

    def test_list_and_count(self, db):
        store = SessionStore(db)
        store.create("s1", "/proj/a")
        store.create("s2", "/proj/a")
        store.create("s3", "/proj/b")
        assert store.count("/proj/a") == 2
        assert {s.id for s in store.list_by_project("/proj/a")} == {"s1", "s2"}


class TestSummaryStore:
    def test_create_links_session(self, db):
        SessionStore(db).create("s1", "/proj/a")
        summaries = SummaryStore(db)
        summary = summaries.create(SessionSummary(
            id="", session_id="s1", summary="Shipped search",
            key_decisions=["use fts5"], next_steps="reranking",
        ))
        assert summary.id
        assert summary.created_at
        assert SessionStore(db).get("s1").summary_id == summary.id

        fetched = summaries.get_by_session("s1")
        assert fetched.key_decisions == ["use fts5"]
        assert fetched.next_steps == "reranking"

    def test_list_by_project(self, db):
        sessions = SessionStore(db)
        sessions.create("s1", "/proj/a")
        sessions.create("s2", "/proj/b")
        summaries = SummaryStore(db)
        summaries.create(SessionSummary(id="", session_id="s1", summary="a"))
        summaries.create(SessionSummary(id="", session_id="s2", summary="b"))
        assert [s.summary for s in summaries.list_by_project("/proj/a")] == ["a"]
        assert sorted(s.summary for s in summaries.list_by_project(None)) == ["a", "b"]

    def test_delete(self, db):
        SessionStore(db).create("s1", "/proj/a")
        summaries = SummaryStore(db)
        summary = summaries.create(SessionSummary(id="", session_id="s1", summary="a"))
        assert summaries.delete(summary.id) is True
        assert summaries.get(summary.id) is None
        assert summaries.delete(summary.id) is False
