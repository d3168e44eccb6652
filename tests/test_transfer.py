"""
Tests for export / import: document validation, modes, conflicts and
lineage preservation.
"""

from __future__ import annotations

import json

import pytest
import yaml

from coding_memory import ConfigStore, MemoryEngine
from coding_memory.errors import ValidationError
from coding_memory.models import LineageState
from coding_memory.store import Database
from coding_memory.transfer import EXPORT_VERSION, ImportMode, parse_import


def _entry(**overrides):
    entry = {
        "id": "o1",
        "sessionId": "s1",
        "type": "decision",
        "title": "Use WAL",
        "createdAt": "2024-01-01T00:00:00+00:00",
    }
    entry.update(overrides)
    return entry


def make_engine(tmp_path, project, db_name="memory.db", db=None):
    path = tmp_path / f"{project}.yaml"
    path.write_text(yaml.safe_dump({
        "project_path": str(tmp_path / project),
        "db_path": str(tmp_path / db_name),
    }), encoding="utf-8")
    store = ConfigStore(str(path), env={})
    return MemoryEngine(db or Database(store.get().resolved_db_path), store)


@pytest.fixture
def engines(tmp_path):
    created = []

    def factory(project, **kwargs):
        eng = make_engine(tmp_path, project, **kwargs)
        created.append(eng)
        return eng

    yield factory
    for eng in created:
        eng.close()


class TestParseImport:
    @pytest.mark.parametrize("payload", [
        "{not json",
        b"\xff\xfe",
        "[]",
        {"version": 2, "observations": []},
        {"observations": []},
        {"version": 1},
        {"version": 1, "observations": {}},
        {"version": 1, "observations": [], "summaries": "none"},
    ])
    def test_document_errors(self, payload):
        with pytest.raises(ValidationError):
            parse_import(payload)

    def test_counts_invalid_entries(self):
        plan = parse_import({
            "version": EXPORT_VERSION,
            "observations": [
                _entry(),
                _entry(id=""),
                _entry(type="poem"),
                _entry(importance=9),
                _entry(facts="a fact"),
                "junk",
            ],
            "summaries": [{"id": "sum1", "sessionId": "s1", "summary": "x"}, {"id": "sum2"}],
        })
        assert [o.id for o in plan.observations] == ["o1"]
        assert [s.id for s in plan.summaries] == ["sum1"]
        assert plan.invalid == 6

    def test_accepts_json_text(self):
        text = json.dumps({"version": 1, "observations": [_entry()]})
        plan = parse_import(text)
        assert plan.observations[0].title == "Use WAL"
        assert plan.observations[0].tool_name == "unknown"


class TestExport:
    def test_document_shape(self, engines):
        engine = engines("alpha")
        engine.save("s1", "first", "decision")
        engine.save("s1", "second", "bugfix")
        engine.save_summary("s1", "Session recap")

        doc = engine.export_data()

        assert doc["version"] == EXPORT_VERSION
        assert doc["project"] == engine.project_path
        assert [o["title"] for o in doc["observations"]] == ["first", "second"]
        assert doc["summaries"][0]["summary"] == "Session recap"
        json.dumps(doc)

    def test_filters(self, engines):
        engine = engines("alpha")
        obs = engine.save("s1", "first", "decision")
        engine.save("s1", "second", "bugfix")
        engine.revise(obs.id, {"title": "first, revised"})

        assert len(engine.export_data()["observations"]) == 3
        current = engine.export_data(include_archived=False)["observations"]
        assert sorted(o["title"] for o in current) == ["first, revised", "second"]
        assert [o["title"] for o in engine.export_data(type="bugfix")["observations"]] == ["second"]

    def test_project_scope(self, engines, tmp_path):
        db = Database(str(tmp_path / "memory.db"))
        alpha = engines("alpha", db=db)
        beta = engines("beta", db=db)
        alpha.save("s1", "a", "decision")
        beta.save("s2", "b", "decision")
        alpha.save_summary("s1", "alpha recap")
        beta.save_summary("s2", "beta recap")

        project_doc = alpha.export_data()
        assert len(project_doc["observations"]) == 1
        assert [s["summary"] for s in project_doc["summaries"]] == ["alpha recap"]

        all_doc = alpha.export_data(scope="all")
        assert len(all_doc["observations"]) == 2
        assert sorted(s["summary"] for s in all_doc["summaries"]) == ["alpha recap", "beta recap"]

    def test_invalid_arguments(self, engines):
        engine = engines("alpha")
        with pytest.raises(ValidationError):
            engine.export_data(scope="galaxy")
        with pytest.raises(ValidationError):
            engine.export_data(type="poem")


class TestImport:
    def test_round_trip_preserves_lineage(self, engines):
        source = engines("alpha")
        v1 = source.save("s1", "Use WAL", "decision", concepts=["sqlite"])
        v2 = source.revise(v1.id, {"title": "Use WAL mode"})
        source.save_summary("s1", "Recap")
        doc = source.export_data()

        target = engines("gamma", db_name="other.db")
        result = target.import_data(doc)

        assert result.imported == 2
        assert result.summaries_imported == 1
        assert target.get(v1.id) is None
        assert target.get(v1.id, include_archived=True).state == LineageState.SUPERSEDED
        assert [n.id for n in target.get_lineage(v2.id)] == [v1.id, v2.id]
        assert [r.observation.id for r in target.search("WAL")] == [v2.id]

    def test_skip_duplicates(self, engines):
        engine = engines("alpha")
        obs = engine.save("s1", "Use WAL", "decision")
        engine.save_summary("s1", "Recap")
        doc = engine.export_data()
        doc["observations"][0]["title"] = "Changed elsewhere"

        result = engine.import_data(doc)

        assert result.to_dict() == {
            "imported": 0, "skipped": 1, "invalid": 0, "conflicts": 0,
            "summariesImported": 0, "summariesSkipped": 1,
        }
        assert engine.get(obs.id).title == "Use WAL"

    def test_overwrite(self, engines):
        engine = engines("alpha")
        obs = engine.save("s1", "Use WAL", "decision")
        doc = engine.export_data()
        doc["observations"][0]["title"] = "Changed elsewhere"

        result = engine.import_data(json.dumps(doc), mode=ImportMode.OVERWRITE)

        assert result.imported == 1
        assert engine.get(obs.id).title == "Changed elsewhere"
        assert [r.observation.title for r in engine.search("elsewhere")] == ["Changed elsewhere"]

    def test_foreign_rows_are_conflicts(self, engines, tmp_path):
        db = Database(str(tmp_path / "memory.db"))
        alpha = engines("alpha", db=db)
        beta = engines("beta", db=db)
        obs = alpha.save("s1", "alpha only", "decision")
        doc = alpha.export_data()

        result = beta.import_data(doc, mode=ImportMode.OVERWRITE)

        assert result.conflicts == 1
        assert result.imported == 0
        assert alpha.get(obs.id).title == "alpha only"

    @pytest.mark.parametrize("mode", ImportMode.ALL)
    def test_foreign_session_leaves_existing_row(self, engines, tmp_path, mode):
        db = Database(str(tmp_path / "memory.db"))
        alpha = engines("alpha", db=db)
        beta = engines("beta", db=db)
        obs = alpha.save("s1", "alpha note", "decision")
        beta.save("s2", "beta note", "decision")
        doc = alpha.export_data()
        doc["observations"][0]["sessionId"] = "s2"
        doc["observations"][0]["title"] = "moved"

        result = alpha.import_data(doc, mode=mode)

        assert result.conflicts == 1
        assert result.imported == 0
        kept = alpha.get(obs.id)
        assert kept is not None
        assert kept.title == "alpha note"
        assert kept.session_id == "s1"
        assert [r.observation.id for r in alpha.search("alpha")] == [obs.id]

    def test_invalid_entries_counted(self, engines):
        engine = engines("alpha")
        result = engine.import_data({
            "version": 1,
            "observations": [_entry(), _entry(id="o2", type="poem")],
        })
        assert result.imported == 1
        assert result.invalid == 1

    def test_unknown_mode(self, engines):
        engine = engines("alpha")
        with pytest.raises(ValidationError):
            engine.import_data({"version": 1, "observations": []}, mode="merge")
