"""
End-to-end tests for the codingmem command line.
"""

from __future__ import annotations

import json

import pytest
import yaml

from coding_memory.cli import main


@pytest.fixture
def config_path(tmp_path):
    path = tmp_path / "cfg.yaml"
    path.write_text(yaml.safe_dump({
        "project_path": str(tmp_path / "proj"),
        "db_path": str(tmp_path / "memory.db"),
        "log_dir": str(tmp_path / "logs"),
        "log_level": "error",
    }), encoding="utf-8")
    return str(path)


def run(config_path, *argv):
    main(["--config", config_path, *argv])


def save(config_path, capsys, title, *extra):
    run(config_path, "save", title, "--type", "decision", *extra)
    out = capsys.readouterr().out
    assert out.startswith("Saved decision observation ")
    return out.split()[-1]


def test_save_and_search_json(config_path, capsys):
    obs_id = save(config_path, capsys, "Retry policy",
                  "--narrative", "exponential backoff", "--concepts", "http, retries")

    run(config_path, "search", "backoff", "--json")
    results = json.loads(capsys.readouterr().out)

    assert [r["observation"]["id"] for r in results] == [obs_id]
    assert results[0]["observation"]["concepts"] == ["http", "retries"]


def test_search_text_output(config_path, capsys):
    save(config_path, capsys, "Retry policy")
    run(config_path, "search", "retry", "--strategy", "lexical")
    out = capsys.readouterr().out
    assert "[1] decision: Retry policy" in out

    run(config_path, "search", "nothingmatches")
    assert "No results found" in capsys.readouterr().out


def test_show_and_missing(config_path, capsys):
    obs_id = save(config_path, capsys, "Use WAL", "--fact", "a", "--fact", "b")
    run(config_path, "show", obs_id)
    assert json.loads(capsys.readouterr().out)["facts"] == ["a", "b"]

    with pytest.raises(SystemExit) as excinfo:
        run(config_path, "show", "missing")
    assert excinfo.value.code == 1


def test_remove(config_path, capsys):
    obs_id = save(config_path, capsys, "Use WAL")
    run(config_path, "remove", obs_id, "missing")
    assert "Tombstoned 1 of 2 observation(s)" in capsys.readouterr().out


def test_lineage_marks_requested_node(config_path, capsys):
    obs_id = save(config_path, capsys, "Use WAL")
    run(config_path, "lineage", obs_id)
    out = capsys.readouterr().out
    assert obs_id in out
    assert "[current]" in out


def test_validation_error_exit_code(config_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        run(config_path, "save", "t", "--type", "decision", "--importance", "9")
    assert excinfo.value.code == 2
    assert "Error [VALIDATION_ERROR]" in capsys.readouterr().err


def test_stats_json(config_path, capsys):
    save(config_path, capsys, "a")
    run(config_path, "stats", "--json")
    data = json.loads(capsys.readouterr().out)
    assert data["totalObservations"] == 1
    assert data["typeBreakdown"] == {"decision": 1}


def test_config_set_audit_rollback(config_path, capsys):
    run(config_path, "config", "set", "min_similarity=0.5", "reranking_enabled=true")
    out = capsys.readouterr().out
    event_id = out.split()[-1]

    with open(config_path, encoding="utf-8") as f:
        on_disk = yaml.safe_load(f)
    assert on_disk["min_similarity"] == 0.5
    assert on_disk["reranking_enabled"] is True

    run(config_path, "config", "audit")
    assert "[api]" in capsys.readouterr().out

    run(config_path, "config", "rollback", event_id)
    assert f"Rolled back {event_id}" in capsys.readouterr().out
    with open(config_path, encoding="utf-8") as f:
        assert yaml.safe_load(f)["min_similarity"] == 0.3


def test_config_set_rejects_unknown_key(config_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        run(config_path, "config", "set", "colour=blue")
    assert excinfo.value.code == 2


def test_maintenance(config_path, capsys):
    save(config_path, capsys, "a")
    run(config_path, "maintenance", "run", "reindex", "--dry-run")
    assert "reindex (dry run)" in capsys.readouterr().out
    run(config_path, "maintenance", "history")
    assert "reindex dry-run" in capsys.readouterr().out


def test_export_import(config_path, tmp_path, capsys):
    save(config_path, capsys, "Use WAL")
    export_file = tmp_path / "export.json"
    run(config_path, "export", "-o", str(export_file))
    assert "Exported 1 observation(s)" in capsys.readouterr().out

    other = tmp_path / "other.yaml"
    other.write_text(yaml.safe_dump({
        "project_path": str(tmp_path / "other"),
        "db_path": str(tmp_path / "other.db"),
        "log_dir": str(tmp_path / "logs"),
    }), encoding="utf-8")
    run(str(other), "import", str(export_file))
    assert "Imported  : 1" in capsys.readouterr().out


def test_embed_without_provider(config_path, capsys):
    with pytest.raises(SystemExit) as excinfo:
        run(config_path, "embed")
    assert excinfo.value.code == 1
    assert "No embedding provider" in capsys.readouterr().err


def test_graph_unknown_entity(config_path, capsys):
    run(config_path, "graph", "pgbouncer")
    assert "No entity matching" in capsys.readouterr().out
