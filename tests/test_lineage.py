"""
Unit tests for coding_memory.lineage
"""

from __future__ import annotations

from coding_memory.lineage import get_lineage, get_revision_diff
from coding_memory.models import LineageState, Observation


def _obs(obs_id, revision_of=None, superseded_by=None, **kwargs):
    kwargs.setdefault("title", obs_id)
    kwargs.setdefault("type", "decision")
    return Observation(
        id=obs_id,
        session_id="s1",
        created_at="2024-01-01T00:00:00+00:00",
        revision_of=revision_of,
        superseded_by=superseded_by,
        **kwargs,
    )


def _lookup(*observations):
    table = {o.id: o for o in observations}
    return table.get


class TestGetLineage:
    def test_unknown_anchor(self):
        assert get_lineage("missing", _lookup()) is None

    def test_single_revision(self):
        chain = get_lineage("a", _lookup(_obs("a")))
        assert [n.id for n in chain] == ["a"]
        assert chain[0].state == LineageState.CURRENT

    def test_chain_from_middle(self):
        lookup = _lookup(
            _obs("r", superseded_by="m"),
            _obs("m", revision_of="r", superseded_by="t"),
            _obs("t", revision_of="m"),
        )
        chain = get_lineage("m", lookup)
        assert [n.id for n in chain] == ["r", "m", "t"]
        assert [n.state for n in chain] == [
            LineageState.SUPERSEDED, LineageState.SUPERSEDED, LineageState.CURRENT,
        ]

    def test_same_chain_from_every_member(self):
        lookup = _lookup(
            _obs("r", superseded_by="m"),
            _obs("m", revision_of="r", superseded_by="t"),
            _obs("t", revision_of="m"),
        )
        expected = ["r", "m", "t"]
        for anchor in expected:
            assert [n.id for n in get_lineage(anchor, lookup)] == expected

    def test_tombstoned_tip(self):
        lookup = _lookup(
            _obs("r", superseded_by="t"),
            _obs("t", revision_of="r", deleted_at="2024-02-01T00:00:00+00:00"),
        )
        chain = get_lineage("r", lookup)
        assert chain[-1].state == LineageState.TOMBSTONED

    def test_cycle_terminates(self):
        lookup = _lookup(
            _obs("a", revision_of="b", superseded_by="b"),
            _obs("b", revision_of="a", superseded_by="a"),
        )
        chain = get_lineage("a", lookup)
        assert sorted(n.id for n in chain) == ["a", "b"]

    def test_dangling_pointer(self):
        lookup = _lookup(_obs("t", revision_of="gone"))
        assert [n.id for n in get_lineage("t", lookup)] == ["t"]

    def test_inconsistent_forward_pointer(self):
        lookup = _lookup(
            _obs("r", superseded_by="x"),
            _obs("x"),
            _obs("m", revision_of="r", superseded_by="a"),
            _obs("a", revision_of="m"),
        )
        chain = get_lineage("a", lookup)
        assert [n.id for n in chain] == ["r", "m", "a"]

    def test_node_serialisation(self):
        chain = get_lineage("a", _lookup(_obs("a")))
        data = chain[0].to_dict()
        assert data["state"] == "current"
        assert data["observation"]["id"] == "a"


class TestRevisionDiff:
    def test_changed_fields_in_order(self):
        lookup = _lookup(
            _obs("old", title="Use WAL", concepts=["sqlite"]),
            _obs("new", title="Use WAL mode", concepts=["sqlite", "wal"]),
        )
        diff = get_revision_diff("new", "old", lookup)
        assert diff.from_id == "old"
        assert diff.to_id == "new"
        assert [c.field for c in diff.changed_fields] == ["title", "concepts"]
        assert diff.changed_fields[1].before == ["sqlite"]
        assert diff.changed_fields[1].after == ["sqlite", "wal"]
        assert diff.summary == "Changed 2 fields: title, concepts."

    def test_camel_case_field_names(self):
        lookup = _lookup(
            _obs("old", title="x", files_read=["a.py"]),
            _obs("new", title="x", files_read=["b.py"]),
        )
        diff = get_revision_diff("new", "old", lookup)
        assert [c.field for c in diff.changed_fields] == ["filesRead"]

    def test_list_order_matters(self):
        lookup = _lookup(
            _obs("old", title="x", facts=["a", "b"]),
            _obs("new", title="x", facts=["b", "a"]),
        )
        diff = get_revision_diff("new", "old", lookup)
        assert [c.field for c in diff.changed_fields] == ["facts"]

    def test_no_changes(self):
        lookup = _lookup(_obs("old", title="same"), _obs("new", title="same"))
        diff = get_revision_diff("new", "old", lookup)
        assert diff.changed_fields == []
        assert diff.summary == "No material changes between revisions."

    def test_missing_side(self):
        lookup = _lookup(_obs("new"))
        assert get_revision_diff("new", "old", lookup) is None
        assert get_revision_diff("old", "new", lookup) is None

    def test_to_dict(self):
        lookup = _lookup(_obs("old", title="a"), _obs("new", title="b"))
        data = get_revision_diff("new", "old", lookup).to_dict()
        assert data["changedFields"] == [{"field": "title", "before": "a", "after": "b"}]
