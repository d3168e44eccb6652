"""
Unit tests for coding_memory.store.entities
"""

from __future__ import annotations

import sqlite3
from unittest.mock import patch

import networkx as nx
import pytest

from coding_memory.errors import ValidationError
from coding_memory.store import Database, EntityGraph
from coding_memory.store.entities import MAX_TRAVERSAL_NODES


@pytest.fixture
def graph(tmp_path):
    db = Database(str(tmp_path / "memory.db"))
    yield EntityGraph(db)
    db.close()


def _chain(graph, names):
    entities = [graph.upsert_entity(n, "technology") for n in names]
    for a, b in zip(entities, entities[1:]):
        graph.create_relation(a.id, b.id, "depends_on", "obs-1")
    return entities


class TestEntities:
    def test_upsert_bumps_mention_count(self, graph):
        first = graph.upsert_entity("SQLite", "technology")
        second = graph.upsert_entity("SQLite", "technology")
        assert second.id == first.id
        assert second.mention_count == 2
        assert second.first_seen_at == first.first_seen_at
        assert graph.count() == 1

    def test_same_name_different_type(self, graph):
        a = graph.upsert_entity("redis", "technology")
        b = graph.upsert_entity("redis", "library")
        assert a.id != b.id
        assert len(graph.get_by_name("REDIS")) == 2
        assert len(graph.get_by_name("redis", "library")) == 1

    def test_upsert_strips_name(self, graph):
        entity = graph.upsert_entity("  numpy ", "library")
        assert entity.name == "numpy"

    @pytest.mark.parametrize("name,entity_type", [("", "technology"), ("x", "gadget")])
    def test_upsert_validation(self, graph, name, entity_type):
        with pytest.raises(ValidationError):
            graph.upsert_entity(name, entity_type)

    def test_find_by_name(self, graph):
        graph.upsert_entity("postgres", "technology")
        graph.upsert_entity("redis", "technology")
        found = graph.find_by_name("postgres")
        assert [e.name for e in found] == ["postgres"]

    def test_find_by_name_empty(self, graph):
        assert graph.find_by_name("  ") == []

    def test_find_by_name_backend_error(self, graph):
        graph.upsert_entity("postgres", "technology")
        with patch.object(graph._db, "read", side_effect=sqlite3.OperationalError("boom")):
            assert graph.find_by_name("postgres") == []


class TestRelations:
    def test_create_relation_is_idempotent(self, graph):
        a = graph.upsert_entity("app", "project")
        b = graph.upsert_entity("flask", "library")
        first = graph.create_relation(a.id, b.id, "uses", "obs-1")
        second = graph.create_relation(a.id, b.id, "uses", "obs-2")
        assert first.id == second.id
        assert second.observation_id == "obs-1"
        assert len(graph.get_relations_for(a.id)) == 1

    def test_different_relationship_is_new_edge(self, graph):
        a = graph.upsert_entity("app", "project")
        b = graph.upsert_entity("flask", "library")
        graph.create_relation(a.id, b.id, "uses", "obs-1")
        graph.create_relation(a.id, b.id, "replaced", "obs-1")
        assert len(graph.get_relations_for(b.id)) == 2

    def test_missing_endpoint(self, graph):
        a = graph.upsert_entity("app", "project")
        assert graph.create_relation(a.id, "ghost", "uses", "obs-1") is None

    def test_self_relation(self, graph):
        a = graph.upsert_entity("app", "project")
        assert graph.create_relation(a.id, a.id, "wraps", "obs-1") is not None

    def test_empty_relationship(self, graph):
        a = graph.upsert_entity("app", "project")
        b = graph.upsert_entity("flask", "library")
        with pytest.raises(ValidationError):
            graph.create_relation(a.id, b.id, " ", "obs-1")


class TestTraversal:
    def test_depth_one(self, graph):
        a, b, c, d = _chain(graph, ["a", "b", "c", "d"])
        assert graph.traverse_relations(a.id, depth=1) == {a.id, b.id}

    def test_depth_is_clamped(self, graph):
        a, b, c, d = _chain(graph, ["a", "b", "c", "d"])
        assert graph.traverse_relations(a.id, depth=10) == {a.id, b.id, c.id}

    def test_walks_both_directions(self, graph):
        a, b, c = _chain(graph, ["a", "b", "c"])
        assert graph.traverse_relations(c.id, depth=1) == {b.id, c.id}

    def test_depth_zero(self, graph):
        a, b = _chain(graph, ["a", "b"])
        assert graph.traverse_relations(a.id, depth=0) == {a.id}

    def test_node_cap(self, graph):
        hub = graph.upsert_entity("hub", "concept")
        for i in range(MAX_TRAVERSAL_NODES + 20):
            leaf = graph.upsert_entity(f"leaf{i}", "concept")
            graph.create_relation(hub.id, leaf.id, "has", "obs-1")
        visited = graph.traverse_relations(hub.id, depth=2)
        assert len(visited) == MAX_TRAVERSAL_NODES
        assert hub.id in visited

    def test_cycle_terminates(self, graph):
        a, b = _chain(graph, ["a", "b"])
        graph.create_relation(b.id, a.id, "depends_on", "obs-1")
        assert graph.traverse_relations(a.id, depth=2) == {a.id, b.id}

    def test_neighborhood_graph(self, graph):
        a, b, c = _chain(graph, ["a", "b", "c"])
        g = graph.neighborhood(a.id, depth=1)
        assert isinstance(g, nx.DiGraph)
        assert set(g.nodes) == {a.id, b.id}
        assert g.nodes[b.id]["name"] == "b"
        assert g.edges[a.id, b.id]["relationship"] == "depends_on"


class TestObservationLinks:
    def test_link_is_idempotent(self, graph):
        e = graph.upsert_entity("pytest", "library")
        graph.link_observation(e.id, "obs-1")
        graph.link_observation(e.id, "obs-1")
        graph.link_observation(e.id, "obs-2")
        assert sorted(graph.get_observations_for_entity(e.id)) == ["obs-1", "obs-2"]
        assert [x.name for x in graph.get_entities_for_observation("obs-1")] == ["pytest"]
