"""Tests for graph queries: neighbors, events_for, shortest_path."""

import pytest

from lorekeeper.errors import NotFound
from lorekeeper.models import Entity, Event, Participation, Relationship
from lorekeeper.query import GraphQuery, Hop
from lorekeeper.state import WorldSnapshot


def chain_snapshot():
    """a - b - c - d in a line, plus an isolated e."""
    entities = [Entity(id=i, type="character", name=i.upper()) for i in "abcde"]
    relationships = [
        Relationship(id="ab", source_id="a", target_id="b", type="ally"),
        Relationship(id="cb", source_id="c", target_id="b", type="enemy"),
        Relationship(id="cd", source_id="c", target_id="d", type="ally"),
    ]
    return WorldSnapshot.build(entities=entities, relationships=relationships)


class TestNeighbors:
    def test_both_directions(self, populated_engine):
        found = populated_engine.neighbors("aldric")
        assert [(n.entity_id, n.relationship_type, n.subtype) for n in found] == [
            ("corin", "family", "parent"),
            ("brenna", "family", "spouse"),
        ]
        assert {n.direction for n in found} == {"outgoing"}

        incoming = populated_engine.neighbors("corin")
        assert incoming[0].entity_id == "aldric"
        assert incoming[0].direction == "incoming"

    def test_type_filter(self, populated_engine):
        found = populated_engine.neighbors("brenna", ["MEMBER"])
        assert [n.entity_id for n in found] == ["guild"]

    def test_unknown_entity(self, populated_engine):
        with pytest.raises(NotFound):
            populated_engine.neighbors("ghost")

    def test_dangling_edges_skipped(self):
        snapshot = WorldSnapshot.build(
            entities=[Entity(id="a", type="character", name="A")],
            relationships=[Relationship(id="r", source_id="a", target_id="gone", type="ally")],
        )
        assert GraphQuery(snapshot).neighbors("a") == []


class TestEventsFor:
    def test_ordered_by_date_then_id(self):
        snapshot = WorldSnapshot.build(
            entities=[Entity(id="c", type="character", name="C")],
            events=[
                Event(id="z", title="Z", start_date=5),
                Event(id="late", title="Late", start_date=9),
                Event(id="a", title="A", start_date=5),
            ],
            participations=[
                Participation(event_id="late", entity_id="c"),
                Participation(event_id="z", entity_id="c"),
                Participation(event_id="a", entity_id="c", role="mentioned"),
                Participation(event_id="a", entity_id="c", role="affected"),
            ],
        )
        assert [e.id for e in GraphQuery(snapshot).events_for("c")] == ["a", "z", "late"]

    def test_numeric_ids_in_natural_order(self, engine):
        engine.create_entity(id=1, type="character", name="Aldric")
        for event_id in (10, 9):
            engine.create_event(id=event_id, title=f"Event {event_id}", start_date=5)
            engine.add_participant(event_id, 1)
        assert [e.id for e in engine.events_for(1)] == ["9", "10"]

    def test_from_engine(self, populated_engine):
        assert [e.id for e in populated_engine.events_for("brenna")] == ["founding", "wedding", "siege"]
        assert populated_engine.events_for("guild") == []


class TestShortestPath:
    def test_path_over_mixed_directions(self):
        hops = GraphQuery(chain_snapshot()).shortest_path("a", "d")
        assert hops == [
            Hop("a", "b", "ab", "ally"),
            Hop("b", "c", "cb", "enemy"),
            Hop("c", "d", "cd", "ally"),
        ]

    def test_symmetric_existence_reversed_order(self):
        query = GraphQuery(chain_snapshot())
        ids = "abcde"
        for a in ids:
            for b in ids:
                forward = query.shortest_path(a, b)
                backward = query.shortest_path(b, a)
                assert bool(forward) == bool(backward)
                assert [h.relationship_id for h in forward] == [
                    h.relationship_id for h in reversed(backward)
                ]

    def test_no_path_is_empty(self):
        assert GraphQuery(chain_snapshot()).shortest_path("a", "e") == []

    def test_same_entity_is_empty(self):
        assert GraphQuery(chain_snapshot()).shortest_path("a", "a") == []

    def test_relation_type_restriction(self):
        query = GraphQuery(chain_snapshot())
        assert query.shortest_path("a", "d", ["ally"]) == []
        assert len(query.shortest_path("a", "b", ["ally"])) == 1

    def test_first_found_shortest_path_by_insertion_order(self):
        entities = [Entity(id=i, type="character", name=i) for i in "sxyt"]
        relationships = [
            Relationship(id="sx", source_id="s", target_id="x", type="ally"),
            Relationship(id="sy", source_id="s", target_id="y", type="ally"),
            Relationship(id="yt", source_id="y", target_id="t", type="ally"),
            Relationship(id="xt", source_id="x", target_id="t", type="ally"),
        ]
        snapshot = WorldSnapshot.build(entities=entities, relationships=relationships)
        hops = GraphQuery(snapshot).shortest_path("s", "t")
        assert [h.relationship_id for h in hops] == ["sx", "xt"]

    def test_unknown_endpoint(self):
        with pytest.raises(NotFound):
            GraphQuery(chain_snapshot()).shortest_path("a", "zz")


def test_subgraph_depth(populated_engine):
    one = populated_engine.subgraph(["corin"], depth=1)
    assert one.entity_ids == ["corin", "aldric", "dara"]
    two = populated_engine.subgraph(["corin"], depth=2)
    assert two.entity_ids == ["corin", "aldric", "dara", "brenna"]
    assert {r.id for r in two.relationships} == {"r-parent", "r-spouse", "r-sibling"}


def test_components(populated_engine):
    components = populated_engine.components()
    assert components[0] == ["aldric", "corin", "brenna", "dara", "guild"]
    assert ["rivermoor"] in components
    assert ["highpeak"] in components
