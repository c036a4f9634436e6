"""Tests for record models."""

import pytest
from pydantic import ValidationError

from lorekeeper.models import (
    CausalLink,
    Entity,
    Event,
    Participation,
    ParticipationRole,
    Relationship,
    RelationshipKind,
    TravelRoute,
    id_sort_key,
)


class TestEntity:
    def test_defaults(self):
        e = Entity(type="character", name="Aldric")
        assert len(e.id) == 26  # ULID
        assert e.aliases == []
        assert e.status == "active"
        assert e.is_character

    def test_death_before_birth_rejected(self):
        with pytest.raises(ValidationError, match="before birthDate"):
            Entity(type="character", name="Aldric", birth_date=150, death_date=100)

    def test_unknown_type_rejected(self):
        with pytest.raises(ValidationError):
            Entity(type="dragon", name="Smaug")

    def test_empty_name_rejected(self):
        with pytest.raises(ValidationError):
            Entity(type="item", name="")

    def test_record_uses_camel_case(self):
        record = Entity(type="character", name="Aldric", birth_date=100, is_spoiler=True).to_record()
        assert record["birthDate"] == 100
        assert record["deathDate"] is None
        assert record["isSpoiler"] is True
        assert "createdAt" in record
        assert "birth_date" not in record

    def test_loads_from_camel_case(self):
        e = Entity.model_validate({"type": "character", "name": "Aldric", "birthDate": 100})
        assert e.birth_date == 100

    def test_alive_in(self):
        e = Entity(type="character", name="Aldric", birth_date=100, death_date=150)
        assert e.alive_in(99) is False
        assert e.alive_in(120) is True
        assert e.alive_in(151) is False
        assert Entity(type="character", name="Nobody").alive_in(10) is None


class TestRelationship:
    def test_self_relationship_rejected(self):
        with pytest.raises(ValidationError, match="itself"):
            Relationship(source_id="a", target_id="a", type="ally")

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            Relationship(source_id="a", target_id="b", type="ally", start_date=10, end_date=5)

    def test_kind_maps_unknown_to_other(self):
        assert Relationship(source_id="a", target_id="b", type="Family").kind is RelationshipKind.FAMILY
        rel = Relationship(source_id="a", target_id="b", type="rival")
        assert rel.kind is RelationshipKind.OTHER
        assert rel.type == "rival"

    def test_other_endpoint(self):
        rel = Relationship(source_id="a", target_id="b", type="ally")
        assert rel.other_endpoint("a") == "b"
        assert rel.other_endpoint("b") == "a"


class TestEvent:
    def test_tags_deduplicated_and_sorted(self):
        e = Event(title="Siege", start_date=10, tags=["war", "guild", "war", " "])
        assert e.tags == ["guild", "war"]

    def test_end_before_start_rejected(self):
        with pytest.raises(ValidationError):
            Event(title="Siege", start_date=10, end_date=9)

    def test_last_date_and_sort_key(self):
        e = Event(id="x", title="Siege", start_date=10, end_date=12)
        assert e.last_date == 12
        assert e.sort_key == (10, (1, 0, "x"))
        assert Event(title="Battle", start_date=10).last_date == 10

    def test_numeric_ids_are_stored_as_strings(self):
        e = Event.model_validate({"id": 1, "title": "Treaty", "startDate": 10, "locationId": 7})
        assert e.id == "1"
        assert e.location_id == "7"
        assert e.to_record()["id"] == "1"

    def test_numeric_ids_sort_naturally(self):
        nine = Event(id="9", title="A", start_date=10)
        ten = Event(id=10, title="B", start_date=10)
        named = Event(id="alpha", title="C", start_date=10)
        ordered = sorted([named, ten, nine], key=lambda e: e.sort_key)
        assert [e.id for e in ordered] == ["9", "10", "alpha"]


def test_id_sort_key():
    assert id_sort_key("9") < id_sort_key("10") < id_sort_key("10a")
    assert sorted(["b", "2", "a", "11"], key=id_sort_key) == ["2", "11", "a", "b"]


def test_participation_role_kind():
    assert Participation(event_id="e", entity_id="c").role_kind is ParticipationRole.PRESENT
    assert Participation(event_id="e", entity_id="c", role="Affected").role_kind is ParticipationRole.AFFECTED
    assert Participation(event_id="e", entity_id="c", role="witness").role_kind is ParticipationRole.OTHER


def test_causal_link_rejects_self_cause():
    with pytest.raises(ValidationError, match="cause itself"):
        CausalLink(cause_event_id="e", effect_event_id="e")


def test_route_connects_either_direction():
    route = TravelRoute(from_location_id="a", to_location_id="b", distance=3)
    assert route.connects("a", "b")
    assert route.connects("b", "a")
    assert not route.connects("a", "c")
    with pytest.raises(ValidationError):
        TravelRoute(from_location_id="a", to_location_id="b", distance=-1)
