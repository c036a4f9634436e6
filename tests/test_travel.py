"""Tests for travel feasibility."""

import pytest

from lorekeeper.errors import NotFound
from lorekeeper.models import Entity, Event, Participation, TravelRoute
from lorekeeper.state import WorldSnapshot
from lorekeeper.travel import (
    ChainedTravelModel,
    CoordinateTravelModel,
    Presence,
    RouteTravelModel,
    TravelValidator,
)


def location(id, x=None, y=None):
    attributes = {} if x is None else {"x": x, "y": y}
    return Entity(id=id, type="location", name=id.capitalize(), attributes=attributes)


class TestModels:
    def test_coordinate_model(self):
        model = CoordinateTravelModel([location("a", 0, 0), location("b", 3, 4)], rate=5)
        assert model.travel_years("a", "b") == pytest.approx(1.0)
        assert model.travel_years("a", "a") == 0.0

    def test_coordinate_model_missing_data(self):
        model = CoordinateTravelModel([location("a", 0, 0), location("b")])
        assert model.travel_years("a", "b") is None

    def test_coordinate_overrides(self):
        model = CoordinateTravelModel([location("a")], rate=1, positions={"a": (0, 0), "b": (0, 2)})
        assert model.travel_years("a", "b") == pytest.approx(2.0)

    def test_rate_must_be_positive(self):
        with pytest.raises(ValueError):
            CoordinateTravelModel([], rate=0)

    def test_route_model_converts_units(self):
        routes = [TravelRoute(from_location_id="a", to_location_id="b", distance=6, unit="months")]
        model = RouteTravelModel(routes)
        assert model.travel_years("b", "a") == pytest.approx(0.5)
        assert model.travel_years("a", "c") is None

    def test_route_model_distance_is_a_duration(self):
        routes = [TravelRoute(from_location_id="a", to_location_id="b", distance=2, unit="weeks")]
        model = RouteTravelModel(routes)
        assert model.rate == 1.0
        assert model.distance("a", "b") == pytest.approx(14 / 365)
        assert model.travel_years("a", "b") == model.distance("a", "b")

    def test_chained_model_first_answer_wins(self):
        routes = RouteTravelModel([TravelRoute(from_location_id="a", to_location_id="b", distance=1, unit="years")])
        coords = CoordinateTravelModel([location("a", 0, 0), location("c", 0, 10)], rate=1)
        model = ChainedTravelModel(routes, coords)
        assert model.travel_years("a", "b") == pytest.approx(1.0)
        assert model.travel_years("a", "c") == pytest.approx(10.0)
        assert model.travel_years("b", "c") is None


def world(events, locations, participations=(), routes=()):
    return WorldSnapshot.build(
        entities=[Entity(id="hero", type="character", name="Hero"), *locations],
        events=events,
        participations=list(participations),
        routes=list(routes),
    )


class TestTravelValidator:
    def setup_method(self):
        self.locations = [location("north", 0, 0), location("south", 0, 730), location("fog")]

    def check(self, first, second, routes=()):
        validator = TravelValidator(world([first, second], self.locations, routes=routes))
        return validator.check(Presence("hero", first), Presence("hero", second))

    def test_infeasible(self):
        result = self.check(
            Event(id="e1", title="A", start_date=100, location_id="north"),
            Event(id="e2", title="B", start_date=101, location_id="south"),
        )
        assert result.status == "infeasible"
        assert result.is_violation
        assert result.required_years == pytest.approx(2.0)
        assert result.elapsed_years == 1.0

    def test_feasible(self):
        result = self.check(
            Event(id="e1", title="A", start_date=100, location_id="north"),
            Event(id="e2", title="B", start_date=103, location_id="south"),
        )
        assert result.status == "feasible"

    def test_elapsed_runs_from_end_of_earlier_event(self):
        result = self.check(
            Event(id="e2", title="B", start_date=103, location_id="south"),
            Event(id="e1", title="A", start_date=100, end_date=102, location_id="north"),
        )
        assert (result.from_event_id, result.to_event_id) == ("e1", "e2")
        assert result.elapsed_years == 1.0
        assert result.status == "infeasible"

    def test_missing_coordinates_are_unknown(self):
        result = self.check(
            Event(id="e1", title="A", start_date=100, location_id="north"),
            Event(id="e2", title="B", start_date=100, location_id="fog"),
        )
        assert result.status == "unknown"
        assert not result.is_violation

    def test_missing_location_is_unknown(self):
        result = self.check(
            Event(id="e1", title="A", start_date=100, location_id="north"),
            Event(id="e2", title="B", start_date=100),
        )
        assert result.status == "unknown"

    def test_same_location_is_feasible(self):
        result = self.check(
            Event(id="e1", title="A", start_date=100, location_id="north"),
            Event(id="e2", title="B", start_date=100, location_id="north"),
        )
        assert result.status == "feasible"

    def test_stored_route_beats_coordinates(self):
        result = self.check(
            Event(id="e1", title="A", start_date=100, location_id="north"),
            Event(id="e2", title="B", start_date=101, location_id="south"),
            routes=[TravelRoute(from_location_id="south", to_location_id="north", distance=3, unit="days")],
        )
        assert result.status == "feasible"
        assert result.required_years == pytest.approx(3 / 365)

    def test_check_events_unknown_event(self):
        validator = TravelValidator(world([], self.locations))
        with pytest.raises(NotFound):
            validator.check_events("hero", "nope", "nada")

    def test_validate_entity_walks_present_itinerary(self):
        events = [
            Event(id="e1", title="A", start_date=100, location_id="north"),
            Event(id="e2", title="B", start_date=101, location_id="north"),
            Event(id="e3", title="C", start_date=102, location_id="south"),
            Event(id="e4", title="D", start_date=102, location_id="fog"),
        ]
        participations = [
            Participation(event_id="e1", entity_id="hero"),
            Participation(event_id="e2", entity_id="hero"),
            Participation(event_id="e3", entity_id="hero"),
            Participation(event_id="e4", entity_id="hero", role="mentioned"),
        ]
        validator = TravelValidator(world(events, self.locations, participations))
        assert [p.event.id for p in validator.itinerary("hero")] == ["e1", "e2", "e3"]
        [check] = validator.validate_entity("hero")
        assert (check.from_event_id, check.to_event_id, check.status) == ("e2", "e3", "infeasible")
        assert [c.to_event_id for c in validator.validate_all()] == ["e3"]


def test_engine_travel(populated_engine):
    assert populated_engine.validate_travel() == []
    moves = populated_engine.validate_travel("brenna")
    assert [(c.to_event_id, c.status) for c in moves] == [("siege", "feasible")]
    direct = populated_engine.check_travel("brenna", "founding", "siege")
    assert direct.elapsed_years == 30.0
