"""Travel-time feasibility between located presences.

A travel model turns two locations into the years needed to get from one
to the other (distance / rate). Missing data never counts as a violation:
it yields status "unknown".
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Iterable, Literal, Protocol

from .constants import DAYS_PER_YEAR, DEFAULT_COORDINATE_RATE, EVENTS, UNIT_TO_YEARS
from .errors import NotFound
from .models import Entity, Event, ParticipationRole, TravelRoute
from .state import WorldSnapshot

logger = logging.getLogger(__name__)

TravelStatus = Literal["feasible", "infeasible", "unknown"]


class TravelModel(Protocol):
    def travel_years(self, from_location_id: str, to_location_id: str) -> float | None:
        """Years needed to travel between two locations, or None if unknown."""
        ...


class DistanceRateModel:
    """Travel time as distance divided by a constant rate (distance per year)."""

    rate: float = 1.0

    def distance(self, from_location_id: str, to_location_id: str) -> float | None:
        raise NotImplementedError

    def travel_years(self, from_location_id: str, to_location_id: str) -> float | None:
        if from_location_id == to_location_id:
            return 0.0
        d = self.distance(from_location_id, to_location_id)
        if d is None:
            return None
        return d / self.rate


class CoordinateTravelModel(DistanceRateModel):
    """Euclidean distance between map coordinates.

    Coordinates come from ``positions`` when given, else from the location
    entity's ``attributes["x"]`` / ``attributes["y"]``.
    """

    def __init__(
        self,
        locations: Iterable[Entity],
        rate: float = DEFAULT_COORDINATE_RATE,
        positions: dict[str, tuple[float, float]] | None = None,
    ):
        if rate <= 0:
            raise ValueError("travel rate must be positive")
        self.rate = rate
        self._coords: dict[str, tuple[float, float]] = {}
        for loc in locations:
            coords = _coords_from_attributes(loc)
            if coords is not None:
                self._coords[loc.id] = coords
        self._coords.update(positions or {})

    def coordinates(self, location_id: str) -> tuple[float, float] | None:
        return self._coords.get(location_id)

    def distance(self, from_location_id: str, to_location_id: str) -> float | None:
        a = self._coords.get(from_location_id)
        b = self._coords.get(to_location_id)
        if a is None or b is None:
            return None
        return math.dist(a, b)


def _coords_from_attributes(entity: Entity) -> tuple[float, float] | None:
    x = entity.attributes.get("x")
    y = entity.attributes.get("y")
    try:
        return (float(x), float(y))
    except (TypeError, ValueError):
        return None


class RouteTravelModel(DistanceRateModel):
    """Stored routes.

    A route already records a duration, so ``distance`` here is that
    duration converted to years and the rate is fixed at one year per year.
    """

    def __init__(self, routes: Iterable[TravelRoute]):
        self.rate = 1.0
        self._routes = list(routes)

    def route(self, from_location_id: str, to_location_id: str) -> TravelRoute | None:
        for route in self._routes:
            if route.connects(from_location_id, to_location_id):
                return route
        return None

    def distance(self, from_location_id: str, to_location_id: str) -> float | None:
        """Route duration in years, or None when no route is stored."""
        route = self.route(from_location_id, to_location_id)
        if route is None:
            return None
        return route.distance * UNIT_TO_YEARS[route.unit]


class ChainedTravelModel:
    """First model that knows the answer wins."""

    def __init__(self, *models: TravelModel):
        self.models = models

    def travel_years(self, from_location_id: str, to_location_id: str) -> float | None:
        for model in self.models:
            years = model.travel_years(from_location_id, to_location_id)
            if years is not None:
                return years
        return None


def default_model(snapshot: WorldSnapshot) -> TravelModel:
    """Stored routes first, then map coordinates."""
    locations = [e for e in snapshot.entities.values() if e.type == "location"]
    return ChainedTravelModel(
        RouteTravelModel(snapshot.routes),
        CoordinateTravelModel(locations),
    )


@dataclass(frozen=True)
class Presence:
    """An entity at an event (and so at the event's location and dates)."""

    entity_id: str
    event: Event

    @property
    def location_id(self) -> str | None:
        return self.event.location_id


@dataclass
class TravelCheck:
    entity_id: str
    from_event_id: str
    to_event_id: str
    from_location_id: str | None
    to_location_id: str | None
    status: TravelStatus
    elapsed_years: float
    required_years: float | None
    message: str

    @property
    def is_violation(self) -> bool:
        return self.status == "infeasible"

    def to_dict(self) -> dict:
        return {
            "entityId": self.entity_id,
            "fromEventId": self.from_event_id,
            "toEventId": self.to_event_id,
            "fromLocationId": self.from_location_id,
            "toLocationId": self.to_location_id,
            "status": self.status,
            "elapsedYears": self.elapsed_years,
            "requiredYears": self.required_years,
            "message": self.message,
        }


class TravelValidator:
    """Checks that entities can physically make it between their events."""

    def __init__(self, snapshot: WorldSnapshot, model: TravelModel | None = None):
        self.snapshot = snapshot
        self.model = model if model is not None else default_model(snapshot)

    def presence(self, entity_id: str, event_id: str) -> Presence:
        event = self.snapshot.events.get(event_id)
        if event is None:
            raise NotFound(EVENTS, event_id)
        return Presence(entity_id, event)

    def check(self, first: Presence, second: Presence) -> TravelCheck:
        """Can ``first.entity_id`` get from one presence to the other in time?"""
        a, b = sorted((first, second), key=lambda p: p.event.sort_key)
        elapsed = float(max(0, b.event.start_date - a.event.last_date))

        def result(status: TravelStatus, required: float | None, message: str) -> TravelCheck:
            return TravelCheck(
                entity_id=a.entity_id,
                from_event_id=a.event.id,
                to_event_id=b.event.id,
                from_location_id=a.location_id,
                to_location_id=b.location_id,
                status=status,
                elapsed_years=elapsed,
                required_years=required,
                message=message,
            )

        if a.location_id is None or b.location_id is None:
            return result("unknown", None, "One of the events has no location")
        if a.location_id == b.location_id:
            return result("feasible", 0.0, "Same location")

        required = self.model.travel_years(a.location_id, b.location_id)
        from_name = self.snapshot.name_of(a.location_id)
        to_name = self.snapshot.name_of(b.location_id)
        if required is None:
            return result(
                "unknown", None,
                f"No distance data between {from_name} and {to_name}",
            )
        if required > elapsed:
            return result(
                "infeasible", required,
                f"Travel from {from_name} to {to_name} takes {_years(required)}, "
                f"but only {_years(elapsed)} elapse",
            )
        return result("feasible", required, "Travel time is valid")

    def check_events(self, entity_id: str, event_a_id: str, event_b_id: str) -> TravelCheck:
        return self.check(
            self.presence(entity_id, event_a_id),
            self.presence(entity_id, event_b_id),
        )

    def itinerary(self, entity_id: str) -> list[Presence]:
        """Located events where the entity is present, by (startDate, id)."""
        seen: set[str] = set()
        presences = []
        for part in self.snapshot.participations_for_entity(entity_id):
            if part.role_kind is not ParticipationRole.PRESENT or part.event_id in seen:
                continue
            event = self.snapshot.events.get(part.event_id)
            if event is None or event.location_id is None:
                continue
            seen.add(event.id)
            presences.append(Presence(entity_id, event))
        presences.sort(key=lambda p: p.event.sort_key)
        return presences

    def validate_entity(self, entity_id: str) -> list[TravelCheck]:
        """Check each consecutive pair of located presences that changes location."""
        itinerary = self.itinerary(entity_id)
        return [
            self.check(a, b)
            for a, b in zip(itinerary, itinerary[1:])
            if a.location_id != b.location_id
        ]

    def validate_all(self, include_feasible: bool = False) -> list[TravelCheck]:
        checks = []
        for character in self.snapshot.characters():
            for check in self.validate_entity(character.id):
                if include_feasible or check.status != "feasible":
                    checks.append(check)
        return checks


def _years(value: float) -> str:
    if value >= 1 or value == 0:
        return f"{value:g} years"
    return f"{value * DAYS_PER_YEAR:.0f} days"
