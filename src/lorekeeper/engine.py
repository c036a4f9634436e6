"""World engine - orchestrates stores, integrity rules and derived views."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Generic, Iterable, TypeVar

from .causality import CausalityResolver, CausalOrder, CausalSuggestion
from .constants import COLLECTIONS, DB_FILENAME, ENTITIES, EVENTS
from .continuity import ContinuityChecker
from .errors import CascadeFailure, NotFound, ValidationError
from .family import FamilyForest, FamilyTreeBuilder
from .findings import ContinuityFinding
from .models import (
    CausalLink,
    Entity,
    Event,
    Participation,
    Record,
    Relationship,
    TravelRoute,
)
from .query import GraphQuery, Hop, Neighbor, Subgraph
from .records import MemoryRecordStore, RecordStore, SqliteRecordStore
from .state import WorldSnapshot
from .stores import (
    CausalLinkStore,
    EntityStore,
    EventStore,
    ParticipationStore,
    RelationshipStore,
    RouteStore,
)
from .travel import TravelCheck, TravelModel, TravelValidator

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)


@dataclass
class Change(Generic[R]):
    """A mutated record plus the dependent set it belongs to, post-write.

    Saves callers a re-query after every edit.
    """

    record: R
    related: list = field(default_factory=list)


@dataclass
class CascadeStep:
    """One dependent-record action in a cascade."""

    collection: str
    record_id: str
    action: Callable[[], object]
    verb: str = "delete"


class WorldEngine:
    """Main entry point for world operations.

    Single-writer: every mutation runs to completion before returning.
    Derived views are recomputed from a fresh snapshot on each call; nothing
    is cached, so nothing needs invalidating.
    """

    def __init__(self, records: RecordStore):
        self.records = records
        self.entities = EntityStore(records)
        self.relationships = RelationshipStore(records)
        self.events = EventStore(records)
        self.participations = ParticipationStore(records)
        self.causal_links = CausalLinkStore(records)
        self.routes = RouteStore(records)

    @classmethod
    def open(cls, world_dir: Path) -> "WorldEngine":
        """Open (or create) the SQLite-backed world in ``world_dir``."""
        return cls(SqliteRecordStore(Path(world_dir) / DB_FILENAME))

    @classmethod
    def in_memory(cls) -> "WorldEngine":
        return cls(MemoryRecordStore())

    def close(self) -> None:
        close = getattr(self.records, "close", None)
        if close is not None:
            close()

    # --- Lookups ---

    def resolve_entity(self, name_or_id: str | int) -> str | None:
        """Find entity by ID, then by name or alias."""
        name_or_id = str(name_or_id)
        if self.entities.exists(name_or_id):
            return name_or_id
        entity = self.entities.find_by_name(name_or_id)
        return entity.id if entity else None

    def require_entity(self, name_or_id: str) -> Entity:
        entity_id = self.resolve_entity(name_or_id)
        if entity_id is None:
            raise NotFound(ENTITIES, name_or_id)
        return self.entities.get(entity_id)

    def _require_location(self, location_id: str) -> Entity:
        location = self.entities.get(location_id)
        if location.type != "location":
            raise ValidationError(
                f"{location.name} ({location_id}) is a {location.type}, not a location"
            )
        return location

    # --- Entity operations ---

    def create_entity(self, data: dict | None = None, **fields) -> Entity:
        """Create an entity. Its ``type`` is fixed from here on."""
        return self.entities.create({**(data or {}), **fields})

    def update_entity(self, entity_id: str, **changes) -> Entity:
        return self.entities.update(entity_id, **changes)

    def delete_entity(self, entity_id: str) -> dict[str, list[str]]:
        """Delete an entity and everything that depends on it.

        Order: the entity, its relationships, its participations, routes
        touching it, then events located at it lose their location.

        Returns:
            collection -> ids removed or detached

        Raises:
            CascadeFailure: a dependent step failed after the entity was removed
        """
        entity = self.entities.get(entity_id)
        entity_id = entity.id
        steps = [
            CascadeStep(self.relationships.name, r.id, lambda r=r: self.relationships.delete(r.id))
            for r in self.relationships.for_entity(entity_id)
        ]
        steps += [
            CascadeStep(self.participations.name, p.id, lambda p=p: self.participations.delete(p.id))
            for p in self.participations.for_entity(entity_id)
        ]
        steps += [
            CascadeStep(self.routes.name, r.id, lambda r=r: self.routes.delete(r.id))
            for r in self.routes.for_location(entity_id)
        ]
        steps += [
            CascadeStep(
                self.events.name, e.id,
                lambda e=e: self.events.update(e.id, location_id=None),
                verb="detach",
            )
            for e in self.events.at_location(entity_id)
        ]

        self.entities.delete(entity_id)
        logger.info(f"Deleted entity {entity.name} ({entity_id}); {len(steps)} dependent steps")
        return self._run_cascade(f"{ENTITIES}/{entity_id}", steps)

    # --- Relationship operations ---

    def create_relationship(
        self,
        source_id: str,
        target_id: str,
        type: str,
        subtype: str | None = None,
        **fields,
    ) -> Change[Relationship]:
        """Create a relationship; ``related`` holds all of the source's relationships."""
        relationship = self.relationships._build({
            **fields,
            "source_id": source_id,
            "target_id": target_id,
            "type": type,
            "subtype": subtype,
        })
        self.entities.get(source_id)
        self.entities.get(target_id)
        self.relationships.create(relationship)
        return Change(relationship, self.relationships.for_entity(relationship.source_id))

    def update_relationship(self, relationship_id: str, **changes) -> Relationship:
        relationship = self.relationships.merged(relationship_id, changes)
        self.entities.get(relationship.source_id)
        self.entities.get(relationship.target_id)
        return self.relationships.save(relationship)

    def delete_relationship(self, relationship_id: str) -> Change[Relationship]:
        """Delete a relationship; ``related`` holds the source's remaining ones."""
        relationship = self.relationships.delete(relationship_id)
        return Change(relationship, self.relationships.for_entity(relationship.source_id))

    # --- Event operations ---

    def create_event(self, data: dict | None = None, **fields) -> Event:
        event = self.events._build({**(data or {}), **fields})
        if event.location_id is not None:
            self._require_location(event.location_id)
        return self.events.create(event)

    def update_event(self, event_id: str, **changes) -> Event:
        event = self.events.merged(event_id, changes)
        if event.location_id is not None:
            self._require_location(event.location_id)
        return self.events.save(event)

    def delete_event(self, event_id: str) -> dict[str, list[str]]:
        """Delete an event, then its participations, then its causal links.

        Raises:
            CascadeFailure: a dependent step failed after the event was removed
        """
        event = self.events.get(event_id)
        event_id = event.id
        steps = [
            CascadeStep(self.participations.name, p.id, lambda p=p: self.participations.delete(p.id))
            for p in self.participations.for_event(event_id)
        ]
        steps += [
            CascadeStep(self.causal_links.name, c.id, lambda c=c: self.causal_links.delete(c.id))
            for c in self.causal_links.for_event(event_id)
        ]

        self.events.delete(event_id)
        logger.info(f"Deleted event {event.title} ({event_id}); {len(steps)} dependent steps")
        return self._run_cascade(f"{EVENTS}/{event_id}", steps)

    # --- Participation operations ---

    def add_participant(
        self,
        event_id: str,
        entity_id: str,
        role: str = "present",
    ) -> Change[Participation]:
        """Link an entity to an event; ``related`` holds the event's participations."""
        participation = self.participations._build(
            {"event_id": event_id, "entity_id": entity_id, "role": role}
        )
        self.events.get(event_id)
        self.entities.get(entity_id)
        self.participations.create(participation)
        return Change(participation, self.participations.for_event(participation.event_id))

    def remove_participant(self, participation_id: str) -> Change[Participation]:
        participation = self.participations.delete(participation_id)
        return Change(participation, self.participations.for_event(participation.event_id))

    # --- Causal links ---

    def add_causal_link(
        self,
        cause_event_id: str,
        effect_event_id: str,
        description: str = "",
        plotline_id: str | None = None,
    ) -> Change[CausalLink]:
        """Record that one event causes another; ``related`` holds the cause's links."""
        link = self.causal_links._build({
            "cause_event_id": cause_event_id,
            "effect_event_id": effect_event_id,
            "description": description,
            "plotline_id": plotline_id,
        })
        self.events.get(cause_event_id)
        self.events.get(effect_event_id)
        self.causal_links.create(link)
        return Change(link, self.causal_links.for_event(link.cause_event_id))

    def remove_causal_link(self, link_id: str) -> Change[CausalLink]:
        link = self.causal_links.delete(link_id)
        return Change(link, self.causal_links.for_event(link.cause_event_id))

    # --- Travel routes ---

    def set_route(
        self,
        from_location_id: str,
        to_location_id: str,
        distance: float,
        unit: str = "days",
        method: str = "horse",
    ) -> TravelRoute:
        """Create or replace the route between two locations (either direction)."""
        self._require_location(from_location_id)
        self._require_location(to_location_id)
        existing = self.routes.between(from_location_id, to_location_id)
        if existing is not None:
            return self.routes.update(existing.id, distance=distance, unit=unit, method=method)
        return self.routes.create({
            "from_location_id": from_location_id,
            "to_location_id": to_location_id,
            "distance": distance,
            "unit": unit,
            "method": method,
        })

    def delete_route(self, route_id: str) -> TravelRoute:
        return self.routes.delete(route_id)

    # --- Cascades ---

    def _run_cascade(self, primary: str, steps: list[CascadeStep]) -> dict[str, list[str]]:
        """Run every step; collect failures instead of stopping at the first."""
        done: dict[str, list[str]] = {}
        orphaned: dict[str, list[str]] = {}
        causes: list[BaseException] = []

        for step in steps:
            try:
                step.action()
            except Exception as e:
                logger.error(f"Cascade from {primary}: {step.verb} {step.collection}/{step.record_id} failed: {e}")
                orphaned.setdefault(step.collection, []).append(step.record_id)
                causes.append(e)
            else:
                done.setdefault(step.collection, []).append(step.record_id)

        if orphaned:
            raise CascadeFailure(primary, orphaned, causes)
        return done

    # --- Derived views ---

    def snapshot(self, include_spoilers: bool = True) -> WorldSnapshot:
        return WorldSnapshot.load(self, include_spoilers=include_spoilers)

    def query(self, include_spoilers: bool = True) -> GraphQuery:
        return GraphQuery(self.snapshot(include_spoilers))

    def neighbors(self, entity_id: str, type_filter: Iterable[str] | None = None) -> list[Neighbor]:
        return self.query().neighbors(str(entity_id), type_filter)

    def events_for(self, entity_id: str) -> list[Event]:
        return self.query().events_for(str(entity_id))

    def shortest_path(
        self,
        a_id: str,
        b_id: str,
        relation_types: Iterable[str] | None = None,
    ) -> list[Hop]:
        return self.query().shortest_path(str(a_id), str(b_id), relation_types)

    def subgraph(self, entity_ids: Iterable[str], depth: int = 1) -> Subgraph:
        return self.query().subgraph([str(e) for e in entity_ids], depth)

    def components(self, relation_types: Iterable[str] | None = None) -> list[list[str]]:
        return self.query().components(relation_types)

    def family_tree(self, strict: bool = False, include_spoilers: bool = True) -> FamilyForest:
        return FamilyTreeBuilder(self.snapshot(include_spoilers)).build(strict=strict)

    def causal_order(self, strict: bool = False, include_spoilers: bool = True) -> CausalOrder:
        return CausalityResolver(self.snapshot(include_spoilers)).order(strict=strict)

    def causal_chains(self) -> list[list[str]]:
        return CausalityResolver(self.snapshot()).chains()

    def causal_effects(self, event_id: str) -> list[str]:
        event = self.events.get(event_id)
        return CausalityResolver(self.snapshot()).effects_of(event.id)

    def suggest_causal_links(self) -> list[CausalSuggestion]:
        return CausalityResolver(self.snapshot()).suggest_links()

    def check_continuity(
        self,
        only: list[str] | None = None,
        travel_model: TravelModel | None = None,
    ) -> list[ContinuityFinding]:
        return ContinuityChecker(self.snapshot(), travel_model).run(only)

    def validate_travel(
        self,
        entity_id: str | None = None,
        travel_model: TravelModel | None = None,
    ) -> list[TravelCheck]:
        """Travel checks for one entity (all pairs) or every character (problems only)."""
        validator = TravelValidator(self.snapshot(), travel_model)
        if entity_id is None:
            return validator.validate_all()
        entity = self.entities.get(entity_id)
        return validator.validate_entity(entity.id)

    def check_travel(
        self,
        entity_id: str,
        event_a_id: str,
        event_b_id: str,
        travel_model: TravelModel | None = None,
    ) -> TravelCheck:
        entity = self.entities.get(entity_id)
        return TravelValidator(self.snapshot(), travel_model).check_events(
            entity.id, str(event_a_id), str(event_b_id)
        )

    def stats(self) -> dict[str, int]:
        return {name: len(self.records.list_all(name)) for name in COLLECTIONS}
