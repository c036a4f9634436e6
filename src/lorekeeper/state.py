"""Read-only snapshot of the world graph.

Derived views are pure functions of a snapshot, which is rebuilt from the
stores on every call. Nothing here writes back.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from .models import CausalLink, Entity, Event, Participation, Relationship, TravelRoute

if TYPE_CHECKING:
    from .engine import WorldEngine


@dataclass
class WorldSnapshot:
    """Materialized state of the world graph.

    Includes indices for O(1) lookups:
    - _relationships_by_entity: entity ID -> relationships touching it
    - _participations_by_entity: entity ID -> participations of it
    - _participations_by_event: event ID -> participations in it
    - _links_by_event: event ID -> causal links touching it

    Index lists keep store insertion order, which callers rely on for
    deterministic tie-breaking.
    """

    entities: dict[str, Entity] = field(default_factory=dict)
    relationships: list[Relationship] = field(default_factory=list)
    events: dict[str, Event] = field(default_factory=dict)
    participations: list[Participation] = field(default_factory=list)
    causal_links: list[CausalLink] = field(default_factory=list)
    routes: list[TravelRoute] = field(default_factory=list)

    _relationships_by_entity: dict[str, list[Relationship]] = field(default_factory=dict)
    _participations_by_entity: dict[str, list[Participation]] = field(default_factory=dict)
    _participations_by_event: dict[str, list[Participation]] = field(default_factory=dict)
    _links_by_event: dict[str, list[CausalLink]] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        entities: list[Entity] | None = None,
        relationships: list[Relationship] | None = None,
        events: list[Event] | None = None,
        participations: list[Participation] | None = None,
        causal_links: list[CausalLink] | None = None,
        routes: list[TravelRoute] | None = None,
    ) -> "WorldSnapshot":
        """Build an indexed snapshot from plain record lists."""
        snapshot = cls(
            entities={e.id: e for e in entities or []},
            relationships=list(relationships or []),
            events={e.id: e for e in events or []},
            participations=list(participations or []),
            causal_links=list(causal_links or []),
            routes=list(routes or []),
        )
        snapshot._rebuild_indices()
        return snapshot

    @classmethod
    def load(cls, engine: "WorldEngine", include_spoilers: bool = True) -> "WorldSnapshot":
        """Read every store once and build a snapshot.

        With ``include_spoilers=False`` spoiler entities and events are
        hidden together with every record that references them.
        """
        snapshot = cls.build(
            entities=engine.entities.list_all(),
            relationships=engine.relationships.list_all(),
            events=engine.events.list_all(),
            participations=engine.participations.list_all(),
            causal_links=engine.causal_links.list_all(),
            routes=engine.routes.list_all(),
        )
        if include_spoilers:
            return snapshot
        return snapshot.without_spoilers()

    def without_spoilers(self) -> "WorldSnapshot":
        entities = [e for e in self.entities.values() if not e.is_spoiler]
        events = [e for e in self.events.values() if not e.is_spoiler]
        hidden_entities = {e.id for e in self.entities.values() if e.is_spoiler}
        hidden_events = {e.id for e in self.events.values() if e.is_spoiler}
        return WorldSnapshot.build(
            entities=entities,
            relationships=[
                r for r in self.relationships
                if r.source_id not in hidden_entities and r.target_id not in hidden_entities
            ],
            events=events,
            participations=[
                p for p in self.participations
                if p.entity_id not in hidden_entities and p.event_id not in hidden_events
            ],
            causal_links=[
                c for c in self.causal_links
                if c.cause_event_id not in hidden_events
                and c.effect_event_id not in hidden_events
            ],
            routes=[
                r for r in self.routes
                if r.from_location_id not in hidden_entities
                and r.to_location_id not in hidden_entities
            ],
        )

    def _rebuild_indices(self) -> None:
        """Rebuild all indices from the record lists."""
        self._relationships_by_entity = {}
        self._participations_by_entity = {}
        self._participations_by_event = {}
        self._links_by_event = {}

        for rel in self.relationships:
            self._relationships_by_entity.setdefault(rel.source_id, []).append(rel)
            self._relationships_by_entity.setdefault(rel.target_id, []).append(rel)

        for part in self.participations:
            self._participations_by_entity.setdefault(part.entity_id, []).append(part)
            self._participations_by_event.setdefault(part.event_id, []).append(part)

        for link in self.causal_links:
            self._links_by_event.setdefault(link.cause_event_id, []).append(link)
            self._links_by_event.setdefault(link.effect_event_id, []).append(link)

    def relationships_for(self, entity_id: str) -> list[Relationship]:
        """Relationships involving an entity (as source or target)."""
        return self._relationships_by_entity.get(entity_id, [])

    def participations_for_entity(self, entity_id: str) -> list[Participation]:
        return self._participations_by_entity.get(entity_id, [])

    def participations_for_event(self, event_id: str) -> list[Participation]:
        return self._participations_by_event.get(event_id, [])

    def links_for_event(self, event_id: str) -> list[CausalLink]:
        return self._links_by_event.get(event_id, [])

    def characters(self) -> list[Entity]:
        return [e for e in self.entities.values() if e.is_character]

    def name_of(self, entity_id: str) -> str:
        """Display name for an entity, falling back to the raw id."""
        entity = self.entities.get(entity_id)
        return entity.name if entity else f"#{entity_id}"

    def title_of(self, event_id: str) -> str:
        event = self.events.get(event_id)
        return event.title if event else f"#{event_id}"
