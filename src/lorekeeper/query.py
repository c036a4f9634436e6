"""Read-only graph queries over a world snapshot.

All direction resolution for relationships lives here: a relationship is
stored source -> target but every query treats it as undirected.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Iterable, Literal, NamedTuple

from .constants import ENTITIES
from .errors import NotFound
from .models import Event, Relationship
from .state import WorldSnapshot

logger = logging.getLogger(__name__)


class Neighbor(NamedTuple):
    """One relationship edge seen from a given entity."""

    entity_id: str
    relationship_type: str
    subtype: str | None
    relationship_id: str
    direction: Literal["outgoing", "incoming"]


class Hop(NamedTuple):
    """One step of a path: from_id --relationship--> to_id."""

    from_id: str
    to_id: str
    relationship_id: str
    relationship_type: str


@dataclass
class Subgraph:
    entity_ids: list[str]
    relationships: list[Relationship]

    def to_dict(self) -> dict:
        return {
            "entity_ids": self.entity_ids,
            "relationships": [r.to_record() for r in self.relationships],
        }


def _type_set(types: Iterable[str] | None) -> set[str] | None:
    if types is None:
        return None
    return {t.strip().lower() for t in types}


class GraphQuery:
    """Neighbor, path and subgraph queries.

    Adjacency is built once per instance from the snapshot, in relationship
    insertion order, so BFS tie-breaking is deterministic.
    """

    def __init__(self, snapshot: WorldSnapshot):
        self.snapshot = snapshot

    def _require(self, entity_id: str) -> None:
        if entity_id not in self.snapshot.entities:
            raise NotFound(ENTITIES, entity_id)

    def _edges(self, entity_id: str, types: set[str] | None) -> list[Relationship]:
        edges = []
        for rel in self.snapshot.relationships_for(entity_id):
            if types is not None and rel.type.lower() not in types:
                continue
            # Skip edges whose far end is gone (dangling; reported by continuity)
            if rel.other_endpoint(entity_id) not in self.snapshot.entities:
                continue
            edges.append(rel)
        return edges

    def neighbors(
        self,
        entity_id: str,
        type_filter: Iterable[str] | None = None,
    ) -> list[Neighbor]:
        """Entities related to ``entity_id``, one entry per relationship."""
        self._require(entity_id)
        types = _type_set(type_filter)
        return [
            Neighbor(
                entity_id=rel.other_endpoint(entity_id),
                relationship_type=rel.type,
                subtype=rel.subtype,
                relationship_id=rel.id,
                direction="outgoing" if rel.source_id == entity_id else "incoming",
            )
            for rel in self._edges(entity_id, types)
        ]

    def events_for(self, entity_id: str) -> list[Event]:
        """Events the entity participates in, by (start_date, id)."""
        self._require(entity_id)
        seen: set[str] = set()
        events = []
        for part in self.snapshot.participations_for_entity(entity_id):
            event = self.snapshot.events.get(part.event_id)
            if event is None or event.id in seen:
                continue
            seen.add(event.id)
            events.append(event)
        events.sort(key=lambda e: e.sort_key)
        return events

    def shortest_path(
        self,
        a_id: str,
        b_id: str,
        relation_types: Iterable[str] | None = None,
    ) -> list[Hop]:
        """Unweighted shortest path between two entities.

        Returns the first shortest path found by BFS (edges explored in
        insertion order). An empty list means no path, or ``a_id == b_id``.
        """
        self._require(a_id)
        self._require(b_id)
        if a_id == b_id:
            return []

        types = _type_set(relation_types)
        came_from: dict[str, tuple[str, Relationship]] = {}
        visited = {a_id}
        queue = deque([a_id])

        while queue:
            node = queue.popleft()
            for rel in self._edges(node, types):
                nxt = rel.other_endpoint(node)
                if nxt in visited:
                    continue
                visited.add(nxt)
                came_from[nxt] = (node, rel)
                if nxt == b_id:
                    return self._unwind(came_from, a_id, b_id)
                queue.append(nxt)

        return []

    @staticmethod
    def _unwind(
        came_from: dict[str, tuple[str, Relationship]],
        start: str,
        end: str,
    ) -> list[Hop]:
        hops: list[Hop] = []
        node = end
        while node != start:
            prev, rel = came_from[node]
            hops.append(Hop(prev, node, rel.id, rel.type))
            node = prev
        hops.reverse()
        return hops

    def subgraph(
        self,
        entity_ids: Iterable[str],
        depth: int = 1,
        relation_types: Iterable[str] | None = None,
    ) -> Subgraph:
        """Entities within ``depth`` hops of the seeds, with the edges among them."""
        seeds = list(dict.fromkeys(entity_ids))
        for eid in seeds:
            self._require(eid)
        types = _type_set(relation_types)

        order = list(seeds)
        distance = {eid: 0 for eid in seeds}
        queue = deque(seeds)
        while queue:
            node = queue.popleft()
            if distance[node] >= depth:
                continue
            for rel in self._edges(node, types):
                nxt = rel.other_endpoint(node)
                if nxt not in distance:
                    distance[nxt] = distance[node] + 1
                    order.append(nxt)
                    queue.append(nxt)

        members = set(order)
        relationships = [
            r for r in self.snapshot.relationships
            if r.source_id in members and r.target_id in members
            and (types is None or r.type.lower() in types)
        ]
        return Subgraph(entity_ids=order, relationships=relationships)

    def components(self, relation_types: Iterable[str] | None = None) -> list[list[str]]:
        """Connected components, each in BFS order from its first-stored member."""
        types = _type_set(relation_types)
        visited: set[str] = set()
        components = []

        for start in self.snapshot.entities:
            if start in visited:
                continue
            component = []
            queue = deque([start])
            visited.add(start)
            while queue:
                node = queue.popleft()
                component.append(node)
                for rel in self._edges(node, types):
                    nxt = rel.other_endpoint(node)
                    if nxt not in visited:
                        visited.add(nxt)
                        queue.append(nxt)
            components.append(component)

        return components
