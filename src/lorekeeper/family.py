"""Family tree construction.

Derives a forest from family relationships between characters:

1. Classify each family relationship against a fixed subtype vocabulary
   (parent/child/sibling/spouse plus a few synonyms, see constants.py).
2. Partition characters into connected components over all family links.
3. Orient parent -> child edges, drop back edges that would close a cycle
   and report them.
4. Assign generations: longest parent chain from a root, where roots are
   members without a parent inside the component.

Links that cannot be classified with certainty are kept as sibling-like
links (or, for blank subtypes with usable birth years, as inferred parent
links) and flagged for review.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Literal

from .constants import (
    CHILD_SUBTYPES,
    FAMILY_LINK_TYPES,
    PARENT_SUBTYPES,
    SIBLING_SUBTYPES,
    SPOUSE_SUBTYPES,
)
from .errors import CycleDetected
from .findings import ContinuityFinding
from .models import Entity, Relationship, id_sort_key
from .state import WorldSnapshot

logger = logging.getLogger(__name__)

LinkKind = Literal["parent", "sibling", "spouse"]
ReviewFlag = Literal["inferred", "ambiguous", "unrecognized"]


@dataclass(frozen=True)
class FamilyLink:
    """A classified family relationship.

    For ``kind == "parent"``, ``a`` is the parent and ``b`` the child.
    """

    relationship_id: str
    a: str
    b: str
    kind: LinkKind
    flag: ReviewFlag | None = None
    subtype: str | None = None


@dataclass
class FamilyMember:
    entity_id: str
    name: str
    generation: int = 0
    parents: list[str] = field(default_factory=list)
    children: list[str] = field(default_factory=list)
    spouses: list[str] = field(default_factory=list)
    siblings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "entityId": self.entity_id,
            "name": self.name,
            "generation": self.generation,
            "parents": self.parents,
            "children": self.children,
            "spouses": self.spouses,
            "siblings": self.siblings,
        }


@dataclass
class FamilyComponent:
    """One connected family: members ordered by generation."""

    members: list[FamilyMember]
    roots: list[str]
    dropped: list[FamilyLink] = field(default_factory=list)
    flagged: list[FamilyLink] = field(default_factory=list)

    def member(self, entity_id: str) -> FamilyMember | None:
        for m in self.members:
            if m.entity_id == entity_id:
                return m
        return None

    @property
    def generations(self) -> dict[str, int]:
        return {m.entity_id: m.generation for m in self.members}

    def to_dict(self) -> dict:
        return {
            "members": [m.to_dict() for m in self.members],
            "roots": self.roots,
            "droppedRelationships": [l.relationship_id for l in self.dropped],
            "flagged": [
                {"relationshipId": l.relationship_id, "flag": l.flag, "subtype": l.subtype}
                for l in self.flagged
            ],
        }


@dataclass
class FamilyForest:
    components: list[FamilyComponent]
    findings: list[ContinuityFinding] = field(default_factory=list)

    def component_of(self, entity_id: str) -> FamilyComponent | None:
        for component in self.components:
            if component.member(entity_id) is not None:
                return component
        return None

    @property
    def cycles(self) -> list[ContinuityFinding]:
        return [f for f in self.findings if f.rule == "family_cycle"]

    def to_dict(self) -> dict:
        return {
            "components": [c.to_dict() for c in self.components],
            "findings": [f.to_dict() for f in self.findings],
        }


def _member_key(entity: Entity) -> tuple:
    # Known birth years first, oldest first; id breaks ties
    return (entity.birth_date is None, entity.birth_date or 0, id_sort_key(entity.id))


def classify_link(rel: Relationship, entities: dict[str, Entity]) -> FamilyLink | None:
    """Classify a relationship as a family link, or None if it is not one."""
    rtype = rel.type.strip().lower()
    if rtype in FAMILY_LINK_TYPES:
        token = rtype
    elif rtype == "family":
        token = (rel.subtype or "").strip().lower()
    else:
        return None

    src, dst = rel.source_id, rel.target_id
    if token in PARENT_SUBTYPES:
        return FamilyLink(rel.id, src, dst, "parent", subtype=rel.subtype)
    if token in CHILD_SUBTYPES:
        return FamilyLink(rel.id, dst, src, "parent", subtype=rel.subtype)
    if token in SIBLING_SUBTYPES:
        return FamilyLink(rel.id, src, dst, "sibling", subtype=rel.subtype)
    if token in SPOUSE_SUBTYPES:
        return FamilyLink(rel.id, src, dst, "spouse", subtype=rel.subtype)

    if token == "":
        a_birth = entities[src].birth_date if src in entities else None
        b_birth = entities[dst].birth_date if dst in entities else None
        if a_birth is not None and b_birth is not None and a_birth != b_birth:
            parent, child = (src, dst) if a_birth < b_birth else (dst, src)
            return FamilyLink(rel.id, parent, child, "parent", flag="inferred")
        return FamilyLink(rel.id, src, dst, "sibling", flag="ambiguous")

    return FamilyLink(rel.id, src, dst, "sibling", flag="unrecognized", subtype=rel.subtype)


class FamilyTreeBuilder:
    """Builds the family forest from a snapshot. Pure; safe to rerun."""

    def __init__(self, snapshot: WorldSnapshot, include_isolated: bool = True):
        self.snapshot = snapshot
        self.include_isolated = include_isolated

    def links(self) -> list[FamilyLink]:
        """Family links between characters, in relationship insertion order."""
        characters = {e.id: e for e in self.snapshot.characters()}
        links = []
        for rel in self.snapshot.relationships:
            link = classify_link(rel, characters)
            if link is None:
                continue
            if link.a not in characters or link.b not in characters:
                logger.debug(f"Ignoring family link {rel.id}: endpoint is not a character")
                continue
            links.append(link)
        return links

    def build(self, strict: bool = False) -> FamilyForest:
        """Build the forest.

        Args:
            strict: Raise CycleDetected instead of dropping cycle edges.
        """
        characters = sorted(self.snapshot.characters(), key=_member_key)
        links = self.links()

        adjacency: dict[str, list[FamilyLink]] = {c.id: [] for c in characters}
        for link in links:
            adjacency[link.a].append(link)
            adjacency[link.b].append(link)

        components: list[FamilyComponent] = []
        findings: list[ContinuityFinding] = []
        cycles: list[list[str]] = []
        visited: set[str] = set()

        for character in characters:
            if character.id in visited:
                continue
            if not adjacency[character.id] and not self.include_isolated:
                visited.add(character.id)
                continue

            member_ids = self._collect(character.id, adjacency, visited)
            member_links = [
                l for l in links if l.a in member_ids and l.b in member_ids
            ]
            component, component_cycles = self._build_component(member_ids, member_links)
            components.append(component)

            for cycle, dropped in component_cycles:
                cycles.append(cycle)
                names = " -> ".join(self.snapshot.name_of(eid) for eid in cycle)
                findings.append(ContinuityFinding(
                    rule="family_cycle",
                    severity="warning",
                    message=(
                        f"Parent links form a cycle ({names}); "
                        f"relationship {dropped.relationship_id} was left out of the tree"
                    ),
                    entity_ids=tuple(dict.fromkeys(cycle)),
                    record_ids=(dropped.relationship_id,),
                ))

            for link in component.flagged:
                findings.append(ContinuityFinding(
                    rule="family_link_review",
                    severity="info",
                    message=self._flag_message(link),
                    entity_ids=(link.a, link.b),
                    record_ids=(link.relationship_id,),
                    details={"flag": link.flag, "subtype": link.subtype},
                ))

        if strict and cycles:
            raise CycleDetected("family", cycles)

        return FamilyForest(components=components, findings=findings)

    def _collect(
        self,
        start: str,
        adjacency: dict[str, list[FamilyLink]],
        visited: set[str],
    ) -> set[str]:
        members = set()
        queue = deque([start])
        visited.add(start)
        while queue:
            node = queue.popleft()
            members.add(node)
            for link in adjacency[node]:
                other = link.b if link.a == node else link.a
                if other not in visited:
                    visited.add(other)
                    queue.append(other)
        return members

    def _build_component(
        self,
        member_ids: set[str],
        links: list[FamilyLink],
    ) -> tuple[FamilyComponent, list[tuple[list[str], FamilyLink]]]:
        entities = self.snapshot.entities
        ordered = sorted((entities[eid] for eid in member_ids), key=_member_key)

        children_of: dict[str, list[FamilyLink]] = {eid: [] for eid in member_ids}
        seen_pairs: set[tuple[str, str]] = set()
        spouses: dict[str, list[str]] = {eid: [] for eid in member_ids}
        siblings: dict[str, list[str]] = {eid: [] for eid in member_ids}
        flagged: list[FamilyLink] = []

        for link in links:
            if link.flag is not None:
                flagged.append(link)
            if link.kind == "parent":
                if (link.a, link.b) in seen_pairs:
                    continue
                seen_pairs.add((link.a, link.b))
                children_of[link.a].append(link)
            else:
                bucket = spouses if link.kind == "spouse" else siblings
                if link.b not in bucket[link.a]:
                    bucket[link.a].append(link.b)
                if link.a not in bucket[link.b]:
                    bucket[link.b].append(link.a)

        dropped, component_cycles = self._break_cycles(ordered, children_of)
        dropped_ids = {id(l) for l in dropped}
        kept = {
            eid: [l for l in out if id(l) not in dropped_ids]
            for eid, out in children_of.items()
        }

        parents: dict[str, list[str]] = {eid: [] for eid in member_ids}
        for eid in (e.id for e in ordered):
            for link in kept[eid]:
                parents[link.b].append(eid)

        generation = self._generations(ordered, kept, parents)
        position = {e.id: i for i, e in enumerate(ordered)}

        members = [
            FamilyMember(
                entity_id=e.id,
                name=e.name,
                generation=generation[e.id],
                parents=parents[e.id],
                children=[l.b for l in kept[e.id]],
                spouses=spouses[e.id],
                siblings=siblings[e.id],
            )
            for e in ordered
        ]
        members.sort(key=lambda m: (m.generation, position[m.entity_id]))
        roots = [m.entity_id for m in members if not m.parents]

        component = FamilyComponent(
            members=members,
            roots=roots,
            dropped=dropped,
            flagged=flagged,
        )
        return component, component_cycles

    @staticmethod
    def _break_cycles(
        ordered: list[Entity],
        children_of: dict[str, list[FamilyLink]],
    ) -> tuple[list[FamilyLink], list[tuple[list[str], FamilyLink]]]:
        """Iterative DFS; every back edge is dropped and its cycle recorded."""
        WHITE, GRAY, BLACK = 0, 1, 2
        color = {e.id: WHITE for e in ordered}
        dropped: list[FamilyLink] = []
        cycles: list[tuple[list[str], FamilyLink]] = []

        for root in ordered:
            if color[root.id] != WHITE:
                continue
            path = [root.id]
            stack = [(root.id, iter(children_of[root.id]))]
            color[root.id] = GRAY
            while stack:
                node, edges = stack[-1]
                link = next(edges, None)
                if link is None:
                    color[node] = BLACK
                    stack.pop()
                    path.pop()
                    continue
                child = link.b
                if color[child] == GRAY:
                    cycle = path[path.index(child):] + [child]
                    dropped.append(link)
                    cycles.append((cycle, link))
                elif color[child] == WHITE:
                    color[child] = GRAY
                    path.append(child)
                    stack.append((child, iter(children_of[child])))

        return dropped, cycles

    @staticmethod
    def _generations(
        ordered: list[Entity],
        kept: dict[str, list[FamilyLink]],
        parents: dict[str, list[str]],
    ) -> dict[str, int]:
        """Longest distance from a root along parent -> child edges."""
        indegree = {e.id: len(parents[e.id]) for e in ordered}
        generation = {e.id: 0 for e in ordered}
        queue = deque(e.id for e in ordered if indegree[e.id] == 0)
        while queue:
            node = queue.popleft()
            for link in kept[node]:
                generation[link.b] = max(generation[link.b], generation[node] + 1)
                indegree[link.b] -= 1
                if indegree[link.b] == 0:
                    queue.append(link.b)
        return generation

    def _flag_message(self, link: FamilyLink) -> str:
        a = self.snapshot.name_of(link.a)
        b = self.snapshot.name_of(link.b)
        if link.flag == "inferred":
            return (
                f"Family link {link.relationship_id} has no subtype; "
                f"{a} was taken as parent of {b} by birth year"
            )
        if link.flag == "ambiguous":
            return (
                f"Family link {link.relationship_id} between {a} and {b} has no subtype "
                "and birth years do not decide direction; shown as a sibling-like link"
            )
        return (
            f"Family link {link.relationship_id} between {a} and {b} has unrecognized "
            f"subtype {link.subtype!r}; shown as a sibling-like link"
        )
