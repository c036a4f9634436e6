"""Causal ordering of events.

Causal links are stored records (cause event -> effect event). They are
hard ordering constraints; dates order everything else. Candidate links
inferred from shared participants and tags are offered separately and
never constrain the order.
"""

from __future__ import annotations

import heapq
import logging
from collections import deque
from dataclasses import dataclass, field

from .errors import CycleDetected
from .findings import ContinuityFinding
from .models import CausalLink, Event
from .state import WorldSnapshot

logger = logging.getLogger(__name__)


@dataclass
class CausalOrder:
    """Result of ordering events.

    Attributes:
        event_ids: every event, causes before effects, then by (startDate, id)
        contradictions: links whose cause starts after its effect
        cycles: strongly connected groups of events, each ordered by date
        dropped_links: links left out to break cycles
        findings: continuity findings for the above
    """

    event_ids: list[str]
    contradictions: list[CausalLink] = field(default_factory=list)
    cycles: list[list[str]] = field(default_factory=list)
    dropped_links: list[CausalLink] = field(default_factory=list)
    findings: list[ContinuityFinding] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "order": self.event_ids,
            "contradictions": [c.id for c in self.contradictions],
            "cycles": self.cycles,
            "droppedLinks": [c.id for c in self.dropped_links],
            "findings": [f.to_dict() for f in self.findings],
        }


@dataclass
class CausalSuggestion:
    """An inferred cause -> effect candidate. Needs review; not a fact."""

    cause_event_id: str
    effect_event_id: str
    shared_entity_ids: list[str]
    shared_tags: list[str]
    status: str = "suggested"

    def to_dict(self) -> dict:
        return {
            "causeEventId": self.cause_event_id,
            "effectEventId": self.effect_event_id,
            "sharedEntityIds": self.shared_entity_ids,
            "sharedTags": self.shared_tags,
            "status": self.status,
        }


def strongly_connected(nodes: list[str], succ: dict[str, list[str]]) -> list[list[str]]:
    """Tarjan's algorithm, iterative so deep chains do not hit recursion limits."""
    index: dict[str, int] = {}
    low: dict[str, int] = {}
    stack: list[str] = []
    on_stack: set[str] = set()
    components: list[list[str]] = []
    counter = 0

    for root in nodes:
        if root in index:
            continue
        index[root] = low[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)
        work = [(root, iter(succ.get(root, [])))]

        while work:
            node, successors = work[-1]
            nxt = next(successors, None)
            if nxt is not None:
                if nxt not in index:
                    index[nxt] = low[nxt] = counter
                    counter += 1
                    stack.append(nxt)
                    on_stack.add(nxt)
                    work.append((nxt, iter(succ.get(nxt, []))))
                elif nxt in on_stack:
                    low[node] = min(low[node], index[nxt])
                continue

            work.pop()
            if work:
                parent = work[-1][0]
                low[parent] = min(low[parent], low[node])
            if low[node] == index[node]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == node:
                        break
                components.append(component)

    return components


class CausalityResolver:
    """Orders events under causal constraints. Read-only over a snapshot."""

    def __init__(self, snapshot: WorldSnapshot):
        self.snapshot = snapshot

    def _links(self) -> list[CausalLink]:
        """Links whose events both resolve; the rest are dangling references."""
        events = self.snapshot.events
        return [
            link for link in self.snapshot.causal_links
            if link.cause_event_id in events and link.effect_event_id in events
        ]

    def _sorted_events(self) -> list[Event]:
        return sorted(self.snapshot.events.values(), key=lambda e: e.sort_key)

    def order(self, strict: bool = False) -> CausalOrder:
        """Topologically order all events.

        Ties between events that are free to go next are broken by
        (startDate, id). Cycles are reported, then broken by dropping the
        links inside each cycle that point backwards in that order.

        Args:
            strict: Raise CycleDetected instead of breaking cycles.
        """
        events = self.snapshot.events
        ordered = self._sorted_events()
        links = self._links()

        succ: dict[str, list[str]] = {e.id: [] for e in ordered}
        for link in links:
            succ[link.cause_event_id].append(link.effect_event_id)

        result = CausalOrder(event_ids=[])

        rank = {e.id: i for i, e in enumerate(ordered)}
        component_of: dict[str, int] = {}
        for n, component in enumerate(strongly_connected([e.id for e in ordered], succ)):
            if len(component) < 2:
                continue
            members = sorted(component, key=rank.__getitem__)
            result.cycles.append(members)
            for member in members:
                component_of[member] = n

        result.cycles.sort(key=lambda c: rank[c[0]])
        if strict and result.cycles:
            raise CycleDetected("causal", result.cycles)

        kept: list[CausalLink] = []
        for link in links:
            cause, effect = link.cause_event_id, link.effect_event_id
            same_cycle = (
                cause in component_of
                and component_of.get(cause) == component_of.get(effect)
            )
            if same_cycle and rank[effect] < rank[cause]:
                result.dropped_links.append(link)
            else:
                kept.append(link)

        indegree = {e.id: 0 for e in ordered}
        effects: dict[str, list[str]] = {e.id: [] for e in ordered}
        for link in kept:
            effects[link.cause_event_id].append(link.effect_event_id)
            indegree[link.effect_event_id] += 1

        heap = [(events[eid].sort_key, eid) for eid, deg in indegree.items() if deg == 0]
        heapq.heapify(heap)
        while heap:
            _, eid = heapq.heappop(heap)
            result.event_ids.append(eid)
            for nxt in effects[eid]:
                indegree[nxt] -= 1
                if indegree[nxt] == 0:
                    heapq.heappush(heap, (events[nxt].sort_key, nxt))

        for link in links:
            cause = events[link.cause_event_id]
            effect = events[link.effect_event_id]
            if cause.start_date > effect.start_date:
                result.contradictions.append(link)

        result.findings = self._findings(result)
        return result

    def _findings(self, result: CausalOrder) -> list[ContinuityFinding]:
        findings = []
        for members in result.cycles:
            titles = " -> ".join(self.snapshot.title_of(eid) for eid in members)
            dropped = [
                link.id for link in result.dropped_links
                if link.cause_event_id in members and link.effect_event_id in members
            ]
            findings.append(ContinuityFinding(
                rule="causal_cycle",
                severity="warning",
                message=f"Causal links form a cycle among: {titles}",
                event_ids=tuple(members),
                record_ids=tuple(dropped),
            ))
        for link in result.contradictions:
            cause = self.snapshot.events[link.cause_event_id]
            effect = self.snapshot.events[link.effect_event_id]
            findings.append(ContinuityFinding(
                rule="temporal_contradiction",
                severity="warning",
                message=(
                    f'"{cause.title}" (Year {cause.start_date}) is recorded as causing '
                    f'"{effect.title}" (Year {effect.start_date}), which happens earlier'
                ),
                event_ids=(cause.id, effect.id),
                record_ids=(link.id,),
            ))
        return findings

    def chains(self, limit: int = 500) -> list[list[str]]:
        """Root-to-leaf chains of linked events.

        Roots are events that cause something but are caused by nothing.
        Events already on the current chain are not revisited, so cycles
        end a chain rather than looping.
        """
        links = self._links()
        effects: dict[str, list[str]] = {}
        caused: set[str] = set()
        for link in links:
            effects.setdefault(link.cause_event_id, []).append(link.effect_event_id)
            caused.add(link.effect_event_id)

        events = self.snapshot.events
        roots = sorted(
            (eid for eid in effects if eid not in caused),
            key=lambda eid: events[eid].sort_key,
        )

        chains: list[list[str]] = []
        for root in roots:
            stack = [[root]]
            while stack and len(chains) < limit:
                chain = stack.pop()
                nexts = [n for n in effects.get(chain[-1], []) if n not in chain]
                if not nexts:
                    if len(chain) > 1:
                        chains.append(chain)
                    continue
                nexts.sort(key=lambda eid: events[eid].sort_key, reverse=True)
                for nxt in nexts:
                    stack.append(chain + [nxt])
        return chains

    def effects_of(self, event_id: str) -> list[str]:
        """Transitive effects of an event, by (startDate, id)."""
        return self._reach(event_id, forward=True)

    def causes_of(self, event_id: str) -> list[str]:
        """Transitive causes of an event, by (startDate, id)."""
        return self._reach(event_id, forward=False)

    def _reach(self, event_id: str, forward: bool) -> list[str]:
        step: dict[str, list[str]] = {}
        for link in self._links():
            a, b = link.cause_event_id, link.effect_event_id
            if not forward:
                a, b = b, a
            step.setdefault(a, []).append(b)

        seen: set[str] = set()
        queue = deque([event_id])
        while queue:
            node = queue.popleft()
            for nxt in step.get(node, []):
                if nxt not in seen and nxt != event_id:
                    seen.add(nxt)
                    queue.append(nxt)
        events = self.snapshot.events
        return sorted(seen, key=lambda eid: events[eid].sort_key)

    def suggest_links(self) -> list[CausalSuggestion]:
        """Candidate links: consecutive events of a shared participant with a shared tag.

        Pairs already linked (either direction) are skipped. Suggestions are
        for review only and are never used by ``order``.
        """
        events = self.snapshot.events
        linked = {
            frozenset((l.cause_event_id, l.effect_event_id)) for l in self.snapshot.causal_links
        }

        found: dict[tuple[str, str], CausalSuggestion] = {}
        for entity_id in self.snapshot.entities:
            ids = {
                p.event_id for p in self.snapshot.participations_for_entity(entity_id)
                if p.event_id in events
            }
            timeline = sorted((events[eid] for eid in ids), key=lambda e: e.sort_key)
            for before, after in zip(timeline, timeline[1:]):
                shared = sorted(set(before.tags) & set(after.tags))
                if not shared or frozenset((before.id, after.id)) in linked:
                    continue
                key = (before.id, after.id)
                suggestion = found.get(key)
                if suggestion is None:
                    found[key] = CausalSuggestion(
                        cause_event_id=before.id,
                        effect_event_id=after.id,
                        shared_entity_ids=[entity_id],
                        shared_tags=shared,
                    )
                elif entity_id not in suggestion.shared_entity_ids:
                    suggestion.shared_entity_ids.append(entity_id)

        return sorted(
            found.values(),
            key=lambda s: (events[s.cause_event_id].sort_key, events[s.effect_event_id].sort_key),
        )
