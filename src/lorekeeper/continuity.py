"""Continuity checks over the whole world graph.

Each rule is independent and read-only; a rule never hides another rule's
findings. Findings are data for a report, not errors.
"""

from __future__ import annotations

import logging
from itertools import combinations
from typing import Callable

from .causality import CausalOrder, CausalityResolver
from .constants import CONTINUITY_RULES, SIMULTANEITY_WINDOW
from .errors import ValidationError
from .family import FamilyTreeBuilder
from .findings import ContinuityFinding, summarize
from .state import WorldSnapshot
from .travel import Presence, TravelModel, TravelValidator

logger = logging.getLogger(__name__)


class ContinuityChecker:
    """Runs the fixed battery of continuity rules."""

    def __init__(self, snapshot: WorldSnapshot, travel_model: TravelModel | None = None):
        self.snapshot = snapshot
        self.travel = TravelValidator(snapshot, travel_model)
        self._causal_order: CausalOrder | None = None

    @property
    def rules(self) -> list[tuple[str, Callable[[], list[ContinuityFinding]]]]:
        return [
            ("posthumous_use", self.check_posthumous_use),
            ("pre_birth_use", self.check_pre_birth_use),
            ("location_conflict", self.check_location_conflicts),
            ("impossible_travel", self.check_impossible_travel),
            ("family_cycle", self.check_family_cycles),
            ("causal_cycle", self.check_causal_cycles),
            ("temporal_contradiction", self.check_temporal_contradictions),
            ("dangling_reference", self.check_dangling_references),
        ]

    def run(self, only: list[str] | None = None) -> list[ContinuityFinding]:
        """Run every rule (or the named subset) and return sorted findings.

        Raises:
            ValidationError: ``only`` names a rule that does not exist
        """
        if only is not None:
            unknown = sorted(set(only) - set(CONTINUITY_RULES))
            if unknown:
                raise ValidationError(
                    f"Unknown continuity rules: {', '.join(unknown)} "
                    f"(known: {', '.join(CONTINUITY_RULES)})"
                )
        findings: list[ContinuityFinding] = []
        for name, rule in self.rules:
            if only is not None and name not in only:
                continue
            found = rule()
            logger.debug(f"Continuity rule {name}: {len(found)} findings")
            findings.extend(sorted(found, key=lambda f: f.sort_key))
        return findings

    def summary(self) -> dict:
        return summarize(self.run())

    # --- Rules ---

    def _character_events(self):
        """(character, event) pairs from participations, each pair once."""
        seen: set[tuple[str, str]] = set()
        for part in self.snapshot.participations:
            entity = self.snapshot.entities.get(part.entity_id)
            event = self.snapshot.events.get(part.event_id)
            if entity is None or event is None or not entity.is_character:
                continue
            key = (entity.id, event.id)
            if key in seen:
                continue
            seen.add(key)
            yield entity, event

    def check_posthumous_use(self) -> list[ContinuityFinding]:
        findings = []
        for entity, event in self._character_events():
            if entity.death_date is not None and event.start_date > entity.death_date:
                findings.append(ContinuityFinding(
                    rule="posthumous_use",
                    severity="warning",
                    message=(
                        f'{entity.name} appears in "{event.title}" (Year {event.start_date}) '
                        f"but died in Year {entity.death_date}"
                    ),
                    entity_ids=(entity.id,),
                    event_ids=(event.id,),
                ))
        return findings

    def check_pre_birth_use(self) -> list[ContinuityFinding]:
        findings = []
        for entity, event in self._character_events():
            if entity.birth_date is not None and event.start_date < entity.birth_date:
                findings.append(ContinuityFinding(
                    rule="pre_birth_use",
                    severity="warning",
                    message=(
                        f'{entity.name} appears in "{event.title}" (Year {event.start_date}) '
                        f"but is born in Year {entity.birth_date}"
                    ),
                    entity_ids=(entity.id,),
                    event_ids=(event.id,),
                ))

        for rel in self.snapshot.relationships:
            if rel.start_date is None:
                continue
            for endpoint in (rel.source_id, rel.target_id):
                entity = self.snapshot.entities.get(endpoint)
                if entity is None or not entity.is_character or entity.birth_date is None:
                    continue
                if rel.start_date < entity.birth_date:
                    other = self.snapshot.name_of(rel.other_endpoint(endpoint))
                    findings.append(ContinuityFinding(
                        rule="pre_birth_use",
                        severity="warning",
                        message=(
                            f"{entity.name}'s {rel.type} relationship with {other} starts "
                            f"in Year {rel.start_date}, before birth in Year {entity.birth_date}"
                        ),
                        entity_ids=(entity.id,),
                        record_ids=(rel.id,),
                    ))
        return findings

    def _itineraries(self) -> dict[str, list[Presence]]:
        return {c.id: self.travel.itinerary(c.id) for c in self.snapshot.characters()}

    def check_location_conflicts(self) -> list[ContinuityFinding]:
        """Present at two different places at the same time."""
        findings = []
        for entity_id, itinerary in self._itineraries().items():
            for a, b in combinations(itinerary, 2):
                if abs(a.event.start_date - b.event.start_date) > SIMULTANEITY_WINDOW:
                    continue
                if a.location_id == b.location_id:
                    continue
                check = self.travel.check(a, b)
                if check.status == "feasible":
                    continue
                name = self.snapshot.name_of(entity_id)
                places = (
                    f"{self.snapshot.name_of(check.from_location_id)} and "
                    f"{self.snapshot.name_of(check.to_location_id)}"
                )
                if check.status == "infeasible":
                    severity, verdict = "warning", check.message
                else:
                    severity, verdict = "info", "travel time cannot be verified"
                findings.append(ContinuityFinding(
                    rule="location_conflict",
                    severity=severity,
                    message=(
                        f'{name} is present at "{a.event.title}" and "{b.event.title}" '
                        f"(Year {a.event.start_date}) in {places}; {verdict}"
                    ),
                    entity_ids=(entity_id,),
                    event_ids=(check.from_event_id, check.to_event_id),
                    details={"travel": check.to_dict()},
                ))
        return findings

    def check_impossible_travel(self) -> list[ContinuityFinding]:
        """Consecutive presences too far apart for the time between them."""
        findings = []
        for entity_id, itinerary in self._itineraries().items():
            for a, b in zip(itinerary, itinerary[1:]):
                if a.location_id == b.location_id:
                    continue
                # Simultaneous presences belong to the location-conflict rule
                if abs(a.event.start_date - b.event.start_date) <= SIMULTANEITY_WINDOW:
                    continue
                check = self.travel.check(a, b)
                if check.status != "infeasible":
                    continue
                findings.append(ContinuityFinding(
                    rule="impossible_travel",
                    severity="warning",
                    message=(
                        f"{self.snapshot.name_of(entity_id)} goes from "
                        f'"{a.event.title}" to "{b.event.title}": {check.message}'
                    ),
                    entity_ids=(entity_id,),
                    event_ids=(check.from_event_id, check.to_event_id),
                    details={"travel": check.to_dict()},
                ))
        return findings

    def check_family_cycles(self) -> list[ContinuityFinding]:
        """Parent links that loop back on themselves."""
        return FamilyTreeBuilder(self.snapshot).build().cycles

    def _causal_findings(self, rule: str) -> list[ContinuityFinding]:
        if self._causal_order is None:
            self._causal_order = CausalityResolver(self.snapshot).order()
        return [f for f in self._causal_order.findings if f.rule == rule]

    def check_causal_cycles(self) -> list[ContinuityFinding]:
        return self._causal_findings("causal_cycle")

    def check_temporal_contradictions(self) -> list[ContinuityFinding]:
        """Causes dated after their effects."""
        return self._causal_findings("temporal_contradiction")

    def check_dangling_references(self) -> list[ContinuityFinding]:
        """References that no longer resolve, e.g. after a partial cascade."""
        entities = self.snapshot.entities
        events = self.snapshot.events
        findings = []

        def dangling(kind: str, record_id: str, missing: list[str]) -> ContinuityFinding:
            return ContinuityFinding(
                rule="dangling_reference",
                severity="warning",
                message=f"{kind} {record_id} references missing records: {', '.join(missing)}",
                record_ids=(record_id,),
                details={"kind": kind, "missing": missing},
            )

        for rel in self.snapshot.relationships:
            missing = [f"entity {eid}" for eid in (rel.source_id, rel.target_id) if eid not in entities]
            if missing:
                findings.append(dangling("relationship", rel.id, missing))

        for part in self.snapshot.participations:
            missing = []
            if part.event_id not in events:
                missing.append(f"event {part.event_id}")
            if part.entity_id not in entities:
                missing.append(f"entity {part.entity_id}")
            if missing:
                findings.append(dangling("participation", part.id, missing))

        for link in self.snapshot.causal_links:
            missing = [
                f"event {eid}" for eid in (link.cause_event_id, link.effect_event_id)
                if eid not in events
            ]
            if missing:
                findings.append(dangling("causal link", link.id, missing))

        for route in self.snapshot.routes:
            missing = [
                f"location {lid}" for lid in (route.from_location_id, route.to_location_id)
                if lid not in entities
            ]
            if missing:
                findings.append(dangling("route", route.id, missing))

        for event in events.values():
            if event.location_id is not None and event.location_id not in entities:
                findings.append(dangling("event", event.id, [f"location {event.location_id}"]))

        return findings
