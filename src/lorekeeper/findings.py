"""Continuity findings: reported observations, never errors."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal

Severity = Literal["info", "warning"]


@dataclass(frozen=True)
class ContinuityFinding:
    """A consistency issue referencing the records involved."""

    rule: str
    severity: Severity
    message: str
    entity_ids: tuple[str, ...] = ()
    event_ids: tuple[str, ...] = ()
    record_ids: tuple[str, ...] = ()  # relationships, links, routes, ...
    details: dict = field(default_factory=dict, compare=False, hash=False)

    @property
    def sort_key(self) -> tuple:
        return (self.rule, self.entity_ids, self.event_ids, self.record_ids, self.message)

    def to_dict(self) -> dict:
        return {
            "rule": self.rule,
            "severity": self.severity,
            "message": self.message,
            "entityIds": list(self.entity_ids),
            "eventIds": list(self.event_ids),
            "recordIds": list(self.record_ids),
            "details": self.details,
        }


def summarize(findings: list[ContinuityFinding]) -> dict:
    """Counts per severity and per rule."""
    by_rule: dict[str, int] = {}
    for f in findings:
        by_rule[f.rule] = by_rule.get(f.rule, 0) + 1
    return {
        "total": len(findings),
        "warnings": sum(1 for f in findings if f.severity == "warning"),
        "info": sum(1 for f in findings if f.severity == "info"),
        "by_rule": by_rule,
    }
