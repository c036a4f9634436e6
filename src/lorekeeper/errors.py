"""Error taxonomy for lorekeeper.

Continuity findings are not errors; they live in continuity.py as data.
"""

from __future__ import annotations


class LorekeeperError(Exception):
    """Base class for all lorekeeper errors."""


class NotFound(LorekeeperError):
    """A referenced id does not resolve in its collection."""

    def __init__(self, collection: str, record_id: str):
        self.collection = collection
        self.record_id = record_id
        super().__init__(f"{collection} record not found: {record_id}")


class ValidationError(LorekeeperError):
    """A create or update would leave a record in an invalid state.

    Raised before anything is written.
    """

    def __init__(self, messages: str | list[str]):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = list(messages)
        super().__init__("; ".join(self.messages))

    @classmethod
    def from_pydantic(cls, exc) -> "ValidationError":
        """Wrap a pydantic ValidationError, keeping one message per field error."""
        messages = []
        for err in exc.errors():
            loc = ".".join(str(part) for part in err.get("loc", ()))
            msg = err.get("msg", "invalid value")
            messages.append(f"{loc}: {msg}" if loc else msg)
        return cls(messages)


class CascadeFailure(LorekeeperError):
    """Dependent-record cleanup failed after the primary delete succeeded.

    Attributes:
        primary: "collection/id" of the record that was deleted
        orphaned: collection name -> ids that are still stored
        causes: the underlying exceptions, in step order
    """

    def __init__(
        self,
        primary: str,
        orphaned: dict[str, list[str]],
        causes: list[BaseException] | None = None,
    ):
        self.primary = primary
        self.orphaned = {k: list(v) for k, v in orphaned.items() if v}
        self.causes = list(causes or [])
        detail = ", ".join(
            f"{collection}: {len(ids)}" for collection, ids in self.orphaned.items()
        )
        super().__init__(
            f"Deleted {primary} but dependent cleanup failed; orphaned records ({detail})"
        )

    def to_dict(self) -> dict:
        return {
            "primary": self.primary,
            "orphaned": self.orphaned,
            "causes": [str(c) for c in self.causes],
        }


class CycleDetected(LorekeeperError):
    """A graph assumed to be acyclic contains cycles.

    Only raised in strict mode; by default cycles are reported as findings
    and the view is built with the offending edges dropped.
    """

    def __init__(self, kind: str, cycles: list[list[str]]):
        self.kind = kind
        self.cycles = [list(c) for c in cycles]
        rendered = "; ".join(" -> ".join(c) for c in self.cycles)
        super().__init__(f"{kind} cycle detected: {rendered}")
