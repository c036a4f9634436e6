"""Core record models for the world store.

Uses Pydantic v2 for validation, ULID for sortable unique IDs.
Attributes are snake_case; the persisted shape uses camelCase aliases
(``sourceId``, ``birthDate``, ...), so always dump with ``by_alias=True``.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from ulid import ULID


def generate_id() -> str:
    """Generate a ULID (sortable, unique identifier)."""
    return str(ULID())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


def id_sort_key(record_id: str) -> tuple[int, int, str]:
    """Natural ordering for ids: digit-only ids numerically, ahead of all others.

    Keeps auto-increment style ids in order ("9" before "10").
    """
    if record_id.isdigit():
        return (0, int(record_id), record_id)
    return (1, 0, record_id)


class Record(BaseModel):
    """Fields shared by every persisted record.

    Ids may be given as numbers (auto-increment style) or strings; they
    are stored as strings.
    """

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )

    id: str = Field(default_factory=generate_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    def to_record(self) -> dict:
        """Serialize to the on-disk record shape."""
        return self.model_dump(mode="json", by_alias=True)


# ─────────────────────────────────────────────────────────────────────────────
# Entities
# ─────────────────────────────────────────────────────────────────────────────

EntityType = Literal["character", "faction", "location", "item", "concept"]
EntityStatus = Literal["active", "inactive", "deceased", "destroyed"]

ENTITY_TYPES: tuple[str, ...] = ("character", "faction", "location", "item", "concept")


class Entity(Record):
    """A node in the world graph."""

    type: EntityType
    name: str = Field(min_length=1)
    aliases: list[str] = Field(default_factory=list)
    description: str = ""
    birth_date: int | None = None
    death_date: int | None = None
    status: EntityStatus = "active"
    attributes: dict[str, Any] = Field(default_factory=dict)
    is_spoiler: bool = False

    @model_validator(mode="after")
    def _check_lifespan(self) -> "Entity":
        if (
            self.birth_date is not None
            and self.death_date is not None
            and self.death_date < self.birth_date
        ):
            raise ValueError(
                f"deathDate ({self.death_date}) is before birthDate ({self.birth_date})"
            )
        return self

    @property
    def is_character(self) -> bool:
        return self.type == "character"

    def alive_in(self, year: int) -> bool | None:
        """Whether the entity is alive in ``year``; None when dates are unknown."""
        if self.birth_date is not None and year < self.birth_date:
            return False
        if self.death_date is not None and year > self.death_date:
            return False
        if self.birth_date is None and self.death_date is None:
            return None
        return True

    def to_summary(self) -> dict:
        """Return a compact summary of this entity."""
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type,
            "status": self.status,
        }


# ─────────────────────────────────────────────────────────────────────────────
# Relationships
# ─────────────────────────────────────────────────────────────────────────────


class RelationshipKind(str, Enum):
    """Known relationship types; anything else parses to OTHER."""

    FAMILY = "family"
    ROMANTIC = "romantic"
    ALLY = "ally"
    ENEMY = "enemy"
    MEMBER = "member"
    CONTROLS = "controls"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> "RelationshipKind":
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OTHER


class Relationship(Record):
    """An edge between two entities.

    Stored with a direction, displayed in both; use ``other_endpoint`` to
    resolve the far side relative to a given entity.
    """

    source_id: str
    target_id: str
    type: str = Field(min_length=1)  # open set: family, ally, enemy, ...
    subtype: str | None = None
    description: str = ""
    start_date: int | None = None
    end_date: int | None = None

    @model_validator(mode="after")
    def _check_edge(self) -> "Relationship":
        if self.source_id == self.target_id:
            raise ValueError("a relationship cannot connect an entity to itself")
        if (
            self.start_date is not None
            and self.end_date is not None
            and self.end_date < self.start_date
        ):
            raise ValueError(
                f"endDate ({self.end_date}) is before startDate ({self.start_date})"
            )
        return self

    @property
    def kind(self) -> RelationshipKind:
        return RelationshipKind.parse(self.type)

    def touches(self, entity_id: str) -> bool:
        return entity_id in (self.source_id, self.target_id)

    def other_endpoint(self, entity_id: str) -> str:
        """Return the entity on the other end of this relationship."""
        return self.target_id if self.source_id == entity_id else self.source_id


# ─────────────────────────────────────────────────────────────────────────────
# Events
# ─────────────────────────────────────────────────────────────────────────────


class Event(Record):
    """A dated occurrence, optionally located."""

    title: str = Field(min_length=1)
    description: str = ""
    start_date: int
    end_date: int | None = None
    location_id: str | None = None
    tags: list[str] = Field(default_factory=list)
    is_spoiler: bool = False

    @field_validator("tags")
    @classmethod
    def _dedupe_tags(cls, tags: list[str]) -> list[str]:
        # Stored sorted so the persisted record is deterministic
        return sorted({t.strip() for t in tags if t and t.strip()})

    @model_validator(mode="after")
    def _check_dates(self) -> "Event":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError(
                f"endDate ({self.end_date}) is before startDate ({self.start_date})"
            )
        return self

    @property
    def last_date(self) -> int:
        """The year the event is over."""
        return self.end_date if self.end_date is not None else self.start_date

    @property
    def sort_key(self) -> tuple[int, tuple[int, int, str]]:
        return (self.start_date, id_sort_key(self.id))


class ParticipationRole(str, Enum):
    """Known participation roles; anything else parses to OTHER."""

    PRESENT = "present"
    AFFECTED = "affected"
    ORCHESTRATED = "orchestrated"
    MENTIONED = "mentioned"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str) -> "ParticipationRole":
        try:
            return cls(value.strip().lower())
        except ValueError:
            return cls.OTHER


class Participation(Record):
    """Role-qualified link between an event and an entity."""

    event_id: str
    entity_id: str
    role: str = "present"

    @property
    def role_kind(self) -> ParticipationRole:
        return ParticipationRole.parse(self.role)


class CausalLink(Record):
    """Explicit cause -> effect edge between two events."""

    cause_event_id: str
    effect_event_id: str
    description: str = ""
    plotline_id: str | None = None

    @model_validator(mode="after")
    def _check_link(self) -> "CausalLink":
        if self.cause_event_id == self.effect_event_id:
            raise ValueError("an event cannot cause itself")
        return self


# ─────────────────────────────────────────────────────────────────────────────
# Travel
# ─────────────────────────────────────────────────────────────────────────────

TravelUnit = Literal["hours", "days", "weeks", "months", "years"]


class TravelRoute(Record):
    """Known travel duration between two locations (either direction)."""

    from_location_id: str
    to_location_id: str
    distance: float = Field(ge=0)
    unit: TravelUnit = "days"
    method: str = "horse"

    @model_validator(mode="after")
    def _check_route(self) -> "TravelRoute":
        if self.from_location_id == self.to_location_id:
            raise ValueError("a route needs two different locations")
        return self

    def connects(self, a: str, b: str) -> bool:
        return {self.from_location_id, self.to_location_id} == {a, b}

    def touches(self, location_id: str) -> bool:
        return location_id in (self.from_location_id, self.to_location_id)
