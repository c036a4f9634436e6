"""Typed stores over the record boundary.

Each store validates one record model and talks to a single collection.
Cross-store rules (referential checks, cascades) belong to the engine.
"""

from __future__ import annotations

import logging
from typing import Callable, Generic, TypeVar

from pydantic import ValidationError as PydanticValidationError

from . import constants
from .errors import NotFound, ValidationError
from .models import (
    CausalLink,
    Entity,
    Event,
    Participation,
    Record,
    Relationship,
    TravelRoute,
    utc_now,
)
from .records import RecordStore

logger = logging.getLogger(__name__)

R = TypeVar("R", bound=Record)

# Fields that may never be changed through update()
_PROTECTED_FIELDS = frozenset({"id", "created_at"})


class Collection(Generic[R]):
    """CRUD over one collection of validated records."""

    name: str = ""
    model: type[R]
    # Fields fixed at creation; changing them raises ValidationError
    immutable_fields: frozenset[str] = frozenset()

    def __init__(self, records: RecordStore):
        self._records = records

    def _load(self, data: dict) -> R:
        return self.model.model_validate(data)

    def _build(self, data: dict) -> R:
        try:
            return self.model.model_validate(data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e

    def create(self, data: dict | R) -> R:
        """Validate and store a new record."""
        record = data if isinstance(data, self.model) else self._build(data)
        if self._records.get(self.name, record.id) is not None:
            raise ValidationError(f"{self.name} record already exists: {record.id}")
        self._records.put(self.name, record.to_record())
        logger.debug(f"Created {self.name}/{record.id}")
        return record

    def get(self, record_id: str | int) -> R:
        record_id = str(record_id)
        data = self._records.get(self.name, record_id)
        if data is None:
            raise NotFound(self.name, record_id)
        return self._load(data)

    def exists(self, record_id: str | int) -> bool:
        return self._records.get(self.name, str(record_id)) is not None

    def merged(self, record_id: str, changes: dict) -> R:
        """Return the record with ``changes`` applied and revalidated, unsaved."""
        current = self.get(record_id)
        fields = self.model.model_fields
        unknown = [k for k in changes if k not in fields]
        if unknown:
            raise ValidationError(f"Unknown {self.name} fields: {', '.join(sorted(unknown))}")
        protected = [k for k in changes if k in _PROTECTED_FIELDS]
        if protected:
            raise ValidationError(f"Cannot change {', '.join(sorted(protected))}")
        for key in self.immutable_fields:
            if key in changes and changes[key] != getattr(current, key):
                raise ValidationError(
                    f"{key} of {self.name}/{record_id} is fixed at creation "
                    f"({getattr(current, key)!r} -> {changes[key]!r})"
                )

        data = current.model_dump()
        data.update(changes)
        data["updated_at"] = utc_now()
        return self._build(data)

    def save(self, record: R) -> R:
        self._records.put(self.name, record.to_record())
        logger.debug(f"Updated {self.name}/{record.id}")
        return record

    def update(self, record_id: str, **changes) -> R:
        """Merge ``changes`` into the stored record (partial update)."""
        return self.save(self.merged(record_id, changes))

    def delete(self, record_id: str) -> R:
        """Delete a record and return what was removed."""
        record = self.get(record_id)
        self._records.delete(self.name, record.id)
        logger.debug(f"Deleted {self.name}/{record.id}")
        return record

    def list_all(self) -> list[R]:
        """All records, in insertion order."""
        return [self._load(data) for data in self._records.list_all(self.name)]

    def list_by_filter(self, predicate: Callable[[R], bool]) -> list[R]:
        return [r for r in self.list_all() if predicate(r)]

    def count(self) -> int:
        return len(self._records.list_all(self.name))


class EntityStore(Collection[Entity]):
    name = constants.ENTITIES
    model = Entity
    immutable_fields = frozenset({"type"})

    def create(self, data: dict | Entity) -> Entity:
        entity = data if isinstance(data, Entity) else self._build(data)
        self._warn_soft_constraints(entity)
        return super().create(entity)

    def save(self, record: Entity) -> Entity:
        self._warn_soft_constraints(record)
        return super().save(record)

    def _warn_soft_constraints(self, entity: Entity) -> None:
        if not entity.is_character and (
            entity.birth_date is not None or entity.death_date is not None
        ):
            logger.warning(
                f"{entity.type} '{entity.name}' ({entity.id}) has birth/death dates; "
                "only characters use them"
            )

    def list_all(self, include_spoilers: bool = True) -> list[Entity]:
        entities = super().list_all()
        if include_spoilers:
            return entities
        return [e for e in entities if not e.is_spoiler]

    def by_type(self, entity_type: str, include_spoilers: bool = True) -> list[Entity]:
        return [e for e in self.list_all(include_spoilers) if e.type == entity_type]

    def find_by_name(self, name: str) -> Entity | None:
        """Case-insensitive lookup by name or alias."""
        wanted = name.strip().lower()
        for entity in self.list_all():
            if entity.name.lower() == wanted:
                return entity
        for entity in self.list_all():
            if any(a.lower() == wanted for a in entity.aliases):
                return entity
        return None


class RelationshipStore(Collection[Relationship]):
    name = constants.RELATIONSHIPS
    model = Relationship

    def for_entity(self, entity_id: str) -> list[Relationship]:
        """Relationships touching an entity, as source or target."""
        return self.list_by_filter(lambda r: r.touches(entity_id))


class EventStore(Collection[Event]):
    name = constants.EVENTS
    model = Event

    def list_all(self, include_spoilers: bool = True) -> list[Event]:
        events = super().list_all()
        if include_spoilers:
            return events
        return [e for e in events if not e.is_spoiler]

    def at_location(self, location_id: str) -> list[Event]:
        return self.list_by_filter(lambda e: e.location_id == location_id)


class ParticipationStore(Collection[Participation]):
    name = constants.PARTICIPATIONS
    model = Participation

    def for_event(self, event_id: str) -> list[Participation]:
        return self.list_by_filter(lambda p: p.event_id == event_id)

    def for_entity(self, entity_id: str) -> list[Participation]:
        return self.list_by_filter(lambda p: p.entity_id == entity_id)


class CausalLinkStore(Collection[CausalLink]):
    name = constants.CAUSAL_LINKS
    model = CausalLink

    def for_event(self, event_id: str) -> list[CausalLink]:
        """Links where the event is either cause or effect."""
        return self.list_by_filter(
            lambda c: event_id in (c.cause_event_id, c.effect_event_id)
        )


class RouteStore(Collection[TravelRoute]):
    name = constants.ROUTES
    model = TravelRoute

    def between(self, a: str, b: str) -> TravelRoute | None:
        for route in self.list_all():
            if route.connects(a, b):
                return route
        return None

    def for_location(self, location_id: str) -> list[TravelRoute]:
        return self.list_by_filter(lambda r: r.touches(location_id))
