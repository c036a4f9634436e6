"""Shared test fixtures for lorekeeper tests."""

import tempfile
from pathlib import Path

import pytest

from lorekeeper.engine import WorldEngine


# --- Fixtures ---


@pytest.fixture
def temp_world_dir():
    """Provide a temporary directory for world storage.

    Yields a Path to a temporary directory that's cleaned up after the test.
    """
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def engine():
    """Provide a fresh in-memory WorldEngine."""
    return WorldEngine.in_memory()


@pytest.fixture
def sqlite_engine(temp_world_dir):
    """Provide a WorldEngine backed by SQLite in a temporary directory."""
    engine = WorldEngine.open(temp_world_dir)
    yield engine
    engine.close()


@pytest.fixture
def populated_engine(engine):
    """Provide a small, consistent world.

    Aldric (100-150) is Corin's parent and Brenna's spouse; Corin and Dara
    are siblings; Brenna belongs to the Iron Guild. Rivermoor and Highpeak
    are 730 map units apart (two years at the default travel rate).
    """
    engine.create_entity(id="aldric", type="character", name="Aldric", birth_date=100, death_date=150)
    engine.create_entity(id="brenna", type="character", name="Brenna", birth_date=105, aliases=["The Smith"])
    engine.create_entity(id="corin", type="character", name="Corin", birth_date=130)
    engine.create_entity(id="dara", type="character", name="Dara", birth_date=132)
    engine.create_entity(id="rivermoor", type="location", name="Rivermoor", attributes={"x": 0, "y": 0})
    engine.create_entity(id="highpeak", type="location", name="Highpeak", attributes={"x": 730, "y": 0})
    engine.create_entity(id="guild", type="faction", name="Iron Guild")

    engine.create_relationship("aldric", "corin", "family", "parent", id="r-parent")
    engine.create_relationship("aldric", "brenna", "family", "spouse", id="r-spouse")
    engine.create_relationship("corin", "dara", "family", "sibling", id="r-sibling")
    engine.create_relationship("brenna", "guild", "member", id="r-member")

    engine.create_event(id="founding", title="Founding of the Guild", start_date=110,
                        location_id="rivermoor", tags=["guild"])
    engine.create_event(id="wedding", title="The Wedding", start_date=120, location_id="rivermoor")
    engine.create_event(id="siege", title="Siege of Highpeak", start_date=140, end_date=141,
                        location_id="highpeak", tags=["guild", "war"])

    for event_id, entity_id in [
        ("founding", "aldric"),
        ("founding", "brenna"),
        ("wedding", "aldric"),
        ("wedding", "brenna"),
        ("siege", "brenna"),
    ]:
        engine.add_participant(event_id, entity_id)

    return engine
