"""Tests for the error types."""

import pytest
from pydantic import ValidationError as PydanticValidationError

from lorekeeper.errors import (
    CascadeFailure,
    CycleDetected,
    LorekeeperError,
    NotFound,
    ValidationError,
)
from lorekeeper.models import Entity


def test_not_found_message():
    err = NotFound("entities", "aldric")
    assert isinstance(err, LorekeeperError)
    assert (err.collection, err.record_id) == ("entities", "aldric")
    assert str(err) == "entities record not found: aldric"


def test_validation_error_joins_messages():
    assert ValidationError("bad").messages == ["bad"]
    assert str(ValidationError(["one", "two"])) == "one; two"


def test_validation_error_wraps_pydantic():
    with pytest.raises(PydanticValidationError) as exc:
        Entity(type="character", name="")
    err = ValidationError.from_pydantic(exc.value)
    assert len(err.messages) == 1
    assert err.messages[0].startswith("name:")


def test_cascade_failure_drops_empty_collections():
    err = CascadeFailure("entities/aldric", {"relationships": ["r1"], "routes": []}, [OSError("disk")])
    assert err.orphaned == {"relationships": ["r1"]}
    assert err.to_dict()["causes"] == ["disk"]
    assert "relationships: 1" in str(err)


def test_cycle_detected_renders_cycles():
    err = CycleDetected("causal", [["a", "b", "a"]])
    assert err.kind == "causal"
    assert str(err) == "causal cycle detected: a -> b -> a"
