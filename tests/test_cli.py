"""Tests for CLI commands."""

import json
import tempfile
from pathlib import Path

import pytest
from click.testing import CliRunner

from lorekeeper.cli import cli
from lorekeeper.engine import WorldEngine


runner = CliRunner()


@pytest.fixture
def world_path():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = str(Path(tmpdir) / "world")
        result = runner.invoke(cli, ["--world-path", path, "init"])
        assert result.exit_code == 0, result.output
        yield path


def invoke(world_path, *args):
    return runner.invoke(cli, ["--world-path", world_path, *args])


def test_init_creates_world():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "world"
        result = runner.invoke(cli, ["--world-path", str(path), "init"])
        assert result.exit_code == 0
        assert "Initialized" in result.output
        assert (path / "lorekeeper.db").exists()

        again = runner.invoke(cli, ["--world-path", str(path), "init"])
        assert "already initialized" in again.output


def test_missing_world_fails():
    with tempfile.TemporaryDirectory() as tmpdir:
        result = runner.invoke(cli, ["--world-path", str(Path(tmpdir) / "nope"), "status"])
        assert result.exit_code == 1
        assert "No world" in result.output


def test_world_path_from_env(world_path):
    result = runner.invoke(cli, ["status"], env={"LOREKEEPER_PATH": world_path})
    assert result.exit_code == 0
    assert "entities" in result.output


def test_entity_add_and_list(world_path):
    result = invoke(world_path, "entity", "add", "Aldric", "--type", "character",
                    "--id", "aldric", "--birth", "100", "--alias", "Al", "--attr", "height=180")
    assert result.exit_code == 0, result.output
    assert "Created character" in result.output

    listed = invoke(world_path, "entity", "list", "--json")
    records = json.loads(listed.output)
    assert [r["id"] for r in records] == ["aldric"]
    assert records[0]["birthDate"] == 100
    assert records[0]["aliases"] == ["Al"]
    assert records[0]["attributes"] == {"height": 180}


def test_invalid_entity_reports_error(world_path):
    result = invoke(world_path, "entity", "add", "Aldric", "-t", "character",
                    "--birth", "150", "--death", "100")
    assert result.exit_code == 1
    assert "Error" in result.output


def test_self_relationship_rejected(world_path):
    invoke(world_path, "entity", "add", "Aldric", "-t", "character")
    result = invoke(world_path, "relate", "Aldric", "Aldric", "ally")
    assert result.exit_code == 1
    assert "itself" in result.output


def test_posthumous_scenario(world_path):
    invoke(world_path, "entity", "add", "Aldric", "-t", "character", "--id", "aldric",
           "--birth", "100", "--death", "150")
    invoke(world_path, "entity", "add", "Rivermoor", "-t", "location", "--attr", "x=0", "--attr", "y=0")
    result = invoke(world_path, "event", "add", "Battle", "--start", "160", "--id", "battle",
                    "--location", "Rivermoor")
    assert result.exit_code == 0, result.output
    result = invoke(world_path, "participate", "battle", "Aldric")
    assert result.exit_code == 0, result.output

    checked = invoke(world_path, "check")
    assert checked.exit_code == 0
    assert "posthumous_use" in checked.output

    findings = json.loads(invoke(world_path, "check", "--json").output)
    assert [(f["rule"], f["entityIds"], f["eventIds"]) for f in findings] == [
        ("posthumous_use", ["aldric"], ["battle"])
    ]


def test_family_and_path(world_path):
    for name in ("Aldric", "Corin", "Dara"):
        invoke(world_path, "entity", "add", name, "-t", "character", "--id", name.lower())
    invoke(world_path, "relate", "Aldric", "Corin", "family", "--subtype", "parent")
    invoke(world_path, "relate", "Corin", "Dara", "family", "--subtype", "sibling")

    forest = json.loads(invoke(world_path, "family", "--json").output)
    [component] = forest["components"]
    generations = {m["entityId"]: m["generation"] for m in component["members"]}
    assert generations == {"aldric": 0, "corin": 1, "dara": 0}

    hops = json.loads(invoke(world_path, "path", "Aldric", "Dara", "--json").output)
    assert [h["to_id"] for h in hops] == ["corin", "dara"]

    neighbors = json.loads(invoke(world_path, "neighbors", "Corin", "--json").output)
    assert [n["entity_id"] for n in neighbors] == ["aldric", "dara"]


def test_timeline_orders_by_cause(world_path):
    invoke(world_path, "event", "add", "Treaty", "--start", "5", "--id", "treaty")
    invoke(world_path, "event", "add", "War", "--start", "10", "--id", "war")
    result = invoke(world_path, "cause", "war", "treaty")
    assert result.exit_code == 0, result.output

    timeline = json.loads(invoke(world_path, "timeline", "--json").output)
    assert timeline["order"] == ["war", "treaty"]
    assert [f["rule"] for f in timeline["findings"]] == ["temporal_contradiction"]


def test_travel_command(world_path):
    invoke(world_path, "entity", "add", "Hero", "-t", "character")
    invoke(world_path, "entity", "add", "North", "-t", "location")
    invoke(world_path, "entity", "add", "South", "-t", "location")
    assert invoke(world_path, "route", "North", "South", "2", "--unit", "years").exit_code == 0
    invoke(world_path, "event", "add", "Departure", "--start", "100", "--id", "e1", "--location", "North")
    invoke(world_path, "event", "add", "Arrival", "--start", "101", "--id", "e2", "--location", "South")
    invoke(world_path, "participate", "e1", "Hero")
    invoke(world_path, "participate", "e2", "Hero")

    checks = json.loads(invoke(world_path, "travel", "Hero", "--json").output)
    assert [c["status"] for c in checks] == ["infeasible"]


def test_entity_delete_cascades(world_path):
    invoke(world_path, "entity", "add", "Aldric", "-t", "character", "--id", "aldric")
    invoke(world_path, "entity", "add", "Brenna", "-t", "character", "--id", "brenna")
    invoke(world_path, "relate", "Aldric", "Brenna", "ally")

    result = invoke(world_path, "entity", "delete", "Aldric")
    assert result.exit_code == 0, result.output
    assert "relationships: 1" in result.output

    engine = WorldEngine.open(Path(world_path))
    assert engine.relationships.count() == 0
    assert engine.stats()["entities"] == 1
    engine.close()


def test_unknown_entity(world_path):
    result = invoke(world_path, "entity", "show", "Nobody")
    assert result.exit_code == 1
    assert "not found" in result.output


def test_check_rejects_unknown_rule(world_path):
    result = invoke(world_path, "check", "--rule", "posthumus")
    assert result.exit_code == 2
    assert "posthumus" in result.output

    result = invoke(world_path, "check", "--rule", "family_cycle")
    assert result.exit_code == 0, result.output
    assert "No continuity issues" in result.output
