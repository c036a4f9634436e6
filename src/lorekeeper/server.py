"""MCP server for the world engine."""

import asyncio
import json
import logging
import os
import sys
import traceback
from pathlib import Path

from mcp.server import Server
from mcp.server.stdio import stdio_server
from mcp.types import TextContent, Tool
from pydantic.alias_generators import to_snake

from .constants import CONTINUITY_RULES, LOG_FILENAME, WORLD_DIRNAME
from .engine import WorldEngine
from .errors import CascadeFailure, LorekeeperError

logger = logging.getLogger("lorekeeper")

server = Server("lorekeeper")

# Set by main(); tools fail until the server is started
engine: WorldEngine | None = None


def setup_logging(world_dir: Path) -> None:
    """Log to a file in the world directory and to stderr (stdout is the MCP channel)."""
    world_dir.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(world_dir / LOG_FILENAME),
            logging.StreamHandler(sys.stderr),
        ],
    )


def _id_schema(description: str) -> dict:
    return {"type": "string", "description": description}


ENTITY_PROPERTIES = {
    "name": {"type": "string"},
    "type": {
        "type": "string",
        "enum": ["character", "faction", "location", "item", "concept"],
        "description": "Fixed at creation",
    },
    "aliases": {"type": "array", "items": {"type": "string"}},
    "description": {"type": "string"},
    "birthDate": {"type": "integer", "description": "Birth year (characters)"},
    "deathDate": {"type": "integer", "description": "Death year (characters)"},
    "status": {"type": "string", "enum": ["active", "inactive", "deceased", "destroyed"]},
    "attributes": {
        "type": "object",
        "description": "Free-form; locations may carry map coordinates as x and y",
    },
    "isSpoiler": {"type": "boolean"},
}

EVENT_PROPERTIES = {
    "title": {"type": "string"},
    "description": {"type": "string"},
    "startDate": {"type": "integer", "description": "Start year"},
    "endDate": {"type": "integer", "description": "End year (>= startDate)"},
    "locationId": _id_schema("ID of a location entity"),
    "tags": {"type": "array", "items": {"type": "string"}},
    "isSpoiler": {"type": "boolean"},
}


@server.list_tools()
async def list_tools() -> list[Tool]:
    """List available MCP tools."""
    return [
        # --- Records ---
        Tool(
            name="create_entity",
            description=(
                "Create a character, faction, location, item or concept. "
                "Only characters use birthDate/deathDate."
            ),
            inputSchema={
                "type": "object",
                "properties": ENTITY_PROPERTIES,
                "required": ["name", "type"],
            },
        ),
        Tool(
            name="update_entity",
            description="Change fields of an entity. The entity type cannot be changed.",
            inputSchema={
                "type": "object",
                "properties": {"id": _id_schema("Entity ID"), **ENTITY_PROPERTIES},
                "required": ["id"],
            },
        ),
        Tool(
            name="delete_entity",
            description=(
                "Delete an entity with its relationships, participations and routes. "
                "Events located there lose their location."
            ),
            inputSchema={
                "type": "object",
                "properties": {"id": _id_schema("Entity ID")},
                "required": ["id"],
            },
        ),
        Tool(
            name="get_entity",
            description="Look up an entity by ID, name or alias.",
            inputSchema={
                "type": "object",
                "properties": {"ref": {"type": "string", "description": "ID, name or alias"}},
                "required": ["ref"],
            },
        ),
        Tool(
            name="list_entities",
            description="List entities, optionally by type.",
            inputSchema={
                "type": "object",
                "properties": {
                    "type": ENTITY_PROPERTIES["type"],
                    "includeSpoilers": {"type": "boolean", "default": True},
                },
            },
        ),
        Tool(
            name="create_relationship",
            description=(
                "Relate two entities. Family links use type 'family' with subtype "
                "parent/child/sibling/spouse (or mother, son, wife, ...)."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "sourceId": _id_schema("Source entity ID"),
                    "targetId": _id_schema("Target entity ID"),
                    "type": {"type": "string", "description": "family, romantic, ally, enemy, member, controls, ..."},
                    "subtype": {"type": "string"},
                    "description": {"type": "string"},
                    "startDate": {"type": "integer"},
                    "endDate": {"type": "integer"},
                },
                "required": ["sourceId", "targetId", "type"],
            },
        ),
        Tool(
            name="delete_relationship",
            description="Delete a relationship.",
            inputSchema={
                "type": "object",
                "properties": {"id": _id_schema("Relationship ID")},
                "required": ["id"],
            },
        ),
        Tool(
            name="create_event",
            description="Create a dated event, optionally at a location.",
            inputSchema={
                "type": "object",
                "properties": EVENT_PROPERTIES,
                "required": ["title", "startDate"],
            },
        ),
        Tool(
            name="update_event",
            description="Change fields of an event.",
            inputSchema={
                "type": "object",
                "properties": {"id": _id_schema("Event ID"), **EVENT_PROPERTIES},
                "required": ["id"],
            },
        ),
        Tool(
            name="delete_event",
            description="Delete an event with its participations and causal links.",
            inputSchema={
                "type": "object",
                "properties": {"id": _id_schema("Event ID")},
                "required": ["id"],
            },
        ),
        Tool(
            name="list_events",
            description="List events by (startDate, id).",
            inputSchema={
                "type": "object",
                "properties": {"includeSpoilers": {"type": "boolean", "default": True}},
            },
        ),
        Tool(
            name="add_participant",
            description="Record that an entity takes part in an event.",
            inputSchema={
                "type": "object",
                "properties": {
                    "eventId": _id_schema("Event ID"),
                    "entityId": _id_schema("Entity ID"),
                    "role": {
                        "type": "string",
                        "description": "present, affected, orchestrated, mentioned (default present)",
                    },
                },
                "required": ["eventId", "entityId"],
            },
        ),
        Tool(
            name="remove_participant",
            description="Remove a participation record.",
            inputSchema={
                "type": "object",
                "properties": {"id": _id_schema("Participation ID")},
                "required": ["id"],
            },
        ),
        Tool(
            name="add_causal_link",
            description="Record that one event causes another.",
            inputSchema={
                "type": "object",
                "properties": {
                    "causeEventId": _id_schema("Cause event ID"),
                    "effectEventId": _id_schema("Effect event ID"),
                    "description": {"type": "string"},
                    "plotlineId": {"type": "string"},
                },
                "required": ["causeEventId", "effectEventId"],
            },
        ),
        Tool(
            name="remove_causal_link",
            description="Remove a causal link.",
            inputSchema={
                "type": "object",
                "properties": {"id": _id_schema("Causal link ID")},
                "required": ["id"],
            },
        ),
        Tool(
            name="set_route",
            description="Set the travel time between two locations (either direction).",
            inputSchema={
                "type": "object",
                "properties": {
                    "fromLocationId": _id_schema("Location ID"),
                    "toLocationId": _id_schema("Location ID"),
                    "distance": {"type": "number", "minimum": 0},
                    "unit": {"type": "string", "enum": ["hours", "days", "weeks", "months", "years"]},
                    "method": {"type": "string"},
                },
                "required": ["fromLocationId", "toLocationId", "distance"],
            },
        ),
        # --- Views ---
        Tool(
            name="neighbors",
            description="Entities directly related to an entity, one entry per relationship.",
            inputSchema={
                "type": "object",
                "properties": {
                    "entityId": _id_schema("Entity ID"),
                    "types": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["entityId"],
            },
        ),
        Tool(
            name="events_for",
            description="Events an entity participates in, by date.",
            inputSchema={
                "type": "object",
                "properties": {"entityId": _id_schema("Entity ID")},
                "required": ["entityId"],
            },
        ),
        Tool(
            name="shortest_path",
            description="Shortest relationship path between two entities. Empty if none.",
            inputSchema={
                "type": "object",
                "properties": {
                    "fromId": _id_schema("Start entity ID"),
                    "toId": _id_schema("End entity ID"),
                    "types": {"type": "array", "items": {"type": "string"}},
                },
                "required": ["fromId", "toId"],
            },
        ),
        Tool(
            name="subgraph",
            description="Entities within N hops of the given ones, with the relationships among them.",
            inputSchema={
                "type": "object",
                "properties": {
                    "entityIds": {"type": "array", "items": {"type": "string"}},
                    "depth": {"type": "integer", "default": 1},
                },
                "required": ["entityIds"],
            },
        ),
        Tool(
            name="family_tree",
            description="Family trees with generations; cycles are reported and broken.",
            inputSchema={
                "type": "object",
                "properties": {"includeSpoilers": {"type": "boolean", "default": True}},
            },
        ),
        Tool(
            name="causal_order",
            description="All events with causes before effects, then by date. Reports contradictions and cycles.",
            inputSchema={
                "type": "object",
                "properties": {"includeSpoilers": {"type": "boolean", "default": True}},
            },
        ),
        Tool(
            name="causal_chains",
            description="Root-to-leaf chains of causally linked events.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="suggest_causal_links",
            description="Candidate causal links between consecutive events sharing a participant and a tag. For review only.",
            inputSchema={"type": "object", "properties": {}},
        ),
        Tool(
            name="check_continuity",
            description=(
                "Run continuity checks (all rules, or the named subset): "
                + ", ".join(CONTINUITY_RULES) + "."
            ),
            inputSchema={
                "type": "object",
                "properties": {
                    "rules": {"type": "array", "items": {"type": "string", "enum": list(CONTINUITY_RULES)}},
                },
            },
        ),
        Tool(
            name="validate_travel",
            description="Travel feasibility between consecutive appearances (one entity, or problems for all).",
            inputSchema={
                "type": "object",
                "properties": {"entityId": _id_schema("Entity ID (optional)")},
            },
        ),
        Tool(
            name="check_travel",
            description="Can an entity get from one event to another in time?",
            inputSchema={
                "type": "object",
                "properties": {
                    "entityId": _id_schema("Entity ID"),
                    "fromEventId": _id_schema("Event ID"),
                    "toEventId": _id_schema("Event ID"),
                },
                "required": ["entityId", "fromEventId", "toEventId"],
            },
        ),
        Tool(
            name="get_stats",
            description="Record counts per collection.",
            inputSchema={"type": "object", "properties": {}},
        ),
    ]


def _changes(arguments: dict) -> dict:
    """Tool arguments (camelCase) as model field changes, without the id."""
    return {to_snake(k): v for k, v in arguments.items() if k != "id"}


def _change_dict(change) -> dict:
    return {
        "record": change.record.to_record(),
        "related": [r.to_record() for r in change.related],
    }


def handle_tool(engine: WorldEngine, name: str, arguments: dict):
    """Run one tool against the engine and return a JSON-serialisable result."""
    if name == "create_entity":
        return engine.create_entity(arguments).to_record()

    elif name == "update_entity":
        return engine.update_entity(arguments["id"], **_changes(arguments)).to_record()

    elif name == "delete_entity":
        return {"deleted": arguments["id"], "cascade": engine.delete_entity(arguments["id"])}

    elif name == "get_entity":
        return engine.require_entity(arguments["ref"]).to_record()

    elif name == "list_entities":
        entities = engine.entities.list_all(arguments.get("includeSpoilers", True))
        if arguments.get("type"):
            entities = [e for e in entities if e.type == arguments["type"]]
        return [e.to_summary() for e in entities]

    elif name == "create_relationship":
        fields = _changes(arguments)
        change = engine.create_relationship(
            fields.pop("source_id"),
            fields.pop("target_id"),
            fields.pop("type"),
            fields.pop("subtype", None),
            **fields,
        )
        return _change_dict(change)

    elif name == "delete_relationship":
        return _change_dict(engine.delete_relationship(arguments["id"]))

    elif name == "create_event":
        return engine.create_event(arguments).to_record()

    elif name == "update_event":
        return engine.update_event(arguments["id"], **_changes(arguments)).to_record()

    elif name == "delete_event":
        return {"deleted": arguments["id"], "cascade": engine.delete_event(arguments["id"])}

    elif name == "list_events":
        events = engine.events.list_all(arguments.get("includeSpoilers", True))
        return [e.to_record() for e in sorted(events, key=lambda e: e.sort_key)]

    elif name == "add_participant":
        change = engine.add_participant(
            arguments["eventId"], arguments["entityId"], arguments.get("role", "present")
        )
        return _change_dict(change)

    elif name == "remove_participant":
        return _change_dict(engine.remove_participant(arguments["id"]))

    elif name == "add_causal_link":
        change = engine.add_causal_link(
            arguments["causeEventId"],
            arguments["effectEventId"],
            arguments.get("description", ""),
            arguments.get("plotlineId"),
        )
        return _change_dict(change)

    elif name == "remove_causal_link":
        return _change_dict(engine.remove_causal_link(arguments["id"]))

    elif name == "set_route":
        return engine.set_route(
            arguments["fromLocationId"],
            arguments["toLocationId"],
            arguments["distance"],
            arguments.get("unit", "days"),
            arguments.get("method", "horse"),
        ).to_record()

    elif name == "neighbors":
        return [n._asdict() for n in engine.neighbors(arguments["entityId"], arguments.get("types"))]

    elif name == "events_for":
        return [e.to_record() for e in engine.events_for(arguments["entityId"])]

    elif name == "shortest_path":
        hops = engine.shortest_path(arguments["fromId"], arguments["toId"], arguments.get("types"))
        return [h._asdict() for h in hops]

    elif name == "subgraph":
        return engine.subgraph(arguments["entityIds"], arguments.get("depth", 1)).to_dict()

    elif name == "family_tree":
        return engine.family_tree(include_spoilers=arguments.get("includeSpoilers", True)).to_dict()

    elif name == "causal_order":
        return engine.causal_order(include_spoilers=arguments.get("includeSpoilers", True)).to_dict()

    elif name == "causal_chains":
        return engine.causal_chains()

    elif name == "suggest_causal_links":
        return [s.to_dict() for s in engine.suggest_causal_links()]

    elif name == "check_continuity":
        findings = engine.check_continuity(arguments.get("rules"))
        return [f.to_dict() for f in findings]

    elif name == "validate_travel":
        return [c.to_dict() for c in engine.validate_travel(arguments.get("entityId"))]

    elif name == "check_travel":
        return engine.check_travel(
            arguments["entityId"], arguments["fromEventId"], arguments["toEventId"]
        ).to_dict()

    elif name == "get_stats":
        return engine.stats()

    raise ValueError(f"Unknown tool: {name}")


@server.call_tool()
async def call_tool(name: str, arguments: dict) -> list[TextContent]:
    """Handle tool calls."""
    logger.info(f"Tool call: {name}")
    logger.debug(f"Arguments: {arguments}")
    try:
        result = handle_tool(engine, name, arguments or {})
        return [TextContent(type="text", text=json.dumps(result, indent=2, default=str))]

    except CascadeFailure as e:
        logger.error(f"Tool {name}: {e}")
        return [TextContent(type="text", text=json.dumps({"error": str(e), **e.to_dict()}, indent=2))]

    except LorekeeperError as e:
        logger.warning(f"Tool {name} rejected: {e}")
        return [TextContent(type="text", text=f"Error: {e}")]

    except Exception as e:
        logger.error(f"Tool {name} failed: {e}")
        logger.error(traceback.format_exc())
        return [TextContent(type="text", text=f"Error: {e}")]


def main():
    """Entry point for the MCP server."""
    global engine

    world_dir = Path(os.environ.get("LOREKEEPER_PATH", WORLD_DIRNAME))
    setup_logging(world_dir)
    engine = WorldEngine.open(world_dir)

    stats = engine.stats()
    logger.info(f"Lorekeeper MCP Server starting (world_dir={world_dir})")
    logger.info(f"Loaded {stats['entities']} entities, {stats['events']} events")
    try:
        asyncio.run(_run_server())
    except Exception as e:
        logger.error(f"Server crashed: {e}")
        logger.error(traceback.format_exc())
        raise
    finally:
        engine.close()


async def _run_server():
    """Run the MCP server."""
    async with stdio_server() as (read, write):
        await server.run(read, write, server.create_initialization_options())


if __name__ == "__main__":
    main()
