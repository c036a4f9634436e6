"""CLI for managing a lorekeeper world outside of MCP."""

import json
import os
import sys
from contextlib import contextmanager
from pathlib import Path

import click
from rich.console import Console
from rich.table import Table

from .constants import CONTINUITY_RULES, DEFAULT_LIST_LIMIT, WORLD_DIRNAME
from .engine import WorldEngine
from .errors import CascadeFailure, LorekeeperError
from .models import ENTITY_TYPES

console = Console()

SEVERITY_STYLES = {"warning": "yellow", "info": "blue"}
TRAVEL_STYLES = {"feasible": "green", "infeasible": "red", "unknown": "yellow"}


def get_world_dir() -> Path:
    """Find world directory from LOREKEEPER_PATH env or walk up to find .lorekeeper."""
    if env_path := os.environ.get("LOREKEEPER_PATH"):
        return Path(env_path)

    cwd = Path.cwd()
    for parent in [cwd] + list(cwd.parents):
        world_dir = parent / WORLD_DIRNAME
        if world_dir.exists():
            return world_dir

    return cwd / WORLD_DIRNAME


def _print_json(data) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


def _fail(message: str) -> None:
    console.print(f"[red]Error:[/red] {message}")
    sys.exit(1)


@contextmanager
def open_world(ctx):
    """Open the world engine; library errors print in red and exit 1."""
    world_dir = ctx.obj["world_dir"]
    if not world_dir.exists():
        _fail(f"No world at {world_dir}. Run 'lorekeeper init' first.")

    engine = WorldEngine.open(world_dir)
    try:
        yield engine
    except CascadeFailure as e:
        console.print(f"[red]Error:[/red] {e}")
        for collection, ids in e.orphaned.items():
            console.print(f"  [red]orphaned[/red] {collection}: {', '.join(ids)}")
        sys.exit(1)
    except LorekeeperError as e:
        _fail(str(e))
    finally:
        engine.close()


def _parse_attributes(pairs: tuple[str, ...]) -> dict:
    attributes = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise click.BadParameter(f"expected key=value, got {pair!r}", param_hint="--attr")
        try:
            attributes[key] = json.loads(value)
        except json.JSONDecodeError:
            attributes[key] = value
    return attributes


def _lifespan(entity) -> str:
    if entity.birth_date is None and entity.death_date is None:
        return ""
    birth = entity.birth_date if entity.birth_date is not None else "?"
    death = entity.death_date if entity.death_date is not None else ""
    return f"{birth}-{death}"


@click.group()
@click.option(
    "--world-path",
    envvar="LOREKEEPER_PATH",
    type=click.Path(path_type=Path),
    help="Path to world directory",
)
@click.pass_context
def cli(ctx, world_path):
    """Lorekeeper - worldbuilding knowledge graph with continuity checks."""
    ctx.ensure_object(dict)
    ctx.obj["world_dir"] = world_path or get_world_dir()


@cli.command()
@click.pass_context
def init(ctx):
    """Initialize a world directory."""
    world_dir = ctx.obj["world_dir"]
    existed = world_dir.exists()
    world_dir.mkdir(parents=True, exist_ok=True)
    WorldEngine.open(world_dir).close()
    if existed:
        console.print(f"[yellow]![/yellow] World already initialized at {world_dir}")
    else:
        console.print(f"[green]✓[/green] Initialized world at {world_dir}")


@cli.command()
@click.pass_context
def status(ctx):
    """Show record counts per collection."""
    with open_world(ctx) as engine:
        stats = engine.stats()

    table = Table(title=f"World at {ctx.obj['world_dir']}")
    table.add_column("Collection", style="cyan")
    table.add_column("Records", justify="right")
    for name, count in stats.items():
        table.add_row(name, str(count))
    console.print(table)


# --- Entities ---


@cli.group()
def entity():
    """Create, list, show and delete entities."""


@entity.command("add")
@click.argument("name")
@click.option("-t", "--type", "entity_type", type=click.Choice(ENTITY_TYPES), required=True)
@click.option("--id", "entity_id", default=None, help="Explicit id (default: new ULID)")
@click.option("-a", "--alias", "aliases", multiple=True, help="Alternative name (repeatable)")
@click.option("-d", "--description", default="")
@click.option("--birth", type=int, default=None, help="Birth year")
@click.option("--death", type=int, default=None, help="Death year")
@click.option("--status", "entity_status", default="active")
@click.option("--attr", "attrs", multiple=True, help="Attribute as key=value (repeatable)")
@click.option("--spoiler", is_flag=True, help="Mark as spoiler")
@click.pass_context
def entity_add(ctx, name, entity_type, entity_id, aliases, description, birth, death,
               entity_status, attrs, spoiler):
    """Add an entity."""
    data = {
        "name": name,
        "type": entity_type,
        "aliases": list(aliases),
        "description": description,
        "birth_date": birth,
        "death_date": death,
        "status": entity_status,
        "attributes": _parse_attributes(attrs),
        "is_spoiler": spoiler,
    }
    if entity_id:
        data["id"] = entity_id
    with open_world(ctx) as engine:
        created = engine.create_entity(data)
    console.print(f"[green]✓[/green] Created {created.type} \"{created.name}\" [dim]{created.id}[/dim]")


@entity.command("list")
@click.option("-t", "--type", "entity_type", type=click.Choice(ENTITY_TYPES), default=None)
@click.option("-n", "--limit", default=DEFAULT_LIST_LIMIT, help="Maximum rows to show")
@click.option("--no-spoilers", is_flag=True, help="Hide spoiler entities")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def entity_list(ctx, entity_type, limit, no_spoilers, as_json):
    """List entities."""
    with open_world(ctx) as engine:
        entities = engine.entities.list_all(include_spoilers=not no_spoilers)
    if entity_type:
        entities = [e for e in entities if e.type == entity_type]
    entities = entities[:limit]

    if as_json:
        _print_json([e.to_record() for e in entities])
        return
    if not entities:
        console.print("[dim]No entities[/dim]")
        return

    table = Table(title="Entities")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Life")
    table.add_column("Status")
    for e in entities:
        table.add_row(e.id, e.name, e.type, _lifespan(e), e.status)
    console.print(table)


@entity.command("show")
@click.argument("name_or_id")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def entity_show(ctx, name_or_id, as_json):
    """Show an entity with its relationships and events."""
    with open_world(ctx) as engine:
        found = engine.require_entity(name_or_id)
        query = engine.query()
        neighbors = query.neighbors(found.id)
        events = query.events_for(found.id)
        names = {e.id: e.name for e in engine.entities.list_all()}

    if as_json:
        _print_json({
            "entity": found.to_record(),
            "neighbors": [n._asdict() for n in neighbors],
            "events": [e.to_record() for e in events],
        })
        return

    console.print(f"[bold cyan]{found.name}[/bold cyan] ({found.type}) [dim]{found.id}[/dim]")
    if found.aliases:
        console.print(f"Also known as: {', '.join(found.aliases)}")
    if _lifespan(found):
        console.print(f"Life: {_lifespan(found)}")
    if found.description:
        console.print(found.description)
    for key, value in found.attributes.items():
        console.print(f"  [dim]{key}:[/dim] {value}")

    if neighbors:
        console.print()
        console.print("[bold]Relationships:[/bold]")
        for n in neighbors:
            arrow = "->" if n.direction == "outgoing" else "<-"
            label = f"{n.relationship_type}/{n.subtype}" if n.subtype else n.relationship_type
            console.print(f"  {arrow} {label} {names.get(n.entity_id, n.entity_id)}")

    if events:
        console.print()
        console.print("[bold]Events:[/bold]")
        for e in events:
            console.print(f"  Year {e.start_date}: {e.title}")


@entity.command("delete")
@click.argument("name_or_id")
@click.pass_context
def entity_delete(ctx, name_or_id):
    """Delete an entity and everything that references it."""
    with open_world(ctx) as engine:
        target = engine.require_entity(name_or_id)
        removed = engine.delete_entity(target.id)
    console.print(f"[green]✓[/green] Deleted {target.type} \"{target.name}\"")
    for collection, ids in removed.items():
        console.print(f"  [dim]{collection}: {len(ids)}[/dim]")


# --- Relationships ---


@cli.command()
@click.argument("source")
@click.argument("target")
@click.argument("relationship_type")
@click.option("-s", "--subtype", default=None, help="e.g. parent, sibling, spouse")
@click.option("--start", type=int, default=None, help="Year the relationship begins")
@click.option("--end", type=int, default=None, help="Year the relationship ends")
@click.option("-d", "--description", default="")
@click.pass_context
def relate(ctx, source, target, relationship_type, subtype, start, end, description):
    """Relate SOURCE to TARGET (names or ids)."""
    with open_world(ctx) as engine:
        a = engine.require_entity(source)
        b = engine.require_entity(target)
        change = engine.create_relationship(
            a.id, b.id, relationship_type, subtype,
            start_date=start, end_date=end, description=description,
        )
    label = f"{relationship_type}/{subtype}" if subtype else relationship_type
    console.print(f"[green]✓[/green] {a.name} -> {label} -> {b.name} [dim]{change.record.id}[/dim]")
    console.print(f"  [dim]{a.name} now has {len(change.related)} relationships[/dim]")


# --- Events ---


@cli.group()
def event():
    """Create, list and delete events."""


@event.command("add")
@click.argument("title")
@click.option("--start", type=int, required=True, help="Start year")
@click.option("--end", type=int, default=None, help="End year")
@click.option("--id", "event_id", default=None, help="Explicit id (default: new ULID)")
@click.option("-l", "--location", default=None, help="Location name or id")
@click.option("--tag", "tags", multiple=True, help="Tag (repeatable)")
@click.option("-d", "--description", default="")
@click.option("--spoiler", is_flag=True, help="Mark as spoiler")
@click.pass_context
def event_add(ctx, title, start, end, event_id, location, tags, description, spoiler):
    """Add an event."""
    with open_world(ctx) as engine:
        data = {
            "title": title,
            "start_date": start,
            "end_date": end,
            "tags": list(tags),
            "description": description,
            "is_spoiler": spoiler,
        }
        if event_id:
            data["id"] = event_id
        if location:
            data["location_id"] = engine.require_entity(location).id
        created = engine.create_event(data)
    console.print(f"[green]✓[/green] Created event \"{created.title}\" (Year {created.start_date}) [dim]{created.id}[/dim]")


@event.command("list")
@click.option("-n", "--limit", default=DEFAULT_LIST_LIMIT, help="Maximum rows to show")
@click.option("--no-spoilers", is_flag=True, help="Hide spoiler events")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def event_list(ctx, limit, no_spoilers, as_json):
    """List events by date."""
    with open_world(ctx) as engine:
        events = engine.events.list_all(include_spoilers=not no_spoilers)
        names = {e.id: e.name for e in engine.entities.list_all()}
    events = sorted(events, key=lambda e: e.sort_key)[:limit]

    if as_json:
        _print_json([e.to_record() for e in events])
        return
    if not events:
        console.print("[dim]No events[/dim]")
        return

    table = Table(title="Events")
    table.add_column("ID", style="dim")
    table.add_column("Year", justify="right")
    table.add_column("Title", style="cyan")
    table.add_column("Location", style="green")
    for e in events:
        years = str(e.start_date) if e.end_date in (None, e.start_date) else f"{e.start_date}-{e.end_date}"
        table.add_row(e.id, years, e.title, names.get(e.location_id, "") if e.location_id else "")
    console.print(table)


@event.command("delete")
@click.argument("event_id")
@click.pass_context
def event_delete(ctx, event_id):
    """Delete an event with its participations and causal links."""
    with open_world(ctx) as engine:
        target = engine.events.get(event_id)
        removed = engine.delete_event(event_id)
    console.print(f"[green]✓[/green] Deleted event \"{target.title}\"")
    for collection, ids in removed.items():
        console.print(f"  [dim]{collection}: {len(ids)}[/dim]")


@cli.command()
@click.argument("event_id")
@click.argument("entity_ref")
@click.option("-r", "--role", default="present", help="present, affected, orchestrated, mentioned")
@click.pass_context
def participate(ctx, event_id, entity_ref, role):
    """Record that an entity takes part in an event."""
    with open_world(ctx) as engine:
        who = engine.require_entity(entity_ref)
        change = engine.add_participant(event_id, who.id, role)
        title = engine.events.get(event_id).title
    console.print(f"[green]✓[/green] {who.name} ({role}) in \"{title}\"")
    console.print(f"  [dim]{len(change.related)} participants[/dim]")


@cli.command()
@click.argument("cause_id")
@click.argument("effect_id")
@click.option("-d", "--description", default="")
@click.option("--plotline", default=None, help="Plotline id")
@click.pass_context
def cause(ctx, cause_id, effect_id, description, plotline):
    """Record that event CAUSE_ID causes event EFFECT_ID."""
    with open_world(ctx) as engine:
        change = engine.add_causal_link(cause_id, effect_id, description, plotline)
        cause_title = engine.events.get(cause_id).title
        effect_title = engine.events.get(effect_id).title
    console.print(f"[green]✓[/green] \"{cause_title}\" causes \"{effect_title}\" [dim]{change.record.id}[/dim]")


@cli.command()
@click.argument("from_location")
@click.argument("to_location")
@click.argument("distance", type=float)
@click.option("-u", "--unit", type=click.Choice(["hours", "days", "weeks", "months", "years"]), default="days")
@click.option("-m", "--method", default="horse")
@click.pass_context
def route(ctx, from_location, to_location, distance, unit, method):
    """Set the travel time between two locations."""
    with open_world(ctx) as engine:
        a = engine.require_entity(from_location)
        b = engine.require_entity(to_location)
        saved = engine.set_route(a.id, b.id, distance, unit, method)
    console.print(f"[green]✓[/green] {a.name} <-> {b.name}: {saved.distance:g} {saved.unit} by {saved.method}")


# --- Views ---


@cli.command()
@click.argument("entity_ref")
@click.option("-t", "--type", "types", multiple=True, help="Only these relationship types")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def neighbors(ctx, entity_ref, types, as_json):
    """List entities directly related to ENTITY_REF."""
    with open_world(ctx) as engine:
        who = engine.require_entity(entity_ref)
        found = engine.neighbors(who.id, types or None)
        names = {e.id: e.name for e in engine.entities.list_all()}

    if as_json:
        _print_json([n._asdict() for n in found])
        return
    if not found:
        console.print(f"[dim]{who.name} has no relationships[/dim]")
        return

    table = Table(title=f"Neighbors of {who.name}")
    table.add_column("Name", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Subtype")
    table.add_column("Direction", style="dim")
    for n in found:
        table.add_row(names.get(n.entity_id, n.entity_id), n.relationship_type, n.subtype or "", n.direction)
    console.print(table)


@cli.command()
@click.argument("start")
@click.argument("end")
@click.option("-t", "--type", "types", multiple=True, help="Only these relationship types")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def path(ctx, start, end, types, as_json):
    """Shortest relationship path between two entities."""
    with open_world(ctx) as engine:
        a = engine.require_entity(start)
        b = engine.require_entity(end)
        hops = engine.shortest_path(a.id, b.id, types or None)
        names = {e.id: e.name for e in engine.entities.list_all()}

    if as_json:
        _print_json([h._asdict() for h in hops])
        return
    if not hops:
        console.print(f"[yellow]No path between {a.name} and {b.name}[/yellow]")
        return

    console.print(f"[bold]{len(hops)} hop(s):[/bold]")
    for hop in hops:
        console.print(
            f"  {names.get(hop.from_id, hop.from_id)} "
            f"--{hop.relationship_type}-- {names.get(hop.to_id, hop.to_id)}"
        )


@cli.command()
@click.option("--strict", is_flag=True, help="Fail on cycles instead of breaking them")
@click.option("--no-spoilers", is_flag=True, help="Hide spoiler entities")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def family(ctx, strict, no_spoilers, as_json):
    """Show family trees, one per connected family."""
    with open_world(ctx) as engine:
        forest = engine.family_tree(strict=strict, include_spoilers=not no_spoilers)

    if as_json:
        _print_json(forest.to_dict())
        return

    trees = [c for c in forest.components if len(c.members) > 1]
    if not trees:
        console.print("[dim]No family relationships[/dim]")
    for n, component in enumerate(trees, 1):
        console.print(f"[bold]Family {n}[/bold] ({len(component.members)} members)")
        for member in component.members:
            indent = "  " * (member.generation + 1)
            spouses = f" [dim]+ {len(member.spouses)} spouse(s)[/dim]" if member.spouses else ""
            console.print(f"{indent}[cyan]{member.name}[/cyan] [dim]gen {member.generation}[/dim]{spouses}")
        console.print()

    for finding in forest.findings:
        style = SEVERITY_STYLES[finding.severity]
        console.print(f"[{style}]{finding.severity}[/{style}] {finding.message}")


@cli.command()
@click.option("--strict", is_flag=True, help="Fail on causal cycles instead of breaking them")
@click.option("--no-spoilers", is_flag=True, help="Hide spoiler events")
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def timeline(ctx, strict, no_spoilers, as_json):
    """Events in causal order (causes before effects, then by date)."""
    with open_world(ctx) as engine:
        result = engine.causal_order(strict=strict, include_spoilers=not no_spoilers)
        events = {e.id: e for e in engine.events.list_all()}

    if as_json:
        _print_json(result.to_dict())
        return
    if not result.event_ids:
        console.print("[dim]No events[/dim]")
        return

    table = Table(title="Timeline")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Year", justify="right")
    table.add_column("Event", style="cyan")
    for n, event_id in enumerate(result.event_ids, 1):
        e = events[event_id]
        table.add_row(str(n), str(e.start_date), e.title)
    console.print(table)

    for finding in result.findings:
        style = SEVERITY_STYLES[finding.severity]
        console.print(f"[{style}]{finding.severity}[/{style}] {finding.message}")


@cli.command()
@click.option(
    "-r", "--rule", "rules", multiple=True,
    type=click.Choice(CONTINUITY_RULES), help="Only run these rules",
)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def check(ctx, rules, as_json):
    """Run continuity checks."""
    with open_world(ctx) as engine:
        findings = engine.check_continuity(list(rules) if rules else None)

    if as_json:
        _print_json([f.to_dict() for f in findings])
        return
    if not findings:
        console.print("[green]✓ No continuity issues found[/green]")
        return

    warnings = sum(1 for f in findings if f.severity == "warning")
    console.print(f"[bold]{len(findings)} finding(s)[/bold], {warnings} warning(s)")
    for finding in findings:
        style = SEVERITY_STYLES[finding.severity]
        console.print(f"  [{style}]{finding.severity:<7}[/{style}] [dim]{finding.rule}[/dim] {finding.message}")


@cli.command()
@click.argument("entity_ref", required=False)
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def travel(ctx, entity_ref, as_json):
    """Check travel times between consecutive appearances.

    With ENTITY_REF, every move of that entity is shown; without it,
    only questionable moves of all characters.
    """
    with open_world(ctx) as engine:
        entity_id = engine.require_entity(entity_ref).id if entity_ref else None
        checks = engine.validate_travel(entity_id)
        names = {e.id: e.name for e in engine.entities.list_all()}

    if as_json:
        _print_json([c.to_dict() for c in checks])
        return
    if not checks:
        console.print("[green]✓ No travel to report[/green]")
        return

    for c in checks:
        style = TRAVEL_STYLES[c.status]
        console.print(
            f"[{style}]{c.status:<10}[/{style}] {names.get(c.entity_id, c.entity_id)}: {c.message}"
        )


if __name__ == "__main__":
    cli()
