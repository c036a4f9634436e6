"""Shared constants for lorekeeper.

Centralised here so the CLI, server and analysis modules agree on defaults.
"""

# --- Storage ---

DB_FILENAME = "lorekeeper.db"
LOG_FILENAME = "lorekeeper.log"
WORLD_DIRNAME = ".lorekeeper"
SCHEMA_VERSION = 1

# Collection names double as on-disk table keys
ENTITIES = "entities"
RELATIONSHIPS = "relationships"
EVENTS = "events"
PARTICIPATIONS = "eventParticipants"
CAUSAL_LINKS = "eventCausality"
ROUTES = "travelDistances"

COLLECTIONS = (ENTITIES, RELATIONSHIPS, EVENTS, PARTICIPATIONS, CAUSAL_LINKS, ROUTES)

# --- Time ---

DAYS_PER_YEAR = 365

# Travel route durations are stored in these units; converted to years
UNIT_TO_YEARS: dict[str, float] = {
    "hours": 1.0 / (24 * DAYS_PER_YEAR),
    "days": 1.0 / DAYS_PER_YEAR,
    "weeks": 7.0 / DAYS_PER_YEAR,
    "months": 1.0 / 12,
    "years": 1.0,
}

# --- Travel ---

# Map units per year for the coordinate model (roughly a walking pace
# on a map whose unit is a day's walk).
DEFAULT_COORDINATE_RATE = float(DAYS_PER_YEAR)

# Two events whose start dates differ by at most this many years are
# considered simultaneous by the location-conflict rule.
SIMULTANEITY_WINDOW = 0

# --- Family tree ---

PARENT_SUBTYPES = frozenset({"parent", "mother", "father"})
CHILD_SUBTYPES = frozenset({"child", "son", "daughter"})
SIBLING_SUBTYPES = frozenset({"sibling", "brother", "sister"})
SPOUSE_SUBTYPES = frozenset({"spouse", "husband", "wife", "partner", "married"})

# Relationship types that are family links on their own (subtype ignored)
FAMILY_LINK_TYPES = frozenset({"parent", "child", "sibling", "spouse"})

# --- CLI ---

DEFAULT_LIST_LIMIT = 50

# --- Continuity ---

# Rule names in report order
CONTINUITY_RULES = (
    "posthumous_use",
    "pre_birth_use",
    "location_conflict",
    "impossible_travel",
    "family_cycle",
    "causal_cycle",
    "temporal_contradiction",
    "dangling_reference",
)
