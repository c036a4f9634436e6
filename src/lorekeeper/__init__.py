"""Lorekeeper - worldbuilding knowledge graph with continuity checks."""

__version__ = "0.1.0"
