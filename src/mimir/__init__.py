"""Mimir: durable, queryable fact memory for assistants."""

__version__ = "0.1.0"
