"""Memory module for persistent fact storage."""

from .extractor import FactExtractor
from .graph import RelationGraph
from .manager import BatchOutcome, FileOutcome, MemoryManager
from .models import ExtractedFact, Fact, FactGraph, Relation, SessionSummary
from .store import MemoryStore, open_store

__all__ = [
    "BatchOutcome",
    "ExtractedFact",
    "Fact",
    "FactExtractor",
    "FactGraph",
    "FileOutcome",
    "MemoryManager",
    "MemoryStore",
    "Relation",
    "RelationGraph",
    "SessionSummary",
    "open_store",
]
