"""Data models for the memory system."""

from dataclasses import asdict, dataclass, field
from typing import Any

SCOPES = ("global", "project", "conversation")
TIERS = ("working", "long-term")
SOURCE_TYPES = ("manual", "inferred", "user_said", "tool_output")
RELATION_TYPES = ("related_to", "part_of", "decided_by", "owned_by", "replaced_by")

SESSION_CATEGORY = "session"


def clamp_confidence(value: float) -> float:
    """Force a confidence score into [0, 1]."""
    return min(1.0, max(0.0, float(value)))


@dataclass(frozen=True)
class Fact:
    """A single unit of knowledge, identified by ``(category, key)``.

    Attributes:
        category: Grouping such as 'person', 'project' or 'task'.
        key: Stable dot-separated key within the category (e.g. 'cory.name').
        value: The fact content.
        id: Database ID, None for facts not yet stored.
        source: Free-text provenance, may carry a ``[project:<slug>]`` tag.
        confidence: Score in [0, 1].
        scope: One of SCOPES.
        tier: 'working' (TTL-bound) or 'long-term'.
        expires_at: ISO timestamp after which a working fact is expired.
        last_verified: ISO timestamp of the last extraction that confirmed it.
        source_type: One of SOURCE_TYPES.
        created: ISO timestamp when created.
        updated: ISO timestamp when the value last changed.
    """

    category: str
    key: str
    value: str
    id: int | None = None
    source: str | None = None
    confidence: float = 1.0
    scope: str = "global"
    tier: str = "long-term"
    expires_at: str | None = None
    last_verified: str | None = None
    source_type: str = "manual"
    created: str | None = None
    updated: str | None = None

    @property
    def ref(self) -> str:
        """The ``category/key`` reference used by link and graph."""
        return f"{self.category}/{self.key}"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Relation:
    """A typed, directed edge between two stored facts."""

    source_id: int
    target_id: int
    relation_type: str
    id: int | None = None
    created: str | None = None


@dataclass(frozen=True)
class GraphEdge:
    """One hop from a root fact, seen from the root's side."""

    direction: str  # 'outgoing' or 'incoming'
    relation_type: str
    fact: Fact


@dataclass
class FactGraph:
    """A fact and its one-hop neighbourhood."""

    root: Fact
    edges: list[GraphEdge] = field(default_factory=list)


@dataclass(frozen=True)
class ExtractedFact:
    """A validated fact candidate produced by extraction, not yet stored."""

    category: str
    key: str
    value: str
    scope: str = "global"
    tier: str = "long-term"
    source_type: str = "inferred"
    confidence: float = 0.8
    ttl: str | None = None


@dataclass
class SessionSummary:
    """What a session decided, left open, assigned and talked about."""

    decisions: list[str] = field(default_factory=list)
    open_questions: list[str] = field(default_factory=list)
    action_items: list[str] = field(default_factory=list)
    topics: list[str] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not (self.decisions or self.open_questions or self.action_items or self.topics)

    def to_dict(self) -> dict[str, list[str]]:
        return asdict(self)


@dataclass
class ExtractionResult:
    """Everything one extraction run produced for a piece of text."""

    facts: list[ExtractedFact] = field(default_factory=list)
    session_summary: SessionSummary = field(default_factory=SessionSummary)
    engine: str = ""
    model: str = ""
    chunks: int = 0

    def is_empty(self) -> bool:
        return not self.facts and self.session_summary.is_empty()


@dataclass
class MergeCounts:
    """Outcome counters for merging a candidate set into the store."""

    inserted: int = 0
    updated: int = 0
    skipped: int = 0


@dataclass(frozen=True)
class ExtractionLogEntry:
    """A recorded extraction attempt against a source file."""

    file_path: str
    content_hash: str
    engine: str
    model: str
    status: str  # 'ok', 'empty' or 'error'
    facts: int = 0
    inserted: int = 0
    updated: int = 0
    skipped: int = 0
    duration_ms: int = 0
    error: str | None = None
    id: int | None = None
    created: str | None = None
