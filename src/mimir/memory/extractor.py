"""Fact extraction from free text using an LLM."""

import json
import logging
import math
import re
from typing import Any

from ..errors import GeneratorPayloadError
from .llm_client import LLMClient
from .models import SCOPES, SOURCE_TYPES, TIERS, ExtractedFact, ExtractionResult, SessionSummary
from .ttl import is_valid_duration

logger = logging.getLogger(__name__)

MAX_CHUNK_WORDS = 10_000
DEFAULT_CONFIDENCE = 0.8
MAX_PARSE_OFFSETS = 32

EXTRACTABLE_CATEGORIES = (
    "person",
    "project",
    "preference",
    "decision",
    "lesson",
    "environment",
    "tool",
    "task",
)

SUMMARY_FIELDS = ("decisions", "open_questions", "action_items", "topics")

EXTRACTION_PROMPT = """Extract structured factual memory from the following text.

Return ONLY a JSON object with this shape:
{{
  "facts": [
    {{"category": "...", "key": "...", "value": "...", "scope": "...", "tier": "...",
      "source_type": "...", "confidence": 0.0, "ttl": null}}
  ],
  "session_summary": {{
    "decisions": [], "open_questions": [], "action_items": [], "topics": []
  }}
}}

Rules:
- category must be one of: {categories}.
- scope must be one of: {scopes}.
- tier must be one of: {tiers}. Use "working" only for short-lived state.
- source_type must be one of: {source_types}.
- confidence is a number between 0 and 1.
- ttl must be null or a compact duration string like 24h, 7d, 30m (working tier only).
- Use stable dot-separated keys (e.g., cory.son.name).
- Values are short, self-contained statements.
- If there is nothing worth remembering, return {{"facts": [], "session_summary": {{}}}}.
- Do not include markdown fences or any text outside the JSON object.

Text:
"""

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```", re.IGNORECASE)


def build_prompt(content: str) -> str:
    """Build the fixed extraction instructions followed by the text."""
    header = EXTRACTION_PROMPT.format(
        categories=", ".join(EXTRACTABLE_CATEGORIES),
        scopes=", ".join(SCOPES),
        tiers=", ".join(TIERS),
        source_types=", ".join(SOURCE_TYPES),
    )
    return header + content


def chunk_words(content: str, max_words: int = MAX_CHUNK_WORDS) -> list[str]:
    """Split text into segments of at most ``max_words`` words.

    Text under the cap comes back unchanged as a single chunk; blank text
    yields no chunks.
    """
    words = content.split()
    if not words:
        return []
    if len(words) <= max_words:
        return [content]
    return [" ".join(words[i:i + max_words]) for i in range(0, len(words), max_words)]


def _try_json(text: str) -> tuple[bool, Any]:
    try:
        return True, json.loads(text)
    except ValueError:
        return False, None


def parse_json_payload(text: str) -> Any:
    """Find the most plausible JSON value in an LLM response.

    Tries, in order: the whole text, the first fenced code block, then
    substrings between candidate opening (``{``/``[``) and closing
    (``}``/``]``) offsets. Among the substrings, an object with a
    ``facts`` key wins outright; otherwise the longest one that parses.

    Raises:
        GeneratorPayloadError: If no candidate parses.
    """
    stripped = text.strip()
    ok, value = _try_json(stripped)
    if ok:
        return value

    fence = _FENCE_RE.search(stripped)
    if fence:
        ok, value = _try_json(fence.group(1))
        if ok:
            return value

    starts = [i for i, ch in enumerate(stripped) if ch in "{["][:MAX_PARSE_OFFSETS]
    ends = [i for i, ch in enumerate(stripped) if ch in "}]"][::-1][:MAX_PARSE_OFFSETS]
    best: tuple[int, Any] | None = None
    for start in starts:
        for end in ends:
            if end <= start:
                break
            ok, value = _try_json(stripped[start:end + 1])
            if not ok:
                continue
            if isinstance(value, dict) and "facts" in value:
                return value
            length = end + 1 - start
            if best is None or length > best[0]:
                best = (length, value)
            # Later ends for this start are only shorter.
            break

    if best is not None:
        return best[1]
    raise GeneratorPayloadError("Failed to parse model response as JSON")


def coerce_confidence(value: Any) -> float:
    """Turn whatever the model said into a confidence in [0, 1]."""
    if isinstance(value, bool) or value is None:
        return DEFAULT_CONFIDENCE
    try:
        number = float(value)
    except (TypeError, ValueError):
        return DEFAULT_CONFIDENCE
    if math.isnan(number) or math.isinf(number):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, number))


def _clean_string(value: Any) -> str | None:
    if not isinstance(value, str) or not value.strip():
        return None
    return value.strip()


def normalize_fact(item: Any) -> ExtractedFact | None:
    """Validate one raw candidate, returning None if it must be dropped."""
    if not isinstance(item, dict):
        return None

    category = _clean_string(item.get("category"))
    key = _clean_string(item.get("key"))
    value = _clean_string(item.get("value"))
    if category is None or key is None or value is None:
        return None
    category = category.lower()
    if category not in EXTRACTABLE_CATEGORIES:
        return None

    scope = item.get("scope") or "global"
    tier = item.get("tier") or "long-term"
    source_type = item.get("source_type") or "inferred"
    if scope not in SCOPES or tier not in TIERS or source_type not in SOURCE_TYPES:
        return None

    ttl = item.get("ttl")
    if ttl is not None:
        ttl = _clean_string(ttl)
        if ttl is None or not is_valid_duration(ttl):
            return None
    if tier != "working":
        ttl = None

    return ExtractedFact(
        category=category,
        key=key,
        value=value,
        scope=scope,
        tier=tier,
        source_type=source_type,
        confidence=coerce_confidence(item.get("confidence")),
        ttl=ttl,
    )


def normalize_summary(raw: Any) -> SessionSummary:
    """Keep only non-empty string entries of the four summary lists."""
    summary = SessionSummary()
    if not isinstance(raw, dict):
        return summary
    for name in SUMMARY_FIELDS:
        items = raw.get(name)
        if isinstance(items, list):
            setattr(summary, name, [s.strip() for s in items if isinstance(s, str) and s.strip()])
    return summary


def dedupe_facts(facts: list[ExtractedFact]) -> list[ExtractedFact]:
    """Collapse candidates sharing (category, key); highest confidence wins."""
    best: dict[tuple[str, str], ExtractedFact] = {}
    for fact in facts:
        ident = (fact.category, fact.key)
        current = best.get(ident)
        if current is None or fact.confidence > current.confidence:
            best[ident] = fact
    return list(best.values())


def merge_summaries(summaries: list[SessionSummary]) -> SessionSummary:
    """Concatenate summary lists across chunks, dropping repeats."""
    merged = SessionSummary()
    for name in SUMMARY_FIELDS:
        seen: list[str] = []
        for summary in summaries:
            for entry in getattr(summary, name):
                if entry not in seen:
                    seen.append(entry)
        setattr(merged, name, seen)
    return merged


def parse_response(content: str) -> tuple[list[ExtractedFact], SessionSummary]:
    """Parse one raw model response into candidates and a summary.

    A bare JSON array is accepted as a list of facts with no summary.

    Raises:
        GeneratorPayloadError: If no JSON can be recovered, or it has the wrong shape.
    """
    payload = parse_json_payload(content)

    if isinstance(payload, list):
        raw_facts, raw_summary = payload, None
    elif isinstance(payload, dict):
        raw_facts = payload.get("facts", [])
        raw_summary = payload.get("session_summary")
        if not isinstance(raw_facts, list):
            raise GeneratorPayloadError("Model response 'facts' is not a list")
    else:
        raise GeneratorPayloadError("Model response is not a JSON object or array")

    facts = []
    for item in raw_facts:
        fact = normalize_fact(item)
        if fact is None:
            logger.debug("Skipping invalid fact candidate: %r", item)
            continue
        facts.append(fact)

    return facts, normalize_summary(raw_summary)


class FactExtractor:
    """Extracts fact candidates from text using an LLM."""

    def __init__(self, llm_client: LLMClient, max_chunk_words: int = MAX_CHUNK_WORDS) -> None:
        """Initialize the extractor.

        Args:
            llm_client: The client used for one completion per chunk.
            max_chunk_words: Word cap per chunk sent to the model.
        """
        self.client = llm_client
        self.max_chunk_words = max_chunk_words

    @property
    def engine(self) -> str:
        return self.client.engine

    @property
    def model(self) -> str:
        return self.client.model

    async def extract(self, content: str) -> ExtractionResult:
        """Extract validated, deduplicated fact candidates from text.

        Collaborator failures (unreachable service, bad status, timeouts,
        unparseable payloads) propagate as ``GenerationError`` subclasses.
        """
        chunks = chunk_words(content, self.max_chunk_words)
        result = ExtractionResult(engine=self.engine, model=self.model, chunks=len(chunks))
        if not chunks:
            return result

        facts: list[ExtractedFact] = []
        summaries: list[SessionSummary] = []
        for index, chunk in enumerate(chunks, start=1):
            logger.debug("Extracting chunk %d/%d (%s)", index, len(chunks), self.engine)
            response = await self.client.complete(build_prompt(chunk))
            chunk_facts, chunk_summary = parse_response(response)
            facts.extend(chunk_facts)
            summaries.append(chunk_summary)

        result.facts = dedupe_facts(facts)
        result.session_summary = merge_summaries(summaries)
        return result
