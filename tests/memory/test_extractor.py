"""Tests for FactExtractor and response parsing."""

import json
from unittest.mock import AsyncMock, Mock

import pytest

from mimir.errors import GeneratorPayloadError, GeneratorUnreachableError
from mimir.memory import ExtractedFact, FactExtractor
from mimir.memory.extractor import (
    EXTRACTABLE_CATEGORIES,
    build_prompt,
    chunk_words,
    coerce_confidence,
    dedupe_facts,
    normalize_fact,
    parse_json_payload,
    parse_response,
)


def make_client(*responses: str) -> Mock:
    """Create a mock LLM client returning the given responses in order."""
    client = Mock()
    client.engine = "ollama"
    client.model = "qwen3:8b"
    client.complete = AsyncMock(side_effect=list(responses))
    return client


def fact_payload(*facts: dict, summary: dict | None = None) -> str:
    return json.dumps({"facts": list(facts), "session_summary": summary or {}})


class TestParseJsonPayload:
    """Tests for recovering JSON from model output."""

    def test_plain_json(self):
        """Clean JSON parses directly."""
        assert parse_json_payload('{"facts": []}') == {"facts": []}

    def test_fenced_block(self):
        """A fenced json block is extracted from surrounding prose."""
        text = 'Here you go:\n```json\n{"facts": [1]}\n```\nDone.'
        assert parse_json_payload(text) == {"facts": [1]}

    def test_fence_without_language(self):
        """Fences without a language tag also work."""
        assert parse_json_payload("```\n[1, 2]\n```") == [1, 2]

    def test_prose_around_object(self):
        """An object embedded in prose is recovered."""
        text = 'Sure! {"facts": [], "session_summary": {}} Hope that helps.'
        assert parse_json_payload(text) == {"facts": [], "session_summary": {}}

    def test_trailing_brace_in_prose(self):
        """A stray closing brace after the object is ignored."""
        text = '{"a": 1} and then some text with a stray } brace'
        assert parse_json_payload(text) == {"a": 1}

    def test_bracketed_prose_before_payload(self):
        """A bracketed aside before the payload does not hide it."""
        text = (
            "Found [2] facts:\n"
            + fact_payload(
                {"category": "person", "key": "cory.name", "value": "Cory"},
                {"category": "tool", "key": "editor", "value": "vim"},
            )
        )
        assert len(parse_json_payload(text)["facts"]) == 2

    def test_longest_candidate_wins_without_payload_shape(self):
        """Without a facts object the longest parseable value wins."""
        assert parse_json_payload("see [1] or rather [1, 2, 3, 4]") == [1, 2, 3, 4]

    def test_unrecoverable(self):
        """Text with no JSON raises GeneratorPayloadError."""
        with pytest.raises(GeneratorPayloadError):
            parse_json_payload("I could not find any facts.")

    def test_broken_json(self):
        """Truncated JSON raises GeneratorPayloadError."""
        with pytest.raises(GeneratorPayloadError):
            parse_json_payload('{"facts": [')


class TestNormalizeFact:
    """Tests for candidate validation."""

    def test_valid_candidate_defaults(self):
        """Missing optional fields get extraction defaults."""
        fact = normalize_fact({"category": "Person", "key": "cory.name", "value": " Cory "})
        assert fact == ExtractedFact(
            category="person",
            key="cory.name",
            value="Cory",
            scope="global",
            tier="long-term",
            source_type="inferred",
            confidence=0.8,
            ttl=None,
        )

    @pytest.mark.parametrize(
        "item",
        [
            None,
            ["person", "k", "v"],
            {"category": "person", "key": "", "value": "v"},
            {"category": "person", "key": "k", "value": "  "},
            {"category": "weather", "key": "k", "value": "v"},
            {"category": "person", "key": "k", "value": "v", "scope": "team"},
            {"category": "person", "key": "k", "value": "v", "tier": "short"},
            {"category": "person", "key": "k", "value": "v", "source_type": "dream"},
            {"category": "task", "key": "k", "value": "v", "tier": "working", "ttl": "soon"},
            {"category": "task", "key": "k", "value": "v", "tier": "working", "ttl": "9999999d"},
        ],
    )
    def test_invalid_candidates_dropped(self, item):
        """Candidates failing any check are dropped."""
        assert normalize_fact(item) is None

    def test_ttl_kept_for_working_tier(self):
        """Working-tier candidates keep a valid ttl."""
        fact = normalize_fact(
            {"category": "task", "key": "k", "value": "v", "tier": "working", "ttl": "24h"}
        )
        assert fact.ttl == "24h"

    def test_ttl_cleared_for_long_term(self):
        """ttl is cleared unless the tier is working."""
        fact = normalize_fact({"category": "task", "key": "k", "value": "v", "ttl": "24h"})
        assert fact.ttl is None

    def test_every_category_in_whitelist_accepted(self):
        """Every whitelisted category is accepted."""
        for category in EXTRACTABLE_CATEGORIES:
            assert normalize_fact({"category": category, "key": "k", "value": "v"}) is not None


class TestCoerceConfidence:
    @pytest.mark.parametrize(
        "value,expected",
        [(0.4, 0.4), ("0.7", 0.7), (7, 1.0), (-2, 0.0), ("high", 0.8), (None, 0.8), (True, 0.8)],
    )
    def test_coercion(self, value, expected):
        """Confidence is coerced, clamped or defaulted."""
        assert coerce_confidence(value) == expected


class TestDedupe:
    def test_highest_confidence_wins(self):
        """Duplicates keep the highest-confidence candidate."""
        low = ExtractedFact(category="person", key="k", value="a", confidence=0.5)
        high = ExtractedFact(category="person", key="k", value="b", confidence=0.9)
        other = ExtractedFact(category="tool", key="k", value="c")
        assert dedupe_facts([low, other, high]) == [high, other]

    def test_tie_keeps_first(self):
        """On equal confidence the first candidate is kept."""
        first = ExtractedFact(category="person", key="k", value="a")
        second = ExtractedFact(category="person", key="k", value="b")
        assert dedupe_facts([first, second]) == [first]


class TestChunkWords:
    def test_blank_text(self):
        """Blank text yields no chunks."""
        assert chunk_words("  \n ") == []

    def test_short_text_unchanged(self):
        """Text under the cap is returned as-is."""
        text = "line one\n\nline  two"
        assert chunk_words(text, max_words=10) == [text]

    def test_long_text_split(self):
        """Long text is split on word boundaries."""
        text = " ".join(f"w{i}" for i in range(25))
        chunks = chunk_words(text, max_words=10)
        assert len(chunks) == 3
        assert chunks[0].split() == [f"w{i}" for i in range(10)]
        assert chunks[2].split() == [f"w{i}" for i in range(20, 25)]


class TestParseResponse:
    def test_bracketed_prose_keeps_facts(self):
        """Leading bracketed prose does not lose the extracted facts."""
        payload = fact_payload(
            {"category": "person", "key": "cory.name", "value": "Cory"},
            {"category": "tool", "key": "editor", "value": "vim"},
        )
        facts, _ = parse_response(f"Found [2] facts:\n{payload}")
        assert [f.key for f in facts] == ["cory.name", "editor"]

    def test_bare_array(self):
        """A bare array is treated as the facts list."""
        facts, summary = parse_response('[{"category": "tool", "key": "k", "value": "v"}]')
        assert len(facts) == 1
        assert summary.is_empty()

    def test_summary_cleaned(self):
        """Summary lists keep only non-empty strings."""
        payload = fact_payload(
            summary={"decisions": ["Ship it", "", 3], "topics": "not a list"}
        )
        _, summary = parse_response(payload)
        assert summary.decisions == ["Ship it"]
        assert summary.topics == []

    def test_facts_not_a_list(self):
        """A non-list facts field is a payload error."""
        with pytest.raises(GeneratorPayloadError):
            parse_response('{"facts": "none"}')

    def test_scalar_payload(self):
        """A scalar payload is a payload error."""
        with pytest.raises(GeneratorPayloadError):
            parse_response("42")


class TestFactExtractorExtract:
    """Tests for the extract method."""

    def test_prompt_contains_text(self):
        """The prompt lists the categories and ends with the text."""
        prompt = build_prompt("Cory likes tea")
        assert prompt.endswith("Cory likes tea")
        assert "person, project, preference" in prompt

    @pytest.mark.asyncio
    async def test_blank_text_makes_no_calls(self):
        """Blank text never reaches the model."""
        client = make_client()
        result = await FactExtractor(client).extract("   ")
        assert result.is_empty()
        assert result.chunks == 0
        client.complete.assert_not_called()

    @pytest.mark.asyncio
    async def test_valid_extraction(self):
        """A valid response yields normalized facts and summary."""
        client = make_client(
            fact_payload(
                {"category": "person", "key": "cory.name", "value": "Cory", "confidence": 0.95},
                {"category": "weather", "key": "today", "value": "sunny"},
                summary={"decisions": ["Use SQLite"]},
            )
        )
        result = await FactExtractor(client).extract("Cory decided to use SQLite.")

        assert [f.key for f in result.facts] == ["cory.name"]
        assert result.facts[0].confidence == 0.95
        assert result.session_summary.decisions == ["Use SQLite"]
        assert result.engine == "ollama"
        assert result.model == "qwen3:8b"
        client.complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_chunks_are_merged_and_deduped(self):
        """Per-chunk results are merged and deduped."""
        client = make_client(
            fact_payload(
                {"category": "tool", "key": "editor", "value": "vim", "confidence": 0.6},
                summary={"topics": ["editors"]},
            ),
            fact_payload(
                {"category": "tool", "key": "editor", "value": "helix", "confidence": 0.9},
                summary={"topics": ["editors", "terminals"]},
            ),
        )
        text = " ".join(["word"] * 15)
        result = await FactExtractor(client, max_chunk_words=10).extract(text)

        assert result.chunks == 2
        assert [f.value for f in result.facts] == ["helix"]
        assert result.session_summary.topics == ["editors", "terminals"]
        assert client.complete.await_count == 2

    @pytest.mark.asyncio
    async def test_unparseable_response_raises(self):
        """Unparseable model output raises."""
        client = make_client("no json here")
        with pytest.raises(GeneratorPayloadError):
            await FactExtractor(client).extract("text")

    @pytest.mark.asyncio
    async def test_client_errors_propagate(self):
        """Client errors propagate unchanged."""
        client = make_client()
        client.complete = AsyncMock(side_effect=GeneratorUnreachableError("down"))
        with pytest.raises(GeneratorUnreachableError):
            await FactExtractor(client).extract("text")
