"""Rendering facts for terminals and prompts."""

import os
import sys
from datetime import datetime
from typing import TextIO

from .models import ExtractedFact, Fact
from .ttl import expires_label

CATEGORY_TITLES = {
    "person": "People",
    "project": "Projects",
    "preference": "Preferences",
    "decision": "Decisions",
    "lesson": "Lessons",
    "environment": "Environment",
    "tool": "Tools",
}

_ANSI = {
    "bold": "\033[1m",
    "dim": "\033[2m",
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
}
_RESET = "\033[0m"


def title_for_category(category: str) -> str:
    """Heading for a category, e.g. 'person' -> 'People'."""
    if category in CATEGORY_TITLES:
        return CATEGORY_TITLES[category]
    return category[:1].upper() + category[1:]


def facts_to_markdown(facts: list[Fact]) -> str:
    """Group facts by category under a ``# Known Facts`` heading.

    Categories are sorted by name; facts keep their given order within a
    category. The result always ends with a single newline.
    """
    grouped: dict[str, list[Fact]] = {}
    for fact in facts:
        grouped.setdefault(fact.category, []).append(fact)

    lines = ["# Known Facts", ""]
    for category in sorted(grouped):
        lines.append(f"## {title_for_category(category)}")
        for fact in grouped[category]:
            lines.append(f"- **{fact.key}**: {fact.value}")
        lines.append("")

    return "\n".join(lines).strip() + "\n"


def use_color(stream: TextIO | None = None) -> bool:
    """Color only when writing to a terminal and NO_COLOR is unset."""
    stream = stream or sys.stdout
    if os.environ.get("NO_COLOR"):
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def paint(text: str, style: str, stream: TextIO | None = None) -> str:
    if not use_color(stream):
        return text
    return f"{_ANSI[style]}{text}{_RESET}"


def format_fact(fact: Fact, now: datetime) -> str:
    """One-line rendering used by get, search and list."""
    meta = (
        f" confidence={fact.confidence:.2f} scope={fact.scope} tier={fact.tier}"
        f" source_type={fact.source_type} ttl={expires_label(fact.expires_at, now)}"
    )
    source = f" source={fact.source}" if fact.source else ""
    return f"{paint(fact.ref, 'bold')} = {fact.value}{paint(f' [{meta}{source}]', 'dim')}"


def format_working_fact(fact: Fact, now: datetime) -> str:
    return f"{paint(fact.ref, 'bold')} = {fact.value} {paint(f'[{expires_label(fact.expires_at, now)}]', 'dim')}"


def format_candidate(fact: ExtractedFact) -> str:
    """One-line rendering of an extraction candidate (dry-run output)."""
    return (
        f"{fact.category}/{fact.key} = {fact.value} [scope={fact.scope} tier={fact.tier}"
        f" source_type={fact.source_type} confidence={fact.confidence:.2f}"
        f" ttl={fact.ttl or 'none'}]"
    )
