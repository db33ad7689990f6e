"""Input validation at the store's boundaries.

Two trust levels live here on purpose. Manual commands go through the strict
``parse_*`` functions, which raise :class:`UserError` on anything invalid.
Imported files are less trusted but also less precious: :func:`clean_import_items`
silently drops malformed entries and keeps the rest.
"""

import math
from datetime import datetime
from typing import Any

from ..clock import parse_date
from ..errors import UserError
from .models import RELATION_TYPES, SCOPES, SOURCE_TYPES, TIERS, Fact
from .ttl import ttl_to_expires_at


def parse_confidence(value: Any) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        number = math.nan
    if math.isnan(number) or number < 0 or number > 1:
        raise UserError("Confidence must be a number between 0 and 1")
    return number


def parse_limit(value: Any) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        number = 0
    if number <= 0:
        raise UserError("Limit must be a positive integer")
    return number


def parse_scope(value: str) -> str:
    if value not in SCOPES:
        raise UserError(f"Scope must be one of: {', '.join(SCOPES)}")
    return value


def parse_tier(value: str) -> str:
    if value not in TIERS:
        raise UserError(f"Tier must be one of: {', '.join(TIERS)}")
    return value


def parse_source_type(value: str) -> str:
    if value not in SOURCE_TYPES:
        raise UserError(f"Source type must be one of: {', '.join(SOURCE_TYPES)}")
    return value


def parse_relation_type(value: str) -> str:
    if value not in RELATION_TYPES:
        raise UserError(f"Relation type must be one of: {', '.join(RELATION_TYPES)}")
    return value


def parse_fact_ref(ref: str) -> tuple[str, str]:
    """Split a ``category/key`` reference.

    Only the first slash separates the two, so keys may contain slashes.

    Raises:
        UserError: If the slash is missing, leading or trailing.
    """
    text = str(ref).strip()
    slash = text.find("/")
    if slash <= 0 or slash == len(text) - 1:
        raise UserError(f"Invalid fact reference: {ref}. Expected category/key")
    return text[:slash], text[slash + 1:]


def project_tag(slug: str) -> str:
    return f"[project:{slug}]"


def with_project_tag(source: str | None, project: str | None) -> str | None:
    """Append a project tag to a source string, at most once."""
    if not project:
        return source
    tag = project_tag(project)
    base = source.strip() if source else ""
    if tag in base:
        return base
    return f"{base} {tag}" if base else tag


def _non_empty_string(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def clean_import_item(item: Any, now: datetime) -> Fact | None:
    """Validate one imported entry, returning None if it should be dropped."""
    if not isinstance(item, dict):
        return None

    category = item.get("category")
    key = item.get("key")
    value = item.get("value")
    if not (_non_empty_string(category) and _non_empty_string(key) and _non_empty_string(value)):
        return None

    confidence = item.get("confidence", 1.0)
    if isinstance(confidence, bool):
        return None
    try:
        confidence = parse_confidence(confidence)
    except UserError:
        return None

    scope = item.get("scope", "global")
    tier = item.get("tier", "long-term")
    source_type = item.get("source_type", "manual")
    if scope not in SCOPES or tier not in TIERS or source_type not in SOURCE_TYPES:
        return None

    ttl = item.get("ttl")
    expires_at = item.get("expires_at")
    try:
        if ttl is not None:
            expires_at = ttl_to_expires_at(str(ttl), now)
        elif expires_at is not None:
            expires_at = parse_date(str(expires_at))
    except UserError:
        return None

    source = item.get("source")
    return Fact(
        category=category.strip(),
        key=key.strip(),
        value=value.strip(),
        source=None if source is None else str(source),
        confidence=confidence,
        scope=scope,
        tier=tier,
        expires_at=expires_at,
        source_type=source_type,
    )


def clean_import_items(data: Any, now: datetime) -> list[Fact]:
    """Validate an import payload.

    Raises:
        UserError: If the payload is not a list or no entry survives.
    """
    if not isinstance(data, list):
        raise UserError("Import JSON must be an array of facts")

    clean = [fact for fact in (clean_import_item(item, now) for item in data) if fact]
    if not clean:
        raise UserError("No valid facts found in import file")
    return clean
