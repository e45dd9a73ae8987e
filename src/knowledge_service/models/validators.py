"""Shared Pydantic types and validators for reuse across models.

Centralises tag normalisation, range-clamped floats, identifier
constraints, and Literal enums so every model speaks the same language.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone
from typing import Annotated, Any, Literal

from dateutil.parser import isoparse
from pydantic import AfterValidator, BeforeValidator, Field

# ---------------------------------------------------------------------------
# Tag normalisation
# ---------------------------------------------------------------------------

_PUNCTUATION_RE = re.compile(r"[^\w\s-]", re.UNICODE)
_WHITESPACE_RE = re.compile(r"\s+")


def normalize_tag(raw: Any) -> str:
    """Lowercase, strip punctuation and collapse inner whitespace to ``-``.

    * ``"  Work! "`` → ``"work"``
    * ``"Project Manager"`` → ``"project-manager"``
    """
    if raw is None:
        return ""
    tag = _PUNCTUATION_RE.sub("", str(raw).strip().lower())
    tag = _WHITESPACE_RE.sub("-", tag.strip())
    return tag.strip("-_")


def normalize_tags(v: Any) -> list[str]:
    """Accept ``str | list | None`` and return a clean, deduplicated ``list[str]``.

    * ``"a, B, bb"`` → ``["bb"]`` (single characters are dropped)
    * ``["Work", "work!", None]`` → ``["work"]``
    * ``None`` → ``[]``
    """
    if v is None:
        return []
    if isinstance(v, str):
        items: list[Any] = v.split(",")
    elif isinstance(v, (list, tuple, set, frozenset)):
        items = list(v)
    else:
        return []

    seen: set[str] = set()
    result: list[str] = []
    for item in items:
        tag = normalize_tag(item)
        if len(tag) > 1 and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


Tags = Annotated[list[str], BeforeValidator(normalize_tags)]
"""Flexible tag input: accepts str, list, or None; always outputs normalized list[str]."""


# ---------------------------------------------------------------------------
# Timestamps
# ---------------------------------------------------------------------------


def parse_datetime(v: Any) -> Any:
    """Parse ISO-8601 strings (``2025-01-31``, ``2025-01-31T09:00Z``) with dateutil."""
    if isinstance(v, str):
        return isoparse(v.strip())
    return v


def ensure_utc(v: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)


UTCDateTime = Annotated[datetime, BeforeValidator(parse_datetime), AfterValidator(ensure_utc)]
"""Datetime normalised to an aware UTC value."""


# ---------------------------------------------------------------------------
# Numeric types
# ---------------------------------------------------------------------------

UnitFloat = Annotated[float, Field(ge=0.0, le=1.0)]
"""Float clamped to [0.0, 1.0] for scores, thresholds, confidences."""

NonNegativeInt = Annotated[int, Field(ge=0)]

PositiveInt = Annotated[int, Field(ge=1)]


# ---------------------------------------------------------------------------
# String constraints
# ---------------------------------------------------------------------------

ItemId = Annotated[str, Field(min_length=1)]
"""Non-empty item identifier."""


# ---------------------------------------------------------------------------
# Literal enums
# ---------------------------------------------------------------------------

RecurrenceType = Literal["none", "daily", "weekly", "monthly", "yearly"]
SearchMethod = Literal["semantic", "text", "tags"]
ItemKind = Literal["reminder", "memory"]
SmartAction = Literal["created", "updated", "skipped"]
TransitionAction = Literal["completed", "rescheduled", "ended"]

ALL_SEARCH_METHODS: tuple[SearchMethod, ...] = ("semantic", "text", "tags")


def parse_search_methods(v: Any) -> Any:
    """Accept ``"text,tags"`` as well as a list; ``None`` means every method."""
    if v is None:
        return ALL_SEARCH_METHODS
    if isinstance(v, str):
        return tuple(part.strip().lower() for part in v.split(",") if part.strip())
    return v


SearchMethods = Annotated[tuple[SearchMethod, ...], BeforeValidator(parse_search_methods), Field(min_length=1)]
