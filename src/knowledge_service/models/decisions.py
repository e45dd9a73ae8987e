"""Deduplication verdict models.

The decision oracle returns one of three tagged verdicts. Parsing raw oracle
output goes through ``parse_verdict`` so every adapter shares the same
strictness: anything that does not validate is an unparsable verdict.
"""

from __future__ import annotations

import json
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from .knowledge import Memory, MemoryCreate, OwnerContext
from .validators import ItemId, UnitFloat


class DecisionRequest(BaseModel):
    """Everything the oracle needs to decide between create, update and skip."""

    candidate: MemoryCreate
    existing_items: list[Memory]
    owner_context: OwnerContext


class CreateVerdict(BaseModel):
    action: Literal["create"] = "create"
    confidence: UnitFloat = 0.5
    reasoning: str = ""


class UpdateVerdict(BaseModel):
    action: Literal["update"] = "update"
    target_id: ItemId
    confidence: UnitFloat = 0.5
    reasoning: str = ""


class SkipVerdict(BaseModel):
    action: Literal["skip"] = "skip"
    # Falls back to the most similar existing item when omitted
    target_id: str | None = None
    confidence: UnitFloat = 0.5
    reasoning: str = ""


Verdict = Annotated[CreateVerdict | UpdateVerdict | SkipVerdict, Field(discriminator="action")]

_verdict_adapter: TypeAdapter[Verdict] = TypeAdapter(Verdict)


class UnparsableVerdictError(ValueError):
    """Raised when oracle output cannot be turned into a verdict."""


def _strip_fences(text: str) -> str:
    text = text.strip()
    if "```" in text:
        text = text.split("```")[1]
        if text.startswith("json"):
            text = text[4:]
    return text.strip()


def parse_verdict(raw: str | dict[str, Any]) -> CreateVerdict | UpdateVerdict | SkipVerdict:
    """Parse oracle output (JSON text or dict) into a typed verdict.

    Accepts the legacy ``targetMemoryId`` / ``target_memory_id`` keys.

    Raises:
        UnparsableVerdictError: If the payload is not valid JSON or fails validation
    """
    if isinstance(raw, str):
        try:
            data = json.loads(_strip_fences(raw))
        except json.JSONDecodeError as e:
            raise UnparsableVerdictError(f"verdict is not valid JSON: {e}") from e
    else:
        data = raw

    if not isinstance(data, dict):
        raise UnparsableVerdictError(f"verdict must be an object, got {type(data).__name__}")

    data = dict(data)
    for legacy in ("targetMemoryId", "target_memory_id", "targetId"):
        if legacy in data and "target_id" not in data:
            data["target_id"] = data.pop(legacy)
    if isinstance(data.get("action"), str):
        data["action"] = data["action"].strip().lower()
    if data.get("target_id") is None:
        data.pop("target_id", None)

    try:
        return _verdict_adapter.validate_python(data)
    except PydanticValidationError as e:
        raise UnparsableVerdictError(f"verdict failed validation: {e.error_count()} error(s)") from e
