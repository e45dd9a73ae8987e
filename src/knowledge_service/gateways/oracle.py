"""
Decision oracle for ambiguous deduplication merges.

The oracle sees a candidate memory next to the most similar existing ones and
answers create, update (which item) or skip. ``AnthropicDecisionOracle`` asks
an LLM over the Messages API; anything that goes wrong surfaces as
``DependencyFailure`` or ``UnparsableVerdictError`` and the arbiter falls
back to creating.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable

import httpx

from ..errors import DependencyFailure
from ..models.decisions import CreateVerdict, DecisionRequest, SkipVerdict, UpdateVerdict, parse_verdict

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You decide whether a new memory should UPDATE an existing one, CREATE a new entry, or be SKIPPED.

All memories belong to ONE owner. Different names (nicknames, full names, aliases) and first-person
statements ("I am", "my") may all refer to that same owner. Treat corrections of earlier statements
about the owner ("I'm 24" -> "I'm 27", "I like X" -> "I prefer Y") as updates.

Rules:
1. update: the new memory corrects or refines an existing one about the same subject. Name its id.
2. create: the new memory is about a different person or an unrelated topic.
3. skip: the new memory says essentially the same thing as an existing one. Name its id if you can.

When in doubt about identity for personal information, prefer update over create.

Respond with ONLY a JSON object:
{"action": "create" | "update" | "skip", "target_id": "<existing id or null>",
 "confidence": <0.0-1.0>, "reasoning": "<one sentence>"}"""


def build_decision_prompt(request: DecisionRequest) -> str:
    owner = request.owner_context
    lines = [
        "OWNER CONTEXT:",
        f"- Owner ID: {owner.owner_id}",
        f"- Known name: {owner.display_name or 'Unknown'}",
        "- All memories below belong to this same owner",
        "",
        "NEW MEMORY:",
        f"Content: {request.candidate.content}",
        f"Summary: {request.candidate.summary or 'No summary'}",
        f"Tags: {', '.join(request.candidate.tags) or 'No tags'}",
        "",
        "EXISTING SIMILAR MEMORIES:",
    ]
    for index, memory in enumerate(request.existing_items, start=1):
        lines += [
            f"{index}. ID: {memory.id}",
            f"Content: {memory.content}",
            f"Summary: {memory.summary or 'No summary'}",
            f"Tags: {', '.join(memory.tags) or 'No tags'}",
            f"Created: {memory.created_at.isoformat()}",
            "---",
        ]
    lines += ["", "Should the new memory UPDATE an existing one, CREATE a new entry, or be SKIPPED?"]
    return "\n".join(lines)


@runtime_checkable
class DecisionOracle(Protocol):
    """Protocol for pluggable merge-decision providers."""

    async def resolve(self, request: DecisionRequest) -> CreateVerdict | UpdateVerdict | SkipVerdict:
        """Return a typed verdict for the candidate in ``request``."""


class AnthropicDecisionOracle:
    def __init__(
        self,
        api_key: str | None,
        model: str,
        base_url: str = "https://api.anthropic.com",
        timeout_ms: int = 8000,
        max_tokens: int = 1024,
        temperature: float = 0.1,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._model = model
        self._url = f"{base_url.rstrip('/')}/v1/messages"
        self._timeout_ms = timeout_ms
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._client = client

    async def _post(self, payload: dict, headers: dict) -> httpx.Response:
        if self._client is not None:
            return await self._client.post(self._url, json=payload, headers=headers)
        async with httpx.AsyncClient(timeout=self._timeout_ms / 1000.0) as client:
            return await client.post(self._url, json=payload, headers=headers)

    async def resolve(self, request: DecisionRequest) -> CreateVerdict | UpdateVerdict | SkipVerdict:
        payload = {
            "model": self._model,
            "max_tokens": self._max_tokens,
            "temperature": self._temperature,
            "system": SYSTEM_PROMPT,
            "messages": [{"role": "user", "content": build_decision_prompt(request)}],
        }
        headers = {"Content-Type": "application/json", "anthropic-version": "2023-06-01"}
        # Add API key header only if provided (proxy might not need it)
        if self._api_key:
            headers["x-api-key"] = self._api_key

        try:
            response = await asyncio.wait_for(self._post(payload, headers), timeout=self._timeout_ms / 1000.0)
            response.raise_for_status()
            data = response.json()
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise DependencyFailure("decision oracle", f"timeout after {self._timeout_ms}ms") from e
        except httpx.HTTPStatusError as e:
            raise DependencyFailure("decision oracle", f"HTTP {e.response.status_code}") from e
        except (httpx.HTTPError, ValueError) as e:
            raise DependencyFailure("decision oracle", type(e).__name__) from e

        text_block = next((b for b in data.get("content", []) if b.get("type") == "text"), None)
        if not text_block or not text_block.get("text", "").strip():
            raise DependencyFailure("decision oracle", "empty response")

        verdict = parse_verdict(text_block["text"])
        logger.debug(f"Oracle verdict: {verdict.action} (confidence {verdict.confidence:.2f})")
        return verdict
