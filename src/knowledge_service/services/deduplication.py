"""
Deduplicating memory creation.

``smart_create`` searches for memories similar to a candidate and, when it
finds any, asks the decision oracle whether the candidate should update one
of them, be skipped, or become a new memory. Whenever the oracle cannot give
a usable answer the candidate is created: losing a duplicate is worse than
storing one.
"""

import logging

from ..config import DeduplicationSettings
from ..gateways.oracle import DecisionOracle
from ..models.decisions import DecisionRequest, SkipVerdict, UpdateVerdict
from ..models.knowledge import Memory, MemoryCreate, OwnerContext
from ..models.responses import BatchItemResult, SmartCreateResult
from ..models.validators import ALL_SEARCH_METHODS
from ..utils.similarity import fuzzy_similarity
from .memory_writer import MemoryWriter
from .search_engine import HybridSearchEngine

logger = logging.getLogger(__name__)


def build_probe(candidate: MemoryCreate, settings: DeduplicationSettings | None = None) -> str:
    """
    Lexical probe used to look for similar memories.

    The first ``probe_words`` words of at least ``probe_min_word_length``
    characters taken from the first ``probe_chars`` characters of content,
    followed by the summary and tags. Falls back to the content prefix when
    no word qualifies.
    """
    settings = settings or DeduplicationSettings()
    prefix = candidate.content[: settings.probe_chars]
    words = [w for w in prefix.split() if len(w) >= settings.probe_min_word_length][: settings.probe_words]

    parts = list(words)
    if candidate.summary:
        parts.append(candidate.summary)
    parts.extend(candidate.tags)
    return " ".join(parts) if parts else prefix


def most_similar(candidate: MemoryCreate, existing: list[Memory]) -> Memory:
    return max(existing, key=lambda memory: fuzzy_similarity(candidate.content, memory.content))


class DeduplicationArbiter:
    """Decides between create, update and skip for incoming memories."""

    def __init__(
        self,
        search_engine: HybridSearchEngine,
        writer: MemoryWriter,
        oracle: DecisionOracle | None = None,
        dedup_settings: DeduplicationSettings | None = None,
    ):
        self.search_engine = search_engine
        self.writer = writer
        self.oracle = oracle
        self.settings = dedup_settings or DeduplicationSettings()

    async def _create(self, candidate: MemoryCreate, owner: OwnerContext, reason: str, **extra) -> SmartCreateResult:
        memory = await self.writer.create(candidate, owner)
        return SmartCreateResult(action="created", item_id=memory.id, reason=reason, **extra)

    async def smart_create(self, candidate: MemoryCreate, owner: OwnerContext) -> SmartCreateResult:
        """
        Create, update or skip ``candidate`` depending on what already exists.

        Args:
            candidate: The memory to store
            owner: Owner scope; only this owner's memories are considered

        Returns:
            SmartCreateResult naming the action taken and the affected memory id
        """
        probe = build_probe(candidate, self.settings)
        found = await self.search_engine.find(
            "memory", probe, owner, limit=self.settings.candidate_limit, methods=ALL_SEARCH_METHODS
        )
        similar: list[Memory] = [m for m in found.combined if isinstance(m, Memory)]
        if not similar:
            return await self._create(candidate, owner, "No similar memories found")

        similar_ids = [m.id for m in similar]
        if self.oracle is None:
            return await self._create(
                candidate, owner, "Decision oracle not configured, defaulting to create", similar_ids=similar_ids
            )

        request = DecisionRequest(candidate=candidate, existing_items=similar, owner_context=owner)
        try:
            verdict = await self.oracle.resolve(request)
        except Exception as e:
            logger.warning(f"Decision oracle failed (non-fatal), defaulting to create: {e}")
            return await self._create(
                candidate,
                owner,
                f"Decision oracle failed, defaulting to create: {e}",
                confidence=0.5,
                similar_ids=similar_ids,
            )

        by_id = {m.id: m for m in similar}

        if isinstance(verdict, UpdateVerdict):
            target = by_id.get(verdict.target_id)
            if target is None:
                logger.warning(f"Oracle chose update target {verdict.target_id} outside the similar set")
                return await self._create(
                    candidate,
                    owner,
                    f"Update target {verdict.target_id} not among similar memories, defaulting to create",
                    confidence=verdict.confidence,
                    similar_ids=similar_ids,
                )
            await self.writer.merge(target, candidate, verdict.confidence)
            return SmartCreateResult(
                action="updated",
                item_id=target.id,
                reason=verdict.reasoning or "Merged into existing memory",
                confidence=verdict.confidence,
                similar_ids=similar_ids,
            )

        if isinstance(verdict, SkipVerdict):
            target = by_id.get(verdict.target_id) if verdict.target_id else None
            if target is None:
                target = most_similar(candidate, similar)
            return SmartCreateResult(
                action="skipped",
                item_id=target.id,
                reason=verdict.reasoning or "Equivalent memory already exists",
                confidence=verdict.confidence,
                similar_ids=similar_ids,
            )

        return await self._create(
            candidate,
            owner,
            verdict.reasoning or "Oracle chose to create a new memory",
            confidence=verdict.confidence,
            similar_ids=similar_ids,
        )

    async def smart_create_multiple(self, candidates: list[MemoryCreate], owner: OwnerContext) -> list[BatchItemResult]:
        """
        Smart-create candidates one at a time, in order.

        Later candidates see memories created by earlier ones. A candidate
        whose smart create raises is created directly; if that raises too the
        error is recorded on its result and the batch continues.
        """
        results: list[BatchItemResult] = []
        for index, candidate in enumerate(candidates):
            try:
                result = await self.smart_create(candidate, owner)
            except Exception as e:
                logger.error(f"Smart create failed for batch item {index}: {e}")
                try:
                    memory = await self.writer.create(candidate, owner)
                except Exception as create_error:
                    logger.error(f"Fallback create failed for batch item {index}: {create_error}")
                    results.append(BatchItemResult(index=index, success=False, error=str(create_error)))
                    continue
                result = SmartCreateResult(action="created", item_id=memory.id, reason=f"Fallback creation: {e}")
            results.append(BatchItemResult(index=index, success=True, result=result))
        return results
