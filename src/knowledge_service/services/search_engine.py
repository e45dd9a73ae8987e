"""
Hybrid search over reminders and memories.

Three retrieval methods run concurrently against the same owner scope:

- semantic: nearest neighbours of the query embedding by cosine distance
- text: case-insensitive substring match on content or summary
- tags: overlap between stored tags and the query's normalised tokens

Each method fails independently into an empty bucket. The ``combined`` list
is the id-deduplicated union, ordered newest first.
"""

import asyncio
import logging
from typing import Awaitable, Iterable, TypeVar

from ..config import SearchSettings
from ..gateways.embedding import EmbeddingGateway
from ..models.knowledge import FindResults, KnowledgeItem, OwnerContext, SearchResult
from ..models.validators import ALL_SEARCH_METHODS, ItemKind, SearchMethod
from ..storage.base import KnowledgeStorage
from ..storage.query import ArrayOverlaps, Contains, Equals, Query
from ..utils.tags import extract_query_tags

logger = logging.getLogger(__name__)

R = TypeVar("R")

# Field that orders results newest-first for each kind
RECENCY_FIELD: dict[str, str] = {"reminder": "scheduled_for", "memory": "created_at"}


def merge_results(
    semantic: list[SearchResult],
    text: list[KnowledgeItem],
    tags: list[KnowledgeItem],
    limit: int,
    confidence_threshold: float,
) -> list[KnowledgeItem]:
    """Union the buckets by id and order the survivors by recency.

    Confident semantic hits are taken first, then text, then tags, then the
    remaining semantic hits. When the same id appears in several buckets the
    first copy wins.
    """
    confident = [r.item for r in semantic if r.similarity > confidence_threshold]
    tentative = [r.item for r in semantic if r.similarity <= confidence_threshold]

    seen: set[str] = set()
    merged: list[KnowledgeItem] = []
    for item in [*confident, *text, *tags, *tentative]:
        if item.id in seen:
            continue
        seen.add(item.id)
        merged.append(item)

    merged.sort(key=lambda item: item.recency(), reverse=True)
    return merged[:limit]


class HybridSearchEngine:
    """Runs semantic, text and tag retrieval for one owner and merges the results."""

    def __init__(
        self,
        storage: KnowledgeStorage,
        embedder: EmbeddingGateway,
        search_settings: SearchSettings | None = None,
    ):
        self.storage = storage
        self.embedder = embedder
        self.settings = search_settings or SearchSettings()

    def _scope(self, kind: ItemKind, owner: OwnerContext, include_completed: bool) -> Query:
        query = Query.for_owner(kind, owner)
        if kind == "reminder" and not include_completed:
            query = query.where(Equals("is_completed", False))
        return query

    async def _guard(self, method: str, coro: Awaitable[R], default: R) -> R:
        try:
            return await coro
        except Exception as e:
            logger.warning(f"{method} search failed (non-fatal): {e}", exc_info=True)
            return default

    async def _text(self, scope: Query, text: str, limit: int) -> list[KnowledgeItem]:
        query = (
            scope.where(Contains(("content", "summary"), text))
            .order_by(RECENCY_FIELD[scope.kind], descending=True)
            .limit(limit)
        )
        return await self.storage.find(query)

    async def _tags(self, scope: Query, text: str, limit: int) -> list[KnowledgeItem]:
        tokens = extract_query_tags(text, self.settings.min_token_length)
        if not tokens:
            return []
        query = (
            scope.where(ArrayOverlaps("tags", tokens))
            .order_by(RECENCY_FIELD[scope.kind], descending=True)
            .limit(limit)
        )
        return await self.storage.find(query)

    async def _semantic(self, scope: Query, text: str, limit: int) -> tuple[list[SearchResult], bool]:
        """Vector search; returns ``(results, degraded)``."""
        try:
            vector = await self.embedder.embed(text)
        except Exception as e:
            logger.warning(f"Query embedding failed (non-fatal): {e}")
            vector = []

        if vector:
            return await self.storage.nearest(scope.nearest(vector).limit(limit)), False

        logger.info("Semantic search degraded to text search (no query embedding)")
        placeholder = self.settings.fallback_similarity
        items = await self._text(scope, text, limit)
        return [SearchResult(item=item, similarity=placeholder, distance=1.0 - placeholder) for item in items], True

    async def find(
        self,
        kind: ItemKind,
        query: str,
        owner: OwnerContext,
        limit: int | None = None,
        methods: Iterable[SearchMethod] = ALL_SEARCH_METHODS,
        include_completed: bool = False,
    ) -> FindResults:
        """
        Hybrid search. Never raises.

        Args:
            kind: "reminder" or "memory"
            query: Free-text query; blank queries return empty buckets without any I/O
            owner: Scope of the search
            limit: Per-bucket and combined size (default from settings, capped at max_limit)
            methods: Subset of semantic/text/tags to run
            include_completed: Include completed reminders (ignored for memories)

        Returns:
            FindResults with one bucket per method plus ``combined``
        """
        if not query or not query.strip():
            return FindResults()

        text = query.strip()
        limit = min(limit or self.settings.default_limit, self.settings.max_limit)
        selected = set(methods)
        unknown = selected - set(ALL_SEARCH_METHODS)
        if unknown:
            logger.warning(f"Ignoring unknown search methods: {sorted(unknown)}")

        scope = self._scope(kind, owner, include_completed)

        async def nothing() -> list:
            return []

        async def no_semantic() -> tuple[list[SearchResult], bool]:
            return [], False

        semantic_task = (
            self._guard("Semantic", self._semantic(scope, text, limit), ([], False))
            if "semantic" in selected
            else no_semantic()
        )
        text_task = self._guard("Text", self._text(scope, text, limit), []) if "text" in selected else nothing()
        tags_task = self._guard("Tag", self._tags(scope, text, limit), []) if "tags" in selected else nothing()

        (semantic, degraded), text_hits, tag_hits = await asyncio.gather(semantic_task, text_task, tags_task)

        combined = merge_results(semantic, text_hits, tag_hits, limit, self.settings.confidence_threshold)
        logger.debug(
            f"find({kind}, {text[:40]!r}): semantic={len(semantic)} text={len(text_hits)} "
            f"tags={len(tag_hits)} combined={len(combined)} degraded={degraded}"
        )
        return FindResults(semantic=semantic, text=text_hits, tags=tag_hits, combined=combined, degraded=degraded)
