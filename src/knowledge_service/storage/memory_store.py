"""
In-process storage backend.

Holds items in per-kind dictionaries and evaluates queries with the reference
predicate evaluation from ``storage.query``. Used for tests, local development
(``KS_QDRANT_BACKEND=memory``) and as the behavioural baseline other backends
are checked against.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any

from ..models.knowledge import ITEM_TYPES, KnowledgeItem, Reminder, SearchResult
from ..models.validators import ItemKind
from ..utils.similarity import cosine_similarity
from .base import KnowledgeStorage, apply_changes, claimable
from .query import Query, matches_all, sort_items

logger = logging.getLogger(__name__)


class InMemoryStorage(KnowledgeStorage):
    """Dictionary-backed storage with the full query-builder feature set."""

    def __init__(self):
        self._items: dict[str, dict[str, KnowledgeItem]] = {kind: {} for kind in ITEM_TYPES}
        self._lock = asyncio.Lock()
        self._initialized = False

    async def initialize(self) -> None:
        self._initialized = True
        logger.info("InMemoryStorage initialized")

    def _bucket(self, kind: ItemKind) -> dict[str, KnowledgeItem]:
        try:
            return self._items[kind]
        except KeyError:
            raise ValueError(f"Unknown item kind: {kind!r}") from None

    async def insert(self, item: KnowledgeItem) -> KnowledgeItem:
        bucket = self._bucket(item.kind)
        if item.id in bucket:
            raise ValueError(f"{item.kind} '{item.id}' already exists")
        bucket[item.id] = item.model_copy(deep=True)
        logger.debug(f"Stored {item.kind} {item.id}")
        return item.model_copy(deep=True)

    async def get(self, kind: ItemKind, item_id: str) -> KnowledgeItem | None:
        item = self._bucket(kind).get(item_id)
        return item.model_copy(deep=True) if item is not None else None

    async def update(self, kind: ItemKind, item_id: str, changes: dict[str, Any]) -> KnowledgeItem | None:
        bucket = self._bucket(kind)
        current = bucket.get(item_id)
        if current is None:
            return None
        updated = apply_changes(current, changes)
        bucket[item_id] = updated
        return updated.model_copy(deep=True)

    async def find(self, query: Query) -> list[KnowledgeItem]:
        hits = [item for item in self._bucket(query.kind).values() if matches_all(item, query.predicates)]
        return [item.model_copy(deep=True) for item in sort_items(hits, query)]

    async def nearest(self, query: Query) -> list[SearchResult]:
        if query.vector is None:
            raise ValueError("nearest() requires a query built with .nearest(vector)")
        target = query.vector.vector
        scored: list[tuple[float, KnowledgeItem]] = []
        for item in self._bucket(query.kind).values():
            embedding = getattr(item, query.vector.field, None)
            if not embedding or not matches_all(item, query.predicates):
                continue
            if len(embedding) != len(target):
                logger.warning(f"Skipping {item.kind} {item.id}: embedding dimension {len(embedding)} != {len(target)}")
                continue
            scored.append((cosine_similarity(target, embedding), item))

        scored.sort(key=lambda pair: pair[0], reverse=True)
        if query.max_results is not None:
            scored = scored[: query.max_results]
        return [
            SearchResult(item=item.model_copy(deep=True), similarity=similarity, distance=1.0 - similarity)
            for similarity, item in scored
        ]

    async def claim(
        self, reminder_id: str, claimant: str, now: datetime, lease: timedelta
    ) -> Reminder | None:
        # The lock makes read-check-write atomic across tasks sharing this store
        async with self._lock:
            current = self._items["reminder"].get(reminder_id)
            if not claimable(current, claimant, now):
                return None
            claimed = apply_changes(current, {"claimed_by": claimant, "claimed_until": now + lease})
            self._items["reminder"][reminder_id] = claimed
            return claimed.model_copy(deep=True)

    async def close(self) -> None:
        logger.debug("InMemoryStorage closed")
