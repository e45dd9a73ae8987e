# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Qdrant storage backend for the knowledge service.

One collection per item kind, each with a single named vector ``embedding``.
Items without an embedding are stored as points without vectors and never
match vector-nearest queries.

Payload layout:
    The item's JSON dump (minus the embedding) plus, for every datetime
    field, a ``<field>_ts`` float copy so ``Range`` predicates can be pushed
    down as numeric range filters.

Predicate translation:
    Equals -> MatchValue (IsNull for None), ArrayOverlaps -> MatchAny,
    Range -> numeric Range on the ``_ts`` copy for datetimes. ``Contains``
    has no server-side equivalent on unindexed text and is evaluated
    client-side after the filtered scroll, as is ordering.
"""

import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Callable, TypeVar

from qdrant_client import QdrantClient
from qdrant_client.http import exceptions as qdrant_exceptions
from qdrant_client.models import (
    Distance,
    FieldCondition,
    Filter,
    IsNullCondition,
    MatchAny,
    MatchValue,
    PayloadField,
    PayloadSchemaType,
    PointStruct,
    VectorParams,
)
from qdrant_client.models import Range as RangeCondition
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from ..errors import ConfigurationError
from ..models.knowledge import ITEM_TYPES, KnowledgeItem, SearchResult
from ..models.validators import ItemKind
from .base import KnowledgeStorage, apply_changes
from .query import ArrayOverlaps, Contains, Equals, Predicate, Query, Range, matches_all, sort_items

logger = logging.getLogger(__name__)

VECTOR_NAME = "embedding"

R = TypeVar("R")

# Keyword/bool payload indexes created in server mode
_KEYWORD_INDEXES = ("owner_id", "project_id", "tags", "file_reference")
_BOOL_INDEXES = ("is_completed",)
_FLOAT_INDEXES = ("created_at_ts", "scheduled_for_ts")


def is_retryable_error(exception: BaseException) -> bool:
    """
    Determine if an exception is retryable (transient 5xx server errors only).

    Notes:
        - 5xx server errors are transient and retryable
        - 4xx client errors are permanent (configuration/validation) and NOT retryable
        - Dimension mismatches are NOT retryable (configuration error)
    """
    if isinstance(exception, qdrant_exceptions.UnexpectedResponse):
        return hasattr(exception, "status_code") and 500 <= exception.status_code < 600
    return False


_retryable = retry(
    retry=retry_if_exception(is_retryable_error),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=5),
    reraise=True,
)


def point_id(item_id: str) -> str:
    """Qdrant accepts UUIDs or unsigned ints as point ids; other ids map to a stable uuid5."""
    try:
        return str(uuid.UUID(item_id))
    except ValueError:
        return str(uuid.uuid5(uuid.NAMESPACE_URL, item_id))


def item_to_payload(item: KnowledgeItem) -> dict[str, Any]:
    payload = item.model_dump(mode="json", exclude={"embedding"})
    payload["kind"] = item.kind
    for name in type(item).model_fields:
        value = getattr(item, name)
        if isinstance(value, datetime):
            payload[f"{name}_ts"] = value.timestamp()
    return payload


def payload_to_item(kind: ItemKind, payload: dict[str, Any], vector: Any = None) -> KnowledgeItem:
    model = ITEM_TYPES[kind]
    fields = model.model_fields
    data = {key: value for key, value in payload.items() if key in fields}
    if isinstance(vector, dict):
        vector = vector.get(VECTOR_NAME)
    data["embedding"] = list(vector) if vector else None
    return model.model_validate(data)


def _to_number(value: Any) -> Any:
    return value.timestamp() if isinstance(value, datetime) else value


def _range_key(field: str, *bounds: Any) -> str:
    return f"{field}_ts" if any(isinstance(b, datetime) for b in bounds) else field


def build_filter(predicates: tuple[Predicate, ...]) -> Filter | None:
    """Translate pushdown-capable predicates into a Qdrant ``Filter``.

    ``Contains`` predicates are skipped here; callers evaluate them on the
    returned items.
    """
    must: list[Any] = []
    for predicate in predicates:
        if isinstance(predicate, Equals):
            if predicate.value is None:
                must.append(IsNullCondition(is_null=PayloadField(key=predicate.field)))
            elif isinstance(predicate.value, datetime):
                ts = predicate.value.timestamp()
                must.append(FieldCondition(key=f"{predicate.field}_ts", range=RangeCondition(gte=ts, lte=ts)))
            else:
                must.append(FieldCondition(key=predicate.field, match=MatchValue(value=predicate.value)))
        elif isinstance(predicate, ArrayOverlaps):
            must.append(FieldCondition(key=predicate.field, match=MatchAny(any=list(predicate.values))))
        elif isinstance(predicate, Range):
            bounds = (predicate.lt, predicate.lte, predicate.gt, predicate.gte)
            must.append(
                FieldCondition(
                    key=_range_key(predicate.field, *bounds),
                    range=RangeCondition(
                        lt=_to_number(predicate.lt),
                        lte=_to_number(predicate.lte),
                        gt=_to_number(predicate.gt),
                        gte=_to_number(predicate.gte),
                    ),
                )
            )
        elif isinstance(predicate, Contains):
            continue
        else:
            raise TypeError(f"Unsupported predicate: {predicate!r}")
    return Filter(must=must) if must else None


class QdrantStorage(KnowledgeStorage):
    """
    Qdrant storage implementation in embedded, server or in-process mode.

    ``url=":memory:"`` runs Qdrant's local in-process mode, used by tests.
    """

    def __init__(
        self,
        vector_size: int,
        url: str | None = None,
        storage_path: str | None = None,
        collections: dict[str, str] | None = None,
        scroll_batch_size: int = 256,
    ):
        if url and storage_path:
            raise ValueError("Cannot specify both url and storage_path. Choose embedded OR server mode.")
        if not url and not storage_path:
            raise ValueError("Must specify either url (server mode) or storage_path (embedded mode).")

        self.url = url
        self.storage_path = storage_path
        self.vector_size = vector_size
        self.collections = collections or {"reminder": "reminders", "memory": "memories"}
        self.scroll_batch_size = scroll_batch_size
        self.client: QdrantClient | None = None
        self._initialized = False

        missing = set(ITEM_TYPES) - set(self.collections)
        if missing:
            raise ValueError(f"No collection configured for: {sorted(missing)}")

    @property
    def server_mode(self) -> bool:
        return bool(self.url) and self.url != ":memory:"

    async def _run(self, fn: Callable[[], R]) -> R:
        return await asyncio.get_running_loop().run_in_executor(None, fn)

    def _collection(self, kind: ItemKind) -> str:
        try:
            return self.collections[kind]
        except KeyError:
            raise ValueError(f"Unknown item kind: {kind!r}") from None

    async def initialize(self) -> None:
        """Connect, then create or verify one collection per item kind."""
        if self._initialized:
            logger.debug("QdrantStorage already initialized")
            return

        if self.url == ":memory:":
            self.client = await self._run(lambda: QdrantClient(location=":memory:"))
            logger.info("Initialized in-process Qdrant storage")
        elif self.url:
            self.client = await self._run(lambda: QdrantClient(url=self.url))
            logger.info(f"Connected to Qdrant server at {self.url}")
        else:
            self.client = await self._run(lambda: QdrantClient(path=self.storage_path))
            logger.info(f"Initialized Qdrant embedded storage at {self.storage_path}")

        for kind, name in self.collections.items():
            if await self._collection_exists(name):
                await self._verify_vector_size(name)
            else:
                await self._run(
                    lambda n=name: self.client.create_collection(
                        collection_name=n,
                        vectors_config={VECTOR_NAME: VectorParams(size=self.vector_size, distance=Distance.COSINE)},
                    )
                )
                logger.info(f"Created collection '{name}' for {kind} items (vector size {self.vector_size})")
            if self.server_mode:
                await self._ensure_payload_indexes(name)

        self._initialized = True
        logger.info("QdrantStorage initialization complete")

    async def _collection_exists(self, name: str) -> bool:
        collections = await self._run(self.client.get_collections)
        return name in {col.name for col in collections.collections}

    async def _verify_vector_size(self, name: str) -> None:
        info = await self._run(lambda: self.client.get_collection(name))
        vectors = info.config.params.vectors
        params = vectors.get(VECTOR_NAME) if isinstance(vectors, dict) else None
        if params is None:
            raise ConfigurationError(f"Collection '{name}' has no '{VECTOR_NAME}' vector; recreate it")
        if params.size != self.vector_size:
            raise ConfigurationError(
                f"Collection '{name}' vector size ({params.size}) doesn't match "
                f"configured embedding dimensions ({self.vector_size})"
            )

    async def _ensure_payload_indexes(self, name: str) -> None:
        """Idempotent; Qdrant ignores an index that already exists with the same schema."""
        schemas = (
            [(f, PayloadSchemaType.KEYWORD) for f in _KEYWORD_INDEXES]
            + [(f, PayloadSchemaType.BOOL) for f in _BOOL_INDEXES]
            + [(f, PayloadSchemaType.FLOAT) for f in _FLOAT_INDEXES]
        )
        for field_name, schema in schemas:
            await self._run(
                lambda f=field_name, s=schema: self.client.create_payload_index(
                    collection_name=name, field_name=f, field_schema=s
                )
            )
        logger.info(f"Ensured payload indexes on '{name}'")

    def _to_point(self, item: KnowledgeItem) -> PointStruct:
        vector: dict[str, list[float]] = {}
        if item.embedding:
            if len(item.embedding) != self.vector_size:
                raise ValueError(
                    f"Embedding dimension mismatch: expected {self.vector_size}, got {len(item.embedding)}"
                )
            vector[VECTOR_NAME] = item.embedding
        return PointStruct(id=point_id(item.id), vector=vector, payload=item_to_payload(item))

    @_retryable
    async def _upsert(self, item: KnowledgeItem) -> None:
        point = self._to_point(item)
        await self._run(lambda: self.client.upsert(collection_name=self._collection(item.kind), points=[point]))

    async def insert(self, item: KnowledgeItem) -> KnowledgeItem:
        if await self.get(item.kind, item.id) is not None:
            raise ValueError(f"{item.kind} '{item.id}' already exists")
        await self._upsert(item)
        logger.debug(f"Stored {item.kind} {item.id} in Qdrant")
        return item.model_copy(deep=True)

    @_retryable
    async def get(self, kind: ItemKind, item_id: str) -> KnowledgeItem | None:
        points = await self._run(
            lambda: self.client.retrieve(
                collection_name=self._collection(kind),
                ids=[point_id(item_id)],
                with_payload=True,
                with_vectors=True,
            )
        )
        if not points:
            return None
        return payload_to_item(kind, points[0].payload, points[0].vector)

    async def update(self, kind: ItemKind, item_id: str, changes: dict[str, Any]) -> KnowledgeItem | None:
        current = await self.get(kind, item_id)
        if current is None:
            return None
        updated = apply_changes(current, changes)
        await self._upsert(updated)
        return updated

    @_retryable
    async def _scroll(self, kind: ItemKind, scroll_filter: Filter | None) -> list[KnowledgeItem]:
        items: list[KnowledgeItem] = []
        next_offset = None
        while True:
            points, next_offset = await self._run(
                lambda off=next_offset: self.client.scroll(
                    collection_name=self._collection(kind),
                    scroll_filter=scroll_filter,
                    limit=self.scroll_batch_size,
                    offset=off,
                    with_payload=True,
                    with_vectors=True,
                )
            )
            for point in points:
                try:
                    items.append(payload_to_item(kind, point.payload, point.vector))
                except ValueError as e:
                    logger.warning(f"Skipping unparsable {kind} point {point.id}: {e}")
            if next_offset is None or not points:
                return items

    async def find(self, query: Query) -> list[KnowledgeItem]:
        items = await self._scroll(query.kind, build_filter(query.predicates))
        patterns = query.pattern_predicates
        if patterns:
            items = [item for item in items if matches_all(item, patterns)]
        return sort_items(items, query)

    @_retryable
    async def nearest(self, query: Query) -> list[SearchResult]:
        if query.vector is None:
            raise ValueError("nearest() requires a query built with .nearest(vector)")
        if len(query.vector.vector) != self.vector_size:
            raise ValueError(
                f"Query vector dimension mismatch: expected {self.vector_size}, got {len(query.vector.vector)}"
            )

        response = await self._run(
            lambda: self.client.query_points(
                collection_name=self._collection(query.kind),
                query=list(query.vector.vector),
                using=VECTOR_NAME,
                query_filter=build_filter(query.predicates),
                limit=query.max_results or 10,
                with_payload=True,
                with_vectors=True,
            )
        )

        patterns = query.pattern_predicates
        results: list[SearchResult] = []
        for scored in response.points:
            try:
                item = payload_to_item(query.kind, scored.payload, scored.vector)
            except ValueError as e:
                logger.warning(f"Failed to parse search result: {e}")
                continue
            if patterns and not matches_all(item, patterns):
                continue
            # Cosine score is already a similarity (1.0 = identical direction)
            similarity = float(scored.score)
            results.append(SearchResult(item=item, similarity=similarity, distance=1.0 - similarity))
        return results

    async def close(self) -> None:
        """Close the Qdrant client connection. Safe to call multiple times."""
        if self.client is not None:
            try:
                await self._run(self.client.close)
                logger.info("Qdrant client closed successfully")
            except Exception as e:
                logger.warning(f"Error closing Qdrant client: {e}")
            finally:
                self.client = None
                self._initialized = False
