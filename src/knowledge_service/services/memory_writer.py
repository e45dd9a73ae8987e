"""
Memory persistence with embedding generation.

Shared by the facade's direct create path and the deduplication arbiter's
create and update paths so all three embed and stamp memories identically.
"""

import logging
from datetime import datetime

from ..clock import Clock, SystemClock
from ..errors import NotFoundError
from ..gateways.embedding import EmbeddingGateway, combine_fields
from ..models.knowledge import KnowledgeItem, Memory, MemoryCreate, OwnerContext
from ..storage.base import KnowledgeStorage

logger = logging.getLogger(__name__)

UPDATE_REASON = "Smart deduplication merge"


def embedding_text(content: str, summary: str | None, tags: list[str], max_chars: int | None = None) -> str:
    """Text an item is embedded from: content, summary and tags in that order."""
    return combine_fields([content, summary, " ".join(tags)], max_chars=max_chars)


async def embed_item_text(
    embedder: EmbeddingGateway, content: str, summary: str | None, tags: list[str], max_chars: int | None = None
) -> list[float] | None:
    """Embed an item's text; ``None`` when the gateway fails or returns nothing."""
    try:
        vector = await embedder.embed(embedding_text(content, summary, tags, max_chars))
    except Exception as e:
        logger.warning(f"Embedding generation failed (non-fatal): {e}")
        return None
    return vector or None


def union_tags(existing: list[str], incoming: list[str]) -> list[str]:
    merged = list(existing)
    merged.extend(tag for tag in incoming if tag not in merged)
    return merged


class MemoryWriter:
    def __init__(
        self,
        storage: KnowledgeStorage,
        embedder: EmbeddingGateway,
        clock: Clock | None = None,
        max_chars: int | None = None,
    ):
        self.storage = storage
        self.embedder = embedder
        self.clock = clock or SystemClock()
        self.max_chars = max_chars

    async def create(self, candidate: MemoryCreate, owner: OwnerContext) -> Memory:
        now = self.clock.now()
        embedding = await embed_item_text(
            self.embedder, candidate.content, candidate.summary, candidate.tags, self.max_chars
        )
        memory = Memory(
            owner_id=owner.owner_id,
            project_id=owner.project_id,
            content=candidate.content,
            summary=candidate.summary,
            tags=candidate.tags,
            metadata=candidate.metadata,
            file_reference=candidate.file_reference,
            source_message_id=candidate.source_message_id,
            embedding=embedding,
            created_at=now,
            updated_at=now,
        )
        stored = await self.storage.insert(memory)
        logger.info(f"Created memory {stored.id} for owner {owner.owner_id}")
        return stored

    def _merged_metadata(
        self, target: Memory, candidate: MemoryCreate, now: datetime, confidence: float | None
    ) -> dict:
        history = list(target.metadata.get("content_history", []))
        history.append({"content": target.content, "replaced_at": now.isoformat()})
        metadata = {**target.metadata, **candidate.metadata}
        metadata.update(
            previous_content=target.content,
            content_history=history,
            updated_reason=UPDATE_REASON,
            last_updated=now.isoformat(),
        )
        if confidence is not None:
            metadata["merge_confidence"] = confidence
        return metadata

    async def merge(self, target: Memory, candidate: MemoryCreate, confidence: float | None = None) -> Memory:
        """
        Fold ``candidate`` into ``target``.

        Content is replaced, the summary is kept unless the candidate brings
        one, tags are unioned and the previous content is kept in
        ``metadata["previous_content"]`` and ``metadata["content_history"]``.
        The embedding is regenerated from the merged text.
        """
        now = self.clock.now()
        summary = candidate.summary or target.summary
        tags = union_tags(target.tags, candidate.tags)
        changes = {
            "content": candidate.content,
            "summary": summary,
            "tags": tags,
            "metadata": self._merged_metadata(target, candidate, now, confidence),
            "embedding": await embed_item_text(self.embedder, candidate.content, summary, tags, self.max_chars),
            "updated_at": now,
        }
        if candidate.file_reference:
            changes["file_reference"] = candidate.file_reference

        updated: KnowledgeItem | None = await self.storage.update("memory", target.id, changes)
        if updated is None:
            raise NotFoundError("memory", target.id)
        logger.info(f"Merged candidate into memory {target.id}")
        return updated
