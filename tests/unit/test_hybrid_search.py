"""
Unit tests for HybridSearchEngine and merge_results.

Covers:
- blank queries short-circuit without I/O
- method selection (text-only search leaves the other buckets empty)
- combined list is id-deduplicated and ordered by recency
- semantic search degrades to text when no query embedding is available
- a failing method yields an empty bucket without failing the search
- owner scoping and the completed-reminder filter
"""

from datetime import timedelta

import pytest

from knowledge_service.models.knowledge import Memory, MemoryCreate, ReminderCreate, SearchResult
from knowledge_service.services.search_engine import merge_results
from knowledge_service.storage.memory_store import InMemoryStorage
from knowledge_service.storage.query import ArrayOverlaps


class TagFailingStorage(InMemoryStorage):
    """In-memory store whose tag-overlap queries blow up."""

    async def find(self, query):
        if any(isinstance(p, ArrayOverlaps) for p in query.predicates):
            raise RuntimeError("tag index unavailable")
        return await super().find(query)


def _memory(id: str, content: str, created_at) -> Memory:
    return Memory(id=id, owner_id="alice", project_id="home", content=content, created_at=created_at)


class TestMergeResults:
    def test_confident_semantic_copy_wins(self, clock):
        now = clock.now()
        semantic = [SearchResult(item=_memory("m1", "semantic copy", now), similarity=0.9, distance=0.1)]
        text = [_memory("m1", "text copy", now)]
        merged = merge_results(semantic, text, [], limit=5, confidence_threshold=0.7)
        assert [m.content for m in merged] == ["semantic copy"]

    def test_text_beats_tentative_semantic(self, clock):
        now = clock.now()
        semantic = [SearchResult(item=_memory("m1", "semantic copy", now), similarity=0.5, distance=0.5)]
        text = [_memory("m1", "text copy", now)]
        merged = merge_results(semantic, text, [], limit=5, confidence_threshold=0.7)
        assert [m.content for m in merged] == ["text copy"]

    def test_sorted_by_recency_then_truncated(self, clock):
        now = clock.now()
        old = _memory("old", "a", now - timedelta(days=3))
        new = _memory("new", "b", now)
        mid = _memory("mid", "c", now - timedelta(days=1))
        merged = merge_results([], [old, new], [mid, old], limit=2, confidence_threshold=0.7)
        assert [m.id for m in merged] == ["new", "mid"]


@pytest.mark.asyncio
class TestHybridSearchEngine:
    async def test_blank_query_returns_empty_without_io(self, store, owner, embedder):
        results = await store.search_memories("   ", owner)
        assert results.combined == []
        assert results.semantic == []
        assert embedder.calls == []

    async def test_text_only_search(self, store, owner, clock):
        first = await store.create_memory(MemoryCreate(content="Alice works as a project manager"), owner)
        clock.advance(hours=1)
        await store.create_memory(MemoryCreate(content="Alice likes hiking", tags=["project"]), owner)
        clock.advance(hours=1)
        second = await store.create_memory(MemoryCreate(content="Promoted to senior Project Manager"), owner)

        results = await store.search_memories("project manager", owner, methods=["text"])

        assert results.semantic == []
        assert results.tags == []
        assert [m.id for m in results.text] == [second.id, first.id]
        assert [m.id for m in results.combined] == [second.id, first.id]
        assert results.degraded is False

    async def test_tag_search_matches_multi_word_tag(self, store, owner):
        memory = await store.create_memory(
            MemoryCreate(content="Alice got promoted", tags=["Project Manager"]), owner
        )
        assert memory.tags == ["project-manager"]

        results = await store.search_memories("project manager", owner, methods=["tags"])

        assert [m.id for m in results.tags] == [memory.id]

    async def test_combined_has_unique_ids(self, store, owner):
        await store.create_memory(MemoryCreate(content="rent is due on the first", tags=["rent"]), owner)
        await store.create_memory(MemoryCreate(content="landlord phone number", tags=["rent"]), owner)

        results = await store.search_memories("rent", owner)

        ids = results.ids
        assert len(ids) == len(set(ids))
        assert len(results.text) == 1
        assert len(results.tags) == 2

    async def test_semantic_degrades_to_text(self, store, owner, embedder, test_settings):
        memory = await store.create_memory(MemoryCreate(content="dentist appointment on friday"), owner)
        embedder.fail = True

        results = await store.search_memories("dentist", owner, methods=["semantic"])

        assert results.degraded is True
        assert [r.item.id for r in results.semantic] == [memory.id]
        assert results.semantic[0].similarity == test_settings.search.fallback_similarity
        assert results.combined[0].id == memory.id

    async def test_semantic_ranks_by_embedding(self, store, owner):
        target = await store.create_memory(MemoryCreate(content="favourite colour is green"), owner)
        await store.create_memory(MemoryCreate(content="train leaves at noon"), owner)

        results = await store.search_memories("favourite colour is green", owner, methods=["semantic"])

        assert results.degraded is False
        assert results.semantic[0].item.id == target.id
        assert results.semantic[0].similarity == pytest.approx(1.0)

    async def test_failing_method_yields_empty_bucket(self, make_store, owner):
        store = make_store(storage=TagFailingStorage())
        memory = await store.create_memory(MemoryCreate(content="renew passport", tags=["passport"]), owner)

        results = await store.search_memories("passport", owner)

        assert results.tags == []
        assert [m.id for m in results.text] == [memory.id]
        assert memory.id in results.ids

    async def test_other_owners_are_invisible(self, store, owner, other_owner):
        await store.create_memory(MemoryCreate(content="bob's secret recipe"), other_owner)
        results = await store.search_memories("secret recipe", owner)
        assert results.combined == []
        assert results.semantic == []

    async def test_completed_reminders_excluded_by_default(self, store, owner, clock):
        reminder = await store.create_reminder(
            ReminderCreate(content="call the plumber", scheduled_for=clock.now() + timedelta(days=1)), owner
        )
        await store.cancel_reminder(reminder.id, owner)

        hidden = await store.search_reminders("plumber", owner)
        shown = await store.search_reminders("plumber", owner, include_completed=True)

        assert hidden.combined == []
        assert [r.id for r in shown.combined] == [reminder.id]

    async def test_limit_applies_per_bucket(self, store, owner, clock):
        for i in range(4):
            await store.create_memory(MemoryCreate(content=f"gym session {i}"), owner)
            clock.advance(minutes=5)

        results = await store.search_memories("gym", owner, limit=2, methods=["text"])

        assert len(results.text) == 2
        assert [m.content for m in results.combined] == ["gym session 3", "gym session 2"]
