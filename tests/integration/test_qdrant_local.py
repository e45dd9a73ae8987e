"""
Integration tests for QdrantStorage running in Qdrant's in-process mode.

Covers:
- insert / get / duplicate insert, with and without embeddings
- find with pushed-down filters, client-side Contains and ordering
- nearest-neighbour search with owner filters
- updates are re-validated, claims follow lease rules
- the full KnowledgeStore running on top of Qdrant
"""

from datetime import timedelta

import pytest
import pytest_asyncio

from knowledge_service.models.knowledge import Memory, MemoryCreate, Reminder, ReminderCreate
from knowledge_service.storage.qdrant_storage import QdrantStorage
from knowledge_service.storage.query import ArrayOverlaps, Contains, Equals, Query, Range

pytestmark = pytest.mark.integration


@pytest_asyncio.fixture
async def qdrant():
    storage = QdrantStorage(vector_size=4, url=":memory:")
    await storage.initialize()
    yield storage
    await storage.close()


def _memory(content: str, owner: str = "alice", embedding=None, **kwargs) -> Memory:
    return Memory(owner_id=owner, project_id="home", content=content, embedding=embedding, **kwargs)


@pytest.mark.asyncio
class TestQdrantCrud:
    async def test_insert_and_get(self, qdrant):
        memory = _memory("likes tea", embedding=[1.0, 0.0, 0.0, 0.0], tags=["drinks"])
        await qdrant.insert(memory)

        fetched = await qdrant.get("memory", memory.id)

        assert fetched.content == "likes tea"
        assert fetched.tags == ["drinks"]
        assert fetched.embedding == [1.0, 0.0, 0.0, 0.0]
        assert await qdrant.get("memory", "missing") is None

    async def test_item_without_embedding(self, qdrant):
        memory = _memory("no vector yet")
        await qdrant.insert(memory)
        assert (await qdrant.get("memory", memory.id)).embedding is None

    async def test_duplicate_insert(self, qdrant):
        memory = _memory("once")
        await qdrant.insert(memory)
        with pytest.raises(ValueError, match="already exists"):
            await qdrant.insert(memory)

    async def test_dimension_mismatch(self, qdrant):
        with pytest.raises(ValueError, match="dimension mismatch"):
            await qdrant.insert(_memory("wrong size", embedding=[1.0, 0.0]))

    async def test_update_is_revalidated(self, qdrant, clock):
        reminder = Reminder(owner_id="alice", project_id="home", content="call bank", scheduled_for=clock.now())
        await qdrant.insert(reminder)

        updated = await qdrant.update("reminder", reminder.id, {"is_completed": True, "completed_at": clock.now()})

        assert updated.is_completed
        assert (await qdrant.get("reminder", reminder.id)).completed_at == clock.now()
        assert await qdrant.update("reminder", "missing", {"content": "x"}) is None


@pytest.mark.asyncio
class TestQdrantQueries:
    async def test_filters_and_ordering(self, qdrant, clock):
        for hours, owner in [(3, "alice"), (1, "alice"), (2, "bob"), (-1, "alice")]:
            await qdrant.insert(
                Reminder(
                    owner_id=owner,
                    project_id="home",
                    content=f"reminder at {hours}h",
                    scheduled_for=clock.now() + timedelta(hours=hours),
                )
            )

        query = (
            Query.on("reminder")
            .where(Equals("owner_id", "alice"), Range("scheduled_for", gt=clock.now()))
            .order_by("scheduled_for")
        )
        results = await qdrant.find(query)

        assert [r.content for r in results] == ["reminder at 1h", "reminder at 3h"]
        assert await qdrant.count(Query.on("reminder").where(Equals("is_completed", False))) == 4

    async def test_contains_and_overlaps(self, qdrant):
        await qdrant.insert(_memory("Dentist on Friday", tags=["health"]))
        await qdrant.insert(_memory("Gym on Monday", tags=["sport", "health"]))
        await qdrant.insert(_memory("Dentist for bob", owner="bob"))

        text = await qdrant.find(Query.on("memory").where(Equals("owner_id", "alice"), Contains("content", "dentist")))
        tags = await qdrant.find(Query.on("memory").where(ArrayOverlaps("tags", ["sport"])))

        assert [m.content for m in text] == ["Dentist on Friday"]
        assert [m.content for m in tags] == ["Gym on Monday"]

    async def test_nearest(self, qdrant):
        close = _memory("close", embedding=[1.0, 0.1, 0.0, 0.0])
        far = _memory("far", embedding=[0.0, 0.0, 1.0, 0.0])
        foreign = _memory("foreign", owner="bob", embedding=[1.0, 0.0, 0.0, 0.0])
        for memory in (close, far, foreign, _memory("unembedded")):
            await qdrant.insert(memory)

        results = await qdrant.nearest(
            Query.on("memory").where(Equals("owner_id", "alice")).nearest([1.0, 0.0, 0.0, 0.0]).limit(5)
        )

        assert [r.item.id for r in results] == [close.id, far.id]
        assert results[0].similarity > results[1].similarity
        assert results[0].distance == pytest.approx(1.0 - results[0].similarity)

    async def test_claims(self, qdrant, clock):
        reminder = Reminder(owner_id="alice", project_id="home", content="x y", scheduled_for=clock.now())
        await qdrant.insert(reminder)
        lease = timedelta(minutes=5)

        assert await qdrant.claim(reminder.id, "worker-a", clock.now(), lease)
        assert not await qdrant.claim(reminder.id, "worker-b", clock.now(), lease)
        assert await qdrant.claim(reminder.id, "worker-b", clock.now() + timedelta(minutes=6), lease)


@pytest.mark.asyncio
class TestKnowledgeStoreOnQdrant:
    async def test_reminder_lifecycle(self, make_store, owner, clock, notifier):
        qdrant_backed = QdrantStorage(vector_size=16, url=":memory:")
        await qdrant_backed.initialize()
        try:
            store = make_store(storage=qdrant_backed)
            reminder = await store.create_reminder(
                ReminderCreate(content="take out the bins", scheduled_for=clock.now() + timedelta(hours=1)), owner
            )
            await store.create_memory(MemoryCreate(content="bins go out on Tuesday", tags=["chores"]), owner)

            clock.advance(hours=2)
            report = await store.process_due_reminders()

            assert report.completed == 1
            assert len(notifier.sent) == 1
            assert (await store.get_reminder(reminder.id, owner)).is_completed

            results = await store.search_memories("bins", owner)
            assert len(results.combined) == 1
            assert results.degraded is False
        finally:
            await qdrant_backed.close()
