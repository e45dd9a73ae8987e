"""
Unit tests for the KnowledgeStore facade.

Covers:
- reminder creation: auto-advance of recurring anchors, past one-time rejection, end_date checks
- ownership: foreign items are reported as missing
- cancel and upcoming listing
- memory lookups by file, by source message and by recency, plus per-owner statistics
- reminder lookups by source message
"""

from datetime import timedelta

import pytest

from knowledge_service.errors import NotFoundError, PastDateError, ValidationError
from knowledge_service.models.knowledge import MemoryCreate, Recurrence, ReminderCreate


@pytest.mark.asyncio
class TestCreateReminder:
    async def test_past_recurring_reminder_is_auto_advanced(self, store, owner, clock):
        yesterday = clock.now() - timedelta(days=1)

        reminder = await store.create_reminder(
            ReminderCreate(content="Pay rent", scheduled_for=yesterday, recurrence=Recurrence(type="monthly")), owner
        )

        assert reminder.scheduled_for > clock.now()
        assert reminder.scheduled_for == yesterday.replace(month=yesterday.month + 1)
        assert reminder.is_recurring
        assert reminder.created_at == clock.now()

    async def test_past_one_time_reminder_is_rejected(self, store, owner, clock):
        with pytest.raises(PastDateError, match="cannot be scheduled in the past"):
            await store.create_reminder(
                ReminderCreate(content="Pay rent", scheduled_for=clock.now() - timedelta(days=1)), owner
            )

    async def test_past_date_error_is_a_validation_error(self, store, owner, clock):
        with pytest.raises(ValidationError):
            await store.create_reminder(ReminderCreate(content="now-ish", scheduled_for=clock.now()), owner)

    async def test_end_date_before_first_occurrence(self, store, owner, clock):
        data = ReminderCreate(
            content="gym",
            scheduled_for=clock.now() + timedelta(days=3),
            recurrence=Recurrence(type="daily", end_date=clock.now() + timedelta(days=1)),
        )
        with pytest.raises(ValidationError, match="end_date"):
            await store.create_reminder(data, owner)

    async def test_reminder_is_embedded_and_owned(self, store, owner, clock, embedder):
        reminder = await store.create_reminder(
            ReminderCreate(
                content="dentist", summary="checkup", tags=["health"], scheduled_for=clock.now() + timedelta(hours=3)
            ),
            owner,
        )
        assert reminder.owner_id == "alice"
        assert reminder.project_id == "home"
        assert reminder.embedding and len(reminder.embedding) == embedder.dimensions
        assert embedder.calls[-1] == "dentist checkup health"

    async def test_embedding_failure_is_not_fatal(self, store, owner, clock, embedder):
        embedder.fail = True
        reminder = await store.create_reminder(
            ReminderCreate(content="dentist", scheduled_for=clock.now() + timedelta(hours=3)), owner
        )
        assert reminder.embedding is None
        assert (await store.get_reminder(reminder.id, owner)).id == reminder.id


@pytest.mark.asyncio
class TestOwnershipAndCancel:
    async def test_foreign_reminder_is_not_found(self, store, owner, other_owner, clock):
        reminder = await store.create_reminder(
            ReminderCreate(content="secret", scheduled_for=clock.now() + timedelta(hours=1)), owner
        )
        with pytest.raises(NotFoundError):
            await store.get_reminder(reminder.id, other_owner)
        with pytest.raises(NotFoundError):
            await store.cancel_reminder(reminder.id, other_owner)

    async def test_cancel_completes_and_releases(self, store, owner, clock):
        reminder = await store.create_reminder(
            ReminderCreate(
                content="standup", scheduled_for=clock.now() + timedelta(hours=1), recurrence=Recurrence(type="daily")
            ),
            owner,
        )

        cancelled = await store.cancel_reminder(reminder.id, owner, reason="team disbanded")

        assert cancelled.is_completed
        assert cancelled.completed_at == clock.now()
        clock.advance(days=2)
        report = await store.process_due_reminders()
        assert report.processed == 0

    async def test_cancel_twice_is_rejected(self, store, owner, clock):
        reminder = await store.create_reminder(
            ReminderCreate(content="once", scheduled_for=clock.now() + timedelta(hours=1)), owner
        )
        await store.cancel_reminder(reminder.id, owner)
        with pytest.raises(ValidationError, match="already completed"):
            await store.cancel_reminder(reminder.id, owner)

    async def test_cancel_missing(self, store, owner):
        with pytest.raises(NotFoundError, match="reminder 'nope' not found"):
            await store.cancel_reminder("nope", owner)

    async def test_foreign_memory_is_not_found(self, store, owner, other_owner):
        memory = await store.create_memory(MemoryCreate(content="private"), owner)
        with pytest.raises(NotFoundError):
            await store.get_memory(memory.id, other_owner)


@pytest.mark.asyncio
class TestListUpcoming:
    async def test_sorted_limited_and_filtered(self, store, owner, other_owner, clock):
        later = await store.create_reminder(
            ReminderCreate(content="later", scheduled_for=clock.now() + timedelta(days=3)), owner
        )
        soon = await store.create_reminder(
            ReminderCreate(content="soon", scheduled_for=clock.now() + timedelta(hours=2)), owner
        )
        cancelled = await store.create_reminder(
            ReminderCreate(content="cancelled", scheduled_for=clock.now() + timedelta(hours=1)), owner
        )
        await store.cancel_reminder(cancelled.id, owner)
        await store.create_reminder(
            ReminderCreate(content="not mine", scheduled_for=clock.now() + timedelta(hours=1)), other_owner
        )

        assert [r.id for r in await store.list_upcoming_reminders(owner)] == [soon.id, later.id]
        assert [r.id for r in await store.list_upcoming_reminders(owner, limit=1)] == [soon.id]
        assert [r.id for r in await store.list_upcoming_reminders(owner, days_ahead=1)] == [soon.id]

    async def test_overdue_reminders_are_not_upcoming(self, store, owner, clock):
        due = ReminderCreate(content="due", scheduled_for=clock.now() + timedelta(hours=1))
        await store.create_reminder(due, owner)
        clock.advance(hours=2)
        assert await store.list_upcoming_reminders(owner) == []


@pytest.mark.asyncio
class TestMemoryQueries:
    async def test_memories_by_file_newest_first(self, store, owner, other_owner, clock):
        first = await store.create_memory(MemoryCreate(content="page one", file_reference="file-1"), owner)
        clock.advance(minutes=1)
        second = await store.create_memory(MemoryCreate(content="page two", file_reference="file-1"), owner)
        await store.create_memory(MemoryCreate(content="other doc", file_reference="file-2"), owner)
        await store.create_memory(MemoryCreate(content="theirs", file_reference="file-1"), other_owner)

        memories = await store.memories_by_file("file-1", owner)

        assert [m.id for m in memories] == [second.id, first.id]

    async def test_memory_stats(self, store, owner, other_owner):
        await store.create_memory(MemoryCreate(content="a", tags=["work", "travel"]), owner)
        await store.create_memory(MemoryCreate(content="b", tags=["work"], file_reference="f"), owner)
        await store.create_memory(MemoryCreate(content="c"), owner)
        await store.create_memory(MemoryCreate(content="d", tags=["work"]), other_owner)

        stats = await store.memory_stats(owner)

        assert stats.total_memories == 3
        assert stats.memories_with_files == 1
        assert stats.memories_with_tags == 2
        assert stats.top_tags[0] == ("work", 2)

    async def test_recent_memories_newest_first(self, store, owner, other_owner, clock):
        oldest = await store.create_memory(MemoryCreate(content="first note"), owner)
        clock.advance(minutes=1)
        middle = await store.create_memory(MemoryCreate(content="second note"), owner)
        clock.advance(minutes=1)
        newest = await store.create_memory(MemoryCreate(content="third note"), owner)
        await store.create_memory(MemoryCreate(content="someone else's"), other_owner)

        assert [m.id for m in await store.recent_memories(owner)] == [newest.id, middle.id, oldest.id]
        assert [m.id for m in await store.recent_memories(owner, limit=2)] == [newest.id, middle.id]


@pytest.mark.asyncio
class TestLookupsBySourceMessage:
    async def test_memories_by_message(self, store, owner, other_owner, clock):
        first = await store.create_memory(MemoryCreate(content="likes jazz", source_message_id="msg-1"), owner)
        clock.advance(minutes=1)
        second = await store.create_memory(MemoryCreate(content="plays piano", source_message_id="msg-1"), owner)
        await store.create_memory(MemoryCreate(content="unrelated", source_message_id="msg-2"), owner)
        await store.create_memory(MemoryCreate(content="theirs", source_message_id="msg-1"), other_owner)

        memories = await store.memories_by_message("msg-1", owner)

        assert [m.id for m in memories] == [second.id, first.id]
        assert await store.memories_by_message("msg-404", owner) == []

    async def test_reminders_by_message_in_schedule_order(self, store, owner, other_owner, clock):
        later = await store.create_reminder(
            ReminderCreate(
                content="pack bags", scheduled_for=clock.now() + timedelta(days=2), source_message_id="msg-7"
            ),
            owner,
        )
        sooner = await store.create_reminder(
            ReminderCreate(
                content="book taxi", scheduled_for=clock.now() + timedelta(days=1), source_message_id="msg-7"
            ),
            owner,
        )
        await store.create_reminder(
            ReminderCreate(
                content="not mine", scheduled_for=clock.now() + timedelta(days=1), source_message_id="msg-7"
            ),
            other_owner,
        )

        reminders = await store.reminders_by_message("msg-7", owner)

        assert [r.id for r in reminders] == [sooner.id, later.id]
        assert reminders[0].source_message_id == "msg-7"
