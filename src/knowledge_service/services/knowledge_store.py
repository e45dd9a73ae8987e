"""
KnowledgeStore: the single entry point used by the MCP tools, the HTTP API
and the CLI.

It centralizes reminder and memory business logic (validation, auto-advance
of past recurring anchors, ownership checks, embedding on write) so every
surface behaves the same. Components are passed in by the composition root;
nothing here constructs its own collaborators.
"""

import logging
from collections import Counter
from datetime import timedelta
from typing import Iterable

from ..clock import Clock, SystemClock
from ..errors import NotFoundError, PastDateError, ValidationError
from ..gateways.embedding import EmbeddingGateway
from ..models.knowledge import (
    FindResults,
    Memory,
    MemoryCreate,
    OwnerContext,
    Reminder,
    ReminderCreate,
)
from ..models.responses import BatchItemResult, MemoryStats, PollReport, SmartCreateResult
from ..models.validators import ALL_SEARCH_METHODS, SearchMethod
from ..storage.base import KnowledgeStorage
from ..storage.query import Equals, Query, Range
from ..utils.recurrence import advance_recurrence, validate_recurrence
from .deduplication import DeduplicationArbiter
from .memory_writer import MemoryWriter, embed_item_text
from .scheduler import ReminderScheduler
from .search_engine import HybridSearchEngine

logger = logging.getLogger(__name__)

TOP_TAGS = 10


class KnowledgeStore:
    """Facade over reminders and memories for one process."""

    def __init__(
        self,
        storage: KnowledgeStorage,
        embedder: EmbeddingGateway,
        search_engine: HybridSearchEngine,
        writer: MemoryWriter,
        arbiter: DeduplicationArbiter,
        scheduler: ReminderScheduler,
        clock: Clock | None = None,
        max_embedding_chars: int | None = None,
    ):
        self.storage = storage
        self.embedder = embedder
        self.search_engine = search_engine
        self.writer = writer
        self.arbiter = arbiter
        self.scheduler = scheduler
        self.clock = clock or SystemClock()
        self.max_embedding_chars = max_embedding_chars

    # ------------------------------------------------------------------
    # Reminders
    # ------------------------------------------------------------------

    async def create_reminder(self, data: ReminderCreate, owner: OwnerContext) -> Reminder:
        """
        Create a reminder.

        A recurring reminder whose anchor is already past is advanced to its
        first occurrence after now; a one-time reminder in the past is
        rejected.

        Raises:
            PastDateError: One-time reminder not in the future
            ValidationError: ``end_date`` earlier than the resolved trigger time
            ConfigurationError: Unsupported recurrence type
        """
        now = self.clock.now()
        rule = data.recurrence
        validate_recurrence(rule.type, rule.interval)

        scheduled_for = data.scheduled_for
        if scheduled_for <= now:
            if not rule.is_recurring:
                raise PastDateError()
            step = advance_recurrence(scheduled_for, rule.type, rule.interval, now)
            logger.info(
                f"Auto-advanced past {rule.type} reminder from {scheduled_for.isoformat()} "
                f"to {step.next_occurrence.isoformat()}"
            )
            scheduled_for = step.next_occurrence

        if rule.end_date is not None and rule.end_date < scheduled_for:
            raise ValidationError(
                f"recurrence end_date {rule.end_date.isoformat()} is before the first occurrence "
                f"{scheduled_for.isoformat()}"
            )

        embedding = await embed_item_text(
            self.embedder, data.content, data.summary, data.tags, self.max_embedding_chars
        )
        reminder = Reminder(
            owner_id=owner.owner_id,
            project_id=owner.project_id,
            content=data.content,
            summary=data.summary,
            tags=data.tags,
            source_message_id=data.source_message_id,
            scheduled_for=scheduled_for,
            recurrence=rule,
            embedding=embedding,
            created_at=now,
        )
        stored = await self.storage.insert(reminder)
        logger.info(f"Created reminder {stored.id} for {scheduled_for.isoformat()} (owner {owner.owner_id})")
        return stored

    async def get_reminder(self, reminder_id: str, owner: OwnerContext) -> Reminder:
        """Raises NotFoundError if the reminder is missing or owned by someone else."""
        reminder = await self.storage.get("reminder", reminder_id)
        if not isinstance(reminder, Reminder) or not reminder.owned_by(owner):
            raise NotFoundError("reminder", reminder_id)
        return reminder

    async def cancel_reminder(self, reminder_id: str, owner: OwnerContext, reason: str | None = None) -> Reminder:
        """
        Complete a reminder early so it never fires again.

        Raises:
            NotFoundError: Missing or not owned by ``owner``
            ValidationError: Already completed
        """
        reminder = await self.get_reminder(reminder_id, owner)
        if reminder.is_completed:
            raise ValidationError(f"reminder '{reminder_id}' is already completed")

        updated = await self.storage.update(
            "reminder",
            reminder_id,
            {"is_completed": True, "completed_at": self.clock.now(), "claimed_by": None, "claimed_until": None},
        )
        if not isinstance(updated, Reminder):
            raise NotFoundError("reminder", reminder_id)
        logger.info(f"Cancelled reminder {reminder_id}" + (f": {reason}" if reason else ""))
        return updated

    async def list_upcoming_reminders(
        self, owner: OwnerContext, limit: int = 10, days_ahead: int | None = None
    ) -> list[Reminder]:
        """Active reminders scheduled after now, soonest first."""
        now = self.clock.now()
        window = Range("scheduled_for", gt=now, lte=now + timedelta(days=days_ahead) if days_ahead else None)
        query = (
            Query.for_owner("reminder", owner)
            .where(Equals("is_completed", False), window)
            .order_by("scheduled_for")
            .limit(limit)
        )
        return [r for r in await self.storage.find(query) if isinstance(r, Reminder)]

    async def search_reminders(
        self,
        query: str,
        owner: OwnerContext,
        limit: int | None = None,
        methods: Iterable[SearchMethod] = ALL_SEARCH_METHODS,
        include_completed: bool = False,
    ) -> FindResults:
        return await self.search_engine.find(
            "reminder", query, owner, limit=limit, methods=methods, include_completed=include_completed
        )

    async def reminders_by_message(self, source_message_id: str, owner: OwnerContext) -> list[Reminder]:
        """Reminders created from one chat message, in schedule order."""
        query = (
            Query.for_owner("reminder", owner)
            .where(Equals("source_message_id", source_message_id))
            .order_by("scheduled_for")
        )
        return [r for r in await self.storage.find(query) if isinstance(r, Reminder)]

    async def process_due_reminders(self) -> PollReport:
        """Run one poll cycle over every owner's due reminders."""
        return await self.scheduler.run_once()

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    async def create_memory(self, data: MemoryCreate, owner: OwnerContext) -> Memory:
        """Store a memory without deduplication."""
        return await self.writer.create(data, owner)

    async def smart_create_memory(self, data: MemoryCreate, owner: OwnerContext) -> SmartCreateResult:
        return await self.arbiter.smart_create(data, owner)

    async def smart_create_memories(self, items: list[MemoryCreate], owner: OwnerContext) -> list[BatchItemResult]:
        return await self.arbiter.smart_create_multiple(items, owner)

    async def get_memory(self, memory_id: str, owner: OwnerContext) -> Memory:
        """Raises NotFoundError if the memory is missing or owned by someone else."""
        memory = await self.storage.get("memory", memory_id)
        if not isinstance(memory, Memory) or not memory.owned_by(owner):
            raise NotFoundError("memory", memory_id)
        return memory

    async def search_memories(
        self,
        query: str,
        owner: OwnerContext,
        limit: int | None = None,
        methods: Iterable[SearchMethod] = ALL_SEARCH_METHODS,
    ) -> FindResults:
        return await self.search_engine.find("memory", query, owner, limit=limit, methods=methods)

    async def memories_by_file(self, file_reference: str, owner: OwnerContext) -> list[Memory]:
        """Memories extracted from one attachment, newest first."""
        query = (
            Query.for_owner("memory", owner)
            .where(Equals("file_reference", file_reference))
            .order_by("created_at", descending=True)
        )
        return [m for m in await self.storage.find(query) if isinstance(m, Memory)]

    async def memories_by_message(self, source_message_id: str, owner: OwnerContext) -> list[Memory]:
        query = (
            Query.for_owner("memory", owner)
            .where(Equals("source_message_id", source_message_id))
            .order_by("created_at", descending=True)
        )
        return [m for m in await self.storage.find(query) if isinstance(m, Memory)]

    async def recent_memories(self, owner: OwnerContext, limit: int = 10) -> list[Memory]:
        """The owner's most recently created memories."""
        query = Query.for_owner("memory", owner).order_by("created_at", descending=True).limit(limit)
        return [m for m in await self.storage.find(query) if isinstance(m, Memory)]

    async def memory_stats(self, owner: OwnerContext) -> MemoryStats:
        memories = [m for m in await self.storage.find(Query.for_owner("memory", owner)) if isinstance(m, Memory)]
        tag_counts = Counter(tag for memory in memories for tag in memory.tags)
        return MemoryStats(
            total_memories=len(memories),
            memories_with_files=sum(1 for m in memories if m.file_reference),
            memories_with_tags=sum(1 for m in memories if m.tags),
            top_tags=tag_counts.most_common(TOP_TAGS),
        )
