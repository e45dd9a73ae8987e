"""Knowledge item models.

Reminders (time-triggered) and memories (content-addressable) share the
``KnowledgeItem`` base. All timestamps are aware UTC datetimes.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, ClassVar, Generic, Self, TypeVar

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .validators import (
    ItemId,
    ItemKind,
    PositiveInt,
    RecurrenceType,
    Tags,
    UTCDateTime,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_item_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Ownership
# ---------------------------------------------------------------------------


class OwnerContext(BaseModel):
    """Scope every read and write is restricted to."""

    model_config = ConfigDict(frozen=True)

    owner_id: ItemId
    project_id: ItemId
    display_name: str | None = None


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


class Recurrence(BaseModel):
    """Recurrence rule for a reminder."""

    type: RecurrenceType = "none"
    interval: PositiveInt = 1
    end_date: UTCDateTime | None = None

    @property
    def is_recurring(self) -> bool:
        return self.type != "none"


class KnowledgeItem(BaseModel):
    """Fields shared by reminders and memories."""

    kind: ClassVar[ItemKind]

    id: ItemId = Field(default_factory=new_item_id)
    owner_id: ItemId
    project_id: ItemId
    content: str = Field(min_length=1)
    summary: str | None = None
    embedding: list[float] | None = None
    tags: Tags = []
    source_message_id: str | None = None
    created_at: UTCDateTime = Field(default_factory=_utcnow)

    def owned_by(self, owner: OwnerContext) -> bool:
        return self.owner_id == owner.owner_id and self.project_id == owner.project_id

    def recency(self) -> datetime:
        """Timestamp used to order combined search results (newest first)."""
        return self.created_at


class Reminder(KnowledgeItem):
    """A one-time or recurring time-triggered item."""

    kind: ClassVar[ItemKind] = "reminder"

    scheduled_for: UTCDateTime
    recurrence: Recurrence = Field(default_factory=Recurrence)
    is_recurring: bool = False
    is_completed: bool = False
    completed_at: UTCDateTime | None = None

    # Advisory claim held by a scheduler instance while the item is processed
    claimed_by: str | None = None
    claimed_until: UTCDateTime | None = None

    @model_validator(mode="after")
    def sync_lifecycle(self) -> Self:
        """Derive ``is_recurring`` from the rule and require ``completed_at`` on completion."""
        self.is_recurring = self.recurrence.is_recurring
        if self.is_completed and self.completed_at is None:
            raise ValueError("completed reminders must carry completed_at")
        return self

    def recency(self) -> datetime:
        return self.scheduled_for

    def claim_active(self, now: datetime) -> bool:
        return self.claimed_by is not None and self.claimed_until is not None and self.claimed_until > now


class Memory(KnowledgeItem):
    """A free-form piece of knowledge about the owner."""

    kind: ClassVar[ItemKind] = "memory"

    file_reference: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    updated_at: UTCDateTime = Field(default_factory=_utcnow)


ITEM_TYPES: dict[str, type[KnowledgeItem]] = {"reminder": Reminder, "memory": Memory}

T = TypeVar("T", bound=KnowledgeItem)


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------


class ReminderCreate(BaseModel):
    """Caller input for a new reminder."""

    content: str = Field(min_length=1)
    scheduled_for: UTCDateTime
    summary: str | None = None
    tags: Tags = []
    recurrence: Recurrence = Field(default_factory=Recurrence)
    source_message_id: str | None = None


class MemoryCreate(BaseModel):
    """Caller input for a new memory (also the deduplication candidate)."""

    content: str = Field(min_length=1)
    summary: str | None = None
    tags: Tags = []
    metadata: dict[str, Any] = Field(default_factory=dict)
    file_reference: str | None = None
    source_message_id: str | None = None


# ---------------------------------------------------------------------------
# Search results
# ---------------------------------------------------------------------------


class SearchResult(BaseModel, Generic[T]):
    """An item returned by vector search with its score."""

    item: T
    similarity: float
    distance: float


class FindResults(BaseModel, Generic[T]):
    """Per-method buckets plus the merged, deduplicated ``combined`` list."""

    semantic: list[SearchResult[T]] = Field(default_factory=list)
    text: list[T] = Field(default_factory=list)
    tags: list[T] = Field(default_factory=list)
    combined: list[T] = Field(default_factory=list)
    degraded: bool = False

    @property
    def ids(self) -> list[str]:
        return [item.id for item in self.combined]

