"""Tool and request input models.

Pydantic models shared by the MCP tools and the HTTP routes. Each handler
validates its inputs by constructing the corresponding model; owner scoping,
range clamping and recurrence assembly live here as declarative constraints.
"""

from __future__ import annotations

from typing import Any, Self

from pydantic import BaseModel, Field, model_validator

from .knowledge import MemoryCreate, OwnerContext, Recurrence, ReminderCreate
from .validators import (
    ALL_SEARCH_METHODS,
    ItemId,
    PositiveInt,
    RecurrenceType,
    SearchMethods,
    Tags,
    UTCDateTime,
)


class OwnerParams(BaseModel):
    """Owner scope carried by every request."""

    owner_id: ItemId
    project_id: ItemId
    display_name: str | None = None

    @property
    def owner(self) -> OwnerContext:
        return OwnerContext(owner_id=self.owner_id, project_id=self.project_id, display_name=self.display_name)


class CreateReminderParams(OwnerParams):
    """Validated input for ``create_reminder``."""

    content: str = Field(min_length=1)
    scheduled_for: UTCDateTime
    summary: str | None = None
    tags: Tags = []
    recurrence_type: RecurrenceType = "none"
    recurrence_interval: PositiveInt = 1
    end_date: UTCDateTime | None = None
    source_message_id: str | None = None

    @model_validator(mode="after")
    def end_date_requires_recurrence(self) -> Self:
        if self.end_date is not None and self.recurrence_type == "none":
            raise ValueError("end_date only applies to recurring reminders")
        return self

    def to_create(self) -> ReminderCreate:
        return ReminderCreate(
            content=self.content,
            scheduled_for=self.scheduled_for,
            summary=self.summary,
            tags=self.tags,
            recurrence=Recurrence(
                type=self.recurrence_type, interval=self.recurrence_interval, end_date=self.end_date
            ),
            source_message_id=self.source_message_id,
        )


class CancelReminderParams(OwnerParams):
    reminder_id: ItemId
    reason: str | None = None


class ListUpcomingParams(OwnerParams):
    limit: int = Field(default=10, ge=1, le=50)
    days_ahead: int | None = Field(default=None, ge=1, le=366)


class SearchParams(OwnerParams):
    """Validated input for the reminder and memory search tools."""

    query: str = Field(min_length=1)
    limit: int = Field(default=5, ge=1, le=50)
    methods: SearchMethods = ALL_SEARCH_METHODS
    include_completed: bool = False


class StoreMemoryParams(OwnerParams):
    """Validated input for ``store_memory``; ``smart`` routes through deduplication."""

    content: str = Field(min_length=1)
    summary: str | None = None
    tags: Tags = []
    metadata: dict[str, Any] | None = None
    file_reference: str | None = None
    source_message_id: str | None = None
    smart: bool = True

    def to_create(self) -> MemoryCreate:
        return MemoryCreate(
            content=self.content,
            summary=self.summary,
            tags=self.tags,
            metadata=self.metadata or {},
            file_reference=self.file_reference,
            source_message_id=self.source_message_id,
        )


class StoreMemoriesParams(OwnerParams):
    """Batch smart-create, processed in order."""

    memories: list[MemoryCreate] = Field(min_length=1, max_length=50)
