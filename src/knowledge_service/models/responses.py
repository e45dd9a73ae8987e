"""Result models returned by the scheduler, the arbiter and the facade."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from .validators import NonNegativeInt, SmartAction, TransitionAction


class TransitionOutcome(BaseModel):
    """What happened to a single due reminder during a poll cycle."""

    reminder_id: str
    action: TransitionAction
    notified: bool
    next_scheduled_for: datetime | None = None
    skipped_occurrences: NonNegativeInt = 0
    notification_error: str | None = None


class PollReport(BaseModel):
    """Aggregated result of one poll cycle."""

    processed: NonNegativeInt = 0
    completed: NonNegativeInt = 0
    rescheduled: NonNegativeInt = 0
    ended: NonNegativeInt = 0
    notifications_sent: NonNegativeInt = 0
    notifications_failed: NonNegativeInt = 0
    skipped_occurrences: NonNegativeInt = 0
    claim_conflicts: NonNegativeInt = 0
    errors: list[str] = Field(default_factory=list)
    outcomes: list[TransitionOutcome] = Field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    def record(self, outcome: TransitionOutcome) -> None:
        self.processed += 1
        self.outcomes.append(outcome)
        if outcome.action == "completed":
            self.completed += 1
        elif outcome.action == "rescheduled":
            self.rescheduled += 1
        elif outcome.action == "ended":
            self.ended += 1
        self.skipped_occurrences += outcome.skipped_occurrences

    def summary(self) -> dict[str, Any]:
        """Counters only, for logs and lightweight responses."""
        return self.model_dump(exclude={"outcomes", "started_at", "finished_at"})


class SmartCreateResult(BaseModel):
    """Outcome of a deduplicating create."""

    action: SmartAction
    item_id: str
    reason: str
    confidence: float | None = None
    similar_ids: list[str] = Field(default_factory=list)


class BatchItemResult(BaseModel):
    """Per-candidate result within ``smart_create_multiple``."""

    index: int
    success: bool
    result: SmartCreateResult | None = None
    error: str | None = None


class MemoryStats(BaseModel):
    total_memories: NonNegativeInt
    memories_with_files: NonNegativeInt
    memories_with_tags: NonNegativeInt
    top_tags: list[tuple[str, int]] = Field(default_factory=list)
