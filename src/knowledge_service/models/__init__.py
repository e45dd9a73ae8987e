"""Pydantic models for knowledge items, verdicts and reports."""

from .decisions import CreateVerdict, DecisionRequest, SkipVerdict, UpdateVerdict, parse_verdict
from .knowledge import (
    FindResults,
    KnowledgeItem,
    Memory,
    MemoryCreate,
    OwnerContext,
    Recurrence,
    Reminder,
    ReminderCreate,
    SearchResult,
)
from .responses import BatchItemResult, MemoryStats, PollReport, SmartCreateResult, TransitionOutcome

__all__ = [
    "BatchItemResult",
    "CreateVerdict",
    "DecisionRequest",
    "FindResults",
    "KnowledgeItem",
    "Memory",
    "MemoryCreate",
    "MemoryStats",
    "OwnerContext",
    "PollReport",
    "Recurrence",
    "Reminder",
    "ReminderCreate",
    "SearchResult",
    "SkipVerdict",
    "SmartCreateResult",
    "TransitionOutcome",
    "UpdateVerdict",
    "parse_verdict",
]
