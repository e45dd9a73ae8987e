"""
Abstract base class for knowledge storage backends.

Backends store reminders and memories in separate collections keyed by
``ItemKind`` and evaluate backend-neutral ``Query`` objects. Items crossing
the boundary are always copies; mutating a returned item never changes the
stored one.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any

from ..models.knowledge import KnowledgeItem, Reminder, SearchResult
from ..models.validators import ItemKind
from .query import Query

logger = logging.getLogger(__name__)


def apply_changes(item: KnowledgeItem, changes: dict[str, Any]) -> KnowledgeItem:
    """Return a re-validated copy of ``item`` with ``changes`` applied.

    Running the merged data back through the model keeps invariants such as
    ``is_recurring`` and ``completed_at`` enforced on every update.
    """
    unknown = set(changes) - set(type(item).model_fields)
    if unknown:
        raise ValueError(f"Unknown fields for {item.kind}: {sorted(unknown)}")
    return type(item).model_validate({**item.model_dump(), **changes})


def claimable(current: KnowledgeItem | None, claimant: str, now: datetime) -> bool:
    """Whether ``claimant`` may claim ``current`` at ``now``."""
    if not isinstance(current, Reminder) or current.is_completed:
        return False
    if current.scheduled_for > now:
        logger.debug(f"Reminder {current.id} is no longer due (next at {current.scheduled_for})")
        return False
    if current.claim_active(now) and current.claimed_by != claimant:
        logger.debug(f"Reminder {current.id} already claimed by {current.claimed_by}")
        return False
    return True


class KnowledgeStorage(ABC):
    """Abstract base class for knowledge storage implementations."""

    @abstractmethod
    async def initialize(self) -> None:
        """Initialize the storage backend."""

    @abstractmethod
    async def insert(self, item: KnowledgeItem) -> KnowledgeItem:
        """Persist a new item and return the stored copy."""

    @abstractmethod
    async def get(self, kind: ItemKind, item_id: str) -> KnowledgeItem | None:
        """Fetch one item by id, or None if it does not exist."""

    @abstractmethod
    async def update(self, kind: ItemKind, item_id: str, changes: dict[str, Any]) -> KnowledgeItem | None:
        """Apply a partial update and return the new stored copy, or None if missing."""

    @abstractmethod
    async def find(self, query: Query) -> list[KnowledgeItem]:
        """Return items matching every predicate, ordered and limited per the query."""

    @abstractmethod
    async def nearest(self, query: Query) -> list[SearchResult]:
        """
        Vector-nearest search.

        Only items with an embedding qualify. Results are ordered by ascending
        cosine distance, filtered by the query predicates and truncated to the
        query limit.
        """

    async def count(self, query: Query) -> int:
        """Number of items matching the query predicates (limit ignored)."""
        return len(await self.find(query.limit(None)))

    async def claim(
        self, reminder_id: str, claimant: str, now: datetime, lease: timedelta
    ) -> Reminder | None:
        """
        Take an advisory claim on a reminder.

        The claim succeeds when the reminder exists, is not completed, is still
        due at ``now``, and is either unclaimed, claimed by ``claimant`` already,
        or held by a claim that expired before ``now``. Backends with atomic
        primitives override this; the default is a read-check-write.

        Returns:
            The freshly read reminder carrying the new claim, or None if the
            claim was refused
        """
        current = await self.get("reminder", reminder_id)
        if not claimable(current, claimant, now):
            return None
        updated = await self.update(
            "reminder", reminder_id, {"claimed_by": claimant, "claimed_until": now + lease}
        )
        return updated if isinstance(updated, Reminder) else None

    async def close(self) -> None:
        """Release backend resources. Safe to call multiple times."""
