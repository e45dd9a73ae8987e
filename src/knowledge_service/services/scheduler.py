"""
Due-reminder processing.

Each poll cycle moves every due reminder through one lifecycle transition:

    Scheduled -> Due -> Completed            (one-time)
                     -> Rescheduled          (recurring, next occurrence in range)
                     -> Ended                (recurring, next occurrence after end_date)

Per item the notification is attempted first and the transition is written
afterwards whatever the delivery outcome, so delivery is at-most-once and a
failing channel can never leave a reminder stuck in the due set. Items are
isolated from each other: one failure is recorded in the report and the rest
of the cycle continues.

Concurrent scheduler instances coordinate through an advisory claim
(``claimed_by`` / ``claimed_until``) taken before an item is touched. The
claim re-checks that the item is still due, so an instance working from a
stale due set cannot deliver an occurrence another instance already handled.
"""

import asyncio
import logging
import socket
import uuid
from datetime import datetime, timedelta
from typing import Any

from ..clock import Clock, SystemClock
from ..config import SchedulerSettings
from ..errors import KnowledgeServiceError
from ..gateways.notification import ChannelDirectory, NotificationPort
from ..models.knowledge import Reminder
from ..models.responses import PollReport, TransitionOutcome
from ..storage.base import KnowledgeStorage
from ..storage.query import Equals, Query, Range
from ..utils.formatting import format_reminder_message
from ..utils.recurrence import advance_recurrence

logger = logging.getLogger(__name__)


def default_instance_id() -> str:
    return f"{socket.gethostname()}-{uuid.uuid4().hex[:8]}"


def plan_transition(reminder: Reminder, now: datetime) -> tuple[dict[str, Any], TransitionOutcome]:
    """
    Work out the lifecycle transition for a due reminder.

    Returns:
        The storage changes to write (claim released) and the outcome to report

    Raises:
        ConfigurationError: Unsupported recurrence type
        ValidationError: Invalid recurrence interval
    """
    changes: dict[str, Any] = {"claimed_by": None, "claimed_until": None}

    if not reminder.is_recurring:
        changes.update(is_completed=True, completed_at=now)
        return changes, TransitionOutcome(reminder_id=reminder.id, action="completed", notified=False)

    rule = reminder.recurrence
    step = advance_recurrence(reminder.scheduled_for, rule.type, rule.interval, now)

    if rule.end_date is not None and step.next_occurrence > rule.end_date:
        changes.update(is_completed=True, completed_at=now)
        return changes, TransitionOutcome(reminder_id=reminder.id, action="ended", notified=False)

    changes["scheduled_for"] = step.next_occurrence
    return changes, TransitionOutcome(
        reminder_id=reminder.id,
        action="rescheduled",
        notified=False,
        next_scheduled_for=step.next_occurrence,
        skipped_occurrences=step.skipped,
    )


class ReminderScheduler:
    """Processes the due set on demand (``run_once``) or on a fixed interval (``start``)."""

    def __init__(
        self,
        storage: KnowledgeStorage,
        notifier: NotificationPort,
        channels: ChannelDirectory,
        clock: Clock | None = None,
        scheduler_settings: SchedulerSettings | None = None,
    ):
        self.storage = storage
        self.notifier = notifier
        self.channels = channels
        self.clock = clock or SystemClock()
        self.settings = scheduler_settings or SchedulerSettings()
        self.instance_id = self.settings.instance_id or default_instance_id()
        self._lease = timedelta(seconds=self.settings.claim_lease_seconds)
        self._running = False
        self._poll_task: asyncio.Task | None = None
        self._stats = {"cycles": 0, "processed": 0, "errors": 0}
        self.last_report: PollReport | None = None

    async def due_reminders(self, now: datetime) -> list[Reminder]:
        """Non-completed reminders whose trigger time is at or before ``now``."""
        query = Query.on("reminder").where(Equals("is_completed", False), Range("scheduled_for", lte=now))
        return [r for r in await self.storage.find(query) if isinstance(r, Reminder)]

    async def _notify(self, reminder: Reminder, now: datetime) -> tuple[bool, str | None]:
        try:
            channel = await self.channels.resolve(reminder.owner_id, reminder.project_id)
            if channel is None:
                return False, f"no delivery channel for owner {reminder.owner_id}"
            result = await self.notifier.deliver(channel, format_reminder_message(reminder, now))
            return result.success, result.error
        except Exception as e:
            logger.warning(f"Notification for reminder {reminder.id} failed: {e}")
            return False, str(e) or type(e).__name__

    async def _process(self, reminder: Reminder, now: datetime, report: PollReport) -> None:
        try:
            claimed = await self.storage.claim(reminder.id, self.instance_id, now, self._lease)
        except Exception as e:
            logger.error(f"Failed to claim reminder {reminder.id}: {e}")
            report.errors.append(f"{reminder.id}: claim failed: {e}")
            return
        if claimed is None:
            logger.info(f"Reminder {reminder.id} is claimed elsewhere or no longer due; skipping")
            report.claim_conflicts += 1
            return
        # Plan and notify from the claimed copy, not the due-query snapshot
        reminder = claimed

        try:
            changes, outcome = plan_transition(reminder, now)
        except KnowledgeServiceError as e:
            logger.error(f"Reminder {reminder.id} has an invalid recurrence, leaving it unchanged: {e}")
            report.errors.append(f"{reminder.id}: {e}")
            return

        notified, error = await self._notify(reminder, now)
        if notified:
            report.notifications_sent += 1
        else:
            report.notifications_failed += 1
            logger.warning(f"Reminder {reminder.id} was not delivered: {error}")
        outcome.notified = notified
        outcome.notification_error = error

        try:
            await self.storage.update("reminder", reminder.id, changes)
        except Exception as e:
            logger.error(f"Failed to transition reminder {reminder.id}: {e}")
            report.errors.append(f"{reminder.id}: transition failed: {e}")
            return

        if outcome.skipped_occurrences:
            logger.warning(
                f"Reminder {reminder.id} missed {outcome.skipped_occurrences} occurrence(s); "
                f"next at {outcome.next_scheduled_for}"
            )
        report.record(outcome)

    async def run_once(self) -> PollReport:
        """
        Run one poll cycle. Never raises.

        Returns:
            PollReport with per-action counters, delivery counters and errors
        """
        now = self.clock.now()
        report = PollReport(started_at=now)

        try:
            due = await self.due_reminders(now)
        except Exception as e:
            logger.error(f"Due reminder query failed: {e}")
            report.errors.append(f"due query failed: {e}")
            report.finished_at = self.clock.now()
            self._remember(report)
            return report

        semaphore = asyncio.Semaphore(self.settings.max_concurrency)

        async def worker(reminder: Reminder) -> None:
            async with semaphore:
                try:
                    await self._process(reminder, now, report)
                except Exception as e:
                    logger.error(f"Unexpected error processing reminder {reminder.id}: {e}", exc_info=True)
                    report.errors.append(f"{reminder.id}: {e}")

        await asyncio.gather(*(worker(r) for r in due))

        report.finished_at = self.clock.now()
        self._remember(report)
        if due:
            logger.info(f"Poll cycle complete: {report.summary()}")
        return report

    def _remember(self, report: PollReport) -> None:
        self.last_report = report
        self._stats["cycles"] += 1
        self._stats["processed"] += report.processed
        self._stats["errors"] += len(report.errors)

    async def start(self) -> None:
        """Start the background poll loop."""
        if self._running:
            logger.warning("Reminder scheduler already running")
            return

        self._running = True
        self._poll_task = asyncio.create_task(self._poll_loop())
        logger.info(
            f"Reminder scheduler started (instance={self.instance_id}, "
            f"interval={self.settings.poll_interval_seconds}s)"
        )

    async def stop(self) -> None:
        """Stop the poll loop after the current cycle is cancelled."""
        self._running = False
        if self._poll_task:
            self._poll_task.cancel()
            try:
                await self._poll_task
            except asyncio.CancelledError:
                pass
            self._poll_task = None
        logger.info("Reminder scheduler stopped")

    async def _poll_loop(self) -> None:
        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Poll loop error: {e}")
            await asyncio.sleep(self.settings.poll_interval_seconds)

    @property
    def running(self) -> bool:
        return self._running

    def get_stats(self) -> dict[str, Any]:
        """Get scheduler statistics."""
        return {"instance_id": self.instance_id, "running": self._running, **self._stats}
