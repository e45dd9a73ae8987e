"""Rendering of reminders for notifications, plus JSON-safe serialization for tool and API output."""

from datetime import datetime, timedelta
from typing import Any

from ..models.knowledge import FindResults, KnowledgeItem, Recurrence, Reminder

_UNIT_NAMES = {"daily": "day", "weekly": "week", "monthly": "month", "yearly": "year"}


def format_timestamp(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M %Z").strip()


def describe_recurrence(recurrence: Recurrence | None) -> str:
    """``"One-time"``, ``"Every week"``, ``"Every 3 months until 2026-12-31 00:00 UTC"``."""
    if recurrence is None or not recurrence.is_recurring:
        return "One-time"
    unit = _UNIT_NAMES[recurrence.type]
    text = f"Every {unit}" if recurrence.interval == 1 else f"Every {recurrence.interval} {unit}s"
    if recurrence.end_date is not None:
        text += f" until {format_timestamp(recurrence.end_date)}"
    return text


def time_until(target: datetime, now: datetime) -> str:
    """Coarse countdown: ``"Due now"``, ``"3 days"``, ``"5 hours"``, ``"12 minutes"``."""
    delta = target - now
    if delta <= timedelta(0):
        return "Due now"
    days = delta.days
    hours = delta.seconds // 3600
    minutes = (delta.seconds % 3600) // 60
    if days > 0:
        return f"{days} day{'s' if days != 1 else ''}"
    if hours > 0:
        return f"{hours} hour{'s' if hours != 1 else ''}"
    return f"{minutes} minute{'s' if minutes != 1 else ''}"


def format_reminder_message(reminder: Reminder, now: datetime) -> str:
    """Render the notification text delivered when a reminder fires."""
    delay_minutes = int((now - reminder.scheduled_for).total_seconds() // 60)
    header = "Reminder"
    if delay_minutes > 0:
        header += f" ({delay_minutes} min late)"

    lines = [f"*{header}*", "", reminder.content]
    if reminder.is_recurring:
        lines += ["", f"_{describe_recurrence(reminder.recurrence)}_"]
    if reminder.tags:
        lines += ["", ", ".join(reminder.tags)]
    lines += ["", f"Scheduled: {format_timestamp(reminder.scheduled_for)}"]
    return "\n".join(lines)


def group_reminders_by_time(reminders: list[Reminder], now: datetime) -> dict[str, list[Reminder]]:
    """Bucket reminders into overdue / today / tomorrow / this_week / later."""
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = today + timedelta(days=1)
    day_after = today + timedelta(days=2)
    next_week = today + timedelta(days=7)

    groups: dict[str, list[Reminder]] = {"overdue": [], "today": [], "tomorrow": [], "this_week": [], "later": []}
    for reminder in reminders:
        at = reminder.scheduled_for
        if at < now:
            groups["overdue"].append(reminder)
        elif at < tomorrow:
            groups["today"].append(reminder)
        elif at < day_after:
            groups["tomorrow"].append(reminder)
        elif at < next_week:
            groups["this_week"].append(reminder)
        else:
            groups["later"].append(reminder)
    return groups


def serialize_item(item: KnowledgeItem) -> dict[str, Any]:
    """JSON-safe dict for tool and API responses; embeddings are omitted."""
    data = item.model_dump(mode="json", exclude={"embedding", "claimed_by", "claimed_until"})
    data["kind"] = item.kind
    return data


def serialize_find_results(results: FindResults) -> dict[str, Any]:
    return {
        "semantic": [
            {"item": serialize_item(r.item), "similarity": r.similarity, "distance": r.distance}
            for r in results.semantic
        ],
        "text": [serialize_item(item) for item in results.text],
        "tags": [serialize_item(item) for item in results.tags],
        "combined": [serialize_item(item) for item in results.combined],
        "degraded": results.degraded,
        "count": len(results.combined),
    }
