#!/usr/bin/env python3
"""MCP server for the knowledge service.

FastMCP tools with Pydantic-validated inputs. Each tool handler constructs
an input model for validation and maps domain errors to
``{"success": False, "error": ...}`` responses.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any

from fastmcp import Context, FastMCP
from pydantic import ValidationError

from .bootstrap import Application, create_application
from .config import settings
from .errors import ConfigurationError, NotFoundError
from .errors import ValidationError as KnowledgeValidationError
from .models.tool_inputs import (
    CancelReminderParams,
    CreateReminderParams,
    ListUpcomingParams,
    SearchParams,
    StoreMemoriesParams,
    StoreMemoryParams,
)
from .services.knowledge_store import KnowledgeStore
from .utils.formatting import (
    describe_recurrence,
    group_reminders_by_time,
    serialize_find_results,
    serialize_item,
    time_until,
)

logger = logging.getLogger(__name__)


@dataclass
class MCPServerContext:
    """Application context for the MCP server."""

    app: Application

    @property
    def store(self) -> KnowledgeStore:
        return self.app.store


@asynccontextmanager
async def mcp_server_lifespan(server: FastMCP) -> AsyncIterator[MCPServerContext]:
    """Create the application on startup and close it on shutdown."""
    app = await create_application(settings)
    try:
        yield MCPServerContext(app=app)
    finally:
        logger.info("Shutting down knowledge service components...")
        await app.close()


mcp = FastMCP("Knowledge Service", lifespan=mcp_server_lifespan)


def _store(ctx: Context) -> KnowledgeStore:
    return ctx.request_context.lifespan_context.store


def _error(e: Exception) -> dict[str, Any]:
    return {"success": False, "error": str(e)}


# =============================================================================
# REMINDERS
# =============================================================================


@mcp.tool()
async def create_reminder(
    owner_id: str,
    project_id: str,
    content: str,
    scheduled_for: str,
    ctx: Context,
    summary: str | None = None,
    tags: str | list[str] | None = None,
    recurrence_type: str = "none",
    recurrence_interval: int = 1,
    end_date: str | None = None,
    source_message_id: str | None = None,
) -> dict[str, Any]:
    """Schedule a one-time or recurring reminder.

    Args:
        owner_id: Owner the reminder belongs to
        project_id: Project scope of the owner
        content: What to remind about
        scheduled_for: ISO-8601 trigger time; naive values are UTC
        summary: Optional short summary
        tags: Labels, ["tag1", "tag2"] or "tag1,tag2"
        recurrence_type: "none", "daily", "weekly", "monthly" or "yearly"
        recurrence_interval: Units between occurrences (>= 1)
        end_date: Last allowed occurrence for recurring reminders
        source_message_id: Id of the message the reminder came from

    Returns:
        {success, reminder} or {success: false, error}. A recurring reminder
        with a past anchor is advanced to its next occurrence.
    """
    try:
        params = CreateReminderParams(
            owner_id=owner_id,
            project_id=project_id,
            content=content,
            scheduled_for=scheduled_for,
            summary=summary,
            tags=tags,
            recurrence_type=recurrence_type,
            recurrence_interval=recurrence_interval,
            end_date=end_date,
            source_message_id=source_message_id,
        )
        reminder = await _store(ctx).create_reminder(params.to_create(), params.owner)
    except (ValidationError, KnowledgeValidationError, ConfigurationError) as e:
        return _error(e)

    return {
        "success": True,
        "message": f"Reminder scheduled for {reminder.scheduled_for.isoformat()}",
        "reminder": serialize_item(reminder),
        "recurrence": describe_recurrence(reminder.recurrence),
    }


@mcp.tool()
async def cancel_reminder(
    owner_id: str,
    project_id: str,
    reminder_id: str,
    ctx: Context,
    reason: str | None = None,
) -> dict[str, Any]:
    """Cancel a reminder so it never fires again.

    Returns:
        {success, reminder} or {success: false, error} when the reminder does
        not exist, belongs to someone else, or is already completed.
    """
    try:
        params = CancelReminderParams(owner_id=owner_id, project_id=project_id, reminder_id=reminder_id, reason=reason)
        reminder = await _store(ctx).cancel_reminder(params.reminder_id, params.owner, params.reason)
    except (ValidationError, KnowledgeValidationError, NotFoundError) as e:
        return _error(e)
    return {"success": True, "message": "Reminder cancelled", "reminder": serialize_item(reminder)}


@mcp.tool()
async def list_upcoming_reminders(
    owner_id: str,
    project_id: str,
    ctx: Context,
    limit: int = 10,
    days_ahead: int | None = None,
) -> dict[str, Any]:
    """List active reminders scheduled after now, soonest first, grouped by when they fire."""
    try:
        params = ListUpcomingParams(owner_id=owner_id, project_id=project_id, limit=limit, days_ahead=days_ahead)
    except ValidationError as e:
        return _error(e)

    store = _store(ctx)
    reminders = await store.list_upcoming_reminders(params.owner, limit=params.limit, days_ahead=params.days_ahead)
    now = store.clock.now()
    groups = group_reminders_by_time(reminders, now)
    return {
        "success": True,
        "count": len(reminders),
        "reminders": [
            {**serialize_item(r), "due_in": time_until(r.scheduled_for, now)} for r in reminders
        ],
        "groups": {name: [r.id for r in items] for name, items in groups.items() if items},
    }


@mcp.tool()
async def search_reminders(
    owner_id: str,
    project_id: str,
    query: str,
    ctx: Context,
    limit: int = 5,
    methods: str | list[str] | None = None,
    include_completed: bool = False,
) -> dict[str, Any]:
    """Hybrid search over reminders.

    Args:
        query: Free-text query
        limit: Maximum results (1-50)
        methods: Subset of "semantic", "text", "tags" (default: all)
        include_completed: Also search completed reminders

    Returns:
        {success, semantic, text, tags, combined, degraded, count}
    """
    try:
        params = SearchParams(
            owner_id=owner_id,
            project_id=project_id,
            query=query,
            limit=limit,
            methods=methods,
            include_completed=include_completed,
        )
    except ValidationError as e:
        return _error(e)

    results = await _store(ctx).search_reminders(
        params.query,
        params.owner,
        limit=params.limit,
        methods=params.methods,
        include_completed=params.include_completed,
    )
    return {"success": True, **serialize_find_results(results)}


# =============================================================================
# MEMORIES
# =============================================================================


@mcp.tool()
async def search_memory(
    owner_id: str,
    project_id: str,
    query: str,
    ctx: Context,
    limit: int = 5,
    methods: str | list[str] | None = None,
) -> dict[str, Any]:
    """Hybrid search over memories (semantic, text and tag overlap).

    Returns:
        {success, semantic, text, tags, combined, degraded, count}
    """
    try:
        params = SearchParams(owner_id=owner_id, project_id=project_id, query=query, limit=limit, methods=methods)
    except ValidationError as e:
        return _error(e)

    results = await _store(ctx).search_memories(params.query, params.owner, limit=params.limit, methods=params.methods)
    return {"success": True, **serialize_find_results(results)}


@mcp.tool()
async def store_memory(
    owner_id: str,
    project_id: str,
    content: str,
    ctx: Context,
    summary: str | None = None,
    tags: str | list[str] | None = None,
    metadata: dict[str, Any] | None = None,
    file_reference: str | None = None,
    source_message_id: str | None = None,
    smart: bool = True,
) -> dict[str, Any]:
    """Store a memory about the owner.

    With ``smart`` (default) similar memories are looked up first and the
    memory may update or be merged into an existing one instead.

    Returns:
        {success, action, memory_id, reason}
    """
    try:
        params = StoreMemoryParams(
            owner_id=owner_id,
            project_id=project_id,
            content=content,
            summary=summary,
            tags=tags,
            metadata=metadata,
            file_reference=file_reference,
            source_message_id=source_message_id,
            smart=smart,
        )
    except ValidationError as e:
        return _error(e)

    store = _store(ctx)
    if not params.smart:
        memory = await store.create_memory(params.to_create(), params.owner)
        return {"success": True, "action": "created", "memory_id": memory.id, "reason": "Direct creation"}

    result = await store.smart_create_memory(params.to_create(), params.owner)
    return {
        "success": True,
        "action": result.action,
        "memory_id": result.item_id,
        "reason": result.reason,
        "confidence": result.confidence,
        "similar_ids": result.similar_ids,
    }


@mcp.tool()
async def store_memories(
    owner_id: str,
    project_id: str,
    memories: list[dict[str, Any]],
    ctx: Context,
) -> dict[str, Any]:
    """Smart-create several memories in order; later items see earlier ones.

    Returns:
        {success, results: [{index, success, result | error}]}
    """
    try:
        params = StoreMemoriesParams(owner_id=owner_id, project_id=project_id, memories=memories)
    except ValidationError as e:
        return _error(e)

    results = await _store(ctx).smart_create_memories(params.memories, params.owner)
    return {"success": all(r.success for r in results), "results": [r.model_dump(mode="json") for r in results]}


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


def main():
    """Run the MCP server over stdio or streamable HTTP."""
    logging.basicConfig(level=settings.http.log_level.upper())
    http = settings.http
    if http.mcp_transport == "stdio":
        logger.info("Starting knowledge service MCP server (stdio)")
        mcp.run(transport="stdio")
    else:
        logger.info(f"Starting knowledge service MCP server on {http.host}:{http.port}")
        mcp.run(transport="http", host=http.host, port=http.port, stateless_http=True)


if __name__ == "__main__":
    main()
