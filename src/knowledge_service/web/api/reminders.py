# Copyright 2024 Heinrich Krupp
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Reminder endpoints for the HTTP interface.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from ...errors import ConfigurationError, NotFoundError, ValidationError
from ...models.knowledge import OwnerContext
from ...models.responses import PollReport
from ...models.tool_inputs import CreateReminderParams, OwnerParams, SearchParams
from ...services.knowledge_store import KnowledgeStore
from ...utils.formatting import describe_recurrence, serialize_find_results, serialize_item, time_until
from ..dependencies import get_owner, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


class CancelReminderRequest(OwnerParams):
    """Request body for cancelling a reminder."""

    reason: str | None = None


@router.post("/reminders", status_code=201, tags=["reminders"])
async def create_reminder(
    request: CreateReminderParams,
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    """
    Schedule a reminder.

    A one-time reminder in the past is rejected with 422; a recurring one is
    advanced to its next future occurrence.
    """
    try:
        reminder = await store.create_reminder(request.to_create(), request.owner)
    except (ValidationError, ConfigurationError) as e:
        raise HTTPException(status_code=422, detail=str(e)) from e

    return {
        "success": True,
        "reminder": serialize_item(reminder),
        "recurrence": describe_recurrence(reminder.recurrence),
    }


@router.get("/reminders/upcoming", tags=["reminders"])
async def list_upcoming_reminders(
    limit: int = Query(10, ge=1, le=50),
    days_ahead: int | None = Query(None, ge=1, le=366),
    owner: OwnerContext = Depends(get_owner),
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    reminders = await store.list_upcoming_reminders(owner, limit=limit, days_ahead=days_ahead)
    now = store.clock.now()
    return {
        "reminders": [{**serialize_item(r), "due_in": time_until(r.scheduled_for, now)} for r in reminders],
        "count": len(reminders),
    }


@router.post("/reminders/search", tags=["reminders"])
async def search_reminders(
    request: SearchParams,
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    """Hybrid search over the owner's reminders."""
    results = await store.search_reminders(
        request.query,
        request.owner,
        limit=request.limit,
        methods=request.methods,
        include_completed=request.include_completed,
    )
    return serialize_find_results(results)


@router.post("/reminders/process-due", response_model=PollReport, tags=["reminders"])
async def process_due_reminders(store: KnowledgeStore = Depends(get_store)) -> PollReport:
    """Run one scheduler poll cycle now and return its report."""
    report = await store.process_due_reminders()
    logger.info(f"Manual poll processed {report.processed} reminder(s)")
    return report


@router.get("/reminders/{reminder_id}", tags=["reminders"])
async def get_reminder(
    reminder_id: str,
    owner: OwnerContext = Depends(get_owner),
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    try:
        reminder = await store.get_reminder(reminder_id, owner)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return serialize_item(reminder)


@router.post("/reminders/{reminder_id}/cancel", tags=["reminders"])
async def cancel_reminder(
    reminder_id: str,
    request: CancelReminderRequest,
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    """Cancel a reminder. 404 when missing or foreign, 409 when already completed."""
    try:
        reminder = await store.cancel_reminder(reminder_id, request.owner, request.reason)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValidationError as e:
        raise HTTPException(status_code=409, detail=str(e)) from e
    return {"success": True, "reminder": serialize_item(reminder)}
