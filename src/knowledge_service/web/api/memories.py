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
Memory endpoints for the HTTP interface.
"""

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from ...errors import NotFoundError
from ...models.knowledge import OwnerContext
from ...models.responses import BatchItemResult, MemoryStats, SmartCreateResult
from ...models.tool_inputs import SearchParams, StoreMemoriesParams, StoreMemoryParams
from ...services.knowledge_store import KnowledgeStore
from ...utils.formatting import serialize_find_results, serialize_item
from ..dependencies import get_owner, get_store

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/memories", response_model=SmartCreateResult, tags=["memories"])
async def store_memory(
    request: StoreMemoryParams,
    store: KnowledgeStore = Depends(get_store),
) -> SmartCreateResult:
    """
    Store a memory.

    With ``smart`` set (the default) the decision oracle may turn the write
    into an update of, or a skip in favour of, an existing similar memory.
    """
    if request.smart:
        return await store.smart_create_memory(request.to_create(), request.owner)

    memory = await store.create_memory(request.to_create(), request.owner)
    return SmartCreateResult(action="created", item_id=memory.id, reason="Direct creation")


@router.post("/memories/batch", response_model=list[BatchItemResult], tags=["memories"])
async def store_memories(
    request: StoreMemoriesParams,
    store: KnowledgeStore = Depends(get_store),
) -> list[BatchItemResult]:
    """Smart-create memories in order; one item failing does not stop the rest."""
    results = await store.smart_create_memories(request.memories, request.owner)
    failed = sum(1 for r in results if not r.success)
    if failed:
        logger.warning(f"Batch store: {failed}/{len(results)} item(s) failed")
    return results


@router.post("/memories/search", tags=["memories"])
async def search_memories(
    request: SearchParams,
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    results = await store.search_memories(request.query, request.owner, limit=request.limit, methods=request.methods)
    return serialize_find_results(results)


@router.get("/memories/by-file", tags=["memories"])
async def memories_by_file(
    file_reference: str = Query(..., min_length=1),
    owner: OwnerContext = Depends(get_owner),
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    memories = await store.memories_by_file(file_reference, owner)
    return {"memories": [serialize_item(m) for m in memories], "count": len(memories)}


@router.get("/memories/stats", response_model=MemoryStats, tags=["memories"])
async def memory_stats(
    owner: OwnerContext = Depends(get_owner),
    store: KnowledgeStore = Depends(get_store),
) -> MemoryStats:
    return await store.memory_stats(owner)


@router.get("/memories/{memory_id}", tags=["memories"])
async def get_memory(
    memory_id: str,
    owner: OwnerContext = Depends(get_owner),
    store: KnowledgeStore = Depends(get_store),
) -> dict[str, Any]:
    try:
        memory = await store.get_memory(memory_id, owner)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    return serialize_item(memory)
