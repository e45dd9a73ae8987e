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
Storage backend factory for the knowledge service.

Creates and initializes the configured storage backend.
"""

import logging

from ..config import StorageSettings
from .base import KnowledgeStorage
from .memory_store import InMemoryStorage
from .qdrant_storage import QdrantStorage

logger = logging.getLogger(__name__)


async def create_storage_instance(storage_settings: StorageSettings, dimensions: int) -> KnowledgeStorage:
    """
    Create and initialize the storage backend instance.

    Args:
        storage_settings: Backend selection and Qdrant connection settings
        dimensions: Embedding vector size the collections are created with

    Returns:
        Initialized storage backend
    """
    if storage_settings.backend == "memory":
        storage: KnowledgeStorage = InMemoryStorage()
        logger.info("Using in-memory storage backend (data is not persisted)")
    else:
        logger.info("Creating Qdrant storage backend instance...")
        collections = {
            "reminder": storage_settings.reminders_collection,
            "memory": storage_settings.memories_collection,
        }
        # Determine mode: server (URL) or embedded (path)
        if storage_settings.url:
            storage = QdrantStorage(
                vector_size=dimensions,
                url=storage_settings.url,
                collections=collections,
                scroll_batch_size=storage_settings.scroll_batch_size,
            )
            logger.info(f"Initialized Qdrant storage in server mode: {storage_settings.url}")
        else:
            storage = QdrantStorage(
                vector_size=dimensions,
                storage_path=storage_settings.storage_path or "./data/qdrant",
                collections=collections,
                scroll_batch_size=storage_settings.scroll_batch_size,
            )
            logger.info(f"Initialized Qdrant storage in embedded mode: {storage_settings.storage_path}")

    await storage.initialize()
    return storage
