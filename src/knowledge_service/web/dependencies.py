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
FastAPI dependencies for the HTTP interface.
"""

import logging

from fastapi import Depends, HTTPException, Query

from ..bootstrap import Application
from ..models.knowledge import OwnerContext
from ..services.knowledge_store import KnowledgeStore

logger = logging.getLogger(__name__)

# Global application instance
_application: Application | None = None


def set_application(application: Application | None) -> None:
    """Set (or clear) the global application instance."""
    global _application
    _application = application


def get_application() -> Application:
    """Get the global application instance."""
    if _application is None:
        raise HTTPException(status_code=503, detail="Knowledge service not initialized")
    return _application


def get_store(application: Application = Depends(get_application)) -> KnowledgeStore:
    return application.store


def get_owner(
    owner_id: str = Query(..., min_length=1, description="Owner the request acts for"),
    project_id: str = Query(..., min_length=1, description="Project scope of the owner"),
) -> OwnerContext:
    """Owner scope for read endpoints, taken from query parameters."""
    return OwnerContext(owner_id=owner_id, project_id=project_id)
