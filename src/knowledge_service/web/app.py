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
FastAPI application for the knowledge service HTTP interface.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI

from .. import __version__
from ..bootstrap import Application, create_application
from ..config import Settings
from ..config import settings as default_settings
from .api import memories, reminders
from .dependencies import get_application, set_application

logger = logging.getLogger(__name__)


def create_app(settings: Settings | None = None, application: Application | None = None) -> FastAPI:
    """
    Build the HTTP app.

    When ``application`` is given it is used as-is and left open on shutdown;
    otherwise one is created from ``settings`` during startup and closed on
    shutdown. The reminder poll loop starts when ``http.start_scheduler`` is set.
    """
    settings = settings or (application.settings if application else default_settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        owned = application is None
        current = application or await create_application(settings)
        set_application(current)
        if settings.http.start_scheduler:
            await current.scheduler.start()
        try:
            yield
        finally:
            if owned:
                await current.close()
            else:
                await current.scheduler.stop()
            set_application(None)

    app = FastAPI(title="Knowledge Service", version=__version__, lifespan=lifespan)
    app.include_router(reminders.router, prefix="/api")
    app.include_router(memories.router, prefix="/api")

    @app.get("/api/health", tags=["health"])
    async def health(current: Application = Depends(get_application)) -> dict:
        return {
            "status": "healthy",
            "version": __version__,
            "storage": type(current.storage).__name__,
            "scheduler": current.scheduler.get_stats(),
        }

    return app
