from __future__ import annotations  # FastAPI server exposing the adaptive interview channel

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.routes import router
from config.settings import settings
from flow_manager.orchestrator import InterviewOrchestrator, build_orchestrator
from services.profiles import InMemoryProfileDirectory, ProfileDirectory
from storage.migrate import migrate


logger = logging.getLogger(__name__)


def _default_profiles() -> ProfileDirectory:  # Profiles file when configured, otherwise empty
    if settings.PROFILES_PATH:
        return InMemoryProfileDirectory.from_json(settings.PROFILES_PATH)
    logger.warning("PROFILES_PATH not set; no resumes or jobs are available")
    return InMemoryProfileDirectory()


def create_app(
    orchestrator: Optional[InterviewOrchestrator] = None,
    *,
    profiles: Optional[ProfileDirectory] = None,
) -> FastAPI:  # Build the FastAPI app around an orchestrator
    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        migrate(settings.DB_PATH)
        yield

    app = FastAPI(title="Adaptive Interview Engine", lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    if orchestrator is None:
        orchestrator = build_orchestrator(settings, profiles or _default_profiles())
    app.state.orchestrator = orchestrator
    app.include_router(router)
    return app


app = create_app()
