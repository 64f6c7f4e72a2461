"""RepairFlow API: FastAPI application factory."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from repairflow.core.config import Settings, settings
from repairflow.core.exceptions import register_exception_handlers
from repairflow.repositories.memory import InMemoryEstimateRepository, InMemoryReminderRepository
from repairflow.schemas.common import HealthResponse
from repairflow.services.estimates import EstimateWorkflow
from repairflow.services.openai_service import get_ai_service

# v1 routers
from repairflow.routers.v1.estimates import router as estimates_v1_router

logger = logging.getLogger(__name__)


def _configure_logging() -> None:
    """Set up structured logging for the application."""
    level = logging.DEBUG if settings.app_env == "development" else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        stream=sys.stdout,
        force=True,
    )
    # Quiet noisy libraries
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("openai").setLevel(logging.WARNING)


def build_workflow(app_settings: Settings = settings) -> EstimateWorkflow:
    """Wire the workflow to the configured storage backend and AI service."""
    if app_settings.storage_backend == "sql":
        from repairflow.db.base import async_session_factory
        from repairflow.repositories.estimate import SqlEstimateRepository
        from repairflow.repositories.reminder import SqlReminderRepository

        estimates = SqlEstimateRepository(async_session_factory)
        reminders = SqlReminderRepository(async_session_factory)
    else:
        estimates = InMemoryEstimateRepository()
        reminders = InMemoryReminderRepository()

    assistant = get_ai_service() if app_settings.ai_enabled else None
    logger.info(
        "Workflow ready (storage=%s, ai=%s)",
        app_settings.storage_backend,
        "on" if assistant else "off",
    )
    return EstimateWorkflow(
        estimates,
        reminders=reminders,
        assessor=assistant,
        advisor=assistant,
        settings=app_settings,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.storage_backend == "sql":
        from repairflow.db.base import create_schema, engine

        await create_schema(engine)
    if getattr(app.state, "workflow", None) is None:
        app.state.workflow = build_workflow()
    yield
    if settings.storage_backend == "sql":
        from repairflow.db.base import engine

        await engine.dispose()


def create_app(workflow: Optional[EstimateWorkflow] = None) -> FastAPI:
    _configure_logging()

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url="/docs" if settings.app_env == "development" else None,
        redoc_url="/redoc" if settings.app_env == "development" else None,
        lifespan=lifespan,
    )
    app.state.workflow = workflow

    # --- CORS ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.frontend_url],
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # --- Global exception handlers ---
    register_exception_handlers(app)

    # --- v1 API routes (/api/v1/*) ---
    app.include_router(estimates_v1_router, prefix="/api/v1")

    # --- Health check ---
    @app.get("/health", response_model=HealthResponse, tags=["Health"])
    async def health():
        return HealthResponse(app=settings.app_name, env=settings.app_env)

    return app


app = create_app()
