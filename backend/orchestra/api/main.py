"""
Orchestra - FastAPI Application
===============================

Main application factory with all routers and middleware.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from orchestra.api import epics, tasks, webhooks
from orchestra.core.config import settings
from orchestra.core.database import close_db, engine, init_db
from orchestra.core.log_config import configure_logging
from orchestra.core.orchestration.errors import OrchestraError
from orchestra.core.orchestration.jobs import build_job_handlers
from orchestra.core.orchestration.notifications import get_broadcaster
from orchestra.core.orchestration.queue import Worker, create_job_queue
from orchestra.core.schemas import ErrorResponse, HealthResponse

configure_logging()

logger = structlog.get_logger()


# ==========================================================================
# Lifespan
# ==========================================================================

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """
    Application lifespan handler.

    Startup:
    - Initialize database
    - Create the job queue (and an in-process worker for the memory backend)

    Shutdown:
    - Stop the worker, close the queue and database connections
    """
    logger.info("starting_orchestra", version=settings.APP_VERSION, queue=settings.QUEUE_BACKEND)

    await init_db()
    logger.info("database_initialized")

    queue = create_job_queue()
    app.state.job_queue = queue

    worker = None
    worker_task = None
    if settings.QUEUE_BACKEND == "memory":
        # Redis deployments run `python -m orchestra.worker` separately.
        worker = Worker(queue, build_job_handlers(queue, notifier=get_broadcaster()))
        worker_task = asyncio.create_task(worker.run())
        logger.info("in_process_worker_started")

    yield

    logger.info("shutting_down_orchestra")
    if worker is not None:
        worker.stop()
        worker_task.cancel()
        try:
            await worker_task
        except asyncio.CancelledError:
            pass
    await queue.close()
    await close_db()
    logger.info("shutdown_complete")


# ==========================================================================
# App Factory
# ==========================================================================

def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Orchestrates coding-agent tasks from dispatch to merged pull request",
        docs_url="/docs" if settings.is_development else None,
        redoc_url="/redoc" if settings.is_development else None,
        openapi_url="/openapi.json" if settings.is_development else None,
        lifespan=lifespan,
    )

    # ==========================================================================
    # Middleware
    # ==========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ==========================================================================
    # Exception Handlers
    # ==========================================================================

    @app.exception_handler(OrchestraError)
    async def orchestra_exception_handler(request: Request, exc: OrchestraError) -> JSONResponse:
        """Render orchestration errors with their own status code."""
        logger.warning(
            "request_failed",
            path=request.url.path,
            method=request.method,
            code=exc.code,
            error=exc.message,
        )
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Handle uncaught exceptions."""
        logger.error(
            "unhandled_exception",
            exc_info=exc,
            path=request.url.path,
            method=request.method,
        )

        if settings.is_development:
            detail = str(exc)
        else:
            detail = "An unexpected error occurred"

        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=ErrorResponse(
                error="Internal Server Error",
                detail=detail,
                code="INTERNAL_ERROR",
            ).model_dump(),
        )

    # ==========================================================================
    # Routers
    # ==========================================================================

    @app.get(
        "/health",
        response_model=HealthResponse,
        tags=["Health"],
        summary="Health check",
    )
    async def health_check() -> HealthResponse:
        """Report application, database and queue status."""
        try:
            async with engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            database = "connected"
        except Exception as e:
            logger.warning("health_database_unavailable", error=str(e))
            database = "unavailable"

        return HealthResponse(
            status="healthy" if database == "connected" else "degraded",
            version=settings.APP_VERSION,
            environment=settings.ENVIRONMENT,
            database=database,
            queue=settings.QUEUE_BACKEND,
        )

    # Agent callbacks (no API prefix, the URL is handed to the agent platform)
    app.include_router(webhooks.router)

    # API v1 routes
    app.include_router(epics.router, prefix=settings.API_V1_PREFIX)
    app.include_router(tasks.router, prefix=settings.API_V1_PREFIX)

    # ==========================================================================
    # Root Endpoint
    # ==========================================================================

    @app.get("/", tags=["Root"])
    async def root() -> dict:
        """Root endpoint with API info."""
        return {
            "name": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "docs": "/docs" if settings.is_development else "Disabled in production",
            "health": "/health",
            "api": settings.API_V1_PREFIX,
        }

    return app


# ==========================================================================
# Application Instance
# ==========================================================================

app = create_app()


# ==========================================================================
# Development Server
# ==========================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "orchestra.api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.is_development,
        log_level="info",
    )
