"""
Watchtower - Main Application
==============================

Incident dashboard backend: bulk import of postmortem documents.

Modules:
- Bulk Import: upload documents, extract metadata with AI, reconcile with
  ServiceNow, create incidents and generate postmortems

Clean Architecture Layers:
- Interfaces: FastAPI controllers
- Application: Services and DTOs
- Domain: Entities and value objects
- Infrastructure: Database, LLM, ServiceNow, file storage
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

# Configuration
from watchtower.config import settings

# Infrastructure
from watchtower.infrastructure.database import (
    close_database,
    create_tables,
    get_session_context,
    get_session_maker,
    init_database,
)
from watchtower.infrastructure.llm import create_completion_client

# Bulk Import Module
from watchtower.bulk_import.infrastructure import ServiceNowClient, unit_of_work_factory
from watchtower.bulk_import.interfaces import bulk_import_router
from watchtower.bulk_import.services import build_bulk_import_services

# Logging and metrics
from watchtower.shared.api.middleware import (
    CorrelationIDMiddleware,
    LoggingMiddleware,
    global_exception_handler,
)
from watchtower.shared.infrastructure.grafana import get_grafana_exporter
from watchtower.shared.infrastructure.logging import get_logger, setup_logging

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """
    Application lifespan manager.

    STARTUP:
    1. Setup structured logging
    2. Initialize database and create tables
    3. Release run leases left over from a previous process
    4. Build completion client, ServiceNow client and import services

    SHUTDOWN:
    1. Cancel running import tasks
    2. Close ServiceNow client
    3. Close database connections
    """
    # === STARTUP ===
    setup_logging(settings.log_level, settings.environment)
    logger.info("Starting Watchtower", extra={
        "version": settings.app_version,
        "environment": settings.environment
    })

    logger.info("Initializing database")
    init_database()

    # Create tables (for development - use Alembic in production)
    logger.info("Creating database tables")
    await create_tables()

    # No run survives a restart, so held leases and mid-step items are stale
    async with unit_of_work_factory(get_session_maker())() as uow:
        interrupted = await uow.items.release_all_leases()
    if interrupted:
        logger.warning("Released stale import run leases", extra={"released": len(interrupted)})

    completion_client = create_completion_client(settings)
    servicenow_client = ServiceNowClient(settings)
    if not servicenow_client.is_enabled():
        logger.info("ServiceNow not configured - imports use document data only")

    services = build_bulk_import_services(
        settings,
        get_session_maker(),
        completion_client=completion_client,
        ticket_system=servicenow_client,
        exporter=get_grafana_exporter(),
    )

    # Store services in app state for dependency injection
    app.state.settings = settings
    app.state.bulk_import = services

    # Interrupted runs continue from their stored step
    for item_id in interrupted:
        await services.pipeline.start(item_id)

    logger.info("Watchtower started successfully", extra={
        "llm_provider": settings.llm_provider,
        "servicenow_enabled": servicenow_client.is_enabled(),
        "upload_dir": str(settings.upload_dir)
    })

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Shutting down Watchtower")

    if services.tasks.pending:
        logger.warning("Cancelling running import tasks", extra={"pending": services.tasks.pending})
    await services.tasks.shutdown()

    await servicenow_client.close()
    await close_database()

    logger.info("Watchtower shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="Watchtower API",
    description="""
    ## Incident Dashboard - Bulk Postmortem Import

    Upload postmortem documents (PDF, Word, plain text) and turn them into
    incidents with structured postmortems.

    ---

    ### 📥 Bulk Import Module

    **Endpoints:**
    - `POST /bulk-import/upload` - Upload a batch of documents
    - `GET /bulk-import/sessions` - List import sessions
    - `GET /bulk-import/sessions/{id}` - Session status with its items
    - `GET /bulk-import/items/{id}` - Item status, metadata and questions
    - `POST /bulk-import/items/{id}/answer` - Answer questions blocking an item
    - `POST /bulk-import/items/{id}/retry` - Retry a failed item
    - `POST /bulk-import/sessions/{id}/retry-failed` - Retry all failed items

    **Pipeline per document:**
    1. Text extraction
    2. AI metadata extraction
    3. ServiceNow lookup
    4. Incident creation (deduplicated by incident number)
    5. AI postmortem generation

    Missing critical data pauses an item until it is answered; the item then
    resumes at the step it paused at.
    """,
    version=settings.app_version,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# === CORS Middleware ===
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# === Custom Middleware (from shared) ===
app.add_middleware(CorrelationIDMiddleware)
app.add_middleware(LoggingMiddleware)
app.add_exception_handler(Exception, global_exception_handler)

# === Include Module Routers ===
app.include_router(bulk_import_router)


# === Health Check Endpoint ===

@app.get("/health", tags=["Health"], responses={
    200: {
        "description": "Service is healthy",
        "content": {
            "application/json": {
                "example": {
                    "status": "healthy",
                    "version": "1.0.0",
                    "environment": "development",
                    "checks": {
                        "database": "connected",
                        "servicenow": "configured",
                        "llm_provider": "anthropic",
                        "running_imports": 0
                    }
                }
            }
        }
    }
})
async def health_check(request: Request):
    """
    Health check endpoint for load balancers and orchestrators.

    Returns service health status including:
    - Database connectivity
    - ServiceNow configuration
    - Running import tasks
    """
    checks = {
        "database": "connected",
        "servicenow": "configured" if settings.servicenow_enabled else "not_configured",
        "llm_provider": settings.llm_provider,
        "running_imports": 0
    }

    try:
        async with get_session_context() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning("Database health check failed", extra={"error": str(e)})
        checks["database"] = f"error: {type(e).__name__}"

    services = getattr(request.app.state, "bulk_import", None)
    if services is not None:
        checks["running_imports"] = services.tasks.pending

    return {
        "status": "healthy" if checks["database"] == "connected" else "degraded",
        "version": settings.app_version,
        "environment": settings.environment,
        "checks": checks
    }


@app.get("/", tags=["Root"])
async def root():
    """Root endpoint with API information."""
    return {
        "service": "Watchtower",
        "version": settings.app_version,
        "architecture": "Clean Architecture / Modular Monolith",
        "docs": "/docs",
        "health": "/health",
        "modules": {
            "bulk_import": {
                "prefix": "/bulk-import",
                "endpoints": [
                    "POST /bulk-import/upload - Upload documents",
                    "GET /bulk-import/sessions - List sessions",
                    "GET /bulk-import/sessions/{id} - Get session with items",
                    "GET /bulk-import/items/{id} - Get item",
                    "POST /bulk-import/items/{id}/answer - Answer questions",
                    "POST /bulk-import/items/{id}/retry - Retry failed item",
                    "POST /bulk-import/sessions/{id}/retry-failed - Retry failed items"
                ]
            }
        }
    }


# === Development Entry Point ===

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "watchtower.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.environment == "development",
        log_level="info"
    )
