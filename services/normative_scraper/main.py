"""
Normative Scraper Service - Main Application
============================================

FastAPI application for harvesting regulatory sources and promoting
harvested documents into normative changes.

Version: 0.1.0
"""

from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from services.normative_scraper.dependencies import build_services
from services.normative_scraper.routes import documents, executions, sources, statistics
from services.normative_scraper.store import SqlDocumentStore
from shared.config import NotificationBackend, settings
from shared.database.postgres import PostgresClient
from shared.database.redis import RedisClient
from shared.logging import get_logger, setup_logging
from shared.models.common import ErrorResponse, HealthResponse


# Setup logging
setup_logging(
    log_level=settings.log_level.value,
    json_logs=settings.is_production,
    service_name="normative-scraper",
)

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> Any:
    """Application lifespan manager."""
    logger.info(
        "normative_scraper_starting",
        environment=settings.environment.value,
        port=settings.ports.normative_scraper,
        store_backend=settings.scraper.store_backend.value,
    )

    # Startup
    try:
        services = build_services()
        app.state.scraper = services

        if isinstance(services.store, SqlDocumentStore):
            await PostgresClient.create_tables()
            logger.info("postgres_connected")

        if settings.scraper.notification_backend == NotificationBackend.REDIS:
            RedisClient.get_client()
            logger.info("redis_connected")

        if settings.scraper.scheduler_enabled:
            await services.jobs.start()

    except Exception as e:
        logger.error("startup_failed", error=str(e))
        raise

    yield

    # Shutdown
    logger.info("normative_scraper_shutting_down")
    await services.jobs.stop()
    await services.handlers.close()
    await services.store.close()
    await PostgresClient.close()
    await RedisClient.close()


# Create FastAPI application
app = FastAPI(
    title="Normwatch Normative Scraper Service",
    description="Regulatory source harvesting and normative change promotion",
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors.origins_list,
    allow_credentials=settings.cors.allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# Health Check Endpoints
# ============================================================================


@app.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check() -> HealthResponse:
    """
    Service health check.

    Returns health status of the service and the backends it is
    configured to use.
    """
    components: dict[str, dict[str, Any]] = {}

    services = getattr(app.state, "scraper", None)
    if services is not None and isinstance(services.store, SqlDocumentStore):
        components["postgres"] = await PostgresClient.health_check()

    if settings.scraper.notification_backend == NotificationBackend.REDIS:
        components["redis"] = await RedisClient.health_check()

    if services is not None:
        components["scheduler"] = {
            "status": "healthy",
            "running": services.jobs.running,
            "live_executions": len(services.orchestrator.registry),
        }

    all_healthy = all(c.get("status") == "healthy" for c in components.values())

    return HealthResponse(
        status="healthy" if all_healthy else "degraded",
        service="normative-scraper",
        version="0.1.0",
        components=components,
    )


@app.get("/", tags=["Health"])
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "service": "Normwatch Normative Scraper Service",
        "version": "0.1.0",
        "docs": "/docs",
    }


# ============================================================================
# Include Routers
# ============================================================================

app.include_router(sources.router, prefix="/api/v1/scrapers", tags=["Sources"])
app.include_router(executions.router, prefix="/api/v1/scrapers", tags=["Executions"])
app.include_router(documents.router, prefix="/api/v1/scrapers", tags=["Documents"])
app.include_router(statistics.router, prefix="/api/v1/scrapers", tags=["Statistics"])


# ============================================================================
# Error Handlers
# ============================================================================


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Any, exc: HTTPException) -> Any:
    """Handle HTTP exceptions."""
    logger.warning(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=str(exc.detail),
            status_code=exc.status_code,
        ).model_dump(mode="json"),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Any, exc: Exception) -> Any:
    """Handle unexpected exceptions."""
    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        path=request.url.path,
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(
            error="Internal server error",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        ).model_dump(mode="json"),
    )


# ============================================================================
# Run with Uvicorn
# ============================================================================

if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "services.normative_scraper.main:app",
        host="0.0.0.0",
        port=settings.ports.normative_scraper,
        reload=settings.debug,
        log_level=settings.log_level.value.lower(),
    )
