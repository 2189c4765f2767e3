"""FastAPI application factory."""

from contextlib import asynccontextmanager

import httpx
import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from floragen.api.routes import generate
from floragen.core.config import Settings, configure_logging
from floragen.core.database import close_db_session, setup_db_session
from floragen.services.generation.service import GenerationService
from floragen.services.generation.store import SqlGenerationStore
from floragen.services.image_generation.gemini_client import GeminiClient
from floragen.services.storage.object_storage import ObjectStorageClient
from floragen.services.usage_ledger import SqlUsageBackend, UsageLedger
from floragen.uow import create_uow_factory

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    Handles startup and shutdown tasks:
    - Startup: Configure logging, database session factory, outbound HTTP client, services
    - Shutdown: Close the HTTP client and the database engine
    """
    settings = Settings()  # type: ignore[call-arg]
    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    uow_factory = create_uow_factory(session_factory)

    # One connection pool for the generation API, source fetches and storage uploads
    http_client = httpx.AsyncClient()

    store = SqlGenerationStore(uow_factory)
    ledger = UsageLedger(
        SqlUsageBackend(uow_factory, default_limit=settings.default_monthly_photo_limit)
    )
    service = GenerationService.from_settings(
        settings,
        client=GeminiClient.from_settings(settings, http_client=http_client),
        storage=ObjectStorageClient.from_settings(settings, http_client=http_client),
        store=store,
        ledger=ledger,
    )

    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.generation_service = service

    logger.info(
        "application.startup",
        db_url=settings.database_url.split("@")[-1],
        gemini_model=settings.gemini_model,
        max_batch_size=settings.max_batch_size,
    )

    yield

    logger.info("application.shutdown")
    await http_client.aclose()
    await close_db_session(session_factory)


def create_app() -> FastAPI:
    """Create and configure FastAPI application.

    Returns:
        Configured FastAPI application instance
    """
    settings = Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="Floragen Backend API",
        description="AI product photography pipeline for plant catalogs",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(generate.router)  # prefix="/api/generate" in definition

    @app.get("/health")
    async def health_check(response: Response):
        """Health check endpoint with database connectivity test.

        Returns:
            200: {"status": "healthy"} if database connection succeeds
            503: {"status": "unhealthy", "error": {...}} if database connection fails
        """
        try:
            async with app.state.session_factory() as session:
                result = await session.execute(text("SELECT 1"))
                result.scalar()

            logger.debug("health_check.success")
            return {"status": "healthy"}

        except Exception as e:
            logger.error(
                "health_check.failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
            return {
                "status": "unhealthy",
                "error": {
                    "type": type(e).__name__,
                    "message": str(e),
                },
            }

    return app


# Create app instance for uvicorn
app = create_app()
