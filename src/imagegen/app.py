"""FastAPI application factory."""

from contextlib import asynccontextmanager
from typing import Optional

import httpx
import structlog
from fastapi import FastAPI, Response, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from imagegen.api.routes import async_image, image
from imagegen.core.config import Settings, configure_logging
from imagegen.core.database import setup_db_session
from imagegen.services.image_generation.async_caller import create_async_caller
from imagegen.services.image_generation.dispatcher import BackgroundDispatcher
from imagegen.services.image_generation.service import ImageGenerationService
from imagegen.services.storage.file_service import FileService
from imagegen.uow import create_uow_factory

logger = structlog.get_logger()


def init_app_state(
    app: FastAPI,
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    caller_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> None:
    """Construct the process-wide services and store them in app.state.

    Args:
        app: Application to configure
        settings: Application settings
        session_factory: Database session factory
        caller_transport: Optional httpx transport for dispatch calls (tests)
    """
    uow_factory = create_uow_factory(session_factory)

    async def caller_factory(user_id: str):
        return await create_async_caller(settings, user_id, transport=caller_transport)

    dispatcher = BackgroundDispatcher(uow_factory=uow_factory, caller_factory=caller_factory)

    app.state.settings = settings
    app.state.session_factory = session_factory
    app.state.uow_factory = uow_factory
    app.state.dispatcher = dispatcher
    app.state.image_service = ImageGenerationService(
        settings=settings,
        uow_factory=uow_factory,
        file_service=FileService(settings.file_public_base_url),
        dispatcher=dispatcher,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan context manager.

    - Startup: configure logging, create the session factory and services
    - Shutdown: stop background dispatch and wait for in-flight calls
    """
    settings: Settings = app.state.settings

    configure_logging(settings)

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    init_app_state(app, settings, session_factory)

    logger.info("application.startup", db_url=settings.database_url.split("@")[-1])

    yield

    logger.info("application.shutdown", in_flight=app.state.dispatcher.in_flight)
    await app.state.dispatcher.aclose(timeout=settings.dispatch_drain_timeout_seconds)

    engine = session_factory.kw.get("bind")
    if engine is not None:
        await engine.dispose()


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    """Create and configure FastAPI application.

    Args:
        settings: Settings to use; loaded from the environment when omitted

    Returns:
        Configured FastAPI application instance
    """
    settings = settings or Settings()  # type: ignore[call-arg]

    app = FastAPI(
        title="imagegen API",
        description="Image generation batches with background task dispatch",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.settings = settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(image.router)  # prefix="/api/image"
    app.include_router(async_image.router)  # prefix="/api/async/image"

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


def serve() -> None:
    """Run the API with uvicorn using HOST/PORT from settings."""
    import uvicorn

    settings = Settings()  # type: ignore[call-arg]
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)
