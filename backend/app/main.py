"""SecurityX Backend - FastAPI Application Factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from app.api import api_router
from app.core import async_session_maker, settings
from app.core.container import SecurityContainer
from app.core.errors import register_error_handlers
from app.core.lifespan import security_shutdown, security_startup
from app.core.logging import get_logger
from app.middleware import (
    OriginAdmissionMiddleware,
    SecurityHeadersMiddleware,
    WarmingMiddleware,
)

logger = get_logger("main")

# Health probes skip admission so monitoring is never throttled or refused
ADMISSION_EXCLUDED_PATHS = ["/api/health"]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    logger.info(f"Starting {settings.app_name} v{settings.app_version}")
    container: SecurityContainer = app.state.security

    tasks = await security_startup(container, logger)

    yield

    logger.info("Shutting down...")
    await security_shutdown(container, logger, tasks)


def create_app(container: SecurityContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        container: Pre-built security services; defaults to database-backed
            services built from settings
    """
    app = FastAPI(
        title=settings.app_name,
        description="Blog platform API - request admission and session security",
        version=settings.app_version,
        lifespan=lifespan,
        # API schema is only exposed when debugging
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        openapi_url="/openapi.json" if settings.debug else None,
    )
    app.state.security = container or SecurityContainer.from_database(
        settings, async_session_maker
    )

    register_error_handlers(app)

    # Starlette middleware is LIFO: the last added runs first.
    # Order on the way in: warming -> security headers -> origin admission.
    app.add_middleware(OriginAdmissionMiddleware, exclude_paths=ADMISSION_EXCLUDED_PATHS)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(WarmingMiddleware)

    # Prometheus metrics (before routers so /metrics endpoint is registered first)
    if settings.enable_metrics:
        from prometheus_fastapi_instrumentator import Instrumentator

        Instrumentator(
            excluded_handlers=["/api/health", "/metrics"],
        ).instrument(app).expose(app, endpoint="/metrics", include_in_schema=False)

    app.include_router(api_router)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with API information."""
        return {
            "name": settings.app_name,
            "version": settings.app_version,
        }

    return app


# Application instance
app = create_app()
