"""
Main FastAPI application for StarX mining backend.
Configures the API server with routes, middleware, and background services.
"""

from fastapi import Depends, FastAPI, status
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager

import structlog

from starx_mining.core.config import settings
from starx_mining.core.database import init_database, close_database
from starx_mining.core.logging import setup_logging
from starx_mining.api.middleware import add_middleware
from starx_mining.api.schemas.common import HealthCheckResponse, SuccessResponse, create_success_response
from starx_mining.api.routes import mining
from starx_mining.scheduler.mining_scheduler import get_mining_scheduler, shutdown_mining_scheduler
from starx_mining.services.mining.database import UserStore
from starx_mining.services.mining_processor import get_user_store


logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting StarX mining API server", version=settings.app_version)

    if settings.store_backend == "database":
        await init_database()
        logger.info("Database initialized")

    scheduler = await get_mining_scheduler()
    await scheduler.start()

    yield

    logger.info("Shutting down StarX mining API server")
    try:
        await shutdown_mining_scheduler()
        if settings.store_backend == "database":
            await close_database()
    except Exception as e:
        logger.error("Error during shutdown", error=str(e))


def create_app() -> FastAPI:
    """Create and configure FastAPI application."""

    setup_logging()

    app = FastAPI(
        title="StarX Mining API",
        description="""
        Backend API for StarX mining balances.

        ## Features

        * **Mining job** - Credit every open mining session against one server time
        * **Referral boost** - Faster mining for users with actively mining referrals
        * **Balances** - Read-only view of user balances
        """,
        version=settings.app_version,
        lifespan=lifespan,
    )

    add_middleware(app)

    @app.get(
        "/health",
        response_model=HealthCheckResponse,
        tags=["System"],
        summary="Health Check",
        description="Check API server health and user store connectivity"
    )
    async def health_check(store: UserStore = Depends(get_user_store)):
        """Health check endpoint."""
        store_healthy = await store.health_check()
        if store_healthy:
            return HealthCheckResponse(
                version=settings.app_version,
                services={"store": "healthy", "api": "healthy"}
            )

        logger.error("Health check failed: user store unavailable")
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={
                "status": "unhealthy",
                "services": {
                    "store": "unhealthy",
                    "api": "healthy"
                }
            }
        )

    @app.get(
        "/",
        response_model=SuccessResponse,
        tags=["System"],
        summary="API Information",
        description="Get basic API information and status"
    )
    async def root():
        """Root endpoint with API information."""
        return create_success_response(
            data={
                "version": settings.app_version,
                "environment": settings.environment,
                "store_backend": settings.store_backend,
                "time_source": settings.time_source,
            },
            message=f"StarX Mining API v{settings.app_version}"
        )

    app.include_router(
        mining.router,
        prefix=f"{settings.api_v1_prefix}/mining",
        tags=["Mining"]
    )

    # Cron-friendly alias of the mining trigger
    app.add_api_route(
        "/run",
        mining.run_mining_job,
        methods=["GET", "POST"],
        tags=["Mining"],
        summary="Run Mining Job",
    )

    logger.info("FastAPI application created successfully")
    return app


# Create app instance
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "starx_mining.api.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.is_development,
        log_level=settings.log_level.lower()
    )
