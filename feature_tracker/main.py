"""
Feature Tracker API application.

Mounts the routers under the configured API prefix, creates tables outside
production, and turns unhandled exceptions into a generic 500 body.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core import close_db, get_settings, init_db
from .schemas import ErrorResponse

logger = logging.getLogger(__name__)

settings = get_settings()

DESCRIPTION = """
Release lifecycle management and feature usage telemetry.

- **Releases**: status changes follow a fixed state machine; RELEASED, DELAYED,
  CANCELLED and COMPLETED notify everyone working on the release.
- **Usage**: identical events from one user within five minutes are stored once.
- **Analytics**: release dashboards and metrics, segments and adoption rates.
- **Admin**: ingestion health, error log replay, email delivery failures.

Calls made on behalf of a user take `Authorization: Bearer <jwt>`.
"""


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.app_name} {settings.app_version} ({settings.environment})")
    # Production schema is owned by migrations
    if settings.environment != "production":
        await init_db()
    try:
        yield
    finally:
        await close_db()
        logger.info(f"{settings.app_name} stopped")


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and answer a generic 500 body."""
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    body = ErrorResponse(error="internal_error", message="An unexpected error occurred")
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(),
    )


def create_app() -> FastAPI:
    application = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description=DESCRIPTION,
        openapi_url=f"{settings.api_prefix}/openapi.json",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        lifespan=lifespan,
    )
    application.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=86400,
    )
    application.add_exception_handler(Exception, handle_unexpected_error)

    @application.get("/health", tags=["health"])
    async def health_check():
        """Liveness probe, outside the API prefix."""
        return {"status": "healthy", "version": settings.app_version}

    application.include_router(api_router, prefix=settings.api_prefix)
    return application


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("feature_tracker.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
