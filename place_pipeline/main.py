"""Main application entry point."""

import logging
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from place_pipeline.api.routes import cron, data_quality, moderation
from place_pipeline.config import settings
from place_pipeline.db.models import Base
from place_pipeline.db.session import engine
from place_pipeline.errors import (
    ConfigurationError,
    InvalidJobTransitionError,
    JobNotFoundError,
    PhotoNotFoundError,
    PipelineError,
    PlaceNotFoundError,
)
from place_pipeline.logging_config import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Starting place data-quality pipeline...")

    if settings.auto_create_tables:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    if not settings.cron_secret:
        logger.warning("CRON_SECRET is not set; /api/cron endpoints will answer 503")

    yield

    logger.info("Shutting down...")
    await engine.dispose()
    logger.info("Shutdown complete")


app = FastAPI(
    title="Place Data-Quality Pipeline",
    description="Quality scoring, refresh queue and trust badges for the pet directory",
    version="0.1.0",
    lifespan=lifespan,
)

# Add Prometheus instrumentation
instrumentator = Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=True,
    should_respect_env_var=True,
    should_instrument_requests_inprogress=True,
    excluded_handlers=["/metrics", "/health"],
    inprogress_name="http_requests_inprogress",
    inprogress_labels=True,
)
instrumentator.instrument(app).expose(app, include_in_schema=True, tags=["monitoring"])

# Include API routes
app.include_router(cron.router)
app.include_router(data_quality.router)
app.include_router(moderation.router)


_ERROR_STATUS = (
    (ConfigurationError, 503),
    ((PlaceNotFoundError, PhotoNotFoundError, JobNotFoundError), 404),
    (InvalidJobTransitionError, 409),
)


@app.exception_handler(PipelineError)
async def pipeline_error_handler(request: Request, exc: PipelineError):
    """Map pipeline errors that escape a route to HTTP responses."""
    status_code = 500
    for error_types, code in _ERROR_STATUS:
        if isinstance(exc, error_types):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


if __name__ == "__main__":
    # Run with uvicorn
    uvicorn.run(
        "place_pipeline.main:app",
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )
