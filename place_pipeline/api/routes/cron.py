"""Scheduled trigger endpoints for external job runners."""

import logging
from typing import Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import async_sessionmaker

from place_pipeline.api.deps import get_place_data_source, get_session_factory, require_cron_auth
from place_pipeline.badges.recompute import BadgeSweeper
from place_pipeline.quality.scan import QualityScanner
from place_pipeline.worker.refresh_worker import RefreshWorker
from place_pipeline.worker.sources import PlaceDataSource

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/cron",
    tags=["cron"],
    dependencies=[Depends(require_cron_auth)],
)


def _batch_failed(batch: str, error: Exception) -> HTTPException:
    logger.error(f"{batch} could not start: {error}", exc_info=True)
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=f"{batch} could not start: {error}",
    )


@router.api_route("/quality-scan", methods=["GET", "POST"])
async def quality_scan(
    limit: int = Query(100, ge=1, le=10_000),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Score up to ``limit`` places and queue refreshes for poor ones."""
    scanner = QualityScanner(session_factory=session_factory)
    try:
        summary = await scanner.run_scan(limit)
    except Exception as e:
        raise _batch_failed("Quality scan", e)
    return summary.to_response()


@router.api_route("/badges", methods=["GET", "POST"])
async def recompute_badges(
    mode: Literal["all", "recent"] = "recent",
    hours: Optional[int] = Query(None, ge=1, le=24 * 365),
    session_factory: async_sessionmaker = Depends(get_session_factory),
):
    """Recompute trust badges for every place or only recently touched ones."""
    sweeper = BadgeSweeper(session_factory=session_factory)
    try:
        if mode == "all":
            summary = await sweeper.recompute_all()
        else:
            summary = await sweeper.recompute_recent(hours)
    except Exception as e:
        raise _batch_failed("Badge sweep", e)
    return {"mode": mode, **summary.to_response()}


@router.api_route("/place-refresh", methods=["GET", "POST"])
async def place_refresh(
    limit: int = Query(10, ge=1, le=500),
    session_factory: async_sessionmaker = Depends(get_session_factory),
    source: PlaceDataSource = Depends(get_place_data_source),
):
    """Process up to ``limit`` queued refresh jobs."""
    worker = RefreshWorker(session_factory=session_factory, source=source)
    try:
        summary = await worker.run(limit)
    except Exception as e:
        raise _batch_failed("Place refresh", e)
    return summary.to_response()
