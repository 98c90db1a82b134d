"""Data-quality admin API endpoints."""

import logging
from collections import Counter
from datetime import datetime
from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from place_pipeline.api.deps import get_database, require_admin_api_key
from place_pipeline.db.models import RefreshPriority, RefreshReason
from place_pipeline.errors import InvalidJobTransitionError, JobNotFoundError, PlaceNotFoundError
from place_pipeline.quality.flags import (
    FLAG_CATALOG_VERSION,
    STALENESS_FLAGS,
    catalog,
    count_by_category,
    max_severity,
    parse_flags,
)
from place_pipeline.quality.refresh_queue import RefreshJobQueue
from place_pipeline.quality.scoring import QualityBand, quality_band
from place_pipeline.store.place_store import PlaceStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/data-quality",
    tags=["data-quality"],
    dependencies=[Depends(require_admin_api_key)],
)


# Response models
class QualityStatsResponse(BaseModel):
    """Directory-wide quality overview."""
    total_places: int
    scored_places: int
    never_scored: int
    average_score: Optional[float]
    bands: Dict[str, int]
    flags: Dict[str, int]
    categories: Dict[str, int]
    catalog_version: str
    queue: Dict[str, int]
    pending_by_priority: Dict[str, int]


class RefreshJobResponse(BaseModel):
    """Response model for a refresh job."""
    id: int
    place_id: int
    place_name: Optional[str] = None
    status: str
    reason: str
    priority: str
    attempts: int
    exhausted: bool
    terminal: bool
    worker_id: Optional[str]
    last_error: Optional[str]
    retry_of_id: Optional[int]
    created_at: datetime
    started_at: Optional[datetime]
    completed_at: Optional[datetime]

    class Config:
        from_attributes = True


class LowQualityPlaceResponse(BaseModel):
    """Response model for a place below the quality bar."""
    id: int
    name: str
    quality_score: int
    band: str
    quality_flags: List[str]
    severity: int
    stale: bool
    quality_scored_at: Optional[datetime]
    last_refreshed_at: Optional[datetime]


class ManualRefreshRequest(BaseModel):
    """Request model for a manual refresh."""
    priority: str = RefreshPriority.HIGH.name


class EnqueueResponse(BaseModel):
    """Response model for enqueue operations."""
    is_new: bool
    job: RefreshJobResponse


def _job_response(job, place_name: Optional[str] = None) -> RefreshJobResponse:
    return RefreshJobResponse(
        id=job.id,
        place_id=job.place_id,
        place_name=place_name,
        status=job.status,
        reason=job.reason,
        priority=job.priority_label,
        attempts=job.attempts,
        exhausted=job.exhausted,
        terminal=job.is_terminal,
        worker_id=job.worker_id,
        last_error=job.last_error,
        retry_of_id=job.retry_of_id,
        created_at=job.created_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
    )


@router.get("/stats", response_model=QualityStatsResponse)
async def get_quality_stats(db: AsyncSession = Depends(get_database)):
    """Quality score bands, flag counts and queue state."""
    rows = await PlaceStore(db).quality_rows()
    scored = [row for row in rows if row.quality_scored_at is not None]

    bands = Counter(quality_band(row.quality_score).value for row in scored)
    scored_flags = [flag for row in scored for flag in parse_flags(row.quality_flags)]
    flags = Counter(flag.value for flag in scored_flags)

    queue = RefreshJobQueue(db)
    return QualityStatsResponse(
        total_places=len(rows),
        scored_places=len(scored),
        never_scored=len(rows) - len(scored),
        average_score=round(sum(row.quality_score for row in scored) / len(scored), 1) if scored else None,
        bands={band.value: bands.get(band.value, 0) for band in QualityBand},
        flags=dict(flags.most_common()),
        categories=count_by_category(scored_flags),
        catalog_version=FLAG_CATALOG_VERSION,
        queue=await queue.stats(),
        pending_by_priority=await queue.pending_by_priority(),
    )


@router.get("/flags")
async def get_flag_catalog():
    """The flag catalog with weights and categories."""
    return {"version": FLAG_CATALOG_VERSION, "flags": catalog()}


@router.get("/queue", response_model=List[RefreshJobResponse])
async def list_queue(
    status: Optional[str] = None,
    limit: int = Query(50, ge=1, le=500),
    db: AsyncSession = Depends(get_database),
):
    """List refresh jobs in claim order, optionally filtered by status."""
    try:
        jobs = await RefreshJobQueue(db).list_jobs(status=status, limit=limit)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Unknown job status: {status}")
    return [_job_response(job, job.place.name) for job in jobs]


@router.get("/low-quality", response_model=List[LowQualityPlaceResponse])
async def list_low_quality(
    max_score: int = Query(70, ge=0, le=100),
    limit: int = Query(20, ge=1, le=500),
    db: AsyncSession = Depends(get_database),
):
    """Scored places below ``max_score``, worst first."""
    places = await PlaceStore(db).low_quality_places(max_score, limit)
    response = []
    for place in places:
        flags = parse_flags(place.quality_flags)
        response.append(LowQualityPlaceResponse(
            id=place.id,
            name=place.name,
            quality_score=place.quality_score,
            band=quality_band(place.quality_score).value,
            quality_flags=[flag.value for flag in flags],
            severity=max_severity(flags),
            stale=any(flag in STALENESS_FLAGS for flag in flags),
            quality_scored_at=place.quality_scored_at,
            last_refreshed_at=place.last_refreshed_at,
        ))
    return response


@router.get("/activity", response_model=List[RefreshJobResponse])
async def recent_activity(
    hours: int = Query(24, ge=1, le=24 * 30),
    limit: int = Query(10, ge=1, le=200),
    db: AsyncSession = Depends(get_database),
):
    """Refresh jobs that finished recently."""
    jobs = await RefreshJobQueue(db).recent_activity(hours=hours, limit=limit)
    return [_job_response(job, job.place.name) for job in jobs]


@router.post("/places/{place_id}/refresh", response_model=EnqueueResponse)
async def trigger_refresh(
    place_id: int,
    request: Optional[ManualRefreshRequest] = None,
    db: AsyncSession = Depends(get_database),
):
    """Queue a manual refresh for one place."""
    request = request or ManualRefreshRequest()
    try:
        priority = RefreshPriority[request.priority.upper()]
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Unknown priority: {request.priority}")

    try:
        result = await RefreshJobQueue(db).enqueue(place_id, RefreshReason.MANUAL, priority)
    except PlaceNotFoundError:
        raise HTTPException(status_code=404, detail="Place not found")

    logger.info(f"Manual refresh requested for place {place_id} (new job: {result.is_new})")
    return EnqueueResponse(is_new=result.is_new, job=_job_response(result.job))


@router.post("/jobs/{job_id}/requeue", response_model=EnqueueResponse)
async def requeue_job(job_id: int, db: AsyncSession = Depends(get_database)):
    """Re-queue a failed refresh job."""
    try:
        result = await RefreshJobQueue(db).requeue(job_id)
    except JobNotFoundError:
        raise HTTPException(status_code=404, detail="Refresh job not found")
    except InvalidJobTransitionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return EnqueueResponse(is_new=result.is_new, job=_job_response(result.job))
