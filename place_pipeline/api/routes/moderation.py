"""Moderation endpoints that change badge inputs.

Each mutation commits first and then recomputes the affected place's badges
in the same request.
"""

import logging
from datetime import datetime, timezone
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from place_pipeline.api.deps import get_database, require_admin_api_key
from place_pipeline.badges.recompute import (
    BadgeRecomputeResult,
    on_photo_deleted,
    on_photo_status_changed,
    on_premium_toggled,
    on_verification_toggled,
)
from place_pipeline.badges.rules import is_premium_active, public_badges
from place_pipeline.db.models import utcnow
from place_pipeline.errors import PhotoNotFoundError, PlaceNotFoundError
from place_pipeline.store.place_store import PlaceStore

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/admin/moderation",
    tags=["moderation"],
    dependencies=[Depends(require_admin_api_key)],
)


class PhotoStatusRequest(BaseModel):
    """Request model for a photo moderation decision."""
    status: Literal["pending", "approved", "rejected"]


class VerificationRequest(BaseModel):
    """Request model for toggling verification."""
    verified: bool


class PremiumRequest(BaseModel):
    """Request model for toggling premium."""
    is_premium: bool
    premium_until: Optional[datetime] = None


class BadgeResponse(BaseModel):
    """Badges after recomputation."""
    place_id: int
    has_photos: bool
    is_top_rated: bool
    is_community_favorite: bool
    is_verified: bool
    premium_active: bool
    badges: List[str]
    changed: bool


async def _badge_response(db: AsyncSession, result: BadgeRecomputeResult) -> BadgeResponse:
    """Recomputed badges plus the badge list a listing page would show now."""
    place = await PlaceStore(db).get_place(result.place_id)
    now = utcnow()
    return BadgeResponse(
        place_id=result.place_id,
        changed=result.changed,
        is_verified=place.is_verified,
        premium_active=is_premium_active(place.is_premium, place.premium_until, now),
        badges=public_badges(place, now),
        **result.badges.to_dict(),
    )


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


@router.patch("/photos/{photo_id}", response_model=BadgeResponse)
async def moderate_photo(
    photo_id: int,
    request: PhotoStatusRequest,
    db: AsyncSession = Depends(get_database),
):
    """Set a photo's moderation status."""
    try:
        result = await on_photo_status_changed(db, photo_id, request.status)
    except PhotoNotFoundError:
        raise HTTPException(status_code=404, detail="Photo not found")
    logger.info(f"Photo {photo_id} moderated to {request.status}")
    return await _badge_response(db, result)


@router.delete("/photos/{photo_id}", response_model=BadgeResponse)
async def delete_photo(photo_id: int, db: AsyncSession = Depends(get_database)):
    """Delete a photo."""
    try:
        result = await on_photo_deleted(db, photo_id)
    except PhotoNotFoundError:
        raise HTTPException(status_code=404, detail="Photo not found")
    logger.info(f"Photo {photo_id} deleted")
    return await _badge_response(db, result)


@router.post("/places/{place_id}/verification", response_model=BadgeResponse)
async def set_verification(
    place_id: int,
    request: VerificationRequest,
    db: AsyncSession = Depends(get_database),
):
    """Grant or revoke a place's verified status."""
    try:
        result = await on_verification_toggled(db, place_id, request.verified)
    except PlaceNotFoundError:
        raise HTTPException(status_code=404, detail="Place not found")
    return await _badge_response(db, result)


@router.post("/places/{place_id}/premium", response_model=BadgeResponse)
async def set_premium(
    place_id: int,
    request: PremiumRequest,
    db: AsyncSession = Depends(get_database),
):
    """Grant or revoke premium, optionally with an end date."""
    try:
        result = await on_premium_toggled(
            db, place_id, request.is_premium, _naive_utc(request.premium_until)
        )
    except PlaceNotFoundError:
        raise HTTPException(status_code=404, detail="Place not found")
    return await _badge_response(db, result)
