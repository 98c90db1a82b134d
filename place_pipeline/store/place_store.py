"""Place store: the narrow read/write contract the pipeline uses.

Every write touches one place and commits on its own, so per-place updates
inside a batch are independently atomic. Quality fields are written only by
``update_quality`` and the badge triple only by ``update_badges``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from place_pipeline.badges.rules import PhotoAggregates, ReviewAggregates, TrustBadges
from place_pipeline.db.models import PhotoStatus, Place, PlacePhoto, PlaceStatus, utcnow
from place_pipeline.errors import PlaceNotFoundError
from place_pipeline.quality.flags import QualityFlag
from place_pipeline.quality.scoring import PlaceSnapshot

logger = logging.getLogger(__name__)

# Fields a refresh may fill when the place has no value yet
FILLABLE_FIELDS = ("phone", "website", "email", "description", "opening_hours")


@dataclass(frozen=True)
class PlaceRef:
    """Lightweight handle returned by candidate queries."""

    id: int
    name: str
    quality_scored_at: Optional[datetime] = None


class PlaceStore:
    """SQLAlchemy-backed place store bound to one session."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_place(self, place_id: int) -> Place:
        place = await self.db.get(Place, place_id, populate_existing=True)
        if place is None:
            raise PlaceNotFoundError(place_id)
        return place

    async def get_places_needing_quality_scan(self, limit: int) -> list[PlaceRef]:
        """Never-scored places first, then the longest since last scored."""
        never_scored_first = case((Place.quality_scored_at.is_(None), 0), else_=1)
        query = (
            select(Place.id, Place.name, Place.quality_scored_at)
            .order_by(never_scored_first, Place.quality_scored_at.asc(), Place.id.asc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return [PlaceRef(id=row.id, name=row.name, quality_scored_at=row.quality_scored_at) for row in result]

    async def load_snapshot(self, place_id: int) -> PlaceSnapshot:
        """Read everything the scoring engine needs for one place."""
        place = await self.get_place(place_id)
        photos = await self.photo_aggregates(place_id)
        scraped = place.scraped_content or {}

        return PlaceSnapshot(
            id=place.id,
            name=place.name,
            website=place.website,
            phone=place.phone,
            address=place.address,
            description=place.description,
            lat=float(place.lat) if place.lat is not None else None,
            lng=float(place.lng) if place.lng is not None else None,
            opening_hours=dict(place.opening_hours) if place.opening_hours else None,
            approved_photo_count=photos.approved_count,
            last_refreshed_at=place.last_refreshed_at,
            avg_rating=float(place.avg_rating) if place.avg_rating is not None else None,
            review_count=place.review_count or 0,
            status=place.status,
            category_slugs=tuple(sorted(category.slug for category in place.categories)),
            category_hint=scraped.get("category") if isinstance(scraped, dict) else None,
        )

    async def review_aggregates(self, place_id: int) -> ReviewAggregates:
        place = await self.get_place(place_id)
        return ReviewAggregates.from_place(place)

    async def photo_aggregates(self, place_id: int) -> PhotoAggregates:
        query = (
            select(PlacePhoto.status, func.count(PlacePhoto.id))
            .where(PlacePhoto.place_id == place_id)
            .group_by(PlacePhoto.status)
        )
        result = await self.db.execute(query)
        counts = {status: count for status, count in result.all()}
        return PhotoAggregates(
            approved_count=counts.get(PhotoStatus.APPROVED.value, 0),
            pending_count=counts.get(PhotoStatus.PENDING.value, 0),
            rejected_count=counts.get(PhotoStatus.REJECTED.value, 0),
        )

    async def all_place_ids(self) -> list[int]:
        result = await self.db.execute(select(Place.id).order_by(Place.id))
        return list(result.scalars().all())

    async def recently_touched_place_ids(self, since: datetime) -> list[int]:
        """Places whose record, reviews or photos changed at or after ``since``."""
        touched_photos = select(PlacePhoto.place_id).where(PlacePhoto.updated_at >= since)
        query = (
            select(Place.id)
            .where(
                or_(
                    Place.updated_at >= since,
                    Place.last_review_at >= since,
                    Place.id.in_(touched_photos),
                )
            )
            .order_by(Place.id)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def quality_rows(self) -> list[Any]:
        """(id, quality_score, quality_flags, quality_scored_at) for every place."""
        query = select(Place.id, Place.quality_score, Place.quality_flags, Place.quality_scored_at)
        result = await self.db.execute(query)
        return list(result.all())

    async def low_quality_places(self, max_score: int, limit: int) -> list[Place]:
        """Scored places below ``max_score``, worst first."""
        query = (
            select(Place)
            .where(Place.quality_scored_at.is_not(None), Place.quality_score < max_score)
            .order_by(Place.quality_score.asc(), Place.id.asc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def _update_place(self, place_id: int, values: dict, commit: bool = True) -> None:
        result = await self.db.execute(
            update(Place)
            .where(Place.id == place_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            await self.db.rollback()
            raise PlaceNotFoundError(place_id)
        if commit:
            await self.db.commit()

    async def update_quality(
        self,
        place_id: int,
        score: int,
        flags: Iterable[QualityFlag],
        scored_at: Optional[datetime] = None,
        commit: bool = True,
    ) -> None:
        """
        Persist score and flags from one scoring pass.

        With ``commit=False`` the write stays in the open transaction so the
        caller can commit it together with a refresh job.
        """
        await self._update_place(
            place_id,
            {
                "quality_score": score,
                "quality_flags": [QualityFlag(flag).value for flag in flags],
                "quality_scored_at": scored_at or utcnow(),
            },
            commit=commit,
        )

    async def update_badges(
        self,
        place_id: int,
        badges: TrustBadges,
        computed_at: Optional[datetime] = None,
    ) -> None:
        """Persist the derived badge triple."""
        await self._update_place(
            place_id,
            {
                "has_photos": badges.has_photos,
                "is_top_rated": badges.is_top_rated,
                "is_community_favorite": badges.is_community_favorite,
                "badges_computed_at": computed_at or utcnow(),
            },
        )

    async def touch_badges_computed(self, place_id: int, computed_at: Optional[datetime] = None) -> None:
        """Stamp a badge pass that found nothing to change."""
        await self._update_place(place_id, {"badges_computed_at": computed_at or utcnow()})

    async def update_status(self, place_id: int, status: str, checked_at: datetime) -> None:
        """Record the operating status observed by refresh processing."""
        status = PlaceStatus(status).value
        await self._update_place(
            place_id,
            {"status": status, "status_last_checked_at": checked_at, "updated_at": checked_at},
        )

    async def apply_refresh(
        self,
        place_id: int,
        data: dict[str, Any],
        refreshed_at: datetime,
    ) -> list[str]:
        """
        Fill missing fields from collected data and stamp the refresh.

        Existing values are never overwritten.

        Returns:
            Names of the fields that were filled
        """
        place = await self.get_place(place_id)
        values: dict[str, Any] = {"last_refreshed_at": refreshed_at}
        filled = []
        for field_name in FILLABLE_FIELDS:
            incoming = data.get(field_name)
            if not incoming:
                continue
            current = getattr(place, field_name)
            if current is None or (isinstance(current, str) and not current.strip()) or current == {}:
                values[field_name] = incoming
                filled.append(field_name)

        if filled:
            values["updated_at"] = refreshed_at
        await self._update_place(place_id, values)

        if filled:
            logger.info(f"Place {place_id}: filled {', '.join(filled)} from refresh")
        return filled
