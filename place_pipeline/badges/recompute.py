"""Badge recomputation: event-driven hooks and scheduled sweeps.

Both paths go through ``recompute_place_badges``, so fixing one place now
and sweeping every place later converge on the same stored badges.
"""

import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from place_pipeline.badges.rules import BadgeThresholds, TrustBadges, compute_badges
from place_pipeline.config import settings
from place_pipeline.db.models import PhotoStatus, PlacePhoto, utcnow
from place_pipeline.db.session import AsyncSessionLocal
from place_pipeline.errors import PhotoNotFoundError
from place_pipeline.metrics import record_badge_recompute, record_batch_run
from place_pipeline.store.audit import BADGE_SWEEP_COMPLETED, record_audit_event
from place_pipeline.store.place_store import PlaceStore
from place_pipeline.worker.batching import gather_bounded

logger = logging.getLogger(__name__)


@dataclass
class BadgeRecomputeResult:
    """Badges computed for one place and whether the stored triple changed."""

    place_id: int
    badges: TrustBadges
    changed: bool


async def recompute_place_badges(
    db: AsyncSession,
    place_id: int,
    thresholds: Optional[BadgeThresholds] = None,
    trigger: str = "event",
) -> BadgeRecomputeResult:
    """
    Recompute and persist the derived badges for one place.

    The triple is written only when it differs from what is stored; the
    computation time is stamped either way.
    """
    thresholds = thresholds or BadgeThresholds.from_settings()
    store = PlaceStore(db)

    place = await store.get_place(place_id)
    current = TrustBadges.from_place(place)
    reviews = await store.review_aggregates(place_id)
    photos = await store.photo_aggregates(place_id)

    badges = compute_badges(place, reviews, photos, thresholds)
    changed = badges != current
    if changed:
        await store.update_badges(place_id, badges)
        logger.info(f"Badges changed for place {place_id}: {current.to_dict()} -> {badges.to_dict()}")
    else:
        await store.touch_badges_computed(place_id)

    record_badge_recompute(trigger, changed)
    return BadgeRecomputeResult(place_id=place_id, badges=badges, changed=changed)


# ----------------------------------------------------------------------
# Event hooks: mutate, commit, then recompute the affected place
# ----------------------------------------------------------------------


async def _get_photo(db: AsyncSession, photo_id: int) -> PlacePhoto:
    photo = await db.get(PlacePhoto, photo_id)
    if photo is None:
        raise PhotoNotFoundError(photo_id)
    return photo


async def on_photo_status_changed(
    db: AsyncSession,
    photo_id: int,
    status: str,
    thresholds: Optional[BadgeThresholds] = None,
) -> BadgeRecomputeResult:
    """Apply a moderation decision to a photo and refresh its place's badges."""
    photo = await _get_photo(db, photo_id)
    photo.status = PhotoStatus(status).value
    photo.updated_at = utcnow()
    place_id = photo.place_id
    await db.commit()
    return await recompute_place_badges(db, place_id, thresholds, trigger="photo_status")


async def on_photo_deleted(
    db: AsyncSession,
    photo_id: int,
    thresholds: Optional[BadgeThresholds] = None,
) -> BadgeRecomputeResult:
    """Delete a photo and refresh its place's badges."""
    photo = await _get_photo(db, photo_id)
    place_id = photo.place_id
    await db.delete(photo)
    await db.commit()
    return await recompute_place_badges(db, place_id, thresholds, trigger="photo_deleted")


async def on_verification_toggled(
    db: AsyncSession,
    place_id: int,
    verified: bool,
    thresholds: Optional[BadgeThresholds] = None,
) -> BadgeRecomputeResult:
    store = PlaceStore(db)
    place = await store.get_place(place_id)
    place.is_verified = verified
    place.updated_at = utcnow()
    await db.commit()
    return await recompute_place_badges(db, place_id, thresholds, trigger="verification")


async def on_premium_toggled(
    db: AsyncSession,
    place_id: int,
    is_premium: bool,
    premium_until: Optional[datetime] = None,
    thresholds: Optional[BadgeThresholds] = None,
) -> BadgeRecomputeResult:
    store = PlaceStore(db)
    place = await store.get_place(place_id)
    place.is_premium = is_premium
    place.premium_until = premium_until if is_premium else None
    place.updated_at = utcnow()
    await db.commit()
    return await recompute_place_badges(db, place_id, thresholds, trigger="premium")


# ----------------------------------------------------------------------
# Scheduled sweeps
# ----------------------------------------------------------------------


@dataclass
class SweepSummary:
    """Result of one badge sweep."""

    processed: int = 0
    updated: int = 0
    errors: int = 0
    duration_ms: int = 0

    def to_response(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "updated": self.updated,
            "errors": self.errors,
            "durationMs": self.duration_ms,
        }


class BadgeSweeper:
    """Recomputes badges over many places with bounded concurrency."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        concurrency: Optional[int] = None,
        thresholds: Optional[BadgeThresholds] = None,
        recompute: Callable[..., Any] = recompute_place_badges,
    ):
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.pipeline_batch_concurrency
        self.thresholds = thresholds or BadgeThresholds.from_settings()
        self.recompute = recompute

    async def recompute_all(self) -> SweepSummary:
        """Full pass over every place, for backfills."""
        async with self.session_factory() as db:
            place_ids = await PlaceStore(db).all_place_ids()
        return await self._sweep(place_ids, mode="all")

    async def recompute_recent(self, window_hours: Optional[int] = None) -> SweepSummary:
        """Only places whose record, reviews or photos changed in the window."""
        window_hours = window_hours or settings.badge_recent_default_hours
        since = utcnow() - timedelta(hours=window_hours)
        async with self.session_factory() as db:
            place_ids = await PlaceStore(db).recently_touched_place_ids(since)
        return await self._sweep(place_ids, mode="recent", window_hours=window_hours)

    async def _sweep(self, place_ids: list[int], mode: str, window_hours: Optional[int] = None) -> SweepSummary:
        started = time.monotonic()
        logger.info(f"Starting badge sweep ({mode}) over {len(place_ids)} places")

        outcomes = await gather_bounded(place_ids, self._recompute_one, self.concurrency)

        summary = SweepSummary()
        for outcome in outcomes:
            if outcome is None:
                summary.errors += 1
                continue
            summary.processed += 1
            summary.updated += int(outcome.changed)

        duration = time.monotonic() - started
        summary.duration_ms = int(duration * 1000)
        record_batch_run(f"badge_sweep_{mode}", duration, summary.errors)

        metadata = {"mode": mode, **summary.to_response()}
        if window_hours is not None:
            metadata["hours"] = window_hours
        try:
            async with self.session_factory() as db:
                await record_audit_event(db, BADGE_SWEEP_COMPLETED, target_type="place", metadata=metadata)
        except Exception as e:
            logger.error(f"Failed to record badge sweep audit event: {e}")

        logger.info(
            f"Badge sweep ({mode}) complete in {duration:.1f}s: {summary.processed} processed, "
            f"{summary.updated} updated, {summary.errors} errors"
        )
        return summary

    async def _recompute_one(self, place_id: int) -> Optional[BadgeRecomputeResult]:
        try:
            async with self.session_factory() as db:
                return await self.recompute(db, place_id, self.thresholds, trigger="sweep")
        except Exception as e:
            logger.error(f"Badge recompute failed for place {place_id}: {e}", exc_info=True)
            return None
