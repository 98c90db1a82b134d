"""Quality scan scheduler.

One ``run_scan`` call is one bounded batch: pick up to ``limit`` places
(never scored first, then the longest since last scored), score each, persist
the result and queue a refresh for places under the threshold. Each place is
handled in its own session, so a bad record is logged and counted without
touching the rest of the batch.
"""

import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from place_pipeline.config import settings
from place_pipeline.db.models import utcnow
from place_pipeline.db.session import AsyncSessionLocal
from place_pipeline.metrics import record_batch_run, record_place_scored
from place_pipeline.quality.refresh_queue import RefreshJobQueue
from place_pipeline.quality.scoring import (
    QualityBand,
    QualityResult,
    ScoringConfig,
    needs_refresh,
    quality_band,
    refresh_priority,
    refresh_reason,
    score_place,
)
from place_pipeline.store.audit import QUALITY_SCAN_COMPLETED, record_audit_event
from place_pipeline.store.place_store import PlaceRef, PlaceStore
from place_pipeline.worker.batching import gather_bounded

logger = logging.getLogger(__name__)


@dataclass
class ScanSummary:
    """Result of one scan run."""

    scanned: int = 0
    enqueued: int = 0
    errors: int = 0
    stats: dict[str, Any] = field(default_factory=dict)
    duration_ms: int = 0

    def to_response(self) -> dict[str, Any]:
        return {
            "scanned": self.scanned,
            "enqueued": self.enqueued,
            "errors": self.errors,
            "stats": self.stats,
            "durationMs": self.duration_ms,
        }


@dataclass
class _PlaceOutcome:
    result: QualityResult
    enqueued: bool


class QualityScanner:
    """Scores a batch of places and queues refreshes for poor ones."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        concurrency: Optional[int] = None,
        threshold: Optional[int] = None,
        config: Optional[ScoringConfig] = None,
        store_factory: Callable[[AsyncSession], PlaceStore] = PlaceStore,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize the scanner.

        Args:
            session_factory: Session factory; one session is opened per place
            concurrency: Max places in flight (defaults to settings)
            threshold: Refresh threshold (defaults to settings)
            config: Scoring limits (defaults to settings)
            store_factory: Builds the place store for a session
            clock: Source of the scan's reference time
        """
        self.session_factory = session_factory
        self.concurrency = concurrency or settings.pipeline_batch_concurrency
        self.threshold = settings.quality_refresh_threshold if threshold is None else threshold
        self.config = config or ScoringConfig.from_settings()
        self.store_factory = store_factory
        self.clock = clock

    async def run_scan(self, limit: Optional[int] = None) -> ScanSummary:
        """
        Run one scan batch.

        Candidate selection errors propagate: the batch could not start.
        Per-place errors are counted in ``errors`` and never raised.
        """
        limit = limit or settings.quality_scan_default_limit
        started = time.monotonic()
        now = self.clock()

        async with self.session_factory() as db:
            candidates = await self.store_factory(db).get_places_needing_quality_scan(limit)

        logger.info(f"Starting quality scan over {len(candidates)} places (limit {limit})")

        outcomes = await gather_bounded(
            candidates,
            lambda ref: self._scan_place(ref, now),
            self.concurrency,
        )

        summary = ScanSummary()
        bands: Counter = Counter()
        flag_counts: Counter = Counter()
        total_score = 0
        for outcome in outcomes:
            if outcome is None:
                summary.errors += 1
                continue
            summary.scanned += 1
            summary.enqueued += int(outcome.enqueued)
            total_score += outcome.result.score
            bands[quality_band(outcome.result.score).value] += 1
            flag_counts.update(outcome.result.flag_ids)

        summary.stats = {
            "bands": {band.value: bands.get(band.value, 0) for band in QualityBand},
            "flags": dict(sorted(flag_counts.items())),
            "averageScore": round(total_score / summary.scanned, 1) if summary.scanned else None,
        }
        duration = time.monotonic() - started
        summary.duration_ms = int(duration * 1000)

        record_batch_run("quality_scan", duration, summary.errors)
        await self._record_audit(summary)

        logger.info(
            f"Quality scan complete in {duration:.1f}s: {summary.scanned} scanned, "
            f"{summary.enqueued} enqueued, {summary.errors} errors"
        )
        return summary

    async def _scan_place(self, ref: PlaceRef, now: datetime) -> Optional[_PlaceOutcome]:
        try:
            async with self.session_factory() as db:
                store = self.store_factory(db)
                snapshot = await store.load_snapshot(ref.id)
                result = score_place(snapshot, now, self.config)
                # Score and refresh job commit together; a failed enqueue
                # keeps the previous score and scan position
                await store.update_quality(ref.id, result.score, result.flags, scored_at=now, commit=False)

                enqueued = False
                if needs_refresh(result.score, self.threshold):
                    queued = await RefreshJobQueue(db).enqueue(
                        ref.id,
                        refresh_reason(result.score),
                        refresh_priority(result.score),
                    )
                    enqueued = queued.is_new
                else:
                    await db.commit()

            record_place_scored(result.score)
            return _PlaceOutcome(result=result, enqueued=enqueued)
        except Exception as e:
            logger.error(f"Quality scan failed for place {ref.id}: {e}", exc_info=True)
            return None

    async def _record_audit(self, summary: ScanSummary) -> None:
        try:
            async with self.session_factory() as db:
                await record_audit_event(
                    db,
                    QUALITY_SCAN_COMPLETED,
                    target_type="place",
                    metadata={
                        "scanned": summary.scanned,
                        "enqueued": summary.enqueued,
                        "errors": summary.errors,
                        "durationMs": summary.duration_ms,
                    },
                )
        except Exception as e:
            logger.error(f"Failed to record quality scan audit event: {e}")


async def run_quality_scan(limit: Optional[int] = None) -> ScanSummary:
    """Run a quality scan with default wiring."""
    return await QualityScanner().run_scan(limit)
