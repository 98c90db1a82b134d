"""Refresh worker: drains the refresh job queue.

One ``run`` call reaps stale claims, then claims up to ``limit`` jobs one at
a time. For each job it collects fresh data, fills fields the place is
missing, records any observed status change, stamps the refresh, rescores
the place and recomputes its badges.
"""

import os
import socket
import time
from dataclasses import dataclass
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import async_sessionmaker

from place_pipeline.badges.recompute import recompute_place_badges
from place_pipeline.config import settings
from place_pipeline.db.models import RefreshJob, utcnow
from place_pipeline.db.session import AsyncSessionLocal
from place_pipeline.logging_config import get_logger
from place_pipeline.metrics import record_batch_run, record_place_scored
from place_pipeline.quality.refresh_queue import RefreshJobQueue
from place_pipeline.quality.scoring import ScoringConfig, score_place
from place_pipeline.store.audit import PLACE_REFRESH_RUN, record_audit_event
from place_pipeline.store.place_store import PlaceStore
from place_pipeline.worker.sources import NullDataSource, PlaceDataSource


def make_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


@dataclass
class RefreshRunSummary:
    """Result of one refresh worker run."""

    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    exhausted: int = 0
    reaped: int = 0
    duration_ms: int = 0

    def to_response(self) -> dict[str, Any]:
        return {
            "processed": self.processed,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "exhausted": self.exhausted,
            "reaped": self.reaped,
            "durationMs": self.duration_ms,
        }


class RefreshWorker:
    """Claims refresh jobs and applies collected data to places."""

    def __init__(
        self,
        session_factory: async_sessionmaker = AsyncSessionLocal,
        source: Optional[PlaceDataSource] = None,
        worker_id: Optional[str] = None,
        config: Optional[ScoringConfig] = None,
    ):
        self.session_factory = session_factory
        self.source = source or NullDataSource()
        self.worker_id = worker_id or make_worker_id()
        self.config = config or ScoringConfig.from_settings()
        self.log = get_logger(__name__, worker_id=self.worker_id)

    async def run(self, limit: Optional[int] = None) -> RefreshRunSummary:
        limit = limit or settings.refresh_default_limit
        started = time.monotonic()
        summary = RefreshRunSummary()

        async with self.session_factory() as db:
            queue = RefreshJobQueue(db)
            reaped = await queue.reap_stale()
            summary.reaped = len(reaped)
            summary.exhausted += sum(1 for result in reaped if result.exhausted)

            while summary.processed < limit:
                job = await queue.claim_next(self.worker_id)
                if job is None:
                    break
                summary.processed += 1

                try:
                    await self.process_job(job)
                except Exception as e:
                    self.log.error(f"Refresh job {job.id} for place {job.place_id} failed: {e}", exc_info=True)
                    await db.rollback()
                    summary.failed += 1
                    summary.exhausted += int(await self._fail_job(queue, job, str(e) or type(e).__name__))
                    continue

                try:
                    await queue.complete(job.id)
                except Exception as e:
                    # Reaped or otherwise finished while this worker held it
                    self.log.error(f"Could not complete refresh job {job.id}: {e}")
                    await db.rollback()
                    summary.failed += 1
                    continue
                summary.succeeded += 1

        duration = time.monotonic() - started
        summary.duration_ms = int(duration * 1000)
        record_batch_run("place_refresh", duration, summary.failed)

        try:
            async with self.session_factory() as db:
                await record_audit_event(
                    db,
                    PLACE_REFRESH_RUN,
                    target_type="refresh_job",
                    metadata={"workerId": self.worker_id, **summary.to_response()},
                )
        except Exception as e:
            self.log.error(f"Failed to record refresh run audit event: {e}")

        self.log.info(
            f"Refresh run complete in {duration:.1f}s: {summary.processed} processed, "
            f"{summary.succeeded} succeeded, {summary.failed} failed, "
            f"{summary.exhausted} exhausted, {summary.reaped} reaped"
        )
        return summary

    async def _fail_job(self, queue: RefreshJobQueue, job: RefreshJob, error: str) -> bool:
        """Fail ``job``; returns whether it ran out of attempts."""
        try:
            result = await queue.fail(job.id, error)
        except Exception as e:
            self.log.error(f"Could not record failure of refresh job {job.id}: {e}")
            await queue.db.rollback()
            return False
        return result.exhausted

    async def process_job(self, job: RefreshJob) -> None:
        """Refresh one place. Raises on any failure so the job is failed."""
        async with self.session_factory() as db:
            store = PlaceStore(db)
            place = await store.get_place(job.place_id)
            await db.commit()  # no transaction open while the source fetches
            data = await self.source.fetch(place)
            now = utcnow()

            if data.status and data.status != place.status:
                self.log.info(f"Place {place.id} status changed: {place.status} -> {data.status}")
            if data.status:
                await store.update_status(place.id, data.status, now)

            await store.apply_refresh(place.id, data.fillable_fields(), now)

            snapshot = await store.load_snapshot(place.id)
            result = score_place(snapshot, now, self.config)
            await store.update_quality(place.id, result.score, result.flags, scored_at=now)
            record_place_scored(result.score)

            try:
                await recompute_place_badges(db, place.id, trigger="refresh")
            except Exception as e:
                self.log.error(f"Badge recompute after refresh failed for place {place.id}: {e}")
                await db.rollback()


async def run_refresh_worker(limit: Optional[int] = None) -> RefreshRunSummary:
    """Run the refresh worker with default wiring."""
    return await RefreshWorker().run(limit)
