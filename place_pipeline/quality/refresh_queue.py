"""Refresh job queue.

Persistent, de-duplicated work queue of places whose data should be
re-collected. At most one pending/in_progress job exists per place; the
partial unique index ``place_refresh_jobs_active_place_uq`` backs the
check-and-insert in ``enqueue``.

Lifecycle: pending -> in_progress -> completed | failed. Terminal rows never
change state again; a retry is a new pending row pointing back through
``retry_of_id``.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from place_pipeline.config import settings
from place_pipeline.db.models import (
    ACTIVE_JOB_STATUSES,
    Place,
    RefreshJob,
    RefreshJobStatus,
    RefreshPriority,
    RefreshReason,
    utcnow,
)
from place_pipeline.errors import InvalidJobTransitionError, JobNotFoundError, PlaceNotFoundError
from place_pipeline.metrics import (
    record_job_enqueued,
    record_job_exhausted,
    record_job_transition,
)

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000
STALE_CLAIM_ERROR = "stale claim"


@dataclass
class EnqueueResult:
    """Outcome of an enqueue call."""

    job: RefreshJob
    is_new: bool


@dataclass
class FailResult:
    """Outcome of failing a job: the retry row, or exhaustion at the ceiling."""

    job: RefreshJob
    retry: Optional[RefreshJob] = None
    exhausted: bool = False


class RefreshJobQueue:
    """Queue operations bound to one session. Each operation commits."""

    def __init__(self, db: AsyncSession, max_attempts: Optional[int] = None):
        self.db = db
        self.max_attempts = max_attempts or settings.refresh_max_attempts

    # ------------------------------------------------------------------
    # Enqueue
    # ------------------------------------------------------------------

    async def enqueue(
        self,
        place_id: int,
        reason: Union[RefreshReason, str],
        priority: Union[RefreshPriority, int] = RefreshPriority.LOW,
    ) -> EnqueueResult:
        """
        Queue a refresh for a place unless one is already active.

        Args:
            place_id: Place to refresh
            reason: Why the refresh is wanted
            priority: Claim priority

        Returns:
            EnqueueResult with the new job, or the existing active job and
            ``is_new=False``
        """
        reason = RefreshReason(reason)
        priority = RefreshPriority(priority)

        if await self.db.get(Place, place_id) is None:
            raise PlaceNotFoundError(place_id)

        result = await self._insert_unless_active(place_id, reason, priority)
        record_job_enqueued(reason.value, priority.name, result.is_new)
        if result.is_new:
            logger.info(
                f"Enqueued refresh job {result.job.id} for place {place_id} "
                f"({reason.value}, {priority.name})"
            )
        else:
            logger.debug(f"Place {place_id} already has active refresh job {result.job.id}")
        return result

    async def _active_job(self, place_id: int) -> Optional[RefreshJob]:
        query = select(RefreshJob).where(
            RefreshJob.place_id == place_id,
            RefreshJob.status.in_(ACTIVE_JOB_STATUSES),
        )
        result = await self.db.execute(query.execution_options(populate_existing=True))
        return result.scalar_one_or_none()

    async def _insert_unless_active(
        self,
        place_id: int,
        reason: RefreshReason,
        priority: RefreshPriority,
        attempts: int = 0,
        retry_of_id: Optional[int] = None,
        commit: bool = True,
    ) -> EnqueueResult:
        existing = await self._active_job(place_id)
        if existing is not None:
            if commit:
                await self.db.commit()
            return EnqueueResult(job=existing, is_new=False)

        now = utcnow()
        job = RefreshJob(
            place_id=place_id,
            status=RefreshJobStatus.PENDING.value,
            reason=reason.value,
            priority=int(priority),
            attempts=attempts,
            retry_of_id=retry_of_id,
            created_at=now,
            updated_at=now,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(job)
        except IntegrityError:
            # Lost the race against a concurrent enqueue for the same place
            existing = await self._active_job(place_id)
            if existing is None:
                raise
            if commit:
                await self.db.commit()
            return EnqueueResult(job=existing, is_new=False)

        if commit:
            await self.db.commit()
        return EnqueueResult(job=job, is_new=True)

    # ------------------------------------------------------------------
    # Claim
    # ------------------------------------------------------------------

    async def claim_next(self, worker_id: str) -> Optional[RefreshJob]:
        """
        Claim the most urgent pending job for ``worker_id``.

        Ordering is priority desc, created_at asc, id asc. The pending ->
        in_progress move is a conditional UPDATE, so two callers can never
        both claim the same row; a caller that loses the race moves on to
        the next candidate.

        Returns:
            The claimed job, or None when nothing is pending
        """
        while True:
            query = (
                select(RefreshJob.id)
                .where(RefreshJob.status == RefreshJobStatus.PENDING.value)
                .order_by(
                    RefreshJob.priority.desc(),
                    RefreshJob.created_at.asc(),
                    RefreshJob.id.asc(),
                )
                .limit(1)
                .with_for_update(skip_locked=True)
            )
            job_id = (await self.db.execute(query)).scalar_one_or_none()
            if job_id is None:
                await self.db.commit()
                return None

            now = utcnow()
            result = await self.db.execute(
                update(RefreshJob)
                .where(
                    RefreshJob.id == job_id,
                    RefreshJob.status == RefreshJobStatus.PENDING.value,
                )
                .values(
                    status=RefreshJobStatus.IN_PROGRESS.value,
                    worker_id=worker_id,
                    started_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                await self.db.rollback()
                continue

            job = await self.db.get(RefreshJob, job_id, populate_existing=True)
            await self.db.commit()
            record_job_transition(RefreshJobStatus.IN_PROGRESS.value)
            logger.debug(f"Worker {worker_id} claimed refresh job {job_id}")
            return job

    # ------------------------------------------------------------------
    # Terminal transitions
    # ------------------------------------------------------------------

    async def get_job(self, job_id: int) -> RefreshJob:
        job = await self.db.get(RefreshJob, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    async def _finish(self, job_id: int, target: RefreshJobStatus, values: dict) -> RefreshJob:
        """Move an in_progress job to ``target`` or raise."""
        now = utcnow()
        result = await self.db.execute(
            update(RefreshJob)
            .where(
                RefreshJob.id == job_id,
                RefreshJob.status == RefreshJobStatus.IN_PROGRESS.value,
            )
            .values(status=target.value, completed_at=now, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            job = await self.get_job(job_id)
            raise InvalidJobTransitionError(job_id, job.status, target.value)
        return await self.db.get(RefreshJob, job_id, populate_existing=True)

    async def complete(self, job_id: int) -> RefreshJob:
        job = await self._finish(job_id, RefreshJobStatus.COMPLETED, {})
        await self.db.commit()
        record_job_transition(RefreshJobStatus.COMPLETED.value)
        logger.debug(f"Refresh job {job_id} completed")
        return job

    async def fail(self, job_id: int, error: str) -> FailResult:
        """
        Fail an in_progress job.

        Below the attempt ceiling a fresh pending row is queued for the same
        place, reason and priority with the attempt count carried over. At the
        ceiling the row is marked exhausted and no retry is queued.
        """
        current = await self.get_job(job_id)
        if current.status != RefreshJobStatus.IN_PROGRESS.value:
            raise InvalidJobTransitionError(job_id, current.status, RefreshJobStatus.FAILED.value)

        attempts = current.attempts + 1
        exhausted = attempts >= self.max_attempts
        job = await self._finish(
            job_id,
            RefreshJobStatus.FAILED,
            {
                "attempts": attempts,
                "exhausted": exhausted,
                "last_error": (error or "")[:MAX_ERROR_LENGTH],
            },
        )

        retry = None
        if not exhausted:
            retry_result = await self._insert_unless_active(
                job.place_id,
                RefreshReason(job.reason),
                RefreshPriority(job.priority),
                attempts=attempts,
                retry_of_id=job.id,
                commit=False,
            )
            retry = retry_result.job
        await self.db.commit()

        record_job_transition(RefreshJobStatus.FAILED.value)
        if exhausted:
            record_job_exhausted(job.reason)
            logger.error(
                f"Refresh job {job_id} for place {job.place_id} exhausted after "
                f"{attempts} attempts: {job.last_error}"
            )
        else:
            logger.warning(
                f"Refresh job {job_id} for place {job.place_id} failed "
                f"(attempt {attempts}/{self.max_attempts}), retry job {retry.id}: {job.last_error}"
            )
        return FailResult(job=job, retry=retry, exhausted=exhausted)

    # ------------------------------------------------------------------
    # Operator and maintenance operations
    # ------------------------------------------------------------------

    async def requeue(self, job_id: int) -> EnqueueResult:
        """Re-queue a failed job as a fresh manual job with attempts reset."""
        job = await self.get_job(job_id)
        if job.status != RefreshJobStatus.FAILED.value:
            raise InvalidJobTransitionError(job_id, job.status, RefreshJobStatus.PENDING.value)

        result = await self._insert_unless_active(
            job.place_id,
            RefreshReason.MANUAL,
            RefreshPriority(job.priority),
            retry_of_id=job.id,
        )
        record_job_enqueued(RefreshReason.MANUAL.value, RefreshPriority(job.priority).name, result.is_new)
        logger.info(f"Operator re-queued failed job {job_id} as job {result.job.id}")
        return result

    async def reap_stale(self, max_age: Optional[timedelta] = None) -> list[FailResult]:
        """Fail in_progress jobs whose claim is older than ``max_age``."""
        if max_age is None:
            max_age = timedelta(minutes=settings.refresh_stale_claim_minutes)
        cutoff = utcnow() - max_age

        query = select(RefreshJob.id).where(
            RefreshJob.status == RefreshJobStatus.IN_PROGRESS.value,
            RefreshJob.started_at < cutoff,
        )
        stale_ids = list((await self.db.execute(query)).scalars().all())
        await self.db.commit()

        reaped = []
        for job_id in stale_ids:
            try:
                reaped.append(await self.fail(job_id, STALE_CLAIM_ERROR))
            except InvalidJobTransitionError:
                # Finished by its worker between the scan and the fail
                logger.debug(f"Stale job {job_id} already finished")
        if reaped:
            logger.warning(f"Reaped {len(reaped)} stale refresh job claims")
        return reaped

    async def stats(self) -> dict[str, int]:
        """Job counts per status plus exhausted and retry totals."""
        query = select(RefreshJob.status, func.count(RefreshJob.id)).group_by(RefreshJob.status)
        counts = {status: count for status, count in (await self.db.execute(query)).all()}

        exhausted = await self.db.scalar(
            select(func.count(RefreshJob.id)).where(RefreshJob.exhausted.is_(True))
        )
        retries = await self.db.scalar(
            select(func.count(RefreshJob.id)).where(RefreshJob.retry_of_id.is_not(None))
        )

        stats = {status.value: counts.get(status.value, 0) for status in RefreshJobStatus}
        stats["exhausted"] = exhausted or 0
        stats["retries"] = retries or 0
        stats["total"] = sum(counts.values())
        return stats

    async def pending_by_priority(self) -> dict[str, int]:
        query = (
            select(RefreshJob.priority, func.count(RefreshJob.id))
            .where(RefreshJob.status == RefreshJobStatus.PENDING.value)
            .group_by(RefreshJob.priority)
        )
        counts = {priority: count for priority, count in (await self.db.execute(query)).all()}
        return {priority.name: counts.get(priority.value, 0) for priority in RefreshPriority}

    async def list_jobs(self, status: Optional[str] = None, limit: int = 50) -> list[RefreshJob]:
        """Jobs in claim order, optionally filtered by status."""
        query = (
            select(RefreshJob)
            .options(selectinload(RefreshJob.place))
            .order_by(
                RefreshJob.priority.desc(),
                RefreshJob.created_at.asc(),
                RefreshJob.id.asc(),
            )
            .limit(limit)
        )
        if status:
            query = query.where(RefreshJob.status == RefreshJobStatus(status).value)
        result = await self.db.execute(query)
        return list(result.scalars().all())

    async def recent_activity(self, hours: int = 24, limit: int = 10) -> list[RefreshJob]:
        """Jobs that finished within the last ``hours``, newest first."""
        since: datetime = utcnow() - timedelta(hours=hours)
        query = (
            select(RefreshJob)
            .options(selectinload(RefreshJob.place))
            .where(
                RefreshJob.completed_at.is_not(None),
                RefreshJob.completed_at >= since,
            )
            .order_by(RefreshJob.completed_at.desc(), RefreshJob.id.desc())
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all())
