"""Tests for the refresh worker."""

from datetime import timedelta

import pytest
from sqlalchemy import select, update

from place_pipeline.db.models import AuditLog, Place, RefreshJob, RefreshReason, utcnow
from place_pipeline.quality.refresh_queue import STALE_CLAIM_ERROR, RefreshJobQueue
from place_pipeline.store.audit import PLACE_REFRESH_RUN
from place_pipeline.worker.refresh_worker import RefreshWorker
from place_pipeline.worker.sources import ExternalPlaceData


class StaticDataSource:
    """Returns canned extractor output per place id."""

    def __init__(self, data=None, failing_ids=()):
        self.data = data or {}
        self.failing_ids = set(failing_ids)
        self.fetched = []

    async def fetch(self, place):
        self.fetched.append(place.id)
        if place.id in self.failing_ids:
            raise TimeoutError("extractor timed out")
        return self.data.get(place.id, ExternalPlaceData())


async def _jobs(session_factory):
    async with session_factory() as db:
        return (await db.execute(select(RefreshJob).order_by(RefreshJob.id))).scalars().all()


@pytest.mark.asyncio
async def test_refresh_fills_missing_fields_and_rescores(db_session, session_factory, make_place):
    place = await make_place(
        phone=None,
        website="https://keep.example",
        opening_hours=None,
        last_refreshed_at=None,
    )
    await RefreshJobQueue(db_session).enqueue(place.id, RefreshReason.LOW_QUALITY)

    source = StaticDataSource({
        place.id: ExternalPlaceData(
            phone="+31 20 555 0101",
            website="https://other.example",
            opening_hours={"Monday": "09:00-17:00", "tue": "09:00-17:00", "wed": "09:00-17:00",
                           "thu": "09:00-17:00", "fri": "09:00-17:00"},
        )
    })
    summary = await RefreshWorker(session_factory=session_factory, source=source, worker_id="w1").run(limit=5)

    assert summary.processed == 1
    assert summary.succeeded == 1
    assert summary.failed == 0

    async with session_factory() as db:
        stored = await db.get(Place, place.id)
        assert stored.phone == "+31 20 555 0101"
        assert stored.website == "https://keep.example"
        assert stored.opening_hours["mon"] == "09:00-17:00"
        assert stored.last_refreshed_at is not None
        assert stored.quality_score == 100
        assert stored.quality_flags == []
        assert stored.badges_computed_at is not None

    [job] = await _jobs(session_factory)
    assert job.status == "completed"
    assert job.worker_id == "w1"


@pytest.mark.asyncio
async def test_refresh_records_status_change(db_session, session_factory, make_place):
    place = await make_place()
    await RefreshJobQueue(db_session).enqueue(place.id, RefreshReason.CLOSED_CHECK)

    source = StaticDataSource({place.id: ExternalPlaceData(status="permanently_closed")})
    await RefreshWorker(session_factory=session_factory, source=source).run(limit=5)

    async with session_factory() as db:
        stored = await db.get(Place, place.id)
        assert stored.status == "permanently_closed"
        assert stored.status_last_checked_at is not None
        assert "CONFIRMED_CLOSED" in stored.quality_flags


@pytest.mark.asyncio
async def test_failed_fetch_fails_job_and_queues_retry(db_session, session_factory, make_place):
    place = await make_place()
    await RefreshJobQueue(db_session).enqueue(place.id, RefreshReason.STALE)

    source = StaticDataSource(failing_ids={place.id})
    summary = await RefreshWorker(session_factory=session_factory, source=source).run(limit=1)

    assert summary.processed == 1
    assert summary.failed == 1
    assert summary.exhausted == 0

    failed, retry = await _jobs(session_factory)
    assert failed.status == "failed"
    assert failed.last_error == "extractor timed out"
    assert retry.status == "pending"
    assert retry.retry_of_id == failed.id


@pytest.mark.asyncio
async def test_retries_stop_at_attempt_ceiling(db_session, session_factory, make_place, monkeypatch):
    from place_pipeline.config import settings

    monkeypatch.setattr(settings, "refresh_max_attempts", 2)
    place = await make_place()
    await RefreshJobQueue(db_session).enqueue(place.id, RefreshReason.STALE)

    source = StaticDataSource(failing_ids={place.id})
    summary = await RefreshWorker(session_factory=session_factory, source=source).run(limit=10)

    assert summary.processed == 2
    assert summary.failed == 2
    assert summary.exhausted == 1
    jobs = await _jobs(session_factory)
    assert [job.status for job in jobs] == ["failed", "failed"]
    assert jobs[-1].exhausted is True


@pytest.mark.asyncio
async def test_run_respects_limit(db_session, session_factory, make_place):
    queue = RefreshJobQueue(db_session)
    for _ in range(4):
        place = await make_place()
        await queue.enqueue(place.id, RefreshReason.STALE)

    summary = await RefreshWorker(session_factory=session_factory).run(limit=3)

    assert summary.processed == 3
    statuses = [job.status for job in await _jobs(session_factory)]
    assert statuses.count("completed") == 3
    assert statuses.count("pending") == 1


@pytest.mark.asyncio
async def test_run_reaps_stale_claims_first(db_session, session_factory, make_place):
    place = await make_place()
    queue = RefreshJobQueue(db_session)
    await queue.enqueue(place.id, RefreshReason.STALE)
    job = await queue.claim_next("crashed-worker")
    await db_session.execute(
        update(RefreshJob).where(RefreshJob.id == job.id).values(started_at=utcnow() - timedelta(days=1))
    )
    await db_session.commit()

    summary = await RefreshWorker(session_factory=session_factory).run(limit=5)

    assert summary.reaped == 1
    assert summary.succeeded == 1
    first, retry = await _jobs(session_factory)
    assert first.status == "failed"
    assert retry.status == "completed"

    async with session_factory() as db:
        entries = (await db.execute(select(AuditLog))).scalars().all()
    assert [entry.event_type for entry in entries] == [PLACE_REFRESH_RUN]
    assert entries[0].metadata_json["reaped"] == 1


def test_external_data_normalizes_blanks():
    data = ExternalPlaceData(phone="  ", email="info@example.com", opening_hours={"Tuesday": " ", "wed": "10:00-12:00"})
    assert data.phone is None
    assert data.opening_hours == {"wed": "10:00-12:00"}
    assert data.fillable_fields() == {"email": "info@example.com", "opening_hours": {"wed": "10:00-12:00"}}


class ReapingDataSource(StaticDataSource):
    """Simulates another worker reaping the job while this one fetches."""

    def __init__(self, session_factory):
        super().__init__()
        self.session_factory = session_factory
        self.reaped = False

    async def fetch(self, place):
        if not self.reaped:
            self.reaped = True
            async with self.session_factory() as db:
                await RefreshJobQueue(db).reap_stale(max_age=timedelta(seconds=-1))
        return await super().fetch(place)


@pytest.mark.asyncio
async def test_job_reaped_during_processing_does_not_abort_run(db_session, session_factory, make_place):
    place = await make_place()
    await RefreshJobQueue(db_session).enqueue(place.id, RefreshReason.STALE)

    source = ReapingDataSource(session_factory)
    summary = await RefreshWorker(session_factory=session_factory, source=source).run(limit=5)

    assert summary.processed == 2
    assert summary.failed == 1
    assert summary.succeeded == 1

    reaped, retry = await _jobs(session_factory)
    assert reaped.status == "failed"
    assert reaped.last_error == STALE_CLAIM_ERROR
    assert retry.status == "completed"

    async with session_factory() as db:
        entries = (await db.execute(select(AuditLog))).scalars().all()
    assert [entry.event_type for entry in entries] == [PLACE_REFRESH_RUN]
    assert entries[0].metadata_json["failed"] == 1


@pytest.mark.asyncio
async def test_store_error_while_failing_job_is_counted(db_session, session_factory, make_place, monkeypatch):
    place = await make_place()
    await RefreshJobQueue(db_session).enqueue(place.id, RefreshReason.STALE)

    async def unavailable(self, job_id, error):
        raise ConnectionError("store unavailable")

    monkeypatch.setattr(RefreshJobQueue, "fail", unavailable)
    source = StaticDataSource(failing_ids={place.id})
    summary = await RefreshWorker(session_factory=session_factory, source=source).run(limit=5)

    assert summary.processed == 1
    assert summary.failed == 1
    assert summary.exhausted == 0

    [job] = await _jobs(session_factory)
    assert job.status == "in_progress"
