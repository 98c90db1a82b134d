"""Tests for the quality scan scheduler."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from place_pipeline.db.models import AuditLog, Place, RefreshJob, utcnow
from place_pipeline.quality.refresh_queue import RefreshJobQueue
from place_pipeline.quality.scan import QualityScanner
from place_pipeline.store.audit import QUALITY_SCAN_COMPLETED
from place_pipeline.store.place_store import PlaceStore


def flaky_store_factory(broken_ids):
    """Store factory whose stores cannot read the given places."""

    class FlakyPlaceStore(PlaceStore):
        async def load_snapshot(self, place_id):
            if place_id in broken_ids:
                raise ValueError(f"malformed record {place_id}")
            return await super().load_snapshot(place_id)

    return FlakyPlaceStore


class UnavailablePlaceStore(PlaceStore):
    async def get_places_needing_quality_scan(self, limit):
        raise ConnectionError("store unavailable")


@pytest.mark.asyncio
async def test_poor_place_is_scored_and_enqueued(session_factory, make_place):
    place = await make_place(
        website=None,
        opening_hours=None,
        last_refreshed_at=utcnow() - timedelta(days=400),
    )
    scanner = QualityScanner(session_factory=session_factory, threshold=50)

    summary = await scanner.run_scan(limit=10)

    assert summary.scanned == 1
    assert summary.enqueued == 1
    assert summary.errors == 0

    async with session_factory() as db:
        stored = await db.get(Place, place.id)
        assert stored.quality_score < 30
        assert stored.quality_flags == ["NO_WEBSITE", "NO_OPENING_HOURS", "DATA_STALE_365_DAYS"]
        assert stored.quality_scored_at is not None

        jobs = (await db.execute(select(RefreshJob))).scalars().all()
        assert len(jobs) == 1
        assert jobs[0].place_id == place.id
        assert jobs[0].reason == "LOW_QUALITY"
        assert jobs[0].priority_label == "HIGH"


@pytest.mark.asyncio
async def test_mid_score_place_enqueued_as_stale(session_factory, make_place):
    # 100 - 25 (website) - 15 (phone) - 15 (90 days) = 45
    await make_place(website=None, phone=None, last_refreshed_at=utcnow() - timedelta(days=120))
    scanner = QualityScanner(session_factory=session_factory, threshold=50)

    summary = await scanner.run_scan(limit=10)

    assert summary.enqueued == 1
    async with session_factory() as db:
        job = (await db.execute(select(RefreshJob))).scalar_one()
        assert job.reason == "STALE"
        assert job.priority_label == "MEDIUM"


@pytest.mark.asyncio
async def test_good_place_not_enqueued(session_factory, make_place):
    await make_place()
    summary = await QualityScanner(session_factory=session_factory, threshold=50).run_scan(limit=10)

    assert summary.scanned == 1
    assert summary.enqueued == 0
    assert summary.stats["bands"]["excellent"] == 1


@pytest.mark.asyncio
async def test_rescan_does_not_duplicate_jobs(session_factory, make_place):
    await make_place(website=None, opening_hours=None, phone=None)
    scanner = QualityScanner(session_factory=session_factory, threshold=50)

    first = await scanner.run_scan(limit=10)
    second = await scanner.run_scan(limit=10)

    assert first.enqueued == 1
    assert second.enqueued == 0
    async with session_factory() as db:
        assert len((await db.execute(select(RefreshJob))).scalars().all()) == 1


@pytest.mark.asyncio
async def test_one_bad_record_does_not_abort_the_batch(session_factory, make_place):
    places = [await make_place(approved_photos=0) for _ in range(100)]
    scanner = QualityScanner(
        session_factory=session_factory,
        store_factory=flaky_store_factory({places[46].id}),
        concurrency=4,
    )

    summary = await scanner.run_scan(limit=100)

    assert summary.scanned == 99
    assert summary.errors == 1
    async with session_factory() as db:
        broken = await db.get(Place, places[46].id)
        assert broken.quality_scored_at is None
        healthy = await db.get(Place, places[47].id)
        assert healthy.quality_flags == ["NO_PHOTOS"]


@pytest.mark.asyncio
async def test_failed_enqueue_leaves_place_unscored(session_factory, make_place, monkeypatch):
    place = await make_place(website=None, opening_hours=None, phone=None)

    async def unavailable(self, place_id, reason, priority=None):
        raise ConnectionError("queue unavailable")

    monkeypatch.setattr(RefreshJobQueue, "enqueue", unavailable)
    summary = await QualityScanner(session_factory=session_factory, threshold=50).run_scan(limit=10)

    assert summary.scanned == 0
    assert summary.errors == 1
    async with session_factory() as db:
        stored = await db.get(Place, place.id)
        assert stored.quality_scored_at is None
        assert (await db.execute(select(RefreshJob))).scalars().all() == []

    monkeypatch.undo()
    retried = await QualityScanner(session_factory=session_factory, threshold=50).run_scan(limit=1)
    assert retried.enqueued == 1


@pytest.mark.asyncio
async def test_never_scored_places_come_first(session_factory, make_place):
    now = utcnow()
    recently = await make_place(quality_scored_at=now - timedelta(hours=1))
    long_ago = await make_place(quality_scored_at=now - timedelta(days=30))
    never = await make_place()

    async with session_factory() as db:
        candidates = await PlaceStore(db).get_places_needing_quality_scan(10)

    assert [ref.id for ref in candidates] == [never.id, long_ago.id, recently.id]

    summary = await QualityScanner(session_factory=session_factory).run_scan(limit=2)
    assert summary.scanned == 2
    async with session_factory() as db:
        assert (await db.get(Place, recently.id)).quality_scored_at == now - timedelta(hours=1)


@pytest.mark.asyncio
async def test_one_audit_record_per_run(session_factory, make_place):
    for _ in range(3):
        await make_place()

    summary = await QualityScanner(session_factory=session_factory).run_scan(limit=10)

    async with session_factory() as db:
        entries = (await db.execute(select(AuditLog))).scalars().all()
    assert len(entries) == 1
    assert entries[0].event_type == QUALITY_SCAN_COMPLETED
    assert entries[0].actor_role == "system"
    assert entries[0].metadata_json["scanned"] == 3
    assert entries[0].metadata_json["durationMs"] == summary.duration_ms


@pytest.mark.asyncio
async def test_candidate_selection_failure_propagates(session_factory):
    scanner = QualityScanner(session_factory=session_factory, store_factory=UnavailablePlaceStore)

    with pytest.raises(ConnectionError):
        await scanner.run_scan(limit=10)


@pytest.mark.asyncio
async def test_summary_response_shape(session_factory, make_place):
    await make_place(approved_photos=0)
    summary = await QualityScanner(session_factory=session_factory).run_scan(limit=5)

    response = summary.to_response()
    assert set(response) == {"scanned", "enqueued", "errors", "stats", "durationMs"}
    assert response["stats"]["flags"] == {"NO_PHOTOS": 1}
    assert response["stats"]["averageScore"] == 90.0
