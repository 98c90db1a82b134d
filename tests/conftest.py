"""Shared fixtures: a file-backed SQLite database per test."""

from datetime import timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from place_pipeline.db.models import Base, Category, Place, PlacePhoto, PlaceStatus, utcnow

FULL_HOURS = {
    "mon": "09:00-18:00",
    "tue": "09:00-18:00",
    "wed": "09:00-18:00",
    "thu": "09:00-18:00",
    "fri": "09:00-18:00",
    "sat": "10:00-16:00",
}

LONG_DESCRIPTION = (
    "Family-run veterinary practice offering vaccinations, dental care and "
    "surgery for cats, dogs and small pets."
)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'pipeline.db'}",
        poolclass=NullPool,
    )

    # Let SQLAlchemy drive transactions and take the write lock up front, so
    # concurrent sessions queue behind each other instead of deadlocking.
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, _):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_place(db_session):
    """Create and commit a place; keyword arguments override the complete defaults."""
    counter = {"n": 0}

    async def _make_place(approved_photos: int = 1, categories: tuple = (), **overrides) -> Place:
        counter["n"] += 1
        now = utcnow()
        values = dict(
            slug=f"place-{counter['n']}",
            name=f"Place {counter['n']}",
            description=LONG_DESCRIPTION,
            address="Dorpsstraat 1",
            phone="+31 20 123 4567",
            website="https://example.com",
            lat=Decimal("52.3702"),
            lng=Decimal("4.8952"),
            opening_hours=dict(FULL_HOURS),
            avg_rating=Decimal("4.2"),
            review_count=10,
            last_refreshed_at=now - timedelta(days=3),
            status=PlaceStatus.ACTIVE.value,
            created_at=now,
            updated_at=now,
        )
        values.update(overrides)
        place = Place(**values)

        for slug in categories:
            place.categories.append(Category(slug=slug))
        db_session.add(place)
        await db_session.flush()

        for i in range(approved_photos):
            db_session.add(
                PlacePhoto(place_id=place.id, url=f"https://cdn.example.com/{place.id}/{i}.jpg", status="approved")
            )
        await db_session.commit()
        return place

    return _make_place
