"""SQLAlchemy database models.

Only the slice of the directory schema the data-quality pipeline reads or
writes is mapped here. Places, photos and categories are owned by the
directory collaborators; the pipeline writes the quality fields, the derived
badge triple and refresh bookkeeping, and owns the refresh queue and its
audit records.
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum, IntEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Table,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


def utcnow() -> datetime:
    """Naive UTC timestamp, matching the naive DateTime columns below."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PlaceStatus(str, Enum):
    """Operating status of a place, set by refresh processing."""

    ACTIVE = "active"
    TEMPORARILY_CLOSED = "temporarily_closed"
    PERMANENTLY_CLOSED = "permanently_closed"
    UNKNOWN = "unknown"


class PhotoStatus(str, Enum):
    """Moderation status of a place photo."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RefreshJobStatus(str, Enum):
    """Refresh job lifecycle: pending -> in_progress -> completed | failed."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"


ACTIVE_JOB_STATUSES = (RefreshJobStatus.PENDING.value, RefreshJobStatus.IN_PROGRESS.value)


class RefreshReason(str, Enum):
    """Why a place was queued for re-collection."""

    LOW_QUALITY = "LOW_QUALITY"
    STALE = "STALE"
    MANUAL = "MANUAL"
    CLOSED_CHECK = "CLOSED_CHECK"


class RefreshPriority(IntEnum):
    """Queue priority; higher values are claimed first."""

    LOW = 0
    MEDIUM = 1
    HIGH = 2


class Base(DeclarativeBase):
    """Base class for all models."""

    pass


place_categories = Table(
    "place_categories",
    Base.metadata,
    Column("place_id", Integer, ForeignKey("places.id", ondelete="CASCADE"), primary_key=True),
    Column("category_id", Integer, ForeignKey("categories.id", ondelete="CASCADE"), primary_key=True),
)


class Category(Base):
    """Directory category (vet, groomer, pet shop, ...)."""

    __tablename__ = "categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    label_key: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)  # i18n key


class Place(Base):
    """A directory listing."""

    __tablename__ = "places"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    address: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    postal_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    website: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    lat: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 7), nullable=True)
    lng: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 7), nullable=True)
    opening_hours: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)  # {"mon": "09:00-18:00", ...}
    scraped_content: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)  # enrichment output

    # Admin/business-set facts (not derived here)
    is_verified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_premium: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    premium_until: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Review aggregates, maintained by the review collaborator
    avg_rating: Mapped[Optional[Decimal]] = mapped_column(Numeric(2, 1), default=Decimal("0"), nullable=True)
    review_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_review_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Derived trust badges, written only by the badge persistence step
    has_photos: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_top_rated: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_community_favorite: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    badges_computed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Data quality, written only by the scoring persistence step
    quality_score: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    quality_flags: Mapped[Optional[list]] = mapped_column(JSONType, nullable=True)
    quality_scored_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    # Refresh bookkeeping
    last_refreshed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(32), default=PlaceStatus.ACTIVE.value, nullable=False)
    status_last_checked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    # Relationships
    categories: Mapped[list["Category"]] = relationship(
        "Category", secondary=place_categories, lazy="selectin"
    )
    photos: Mapped[list["PlacePhoto"]] = relationship(
        "PlacePhoto", back_populates="place", cascade="all, delete-orphan"
    )
    refresh_jobs: Mapped[list["RefreshJob"]] = relationship(
        "RefreshJob", back_populates="place", cascade="all, delete-orphan"
    )

    __table_args__ = (
        Index("places_quality_scored_at_idx", "quality_scored_at"),
        Index("places_quality_score_idx", "quality_score"),
        Index("places_updated_at_idx", "updated_at"),
    )


class PlacePhoto(Base):
    """User- or business-submitted photo awaiting or past moderation."""

    __tablename__ = "place_photos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    place_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("places.id", ondelete="CASCADE"), nullable=False, index=True
    )
    url: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=PhotoStatus.PENDING.value, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    place: Mapped["Place"] = relationship("Place", back_populates="photos")


class RefreshJob(Base):
    """Queue row: re-collect data for one place.

    Rows are append-only with respect to terminal states: a failed job is
    retried by inserting a new row (``retry_of_id`` points back), never by
    moving the failed row back to pending.
    """

    __tablename__ = "place_refresh_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    place_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("places.id", ondelete="CASCADE"), nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20), default=RefreshJobStatus.PENDING.value, nullable=False
    )
    reason: Mapped[str] = mapped_column(String(50), nullable=False)  # LOW_QUALITY, STALE, MANUAL, CLOSED_CHECK
    priority: Mapped[int] = mapped_column(Integer, default=RefreshPriority.LOW.value, nullable=False)  # Higher = more urgent
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    worker_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_error: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    exhausted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    retry_of_id: Mapped[Optional[int]] = mapped_column(
        Integer, ForeignKey("place_refresh_jobs.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    place: Mapped["Place"] = relationship("Place", back_populates="refresh_jobs")

    __table_args__ = (
        Index("place_refresh_jobs_status_idx", "status"),
        Index("place_refresh_jobs_place_id_idx", "place_id"),
        Index("place_refresh_jobs_claim_idx", "status", "priority", "created_at"),
        # At most one pending/in_progress job per place
        Index(
            "place_refresh_jobs_active_place_uq",
            "place_id",
            unique=True,
            postgresql_where=text("status IN ('pending', 'in_progress')"),
            sqlite_where=text("status IN ('pending', 'in_progress')"),
        ),
    )

    @property
    def priority_label(self) -> str:
        return RefreshPriority(self.priority).name

    @property
    def is_terminal(self) -> bool:
        return self.status in (RefreshJobStatus.COMPLETED.value, RefreshJobStatus.FAILED.value)


class AuditLog(Base):
    """Append-only audit trail; the pipeline writes one row per batch run."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    actor_role: Mapped[str] = mapped_column(String(30), nullable=False)  # admin, business, system, public
    event_type: Mapped[str] = mapped_column(String(50), nullable=False)
    target_type: Mapped[str] = mapped_column(String(30), nullable=False)
    target_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    metadata_json: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)

    __table_args__ = (
        Index("audit_logs_event_type_idx", "event_type"),
        Index("audit_logs_created_at_idx", "created_at"),
    )
