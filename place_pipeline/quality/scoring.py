"""Place data-quality scoring engine.

``score_place`` is a pure function of a place snapshot and an explicit "now":
it starts at 100, subtracts the catalog weight of every failing completeness
check, and clamps to [0, 100]. It performs no I/O and never reads the clock,
so the same snapshot and ``now`` always yield the same score and flags.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Mapping, Optional

from place_pipeline.config import settings
from place_pipeline.db.models import PlaceStatus, RefreshPriority, RefreshReason
from place_pipeline.quality.flags import QualityFlag, ordered

MAX_SCORE = 100
MIN_SCORE = 0

# Priority bands (independent of the refresh threshold)
HIGH_PRIORITY_BELOW = 30
MEDIUM_PRIORITY_BELOW = 60


@dataclass(frozen=True)
class PlaceSnapshot:
    """Everything the scoring engine needs to know about one place."""

    id: int
    name: str = ""
    website: Optional[str] = None
    phone: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    opening_hours: Optional[Mapping[str, str]] = None
    approved_photo_count: int = 0
    last_refreshed_at: Optional[datetime] = None
    avg_rating: Optional[float] = None
    review_count: int = 0
    status: str = PlaceStatus.ACTIVE.value
    category_slugs: tuple[str, ...] = ()
    category_hint: Optional[str] = None  # category reported by enrichment


@dataclass(frozen=True)
class ScoringConfig:
    """Tunable limits for the completeness checks."""

    description_min_length: int = 50
    min_reviews_for_rating: int = 3
    min_opening_hours_days: int = 5
    stale_30_days: int = 30
    stale_90_days: int = 90
    stale_365_days: int = 365

    @classmethod
    def from_settings(cls) -> "ScoringConfig":
        return cls(
            description_min_length=settings.description_min_length,
            min_reviews_for_rating=settings.min_reviews_for_rating,
            min_opening_hours_days=settings.min_opening_hours_days,
        )


@dataclass(frozen=True)
class QualityResult:
    """Score and flags produced together by one scoring pass."""

    score: int
    flags: tuple[QualityFlag, ...] = field(default_factory=tuple)

    @property
    def flag_ids(self) -> list[str]:
        return [flag.value for flag in self.flags]


class QualityBand(str, Enum):
    """Score buckets shown in the admin data-quality view."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    CRITICAL = "critical"


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def _staleness_flag(
    last_refreshed_at: Optional[datetime], now: datetime, config: ScoringConfig
) -> Optional[QualityFlag]:
    if last_refreshed_at is None:
        return QualityFlag.NEVER_REFRESHED

    days = (now - last_refreshed_at).days
    if days >= config.stale_365_days:
        return QualityFlag.DATA_STALE_365_DAYS
    if days >= config.stale_90_days:
        return QualityFlag.DATA_STALE_90_DAYS
    if days >= config.stale_30_days:
        return QualityFlag.DATA_STALE_30_DAYS
    return None


def detect_flags(
    place: PlaceSnapshot, now: datetime, config: ScoringConfig
) -> tuple[QualityFlag, ...]:
    """Run every completeness check and return the failing ones."""
    flags: list[QualityFlag] = []

    if _blank(place.website):
        flags.append(QualityFlag.NO_WEBSITE)

    hours = {day: value for day, value in (place.opening_hours or {}).items() if not _blank(value)}
    if not hours:
        flags.append(QualityFlag.NO_OPENING_HOURS)
    elif len(hours) < config.min_opening_hours_days:
        flags.append(QualityFlag.OPENING_HOURS_INCOMPLETE)

    if _blank(place.phone):
        flags.append(QualityFlag.NO_PHONE)

    if _blank(place.description):
        flags.append(QualityFlag.NO_DESCRIPTION)
    elif len(place.description.strip()) < config.description_min_length:
        flags.append(QualityFlag.SHORT_DESCRIPTION)

    if _blank(place.address):
        flags.append(QualityFlag.NO_ADDRESS)

    if place.lat is None or place.lng is None:
        flags.append(QualityFlag.NO_COORDINATES)

    if place.approved_photo_count <= 0:
        flags.append(QualityFlag.NO_PHOTOS)

    stale = _staleness_flag(place.last_refreshed_at, now, config)
    if stale is not None:
        flags.append(stale)

    if place.avg_rating and place.avg_rating > 0 and place.review_count < config.min_reviews_for_rating:
        flags.append(QualityFlag.LOW_REVIEW_COUNT)

    if place.category_hint and place.category_slugs:
        if place.category_hint.strip().lower() not in {slug.lower() for slug in place.category_slugs}:
            flags.append(QualityFlag.CONFLICTING_CATEGORY)

    if place.status == PlaceStatus.UNKNOWN.value:
        flags.append(QualityFlag.STATUS_UNCERTAIN)
    elif place.status == PlaceStatus.PERMANENTLY_CLOSED.value:
        flags.append(QualityFlag.CONFIRMED_CLOSED)

    return ordered(flags)


def score_place(
    place: PlaceSnapshot,
    now: datetime,
    config: Optional[ScoringConfig] = None,
) -> QualityResult:
    """
    Grade one place.

    Args:
        place: Snapshot of the place and its stored metadata
        now: Reference time for the freshness checks
        config: Check limits (defaults to ScoringConfig())

    Returns:
        QualityResult with the clamped score and flags in catalog order
    """
    flags = detect_flags(place, now, config or ScoringConfig())
    score = MAX_SCORE - sum(flag.weight for flag in flags)
    return QualityResult(score=max(MIN_SCORE, min(MAX_SCORE, score)), flags=flags)


def refresh_priority(score: int) -> RefreshPriority:
    """HIGH below 30, MEDIUM below 60, LOW otherwise."""
    if score < HIGH_PRIORITY_BELOW:
        return RefreshPriority.HIGH
    if score < MEDIUM_PRIORITY_BELOW:
        return RefreshPriority.MEDIUM
    return RefreshPriority.LOW


def refresh_reason(score: int) -> RefreshReason:
    """Reason the scan scheduler records for a score that needs a refresh."""
    return RefreshReason.LOW_QUALITY if score < HIGH_PRIORITY_BELOW else RefreshReason.STALE


def needs_refresh(score: int, threshold: Optional[int] = None) -> bool:
    if threshold is None:
        threshold = settings.quality_refresh_threshold
    return score < threshold


def quality_band(score: int) -> QualityBand:
    if score >= 85:
        return QualityBand.EXCELLENT
    if score >= 70:
        return QualityBand.GOOD
    if score >= 50:
        return QualityBand.FAIR
    if score >= 30:
        return QualityBand.POOR
    return QualityBand.CRITICAL
