"""Trust badge rules.

Derives the three computed badges (has photos, top rated, community
favorite) from review and photo aggregates. Verification and premium are
admin/business-set facts and are never derived here; premium expiry is
evaluated at display time by ``is_premium_active``.
"""

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional, Union

from place_pipeline.config import settings


@dataclass(frozen=True)
class ReviewAggregates:
    """Rating summary maintained by the review collaborator."""

    avg_rating: float = 0.0
    review_count: int = 0

    @classmethod
    def from_place(cls, place: Any) -> "ReviewAggregates":
        return cls(
            avg_rating=rating_value(place.avg_rating),
            review_count=place.review_count or 0,
        )


@dataclass(frozen=True)
class PhotoAggregates:
    """Photo counts by moderation status."""

    approved_count: int = 0
    pending_count: int = 0
    rejected_count: int = 0


@dataclass(frozen=True)
class BadgeThresholds:
    """Badge policy limits. Treated as data, loaded from settings."""

    top_rated_min_rating: float = 4.5
    top_rated_min_reviews: int = 5
    favorite_min_rating: float = 4.0
    favorite_min_reviews: int = 25

    @classmethod
    def from_settings(cls) -> "BadgeThresholds":
        return cls(
            top_rated_min_rating=settings.badge_top_rated_min_rating,
            top_rated_min_reviews=settings.badge_top_rated_min_reviews,
            favorite_min_rating=settings.badge_favorite_min_rating,
            favorite_min_reviews=settings.badge_favorite_min_reviews,
        )


@dataclass(frozen=True)
class TrustBadges:
    """The derived badge triple, always written together."""

    has_photos: bool = False
    is_top_rated: bool = False
    is_community_favorite: bool = False

    @classmethod
    def from_place(cls, place: Any) -> "TrustBadges":
        """Badges as currently stored on a place row."""
        return cls(
            has_photos=bool(place.has_photos),
            is_top_rated=bool(place.is_top_rated),
            is_community_favorite=bool(place.is_community_favorite),
        )

    def to_dict(self) -> dict[str, bool]:
        return {
            "has_photos": self.has_photos,
            "is_top_rated": self.is_top_rated,
            "is_community_favorite": self.is_community_favorite,
        }


def compute_badges(
    place: Any,
    reviews: Optional[ReviewAggregates],
    photos: PhotoAggregates,
    thresholds: Optional[BadgeThresholds] = None,
) -> TrustBadges:
    """
    Compute the derived badges for one place.

    Args:
        place: Place row or snapshot; its stored rating aggregates are used
            when ``reviews`` is None
        reviews: Review aggregates
        photos: Photo aggregates
        thresholds: Badge limits (defaults to BadgeThresholds())

    Returns:
        TrustBadges triple
    """
    thresholds = thresholds or BadgeThresholds()
    if reviews is None:
        reviews = ReviewAggregates.from_place(place)

    rating = reviews.avg_rating or 0.0
    count = reviews.review_count or 0

    return TrustBadges(
        has_photos=photos.approved_count >= 1,
        is_top_rated=(
            rating >= thresholds.top_rated_min_rating
            and count >= thresholds.top_rated_min_reviews
        ),
        is_community_favorite=(
            count >= thresholds.favorite_min_reviews
            and rating >= thresholds.favorite_min_rating
        ),
    )


def is_premium_active(
    is_premium: bool,
    premium_until: Optional[datetime],
    now: datetime,
) -> bool:
    """Premium with no end date never expires; an elapsed end date means not premium."""
    if not is_premium:
        return False
    if premium_until is None:
        return True
    return premium_until > now


def public_badges(place: Any, now: datetime) -> list[str]:
    """Badge ids a listing page shows for ``place``, in display order."""
    badges = []
    if place.is_verified:
        badges.append("verified")
    if is_premium_active(place.is_premium, place.premium_until, now):
        badges.append("premium")
    if place.is_top_rated:
        badges.append("top_rated")
    if place.is_community_favorite:
        badges.append("community_favorite")
    if place.has_photos:
        badges.append("has_photos")
    return badges


def rating_value(value: Union[Decimal, float, None]) -> float:
    """Normalize a stored rating (Numeric column) to float."""
    return float(value) if value is not None else 0.0
