"""Tests for trust badge rules."""

from datetime import datetime, timedelta
from types import SimpleNamespace

from place_pipeline.badges.rules import (
    BadgeThresholds,
    PhotoAggregates,
    ReviewAggregates,
    TrustBadges,
    compute_badges,
    is_premium_active,
    public_badges,
)

THRESHOLDS = BadgeThresholds(
    top_rated_min_rating=4.5,
    top_rated_min_reviews=5,
    favorite_min_rating=4.0,
    favorite_min_reviews=25,
)

PLACE = SimpleNamespace(id=1, avg_rating=None, review_count=0)


def test_top_rated():
    badges = compute_badges(PLACE, ReviewAggregates(4.8, 12), PhotoAggregates(approved_count=0), THRESHOLDS)
    assert badges == TrustBadges(has_photos=False, is_top_rated=True, is_community_favorite=False)


def test_top_rated_needs_both_rating_and_reviews():
    assert not compute_badges(PLACE, ReviewAggregates(4.8, 4), PhotoAggregates(), THRESHOLDS).is_top_rated
    assert not compute_badges(PLACE, ReviewAggregates(4.4, 50), PhotoAggregates(), THRESHOLDS).is_top_rated
    assert compute_badges(PLACE, ReviewAggregates(4.5, 5), PhotoAggregates(), THRESHOLDS).is_top_rated


def test_community_favorite():
    badges = compute_badges(PLACE, ReviewAggregates(4.1, 30), PhotoAggregates(), THRESHOLDS)
    assert badges.is_community_favorite
    assert not badges.is_top_rated

    assert not compute_badges(PLACE, ReviewAggregates(3.9, 300), PhotoAggregates(), THRESHOLDS).is_community_favorite
    assert not compute_badges(PLACE, ReviewAggregates(4.9, 24), PhotoAggregates(), THRESHOLDS).is_community_favorite


def test_has_photos_counts_only_approved():
    pending_only = PhotoAggregates(approved_count=0, pending_count=3, rejected_count=2)
    assert not compute_badges(PLACE, ReviewAggregates(), pending_only, THRESHOLDS).has_photos
    assert compute_badges(PLACE, ReviewAggregates(), PhotoAggregates(approved_count=1), THRESHOLDS).has_photos


def test_thresholds_are_data():
    strict = BadgeThresholds(top_rated_min_rating=4.9, top_rated_min_reviews=100)
    assert not compute_badges(PLACE, ReviewAggregates(4.8, 12), PhotoAggregates(), strict).is_top_rated


def test_falls_back_to_place_aggregates():
    place = SimpleNamespace(id=2, avg_rating=4.7, review_count=30)
    badges = compute_badges(place, None, PhotoAggregates(approved_count=2), THRESHOLDS)
    assert badges == TrustBadges(has_photos=True, is_top_rated=True, is_community_favorite=True)


def test_premium_expiry_is_evaluated_at_display_time():
    now = datetime(2025, 6, 1)
    assert is_premium_active(True, None, now)
    assert is_premium_active(True, now + timedelta(days=1), now)
    assert not is_premium_active(True, now - timedelta(seconds=1), now)
    assert not is_premium_active(False, now + timedelta(days=30), now)


def test_public_badges():
    now = datetime(2025, 6, 1)
    place = SimpleNamespace(
        is_verified=True,
        is_premium=True,
        premium_until=now - timedelta(days=1),
        is_top_rated=True,
        is_community_favorite=False,
        has_photos=True,
    )
    assert public_badges(place, now) == ["verified", "top_rated", "has_photos"]

    place.premium_until = now + timedelta(days=1)
    assert public_badges(place, now) == ["verified", "premium", "top_rated", "has_photos"]
