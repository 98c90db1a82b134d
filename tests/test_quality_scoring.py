"""Tests for the quality scoring engine."""

from dataclasses import replace
from datetime import datetime, timedelta

import pytest

from place_pipeline.db.models import RefreshPriority, RefreshReason
from place_pipeline.quality.flags import QualityFlag
from place_pipeline.quality.scoring import (
    PlaceSnapshot,
    QualityBand,
    ScoringConfig,
    needs_refresh,
    quality_band,
    refresh_priority,
    refresh_reason,
    score_place,
)

NOW = datetime(2025, 6, 1, 12, 0, 0)

COMPLETE = PlaceSnapshot(
    id=1,
    name="Dierenkliniek Centrum",
    website="https://dierenkliniek.example",
    phone="+31 20 123 4567",
    address="Dorpsstraat 1",
    description="Full-service veterinary clinic for cats, dogs and small pets in the centre.",
    lat=52.37,
    lng=4.89,
    opening_hours={day: "09:00-17:00" for day in ("mon", "tue", "wed", "thu", "fri")},
    approved_photo_count=3,
    last_refreshed_at=NOW - timedelta(days=2),
    avg_rating=4.6,
    review_count=40,
    status="active",
    category_slugs=("vet",),
    category_hint="vet",
)


def test_complete_place_scores_full_marks():
    result = score_place(COMPLETE, NOW)
    assert result.score == 100
    assert result.flags == ()


def test_missing_website_hours_and_stale_data_scores_below_30():
    place = replace(COMPLETE, website=None, opening_hours=None, last_refreshed_at=NOW - timedelta(days=400))
    result = score_place(place, NOW)

    assert result.score < 30
    assert QualityFlag.NO_WEBSITE in result.flags
    assert QualityFlag.NO_OPENING_HOURS in result.flags
    assert QualityFlag.DATA_STALE_365_DAYS in result.flags
    assert refresh_reason(result.score) is RefreshReason.LOW_QUALITY
    assert refresh_priority(result.score) is RefreshPriority.HIGH


def test_each_flag_only_when_its_check_fails():
    place = replace(COMPLETE, phone="   ")
    result = score_place(place, NOW)
    assert result.flags == (QualityFlag.NO_PHONE,)
    assert result.score == 100 - QualityFlag.NO_PHONE.weight


def test_score_is_clamped_to_zero():
    place = PlaceSnapshot(id=2, status="permanently_closed", avg_rating=4.0, review_count=1)
    result = score_place(place, NOW)
    assert sum(flag.weight for flag in result.flags) > 100
    assert result.score == 0


def test_scoring_is_deterministic():
    place = replace(COMPLETE, description="Short", approved_photo_count=0)
    assert score_place(place, NOW) == score_place(place, NOW)


@pytest.mark.parametrize(
    "age_days,expected",
    [
        (29, None),
        (30, QualityFlag.DATA_STALE_30_DAYS),
        (89, QualityFlag.DATA_STALE_30_DAYS),
        (90, QualityFlag.DATA_STALE_90_DAYS),
        (364, QualityFlag.DATA_STALE_90_DAYS),
        (365, QualityFlag.DATA_STALE_365_DAYS),
    ],
)
def test_staleness_flags_are_mutually_exclusive(age_days, expected):
    place = replace(COMPLETE, last_refreshed_at=NOW - timedelta(days=age_days))
    result = score_place(place, NOW)
    stale = [flag for flag in result.flags if flag.name.startswith(("DATA_STALE", "NEVER"))]
    assert stale == ([expected] if expected else [])


def test_never_refreshed():
    result = score_place(replace(COMPLETE, last_refreshed_at=None), NOW)
    assert result.flags == (QualityFlag.NEVER_REFRESHED,)


def test_description_and_hours_limits_come_from_config():
    place = replace(
        COMPLETE,
        description="A cosy grooming salon.",
        opening_hours={"mon": "09:00-17:00", "tue": "", "wed": "09:00-17:00"},
    )
    result = score_place(place, NOW)
    assert QualityFlag.SHORT_DESCRIPTION in result.flags
    assert QualityFlag.OPENING_HOURS_INCOMPLETE in result.flags

    lenient = ScoringConfig(description_min_length=10, min_opening_hours_days=2)
    assert score_place(place, NOW, lenient).flags == ()


def test_rating_with_too_few_reviews():
    place = replace(COMPLETE, avg_rating=5.0, review_count=1)
    assert QualityFlag.LOW_REVIEW_COUNT in score_place(place, NOW).flags

    unrated = replace(COMPLETE, avg_rating=None, review_count=0)
    assert QualityFlag.LOW_REVIEW_COUNT not in score_place(unrated, NOW).flags


def test_conflicting_category_hint():
    place = replace(COMPLETE, category_hint="groomer")
    assert QualityFlag.CONFLICTING_CATEGORY in score_place(place, NOW).flags

    assert QualityFlag.CONFLICTING_CATEGORY not in score_place(replace(COMPLETE, category_hint="VET"), NOW).flags


def test_status_flags():
    assert score_place(replace(COMPLETE, status="unknown"), NOW).flags == (QualityFlag.STATUS_UNCERTAIN,)
    assert score_place(replace(COMPLETE, status="permanently_closed"), NOW).flags == (
        QualityFlag.CONFIRMED_CLOSED,
    )
    assert score_place(replace(COMPLETE, status="temporarily_closed"), NOW).flags == ()


def test_flags_in_catalog_order():
    place = replace(COMPLETE, approved_photo_count=0, website="", phone=None)
    flags = score_place(place, NOW).flags
    assert flags == (QualityFlag.NO_WEBSITE, QualityFlag.NO_PHONE, QualityFlag.NO_PHOTOS)


@pytest.mark.parametrize(
    "score,priority",
    [(0, RefreshPriority.HIGH), (29, RefreshPriority.HIGH), (30, RefreshPriority.MEDIUM),
     (59, RefreshPriority.MEDIUM), (60, RefreshPriority.LOW), (100, RefreshPriority.LOW)],
)
def test_refresh_priority_bands(score, priority):
    assert refresh_priority(score) is priority


def test_needs_refresh_uses_threshold():
    assert needs_refresh(49, 50)
    assert not needs_refresh(50, 50)
    assert needs_refresh(69, 70)


def test_quality_band():
    assert quality_band(100) is QualityBand.EXCELLENT
    assert quality_band(85) is QualityBand.EXCELLENT
    assert quality_band(70) is QualityBand.GOOD
    assert quality_band(50) is QualityBand.FAIR
    assert quality_band(30) is QualityBand.POOR
    assert quality_band(29) is QualityBand.CRITICAL
