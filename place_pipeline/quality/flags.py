"""Data-quality flag catalog.

Every issue the scoring engine can detect is a member of ``QualityFlag``.
Members carry their description, severity weight and category as data, so a
flag id that is not in the catalog fails at construction time
(``QualityFlag("NO_WEBSTIE")`` raises ``ValueError``).

Weights are versioned together with the scoring rules through
``FLAG_CATALOG_VERSION``; bump it whenever a weight or check changes so stored
scores can be told apart.
"""

from collections import Counter
from enum import Enum
from typing import Iterable

FLAG_CATALOG_VERSION = "2025.1"


class FlagCategory(str, Enum):
    """Grouping used by the admin data-quality views."""

    WARNING = "warning"
    ERROR = "error"
    STATUS = "status"
    CONFLICT = "conflict"


class QualityFlag(str, Enum):
    """Closed set of data-quality issues. Declaration order is output order."""

    def __new__(cls, flag_id: str, description: str, weight: int, category: FlagCategory):
        obj = str.__new__(cls, flag_id)
        obj._value_ = flag_id
        obj.description = description
        obj.weight = weight
        obj.category = category
        return obj

    NO_WEBSITE = ("NO_WEBSITE", "No website", 25, FlagCategory.WARNING)
    NO_OPENING_HOURS = ("NO_OPENING_HOURS", "No opening hours", 25, FlagCategory.WARNING)
    OPENING_HOURS_INCOMPLETE = (
        "OPENING_HOURS_INCOMPLETE", "Opening hours cover too few days", 5, FlagCategory.WARNING,
    )
    NO_PHONE = ("NO_PHONE", "No phone number", 15, FlagCategory.WARNING)
    NO_DESCRIPTION = ("NO_DESCRIPTION", "No description", 15, FlagCategory.WARNING)
    SHORT_DESCRIPTION = ("SHORT_DESCRIPTION", "Description is too short", 5, FlagCategory.WARNING)
    NO_ADDRESS = ("NO_ADDRESS", "No street address", 10, FlagCategory.WARNING)
    NO_COORDINATES = ("NO_COORDINATES", "No map coordinates", 5, FlagCategory.WARNING)
    NO_PHOTOS = ("NO_PHOTOS", "No approved photos", 10, FlagCategory.WARNING)
    NEVER_REFRESHED = ("NEVER_REFRESHED", "Data has never been refreshed", 20, FlagCategory.WARNING)
    DATA_STALE_30_DAYS = ("DATA_STALE_30_DAYS", "Last refresh over 30 days ago", 5, FlagCategory.WARNING)
    DATA_STALE_90_DAYS = ("DATA_STALE_90_DAYS", "Last refresh over 90 days ago", 15, FlagCategory.WARNING)
    DATA_STALE_365_DAYS = ("DATA_STALE_365_DAYS", "Last refresh over a year ago", 25, FlagCategory.ERROR)
    LOW_REVIEW_COUNT = (
        "LOW_REVIEW_COUNT", "Rating backed by implausibly few reviews", 5, FlagCategory.CONFLICT,
    )
    CONFLICTING_CATEGORY = (
        "CONFLICTING_CATEGORY", "Enrichment category disagrees with assigned categories", 10,
        FlagCategory.CONFLICT,
    )
    STATUS_UNCERTAIN = ("STATUS_UNCERTAIN", "Operating status unknown", 5, FlagCategory.STATUS)
    CONFIRMED_CLOSED = ("CONFIRMED_CLOSED", "Permanently closed", 30, FlagCategory.STATUS)

    def __str__(self) -> str:
        return self.value


STALENESS_FLAGS = (
    QualityFlag.NEVER_REFRESHED,
    QualityFlag.DATA_STALE_30_DAYS,
    QualityFlag.DATA_STALE_90_DAYS,
    QualityFlag.DATA_STALE_365_DAYS,
)

_DECLARATION_ORDER = {flag: index for index, flag in enumerate(QualityFlag)}


def ordered(flags: Iterable[QualityFlag]) -> tuple[QualityFlag, ...]:
    """De-duplicate and sort flags into catalog declaration order."""
    return tuple(sorted(set(flags), key=_DECLARATION_ORDER.__getitem__))


def parse_flags(raw: Iterable[str] | None, strict: bool = False) -> tuple[QualityFlag, ...]:
    """
    Parse a stored flag list.

    Args:
        raw: Flag ids as persisted on the place (may be None)
        strict: Raise on unknown ids instead of skipping them. Unknown ids
            can exist on rows scored by an older catalog version.

    Returns:
        Flags in catalog order
    """
    if not raw:
        return ()
    flags = []
    for flag_id in raw:
        try:
            flags.append(QualityFlag(flag_id))
        except ValueError:
            if strict:
                raise
    return ordered(flags)


def count_by_category(flags: Iterable[QualityFlag]) -> dict[str, int]:
    counts = Counter(flag.category.value for flag in flags)
    return {category.value: counts.get(category.value, 0) for category in FlagCategory}


def flag_severity(flag: QualityFlag) -> int:
    """Severity level: 1 = warning, 2 = error, 3 = critical."""
    if flag is QualityFlag.CONFIRMED_CLOSED:
        return 3
    if flag.category == FlagCategory.ERROR:
        return 2
    return 1


def max_severity(flags: Iterable[QualityFlag]) -> int:
    """Highest severity among ``flags``; 0 when there are none."""
    return max((flag_severity(flag) for flag in flags), default=0)


def catalog() -> list[dict]:
    """Serializable view of the catalog for admin tooling."""
    return [
        {
            "flag": flag.value,
            "description": flag.description,
            "weight": flag.weight,
            "category": flag.category.value,
            "severity": flag_severity(flag),
        }
        for flag in QualityFlag
    ]
