"""Place data sources used by the refresh worker.

A source returns whatever the content extractors found for a place, shaped as
``ExternalPlaceData``. Fetching and parsing live outside this service; only
the output contract is modelled here.
"""

import logging
from typing import Dict, Literal, Optional, Protocol

from pydantic import BaseModel, field_validator

from place_pipeline.db.models import Place

logger = logging.getLogger(__name__)


class ExternalPlaceData(BaseModel):
    """Extractor output for one place. Every field is optional."""

    opening_hours: Optional[Dict[str, str]] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    email: Optional[str] = None
    description: Optional[str] = None
    status: Optional[Literal["active", "temporarily_closed", "permanently_closed"]] = None

    @field_validator("phone", "website", "email", "description")
    @classmethod
    def blank_to_none(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip()
        return value or None

    @field_validator("opening_hours")
    @classmethod
    def drop_empty_days(cls, value: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if not value:
            return None
        hours = {day.lower()[:3]: span.strip() for day, span in value.items() if span and span.strip()}
        return hours or None

    def fillable_fields(self) -> dict:
        """Collected values the store may use to fill missing fields."""
        return self.model_dump(exclude_none=True, exclude={"status"})


class PlaceDataSource(Protocol):
    """Anything that can collect fresh data for a place."""

    async def fetch(self, place: Place) -> ExternalPlaceData:
        ...


class NullDataSource:
    """Source used when no extractor is configured: collects nothing."""

    async def fetch(self, place: Place) -> ExternalPlaceData:
        logger.debug(f"No data source configured, nothing collected for place {place.id}")
        return ExternalPlaceData()
