"""FastAPI dependencies."""

import hmac
from typing import Optional

from fastapi import Header, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from place_pipeline.config import settings
from place_pipeline.db.session import AsyncSessionLocal, get_db
from place_pipeline.errors import ConfigurationError
from place_pipeline.worker.sources import NullDataSource, PlaceDataSource


async def get_database() -> AsyncSession:
    """Dependency for database session."""
    async for session in get_db():
        yield session
        break  # Only yield once, as FastAPI handles the session lifecycle


def get_session_factory() -> async_sessionmaker:
    """Dependency for batch drivers that open one session per place."""
    return AsyncSessionLocal


def _matches(candidate: Optional[str], secret: str) -> bool:
    return bool(candidate) and hmac.compare_digest(candidate.encode(), secret.encode())


async def require_cron_auth(
    authorization: Optional[str] = Header(None),
    x_vercel_cron: Optional[str] = Header(None, alias="x-vercel-cron"),
    secret: Optional[str] = Query(None),
) -> None:
    """
    Dependency for scheduled trigger endpoints.

    Accepts ``Authorization: Bearer <secret>``, ``?secret=<secret>``, or the
    platform scheduler header when trusting it is enabled.

    Raises:
        ConfigurationError: no cron secret is configured (served as 503)
        HTTPException: 401 if the request carries no valid credential
    """
    if not settings.cron_secret:
        raise ConfigurationError("Cron secret not configured")

    if settings.trust_scheduler_header and (x_vercel_cron or "").lower() == "true":
        return

    bearer = None
    if authorization and authorization.lower().startswith("bearer "):
        bearer = authorization[7:].strip()

    if _matches(bearer, settings.cron_secret) or _matches(secret, settings.cron_secret):
        return

    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unauthorized",
    )


async def require_admin_api_key(
    x_admin_api_key: str = Header(..., alias="X-Admin-API-Key")
) -> None:
    """
    Dependency to require admin API key for protected endpoints.

    Raises:
        ConfigurationError: no key is configured (served as 503)
        HTTPException: 403 if invalid
    """
    if not settings.admin_api_key:
        raise ConfigurationError("Admin API key not configured")

    if not _matches(x_admin_api_key, settings.admin_api_key):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key"
        )


def get_place_data_source() -> PlaceDataSource:
    """Dependency for the refresh worker's data source."""
    return NullDataSource()
