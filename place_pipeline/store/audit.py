"""Audit trail writer for pipeline batch runs."""

import logging
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from place_pipeline.db.models import AuditLog

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"

QUALITY_SCAN_COMPLETED = "QUALITY_SCAN_COMPLETED"
BADGE_SWEEP_COMPLETED = "BADGE_SWEEP_COMPLETED"
PLACE_REFRESH_RUN = "PLACE_REFRESH_RUN"


async def record_audit_event(
    db: AsyncSession,
    event_type: str,
    target_type: str,
    metadata: Optional[dict[str, Any]] = None,
    target_id: Optional[str] = None,
    actor_role: str = SYSTEM_ACTOR,
) -> AuditLog:
    """Append one audit row and commit it."""
    entry = AuditLog(
        actor_role=actor_role,
        event_type=event_type,
        target_type=target_type,
        target_id=target_id,
        metadata_json=metadata or {},
    )
    db.add(entry)
    await db.commit()
    logger.debug(f"Audit event {event_type} recorded for {target_type}")
    return entry
