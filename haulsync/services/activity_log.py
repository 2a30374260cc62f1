from __future__ import annotations

import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from haulsync.models.company import ActivityLog

logger = logging.getLogger(__name__)


def log_activity(
    db: Session,
    *,
    company_id: int,
    activity_type: str,
    title: str,
    driver_id: int | None = None,
    actor_name: str | None = None,
    trip_id: int | None = None,
    load_id: int | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Write one feed entry in its own commit. Never raises; the caller's change is already committed."""
    try:
        db.add(
            ActivityLog(
                company_id=company_id,
                driver_id=driver_id,
                actor_name=actor_name,
                activity_type=activity_type,
                trip_id=trip_id,
                load_id=load_id,
                title=title,
                description=description,
                activity_metadata=metadata,
            )
        )
        db.commit()
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("activity: insert failed type=%s company=%s: %s", activity_type, company_id, exc)
        return False

