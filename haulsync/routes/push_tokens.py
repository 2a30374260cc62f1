import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.errors import error_response
from haulsync.database import get_db
from haulsync.dependencies.auth import get_current_user
from haulsync.models.company import Profile
from haulsync.models.fleet import Driver
from haulsync.services.push_notifications import PLATFORMS, deactivate_push_token, register_push_token

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/push-tokens", tags=["push"])


class PushTokenIn(BaseModel):
    token: str = Field(min_length=1, max_length=255)
    platform: Optional[str] = None


class PushTokenDelete(BaseModel):
    token: str = Field(min_length=1, max_length=255)


@router.post("")
def register(
    payload: PushTokenIn,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if payload.platform and payload.platform not in PLATFORMS:
        return error_response(400, "platform must be ios or android")
    # Drivers get the token on both the profile and the driver row
    driver = db.query(Driver).filter(Driver.user_id == user.id).first()
    row = register_push_token(
        db,
        token=payload.token,
        platform=payload.platform,
        user_id=user.id,
        driver_id=driver.id if driver else None,
    )
    logger.info("push: token registered user=%s driver=%s", user.id, row.driver_id)
    return {"success": True, "id": row.id}


@router.delete("")
def unregister(
    payload: PushTokenDelete,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not deactivate_push_token(db, token=payload.token, user_id=user.id):
        return error_response(404, "Push token not found")
    return {"success": True}
