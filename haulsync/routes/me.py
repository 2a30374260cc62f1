from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from haulsync.core.config import settings
from haulsync.database import get_db
from haulsync.dependencies.auth import get_current_user, get_primary_membership, issue_access_token
from haulsync.models.company import Profile
from haulsync.services.permissions import (
    detect_preset,
    get_permissions_summary,
    get_preset_label,
    permission_flags,
)

router = APIRouter(prefix="/api/me", tags=["me"])


@router.get("/permissions")
def my_permissions(
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    flags = permission_flags(user)
    preset = "admin" if user.is_admin else (user.permission_preset or detect_preset(flags))
    membership = get_primary_membership(db, user)
    return {
        "userId": user.id,
        "companyId": membership.company_id if membership else None,
        "isAdmin": bool(user.is_admin),
        "permissions": flags,
        "preset": preset,
        "presetLabel": get_preset_label(preset),
        "summary": get_permissions_summary(user),
    }


@router.post("/token")
def my_access_token(user: Profile = Depends(get_current_user)):
    """Bearer token for the mobile app. Callers sign in through the dashboard session first."""
    return {
        "accessToken": issue_access_token(user.id),
        "tokenType": "bearer",
        "expiresIn": settings.ACCESS_TOKEN_MAX_AGE_SECONDS,
    }
