"""
Request identity for dashboard and mobile clients.

The web dashboard authenticates with the session cookie (`user_id`). The mobile
app sends `Authorization: Bearer <token>`, where the token is issued by
`POST /api/me/token` and signed with SESSION_SECRET_KEY. Company scope always
comes from the caller's primary membership.
"""
from __future__ import annotations

import logging
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from sqlalchemy.orm import Session

from haulsync.core.config import settings
from haulsync.database import get_db
from haulsync.models.company import CompanyMembership, Profile
from haulsync.models.fleet import Driver
from haulsync.services.permissions import can_access

logger = logging.getLogger(__name__)

ACCESS_TOKEN_SALT = "haulsync-access-token"

bearer_scheme = HTTPBearer(auto_error=False)


def _serializer() -> URLSafeTimedSerializer:
    return URLSafeTimedSerializer(settings.SESSION_SECRET_KEY, salt=ACCESS_TOKEN_SALT)


def issue_access_token(user_id: int) -> str:
    return _serializer().dumps({"uid": int(user_id)})


def verify_access_token(token: str) -> int | None:
    """User id carried by a valid, unexpired token; None otherwise."""
    try:
        payload = _serializer().loads(token, max_age=settings.ACCESS_TOKEN_MAX_AGE_SECONDS)
    except SignatureExpired:
        logger.info("auth: expired access token")
        return None
    except BadSignature:
        logger.warning("auth: rejected access token with bad signature")
        return None
    user_id = payload.get("uid") if isinstance(payload, dict) else None
    return user_id if isinstance(user_id, int) else None


def _session_user(
    request: Request, db: Session, credentials: HTTPAuthorizationCredentials | None
) -> Profile | None:
    """Resolve user from the session cookie, falling back to a signed bearer token."""
    user_id = request.session.get("user_id") if "session" in request.scope else None
    if not user_id and credentials is not None:
        user_id = verify_access_token(credentials.credentials)
    if not user_id:
        return None
    return db.query(Profile).filter(Profile.id == user_id).first()


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> Profile:
    user = _session_user(request, db, credentials)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized")
    return user


def get_primary_membership(db: Session, user: Profile) -> CompanyMembership | None:
    membership = (
        db.query(CompanyMembership)
        .filter(CompanyMembership.user_id == user.id, CompanyMembership.is_primary.is_(True))
        .first()
    )
    if membership:
        return membership
    # Single-company users often have no primary flag set
    return (
        db.query(CompanyMembership)
        .filter(CompanyMembership.user_id == user.id)
        .order_by(CompanyMembership.id.asc())
        .first()
    )


def require_company_id(
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> int:
    membership = get_primary_membership(db, user)
    if not membership:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No company found")
    return membership.company_id


def get_current_driver(
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Driver:
    driver = db.query(Driver).filter(Driver.user_id == user.id).first()
    if not driver:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Driver profile not found")
    return driver


def require_permission(*keys: str):
    """Dependency factory: caller must hold at least one of `keys` (admins always pass)."""

    def _check(user: Profile = Depends(get_current_user)) -> Profile:
        if not can_access(user, list(keys)):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Permission denied")
        return user

    return _check
