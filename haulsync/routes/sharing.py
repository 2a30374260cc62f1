import logging
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.config import client_ip, get_safe_base_url_from_request
from haulsync.core.errors import service_error
from haulsync.database import get_db
from haulsync.dependencies.auth import require_company_id, require_permission
from haulsync.services import sharing

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sharing", tags=["sharing"])


class ClaimIn(BaseModel):
    action: Optional[str] = None


class SharingSettingsIn(BaseModel):
    public_board_enabled: Optional[bool] = None
    public_board_slug: Optional[str] = None
    public_board_show_rates: Optional[bool] = None
    public_board_show_contact: Optional[bool] = None
    public_board_require_auth_to_claim: Optional[bool] = None
    public_board_custom_message: Optional[str] = None
    public_board_logo_url: Optional[str] = None


class SlugCheckIn(BaseModel):
    slug: Optional[str] = None


class ShareMessageIn(BaseModel):
    loadIds: List[int] = Field(default_factory=list)
    format: str = "plain"
    includeLink: bool = True
    linkType: str = "single"


def _visitor(request: Request) -> dict:
    return {
        "ip_address": client_ip(request) or None,
        "user_agent": request.headers.get("user-agent"),
        "referrer": request.headers.get("referer"),
    }


def _strip_success(result: dict) -> dict:
    return {key: value for key, value in result.items() if key != "success"}


# ── Public ────────────────────────────────────────────────────────────────────

@router.get("/board/{slug}")
def public_board(
    slug: str,
    request: Request,
    page: int = 1,
    limit: int = sharing.DEFAULT_PAGE_SIZE,
    origin_city: Optional[str] = None,
    dest_city: Optional[str] = None,
    min_cf: Optional[float] = None,
    max_cf: Optional[float] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    db: Session = Depends(get_db),
):
    result = sharing.get_public_board(
        db,
        slug,
        page=page,
        limit=limit,
        origin_city=origin_city,
        dest_city=dest_city,
        min_cf=min_cf,
        max_cf=max_cf,
        date_from=date_from,
        date_to=date_to,
        **_visitor(request),
    )
    if not result["success"]:
        return service_error(result)
    return _strip_success(result)


@router.get("/load/{token}")
def public_load(token: str, request: Request, db: Session = Depends(get_db)):
    result = sharing.get_public_load(db, token, **_visitor(request))
    if not result["success"]:
        return service_error(result)
    return _strip_success(result)


@router.post("/load/{token}")
def track_claim(token: str, payload: ClaimIn, request: Request, db: Session = Depends(get_db)):
    result = sharing.track_claim(db, token, payload.action, **_visitor(request))
    if not result["success"]:
        return service_error(result)
    return result


# ── Company settings ──────────────────────────────────────────────────────────

@router.get("/settings")
def read_settings(
    request: Request,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    result = sharing.get_sharing_settings(db, company_id, base_url=get_safe_base_url_from_request(request))
    if not result["success"]:
        return service_error(result)
    return _strip_success(result)


@router.post("/settings")
def update_settings(
    payload: SharingSettingsIn,
    request: Request,
    _user=Depends(require_permission("can_post_loads")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    result = sharing.update_sharing_settings(
        db,
        company_id,
        payload.model_dump(exclude_unset=True),
        base_url=get_safe_base_url_from_request(request),
    )
    if not result["success"]:
        return service_error(result)
    return result


@router.put("/settings")
def check_slug(
    payload: SlugCheckIn,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    result = sharing.check_slug_availability(db, company_id, payload.slug)
    if not result["success"]:
        return service_error(result)
    return _strip_success(result)


@router.post("/message")
def share_message(
    payload: ShareMessageIn,
    request: Request,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    result = sharing.generate_share_text(
        db,
        company_id,
        load_ids=payload.loadIds,
        format=payload.format,
        include_link=payload.includeLink,
        link_type=payload.linkType,
        base_url=get_safe_base_url_from_request(request),
    )
    if not result["success"]:
        return service_error(result)
    return _strip_success(result)
