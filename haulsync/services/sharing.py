"""sharing.py

Public load board, public load pages and share text.

Public views:
  1. The board lists a company's `pending` loads, soonest pickup first.
  2. Rates appear only when the company shows rates; contact details only when
     it shows contact.
  3. Every view and claim action writes a share_analytics row. Analytics are
     best effort: a failed insert is logged and the response still goes out.
  4. A single load page and its claim tracking are addressed by the load's
     public_token. Sequential ids are never accepted there.
"""

from __future__ import annotations

import logging
import math
import re
from datetime import date
from typing import Any

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from haulsync.models.company import Company
from haulsync.models.load import Load, new_public_token
from haulsync.models.marketplace import ShareAnalytics
from haulsync.services.share_messages import SHARE_FORMATS, build_share_message

logger = logging.getLogger(__name__)

SLUG_RE = re.compile(r"^[a-z0-9-]{2,50}$")
SLUG_FORMAT_ERROR = "Invalid slug format. Use lowercase letters, numbers, and hyphens (2-50 characters)."
SLUG_TAKEN_ERROR = "This slug is already taken. Please choose a different one."

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 50
RELATED_LOAD_LIMIT = 6
CLAIM_ACTIONS = ("claim_click", "claim_submitted")

SETTINGS_FIELDS = (
    "public_board_enabled",
    "public_board_slug",
    "public_board_show_rates",
    "public_board_show_contact",
    "public_board_require_auth_to_claim",
    "public_board_custom_message",
    "public_board_logo_url",
)
BOOLEAN_FIELDS = {
    "public_board_enabled",
    "public_board_show_rates",
    "public_board_show_contact",
    "public_board_require_auth_to_claim",
}


def _fail(error: str, status_code: int = 400) -> dict[str, Any]:
    return {"success": False, "error": error, "status_code": status_code}


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value else None


def _float(value: Any) -> float | None:
    return float(value) if value is not None else None


def record_share_event(
    db: Session,
    *,
    company_id: int,
    event_type: str,
    load_id: int | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    referrer: str | None = None,
) -> bool:
    try:
        db.add(
            ShareAnalytics(
                company_id=company_id,
                load_id=load_id,
                event_type=event_type,
                ip_address=ip_address,
                user_agent=user_agent,
                referrer=referrer,
            )
        )
        db.commit()
        return True
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("sharing: analytics insert failed company=%s event=%s: %s", company_id, event_type, exc)
        return False


# ── Public board ──────────────────────────────────────────────────────────────

def public_company(company: Company) -> dict[str, Any]:
    contact = None
    if company.public_board_show_contact:
        contact = {"email": company.email, "phone": company.phone}
    return {
        "name": company.name,
        "slug": company.public_board_slug,
        "logo_url": company.public_board_logo_url,
        "custom_message": company.public_board_custom_message,
        "require_auth_to_claim": bool(company.public_board_require_auth_to_claim),
        "contact": contact,
    }


def public_load(load: Load, *, show_rates: bool) -> dict[str, Any]:
    """Only the fields a stranger may see."""
    data = {
        "id": load.id,
        "public_token": load.public_token,
        "load_number": load.load_number,
        "pickup_city": load.pickup_city,
        "pickup_state": load.pickup_state,
        "pickup_date": _iso(load.pickup_date),
        "pickup_window_start": _iso(load.pickup_window_start),
        "pickup_window_end": _iso(load.pickup_window_end),
        "delivery_city": load.delivery_city,
        "delivery_state": load.delivery_state,
        "delivery_date": _iso(load.delivery_date),
        "cubic_feet": load.cubic_feet,
        "description": load.description,
    }
    if show_rates:
        data["rate_per_cuft"] = _float(load.rate_per_cuft)
        data["total_rate"] = _float(load.total_rate)
    return data


def _clamp_page(page: int | None, limit: int | None) -> tuple[int, int]:
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or DEFAULT_PAGE_SIZE), 1), MAX_PAGE_SIZE)
    return page, limit


def get_public_board(
    db: Session,
    slug: str,
    *,
    page: int | None = None,
    limit: int | None = None,
    origin_city: str | None = None,
    dest_city: str | None = None,
    min_cf: float | None = None,
    max_cf: float | None = None,
    date_from: date | None = None,
    date_to: date | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    referrer: str | None = None,
) -> dict[str, Any]:
    if not slug or len(slug) < 2:
        return _fail("Invalid board slug", 400)

    company = db.query(Company).filter(Company.public_board_slug == slug).first()
    if not company:
        return _fail("Board not found", 404)
    if not company.public_board_enabled:
        return _fail("This board is currently disabled", 403)

    page, limit = _clamp_page(page, limit)
    query = db.query(Load).filter(Load.company_id == company.id, Load.status == "pending")
    if origin_city:
        query = query.filter(Load.pickup_city.ilike(f"%{origin_city}%"))
    if dest_city:
        query = query.filter(Load.delivery_city.ilike(f"%{dest_city}%"))
    if min_cf is not None:
        query = query.filter(Load.cubic_feet >= min_cf)
    if max_cf is not None:
        query = query.filter(Load.cubic_feet <= max_cf)
    if date_from:
        query = query.filter(Load.pickup_date >= date_from)
    if date_to:
        query = query.filter(Load.pickup_date <= date_to)

    total = query.count()
    rows = (
        query.order_by(Load.pickup_date.is_(None), Load.pickup_date.asc(), Load.id.asc())
        .offset((page - 1) * limit)
        .limit(limit)
        .all()
    )

    record_share_event(
        db,
        company_id=company.id,
        event_type="public_view",
        ip_address=ip_address,
        user_agent=user_agent,
        referrer=referrer,
    )

    show_rates = bool(company.public_board_show_rates)
    return {
        "success": True,
        "company": public_company(company),
        "loads": [public_load(row, show_rates=show_rates) for row in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }


def _load_by_token(db: Session, token: str | None) -> Load | None:
    if not token:
        return None
    return db.query(Load).filter(Load.public_token == token).first()


def ensure_public_token(db: Session, load: Load) -> str:
    """Loads created before tokens existed get one the first time they are shared."""
    if not load.public_token:
        load.public_token = new_public_token()
        db.commit()
    return load.public_token


def get_public_load(
    db: Session,
    token: str,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    referrer: str | None = None,
) -> dict[str, Any]:
    load = _load_by_token(db, token)
    if not load:
        return _fail("Load not found", 404)
    if load.status != "pending":
        return _fail("This load is no longer available", 410)

    company = db.query(Company).filter(Company.id == load.company_id).first()
    if not company:
        return _fail("Load not found", 404)
    if not company.public_board_enabled:
        return _fail("Public sharing is disabled for this company", 403)

    show_rates = bool(company.public_board_show_rates)
    related = (
        db.query(Load)
        .filter(Load.company_id == company.id, Load.status == "pending", Load.id != load.id)
        .order_by(Load.pickup_date.is_(None), Load.pickup_date.asc(), Load.id.asc())
        .limit(RELATED_LOAD_LIMIT)
        .all()
    )

    record_share_event(
        db,
        company_id=company.id,
        load_id=load.id,
        event_type="load_view",
        ip_address=ip_address,
        user_agent=user_agent,
        referrer=referrer,
    )
    return {
        "success": True,
        "load": public_load(load, show_rates=show_rates),
        "company": public_company(company),
        "related_loads": [public_load(row, show_rates=show_rates) for row in related],
    }


def track_claim(
    db: Session,
    token: str,
    action: str | None,
    *,
    ip_address: str | None = None,
    user_agent: str | None = None,
    referrer: str | None = None,
) -> dict[str, Any]:
    if not action:
        return _fail("Load ID and action are required", 400)
    if action not in CLAIM_ACTIONS:
        return _fail("Invalid action", 400)

    load = _load_by_token(db, token)
    if not load:
        return _fail("Load not found", 404)

    record_share_event(
        db,
        company_id=load.company_id,
        load_id=load.id,
        event_type=action,
        ip_address=ip_address,
        user_agent=user_agent,
        referrer=referrer,
    )
    return {"success": True}


# ── Settings ──────────────────────────────────────────────────────────────────

def board_url(base_url: str, slug: str | None) -> str | None:
    return f"{base_url.rstrip('/')}/board/{slug}" if slug else None


def serialize_sharing_settings(company: Company) -> dict[str, Any]:
    return {
        "public_board_enabled": company.public_board_enabled if company.public_board_enabled is not None else True,
        "public_board_slug": company.public_board_slug,
        "public_board_show_rates": company.public_board_show_rates if company.public_board_show_rates is not None else True,
        "public_board_show_contact": (
            company.public_board_show_contact if company.public_board_show_contact is not None else True
        ),
        "public_board_require_auth_to_claim": (
            company.public_board_require_auth_to_claim
            if company.public_board_require_auth_to_claim is not None
            else True
        ),
        "public_board_custom_message": company.public_board_custom_message,
        "public_board_logo_url": company.public_board_logo_url,
    }


def get_sharing_settings(db: Session, company_id: int, *, base_url: str) -> dict[str, Any]:
    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        return _fail("Company not found", 404)
    return {
        "success": True,
        "settings": serialize_sharing_settings(company),
        "board_url": board_url(base_url, company.public_board_slug),
        "company_name": company.name,
    }


def slug_taken(db: Session, slug: str, company_id: int) -> bool:
    return (
        db.query(Company.id)
        .filter(Company.public_board_slug == slug, Company.id != company_id)
        .first()
        is not None
    )


def validate_sharing_update(updates: dict[str, Any]) -> str | None:
    for key in updates:
        if key not in SETTINGS_FIELDS:
            return f"Unknown setting: {key}"
    for key in BOOLEAN_FIELDS & set(updates):
        if not isinstance(updates[key], bool):
            return f"{key} must be true or false"
    slug = updates.get("public_board_slug")
    if "public_board_slug" in updates and (not isinstance(slug, str) or not SLUG_RE.match(slug)):
        return "Slug must be lowercase alphanumeric with hyphens only"
    message = updates.get("public_board_custom_message")
    if message is not None and (not isinstance(message, str) or len(message) > 500):
        return "Custom message must be 500 characters or fewer"
    logo = updates.get("public_board_logo_url")
    if logo is not None and (
        not isinstance(logo, str) or len(logo) > 2000 or not logo.startswith(("http://", "https://"))
    ):
        return "Logo URL must be a valid URL"
    return None


def update_sharing_settings(
    db: Session, company_id: int, updates: dict[str, Any], *, base_url: str
) -> dict[str, Any]:
    error = validate_sharing_update(updates)
    if error:
        return _fail(error, 400)

    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        return _fail("Company not found", 404)

    slug = updates.get("public_board_slug")
    if slug and slug != company.public_board_slug and slug_taken(db, slug, company_id):
        return _fail(SLUG_TAKEN_ERROR, 409)

    for key, value in updates.items():
        setattr(company, key, value)
    try:
        db.commit()
    except IntegrityError:
        # Another company claimed the slug between the check and the write
        db.rollback()
        logger.info("sharing: slug race lost company=%s slug=%s", company_id, slug)
        return _fail(SLUG_TAKEN_ERROR, 409)
    db.refresh(company)
    logger.info("sharing: settings updated company=%s fields=%s", company_id, sorted(updates))
    return {
        "success": True,
        "settings": serialize_sharing_settings(company),
        "board_url": board_url(base_url, company.public_board_slug),
    }


def check_slug_availability(db: Session, company_id: int, slug: str | None) -> dict[str, Any]:
    if not slug or not SLUG_RE.match(slug):
        return _fail(SLUG_FORMAT_ERROR, 400)
    return {"success": True, "available": not slug_taken(db, slug, company_id), "slug": slug}


# ── Share text ────────────────────────────────────────────────────────────────

def generate_share_text(
    db: Session,
    company_id: int,
    *,
    load_ids: list[int],
    format: str = "plain",
    include_link: bool = True,
    link_type: str = "single",
    base_url: str,
) -> dict[str, Any]:
    if not load_ids:
        return _fail("No loads specified", 400)
    if format not in SHARE_FORMATS:
        return _fail("Invalid format", 400)

    company = db.query(Company).filter(Company.id == company_id).first()
    if not company:
        return _fail("Company not found", 404)

    loads = (
        db.query(Load)
        .filter(Load.id.in_(load_ids), Load.company_id == company_id, Load.status == "pending")
        .order_by(Load.pickup_date.is_(None), Load.pickup_date.asc(), Load.id.asc())
        .all()
    )
    if not loads:
        return _fail("Loads not found or not available", 404)

    link = None
    if include_link:
        if link_type == "single" and len(loads) == 1:
            link = f"{base_url.rstrip('/')}/loads/{ensure_public_token(db, loads[0])}/public"
        else:
            link = board_url(base_url, company.public_board_slug)

    show_rates = company.public_board_show_rates if company.public_board_show_rates is not None else True
    text = build_share_message(loads, format=format, link=link, show_rates=show_rates, company_name=company.name)

    record_share_event(
        db,
        company_id=company_id,
        load_id=loads[0].id if len(loads) == 1 else None,
        event_type="share_generated",
    )
    return {"success": True, "text": text, "link": link, "loadCount": len(loads)}
