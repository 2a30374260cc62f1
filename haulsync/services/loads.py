"""loads.py

Dispatcher-side load records: create, post to the marketplace, change status.

Rules:
  1. `posting_type` is `load` or `pickup`. Posting a pickup needs
     can_post_pickups, posting a load needs can_post_loads.
  2. A load handed to an outside carrier cannot be posted again.
  3. A status change on a load that sits on a trip pushes the trip's driver.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from haulsync.models.load import Load
from haulsync.models.trip import Trip
from haulsync.services.activity_log import log_activity
from haulsync.services.permissions import has_permission
from haulsync.services.push_notifications import notify_driver_load_status_changed

logger = logging.getLogger(__name__)

POSTING_TYPES = ("load", "pickup")
LOAD_STATUSES = ("pending", "assigned", "in_transit", "delivered", "cancelled")
LOAD_FIELDS = (
    "load_number",
    "posting_type",
    "load_subtype",
    "description",
    "pickup_city",
    "pickup_state",
    "pickup_zip",
    "delivery_city",
    "delivery_state",
    "delivery_zip",
    "pickup_date",
    "delivery_date",
    "cubic_feet",
    "rate_per_cuft",
    "total_rate",
    "balance_due",
    "is_open_to_counter",
    "rfd_date",
    "rfd_date_tbd",
)
MONEY_FIELDS = ("rate_per_cuft", "total_rate", "balance_due")


def _fail(error: str, status_code: int = 400) -> dict[str, Any]:
    return {"success": False, "error": error, "status_code": status_code}


def serialize_load(load: Load) -> dict[str, Any]:
    return {
        "id": load.id,
        "load_number": load.load_number,
        "posting_type": load.posting_type,
        "status": load.status,
        "posting_status": load.posting_status,
        "is_marketplace_visible": bool(load.is_marketplace_visible),
        "is_open_to_counter": bool(load.is_open_to_counter),
        "pickup_city": load.pickup_city,
        "pickup_state": load.pickup_state,
        "pickup_zip": load.pickup_zip,
        "delivery_city": load.delivery_city,
        "delivery_state": load.delivery_state,
        "delivery_zip": load.delivery_zip,
        "pickup_date": load.pickup_date.isoformat() if load.pickup_date else None,
        "rfd_date": load.rfd_date.isoformat() if load.rfd_date else None,
        "cubic_feet": load.cubic_feet,
        "rate_per_cuft": float(load.rate_per_cuft) if load.rate_per_cuft is not None else None,
        "total_rate": float(load.total_rate) if load.total_rate is not None else None,
        "trip_id": load.trip_id,
        "assigned_carrier_id": load.assigned_carrier_id,
        "carrier_rate": float(load.carrier_rate) if load.carrier_rate is not None else None,
        "carrier_rate_type": load.carrier_rate_type,
    }


def create_load(db: Session, company_id: int, data: dict[str, Any]) -> dict[str, Any]:
    for key in data:
        if key not in LOAD_FIELDS:
            return _fail(f"Unknown field: {key}")
    posting_type = data.get("posting_type") or "load"
    if posting_type not in POSTING_TYPES:
        return _fail("posting_type must be load or pickup")
    for key in ("pickup_state", "delivery_state"):
        value = data.get(key)
        if value is not None and len(value.strip()) != 2:
            return _fail(f"{key} must be a two-letter state code")
    if data.get("cubic_feet") is not None and data["cubic_feet"] <= 0:
        return _fail("cubic_feet must be greater than zero")

    clean = dict(data, posting_type=posting_type)
    for key in ("pickup_state", "delivery_state"):
        if clean.get(key):
            clean[key] = clean[key].strip().upper()
    for key in MONEY_FIELDS:
        if clean.get(key) is not None:
            try:
                clean[key] = Decimal(str(clean[key]))
            except InvalidOperation:
                return _fail(f"{key} must be a number")
            if not clean[key].is_finite() or clean[key] < 0:
                return _fail(f"{key} cannot be negative")

    load = Load(company_id=company_id, status="pending", posting_status="draft", **clean)
    db.add(load)
    db.commit()
    db.refresh(load)
    logger.info("loads: created load=%s company=%s type=%s", load.id, company_id, posting_type)
    return {"success": True, "load": serialize_load(load)}


def company_load(db: Session, company_id: int, load_id: int) -> Load | None:
    return db.query(Load).filter(Load.id == load_id, Load.company_id == company_id).first()


def set_marketplace_posting(db: Session, load: Load, user: Any, *, posted: bool) -> dict[str, Any]:
    needed = "can_post_pickups" if load.posting_type == "pickup" else "can_post_loads"
    if not has_permission(user, needed):
        return _fail("Permission denied", 403)
    if posted and load.assigned_carrier_id:
        return _fail("This load is already assigned to a carrier", 409)

    load.is_marketplace_visible = posted
    if posted:
        load.posting_status = "posted"
        load.posted_by_company_id = load.company_id
        load.posted_to_marketplace_at = datetime.now(timezone.utc)
    else:
        load.posting_status = "draft"
    db.commit()
    db.refresh(load)
    logger.info("loads: load=%s marketplace posted=%s", load.id, posted)
    return {"success": True, "load": serialize_load(load)}


def update_load_status(
    db: Session, load: Load, new_status: str | None, *, actor_name: str | None = None
) -> dict[str, Any]:
    if new_status not in LOAD_STATUSES:
        return _fail(f"status must be one of: {', '.join(LOAD_STATUSES)}")
    if load.status == new_status:
        return {"success": True, "load": serialize_load(load)}

    load.status = new_status
    db.commit()
    db.refresh(load)
    logger.info("loads: load=%s status=%s", load.id, new_status)

    trip = db.query(Trip).filter(Trip.id == load.trip_id).first() if load.trip_id else None
    log_activity(
        db,
        company_id=load.company_id,
        activity_type="load_status_changed",
        title=f"Load {load.load_number or load.id} is now {new_status.replace('_', ' ')}",
        actor_name=actor_name,
        load_id=load.id,
        trip_id=load.trip_id,
        driver_id=trip.driver_id if trip else None,
    )
    if trip and trip.driver_id:
        try:
            notify_driver_load_status_changed(
                db,
                driver_id=trip.driver_id,
                load_id=load.id,
                load_number=load.load_number or str(load.id),
                new_status=new_status,
            )
        except (requests.RequestException, SQLAlchemyError) as exc:
            logger.warning("loads: driver notification failed load=%s: %s", load.id, exc)
    return {"success": True, "load": serialize_load(load)}
