"""marketplace.py

Load board between companies: browse posted loads, request them, answer requests.

Rules:
  1. The board lists loads that are visible, posted, unassigned, and owned by
     another company.
  2. A carrier holds at most one pending request per load. Owners cannot
     request their own loads. Counter offers need a load open to counters.
     Proposed load dates cannot fall before the load's RFD date.
  3. Accepting a request assigns the load to the carrier at the final rate,
     takes it off the board, declines every other pending request, and opens a
     partnership when the two companies had none.
  4. Only the requesting carrier may withdraw, and only while pending.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import requests
from sqlalchemy import or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from haulsync.models.company import CompanyPartnership
from haulsync.models.load import Load
from haulsync.models.marketplace import LoadRequest
from haulsync.services.activity_log import log_activity
from haulsync.services.loads import serialize_load
from haulsync.services.matching import partner_company_ids
from haulsync.services.push_notifications import send_push_to_user

logger = logging.getLogger(__name__)

REQUEST_TYPES = ("accept_listed", "counter_offer")
RATE_TYPES = ("per_cuft", "flat")
OTHER_CARRIER_ASSIGNED = "Load assigned to another carrier"


def _fail(error: str, status_code: int = 400) -> dict[str, Any]:
    return {"success": False, "error": error, "status_code": status_code}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Any) -> str | None:
    return value.isoformat() if value else None


def serialize_request(row: LoadRequest) -> dict[str, Any]:
    return {
        "id": row.id,
        "load_id": row.load_id,
        "carrier_id": row.carrier_id,
        "request_type": row.request_type,
        "is_partner": bool(row.is_partner),
        "accepted_company_rate": bool(row.accepted_company_rate),
        "offered_rate": float(row.offered_rate) if row.offered_rate is not None else None,
        "offered_rate_type": row.offered_rate_type,
        "message": row.message,
        "proposed_load_date_start": _iso(row.proposed_load_date_start),
        "proposed_load_date_end": _iso(row.proposed_load_date_end),
        "proposed_delivery_date_start": _iso(row.proposed_delivery_date_start),
        "proposed_delivery_date_end": _iso(row.proposed_delivery_date_end),
        "status": row.status,
        "final_rate": float(row.final_rate) if row.final_rate is not None else None,
        "final_rate_type": row.final_rate_type,
        "creates_partnership": bool(row.creates_partnership),
        "response_message": row.response_message,
        "responded_at": _iso(row.responded_at),
        "created_at": _iso(row.created_at),
    }


def list_marketplace_loads(
    db: Session,
    company_id: int,
    *,
    origin_state: str | None = None,
    destination_state: str | None = None,
    min_cuft: float | None = None,
    max_cuft: float | None = None,
) -> list[dict[str, Any]]:
    query = db.query(Load).filter(
        Load.is_marketplace_visible.is_(True),
        Load.posting_status == "posted",
        Load.assigned_carrier_id.is_(None),
        Load.company_id != company_id,
    )
    if origin_state:
        query = query.filter(Load.pickup_state == origin_state.strip().upper())
    if destination_state:
        query = query.filter(Load.delivery_state == destination_state.strip().upper())
    if min_cuft is not None:
        query = query.filter(Load.cubic_feet >= min_cuft)
    if max_cuft is not None:
        query = query.filter(Load.cubic_feet <= max_cuft)
    rows = query.order_by(Load.posted_to_marketplace_at.desc(), Load.id.desc()).all()
    return [serialize_load(row) for row in rows]


def _rate(value: Any) -> Decimal | None:
    try:
        rate = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return rate if rate.is_finite() and rate > 0 else None


def create_load_request(
    db: Session, *, load_id: int, carrier_id: int, user_id: int, data: dict[str, Any]
) -> dict[str, Any]:
    load = db.query(Load).filter(Load.id == load_id).first()
    if not load or not load.is_marketplace_visible or load.posting_status != "posted" or load.assigned_carrier_id:
        return _fail("Load not found", 404)
    if load.company_id == carrier_id:
        return _fail("You cannot request your own load")

    duplicate = (
        db.query(LoadRequest.id)
        .filter(LoadRequest.load_id == load.id, LoadRequest.carrier_id == carrier_id, LoadRequest.status == "pending")
        .first()
    )
    if duplicate:
        return _fail("You already have a pending request for this load", 409)

    request_type = data.get("request_type") or "accept_listed"
    if request_type not in REQUEST_TYPES:
        return _fail(f"request_type must be one of: {', '.join(REQUEST_TYPES)}")
    accepted_company_rate = request_type == "accept_listed"
    offered_rate = None
    rate_type = data.get("offered_rate_type") or "per_cuft"
    if not accepted_company_rate:
        if not load.is_open_to_counter:
            return _fail("This load does not accept counter offers")
        offered_rate = _rate(data.get("offered_rate"))
        if offered_rate is None:
            return _fail("Offered rate must be greater than zero")
        if rate_type not in RATE_TYPES:
            return _fail("offered_rate_type must be per_cuft or flat")

    load_start = data.get("proposed_load_date_start")
    load_end = data.get("proposed_load_date_end")
    if load.rfd_date and load_start and load_start < load.rfd_date:
        return _fail(f"Load date cannot be before the RFD date ({load.rfd_date.isoformat()})")
    if load_start and load_end and load_end < load_start:
        return _fail("Load date range end cannot be before its start")
    delivery_start = data.get("proposed_delivery_date_start")
    delivery_end = data.get("proposed_delivery_date_end")
    if delivery_start and delivery_end and delivery_end < delivery_start:
        return _fail("Delivery date range end cannot be before its start")

    row = LoadRequest(
        load_id=load.id,
        carrier_id=carrier_id,
        requested_by_id=user_id,
        request_type=request_type,
        is_partner=load.company_id in partner_company_ids(db, carrier_id),
        accepted_company_rate=accepted_company_rate,
        offered_rate=offered_rate,
        offered_rate_type=rate_type,
        message=data.get("message"),
        proposed_load_date_start=load_start,
        proposed_load_date_end=load_end,
        proposed_delivery_date_start=delivery_start,
        proposed_delivery_date_end=delivery_end,
        status="pending",
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    logger.info("marketplace: request=%s load=%s carrier=%s type=%s", row.id, load.id, carrier_id, request_type)
    log_activity(
        db,
        company_id=load.company_id,
        activity_type="load_request_received",
        title=f"New request for load {load.load_number or load.id}",
        load_id=load.id,
        metadata={"request_id": row.id, "carrier_id": carrier_id},
    )
    return {"success": True, "request": serialize_request(row)}


def list_requests_for_load(db: Session, load: Load) -> list[dict[str, Any]]:
    rows = (
        db.query(LoadRequest)
        .filter(LoadRequest.load_id == load.id)
        .order_by(LoadRequest.is_partner.desc(), LoadRequest.created_at.asc(), LoadRequest.id.asc())
        .all()
    )
    return [serialize_request(row) for row in rows]


def list_requests_for_carrier(db: Session, carrier_id: int, status: str | None = None) -> list[dict[str, Any]]:
    query = db.query(LoadRequest).filter(LoadRequest.carrier_id == carrier_id)
    if status:
        query = query.filter(LoadRequest.status == status)
    return [serialize_request(row) for row in query.order_by(LoadRequest.id.desc()).all()]


def _owned_request(db: Session, request_id: int, company_id: int) -> tuple[LoadRequest | None, Load | None]:
    row = db.query(LoadRequest).filter(LoadRequest.id == request_id).first()
    if not row:
        return None, None
    load = db.query(Load).filter(Load.id == row.load_id, Load.company_id == company_id).first()
    if not load:
        return None, None
    return row, load


def _has_partnership(db: Session, company_a: int, company_b: int) -> bool:
    return (
        db.query(CompanyPartnership.id)
        .filter(
            or_(
                (CompanyPartnership.company_a_id == company_a) & (CompanyPartnership.company_b_id == company_b),
                (CompanyPartnership.company_a_id == company_b) & (CompanyPartnership.company_b_id == company_a),
            )
        )
        .first()
        is not None
    )


def _notify_requester(db: Session, row: LoadRequest, load: Load, title: str, body: str) -> None:
    if not row.requested_by_id:
        return
    try:
        send_push_to_user(
            db,
            row.requested_by_id,
            title,
            body,
            {"type": "load_request", "requestId": str(row.id), "loadId": str(load.id)},
        )
    except (requests.RequestException, SQLAlchemyError) as exc:
        logger.warning("marketplace: requester notification failed request=%s: %s", row.id, exc)


def accept_load_request(
    db: Session, *, request_id: int, company_id: int, user_id: int, message: str | None = None
) -> dict[str, Any]:
    row, load = _owned_request(db, request_id, company_id)
    if not row:
        return _fail("Request not found", 404)
    if row.status != "pending":
        return _fail(f"Request is already {row.status}", 409)
    if load.assigned_carrier_id:
        return _fail("This load is already assigned to a carrier", 409)

    now = _now()
    if row.accepted_company_rate:
        final_rate, final_type = load.rate_per_cuft, "per_cuft"
    else:
        final_rate, final_type = row.offered_rate, row.offered_rate_type
    created_partnership = not row.is_partner and not _has_partnership(db, load.company_id, row.carrier_id)

    row.status = "accepted"
    row.final_rate = final_rate
    row.final_rate_type = final_type
    row.creates_partnership = created_partnership
    row.response_message = message
    row.responded_by_id = user_id
    row.responded_at = now

    load.assigned_carrier_id = row.carrier_id
    load.carrier_rate = final_rate
    load.carrier_rate_type = final_type
    load.carrier_assigned_at = now
    load.is_marketplace_visible = False
    load.posting_status = "claimed"

    others = (
        db.query(LoadRequest)
        .filter(LoadRequest.load_id == load.id, LoadRequest.id != row.id, LoadRequest.status == "pending")
        .all()
    )
    for other in others:
        other.status = "declined"
        other.response_message = OTHER_CARRIER_ASSIGNED
        other.responded_by_id = user_id
        other.responded_at = now
    if created_partnership:
        db.add(CompanyPartnership(company_a_id=load.company_id, company_b_id=row.carrier_id, status="active"))
    db.commit()
    db.refresh(row)
    logger.info(
        "marketplace: accepted request=%s load=%s carrier=%s declined=%s",
        row.id, load.id, row.carrier_id, len(others),
    )

    log_activity(
        db,
        company_id=load.company_id,
        activity_type="load_request_accepted",
        title=f"Load {load.load_number or load.id} assigned to carrier",
        load_id=load.id,
        metadata={"request_id": row.id, "carrier_id": row.carrier_id},
    )
    _notify_requester(db, row, load, "Request Accepted", f"Load {load.load_number or load.id} is yours")
    return {"success": True, "request": serialize_request(row), "load": serialize_load(load)}


def decline_load_request(
    db: Session, *, request_id: int, company_id: int, user_id: int, message: str | None = None
) -> dict[str, Any]:
    row, load = _owned_request(db, request_id, company_id)
    if not row:
        return _fail("Request not found", 404)
    if row.status != "pending":
        return _fail(f"Request is already {row.status}", 409)
    row.status = "declined"
    row.response_message = message
    row.responded_by_id = user_id
    row.responded_at = _now()
    db.commit()
    db.refresh(row)
    logger.info("marketplace: declined request=%s load=%s", row.id, load.id)
    _notify_requester(db, row, load, "Request Declined", message or f"Load {load.load_number or load.id} went elsewhere")
    return {"success": True, "request": serialize_request(row)}


def withdraw_load_request(db: Session, *, request_id: int, carrier_id: int) -> dict[str, Any]:
    row = db.query(LoadRequest).filter(LoadRequest.id == request_id, LoadRequest.carrier_id == carrier_id).first()
    if not row:
        return _fail("Request not found", 404)
    if row.status != "pending":
        return _fail("Only pending requests can be withdrawn", 409)
    row.status = "withdrawn"
    db.commit()
    db.refresh(row)
    logger.info("marketplace: withdrew request=%s", row.id)
    return {"success": True, "request": serialize_request(row)}
