"""balance_disputes.py

Drivers dispute the balance they were told to collect on delivery; dispatch
resolves the dispute from the dashboard.

Resolution types:
  confirmed_zero   nothing to collect
  balance_updated  new balance written to the load (balance_adjusted = true)
  cancelled        dispute withdrawn
The driver is pushed the outcome. Push failures never fail the resolution.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from haulsync.models.fleet import Driver
from haulsync.models.load import BalanceDispute, Load
from haulsync.services.push_notifications import notify_driver_balance_dispute_resolved

logger = logging.getLogger(__name__)

RESOLUTION_TYPES = ("confirmed_zero", "balance_updated", "cancelled")
LIST_LIMIT = 50


def _fail(error: str, status_code: int = 400) -> dict[str, Any]:
    return {"success": False, "error": error, "status_code": status_code}


def _float(value: Any) -> float | None:
    return float(value) if value is not None else None


def serialize_dispute(dispute: BalanceDispute, load: Load | None, driver: Driver | None) -> dict[str, Any]:
    return {
        "id": dispute.id,
        "load_id": dispute.load_id,
        "driver_id": dispute.driver_id,
        "trip_id": dispute.trip_id,
        "status": dispute.status,
        "original_balance": _float(dispute.original_balance),
        "driver_note": dispute.driver_note,
        "resolution_type": dispute.resolution_type,
        "new_balance": _float(dispute.new_balance),
        "resolution_note": dispute.resolution_note,
        "resolved_at": dispute.resolved_at.isoformat() if dispute.resolved_at else None,
        "created_at": dispute.created_at.isoformat() if dispute.created_at else None,
        "load": {
            "id": load.id,
            "load_number": load.load_number,
            "pickup_city": load.pickup_city,
            "pickup_state": load.pickup_state,
            "delivery_city": load.delivery_city,
            "delivery_state": load.delivery_state,
        } if load else None,
        "driver": {
            "id": driver.id,
            "first_name": driver.first_name,
            "last_name": driver.last_name,
        } if driver else None,
    }


def list_disputes(db: Session, company_id: int, status: str | None = "pending") -> list[dict[str, Any]]:
    rows = (
        db.query(BalanceDispute, Load, Driver)
        .outerjoin(Load, Load.id == BalanceDispute.load_id)
        .outerjoin(Driver, Driver.id == BalanceDispute.driver_id)
        .filter(BalanceDispute.company_id == company_id, BalanceDispute.status == (status or "pending"))
        .order_by(BalanceDispute.created_at.desc(), BalanceDispute.id.desc())
        .limit(LIST_LIMIT)
        .all()
    )
    return [serialize_dispute(dispute, load, driver) for dispute, load, driver in rows]


def _parse_balance(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        balance = Decimal(str(value))
    except InvalidOperation:
        return None
    if not balance.is_finite() or balance < 0:
        return None
    return balance.quantize(Decimal("0.01"))


def resolution_message(resolution_type: str, new_balance: Decimal | None) -> str:
    if resolution_type == "balance_updated":
        return f"Balance updated to ${new_balance:.2f}. Driver has been notified."
    if resolution_type == "confirmed_zero":
        return "Balance confirmed as $0. Driver has been notified."
    return "Dispute cancelled. Driver has been notified."


def resolve_dispute(
    db: Session,
    *,
    dispute_id: int | None,
    company_id: int,
    user_id: int,
    resolution_type: str | None,
    new_balance: Any = None,
    note: str | None = None,
) -> dict[str, Any]:
    if not dispute_id:
        return _fail("disputeId is required", 400)
    if resolution_type not in RESOLUTION_TYPES:
        return _fail("resolutionType must be one of: confirmed_zero, balance_updated, cancelled", 400)

    balance = None
    if resolution_type == "balance_updated":
        balance = _parse_balance(new_balance)
        if balance is None:
            return _fail("newBalance is required when resolutionType is balance_updated", 400)

    dispute = db.query(BalanceDispute).filter(BalanceDispute.id == dispute_id).first()
    if not dispute:
        return _fail("Dispute not found", 404)
    if dispute.company_id != company_id:
        return _fail("You do not have permission to resolve this dispute", 403)
    if dispute.status != "pending":
        return _fail("This dispute has already been resolved", 409)

    load = db.query(Load).filter(Load.id == dispute.load_id).first()
    if not load:
        return _fail("Load not found", 404)

    dispute.status = "resolved"
    dispute.resolution_type = resolution_type
    dispute.new_balance = balance
    dispute.resolution_note = note or None
    dispute.resolved_at = datetime.now(timezone.utc)
    dispute.resolved_by_id = user_id

    if balance is not None:
        load.balance_due_on_delivery = balance
        load.remaining_balance_for_delivery = balance
        load.balance_adjusted = True
        load.balance_adjusted_reason = note or "Balance corrected via driver dispute"
    db.commit()
    logger.info("disputes: resolved id=%s type=%s load=%s", dispute.id, resolution_type, load.id)

    if dispute.driver_id:
        try:
            notify_driver_balance_dispute_resolved(
                db,
                driver_id=dispute.driver_id,
                load_id=load.id,
                load_number=load.load_number or "Unknown",
                resolution_type=resolution_type,
                new_balance=float(balance) if balance is not None else None,
                note=note,
            )
        except (requests.RequestException, SQLAlchemyError) as exc:
            logger.warning("disputes: driver notification failed dispute=%s: %s", dispute.id, exc)

    return {"success": True, "message": resolution_message(resolution_type, balance)}
