"""trips.py

Dispatcher-side trip management: trips, the loads on them, and trip expenses.

Rules:
  1. Drivers, trucks, trailers and loads must belong to the trip's company.
     A foreign id is reported as not found.
  2. Trip numbers are unique per company. A blank number is generated.
  3. planned -> active needs a starting odometer. completed and settled need
     both odometers and positive actual miles, which are written to the trip.
  4. A load sits on at most one trip of a company. Adding it to another trip
     moves it; new loads go to the end of the sequence unless a position is
     given. A company's own load handed to an outside carrier cannot be added.
  5. The assigned driver is pushed when a trip is assigned to them, when a
     load is added or removed, and when the trip is settled. Push failures are
     logged and never undo the change.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

import requests
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from haulsync.models.fleet import Driver, Trailer, Truck
from haulsync.models.load import Load
from haulsync.models.marketplace import LoadSuggestion
from haulsync.models.trip import Trip, TripExpense, TripLoad
from haulsync.services.activity_log import log_activity
from haulsync.services.push_notifications import (
    notify_driver_load_assigned,
    notify_driver_load_status_changed,
    notify_driver_payment,
    notify_driver_trip_assigned,
)
from haulsync.services.settlements import COMPANY_PAID, DRIVER_PAID, build_settlement_preview

logger = logging.getLogger(__name__)

TRIP_STATUSES = ("planned", "active", "en_route", "completed", "settled", "cancelled")
CLOSING_STATUSES = {"completed", "settled"}
EXPENSE_CATEGORIES = ("fuel", "tolls", "driver_pay", "lumper", "parking", "maintenance", "other")
PAID_BY = tuple(sorted(COMPANY_PAID | DRIVER_PAID))

TRIP_FIELDS = (
    "trip_number",
    "status",
    "driver_id",
    "truck_id",
    "trailer_id",
    "origin_city",
    "origin_state",
    "origin_zip",
    "destination_city",
    "destination_state",
    "destination_zip",
    "return_state",
    "start_date",
    "end_date",
    "odometer_start",
    "odometer_end",
    "notes",
)
STATE_FIELDS = ("origin_state", "destination_state", "return_state")
EXPENSE_FIELDS = ("category", "amount", "description", "expense_type", "paid_by", "incurred_on", "notes")

TRIP_NUMBER_TAKEN = "Trip number must be unique for your account"
TRIP_NOT_FOUND = "Trip not found"
LOAD_ALREADY_ON_TRIP = "This load is already attached to this trip"
LOAD_WITH_CARRIER = (
    "This load has been assigned to an external carrier and cannot be added to your trip. "
    "The carrier will dispatch this load."
)


def _fail(error: str, status_code: int = 400) -> dict[str, Any]:
    return {"success": False, "error": error, "status_code": status_code}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: Any) -> str | None:
    return value.isoformat() if value else None


def _float(value: Any) -> float | None:
    return float(value) if value is not None else None


def _push(description: str, notify, db: Session, **kwargs) -> None:
    try:
        notify(db, **kwargs)
    except (requests.RequestException, SQLAlchemyError) as exc:
        logger.warning("trips: %s notification failed: %s", description, exc)


# ── Serialization ─────────────────────────────────────────────────────────────

def serialize_trip(trip: Trip) -> dict[str, Any]:
    return {
        "id": trip.id,
        "trip_number": trip.trip_number,
        "status": trip.status,
        "driver_id": trip.driver_id,
        "truck_id": trip.truck_id,
        "trailer_id": trip.trailer_id,
        "origin_city": trip.origin_city,
        "origin_state": trip.origin_state,
        "origin_zip": trip.origin_zip,
        "destination_city": trip.destination_city,
        "destination_state": trip.destination_state,
        "destination_zip": trip.destination_zip,
        "return_state": trip.return_state,
        "start_date": _iso(trip.start_date),
        "end_date": _iso(trip.end_date),
        "odometer_start": trip.odometer_start,
        "odometer_end": trip.odometer_end,
        "actual_miles": trip.actual_miles,
        "notes": trip.notes,
        "started_at": _iso(trip.started_at),
        "completed_at": _iso(trip.completed_at),
    }


def serialize_trip_load(trip_load: TripLoad, load: Load) -> dict[str, Any]:
    return {
        "load_id": load.id,
        "sequence_index": trip_load.sequence_index,
        "load_number": load.load_number,
        "status": load.status,
        "load_status": load.load_status,
        "pickup_city": load.pickup_city,
        "pickup_state": load.pickup_state,
        "delivery_city": load.delivery_city,
        "delivery_state": load.delivery_state,
        "cubic_feet": load.cubic_feet,
    }


def serialize_expense(expense: TripExpense) -> dict[str, Any]:
    return {
        "id": expense.id,
        "trip_id": expense.trip_id,
        "category": expense.category,
        "amount": _float(expense.amount),
        "description": expense.description,
        "expense_type": expense.expense_type,
        "paid_by": expense.paid_by,
        "incurred_on": _iso(expense.incurred_on),
        "notes": expense.notes,
    }


def _ordered_trip_loads(db: Session, trip_id: int) -> list[tuple[TripLoad, Load]]:
    return (
        db.query(TripLoad, Load)
        .join(Load, Load.id == TripLoad.load_id)
        .filter(TripLoad.trip_id == trip_id)
        .order_by(TripLoad.sequence_index.asc(), TripLoad.id.asc())
        .all()
    )


def get_trip_detail(db: Session, trip: Trip) -> dict[str, Any]:
    expenses = db.query(TripExpense).filter(TripExpense.trip_id == trip.id).order_by(TripExpense.id.asc()).all()
    return {
        "success": True,
        "trip": serialize_trip(trip),
        "loads": [serialize_trip_load(row, load) for row, load in _ordered_trip_loads(db, trip.id)],
        "expenses": [serialize_expense(expense) for expense in expenses],
    }


def list_trips(
    db: Session, company_id: int, *, status: str | None = None, driver_id: int | None = None
) -> list[dict[str, Any]]:
    query = db.query(Trip).filter(Trip.company_id == company_id)
    if status:
        query = query.filter(Trip.status == status)
    if driver_id:
        query = query.filter(Trip.driver_id == driver_id)
    rows = query.order_by(Trip.start_date.is_(None), Trip.start_date.desc(), Trip.id.desc()).all()
    return [serialize_trip(row) for row in rows]


# ── Validation ────────────────────────────────────────────────────────────────

def _owned(db: Session, model, row_id: int | None, company_id: int):
    if row_id is None:
        return None
    return db.query(model).filter(model.id == row_id, model.company_id == company_id).first()


def _check_equipment(db: Session, data: dict[str, Any], company_id: int) -> str | None:
    for key, model, label in (("driver_id", Driver, "Driver"), ("truck_id", Truck, "Truck"), ("trailer_id", Trailer, "Trailer")):
        if data.get(key) is not None and _owned(db, model, data[key], company_id) is None:
            return f"{label} not found"
    return None


def validate_trip_fields(data: dict[str, Any]) -> str | None:
    for key in data:
        if key not in TRIP_FIELDS:
            return f"Unknown field: {key}"
    if "status" in data and data["status"] not in TRIP_STATUSES:
        return f"status must be one of: {', '.join(TRIP_STATUSES)}"
    for key in STATE_FIELDS:
        value = data.get(key)
        if value is not None and (not isinstance(value, str) or len(value.strip()) != 2):
            return f"{key} must be a two-letter state code"
    for key in ("odometer_start", "odometer_end"):
        value = data.get(key)
        if value is not None and value < 0:
            return f"{key} cannot be negative"
    start, end = data.get("start_date"), data.get("end_date")
    if start and end and end < start:
        return "end_date cannot be before start_date"
    return None


def _normalized(data: dict[str, Any]) -> dict[str, Any]:
    clean = dict(data)
    for key in STATE_FIELDS:
        if clean.get(key):
            clean[key] = clean[key].strip().upper()
    if "trip_number" in clean and isinstance(clean["trip_number"], str):
        clean["trip_number"] = clean["trip_number"].strip() or None
    return clean


def _status_error(trip: Trip, data: dict[str, Any]) -> str | None:
    """Apply odometer rules for the target status; writes actual_miles into `data` when closing."""
    current = trip.status or "planned"
    target = data.get("status", current)
    start = data["odometer_start"] if "odometer_start" in data else trip.odometer_start
    end = data["odometer_end"] if "odometer_end" in data else trip.odometer_end

    if current == "planned" and target == "active" and start is None:
        return "You must enter the starting odometer to activate this trip."
    touched = target != current or "odometer_start" in data or "odometer_end" in data
    if target in CLOSING_STATUSES and touched:
        if start is None or end is None:
            return "Odometer start and end are required to complete or settle this trip."
        miles = float(end) - float(start)
        if miles <= 0:
            return "Actual miles must be greater than zero to settle this trip."
        data["actual_miles"] = miles
    return None


def _trip_number_taken(db: Session, company_id: int, trip_number: str, exclude_id: int | None = None) -> bool:
    query = db.query(Trip.id).filter(Trip.company_id == company_id, Trip.trip_number == trip_number)
    if exclude_id is not None:
        query = query.filter(Trip.id != exclude_id)
    return query.first() is not None


def next_trip_number(db: Session, company_id: int) -> str:
    n = db.query(Trip).filter(Trip.company_id == company_id).count() + 1
    while _trip_number_taken(db, company_id, f"TR-{n:04d}"):
        n += 1
    return f"TR-{n:04d}"


def _route_label(trip: Trip) -> str:
    origin = ", ".join(part for part in (trip.origin_city, trip.origin_state) if part)
    destination = ", ".join(part for part in (trip.destination_city, trip.destination_state) if part)
    if origin and destination:
        return f"{origin} → {destination}"
    return origin or destination or "Route TBD"


def _start_label(trip: Trip) -> str:
    return f"{trip.start_date:%b} {trip.start_date.day}" if trip.start_date else "TBD"


def _notify_trip_assigned(db: Session, trip: Trip) -> None:
    _push(
        "trip assignment",
        notify_driver_trip_assigned,
        db,
        driver_id=trip.driver_id,
        trip_id=trip.id,
        trip_number=trip.trip_number or str(trip.id),
        route=_route_label(trip),
        start_date=_start_label(trip),
    )


def _notify_settled(db: Session, trip: Trip) -> None:
    preview = build_settlement_preview(db, trip)
    if not preview.get("success"):
        return
    _push(
        "settlement",
        notify_driver_payment,
        db,
        driver_id=trip.driver_id,
        trip_number=trip.trip_number or str(trip.id),
        amount=preview["netPay"],
        status="approved",
    )


# ── Trips ─────────────────────────────────────────────────────────────────────

def create_trip(db: Session, company_id: int, data: dict[str, Any], *, actor_name: str | None = None) -> dict[str, Any]:
    error = validate_trip_fields(data)
    if error:
        return _fail(error)
    data = _normalized(data)
    error = _check_equipment(db, data, company_id)
    if error:
        return _fail(error, 404)

    data.setdefault("status", "planned")
    if not data.get("trip_number"):
        data["trip_number"] = next_trip_number(db, company_id)
    elif _trip_number_taken(db, company_id, data["trip_number"]):
        return _fail(TRIP_NUMBER_TAKEN, 409)

    trip = Trip(company_id=company_id)
    error = _status_error(trip, data)
    if error:
        return _fail(error)
    for key, value in data.items():
        setattr(trip, key, value)
    db.add(trip)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return _fail(TRIP_NUMBER_TAKEN, 409)
    db.refresh(trip)
    logger.info("trips: created trip=%s company=%s number=%s", trip.id, company_id, trip.trip_number)

    log_activity(
        db,
        company_id=company_id,
        activity_type="trip_created",
        title=f"Trip #{trip.trip_number} created",
        actor_name=actor_name,
        trip_id=trip.id,
        driver_id=trip.driver_id,
    )
    if trip.driver_id:
        _notify_trip_assigned(db, trip)
    return {"success": True, "trip": serialize_trip(trip)}


def update_trip(db: Session, trip: Trip, data: dict[str, Any], *, actor_name: str | None = None) -> dict[str, Any]:
    error = validate_trip_fields(data)
    if error:
        return _fail(error)
    data = _normalized(data)
    error = _check_equipment(db, data, trip.company_id)
    if error:
        return _fail(error, 404)
    if "trip_number" in data:
        if not data["trip_number"]:
            return _fail("trip_number cannot be blank")
        if _trip_number_taken(db, trip.company_id, data["trip_number"], exclude_id=trip.id):
            return _fail(TRIP_NUMBER_TAKEN, 409)
    if "start_date" in data or "end_date" in data:
        start = data.get("start_date", trip.start_date)
        end = data.get("end_date", trip.end_date)
        if start and end and end < start:
            return _fail("end_date cannot be before start_date")
    error = _status_error(trip, data)
    if error:
        return _fail(error)

    previous_driver = trip.driver_id
    previous_status = trip.status
    for key, value in data.items():
        setattr(trip, key, value)
    if trip.status == "active" and previous_status != "active" and not trip.started_at:
        trip.started_at = _now()
    if trip.status in CLOSING_STATUSES and not trip.completed_at:
        trip.completed_at = _now()
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return _fail(TRIP_NUMBER_TAKEN, 409)
    db.refresh(trip)
    logger.info("trips: updated trip=%s fields=%s", trip.id, sorted(data))

    if trip.status != previous_status:
        log_activity(
            db,
            company_id=trip.company_id,
            activity_type=f"trip_{trip.status}",
            title=f"Trip #{trip.trip_number} is now {trip.status.replace('_', ' ')}",
            actor_name=actor_name,
            trip_id=trip.id,
            driver_id=trip.driver_id,
        )
    if trip.driver_id and trip.driver_id != previous_driver:
        _notify_trip_assigned(db, trip)
    if trip.driver_id and trip.status == "settled" and previous_status != "settled":
        _notify_settled(db, trip)
    return {"success": True, "trip": serialize_trip(trip)}


def delete_trip(db: Session, trip: Trip) -> dict[str, Any]:
    trip_id = trip.id
    db.query(Load).filter(Load.trip_id == trip_id).update({Load.trip_id: None}, synchronize_session=False)
    db.query(TripLoad).filter(TripLoad.trip_id == trip_id).delete(synchronize_session=False)
    db.query(TripExpense).filter(TripExpense.trip_id == trip_id).delete(synchronize_session=False)
    db.query(LoadSuggestion).filter(LoadSuggestion.trip_id == trip_id).delete(synchronize_session=False)
    db.delete(trip)
    db.commit()
    logger.info("trips: deleted trip=%s", trip_id)
    return {"success": True}


# ── Trip loads ────────────────────────────────────────────────────────────────

def _pickup_label(load: Load) -> str:
    return ", ".join(part for part in (load.pickup_city, load.pickup_state) if part) or "TBD"


def _company_load(db: Session, load_id: int, company_id: int) -> tuple[Load | None, str | None]:
    load = db.query(Load).filter(Load.id == load_id).first()
    if not load:
        return None, "Load not found"
    if load.assigned_carrier_id == company_id:
        return load, None
    if load.company_id != company_id:
        return None, "Load not found"
    if load.assigned_carrier_id:
        return None, LOAD_WITH_CARRIER
    return load, None


def add_load_to_trip(
    db: Session,
    trip: Trip,
    *,
    load_id: int,
    sequence_index: int | None = None,
    actor_name: str | None = None,
) -> dict[str, Any]:
    load, error = _company_load(db, load_id, trip.company_id)
    if error:
        return _fail(error, 409 if error == LOAD_WITH_CARRIER else 404)
    if sequence_index is not None and sequence_index < 0:
        return _fail("sequence_index cannot be negative")

    existing = (
        db.query(TripLoad)
        .join(Trip, Trip.id == TripLoad.trip_id)
        .filter(TripLoad.load_id == load.id, Trip.company_id == trip.company_id)
        .all()
    )
    if any(row.trip_id == trip.id for row in existing):
        return _fail(LOAD_ALREADY_ON_TRIP, 409)
    for row in existing:
        logger.info("trips: moving load=%s off trip=%s", load.id, row.trip_id)
        db.delete(row)

    if sequence_index is None:
        sequence_index = db.query(TripLoad).filter(TripLoad.trip_id == trip.id).count()
    db.add(TripLoad(trip_id=trip.id, load_id=load.id, sequence_index=sequence_index))
    load.trip_id = trip.id
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        return _fail(LOAD_ALREADY_ON_TRIP, 409)
    logger.info("trips: load=%s added to trip=%s at %s", load.id, trip.id, sequence_index)

    log_activity(
        db,
        company_id=trip.company_id,
        activity_type="load_added_to_trip",
        title=f"Load {load.load_number or load.id} added to Trip #{trip.trip_number}",
        actor_name=actor_name,
        trip_id=trip.id,
        load_id=load.id,
        driver_id=trip.driver_id,
    )
    if trip.driver_id:
        _push(
            "load assignment",
            notify_driver_load_assigned,
            db,
            driver_id=trip.driver_id,
            load_id=load.id,
            trip_id=trip.id,
            load_number=load.load_number or str(load.id),
            pickup_location=_pickup_label(load),
        )
    return {"success": True, "loads": [serialize_trip_load(row, item) for row, item in _ordered_trip_loads(db, trip.id)]}


def remove_load_from_trip(db: Session, trip: Trip, *, load_id: int) -> dict[str, Any]:
    row = db.query(TripLoad).filter(TripLoad.trip_id == trip.id, TripLoad.load_id == load_id).first()
    if not row:
        return _fail("Load is not on this trip", 404)
    load = db.query(Load).filter(Load.id == load_id).first()
    db.delete(row)
    if load is not None and load.trip_id == trip.id:
        load.trip_id = None
    db.commit()
    logger.info("trips: load=%s removed from trip=%s", load_id, trip.id)

    if trip.driver_id and load is not None:
        _push(
            "load removal",
            notify_driver_load_status_changed,
            db,
            driver_id=trip.driver_id,
            load_id=load.id,
            load_number=load.load_number or str(load.id),
            new_status="removed",
            message=f"Removed from Trip #{trip.trip_number}",
        )
    return {"success": True}


def reorder_trip_loads(db: Session, trip: Trip, items: list[dict[str, Any]]) -> dict[str, Any]:
    if not items:
        return _fail("No loads to reorder")
    rows = {row.load_id: row for row in db.query(TripLoad).filter(TripLoad.trip_id == trip.id)}
    for item in items:
        if item.get("load_id") not in rows:
            return _fail(f"Load {item.get('load_id')} is not on this trip")
        if item.get("sequence_index") is None or item["sequence_index"] < 0:
            return _fail("sequence_index must be zero or greater")
    for item in items:
        rows[item["load_id"]].sequence_index = item["sequence_index"]
    db.commit()
    return {"success": True, "loads": [serialize_trip_load(row, load) for row, load in _ordered_trip_loads(db, trip.id)]}


# ── Expenses ──────────────────────────────────────────────────────────────────

def _amount(value: Any) -> Decimal | None:
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None
    return amount if amount.is_finite() else None


def validate_expense(data: dict[str, Any], *, partial: bool = False) -> str | None:
    for key in data:
        if key not in EXPENSE_FIELDS:
            return f"Unknown field: {key}"
    if not partial or "category" in data:
        if data.get("category") not in EXPENSE_CATEGORIES:
            return f"category must be one of: {', '.join(EXPENSE_CATEGORIES)}"
    if not partial or "amount" in data:
        amount = _amount(data.get("amount"))
        if amount is None or amount <= 0:
            return "Amount must be greater than zero"
    if data.get("paid_by") is not None and data["paid_by"] not in PAID_BY:
        return f"paid_by must be one of: {', '.join(PAID_BY)}"
    return None


def create_trip_expense(db: Session, trip: Trip, data: dict[str, Any]) -> dict[str, Any]:
    error = validate_expense(data)
    if error:
        return _fail(error)
    expense = TripExpense(
        trip_id=trip.id,
        category=data["category"],
        amount=_amount(data["amount"]),
        description=data.get("description"),
        expense_type=data.get("expense_type"),
        paid_by=data.get("paid_by"),
        incurred_on=data.get("incurred_on") or date.today(),
        notes=data.get("notes"),
    )
    db.add(expense)
    db.commit()
    db.refresh(expense)
    logger.info("trips: expense=%s added to trip=%s amount=%s", expense.id, trip.id, expense.amount)
    return {"success": True, "expense": serialize_expense(expense)}


def _trip_expense(db: Session, trip: Trip, expense_id: int) -> TripExpense | None:
    return db.query(TripExpense).filter(TripExpense.id == expense_id, TripExpense.trip_id == trip.id).first()


def update_trip_expense(db: Session, trip: Trip, expense_id: int, data: dict[str, Any]) -> dict[str, Any]:
    expense = _trip_expense(db, trip, expense_id)
    if not expense:
        return _fail("Expense not found", 404)
    error = validate_expense(data, partial=True)
    if error:
        return _fail(error)
    for key, value in data.items():
        setattr(expense, key, _amount(value) if key == "amount" else value)
    db.commit()
    db.refresh(expense)
    return {"success": True, "expense": serialize_expense(expense)}


def delete_trip_expense(db: Session, trip: Trip, expense_id: int) -> dict[str, Any]:
    expense = _trip_expense(db, trip, expense_id)
    if not expense:
        return _fail("Expense not found", 404)
    db.delete(expense)
    db.commit()
    return {"success": True}
