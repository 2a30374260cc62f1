"""driver_workflow.py

Status transitions a driver performs from the mobile app.

Load path:
  pending -> accepted -> loading -> loaded -> in_transit -> delivered
  accepted|loading -> loaded          (pickup_complete, one-step pickup)
  loaded|in_transit -> storage_completed

Rules:
  1. A driver only sees loads on a trip assigned to them. Anything else is
     reported as not found, never as forbidden.
  2. Every rejection names the current status and the status required.
  3. Every successful transition writes an activity_log entry after commit.
     A failed activity insert never undoes the transition.
Trip path: planned -> active -> completed.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy.orm import Session

from haulsync.models.fleet import Driver
from haulsync.models.load import Load
from haulsync.models.trip import Trip, TripLoad
from haulsync.services.activity_log import log_activity

logger = logging.getLogger(__name__)

LOAD_NOT_FOUND = "Load not found or access denied"
TRIP_NOT_FOUND = "Trip not found or access denied"

DONE_STATUSES = {"delivered", "storage_completed"}
PAYMENT_METHODS = {"cash", "check", "money_order", "zelle", "card", "other"}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _fail(error: str, status_code: int = 400) -> dict[str, Any]:
    return {"success": False, "error": error, "status_code": status_code}


def _label(load: Load) -> str:
    return load.load_number or f"#{load.id}"


def _current(load: Load) -> str:
    return load.load_status or "pending"


def serialize_workflow(load: Load) -> dict[str, Any]:
    return {
        "id": load.id,
        "load_number": load.load_number,
        "load_status": _current(load),
        "accepted_at": load.accepted_at.isoformat() if load.accepted_at else None,
        "loading_started_at": load.loading_started_at.isoformat() if load.loading_started_at else None,
        "loading_finished_at": load.loading_finished_at.isoformat() if load.loading_finished_at else None,
        "delivery_started_at": load.delivery_started_at.isoformat() if load.delivery_started_at else None,
        "delivery_finished_at": load.delivery_finished_at.isoformat() if load.delivery_finished_at else None,
        "starting_cuft": load.starting_cuft,
        "ending_cuft": load.ending_cuft,
        "actual_cuft_loaded": load.actual_cuft_loaded,
        "amount_collected_on_delivery": (
            float(load.amount_collected_on_delivery) if load.amount_collected_on_delivery is not None else None
        ),
        "payment_method": load.payment_method,
    }


def load_for_driver(db: Session, load_id: int, driver: Driver) -> tuple[Load, Trip] | None:
    load = db.query(Load).filter(Load.id == load_id).first()
    if not load:
        return None

    trip = None
    if load.trip_id:
        trip = db.query(Trip).filter(Trip.id == load.trip_id, Trip.driver_id == driver.id).first()
    if trip is None:
        trip = (
            db.query(Trip)
            .join(TripLoad, TripLoad.trip_id == Trip.id)
            .filter(TripLoad.load_id == load.id, Trip.driver_id == driver.id)
            .first()
        )
    if trip is None:
        return None
    return load, trip


def _log(db: Session, driver: Driver, trip: Trip, load: Load | None, activity_type: str, title: str, **extra) -> None:
    log_activity(
        db,
        company_id=trip.company_id,
        driver_id=driver.id,
        actor_name=driver.full_name,
        activity_type=activity_type,
        trip_id=trip.id,
        load_id=load.id if load else None,
        title=title,
        **extra,
    )


def _transition(
    db: Session,
    driver: Driver,
    load_id: int,
    allowed: set[str | None],
    rejection: str,
) -> tuple[Load, Trip] | dict[str, Any]:
    found = load_for_driver(db, load_id, driver)
    if not found:
        return _fail(LOAD_NOT_FOUND, 404)
    load, trip = found
    if load.load_status not in allowed:
        return _fail(rejection.format(status=_current(load)))
    return load, trip


# ── Load transitions ──────────────────────────────────────────────────────────

def accept_load(db: Session, *, driver: Driver, load_id: int) -> dict[str, Any]:
    found = _transition(db, driver, load_id, {None, "pending"}, 'Cannot accept load - current status is "{status}"')
    if isinstance(found, dict):
        return found
    load, trip = found

    load.load_status = "accepted"
    load.accepted_at = _now()
    db.commit()
    logger.info("workflow: driver=%s accepted load=%s", driver.id, load.id)
    _log(db, driver, trip, load, "load_accepted", f"{driver.full_name} accepted load {_label(load)}")
    return {"success": True, "load": serialize_workflow(load)}


def start_loading(db: Session, *, driver: Driver, load_id: int, starting_cuft: float | None = None) -> dict[str, Any]:
    found = _transition(
        db,
        driver,
        load_id,
        {"accepted"},
        'Cannot start loading - load must be accepted first (current status: "{status}")',
    )
    if isinstance(found, dict):
        return found
    load, trip = found
    if starting_cuft is not None and starting_cuft < 0:
        return _fail("Starting cubic feet cannot be negative")

    load.load_status = "loading"
    load.loading_started_at = _now()
    load.starting_cuft = starting_cuft
    db.commit()
    _log(db, driver, trip, load, "loading_started", f"{driver.full_name} started loading {_label(load)}")
    return {"success": True, "load": serialize_workflow(load)}


def finish_loading(
    db: Session,
    *,
    driver: Driver,
    load_id: int,
    ending_cuft: float | None = None,
    actual_cuft_loaded: float | None = None,
) -> dict[str, Any]:
    found = _transition(
        db,
        driver,
        load_id,
        {"loading"},
        'Cannot finish loading - load must be in loading status (current status: "{status}")',
    )
    if isinstance(found, dict):
        return found
    load, trip = found

    actual = actual_cuft_loaded
    if actual is None and ending_cuft is not None:
        actual = ending_cuft - (load.starting_cuft or 0)
    if actual is not None and actual < 0:
        return _fail("Ending cubic feet cannot be less than starting cubic feet")

    load.load_status = "loaded"
    load.loading_finished_at = _now()
    load.ending_cuft = ending_cuft
    load.actual_cuft_loaded = actual
    db.commit()
    _log(
        db,
        driver,
        trip,
        load,
        "loading_finished",
        f"{driver.full_name} finished loading {_label(load)}",
        description=f"{actual:,.0f} CF loaded" if actual is not None else None,
    )
    return {"success": True, "load": serialize_workflow(load)}


def pickup_complete(db: Session, *, driver: Driver, load_id: int, actual_cuft_loaded: float | None) -> dict[str, Any]:
    """One-step pickup for drivers who skip the loading screens."""
    found = _transition(
        db,
        driver,
        load_id,
        {"accepted", "loading"},
        'Cannot complete pickup - load must be accepted or loading (current status: "{status}")',
    )
    if isinstance(found, dict):
        return found
    load, trip = found
    if not actual_cuft_loaded or actual_cuft_loaded <= 0:
        return _fail("Actual cubic feet loaded must be greater than 0")

    now = _now()
    load.load_status = "loaded"
    load.loading_started_at = load.loading_started_at or now
    load.loading_finished_at = now
    load.actual_cuft_loaded = actual_cuft_loaded
    db.commit()
    _log(db, driver, trip, load, "pickup_completed", f"{driver.full_name} picked up {_label(load)}")
    return {"success": True, "load": serialize_workflow(load)}


def start_delivery(db: Session, *, driver: Driver, load_id: int) -> dict[str, Any]:
    found = _transition(
        db,
        driver,
        load_id,
        {"loaded"},
        'Cannot start delivery - load must be loaded first (current status: "{status}")',
    )
    if isinstance(found, dict):
        return found
    load, trip = found

    load.load_status = "in_transit"
    load.delivery_started_at = _now()
    db.commit()
    _log(db, driver, trip, load, "delivery_started", f"{driver.full_name} started delivery of {_label(load)}")
    return {"success": True, "load": serialize_workflow(load)}


def complete_delivery(
    db: Session,
    *,
    driver: Driver,
    load_id: int,
    amount_collected: float | None = None,
    payment_method: str | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    found = _transition(
        db,
        driver,
        load_id,
        {"in_transit"},
        'Cannot complete delivery - load must be in transit (current status: "{status}")',
    )
    if isinstance(found, dict):
        return found
    load, trip = found
    if amount_collected is not None and amount_collected < 0:
        return _fail("Amount collected cannot be negative")
    if payment_method and payment_method not in PAYMENT_METHODS:
        return _fail(f"payment_method must be one of: {', '.join(sorted(PAYMENT_METHODS))}")

    load.load_status = "delivered"
    load.status = "delivered"
    load.delivery_finished_at = _now()
    if amount_collected is not None:
        load.amount_collected_on_delivery = Decimal(str(amount_collected))
    load.payment_method = payment_method
    load.delivery_notes = notes
    db.commit()

    description = None
    if amount_collected:
        description = f"Collected ${amount_collected:,.2f} ({payment_method or 'cash'})"
    _log(db, driver, trip, load, "delivery_completed", f"{driver.full_name} delivered {_label(load)}", description=description)
    return {"success": True, "load": serialize_workflow(load)}


def storage_complete(db: Session, *, driver: Driver, load_id: int, storage_location: str | None = None) -> dict[str, Any]:
    found = _transition(
        db,
        driver,
        load_id,
        {"loaded", "in_transit"},
        'Cannot drop at storage - load must be loaded or in transit (current status: "{status}")',
    )
    if isinstance(found, dict):
        return found
    load, trip = found

    load.load_status = "storage_completed"
    load.delivery_finished_at = _now()
    load.storage_location = storage_location
    db.commit()
    _log(db, driver, trip, load, "storage_completed", f"{driver.full_name} dropped {_label(load)} at storage")
    return {"success": True, "load": serialize_workflow(load)}


# ── Trips ─────────────────────────────────────────────────────────────────────

def _trip_for_driver(db: Session, trip_id: int, driver: Driver) -> Trip | None:
    return db.query(Trip).filter(Trip.id == trip_id, Trip.driver_id == driver.id).first()


def _trip_label(trip: Trip) -> str:
    return trip.trip_number or str(trip.id)


def serialize_trip_progress(trip: Trip) -> dict[str, Any]:
    return {
        "id": trip.id,
        "trip_number": trip.trip_number,
        "status": trip.status,
        "odometer_start": trip.odometer_start,
        "odometer_end": trip.odometer_end,
        "actual_miles": trip.actual_miles,
        "started_at": trip.started_at.isoformat() if trip.started_at else None,
        "completed_at": trip.completed_at.isoformat() if trip.completed_at else None,
    }


def start_trip(db: Session, *, driver: Driver, trip_id: int, odometer_start: float | None) -> dict[str, Any]:
    trip = _trip_for_driver(db, trip_id, driver)
    if not trip:
        return _fail(TRIP_NOT_FOUND, 404)
    if trip.status != "planned":
        return _fail(f'Cannot start trip - trip must be planned (current status: "{trip.status}")')
    if not odometer_start or odometer_start <= 0:
        return _fail("Odometer start reading is required")

    trip.status = "active"
    trip.odometer_start = odometer_start
    trip.started_at = _now()
    trip.start_date = trip.start_date or date.today()
    db.commit()
    logger.info("workflow: driver=%s started trip=%s", driver.id, trip.id)
    _log(db, driver, trip, None, "trip_started", f"{driver.full_name} started Trip {_trip_label(trip)}")
    return {"success": True, "trip": serialize_trip_progress(trip)}


def check_trip_can_complete(db: Session, trip: Trip) -> dict[str, Any]:
    reasons: list[str] = []
    if trip.status != "active":
        reasons.append(f"Trip is {trip.status}, must be active to complete")

    loads = [load for _, load in db.query(TripLoad, Load).join(Load, TripLoad.load_id == Load.id).filter(TripLoad.trip_id == trip.id)]
    if not loads:
        reasons.append("Trip has no loads")
    else:
        pending = sum(1 for load in loads if load.load_status not in DONE_STATUSES)
        if pending:
            reasons.append(f"{pending} load(s) still pending delivery")

    if not trip.odometer_end:
        reasons.append("Please enter odometer end reading first")

    return {"canComplete": not reasons, "reasons": reasons, "loadCount": len(loads)}


def complete_trip(
    db: Session,
    *,
    driver: Driver,
    trip_id: int,
    odometer_end: float | None = None,
    notes: str | None = None,
) -> dict[str, Any]:
    trip = _trip_for_driver(db, trip_id, driver)
    if not trip:
        return _fail(TRIP_NOT_FOUND, 404)

    if odometer_end is not None:
        if trip.odometer_start and odometer_end <= trip.odometer_start:
            return _fail("Odometer end reading must be greater than the start reading")
        trip.odometer_end = odometer_end

    check = check_trip_can_complete(db, trip)
    if not check["canComplete"]:
        db.rollback()
        return {**_fail("; ".join(check["reasons"])), "reasons": check["reasons"]}

    miles = (trip.odometer_end or 0) - (trip.odometer_start or 0)
    trip.actual_miles = miles if miles > 0 else 0
    trip.status = "completed"
    trip.completed_at = _now()
    trip.end_date = trip.end_date or date.today()
    trip.completion_notes = notes
    db.commit()

    _log(
        db,
        driver,
        trip,
        None,
        "trip_completed",
        f"{driver.full_name} completed Trip {_trip_label(trip)}",
        description=f"{trip.actual_miles:,.0f} miles • {check['loadCount']} load(s) delivered",
    )
    return {"success": True, "trip": serialize_trip_progress(trip)}
