"""suggestions.py

Marketplace loads that fit along an existing trip.

Rules enforced here (in order):
  1. Trip endpoints come from the trip row. Each missing city, state or zip is
     filled on its own from the first and last trip loads by sequence_index
     (pickup of the first, delivery of the last).
  2. Both endpoints must geocode, otherwise the caller gets an error and an
     empty list (not an HTTP failure).
  3. Capacity = trailer capacity_cuft, else truck cubic_capacity, else the
     default trailer size. Used = sum of cubic_feet already on the trip.
  4. Candidates: posted, marketplace-visible, unassigned loads from other
     companies that are not already on the trip.
  5. A candidate is skipped when it exceeds maxCuft, exceeds available
     capacity, cannot be geocoded, or adds more than maxDetour miles.
  6. Results are sorted by added miles, closest first.
"""

from __future__ import annotations

import logging
import math
from typing import Any

from sqlalchemy.orm import Session

from haulsync.core.config import settings
from haulsync.models.fleet import Trailer, Truck
from haulsync.models.load import Load
from haulsync.models.trip import Trip, TripLoad
from haulsync.services.geocoding import added_miles, geocode_address, haversine_miles

logger = logging.getLogger(__name__)


def _finite_non_negative(raw: str) -> float | None:
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value) or value < 0:
        return None
    return value


def parse_max_detour(raw: str | None) -> float | None:
    """`all` means unlimited; absent, unparseable, negative or non-finite means the default."""
    if raw is None or raw == "":
        return settings.SUGGESTION_DEFAULT_MAX_DETOUR_MILES
    if raw.strip().lower() == "all":
        return None
    value = _finite_non_negative(raw)
    return settings.SUGGESTION_DEFAULT_MAX_DETOUR_MILES if value is None else value


def parse_max_cuft(raw: str | None) -> float | None:
    if raw is None or raw == "":
        return None
    return _finite_non_negative(raw)


def trip_loads_in_order(db: Session, trip_id: int) -> list[tuple[TripLoad, Load]]:
    return (
        db.query(TripLoad, Load)
        .join(Load, TripLoad.load_id == Load.id)
        .filter(TripLoad.trip_id == trip_id)
        .order_by(TripLoad.sequence_index.asc(), TripLoad.id.asc())
        .all()
    )


def _endpoint(trip: Trip, prefix: str, load: Load | None, load_prefix: str) -> dict[str, Any]:
    endpoint: dict[str, Any] = {"isDerived": False}
    for field in ("city", "state", "zip"):
        value = getattr(trip, f"{prefix}_{field}")
        if not value and load is not None:
            value = getattr(load, f"{load_prefix}_{field}")
            if value:
                endpoint["isDerived"] = True
        endpoint[field] = value
    return endpoint


def resolve_trip_endpoints(trip: Trip, ordered: list[tuple[TripLoad, Load]]) -> tuple[dict[str, Any], dict[str, Any]]:
    """Each empty trip field falls back to the first pickup or last delivery on its own."""
    first = ordered[0][1] if ordered else None
    last = ordered[-1][1] if ordered else None
    return _endpoint(trip, "origin", first, "pickup"), _endpoint(trip, "destination", last, "delivery")


def trip_capacity(db: Session, trip: Trip, ordered: list[tuple[TripLoad, Load]]) -> dict[str, float]:
    truck_capacity = None
    if trip.trailer_id:
        trailer = db.query(Trailer).filter(Trailer.id == trip.trailer_id).first()
        if trailer and trailer.capacity_cuft:
            truck_capacity = float(trailer.capacity_cuft)
    if truck_capacity is None and trip.truck_id:
        truck = db.query(Truck).filter(Truck.id == trip.truck_id).first()
        if truck and truck.cubic_capacity:
            truck_capacity = float(truck.cubic_capacity)
    if truck_capacity is None:
        truck_capacity = float(settings.DEFAULT_TRAILER_CAPACITY_CUFT)

    used = sum(float(load.cubic_feet or 0) for _, load in ordered)
    return {
        "truck": truck_capacity,
        "used": used,
        "available": max(0.0, truck_capacity - used),
    }


def _rate_fields(load: Load) -> tuple[float | None, str | None]:
    if load.rate_per_cuft:
        return float(load.rate_per_cuft), "per_cuft"
    if load.balance_due:
        return float(load.balance_due), "flat"
    return None, None


def marketplace_candidates(db: Session, *, exclude_company_id: int, exclude_load_ids: set[int]) -> list[Load]:
    query = db.query(Load).filter(
        Load.is_marketplace_visible.is_(True),
        Load.posting_status == "posted",
        Load.assigned_carrier_id.is_(None),
        Load.company_id != exclude_company_id,
    )
    if exclude_load_ids:
        query = query.filter(Load.id.notin_(exclude_load_ids))
    return query.order_by(Load.pickup_date.asc(), Load.id.asc()).all()


def find_trip_suggestions(
    db: Session,
    *,
    trip: Trip,
    company_id: int,
    max_detour: float | None,
    max_cuft: float | None,
) -> dict[str, Any]:
    ordered = trip_loads_in_order(db, trip.id)
    origin, destination = resolve_trip_endpoints(trip, ordered)
    capacity = trip_capacity(db, trip, ordered)
    filters = {"maxDetour": max_detour, "maxCuft": max_cuft}

    origin_geo = geocode_address(origin["city"], origin["state"], origin["zip"])
    dest_geo = geocode_address(destination["city"], destination["state"], destination["zip"])
    if not origin_geo["success"] or not dest_geo["success"]:
        logger.info(
            "suggestions: trip=%s endpoints not geocodable (origin=%s dest=%s)",
            trip.id,
            origin_geo.get("error"),
            dest_geo.get("error"),
        )
        return {
            "error": "Could not determine trip route. Add origin and destination (or loads) to the trip.",
            "suggestions": [],
            "tripOrigin": origin,
            "tripDestination": destination,
            "capacity": capacity,
            "filters": filters,
        }

    start = origin_geo["coordinates"]
    end = dest_geo["coordinates"]
    on_trip = {load.id for _, load in ordered}

    suggestions: list[dict[str, Any]] = []
    for load in marketplace_candidates(db, exclude_company_id=company_id, exclude_load_ids=on_trip):
        cuft = float(load.cubic_feet or 0)
        if max_cuft is not None and cuft > max_cuft:
            continue
        if cuft > capacity["available"]:
            continue

        pickup_geo = geocode_address(load.pickup_city, load.pickup_state, load.pickup_zip)
        if not pickup_geo["success"]:
            continue
        pickup = pickup_geo["coordinates"]

        extra = added_miles(start, end, pickup)
        if max_detour is not None and extra > max_detour:
            continue

        rate, rate_type = _rate_fields(load)
        suggestions.append({
            "id": load.id,
            "loadNumber": load.load_number,
            "companyId": load.company_id,
            "pickupCity": load.pickup_city,
            "pickupState": load.pickup_state,
            "pickupZip": load.pickup_zip,
            "deliveryCity": load.delivery_city,
            "deliveryState": load.delivery_state,
            "deliveryZip": load.delivery_zip,
            "pickupDate": load.pickup_date.isoformat() if load.pickup_date else None,
            "cubicFeet": cuft,
            "rate": rate,
            "rateType": rate_type,
            "addedMiles": round(extra, 1),
            "distanceFromRoute": round(min(haversine_miles(start, pickup), haversine_miles(end, pickup)), 1),
        })

    suggestions.sort(key=lambda item: item["addedMiles"])
    return {
        "suggestions": suggestions,
        "tripOrigin": origin,
        "tripDestination": destination,
        "capacity": capacity,
        "filters": filters,
    }
