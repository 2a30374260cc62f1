"""matching.py

Company matching preferences and the trip load-matching engine.

Engine rules (per candidate load, in order):
  1. Pickup or dropoff in an excluded state -> skip.
  2. Deadhead = miles from the trip's final delivery to the pickup. Over
     max_deadhead_miles -> skip.
  3. Load must fit the remaining trailer capacity, and the share of remaining
     capacity it uses must sit inside [min, max] capacity utilization.
  4. Revenue = total_rate, else balance_due, else cubic_feet x rate_per_cuft.
     Profit per mile = (revenue - estimated cost) / (deadhead + loaded miles).
     Below min_profit_per_mile -> skip.
  5. Score = proximity + profit + capacity + route + partner (max 100).
     Below min_match_score -> skip.
The best MATCH_RESULT_LIMIT survive, highest score first.
"""

from __future__ import annotations

import logging
import math
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any

from sqlalchemy import or_
from sqlalchemy.orm import Session

from haulsync.core.config import settings
from haulsync.models.company import CompanyMatchingSettings, CompanyPartnership
from haulsync.models.fleet import Driver, Trailer, Truck
from haulsync.models.load import Load
from haulsync.models.marketplace import LoadSuggestion
from haulsync.models.trip import Trip
from haulsync.services.geocoding import geocode_address, haversine_miles
from haulsync.services.suggestions import trip_loads_in_order

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

NOTIFICATION_PREFERENCES = ("dashboard_only", "push_and_dashboard", "email_digest", "disabled")
CAPACITY_VISIBILITIES = ("private", "partners_only", "public")
SUGGESTION_STATUSES = ("pending", "viewed", "dismissed", "accepted")

DEFAULT_MATCHING_SETTINGS: dict[str, Any] = {
    "min_profit_per_mile": 1.00,
    "max_deadhead_miles": 150,
    "min_match_score": 50,
    "preferred_return_states": [],
    "excluded_states": [],
    "min_capacity_utilization_percent": 30,
    "max_capacity_utilization_percent": 100,
    "notification_preference": "dashboard_only",
    "auto_post_capacity_enabled": False,
    "auto_post_min_capacity_cuft": 500,
    "default_location_sharing": False,
    "default_capacity_visibility": "private",
}

MILES_PER_DAY = 500


def _money(value: float) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


# ── Settings ──────────────────────────────────────────────────────────────────

def serialize_settings(row: CompanyMatchingSettings | None) -> dict[str, Any]:
    if row is None:
        return dict(DEFAULT_MATCHING_SETTINGS)
    data = {key: getattr(row, key) for key in DEFAULT_MATCHING_SETTINGS}
    data["min_profit_per_mile"] = float(data["min_profit_per_mile"] or 0)
    data["preferred_return_states"] = list(data["preferred_return_states"] or [])
    data["excluded_states"] = list(data["excluded_states"] or [])
    return data


def get_matching_settings(db: Session, company_id: int) -> dict[str, Any]:
    row = db.query(CompanyMatchingSettings).filter(CompanyMatchingSettings.company_id == company_id).first()
    return serialize_settings(row)


def _normalize_states(values: list[str]) -> list[str]:
    return sorted({(value or "").strip().upper() for value in values if (value or "").strip()})


def validate_settings_update(updates: dict[str, Any], current: dict[str, Any]) -> str | None:
    """Return an error message, or None when the merged settings are valid."""
    merged = {**current, **updates}
    if merged["min_profit_per_mile"] < 0:
        return "min_profit_per_mile must be zero or greater"
    if merged["max_deadhead_miles"] < 0:
        return "max_deadhead_miles must be zero or greater"
    if not 0 <= merged["min_match_score"] <= 100:
        return "min_match_score must be between 0 and 100"
    lo = merged["min_capacity_utilization_percent"]
    hi = merged["max_capacity_utilization_percent"]
    if not (0 <= lo <= 100 and 0 <= hi <= 100):
        return "Capacity utilization must be between 0 and 100"
    if lo > hi:
        return "min_capacity_utilization_percent cannot exceed max_capacity_utilization_percent"
    if merged["notification_preference"] not in NOTIFICATION_PREFERENCES:
        return f"notification_preference must be one of: {', '.join(NOTIFICATION_PREFERENCES)}"
    if merged["default_capacity_visibility"] not in CAPACITY_VISIBILITIES:
        return f"default_capacity_visibility must be one of: {', '.join(CAPACITY_VISIBILITIES)}"
    if merged["auto_post_min_capacity_cuft"] < 0:
        return "auto_post_min_capacity_cuft must be zero or greater"
    return None


def update_matching_settings(db: Session, company_id: int, updates: dict[str, Any]) -> dict[str, Any]:
    """Upsert the company row. Returns {"success", "settings"} or {"success": False, "error"}."""
    current = get_matching_settings(db, company_id)
    clean = {key: value for key, value in updates.items() if key in DEFAULT_MATCHING_SETTINGS and value is not None}
    for key in ("preferred_return_states", "excluded_states"):
        if key in clean:
            clean[key] = _normalize_states(clean[key])

    error = validate_settings_update(clean, current)
    if error:
        return {"success": False, "error": error}

    row = db.query(CompanyMatchingSettings).filter(CompanyMatchingSettings.company_id == company_id).first()
    if row is None:
        row = CompanyMatchingSettings(company_id=company_id, **current)
        db.add(row)
    for key, value in clean.items():
        setattr(row, key, value)
    db.commit()
    db.refresh(row)
    logger.info("matching: settings updated company=%s fields=%s", company_id, sorted(clean))
    return {"success": True, "settings": serialize_settings(row)}


# ── Cost model ────────────────────────────────────────────────────────────────

def estimate_days_for_load(total_miles: float) -> int:
    return max(1, math.ceil(total_miles / MILES_PER_DAY))


def estimate_load_costs(
    driver: Any,
    total_miles: float,
    cubic_feet: float,
    revenue: float,
    days: int,
) -> dict[str, float]:
    pay_mode = getattr(driver, "pay_mode", None) or "per_mile"
    rate_per_mile = float(getattr(driver, "rate_per_mile", None) or settings.DEFAULT_DRIVER_RATE_PER_MILE)
    rate_per_cuft = float(getattr(driver, "rate_per_cuft", None) or 0)
    percent = float(getattr(driver, "percent_of_revenue", None) or 0)
    daily = float(getattr(driver, "flat_daily_rate", None) or 0)

    if pay_mode == "per_cuft":
        driver_cost = cubic_feet * rate_per_cuft
    elif pay_mode == "per_mile_and_cuft":
        driver_cost = total_miles * rate_per_mile + cubic_feet * rate_per_cuft
    elif pay_mode == "percent_of_revenue":
        driver_cost = revenue * percent / 100
    elif pay_mode == "flat_daily_rate":
        driver_cost = days * daily
    else:
        driver_cost = total_miles * rate_per_mile

    fuel_cost = total_miles * float(settings.FUEL_COST_PER_MILE)
    return {
        "driver_cost": round(driver_cost, 2),
        "fuel_cost": round(fuel_cost, 2),
        "total_cost": round(driver_cost + fuel_cost, 2),
    }


# ── Scoring ───────────────────────────────────────────────────────────────────

def calculate_scores(
    *,
    deadhead_miles: float,
    profit_per_mile: float,
    capacity_fit_percent: float,
    dropoff_state: str | None,
    return_states: list[str],
    preferred_return_states: list[str],
    is_partner: bool,
) -> dict[str, int]:
    if deadhead_miles <= 25:
        proximity = 25
    elif deadhead_miles <= 50:
        proximity = 20
    elif deadhead_miles <= 75:
        proximity = 15
    elif deadhead_miles <= 100:
        proximity = 10
    else:
        proximity = 5

    if profit_per_mile >= 2.5:
        profit = 25
    elif profit_per_mile >= 2.0:
        profit = 20
    elif profit_per_mile >= 1.5:
        profit = 15
    elif profit_per_mile >= 1.25:
        profit = 10
    else:
        profit = 5

    if 60 <= capacity_fit_percent <= 90:
        capacity = 20
    elif 40 <= capacity_fit_percent <= 95:
        capacity = 15
    else:
        capacity = 10

    route = 5
    if dropoff_state:
        if dropoff_state in return_states:
            route = 20
        elif dropoff_state in preferred_return_states:
            route = 15

    return {
        "proximity_score": proximity,
        "profit_score": profit,
        "capacity_score": capacity,
        "route_score": route,
        "partner_score": 10 if is_partner else 0,
    }


def determine_match_type(scores: dict[str, int]) -> str:
    if scores["partner_score"] > 0:
        return "partner_load"
    if scores["profit_score"] >= 20:
        return "high_profit"
    if scores["route_score"] >= 15:
        return "backhaul"
    if scores["capacity_score"] >= 18:
        return "capacity_fit"
    return "near_delivery"


def load_revenue(load: Any) -> float:
    if load.total_rate:
        return float(load.total_rate)
    if load.balance_due:
        return float(load.balance_due)
    return float(load.cubic_feet or 0) * float(load.rate_per_cuft or 0)


def partner_company_ids(db: Session, company_id: int) -> set[int]:
    rows = (
        db.query(CompanyPartnership)
        .filter(
            CompanyPartnership.status == "active",
            or_(CompanyPartnership.company_a_id == company_id, CompanyPartnership.company_b_id == company_id),
        )
        .all()
    )
    partners: set[int] = set()
    for row in rows:
        partners.add(row.company_b_id if row.company_a_id == company_id else row.company_a_id)
    return partners


def score_load_for_trip(
    load: Any,
    *,
    reference_point: dict[str, Any],
    remaining_capacity: float,
    driver: Any,
    prefs: dict[str, Any],
    return_states: list[str],
    partner_ids: set[int],
) -> dict[str, Any] | None:
    excluded = prefs["excluded_states"]
    for state in (load.pickup_state, load.delivery_state):
        if state and state.strip().upper() in excluded:
            return None

    pickup_geo = geocode_address(load.pickup_city, load.pickup_state, load.pickup_zip)
    if not pickup_geo["success"]:
        return None
    pickup = pickup_geo["coordinates"]

    deadhead = haversine_miles(reference_point, pickup)
    if deadhead > prefs["max_deadhead_miles"]:
        return None

    dropoff_geo = geocode_address(load.delivery_city, load.delivery_state, load.delivery_zip)
    if not dropoff_geo["success"]:
        return None
    loaded_miles = haversine_miles(pickup, dropoff_geo["coordinates"])

    cubic_feet = float(load.cubic_feet or 0)
    if cubic_feet > remaining_capacity:
        return None
    capacity_fit = (cubic_feet / remaining_capacity) * 100 if remaining_capacity > 0 else 0.0
    if not prefs["min_capacity_utilization_percent"] <= capacity_fit <= prefs["max_capacity_utilization_percent"]:
        return None

    revenue = load_revenue(load)
    total_miles = deadhead + loaded_miles
    costs = estimate_load_costs(driver, total_miles, cubic_feet, revenue, estimate_days_for_load(total_miles))
    profit = revenue - costs["total_cost"]
    profit_per_mile = profit / total_miles if total_miles > 0 else 0.0
    if profit_per_mile < float(prefs["min_profit_per_mile"]):
        return None

    owner_id = load.posted_by_company_id or load.company_id
    scores = calculate_scores(
        deadhead_miles=deadhead,
        profit_per_mile=profit_per_mile,
        capacity_fit_percent=capacity_fit,
        dropoff_state=(load.delivery_state or "").strip().upper() or None,
        return_states=return_states,
        preferred_return_states=prefs["preferred_return_states"],
        is_partner=owner_id in partner_ids,
    )
    match_score = sum(scores.values())
    if match_score < prefs["min_match_score"]:
        return None

    return {
        "load_id": load.id,
        "match_type": determine_match_type(scores),
        "match_score": match_score,
        **scores,
        "deadhead_miles": round(deadhead, 1),
        "loaded_miles": round(loaded_miles, 1),
        "estimated_revenue": round(revenue, 2),
        "estimated_cost": costs["total_cost"],
        "estimated_profit": round(profit, 2),
        "profit_per_mile": round(profit_per_mile, 2),
        "capacity_utilization": round(capacity_fit, 1),
    }


def _reference_point(trip: Trip, ordered: list) -> dict[str, Any] | None:
    if ordered:
        last = ordered[-1][1]
        city, state, zip_code = last.delivery_city, last.delivery_state, last.delivery_zip
    else:
        city, state, zip_code = trip.destination_city, trip.destination_state, trip.destination_zip
    if not (city or state or zip_code):
        return None
    result = geocode_address(city, state, zip_code)
    return result["coordinates"] if result["success"] else None


def _remaining_capacity(db: Session, trip: Trip, ordered: list) -> float:
    capacity = None
    if trip.trailer_id:
        trailer = db.query(Trailer).filter(Trailer.id == trip.trailer_id).first()
        capacity = trailer.capacity_cuft if trailer else None
    if not capacity and trip.truck_id:
        truck = db.query(Truck).filter(Truck.id == trip.truck_id).first()
        capacity = truck.cubic_capacity if truck else None
    capacity = float(capacity or settings.DEFAULT_TRAILER_CAPACITY_CUFT)
    loaded = sum(float(load.actual_cuft_loaded if load.actual_cuft_loaded is not None else (load.cubic_feet or 0)) for _, load in ordered)
    return max(0.0, capacity - loaded)


def find_matches_for_trip(db: Session, *, trip: Trip, company_id: int, today: date | None = None) -> list[dict[str, Any]]:
    prefs = get_matching_settings(db, company_id)
    ordered = trip_loads_in_order(db, trip.id)

    reference = _reference_point(trip, ordered)
    if reference is None:
        logger.info("matching: trip=%s has no geocodable final delivery", trip.id)
        return []

    driver = db.query(Driver).filter(Driver.id == trip.driver_id).first() if trip.driver_id else None
    remaining = _remaining_capacity(db, trip, ordered)
    partners = partner_company_ids(db, company_id)
    return_states = [trip.return_state.upper()] if trip.return_state else []
    on_trip = {load.id for _, load in ordered}

    today = today or date.today()
    candidates = (
        db.query(Load)
        .filter(
            Load.posting_status == "posted",
            Load.assigned_carrier_id.is_(None),
            Load.company_id != company_id,
            or_(Load.pickup_date.is_(None), Load.pickup_date >= today),
        )
        .all()
    )

    scored = []
    for load in candidates:
        if load.id in on_trip:
            continue
        result = score_load_for_trip(
            load,
            reference_point=reference,
            remaining_capacity=remaining,
            driver=driver,
            prefs=prefs,
            return_states=return_states,
            partner_ids=partners,
        )
        if result:
            scored.append(result)

    scored.sort(key=lambda item: item["match_score"], reverse=True)
    return scored[: settings.MATCH_RESULT_LIMIT]


def save_suggestions(db: Session, *, trip_id: int, company_id: int, matches: list[dict[str, Any]]) -> int:
    """Upsert on (trip_id, load_id); every saved row is reset to pending with a fresh expiry."""
    if not matches:
        return 0

    expires_at = datetime.now(timezone.utc) + timedelta(hours=settings.SUGGESTION_EXPIRY_HOURS)
    existing = {
        row.load_id: row
        for row in db.query(LoadSuggestion).filter(
            LoadSuggestion.trip_id == trip_id,
            LoadSuggestion.load_id.in_([match["load_id"] for match in matches]),
        )
    }
    for match in matches:
        row = existing.get(match["load_id"])
        if row is None:
            row = LoadSuggestion(trip_id=trip_id, load_id=match["load_id"], company_id=company_id)
            db.add(row)
        row.match_type = match["match_type"]
        row.match_score = match["match_score"]
        row.proximity_score = match["proximity_score"]
        row.profit_score = match["profit_score"]
        row.capacity_score = match["capacity_score"]
        row.route_score = match["route_score"]
        row.partner_score = match["partner_score"]
        row.deadhead_miles = match["deadhead_miles"]
        row.loaded_miles = match["loaded_miles"]
        row.estimated_revenue = _money(match["estimated_revenue"])
        row.estimated_cost = _money(match["estimated_cost"])
        row.estimated_profit = _money(match["estimated_profit"])
        row.profit_per_mile = _money(match["profit_per_mile"])
        row.capacity_utilization = match["capacity_utilization"]
        row.status = "pending"
        row.expires_at = expires_at
    db.commit()
    logger.info("matching: saved %s suggestions for trip=%s", len(matches), trip_id)
    return len(matches)


def serialize_suggestion(row: LoadSuggestion, load: Load | None = None) -> dict[str, Any]:
    data = {
        "id": row.id,
        "trip_id": row.trip_id,
        "load_id": row.load_id,
        "match_type": row.match_type,
        "match_score": row.match_score,
        "score_breakdown": {
            "proximity": row.proximity_score,
            "profit": row.profit_score,
            "capacity": row.capacity_score,
            "route": row.route_score,
            "partner": row.partner_score,
        },
        "deadhead_miles": row.deadhead_miles,
        "loaded_miles": row.loaded_miles,
        "estimated_revenue": float(row.estimated_revenue) if row.estimated_revenue is not None else None,
        "estimated_profit": float(row.estimated_profit) if row.estimated_profit is not None else None,
        "profit_per_mile": float(row.profit_per_mile) if row.profit_per_mile is not None else None,
        "capacity_utilization": row.capacity_utilization,
        "status": row.status,
        "expires_at": row.expires_at.isoformat() if row.expires_at else None,
    }
    if load is not None:
        data["load"] = {
            "load_number": load.load_number,
            "pickup_city": load.pickup_city,
            "pickup_state": load.pickup_state,
            "delivery_city": load.delivery_city,
            "delivery_state": load.delivery_state,
            "cubic_feet": load.cubic_feet,
            "pickup_date": load.pickup_date.isoformat() if load.pickup_date else None,
        }
    return data


def list_trip_suggestions(db: Session, trip_id: int, include_dismissed: bool = False) -> list[dict[str, Any]]:
    query = (
        db.query(LoadSuggestion, Load)
        .join(Load, LoadSuggestion.load_id == Load.id)
        .filter(LoadSuggestion.trip_id == trip_id)
    )
    if not include_dismissed:
        query = query.filter(LoadSuggestion.status != "dismissed")
    rows = query.order_by(LoadSuggestion.match_score.desc(), LoadSuggestion.id.asc()).all()
    return [serialize_suggestion(row, load) for row, load in rows]


def update_suggestion_status(db: Session, *, suggestion_id: int, company_id: int, status: str) -> dict[str, Any]:
    if status not in SUGGESTION_STATUSES or status == "pending":
        return {"success": False, "error": "status must be one of: viewed, dismissed, accepted", "status_code": 400}
    row = (
        db.query(LoadSuggestion)
        .filter(LoadSuggestion.id == suggestion_id, LoadSuggestion.company_id == company_id)
        .first()
    )
    if not row:
        return {"success": False, "error": "Suggestion not found", "status_code": 404}
    row.status = status
    db.commit()
    db.refresh(row)
    return {"success": True, "suggestion": serialize_suggestion(row)}
