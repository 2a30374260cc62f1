"""geocoding.py

Zip-code geocoding and great-circle distance helpers.

Lookup order for an address:
  1. Zip code via the Zippopotam.us API (free, no key). Results are cached in
     process for the life of the worker.
  2. State center from STATE_CENTERS (rough, but good enough for detour
     estimates).
Coordinates are plain dicts: {"lat", "lng", "city", "state"}.
"""

from __future__ import annotations

import logging
import math
import re
from typing import Any

import requests

from haulsync.core.config import settings

logger = logging.getLogger(__name__)

EARTH_RADIUS_MILES = 3958.8

_ZIP_RE = re.compile(r"^\d{5}$")
_zip_cache: dict[str, dict[str, Any]] = {}

STATE_CENTERS: dict[str, tuple[float, float]] = {
    "AL": (32.806671, -86.791130),
    "AK": (61.370716, -152.404419),
    "AZ": (33.729759, -111.431221),
    "AR": (34.969704, -92.373123),
    "CA": (36.116203, -119.681564),
    "CO": (39.059811, -105.311104),
    "CT": (41.597782, -72.755371),
    "DE": (39.318523, -75.507141),
    "FL": (27.766279, -81.686783),
    "GA": (33.040619, -83.643074),
    "HI": (21.094318, -157.498337),
    "ID": (44.240459, -114.478828),
    "IL": (40.349457, -88.986137),
    "IN": (39.849426, -86.258278),
    "IA": (42.011539, -93.210526),
    "KS": (38.526600, -96.726486),
    "KY": (37.668140, -84.670067),
    "LA": (31.169546, -91.867805),
    "ME": (44.693947, -69.381927),
    "MD": (39.063946, -76.802101),
    "MA": (42.230171, -71.530106),
    "MI": (43.326618, -84.536095),
    "MN": (45.694454, -93.900192),
    "MS": (32.741646, -89.678696),
    "MO": (38.456085, -92.288368),
    "MT": (46.921925, -110.454353),
    "NE": (41.125370, -98.268082),
    "NV": (38.313515, -117.055374),
    "NH": (43.452492, -71.563896),
    "NJ": (40.298904, -74.521011),
    "NM": (34.840515, -106.248482),
    "NY": (42.165726, -74.948051),
    "NC": (35.630066, -79.806419),
    "ND": (47.528912, -99.784012),
    "OH": (40.388783, -82.764915),
    "OK": (35.565342, -96.928917),
    "OR": (44.572021, -122.070938),
    "PA": (40.590752, -77.209755),
    "RI": (41.680893, -71.511780),
    "SC": (33.856892, -80.945007),
    "SD": (44.299782, -99.438828),
    "TN": (35.747845, -86.692345),
    "TX": (31.054487, -97.563461),
    "UT": (40.150032, -111.862434),
    "VT": (44.045876, -72.710686),
    "VA": (37.769337, -78.169968),
    "WA": (47.400902, -121.490494),
    "WV": (38.491226, -80.954453),
    "WI": (44.268543, -89.616508),
    "WY": (42.755966, -107.302490),
    "DC": (38.897438, -77.026817),
}


def clear_cache() -> None:
    _zip_cache.clear()


def geocode_zip(zip_code: str) -> dict[str, Any]:
    clean = (zip_code or "").strip()[:5]
    if not _ZIP_RE.match(clean):
        return {"success": False, "error": "Invalid zip code format"}

    cached = _zip_cache.get(clean)
    if cached:
        return {"success": True, "coordinates": cached}

    url = f"{settings.GEOCODER_URL.rstrip('/')}/{clean}"
    try:
        response = requests.get(url, timeout=max(int(settings.GEOCODER_TIMEOUT_SECONDS or 10), 1))
    except requests.RequestException as exc:
        logger.warning("geocode: request failed for zip=%s: %s", clean, exc)
        return {"success": False, "error": str(exc) or "Failed to geocode zip code"}

    if response.status_code == 404:
        return {"success": False, "error": "Zip code not found"}
    if response.status_code < 200 or response.status_code >= 300:
        return {"success": False, "error": f"API error: {response.status_code}"}

    try:
        payload = response.json()
    except ValueError:
        return {"success": False, "error": "No location data found"}

    places = payload.get("places") or [] if isinstance(payload, dict) else []
    if not places:
        return {"success": False, "error": "No location data found"}

    place = places[0]
    try:
        coordinates = {
            "lat": float(place["latitude"]),
            "lng": float(place["longitude"]),
            "city": place.get("place name"),
            "state": place.get("state abbreviation"),
        }
    except (KeyError, TypeError, ValueError):
        return {"success": False, "error": "No location data found"}

    _zip_cache[clean] = coordinates
    return {"success": True, "coordinates": coordinates}


def geocode_address(city: str | None, state: str | None, postal_code: str | None) -> dict[str, Any]:
    if postal_code:
        result = geocode_zip(postal_code)
        if result["success"]:
            return result

    if state:
        center = STATE_CENTERS.get(state.strip().upper())
        if center:
            return {
                "success": True,
                "coordinates": {"lat": center[0], "lng": center[1], "city": city or None, "state": state},
            }

    return {"success": False, "error": "Unable to geocode location"}


def haversine_miles(point1: dict[str, Any], point2: dict[str, Any]) -> float:
    lat1 = math.radians(point1["lat"])
    lat2 = math.radians(point2["lat"])
    delta_lat = math.radians(point2["lat"] - point1["lat"])
    delta_lng = math.radians(point2["lng"] - point1["lng"])

    a = (
        math.sin(delta_lat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(delta_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_MILES * c


def route_distance(points: list[dict[str, Any]]) -> float:
    if len(points) < 2:
        return 0.0
    return sum(haversine_miles(points[i], points[i + 1]) for i in range(len(points) - 1))


def detour_distance(route_start: dict[str, Any], route_end: dict[str, Any], point: dict[str, Any]) -> float:
    """Miles from `point` to the closest point of the start-end segment (flat projection)."""
    d_lat = route_end["lat"] - route_start["lat"]
    d_lng = route_end["lng"] - route_start["lng"]
    denominator = d_lat ** 2 + d_lng ** 2
    if denominator == 0:
        return haversine_miles(point, route_start)

    t = ((point["lat"] - route_start["lat"]) * d_lat + (point["lng"] - route_start["lng"]) * d_lng) / denominator
    t = max(0.0, min(1.0, t))
    closest = {"lat": route_start["lat"] + t * d_lat, "lng": route_start["lng"] + t * d_lng}
    return haversine_miles(point, closest)


def added_miles(route_start: dict[str, Any], route_end: dict[str, Any], detour_point: dict[str, Any]) -> float:
    direct = haversine_miles(route_start, route_end)
    via_detour = haversine_miles(route_start, detour_point) + haversine_miles(detour_point, route_end)
    return max(0.0, via_detour - direct)
