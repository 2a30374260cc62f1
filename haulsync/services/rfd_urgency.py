"""rfd_urgency.py

Urgency of loads against their RFD (ready for delivery) date.

Levels by calendar days until RFD:
  tbd          rfd_date_tbd set, or no rfd_date
  critical     <= 1 (includes today and overdue)
  urgent       <= 2
  approaching  <= 7
  normal       everything later
A load already on a trip is normal unless it is critical.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Iterable

from sqlalchemy.orm import Session

from haulsync.models.load import Load
from haulsync.services.business_days import business_days_until, days_until

URGENCY_LEVELS = ("critical", "urgent", "approaching", "normal", "tbd")
URGENCY_LABELS = {
    "critical": "Critical",
    "urgent": "Urgent",
    "approaching": "Approaching",
    "normal": "On Track",
    "tbd": "TBD",
}
ATTENTION_LEVELS = {"critical", "urgent", "approaching"}

CRITICAL_DAYS = 1
URGENT_DAYS = 2
APPROACHING_DAYS = 7


def _field(load: Any, key: str) -> Any:
    if isinstance(load, dict):
        return load.get(key)
    return getattr(load, key, None)


def urgency_level(days: int | None, is_tbd: bool, on_trip: bool) -> str:
    if is_tbd or days is None:
        return "tbd"
    if on_trip and days > CRITICAL_DAYS:
        return "normal"
    if days <= CRITICAL_DAYS:
        return "critical"
    if days <= URGENT_DAYS:
        return "urgent"
    if days <= APPROACHING_DAYS:
        return "approaching"
    return "normal"


def calculate_rfd_urgency(load: Any, today: date | None = None) -> dict[str, Any]:
    is_tbd = bool(_field(load, "rfd_date_tbd"))
    rfd_date = _field(load, "rfd_date")
    deadline = _field(load, "rfd_delivery_deadline")

    days = None
    business_days = None
    if rfd_date and not is_tbd:
        days = days_until(rfd_date, today)
        business_days = business_days_until(rfd_date, today)

    days_to_deadline = days_until(deadline, today) if deadline else None
    level = urgency_level(days, is_tbd, bool(_field(load, "trip_id")))
    return {
        "level": level,
        "label": URGENCY_LABELS[level],
        "daysUntilRfd": days,
        "businessDaysUntilRfd": business_days,
        "daysUntilDeadline": days_to_deadline,
        "isOverdue": days is not None and days < 0,
        "isDeadlineOverdue": days_to_deadline is not None and days_to_deadline < 0,
    }


def urgency_description(urgency: dict[str, Any]) -> str:
    if urgency["level"] == "tbd":
        return "RFD date not set"
    days = urgency["daysUntilRfd"]
    if urgency["isOverdue"]:
        return "RFD was yesterday" if days == -1 else f"RFD was {abs(days)} days ago"
    if days == 0:
        return "RFD is today"
    if days == 1:
        return "RFD is tomorrow"
    return f"RFD in {days} days"


def urgency_badge_label(urgency: dict[str, Any]) -> str:
    if urgency["level"] == "tbd":
        return "TBD"
    days = urgency["daysUntilRfd"]
    if urgency["isOverdue"]:
        return f"{abs(days)}d overdue"
    if days == 0:
        return "Today"
    if days == 1:
        return "Tomorrow"
    return f"{days}d"


def sort_by_urgency(loads: Iterable[Any], today: date | None = None) -> list[Any]:
    """Most overdue first; TBD loads last, in their original order."""

    def key(load: Any) -> tuple[int, float]:
        urgency = calculate_rfd_urgency(load, today)
        if urgency["level"] == "tbd":
            return (1, 0)
        return (0, urgency["daysUntilRfd"])

    return sorted(loads, key=key)


def filter_by_level(loads: Iterable[Any], levels: Iterable[str], today: date | None = None) -> list[Any]:
    wanted = set(levels)
    return [load for load in loads if calculate_rfd_urgency(load, today)["level"] in wanted]


def count_by_level(loads: Iterable[Any], today: date | None = None) -> dict[str, int]:
    counts = {level: 0 for level in URGENCY_LEVELS}
    for load in loads:
        counts[calculate_rfd_urgency(load, today)["level"]] += 1
    return counts


def loads_needing_attention(loads: Iterable[Any], today: date | None = None) -> list[Any]:
    return [
        load
        for load in loads
        if not _field(load, "trip_id") and calculate_rfd_urgency(load, today)["level"] in ATTENTION_LEVELS
    ]


def company_rfd_overview(db: Session, company_id: int, *, levels: list[str] | None = None) -> dict[str, Any]:
    loads = (
        db.query(Load)
        .filter(
            Load.company_id == company_id,
            Load.load_subtype == "rfd",
            Load.status.notin_(("delivered", "cancelled")),
        )
        .all()
    )
    today = date.today()
    selected = filter_by_level(loads, levels, today) if levels else loads

    items = []
    for load in sort_by_urgency(selected, today):
        urgency = calculate_rfd_urgency(load, today)
        items.append({
            "id": load.id,
            "load_number": load.load_number,
            "rfd_date": load.rfd_date.isoformat() if load.rfd_date else None,
            "rfd_delivery_deadline": load.rfd_delivery_deadline.isoformat() if load.rfd_delivery_deadline else None,
            "trip_id": load.trip_id,
            "urgency": urgency,
            "description": urgency_description(urgency),
            "badge": urgency_badge_label(urgency),
        })

    return {
        "loads": items,
        "counts": count_by_level(loads, today),
        "needingAttention": len(loads_needing_attention(loads, today)),
    }
