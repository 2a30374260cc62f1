"""push_notifications.py

Expo push delivery for dashboard users and drivers.

Rules:
  1. Messages go out in chunks of PUSH_CHUNK_SIZE (Expo caps a request at 100).
  2. A chunk that fails (network error, bad JSON) yields one error ticket per
     message in that chunk; other chunks still go out.
  3. Every send to a user or driver with at least one active token writes a
     notification_log row.
  4. Push is a side channel: callers log failures and carry on.
"""

from __future__ import annotations

import logging
from typing import Any

import requests
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from haulsync.core.config import settings
from haulsync.models.messaging import NotificationLog, PushToken

logger = logging.getLogger(__name__)

NOTIFICATION_TYPES = {
    "trip_assigned",
    "load_assigned",
    "load_status_changed",
    "payment_received",
    "settlement_approved",
    "message",
    "general",
}
PLATFORMS = {"ios", "android"}

PUSH_HEADERS = {
    "Accept": "application/json",
    "Accept-Encoding": "gzip, deflate",
    "Content-Type": "application/json",
}


# ── Tokens ────────────────────────────────────────────────────────────────────

def user_push_tokens(db: Session, user_id: int) -> list[str]:
    rows = db.query(PushToken.token).filter(PushToken.user_id == user_id, PushToken.is_active.is_(True)).all()
    return [row.token for row in rows]


def driver_push_tokens(db: Session, driver_id: int) -> list[str]:
    rows = db.query(PushToken.token).filter(PushToken.driver_id == driver_id, PushToken.is_active.is_(True)).all()
    return [row.token for row in rows]


def register_push_token(
    db: Session,
    *,
    token: str,
    platform: str | None,
    user_id: int | None,
    driver_id: int | None = None,
) -> PushToken:
    """Upsert by token. A device that changes hands is re-pointed at the new owner."""
    row = db.query(PushToken).filter(PushToken.token == token).first()
    if row is None:
        row = PushToken(token=token)
        db.add(row)
    row.user_id = user_id
    row.driver_id = driver_id
    row.platform = platform
    row.is_active = True
    db.commit()
    db.refresh(row)
    return row


def deactivate_push_token(db: Session, *, token: str, user_id: int) -> bool:
    row = db.query(PushToken).filter(PushToken.token == token, PushToken.user_id == user_id).first()
    if not row:
        return False
    row.is_active = False
    db.commit()
    return True


# ── Delivery ──────────────────────────────────────────────────────────────────

def send_push_notifications(messages: list[dict[str, Any]]) -> list[dict[str, Any]]:
    if not messages:
        return []

    chunk_size = max(int(settings.PUSH_CHUNK_SIZE or 100), 1)
    timeout_seconds = max(int(settings.PUSH_TIMEOUT_SECONDS or 15), 1)
    tickets: list[dict[str, Any]] = []

    for start in range(0, len(messages), chunk_size):
        chunk = messages[start:start + chunk_size]
        try:
            response = requests.post(
                settings.EXPO_PUSH_URL,
                json=chunk,
                headers=PUSH_HEADERS,
                timeout=timeout_seconds,
            )
            result = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("push: send failed for chunk of %s: %s", len(chunk), exc)
            tickets.extend({"status": "error", "message": str(exc) or "Unknown error"} for _ in chunk)
            continue

        data = result.get("data") if isinstance(result, dict) else None
        if isinstance(data, list):
            tickets.extend(data)
        elif isinstance(data, dict):
            tickets.append(data)
    return tickets


def _log_notification(
    db: Session,
    *,
    user_id: int | None,
    driver_id: int | None,
    notification_type: str,
    title: str,
    body: str,
    data: dict[str, Any] | None,
) -> None:
    try:
        db.add(
            NotificationLog(
                user_id=user_id,
                driver_id=driver_id,
                notification_type=notification_type,
                title=title,
                body=body,
                data=data,
            )
        )
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("push: notification_log insert failed: %s", exc)


def _build_messages(tokens: list[str], title: str, body: str, data: dict[str, Any] | None, channel_id: str | None):
    messages = []
    for token in tokens:
        message: dict[str, Any] = {"to": token, "title": title, "body": body, "sound": "default"}
        if data:
            message["data"] = data
        if channel_id:
            message["channelId"] = channel_id
        messages.append(message)
    return messages


def _deliver(
    db: Session,
    *,
    tokens: list[str],
    user_id: int | None,
    driver_id: int | None,
    title: str,
    body: str,
    data: dict[str, Any] | None,
    channel_id: str | None,
) -> dict[str, Any]:
    if not tokens:
        return {"success": True, "ticketCount": 0}

    tickets = send_push_notifications(_build_messages(tokens, title, body, data, channel_id))
    _log_notification(
        db,
        user_id=user_id,
        driver_id=driver_id,
        notification_type=(data or {}).get("type") or "general",
        title=title,
        body=body,
        data=data,
    )
    ok = sum(1 for ticket in tickets if ticket.get("status") == "ok")
    return {"success": ok > 0, "ticketCount": ok}


def send_push_to_user(
    db: Session,
    user_id: int,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    channel_id: str | None = None,
) -> dict[str, Any]:
    return _deliver(
        db,
        tokens=user_push_tokens(db, user_id),
        user_id=user_id,
        driver_id=None,
        title=title,
        body=body,
        data=data,
        channel_id=channel_id,
    )


def send_push_to_driver(
    db: Session,
    driver_id: int,
    title: str,
    body: str,
    data: dict[str, Any] | None = None,
    channel_id: str | None = None,
) -> dict[str, Any]:
    return _deliver(
        db,
        tokens=driver_push_tokens(db, driver_id),
        user_id=None,
        driver_id=driver_id,
        title=title,
        body=body,
        data=data,
        channel_id=channel_id,
    )


# ── Typed helpers ─────────────────────────────────────────────────────────────

def notify_driver_trip_assigned(db: Session, *, driver_id: int, trip_id: int, trip_number: str, route: str, start_date: str) -> dict[str, Any]:
    return send_push_to_driver(
        db,
        driver_id,
        "New Trip Assigned",
        f"Trip #{trip_number}: {route} on {start_date}",
        {"type": "trip_assigned", "tripId": str(trip_id)},
        channel_id="trips",
    )


def notify_driver_load_assigned(
    db: Session, *, driver_id: int, load_id: int, trip_id: int | None, load_number: str, pickup_location: str
) -> dict[str, Any]:
    data = {"type": "load_assigned", "loadId": str(load_id)}
    if trip_id:
        data["tripId"] = str(trip_id)
    return send_push_to_driver(
        db, driver_id, "New Load Added", f"{load_number} - Pickup: {pickup_location}", data, channel_id="trips"
    )


def notify_driver_load_status_changed(
    db: Session,
    *,
    driver_id: int,
    load_id: int,
    load_number: str,
    new_status: str,
    message: str | None = None,
) -> dict[str, Any]:
    return send_push_to_driver(
        db,
        driver_id,
        f"Load {load_number} Updated",
        message or f"Status changed to {new_status}",
        {"type": "load_status_changed", "loadId": str(load_id)},
        channel_id="trips",
    )


def notify_driver_payment(db: Session, *, driver_id: int, trip_number: str, amount: float, status: str) -> dict[str, Any]:
    if status not in ("approved", "paid"):
        raise ValueError(f"Unknown payment status: {status}")
    approved = status == "approved"
    title = "Settlement Approved" if approved else "Payment Received"
    suffix = "approved for payment" if approved else "has been paid"
    return send_push_to_driver(
        db,
        driver_id,
        title,
        f"Trip #{trip_number}: ${amount:.2f} {suffix}",
        {"type": "settlement_approved" if approved else "payment_received"},
        channel_id="payments",
    )


def notify_driver_message(
    db: Session, *, driver_id: int, title: str, message: str, data: dict[str, Any] | None = None
) -> dict[str, Any]:
    return send_push_to_driver(db, driver_id, title, message, {"type": "message", **(data or {})})


def notify_driver_balance_dispute_resolved(
    db: Session,
    *,
    driver_id: int,
    load_id: int,
    load_number: str,
    resolution_type: str,
    new_balance: float | None = None,
    note: str | None = None,
) -> dict[str, Any]:
    if resolution_type == "balance_updated":
        body = f"Load {load_number}: balance updated to ${float(new_balance or 0):.2f}"
    elif resolution_type == "confirmed_zero":
        body = f"Load {load_number}: balance confirmed as $0"
    else:
        body = f"Load {load_number}: balance dispute cancelled"
    if note:
        body = f"{body}. {note}"
    return send_push_to_driver(
        db,
        driver_id,
        "Balance Dispute Resolved",
        body,
        {"type": "load_status_changed", "loadId": str(load_id), "resolutionType": resolution_type},
        channel_id="trips",
    )
