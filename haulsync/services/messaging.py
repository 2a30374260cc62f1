"""messaging.py

Conversations between companies, dispatch and drivers.

Access rules:
  1. A conversation is visible to its owner, partner and carrier companies,
     and to anyone holding a participant row with can_read.
  2. Posting needs can_write when the sender has a participant row; company
     staff without a row may post (the row is created on first open).
  3. Context rows are get-or-create: one load_internal per (load, company),
     one load_shared per load, one trip_internal per (trip, company), one
     company_to_company per company pair in either direction, one
     driver_dispatch per (driver, company). general is always new.
Message cursors (before/after) are message ids; ids increase with time.
Push fan-out is not part of send_message; the route schedules
notify_message_recipients_job to run after the response.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

import requests
from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from haulsync.database import session_scope
from haulsync.models.company import Company, Profile
from haulsync.models.fleet import Driver
from haulsync.models.load import Load
from haulsync.models.messaging import Conversation, ConversationParticipant, Message
from haulsync.models.trip import Trip
from haulsync.services.push_notifications import notify_driver_message, send_push_to_user

logger = logging.getLogger(__name__)

CONVERSATION_TYPES = (
    "load_shared",
    "load_internal",
    "trip_internal",
    "company_to_company",
    "driver_dispatch",
    "general",
)
PARTICIPANT_ROLES = ("owner", "dispatcher", "driver", "helper", "partner_rep", "broker", "ai_agent")
MESSAGE_TYPES = (
    "text",
    "system",
    "ai_response",
    "document",
    "image",
    "voice",
    "location",
    "balance_request",
    "status_update",
)

DEFAULT_MESSAGE_LIMIT = 50
MAX_MESSAGE_LIMIT = 100
PREVIEW_LENGTH = 100

REQUIRED_CONTEXT = {
    "load_internal": ("load_id", "load_id is required for load conversations"),
    "load_shared": ("load_id", "load_id is required for load conversations"),
    "trip_internal": ("trip_id", "trip_id is required for trip conversations"),
    "company_to_company": (
        "partner_company_id",
        "partner_company_id is required for company-to-company conversations",
    ),
    "driver_dispatch": ("driver_id", "driver_id is required for driver-dispatch conversations"),
}


class MessagingError(Exception):
    """Business-rule rejection carrying the HTTP status the route should use."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ── Access ────────────────────────────────────────────────────────────────────

def get_participant(db: Session, conversation_id: int, user_id: int) -> ConversationParticipant | None:
    return (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.conversation_id == conversation_id,
            ConversationParticipant.user_id == user_id,
        )
        .first()
    )


def can_access_conversation(db: Session, conversation: Conversation, *, user_id: int, company_id: int | None) -> bool:
    if company_id and company_id in (
        conversation.owner_company_id,
        conversation.partner_company_id,
        conversation.carrier_company_id,
    ):
        return True
    participant = get_participant(db, conversation.id, user_id)
    return bool(participant and participant.can_read)


def get_accessible_conversation(db: Session, conversation_id: int, *, user_id: int, company_id: int | None) -> Conversation:
    conversation = db.query(Conversation).filter(Conversation.id == conversation_id).first()
    if not conversation:
        raise MessagingError("Conversation not found", 404)
    if not can_access_conversation(db, conversation, user_id=user_id, company_id=company_id):
        raise MessagingError("You do not have access to this conversation", 403)
    return conversation


# ── Conversations ─────────────────────────────────────────────────────────────

def _display_title(conversation: Conversation, load: Load | None, trip: Trip | None, partner: Company | None) -> tuple[str, str]:
    title = conversation.title or ""
    load_number = load.load_number if load and load.load_number else "Load"
    if conversation.type == "load_shared":
        return title or f"Shared Chat - {load_number}", partner.name if partner else ""
    if conversation.type == "load_internal":
        subtitle = f"{load.pickup_city or ''} → {load.delivery_city or ''}" if load else ""
        return title or f"Internal - {load_number}", subtitle
    if conversation.type == "trip_internal":
        return title or f"Trip {trip.trip_number if trip and trip.trip_number else ''}".strip(), trip.status if trip else ""
    if conversation.type == "company_to_company":
        return title or (partner.name if partner else "Partner Chat"), "Company thread"
    if conversation.type == "driver_dispatch":
        return title or "Driver Chat", "Direct message"
    return title or "General Chat", ""


def serialize_conversation(conversation: Conversation) -> dict[str, Any]:
    return {
        "id": conversation.id,
        "type": conversation.type,
        "title": conversation.title,
        "owner_company_id": conversation.owner_company_id,
        "carrier_company_id": conversation.carrier_company_id,
        "partner_company_id": conversation.partner_company_id,
        "load_id": conversation.load_id,
        "trip_id": conversation.trip_id,
        "driver_id": conversation.driver_id,
        "is_archived": conversation.is_archived,
        "last_message_at": _iso(conversation.last_message_at),
        "last_message_preview": conversation.last_message_preview,
        "message_count": conversation.message_count,
        "created_at": _iso(conversation.created_at),
    }


def list_conversations(
    db: Session,
    *,
    user_id: int,
    company_id: int,
    type: str | None = None,
    load_id: int | None = None,
    trip_id: int | None = None,
    include_archived: bool = False,
    limit: int = DEFAULT_MESSAGE_LIMIT,
    offset: int = 0,
) -> list[dict[str, Any]]:
    participating = select(ConversationParticipant.conversation_id).where(
        ConversationParticipant.user_id == user_id,
        ConversationParticipant.can_read.is_(True),
    )
    query = db.query(Conversation).filter(
        or_(
            Conversation.owner_company_id == company_id,
            Conversation.partner_company_id == company_id,
            Conversation.carrier_company_id == company_id,
            Conversation.id.in_(participating),
        )
    )
    if type:
        query = query.filter(Conversation.type == type)
    if load_id:
        query = query.filter(Conversation.load_id == load_id)
    if trip_id:
        query = query.filter(Conversation.trip_id == trip_id)
    if not include_archived:
        query = query.filter(Conversation.is_archived.is_(False))

    conversations = (
        query.order_by(
            Conversation.last_message_at.is_(None),
            Conversation.last_message_at.desc(),
            Conversation.id.desc(),
        )
        .offset(max(offset, 0))
        .limit(max(limit, 1))
        .all()
    )
    if not conversations:
        return []

    ids = [conversation.id for conversation in conversations]
    participants = {
        row.conversation_id: row
        for row in db.query(ConversationParticipant).filter(
            ConversationParticipant.user_id == user_id,
            ConversationParticipant.conversation_id.in_(ids),
        )
    }

    items = []
    for conversation in conversations:
        load = db.get(Load, conversation.load_id) if conversation.load_id else None
        trip = db.get(Trip, conversation.trip_id) if conversation.trip_id else None
        other_id = conversation.partner_company_id
        if other_id == company_id:
            other_id = conversation.carrier_company_id if conversation.carrier_company_id != company_id else conversation.owner_company_id
        partner = db.get(Company, other_id) if other_id else None
        title, subtitle = _display_title(conversation, load, trip, partner)
        participant = participants.get(conversation.id)
        items.append({
            "id": conversation.id,
            "type": conversation.type,
            "title": title,
            "subtitle": subtitle,
            "last_message_preview": conversation.last_message_preview,
            "last_message_at": _iso(conversation.last_message_at),
            "unread_count": participant.unread_count if participant else 0,
            "is_muted": bool(participant and participant.is_muted),
            "context": {
                "load_id": load.id if load else None,
                "load_number": load.load_number if load else None,
                "trip_id": trip.id if trip else None,
                "trip_number": trip.trip_number if trip else None,
                "partner_name": partner.name if partner else None,
            },
        })
    return items


def validate_conversation_request(type: str, context: dict[str, Any]) -> str | None:
    if type not in CONVERSATION_TYPES:
        return "Invalid conversation type"
    required = REQUIRED_CONTEXT.get(type)
    if required and not context.get(required[0]):
        return required[1]
    return None


def ensure_participant(
    db: Session,
    conversation: Conversation,
    *,
    user_id: int | None = None,
    driver_id: int | None = None,
    company_id: int | None = None,
    role: str = "dispatcher",
) -> ConversationParticipant:
    query = db.query(ConversationParticipant).filter(ConversationParticipant.conversation_id == conversation.id)
    if user_id is not None:
        existing = query.filter(ConversationParticipant.user_id == user_id).first()
    else:
        existing = query.filter(ConversationParticipant.driver_id == driver_id).first()
    if existing:
        if driver_id and not existing.driver_id:
            existing.driver_id = driver_id
        return existing

    participant = ConversationParticipant(
        conversation_id=conversation.id,
        user_id=user_id,
        driver_id=driver_id,
        company_id=company_id,
        role=role if role in PARTICIPANT_ROLES else "dispatcher",
        can_read=True,
        can_write=True,
    )
    db.add(participant)
    db.flush()
    return participant


def _add_driver(db: Session, conversation: Conversation, driver_id: int | None, company_id: int) -> None:
    if not driver_id:
        return
    driver = db.get(Driver, driver_id)
    if not driver:
        return
    ensure_participant(db, conversation, user_id=driver.user_id, driver_id=driver.id, company_id=company_id, role="driver")


def _load_conversation(db: Session, type: str, load_id: int, company_id: int, partner_company_id: int | None, user_id: int) -> Conversation:
    load = db.get(Load, load_id)
    if not load or company_id not in (load.company_id, load.posted_by_company_id, load.assigned_carrier_id):
        raise MessagingError("Load not found", 404)

    query = db.query(Conversation).filter(Conversation.load_id == load_id, Conversation.type == type)
    if type == "load_internal":
        query = query.filter(Conversation.owner_company_id == company_id)
    existing = query.order_by(Conversation.id.asc()).first()
    if existing:
        return existing

    if type == "load_internal":
        conversation = Conversation(type=type, owner_company_id=company_id, load_id=load_id, created_by_user_id=user_id)
    else:
        conversation = Conversation(
            type=type,
            owner_company_id=load.posted_by_company_id or load.company_id,
            load_id=load_id,
            carrier_company_id=load.assigned_carrier_id,
            partner_company_id=partner_company_id or load.assigned_carrier_id,
            created_by_user_id=user_id,
        )
    db.add(conversation)
    db.flush()
    return conversation


def _trip_conversation(db: Session, trip_id: int, company_id: int, user_id: int) -> Conversation:
    trip = db.query(Trip).filter(Trip.id == trip_id, Trip.company_id == company_id).first()
    if not trip:
        raise MessagingError("Trip not found", 404)

    conversation = (
        db.query(Conversation)
        .filter(
            Conversation.type == "trip_internal",
            Conversation.trip_id == trip_id,
            Conversation.owner_company_id == company_id,
        )
        .first()
    )
    if conversation is None:
        conversation = Conversation(type="trip_internal", owner_company_id=company_id, trip_id=trip_id, created_by_user_id=user_id)
        db.add(conversation)
        db.flush()
    # The driver may have been assigned after the conversation was opened
    _add_driver(db, conversation, trip.driver_id, company_id)
    return conversation


def _company_conversation(db: Session, company_id: int, other_company_id: int, user_id: int) -> Conversation:
    if other_company_id == company_id:
        raise MessagingError("Cannot start a company conversation with your own company")
    if not db.get(Company, other_company_id):
        raise MessagingError("Company not found", 404)

    existing = (
        db.query(Conversation)
        .filter(
            Conversation.type == "company_to_company",
            or_(
                and_(Conversation.carrier_company_id == company_id, Conversation.partner_company_id == other_company_id),
                and_(Conversation.carrier_company_id == other_company_id, Conversation.partner_company_id == company_id),
            ),
        )
        .first()
    )
    if existing:
        return existing

    conversation = Conversation(
        type="company_to_company",
        owner_company_id=company_id,
        carrier_company_id=company_id,
        partner_company_id=other_company_id,
        created_by_user_id=user_id,
    )
    db.add(conversation)
    db.flush()
    return conversation


def _driver_conversation(db: Session, driver_id: int, company_id: int, user_id: int) -> Conversation:
    driver = db.query(Driver).filter(Driver.id == driver_id, Driver.company_id == company_id).first()
    if not driver:
        raise MessagingError("Driver not found", 404)

    existing = (
        db.query(Conversation)
        .filter(
            Conversation.type == "driver_dispatch",
            Conversation.driver_id == driver_id,
            Conversation.owner_company_id == company_id,
        )
        .order_by(Conversation.last_message_at.is_(None), Conversation.last_message_at.desc(), Conversation.id.desc())
        .first()
    )
    if existing:
        return existing

    conversation = Conversation(
        type="driver_dispatch",
        owner_company_id=company_id,
        driver_id=driver_id,
        title=f"{driver.full_name or 'Driver'} - Dispatch",
        created_by_user_id=user_id,
    )
    db.add(conversation)
    db.flush()
    _add_driver(db, conversation, driver.id, company_id)
    return conversation


def get_or_create_conversation(
    db: Session,
    *,
    type: str,
    user_id: int,
    company_id: int,
    member_role: str | None = None,
    load_id: int | None = None,
    trip_id: int | None = None,
    driver_id: int | None = None,
    partner_company_id: int | None = None,
    title: str | None = None,
) -> dict[str, Any]:
    error = validate_conversation_request(
        type,
        {"load_id": load_id, "trip_id": trip_id, "driver_id": driver_id, "partner_company_id": partner_company_id},
    )
    if error:
        raise MessagingError(error)

    if type in ("load_internal", "load_shared"):
        conversation = _load_conversation(db, type, load_id, company_id, partner_company_id, user_id)
    elif type == "trip_internal":
        conversation = _trip_conversation(db, trip_id, company_id, user_id)
    elif type == "company_to_company":
        conversation = _company_conversation(db, company_id, partner_company_id, user_id)
    elif type == "driver_dispatch":
        conversation = _driver_conversation(db, driver_id, company_id, user_id)
    else:
        conversation = Conversation(type="general", owner_company_id=company_id, title=title, created_by_user_id=user_id)
        db.add(conversation)
        db.flush()

    ensure_participant(db, conversation, user_id=user_id, company_id=company_id, role=member_role or "dispatcher")
    db.commit()
    db.refresh(conversation)
    return serialize_conversation(conversation)


# ── Messages ──────────────────────────────────────────────────────────────────

def _sender_names(db: Session, messages: list[Message]) -> tuple[dict[int, str], dict[int, str], dict[int, str]]:
    user_ids = {m.sender_user_id for m in messages if m.sender_user_id}
    driver_ids = {m.sender_driver_id for m in messages if m.sender_driver_id}
    company_ids = {m.sender_company_id for m in messages if m.sender_company_id}

    users = {p.id: p.full_name or p.email for p in db.query(Profile).filter(Profile.id.in_(user_ids))} if user_ids else {}
    drivers = {d.id: d.full_name for d in db.query(Driver).filter(Driver.id.in_(driver_ids))} if driver_ids else {}
    companies = {c.id: c.name for c in db.query(Company).filter(Company.id.in_(company_ids))} if company_ids else {}
    return users, drivers, companies


def serialize_message(message: Message, sender_name: str | None = None, company_name: str | None = None) -> dict[str, Any]:
    return {
        "id": message.id,
        "conversation_id": message.conversation_id,
        "sender_user_id": message.sender_user_id,
        "sender_driver_id": message.sender_driver_id,
        "sender_company_id": message.sender_company_id,
        "sender_name": sender_name,
        "sender_company_name": company_name,
        "message_type": message.message_type,
        "body": message.body,
        "attachments": message.attachments or [],
        "metadata": message.message_metadata or {},
        "reply_to_message_id": message.reply_to_message_id,
        "is_edited": message.is_edited,
        "created_at": _iso(message.created_at),
    }


def clamp_limit(raw: int | None) -> int:
    if not raw or raw < 1:
        return DEFAULT_MESSAGE_LIMIT
    return min(raw, MAX_MESSAGE_LIMIT)


def list_messages(
    db: Session,
    conversation: Conversation,
    *,
    limit: int | None = None,
    before: int | None = None,
    after: int | None = None,
) -> dict[str, Any]:
    limit = clamp_limit(limit)
    query = db.query(Message).filter(Message.conversation_id == conversation.id, Message.is_deleted.is_(False))
    if before:
        query = query.filter(Message.id < before)
    if after:
        query = query.filter(Message.id > after)

    rows = query.order_by(Message.id.desc()).limit(limit + 1).all()
    has_more = len(rows) > limit
    rows = list(reversed(rows[:limit]))

    users, drivers, companies = _sender_names(db, rows)
    messages = [
        serialize_message(
            row,
            sender_name=users.get(row.sender_user_id) or drivers.get(row.sender_driver_id),
            company_name=companies.get(row.sender_company_id),
        )
        for row in rows
    ]
    return {"messages": messages, "hasMore": has_more, "conversation": serialize_conversation(conversation)}


def send_message(
    db: Session,
    conversation: Conversation,
    *,
    sender: Profile,
    company_id: int | None,
    body: str,
    message_type: str = "text",
    attachments: list[dict[str, Any]] | None = None,
    metadata: dict[str, Any] | None = None,
    reply_to_message_id: int | None = None,
) -> dict[str, Any]:
    participant = get_participant(db, conversation.id, sender.id)
    if participant and not participant.can_write:
        raise MessagingError("You do not have permission to send messages in this conversation", 403)
    if message_type not in MESSAGE_TYPES:
        raise MessagingError(f"message_type must be one of: {', '.join(MESSAGE_TYPES)}")

    driver = db.query(Driver).filter(Driver.user_id == sender.id).first()
    message = Message(
        conversation_id=conversation.id,
        sender_user_id=sender.id,
        sender_driver_id=participant.driver_id if participant and participant.driver_id else (driver.id if driver else None),
        sender_company_id=company_id or (participant.company_id if participant else None),
        message_type=message_type,
        body=body,
        attachments=attachments or [],
        message_metadata=metadata or {},
        reply_to_message_id=reply_to_message_id,
    )
    db.add(message)

    conversation.last_message_at = _now()
    conversation.last_message_preview = body[:PREVIEW_LENGTH]
    conversation.message_count = (conversation.message_count or 0) + 1

    db.query(ConversationParticipant).filter(
        ConversationParticipant.conversation_id == conversation.id,
        or_(ConversationParticipant.user_id.is_(None), ConversationParticipant.user_id != sender.id),
    ).update(
        {ConversationParticipant.unread_count: ConversationParticipant.unread_count + 1},
        synchronize_session=False,
    )
    db.commit()
    db.refresh(message)
    return serialize_message(message, sender_name=sender.full_name or sender.email)


def mark_conversation_read(db: Session, conversation: Conversation, *, user_id: int) -> bool:
    participant = get_participant(db, conversation.id, user_id)
    if not participant:
        return False
    participant.unread_count = 0
    participant.last_read_at = _now()
    db.commit()
    return True


def unread_count(db: Session, *, user_id: int) -> int:
    total = (
        db.query(func.coalesce(func.sum(ConversationParticipant.unread_count), 0))
        .join(Conversation, Conversation.id == ConversationParticipant.conversation_id)
        .filter(ConversationParticipant.user_id == user_id, Conversation.is_archived.is_(False))
        .scalar()
    )
    return int(total or 0)


# ── Push fan-out ──────────────────────────────────────────────────────────────

def message_notification_content(conversation: Conversation, load: Load | None, sender_name: str | None, body: str) -> tuple[str, str]:
    title = conversation.title or (f"Load {load.load_number}" if load and load.load_number else "New Message")
    preview = body[:PREVIEW_LENGTH] + "..." if len(body) > PREVIEW_LENGTH else body
    return title, f"{sender_name}: {preview}" if sender_name else preview


def notify_message_recipients(db: Session, conversation: Conversation, *, sender: Profile, body: str) -> int:
    """Push to every reachable participant except the sender. Returns the number of recipients attempted."""
    recipients = (
        db.query(ConversationParticipant)
        .filter(
            ConversationParticipant.conversation_id == conversation.id,
            ConversationParticipant.can_read.is_(True),
            ConversationParticipant.notifications_enabled.is_(True),
            ConversationParticipant.is_muted.is_(False),
        )
        .all()
    )
    load = db.get(Load, conversation.load_id) if conversation.load_id else None
    title, text = message_notification_content(conversation, load, sender.full_name, body)
    data = {"type": "message", "conversation_id": str(conversation.id)}
    if conversation.load_id:
        data["load_id"] = str(conversation.load_id)

    attempted = 0
    for participant in recipients:
        if participant.user_id == sender.id:
            continue
        try:
            if participant.user_id:
                send_push_to_user(db, participant.user_id, title, text, data)
            elif participant.driver_id:
                notify_driver_message(db, driver_id=participant.driver_id, title=title, message=text, data=data)
            else:
                continue
            attempted += 1
        except (requests.RequestException, SQLAlchemyError) as exc:
            logger.warning("push: message fan-out failed conversation=%s participant=%s: %s", conversation.id, participant.id, exc)
    return attempted


def notify_message_recipients_job(conversation_id: int, sender_id: int, body: str) -> None:
    """Background entry point: runs after the response with its own session."""
    with session_scope() as db:
        conversation = db.get(Conversation, conversation_id)
        sender = db.get(Profile, sender_id)
        if conversation is None or sender is None:
            logger.info("push: message fan-out skipped conversation=%s sender=%s", conversation_id, sender_id)
            return
        notify_message_recipients(db, conversation, sender=sender, body=body)
