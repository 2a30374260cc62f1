import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.errors import error_response
from haulsync.database import get_db
from haulsync.dependencies.auth import get_current_user, get_primary_membership
from haulsync.models.company import Profile
from haulsync.services import messaging

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messaging", tags=["messaging"])


class ConversationCreate(BaseModel):
    type: str
    load_id: Optional[int] = None
    trip_id: Optional[int] = None
    driver_id: Optional[int] = None
    partner_company_id: Optional[int] = None
    title: Optional[str] = Field(default=None, max_length=255)


class MessageCreate(BaseModel):
    conversation_id: int
    body: str = Field(min_length=1, max_length=10000)
    message_type: str = "text"
    attachments: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None
    reply_to_message_id: Optional[int] = None


def _membership(db: Session, user: Profile):
    return get_primary_membership(db, user)


@router.get("/conversations")
def list_conversations(
    type: Optional[str] = None,
    load_id: Optional[int] = None,
    trip_id: Optional[int] = None,
    include_archived: bool = False,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    membership = _membership(db, user)
    if not membership:
        return error_response(400, "No company found")
    conversations = messaging.list_conversations(
        db,
        user_id=user.id,
        company_id=membership.company_id,
        type=type,
        load_id=load_id,
        trip_id=trip_id,
        include_archived=include_archived,
        limit=limit,
        offset=offset,
    )
    return {"conversations": conversations}


@router.post("/conversations")
def create_conversation(
    payload: ConversationCreate,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    membership = _membership(db, user)
    if not membership:
        return error_response(400, "No company found")
    try:
        conversation = messaging.get_or_create_conversation(
            db,
            type=payload.type,
            user_id=user.id,
            company_id=membership.company_id,
            member_role=membership.role if membership.role in messaging.PARTICIPANT_ROLES else None,
            load_id=payload.load_id,
            trip_id=payload.trip_id,
            driver_id=payload.driver_id,
            partner_company_id=payload.partner_company_id,
            title=payload.title,
        )
    except messaging.MessagingError as exc:
        return error_response(exc.status_code, exc.message)
    return {"conversation": conversation}


@router.post("/conversations/{conversation_id}/read")
def mark_read(
    conversation_id: int,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    membership = _membership(db, user)
    try:
        conversation = messaging.get_accessible_conversation(
            db, conversation_id, user_id=user.id, company_id=membership.company_id if membership else None
        )
    except messaging.MessagingError as exc:
        return error_response(exc.status_code, exc.message)
    messaging.mark_conversation_read(db, conversation, user_id=user.id)
    return {"success": True}


@router.get("/unread-count")
def unread_count(
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return {"unreadCount": messaging.unread_count(db, user_id=user.id)}


@router.get("/messages")
def list_messages(
    conversation_id: Optional[int] = None,
    limit: Optional[int] = None,
    before: Optional[int] = None,
    after: Optional[int] = None,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not conversation_id:
        return error_response(400, "conversation_id is required")
    membership = _membership(db, user)
    try:
        conversation = messaging.get_accessible_conversation(
            db, conversation_id, user_id=user.id, company_id=membership.company_id if membership else None
        )
    except messaging.MessagingError as exc:
        return error_response(exc.status_code, exc.message)
    return messaging.list_messages(db, conversation, limit=limit, before=before, after=after)


@router.post("/messages")
def send_message(
    payload: MessageCreate,
    background_tasks: BackgroundTasks,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    membership = _membership(db, user)
    company_id = membership.company_id if membership else None
    try:
        conversation = messaging.get_accessible_conversation(
            db, payload.conversation_id, user_id=user.id, company_id=company_id
        )
        message = messaging.send_message(
            db,
            conversation,
            sender=user,
            company_id=company_id,
            body=payload.body,
            message_type=payload.message_type,
            attachments=payload.attachments,
            metadata=payload.metadata,
            reply_to_message_id=payload.reply_to_message_id,
        )
    except messaging.MessagingError as exc:
        return error_response(exc.status_code, exc.message)
    background_tasks.add_task(messaging.notify_message_recipients_job, conversation.id, user.id, payload.body)
    return {"message": message}
