from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.errors import error_response, service_error
from haulsync.database import get_db
from haulsync.dependencies.auth import get_current_user, get_primary_membership, require_company_id, require_permission
from haulsync.models.company import Profile
from haulsync.models.fleet import Driver
from haulsync.models.load import Load
from haulsync.services import loads as load_service
from haulsync.services.driver_workflow import load_for_driver
from haulsync.services.load_financials import delivery_check_for_load
from haulsync.services.rfd_urgency import URGENCY_LEVELS, company_rfd_overview

router = APIRouter(prefix="/api/loads", tags=["loads"])

POSTING_PERMISSIONS = ("can_post_loads", "can_post_pickups")


class LoadIn(BaseModel):
    load_number: Optional[str] = Field(default=None, max_length=40)
    posting_type: Optional[str] = None
    load_subtype: Optional[str] = None
    description: Optional[str] = Field(default=None, max_length=5000)
    pickup_city: Optional[str] = Field(default=None, max_length=120)
    pickup_state: Optional[str] = None
    pickup_zip: Optional[str] = Field(default=None, max_length=10)
    delivery_city: Optional[str] = Field(default=None, max_length=120)
    delivery_state: Optional[str] = None
    delivery_zip: Optional[str] = Field(default=None, max_length=10)
    pickup_date: Optional[date] = None
    delivery_date: Optional[date] = None
    cubic_feet: Optional[float] = None
    rate_per_cuft: Optional[Any] = None
    total_rate: Optional[Any] = None
    balance_due: Optional[Any] = None
    is_open_to_counter: Optional[bool] = None
    rfd_date: Optional[date] = None
    rfd_date_tbd: Optional[bool] = None


class LoadStatusIn(BaseModel):
    status: Optional[str] = None


def _can_view_load(db: Session, user: Profile, load: Load) -> bool:
    membership = get_primary_membership(db, user)
    if membership and membership.company_id in (load.company_id, load.assigned_carrier_id):
        return True
    driver = db.query(Driver).filter(Driver.user_id == user.id).first()
    return driver is not None and load_for_driver(db, load.id, driver) is not None


def _result(result: dict):
    if not result["success"]:
        return service_error(result)
    return result


@router.post("")
def create_load(
    payload: LoadIn,
    _user=Depends(require_permission("can_manage_loads", *POSTING_PERMISSIONS)),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return _result(load_service.create_load(db, company_id, payload.model_dump(exclude_unset=True)))


@router.get("/rfd-urgency")
def rfd_urgency(
    levels: Optional[str] = None,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    wanted = [level.strip() for level in (levels or "").split(",") if level.strip()]
    unknown = [level for level in wanted if level not in URGENCY_LEVELS]
    if unknown:
        return error_response(400, f"Unknown urgency level: {', '.join(unknown)}")
    return company_rfd_overview(db, company_id, levels=wanted or None)


@router.post("/{load_id}/marketplace")
def post_to_marketplace(
    load_id: int,
    user: Profile = Depends(require_permission(*POSTING_PERMISSIONS)),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    load = load_service.company_load(db, company_id, load_id)
    if not load:
        return error_response(404, "Load not found")
    return _result(load_service.set_marketplace_posting(db, load, user, posted=True))


@router.delete("/{load_id}/marketplace")
def remove_from_marketplace(
    load_id: int,
    user: Profile = Depends(require_permission(*POSTING_PERMISSIONS)),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    load = load_service.company_load(db, company_id, load_id)
    if not load:
        return error_response(404, "Load not found")
    return _result(load_service.set_marketplace_posting(db, load, user, posted=False))


@router.patch("/{load_id}/status")
def update_load_status(
    load_id: int,
    payload: LoadStatusIn,
    user: Profile = Depends(require_permission("can_manage_loads")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    load = load_service.company_load(db, company_id, load_id)
    if not load:
        return error_response(404, "Load not found")
    return _result(load_service.update_load_status(db, load, payload.status, actor_name=user.full_name))


@router.get("/{load_id}/delivery-check")
def delivery_check(
    load_id: int,
    user: Profile = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    load = db.query(Load).filter(Load.id == load_id).first()
    if not load or not _can_view_load(db, user, load):
        return error_response(404, "Load not found")
    return delivery_check_for_load(db, load)
