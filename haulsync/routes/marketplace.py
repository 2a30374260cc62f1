from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.errors import error_response, service_error
from haulsync.database import get_db
from haulsync.dependencies.auth import get_current_user, require_company_id, require_permission
from haulsync.models.company import Profile
from haulsync.models.trip import Trip
from haulsync.services import marketplace
from haulsync.services.loads import company_load
from haulsync.services.trips import add_load_to_trip

router = APIRouter(prefix="/api/marketplace", tags=["marketplace"])


class LoadRequestIn(BaseModel):
    request_type: Optional[str] = None
    offered_rate: Optional[Any] = None
    offered_rate_type: Optional[str] = None
    message: Optional[str] = Field(default=None, max_length=2000)
    proposed_load_date_start: Optional[date] = None
    proposed_load_date_end: Optional[date] = None
    proposed_delivery_date_start: Optional[date] = None
    proposed_delivery_date_end: Optional[date] = None


class RequestResponseIn(BaseModel):
    message: Optional[str] = Field(default=None, max_length=2000)


class AssignTripIn(BaseModel):
    trip_id: int


def _result(result: dict):
    if not result["success"]:
        return service_error(result)
    return result


@router.get("/loads")
def marketplace_loads(
    origin_state: Optional[str] = None,
    destination_state: Optional[str] = None,
    min_cuft: Optional[float] = None,
    max_cuft: Optional[float] = None,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return {
        "loads": marketplace.list_marketplace_loads(
            db,
            company_id,
            origin_state=origin_state,
            destination_state=destination_state,
            min_cuft=min_cuft,
            max_cuft=max_cuft,
        )
    }


@router.post("/loads/{load_id}/requests")
def request_load(
    load_id: int,
    payload: LoadRequestIn,
    user: Profile = Depends(get_current_user),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return _result(
        marketplace.create_load_request(
            db, load_id=load_id, carrier_id=company_id, user_id=user.id, data=payload.model_dump(exclude_unset=True)
        )
    )


@router.get("/loads/{load_id}/requests")
def load_requests(
    load_id: int,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    load = company_load(db, company_id, load_id)
    if not load:
        return error_response(404, "Load not found")
    return {"requests": marketplace.list_requests_for_load(db, load)}


@router.get("/requests/mine")
def my_requests(
    status: Optional[str] = None,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return {"requests": marketplace.list_requests_for_carrier(db, company_id, status)}


@router.post("/requests/{request_id}/accept")
def accept_request(
    request_id: int,
    payload: RequestResponseIn,
    user: Profile = Depends(require_permission("can_manage_carrier_requests")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return _result(
        marketplace.accept_load_request(
            db, request_id=request_id, company_id=company_id, user_id=user.id, message=payload.message
        )
    )


@router.post("/requests/{request_id}/decline")
def decline_request(
    request_id: int,
    payload: RequestResponseIn,
    user: Profile = Depends(require_permission("can_manage_carrier_requests")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return _result(
        marketplace.decline_load_request(
            db, request_id=request_id, company_id=company_id, user_id=user.id, message=payload.message
        )
    )


@router.post("/requests/{request_id}/withdraw")
def withdraw_request(
    request_id: int,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return _result(marketplace.withdraw_load_request(db, request_id=request_id, carrier_id=company_id))


@router.post("/loads/{load_id}/assign-trip")
def assign_to_trip(
    load_id: int,
    payload: AssignTripIn,
    user: Profile = Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    """Put a load won on the marketplace onto one of the carrier's trips."""
    trip = db.query(Trip).filter(Trip.id == payload.trip_id, Trip.company_id == company_id).first()
    if not trip:
        return error_response(404, "Trip not found")
    return _result(add_load_to_trip(db, trip, load_id=load_id, actor_name=user.full_name))
