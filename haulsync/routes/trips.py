import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import Response
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.errors import error_response, service_error
from haulsync.database import get_db
from haulsync.dependencies.auth import require_company_id, require_permission
from haulsync.models.company import Company, Profile
from haulsync.models.trip import Trip
from haulsync.services import trips as trip_service
from haulsync.services.matching import find_matches_for_trip, list_trip_suggestions, save_suggestions
from haulsync.services.settlement_export import settlement_csv, settlement_filename, settlement_pdf
from haulsync.services.settlements import build_settlement_preview, calculate_trip_totals
from haulsync.services.suggestions import find_trip_suggestions, parse_max_cuft, parse_max_detour

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/trips", tags=["trips"])

FINANCIAL_PERMISSIONS = ("can_view_financials", "can_manage_settlements")


class TripIn(BaseModel):
    trip_number: Optional[str] = Field(default=None, max_length=40)
    status: Optional[str] = None
    driver_id: Optional[int] = None
    truck_id: Optional[int] = None
    trailer_id: Optional[int] = None
    origin_city: Optional[str] = Field(default=None, max_length=120)
    origin_state: Optional[str] = None
    origin_zip: Optional[str] = Field(default=None, max_length=10)
    destination_city: Optional[str] = Field(default=None, max_length=120)
    destination_state: Optional[str] = None
    destination_zip: Optional[str] = Field(default=None, max_length=10)
    return_state: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    odometer_start: Optional[float] = None
    odometer_end: Optional[float] = None
    notes: Optional[str] = Field(default=None, max_length=5000)


class TripDriverIn(BaseModel):
    driver_id: Optional[int] = None
    truck_id: Optional[int] = None
    trailer_id: Optional[int] = None


class TripLoadIn(BaseModel):
    load_id: int
    sequence_index: Optional[int] = None


class LoadOrderItem(BaseModel):
    load_id: int
    sequence_index: int


class ReorderIn(BaseModel):
    loads: list[LoadOrderItem]


class ExpenseIn(BaseModel):
    category: Optional[str] = None
    amount: Optional[float] = None
    description: Optional[str] = Field(default=None, max_length=2000)
    expense_type: Optional[str] = Field(default=None, max_length=60)
    paid_by: Optional[str] = None
    incurred_on: Optional[date] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


def _company_trip(db: Session, trip_id: int, company_id: int) -> Trip | None:
    return db.query(Trip).filter(Trip.id == trip_id, Trip.company_id == company_id).first()


def _result(result: dict):
    if not result["success"]:
        return service_error(result)
    return result


# ── Trip records ──────────────────────────────────────────────────────────────

@router.get("")
def list_company_trips(
    status: Optional[str] = None,
    driver_id: Optional[int] = None,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return {"trips": trip_service.list_trips(db, company_id, status=status, driver_id=driver_id)}


@router.post("")
def create_trip(
    payload: TripIn,
    user: Profile = Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return _result(
        trip_service.create_trip(db, company_id, payload.model_dump(exclude_unset=True), actor_name=user.full_name)
    )


@router.get("/{trip_id}")
def trip_detail(
    trip_id: int,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return trip_service.get_trip_detail(db, trip)


@router.patch("/{trip_id}")
def update_trip(
    trip_id: int,
    payload: TripIn,
    user: Profile = Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return _result(
        trip_service.update_trip(db, trip, payload.model_dump(exclude_unset=True), actor_name=user.full_name)
    )


@router.put("/{trip_id}/driver")
def assign_trip_driver(
    trip_id: int,
    payload: TripDriverIn,
    user: Profile = Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return _result(
        trip_service.update_trip(db, trip, payload.model_dump(exclude_unset=True), actor_name=user.full_name)
    )


@router.delete("/{trip_id}")
def delete_trip(
    trip_id: int,
    _user=Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return trip_service.delete_trip(db, trip)


# ── Loads on a trip ───────────────────────────────────────────────────────────

@router.post("/{trip_id}/loads")
def add_trip_load(
    trip_id: int,
    payload: TripLoadIn,
    user: Profile = Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return _result(
        trip_service.add_load_to_trip(
            db, trip, load_id=payload.load_id, sequence_index=payload.sequence_index, actor_name=user.full_name
        )
    )


@router.put("/{trip_id}/loads/order")
def reorder_trip_loads(
    trip_id: int,
    payload: ReorderIn,
    _user=Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return _result(trip_service.reorder_trip_loads(db, trip, [item.model_dump() for item in payload.loads]))


@router.delete("/{trip_id}/loads/{load_id}")
def remove_trip_load(
    trip_id: int,
    load_id: int,
    _user=Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return _result(trip_service.remove_load_from_trip(db, trip, load_id=load_id))


# ── Expenses ──────────────────────────────────────────────────────────────────

@router.post("/{trip_id}/expenses")
def add_trip_expense(
    trip_id: int,
    payload: ExpenseIn,
    _user=Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return _result(trip_service.create_trip_expense(db, trip, payload.model_dump(exclude_unset=True)))


@router.patch("/{trip_id}/expenses/{expense_id}")
def update_trip_expense(
    trip_id: int,
    expense_id: int,
    payload: ExpenseIn,
    _user=Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return _result(trip_service.update_trip_expense(db, trip, expense_id, payload.model_dump(exclude_unset=True)))


@router.delete("/{trip_id}/expenses/{expense_id}")
def delete_trip_expense(
    trip_id: int,
    expense_id: int,
    _user=Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return _result(trip_service.delete_trip_expense(db, trip, expense_id))


# ── Suggestions and settlement ────────────────────────────────────────────────

@router.get("/{trip_id}/suggestions")
def trip_suggestions(
    trip_id: int,
    maxDetour: Optional[str] = None,
    maxCuft: Optional[str] = None,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return find_trip_suggestions(
        db,
        trip=trip,
        company_id=company_id,
        max_detour=parse_max_detour(maxDetour),
        max_cuft=parse_max_cuft(maxCuft),
    )


@router.post("/{trip_id}/matches/refresh")
def refresh_matches(
    trip_id: int,
    _user=Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    matches = find_matches_for_trip(db, trip=trip, company_id=company_id)
    saved = save_suggestions(db, trip_id=trip.id, company_id=company_id, matches=matches)
    return {"success": True, "matchCount": saved, "suggestions": list_trip_suggestions(db, trip.id)}


@router.get("/{trip_id}/matches")
def list_matches(
    trip_id: int,
    include_dismissed: bool = False,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return {"suggestions": list_trip_suggestions(db, trip.id, include_dismissed=include_dismissed)}


@router.get("/{trip_id}/settlement-preview")
def settlement_preview(
    trip_id: int,
    _user=Depends(require_permission(*FINANCIAL_PERMISSIONS)),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    preview = build_settlement_preview(db, trip)
    if not preview.get("success"):
        return service_error(preview)
    return preview


@router.get("/{trip_id}/financials")
def trip_financials(
    trip_id: int,
    _user=Depends(require_permission(*FINANCIAL_PERMISSIONS)),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return error_response(404, "Trip not found")
    return calculate_trip_totals(db, trip)


def _export_preview(db: Session, trip_id: int, company_id: int):
    trip = _company_trip(db, trip_id, company_id)
    if not trip:
        return None, error_response(404, "Trip not found")
    preview = build_settlement_preview(db, trip)
    if not preview.get("success"):
        return None, service_error(preview)
    return preview, None


@router.get("/{trip_id}/settlement.csv")
def settlement_csv_export(
    trip_id: int,
    _user=Depends(require_permission(*FINANCIAL_PERMISSIONS)),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    preview, error = _export_preview(db, trip_id, company_id)
    if error is not None:
        return error
    return Response(
        content=settlement_csv(preview),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{settlement_filename(preview, "csv")}"'},
    )


@router.get("/{trip_id}/settlement.pdf")
def settlement_pdf_export(
    trip_id: int,
    _user=Depends(require_permission(*FINANCIAL_PERMISSIONS)),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    preview, error = _export_preview(db, trip_id, company_id)
    if error is not None:
        return error
    company = db.query(Company).filter(Company.id == company_id).first()
    return Response(
        content=settlement_pdf(preview, company.name if company else None),
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{settlement_filename(preview, "pdf")}"'},
    )
