"""Mobile driver actions. Every route is scoped to the calling driver's trips."""
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.errors import error_response, service_error
from haulsync.database import get_db
from haulsync.dependencies.auth import get_current_driver
from haulsync.models.fleet import Driver
from haulsync.models.trip import Trip
from haulsync.services import driver_workflow

router = APIRouter(prefix="/api/driver", tags=["driver"])


class StartLoadingIn(BaseModel):
    starting_cuft: Optional[float] = None


class FinishLoadingIn(BaseModel):
    ending_cuft: Optional[float] = None
    actual_cuft_loaded: Optional[float] = None


class PickupCompleteIn(BaseModel):
    actual_cuft_loaded: Optional[float] = None


class CompleteDeliveryIn(BaseModel):
    amount_collected: Optional[float] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class StorageCompleteIn(BaseModel):
    storage_location: Optional[str] = Field(default=None, max_length=255)


class StartTripIn(BaseModel):
    odometer_start: Optional[float] = None


class CompleteTripIn(BaseModel):
    odometer_end: Optional[float] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


def _respond(result: dict):
    if result.get("success"):
        return result
    if "reasons" in result:
        return error_response(result.get("status_code") or 400, result["error"], reasons=result["reasons"])
    return service_error(result)


# ── Loads ─────────────────────────────────────────────────────────────────────

@router.post("/loads/{load_id}/accept")
def accept_load(load_id: int, driver: Driver = Depends(get_current_driver), db: Session = Depends(get_db)):
    return _respond(driver_workflow.accept_load(db, driver=driver, load_id=load_id))


@router.post("/loads/{load_id}/start-loading")
def start_loading(
    load_id: int,
    payload: Optional[StartLoadingIn] = None,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    payload = payload or StartLoadingIn()
    return _respond(
        driver_workflow.start_loading(db, driver=driver, load_id=load_id, starting_cuft=payload.starting_cuft)
    )


@router.post("/loads/{load_id}/finish-loading")
def finish_loading(
    load_id: int,
    payload: Optional[FinishLoadingIn] = None,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    payload = payload or FinishLoadingIn()
    return _respond(
        driver_workflow.finish_loading(
            db,
            driver=driver,
            load_id=load_id,
            ending_cuft=payload.ending_cuft,
            actual_cuft_loaded=payload.actual_cuft_loaded,
        )
    )


@router.post("/loads/{load_id}/pickup-complete")
def pickup_complete(
    load_id: int,
    payload: PickupCompleteIn,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    return _respond(
        driver_workflow.pickup_complete(db, driver=driver, load_id=load_id, actual_cuft_loaded=payload.actual_cuft_loaded)
    )


@router.post("/loads/{load_id}/start-delivery")
def start_delivery(load_id: int, driver: Driver = Depends(get_current_driver), db: Session = Depends(get_db)):
    return _respond(driver_workflow.start_delivery(db, driver=driver, load_id=load_id))


@router.post("/loads/{load_id}/complete-delivery")
def complete_delivery(
    load_id: int,
    payload: Optional[CompleteDeliveryIn] = None,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    payload = payload or CompleteDeliveryIn()
    return _respond(
        driver_workflow.complete_delivery(
            db,
            driver=driver,
            load_id=load_id,
            amount_collected=payload.amount_collected,
            payment_method=payload.payment_method,
            notes=payload.notes,
        )
    )


@router.post("/loads/{load_id}/storage-complete")
def storage_complete(
    load_id: int,
    payload: Optional[StorageCompleteIn] = None,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    payload = payload or StorageCompleteIn()
    return _respond(
        driver_workflow.storage_complete(db, driver=driver, load_id=load_id, storage_location=payload.storage_location)
    )


# ── Trips ─────────────────────────────────────────────────────────────────────

@router.post("/trips/{trip_id}/start")
def start_trip(
    trip_id: int,
    payload: StartTripIn,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    return _respond(driver_workflow.start_trip(db, driver=driver, trip_id=trip_id, odometer_start=payload.odometer_start))


@router.get("/trips/{trip_id}/completion-check")
def completion_check(trip_id: int, driver: Driver = Depends(get_current_driver), db: Session = Depends(get_db)):
    trip = db.query(Trip).filter(Trip.id == trip_id, Trip.driver_id == driver.id).first()
    if not trip:
        return error_response(404, driver_workflow.TRIP_NOT_FOUND)
    return driver_workflow.check_trip_can_complete(db, trip)


@router.post("/trips/{trip_id}/complete")
def complete_trip(
    trip_id: int,
    payload: Optional[CompleteTripIn] = None,
    driver: Driver = Depends(get_current_driver),
    db: Session = Depends(get_db),
):
    payload = payload or CompleteTripIn()
    return _respond(
        driver_workflow.complete_trip(
            db, driver=driver, trip_id=trip_id, odometer_end=payload.odometer_end, notes=payload.notes
        )
    )
