from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from haulsync.core.errors import error_response
from haulsync.database import get_db
from haulsync.dependencies.auth import require_company_id, require_permission
from haulsync.models.fleet import Driver, Trailer, Truck
from haulsync.services.compliance import (
    SEVERITY_ORDER,
    check_trip_assignment_compliance,
    generate_compliance_alerts,
    list_open_alerts,
)

router = APIRouter(prefix="/api/compliance", tags=["compliance"])


@router.post("/alerts/generate")
def generate_alerts(
    _user=Depends(require_permission("can_manage_drivers", "can_manage_vehicles")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return {"success": True, **generate_compliance_alerts(db, company_id)}


@router.get("/alerts")
def open_alerts(
    severity: Optional[str] = None,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    if severity and severity not in SEVERITY_ORDER:
        return error_response(400, f"severity must be one of: {', '.join(SEVERITY_ORDER)}")
    return {"alerts": list_open_alerts(db, company_id, severity)}


@router.get("/trip-check")
def trip_check(
    driver_id: Optional[int] = None,
    truck_id: Optional[int] = None,
    trailer_id: Optional[int] = None,
    block_expired: bool = False,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    def owned(model, row_id):
        if row_id is None:
            return None
        return db.query(model).filter(model.id == row_id, model.company_id == company_id).first()

    driver = owned(Driver, driver_id)
    truck = owned(Truck, truck_id)
    trailer = owned(Trailer, trailer_id)
    missing = [
        label
        for label, row_id, row in (("Driver", driver_id, driver), ("Truck", truck_id, truck), ("Trailer", trailer_id, trailer))
        if row_id is not None and row is None
    ]
    if missing:
        return error_response(404, f"{missing[0]} not found")
    return check_trip_assignment_compliance(driver=driver, truck=truck, trailer=trailer, block_expired=block_expired)
