from typing import Any, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.errors import service_error
from haulsync.database import get_db
from haulsync.dependencies.auth import require_company_id, require_permission
from haulsync.models.company import Profile
from haulsync.services.balance_disputes import list_disputes, resolve_dispute

router = APIRouter(prefix="/api/balance-disputes", tags=["balance-disputes"])


class ResolveDisputeIn(BaseModel):
    disputeId: Optional[int] = None
    resolutionType: Optional[str] = None
    newBalance: Optional[Any] = None
    note: Optional[str] = Field(default=None, max_length=2000)


@router.get("")
def disputes(
    status: str = "pending",
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return {"success": True, "disputes": list_disputes(db, company_id, status)}


@router.post("/resolve")
def resolve(
    payload: ResolveDisputeIn,
    user: Profile = Depends(require_permission("can_manage_loads")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    result = resolve_dispute(
        db,
        dispute_id=payload.disputeId,
        company_id=company_id,
        user_id=user.id,
        resolution_type=payload.resolutionType,
        new_balance=payload.newBalance,
        note=payload.note,
    )
    if not result["success"]:
        return service_error(result)
    return result
