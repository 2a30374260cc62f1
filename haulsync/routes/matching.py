from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field
from sqlalchemy.orm import Session

from haulsync.core.errors import service_error
from haulsync.database import get_db
from haulsync.dependencies.auth import require_company_id, require_permission
from haulsync.services.matching import get_matching_settings, update_matching_settings, update_suggestion_status

router = APIRouter(prefix="/api/matching", tags=["matching"])


class MatchingSettingsUpdate(BaseModel):
    min_profit_per_mile: Optional[float] = None
    max_deadhead_miles: Optional[int] = None
    min_match_score: Optional[int] = None
    preferred_return_states: Optional[List[str]] = None
    excluded_states: Optional[List[str]] = None
    min_capacity_utilization_percent: Optional[int] = None
    max_capacity_utilization_percent: Optional[int] = None
    notification_preference: Optional[str] = None
    auto_post_capacity_enabled: Optional[bool] = None
    auto_post_min_capacity_cuft: Optional[int] = None
    default_location_sharing: Optional[bool] = None
    default_capacity_visibility: Optional[str] = None


class SuggestionUpdate(BaseModel):
    status: str = Field(min_length=1)


@router.get("/settings")
def read_settings(
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    return {"settings": get_matching_settings(db, company_id)}


@router.patch("/settings")
def patch_settings(
    payload: MatchingSettingsUpdate,
    _user=Depends(require_permission("can_manage_trips")),
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    result = update_matching_settings(db, company_id, payload.model_dump(exclude_unset=True))
    if not result["success"]:
        return service_error(result)
    return {"settings": result["settings"]}


@router.patch("/suggestions/{suggestion_id}")
def patch_suggestion(
    suggestion_id: int,
    payload: SuggestionUpdate,
    company_id: int = Depends(require_company_id),
    db: Session = Depends(get_db),
):
    result = update_suggestion_status(db, suggestion_id=suggestion_id, company_id=company_id, status=payload.status)
    if not result["success"]:
        return service_error(result)
    return {"suggestion": result["suggestion"]}
