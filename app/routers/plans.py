"""Plan router for the calendar API."""
from fastapi import APIRouter, Depends, Path, Query, status
from datetime import date
from typing import Optional

from app.schemas.plan import (
    AlarmResponse,
    MonthlyPlansResponse,
    PlanCreate,
    PlanResponse,
    PlanUpdate,
    RecurrenceResponse,
)
from app.services.plan_service import MAX_YEAR, MIN_YEAR, PlanService
from app.middleware.auth import get_current_user, require_same_user, CurrentUser
from app.models.plan import Plan
from app.db.config import get_session
from sqlmodel import Session

router = APIRouter(tags=["Plans"])  # No prefix since main.py adds /api prefix


def get_plan_service(session: Session = Depends(get_session)) -> PlanService:
    """Dependency for getting PlanService instance."""
    return PlanService(session)


def to_plan_response(plan: Plan) -> PlanResponse:
    rule = plan.recurrence
    return PlanResponse(
        id=plan.id,
        user_id=plan.user_id,
        name=plan.name,
        content=plan.content,
        location=plan.location,
        start_date=plan.start_date,
        end_date=plan.end_date,
        start_time=plan.start_time,
        end_time=plan.end_time,
        is_recurring=plan.is_recurring,
        recurrence=RecurrenceResponse.model_validate(plan.recurring_info) if rule is not None else None,
        repeat_description=rule.describe() if rule is not None else None,
        alarms=[AlarmResponse.model_validate(alarm) for alarm in plan.alarms],
        version=plan.version,
        created_at=plan.created_at,
        updated_at=plan.updated_at,
    )


@router.get("/{user_id}/plans/{year}/{month}", response_model=MonthlyPlansResponse)
async def list_month_plans(
    user_id: str,
    year: int = Path(..., ge=MIN_YEAR, le=MAX_YEAR),
    month: int = Path(..., ge=1, le=12),
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
):
    """All occurrences of the user's plans in one month, recurring plans expanded."""
    require_same_user(user_id, current_user)
    occurrences = service.get_month_plans(user_id, year, month)
    return {"year": year, "month": month, "occurrences": occurrences}


@router.post("/{user_id}/plans", response_model=PlanResponse, status_code=status.HTTP_201_CREATED)
async def create_plan(
    user_id: str,
    plan_data: PlanCreate,
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
):
    """Create a single or recurring plan."""
    require_same_user(user_id, current_user)
    return to_plan_response(service.create_plan(user_id, plan_data))


@router.get("/{user_id}/plans/{plan_id}", response_model=PlanResponse)
async def get_plan(
    user_id: str,
    plan_id: int,
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
):
    require_same_user(user_id, current_user)
    return to_plan_response(service.get_plan(plan_id, user_id))


@router.put("/{user_id}/plans/{plan_id}", response_model=PlanResponse)
async def update_plan(
    user_id: str,
    plan_id: int,
    changes: PlanUpdate,
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
):
    """Partially update a plan; send ``version`` to reject stale writes."""
    require_same_user(user_id, current_user)
    return to_plan_response(service.update_plan(plan_id, user_id, changes))


@router.delete("/{user_id}/plans/{plan_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_plan(
    user_id: str,
    plan_id: int,
    version: Optional[int] = Query(None, ge=1),
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
):
    """Delete a plan and every occurrence of it."""
    require_same_user(user_id, current_user)
    service.delete_plan(plan_id, user_id, version)
    return None


@router.delete("/{user_id}/plans/{plan_id}/occurrences/{occurrence_date}", response_model=PlanResponse)
async def delete_occurrence(
    user_id: str,
    plan_id: int,
    occurrence_date: date,
    version: Optional[int] = Query(None, ge=1),
    current_user: CurrentUser = Depends(get_current_user),
    service: PlanService = Depends(get_plan_service),
):
    """Delete only the occurrence on ``occurrence_date`` of a recurring plan."""
    require_same_user(user_id, current_user)
    return to_plan_response(service.delete_occurrence(plan_id, user_id, occurrence_date, version))
