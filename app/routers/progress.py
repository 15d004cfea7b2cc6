"""Progress router - API endpoints for recording and reading goal progress."""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.database import get_goal_store, get_ledger_store
from app.exceptions import ProgressError
from app.models.goal import Milestone
from app.models.progress import (
    AnalyticsPeriod,
    ContributorSummary,
    EtaEstimate,
    ProgressAnalytics,
    ProgressHistoryPoint,
    ProgressLogEntry,
    ProgressRequest,
    ProgressResult,
    ProgressSnapshot,
)
from app.routers.auth import get_current_user_id
from app.routers.errors import to_http_exception
from app.services.event_publisher import get_event_publisher
from app.services.progress_service import ProgressService


router = APIRouter(prefix="/goals/{goal_id}", tags=["progress"])


async def get_progress_service(
    goals=Depends(get_goal_store),
    ledger=Depends(get_ledger_store),
    publisher=Depends(get_event_publisher),
) -> ProgressService:
    """Dependency to build the progress service."""
    return ProgressService(goals=goals, ledger=ledger, publisher=publisher)


@router.post("/progress", response_model=ProgressResult)
async def apply_progress(
    goal_id: str,
    request: ProgressRequest,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """
    Record a contribution, refund or manual adjustment.

    - Requires authentication
    - user_id defaults to the token subject
    - Returns 422 if the amount sign does not fit the action type
    - Returns 409 if concurrent updates outlast the retry budget
    """
    try:
        return await service.apply_ledger_event(
            goal_id=goal_id,
            action_type=request.action_type,
            amount=request.amount,
            user_id=request.user_id or user_id,
            reason=request.reason,
        )
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/progress", response_model=ProgressSnapshot)
async def get_progress(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """
    Get the derived progress snapshot with ETA fields.

    - Requires authentication
    - Recomputed from the ledger; a lagging cached snapshot is repaired
    """
    try:
        return await service.get_progress(goal_id)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/ledger", response_model=list[ProgressLogEntry])
async def get_ledger(
    goal_id: str,
    since: int = Query(0, ge=0, description="Return entries after this sequence"),
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """
    List ledger entries in sequence order.

    - Requires authentication
    - Optional cursor: since
    """
    try:
        return await service.get_ledger(goal_id, since=since)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/eta", response_model=EtaEstimate)
async def get_eta(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """Estimated completion date from recent contribution velocity."""
    try:
        return await service.get_eta(goal_id)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/milestone-achievements", response_model=list[Milestone])
async def get_milestone_achievements(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """Achieved milestones in order."""
    try:
        return await service.get_milestone_achievements(goal_id)
    except ProgressError as e:
        raise to_http_exception(e)


@router.post("/check-milestones", response_model=list[Milestone])
async def check_milestones(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """
    Record milestones or completion the current value already reached.

    - Requires authentication
    - Idempotent; returns only milestones recorded by this call
    """
    try:
        return await service.check_milestones(goal_id, user_id=user_id)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/progress-history", response_model=list[ProgressHistoryPoint])
async def get_progress_history(
    goal_id: str,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """Per-day closing values, optionally limited to a date range."""
    try:
        return await service.get_history(goal_id, start_date=start_date, end_date=end_date)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/contributors", response_model=list[ContributorSummary])
async def get_contributors(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """Per-contributor totals derived from the ledger."""
    try:
        return await service.get_contributors(goal_id)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/adjustments", response_model=list[ProgressLogEntry])
async def get_adjustments(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """Manual adjustments and refunds in sequence order."""
    try:
        return await service.get_adjustments(goal_id)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/analytics", response_model=ProgressAnalytics)
async def get_analytics(
    goal_id: str,
    period: AnalyticsPeriod = Query(AnalyticsPeriod.MONTH),
    user_id: str = Depends(get_current_user_id),
    service: ProgressService = Depends(get_progress_service),
):
    """
    Contribution analytics over a trailing period.

    - Requires authentication
    - period: week, month, quarter or year (default month)
    """
    try:
        return await service.get_analytics(goal_id, period=period)
    except ProgressError as e:
        raise to_http_exception(e)
