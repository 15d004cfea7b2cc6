"""Goal router - API endpoints for goal management."""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from app.database import get_goal_store
from app.exceptions import ProgressError
from app.models.goal import Goal, GoalCreate, GoalStatus, GoalUpdate
from app.routers.auth import get_current_user_id
from app.routers.errors import to_http_exception
from app.services.goal_service import GoalService


router = APIRouter(prefix="/goals", tags=["goals"])


@router.post("", response_model=Goal, status_code=status.HTTP_201_CREATED)
async def create_goal(
    goal: GoalCreate,
    user_id: str = Depends(get_current_user_id),
    goals=Depends(get_goal_store),
):
    """
    Create a new goal.

    - Requires authentication
    - Milestone orders must be unique with strictly increasing targets
    - Starts with current_value 0
    """
    service = GoalService(goals)
    try:
        return await service.create_goal(owner_id=user_id, goal_create=goal)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("", response_model=list[Goal])
async def list_goals(
    family_id: str = Query(..., description="Family that owns the goals"),
    goal_status: Optional[GoalStatus] = Query(None, alias="status", description="Filter by status"),
    user_id: str = Depends(get_current_user_id),
    goals=Depends(get_goal_store),
):
    """
    List goals for a family.

    - Requires authentication
    - Optional filter: status
    """
    service = GoalService(goals)
    try:
        return await service.list_goals(family_id=family_id, status=goal_status)
    except ProgressError as e:
        raise to_http_exception(e)


@router.get("/{goal_id}", response_model=Goal)
async def get_goal(
    goal_id: str,
    user_id: str = Depends(get_current_user_id),
    goals=Depends(get_goal_store),
):
    """
    Get a single goal with its cached progress snapshot.

    - Requires authentication
    - Returns 404 if goal not found
    """
    service = GoalService(goals)
    try:
        return await service.get_goal(goal_id)
    except ProgressError as e:
        raise to_http_exception(e)


@router.patch("/{goal_id}", response_model=Goal)
async def update_goal(
    goal_id: str,
    goal_update: GoalUpdate,
    user_id: str = Depends(get_current_user_id),
    goals=Depends(get_goal_store),
):
    """
    Update a goal.

    - Requires authentication
    - Status may be set to draft, active, paused or cancelled
    - A completed goal's status is fixed
    """
    service = GoalService(goals)
    try:
        return await service.update_goal(goal_id=goal_id, goal_update=goal_update)
    except ProgressError as e:
        raise to_http_exception(e)
