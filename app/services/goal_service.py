"""Goal service - business logic for goal management."""
from datetime import datetime
from typing import Optional

from bson import ObjectId

from app.exceptions import GoalNotFoundError, ValidationError
from app.models.goal import Goal, GoalCreate, GoalStatus, GoalUpdate
from app.stores.base import GoalStore


class GoalService:
    """Service for handling goal operations."""

    def __init__(self, goals: GoalStore):
        """Initialize service with the goal store."""
        self.goals = goals

    async def create_goal(
        self,
        owner_id: str,
        goal_create: GoalCreate,
    ) -> Goal:
        """
        Create a new goal.

        Args:
            owner_id: User ID who creates the goal
            goal_create: Goal creation data (milestones already ordered)

        Returns:
            Created goal object with current_value 0
        """
        now = datetime.utcnow()

        goal_doc = {
            "owner_id": owner_id,
            "family_id": goal_create.family_id,
            "title": goal_create.title,
            "description": goal_create.description,
            "target_value": goal_create.target_value,
            "currency": goal_create.currency,
            "status": goal_create.status.value,
            "milestones": [
                {
                    "id": str(ObjectId()),
                    "title": milestone.title,
                    "description": milestone.description,
                    "target_value": milestone.target_value,
                    "order": milestone.order,
                    "reward": milestone.reward,
                    "achieved_at": None,
                }
                for milestone in goal_create.milestones
            ],
            "current_value": 0,
            "ledger_sequence": 0,
            "completed_at": None,
            "estimated_completion_date": None,
            "daily_average_contribution": 0.0,
            "created_at": now,
            "updated_at": now,
        }

        return await self.goals.create(goal_doc)

    async def list_goals(
        self,
        family_id: str,
        status: Optional[GoalStatus] = None,
    ) -> list[Goal]:
        """
        List goals for a family with optional status filtering.

        Args:
            family_id: Family ID
            status: Optional status filter

        Returns:
            List of goals
        """
        goals = await self.goals.list_by_family(family_id)
        if status:
            goals = [goal for goal in goals if goal.status == status]
        return goals

    async def get_goal(self, goal_id: str) -> Goal:
        """
        Get a single goal.

        Raises:
            GoalNotFoundError: If goal not found
        """
        goal = await self.goals.get(goal_id)
        if not goal:
            raise GoalNotFoundError(goal_id)
        return goal

    async def update_goal(
        self,
        goal_id: str,
        goal_update: GoalUpdate,
    ) -> Goal:
        """
        Update a goal's descriptive fields or collaborator-driven status.

        Args:
            goal_id: Goal ID
            goal_update: Update data

        Returns:
            Updated goal

        Raises:
            GoalNotFoundError: If goal not found
            ValidationError: If the status of a completed goal is changed
        """
        existing = await self.get_goal(goal_id)

        update_doc = {}
        if goal_update.title is not None:
            update_doc["title"] = goal_update.title
        if goal_update.description is not None:
            update_doc["description"] = goal_update.description
        if goal_update.status is not None and goal_update.status != existing.status:
            if existing.status == GoalStatus.COMPLETED:
                raise ValidationError("A completed goal cannot change status")
            update_doc["status"] = goal_update.status.value

        if not update_doc:
            return existing

        updated = await self.goals.update(goal_id, update_doc)
        if not updated:
            raise GoalNotFoundError(goal_id)
        return updated
