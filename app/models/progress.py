"""Progress ledger and snapshot model definitions."""
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

from app.models.goal import GoalStatus, Milestone


class ActionType(str, Enum):
    """Ledger entry action types."""

    CONTRIBUTION = "contribution"
    MILESTONE_ACHIEVED = "milestone_achieved"
    MANUAL_ADJUSTMENT = "manual_adjustment"
    REFUND = "refund"
    GOAL_COMPLETED = "goal_completed"


# Action types a caller may submit; the rest are written by the engine
CLIENT_ACTION_TYPES = {
    ActionType.CONTRIBUTION,
    ActionType.MANUAL_ADJUSTMENT,
    ActionType.REFUND,
}


class ProgressLogEntryCreate(BaseModel):
    """Ledger append request, carrying the caller's view of the ledger head."""

    goal_id: str
    user_id: str
    action_type: ActionType
    amount: int
    previous_value: int
    expected_sequence: int = Field(ge=0)
    operation_id: str
    milestone_id: Optional[str] = None
    reason: Optional[str] = None

    @property
    def new_value(self) -> int:
        return self.previous_value + self.amount


class ProgressLogEntry(BaseModel):
    """Immutable ledger entry."""

    id: str = Field(alias="_id", serialization_alias="id")
    goal_id: str
    user_id: str
    sequence: int
    action_type: ActionType
    amount: int
    previous_value: int
    new_value: int
    operation_id: str
    milestone_id: Optional[str] = None
    reason: Optional[str] = None
    created_at: datetime

    model_config = {"populate_by_name": True}


class ContributorSummary(BaseModel):
    """Per-user attribution derived from the ledger."""

    user_id: str
    total_contributed: int
    contribution_count: int = 0
    percentage_of_total: float = 0.0


class ProgressFold(BaseModel):
    """Result of folding a ledger."""

    current_value: int
    percentage: float
    sequence: int = 0
    contributors_summary: list[ContributorSummary] = Field(default_factory=list)


class EtaEstimate(BaseModel):
    """Projected completion from recent contribution velocity."""

    estimated_completion_date: Optional[date] = None
    daily_average_contribution: float = 0.0
    days_remaining: Optional[int] = None
    confidence: float = 0.0


class ProgressRequest(BaseModel):
    """Request body for a progress mutation."""

    action_type: ActionType
    amount: int
    user_id: Optional[str] = None
    reason: Optional[str] = Field(default=None, max_length=500)


class ProgressResult(BaseModel):
    """Consolidated outcome of one progress mutation."""

    goal_id: str
    current_value: int
    percentage: float
    newly_achieved_milestones: list[Milestone] = Field(default_factory=list)
    completed: bool = False
    sequence: int


class ProgressSnapshot(BaseModel):
    """Derived progress state of a goal, rebuildable from its ledger."""

    goal_id: str
    goal_title: str
    target_value: int
    current_value: int
    percentage: float
    currency: str
    status: GoalStatus
    completed: bool
    sequence: int
    estimated_completion_date: Optional[date] = None
    daily_average_contribution: float = 0.0
    days_remaining: Optional[int] = None
    confidence: float = 0.0
    milestones: list[Milestone] = Field(default_factory=list)
    contributors_summary: list[ContributorSummary] = Field(default_factory=list)
    recent_activity: list[ProgressLogEntry] = Field(default_factory=list)


class ProgressHistoryPoint(BaseModel):
    """Closing state of a goal on one day."""

    date: date
    value: int
    percentage: float
    contributions: int = 0
    milestones_achieved: int = 0


class GoalSnapshotUpdate(BaseModel):
    """Materialized view write for a goal document."""

    current_value: int
    ledger_sequence: int
    milestones: list[Milestone]
    completed: bool = False
    completed_at: Optional[datetime] = None
    estimated_completion_date: Optional[date] = None
    daily_average_contribution: float = 0.0


class ProgressEvent(BaseModel):
    """Push event delivered to notification and activity feed collaborators."""

    goal_id: str
    event_type: str
    payload: dict[str, Any] = Field(default_factory=dict)


# Entries listed as adjustments to a goal
ADJUSTMENT_ACTION_TYPES = {ActionType.MANUAL_ADJUSTMENT, ActionType.REFUND}


class AnalyticsPeriod(str, Enum):
    """Reporting periods for goal analytics."""

    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


PERIOD_DAYS = {
    AnalyticsPeriod.WEEK: 7,
    AnalyticsPeriod.MONTH: 30,
    AnalyticsPeriod.QUARTER: 90,
    AnalyticsPeriod.YEAR: 365,
}


class TrendDirection(str, Enum):
    """Direction of contribution pace between the halves of a period."""

    INCREASING = "increasing"
    DECREASING = "decreasing"
    STABLE = "stable"


class TrendAnalysis(BaseModel):
    direction: TrendDirection
    confidence: float
    predicted_completion_date: Optional[date] = None


class ProgressAnalytics(BaseModel):
    """Contribution analytics for one goal over a trailing period."""

    goal_id: str
    period: AnalyticsPeriod
    total_contributions: int
    contribution_count: int
    average_daily_contribution: float
    contribution_frequency: float  # contributions per week
    milestone_achievement_rate: float
    completion_velocity: float  # percentage points per day
    top_contributors: list[ContributorSummary] = Field(default_factory=list)
    trend_analysis: TrendAnalysis


class MilestoneAchievement(BaseModel):
    """A recorded milestone, flattened for family feeds."""

    milestone_id: str
    goal_id: str
    goal_title: str
    title: str
    achieved_at: datetime
    reward: Optional[str] = None


class UpcomingMilestone(BaseModel):
    """Next unreached milestone of a goal and its projected distance."""

    goal_id: str
    goal_title: str
    milestone_id: str
    milestone_title: str
    days_until_achievement: int


class FamilyProgressSummary(BaseModel):
    """Roll-up of every goal in a family."""

    family_id: str
    total_goals: int
    active_goals: int
    completed_goals: int
    total_value: int
    total_contributions: int
    average_completion_rate: float
    upcoming_milestones: list[UpcomingMilestone] = Field(default_factory=list)
    recent_achievements: list[MilestoneAchievement] = Field(default_factory=list)
