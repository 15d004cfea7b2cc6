"""Goal and milestone model definitions."""
from datetime import date, datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class GoalStatus(str, Enum):
    """Goal lifecycle states."""

    DRAFT = "draft"
    ACTIVE = "active"
    PAUSED = "paused"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


# Statuses a client may set directly; completed is only reached through the ledger
SETTABLE_STATUSES = {
    GoalStatus.DRAFT,
    GoalStatus.ACTIVE,
    GoalStatus.PAUSED,
    GoalStatus.CANCELLED,
}


class MilestoneCreate(BaseModel):
    """Milestone creation model."""

    title: str
    description: Optional[str] = None
    target_value: int = Field(gt=0)  # minor units
    order: int = Field(ge=0)
    reward: Optional[str] = None


class Milestone(MilestoneCreate):
    """Milestone with database fields."""

    id: str
    goal_id: str
    achieved_at: Optional[datetime] = None


def check_milestone_ordering(milestones: list[MilestoneCreate]) -> list[MilestoneCreate]:
    """
    Validate milestone ordering rules and return milestones sorted by order.

    Orders must be unique and target_value must strictly increase with order.

    Raises:
        ValueError: If either rule is violated
    """
    ordered = sorted(milestones, key=lambda m: m.order)

    orders = [m.order for m in ordered]
    if len(set(orders)) != len(orders):
        raise ValueError("Milestone order values must be unique")

    for previous, current in zip(ordered, ordered[1:]):
        if current.target_value <= previous.target_value:
            raise ValueError(
                "Milestone target_value must strictly increase with order "
                f"(order {current.order} has {current.target_value}, "
                f"order {previous.order} has {previous.target_value})"
            )

    return ordered


class GoalBase(BaseModel):
    """Base goal fields."""

    title: str
    description: str = ""
    family_id: str
    target_value: int = Field(gt=0)  # minor units
    currency: str = Field(min_length=3, max_length=3)

    @field_validator("currency")
    @classmethod
    def normalize_currency(cls, value: str) -> str:
        return value.upper()


class GoalCreate(GoalBase):
    """Goal creation model."""

    status: GoalStatus = GoalStatus.ACTIVE
    milestones: list[MilestoneCreate] = Field(default_factory=list)

    @field_validator("status")
    @classmethod
    def initial_status(cls, value: GoalStatus) -> GoalStatus:
        if value not in (GoalStatus.DRAFT, GoalStatus.ACTIVE):
            raise ValueError("A new goal must start as draft or active")
        return value

    @model_validator(mode="after")
    def order_milestones(self) -> "GoalCreate":
        self.milestones = check_milestone_ordering(self.milestones)
        return self


class GoalUpdate(BaseModel):
    """Goal update model - all fields optional."""

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[GoalStatus] = None

    @field_validator("status")
    @classmethod
    def settable_status(cls, value: Optional[GoalStatus]) -> Optional[GoalStatus]:
        if value is not None and value not in SETTABLE_STATUSES:
            raise ValueError("Goal completion is recorded from progress, not set directly")
        return value


class Goal(GoalBase):
    """Full goal model with database fields and the cached progress snapshot."""

    id: str = Field(alias="_id", serialization_alias="id")
    owner_id: str
    status: GoalStatus = GoalStatus.ACTIVE
    milestones: list[Milestone] = Field(default_factory=list)

    # Materialized view over the ledger, never written directly by clients
    current_value: int = 0
    ledger_sequence: int = 0
    completed_at: Optional[datetime] = None
    estimated_completion_date: Optional[date] = None
    daily_average_contribution: float = 0.0

    created_at: datetime
    updated_at: datetime

    model_config = {"populate_by_name": True}
