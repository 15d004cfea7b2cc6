"""Storage contracts for goals and the progress ledger."""
from datetime import datetime
from typing import Optional, Protocol

from app.exceptions import ConflictError
from app.models.goal import Goal, Milestone
from app.models.progress import (
    GoalSnapshotUpdate,
    ProgressLogEntry,
    ProgressLogEntryCreate,
)


class LedgerStore(Protocol):
    """Append-only, per-goal ordered record of progress events."""

    async def append(self, entry: ProgressLogEntryCreate) -> ProgressLogEntry:
        """
        Append an entry at sequence ``entry.expected_sequence + 1``.

        Raises:
            ConflictError: If the head sequence or head value differs from the
                caller's expectation
            PersistenceError: If storage is unavailable
        """
        ...

    async def list_since(self, goal_id: str, cursor: int = 0) -> list[ProgressLogEntry]:
        """Entries with sequence greater than ``cursor``, in sequence order."""
        ...


class GoalStore(Protocol):
    """Goal documents and their materialized progress snapshot."""

    async def create(self, goal_doc: dict) -> Goal:
        ...

    async def get(self, goal_id: str) -> Optional[Goal]:
        ...

    async def list_by_family(self, family_id: str) -> list[Goal]:
        ...

    async def list_ids(self) -> list[str]:
        ...

    async def update(self, goal_id: str, fields: dict) -> Optional[Goal]:
        ...

    async def save_snapshot(self, goal_id: str, snapshot: GoalSnapshotUpdate) -> bool:
        """Write the snapshot unless a newer ledger sequence is already stored."""
        ...


def doc_to_goal(doc: dict) -> Goal:
    """Convert a goal document to a Goal model."""
    goal_id = str(doc["_id"])
    return Goal(
        _id=goal_id,
        owner_id=doc["owner_id"],
        family_id=doc["family_id"],
        title=doc["title"],
        description=doc.get("description", ""),
        target_value=doc["target_value"],
        currency=doc["currency"],
        status=doc.get("status", "active"),
        milestones=[
            Milestone(goal_id=goal_id, **milestone)
            for milestone in doc.get("milestones", [])
        ],
        current_value=doc.get("current_value", 0),
        ledger_sequence=doc.get("ledger_sequence", 0),
        completed_at=doc.get("completed_at"),
        estimated_completion_date=(
            doc["estimated_completion_date"].date()
            if isinstance(doc.get("estimated_completion_date"), datetime)
            else doc.get("estimated_completion_date")
        ),
        daily_average_contribution=doc.get("daily_average_contribution", 0.0),
        created_at=doc["created_at"],
        updated_at=doc["updated_at"],
    )


def doc_to_entry(doc: dict) -> ProgressLogEntry:
    """Convert a ledger document to a ProgressLogEntry model."""
    return ProgressLogEntry(
        _id=str(doc["_id"]),
        goal_id=doc["goal_id"],
        user_id=doc["user_id"],
        sequence=doc["sequence"],
        action_type=doc["action_type"],
        amount=doc["amount"],
        previous_value=doc["previous_value"],
        new_value=doc["new_value"],
        operation_id=doc["operation_id"],
        milestone_id=doc.get("milestone_id"),
        reason=doc.get("reason"),
        created_at=doc["created_at"],
    )


def entry_to_doc(entry: ProgressLogEntryCreate, created_at: datetime) -> dict:
    """Build the ledger document for an append request."""
    return {
        "goal_id": entry.goal_id,
        "user_id": entry.user_id,
        "sequence": entry.expected_sequence + 1,
        "action_type": entry.action_type.value,
        "amount": entry.amount,
        "previous_value": entry.previous_value,
        "new_value": entry.new_value,
        "operation_id": entry.operation_id,
        "milestone_id": entry.milestone_id,
        "reason": entry.reason,
        "created_at": created_at,
    }


def snapshot_to_fields(snapshot: GoalSnapshotUpdate) -> dict:
    """Build the goal document fields written for a snapshot."""
    fields = {
        "current_value": snapshot.current_value,
        "ledger_sequence": snapshot.ledger_sequence,
        "milestones": [
            milestone.model_dump(exclude={"goal_id"})
            for milestone in snapshot.milestones
        ],
        # BSON has no date type
        "estimated_completion_date": (
            datetime.combine(snapshot.estimated_completion_date, datetime.min.time())
            if snapshot.estimated_completion_date
            else None
        ),
        "daily_average_contribution": snapshot.daily_average_contribution,
    }
    if snapshot.completed:
        fields["status"] = "completed"
        fields["completed_at"] = snapshot.completed_at
    return fields


def check_head(
    head: Optional[dict],
    entry: ProgressLogEntryCreate,
) -> Optional[dict]:
    """
    Compare the stored head with the caller's expectation.

    Returns the head document when it is the caller's own entry (a retried
    append that already landed), None when the append may proceed.

    Raises:
        ConflictError: If the head moved or its value differs
    """
    head_sequence = head["sequence"] if head else 0
    head_value = head["new_value"] if head else 0

    if (
        head
        and head["operation_id"] == entry.operation_id
        and head_sequence == entry.expected_sequence + 1
    ):
        return head

    if head_sequence != entry.expected_sequence:
        raise ConflictError(entry.goal_id, entry.expected_sequence)

    if head_value != entry.previous_value:
        raise ConflictError(
            entry.goal_id,
            entry.expected_sequence,
            f"Ledger head value {head_value} does not match expected "
            f"previous value {entry.previous_value}",
        )

    return None
