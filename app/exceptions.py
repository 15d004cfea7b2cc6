"""Error taxonomy for the progress engine."""


class ProgressError(Exception):
    """Base error for goal progress operations."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GoalNotFoundError(ProgressError):
    """Goal id does not exist."""

    def __init__(self, goal_id: str):
        super().__init__(f"Goal not found: {goal_id}")
        self.goal_id = goal_id


class ValidationError(ProgressError):
    """Malformed amount, action type or goal state. Rejected before any ledger write."""


class ConflictError(ProgressError):
    """Ledger head moved since the caller read it."""

    def __init__(self, goal_id: str, expected_sequence: int, message: str = ""):
        super().__init__(
            message or f"Ledger head for goal {goal_id} moved past sequence {expected_sequence}"
        )
        self.goal_id = goal_id
        self.expected_sequence = expected_sequence


class StaleStateError(ProgressError):
    """Conflict retries exhausted; the caller must re-fetch and resubmit."""


class PersistenceError(ProgressError):
    """Storage unavailable or timed out."""
