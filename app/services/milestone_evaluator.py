"""Milestone evaluator - detects milestones crossed by the current value."""
from typing import Collection, Sequence

from app.models.goal import Milestone


def evaluate(
    current_value: int,
    milestones: Sequence[Milestone],
    previously_achieved_ids: Collection[str],
) -> list[Milestone]:
    """
    Return milestones newly achieved at ``current_value``, in ascending order.

    A milestone is newly achieved when it is not in ``previously_achieved_ids``
    and its target_value is at or below the current value. A single jump that
    crosses several thresholds reports each of them.

    Args:
        current_value: Current goal value in minor units
        milestones: Goal milestones in any order
        previously_achieved_ids: Ids already recorded as achieved

    Returns:
        Newly achieved milestones sorted by order

    Examples:
        Milestones at 250/500/750 with value 600 and nothing achieved yet
        yield the 250 and 500 milestones. Running again with those two ids
        in previously_achieved_ids yields nothing.
    """
    return [
        milestone
        for milestone in sorted(milestones, key=lambda m: m.order)
        if milestone.id not in previously_achieved_ids
        and milestone.target_value <= current_value
    ]
