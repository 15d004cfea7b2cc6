"""Progress calculator - folds ledger entries into derived goal state.

Every function here is pure: the same entry sequence always produces the
same result, so any goal's state can be rebuilt from its ledger alone.
Amounts are integer minor units; floating point is only used for
percentages, which are never written back to the ledger.
"""
from datetime import date, datetime, timedelta
from typing import Iterable, Optional, Sequence

from app.models.progress import (
    PERIOD_DAYS,
    ActionType,
    AnalyticsPeriod,
    ContributorSummary,
    EtaEstimate,
    ProgressAnalytics,
    ProgressFold,
    ProgressHistoryPoint,
    ProgressLogEntry,
    TrendAnalysis,
    TrendDirection,
)


# Action types attributed to the user who recorded them
ATTRIBUTED_ACTIONS = {ActionType.CONTRIBUTION, ActionType.REFUND}


def percentage(current_value: int, target_value: int) -> float:
    """
    Percentage of target reached, floored at 0 and not capped above 100.

    Examples:
        >>> percentage(600, 1000)
        60.0
        >>> percentage(1050, 1000)
        105.0
    """
    if target_value <= 0:
        return 0.0
    return round(max(current_value, 0) * 100 / target_value, 2)


def summarize_contributors(entries: Iterable[ProgressLogEntry]) -> list[ContributorSummary]:
    """
    Per-user contribution totals, largest first.

    Contributions and refunds count toward the user who recorded them.
    percentage_of_total is each user's share of the summed positive totals.
    """
    totals: dict[str, int] = {}
    counts: dict[str, int] = {}

    for entry in entries:
        if entry.action_type not in ATTRIBUTED_ACTIONS:
            continue
        totals[entry.user_id] = totals.get(entry.user_id, 0) + entry.amount
        if entry.action_type == ActionType.CONTRIBUTION:
            counts[entry.user_id] = counts.get(entry.user_id, 0) + 1

    grand_total = sum(total for total in totals.values() if total > 0)

    summaries = [
        ContributorSummary(
            user_id=user_id,
            total_contributed=total,
            contribution_count=counts.get(user_id, 0),
            percentage_of_total=(
                round(max(total, 0) * 100 / grand_total, 2) if grand_total else 0.0
            ),
        )
        for user_id, total in totals.items()
    ]
    summaries.sort(key=lambda s: (-s.total_contributed, s.user_id))
    return summaries


def fold(entries: Sequence[ProgressLogEntry], target_value: int) -> ProgressFold:
    """
    Fold an ordered ledger into current value, percentage and contributors.

    Args:
        entries: Ledger entries in sequence order
        target_value: Goal target in minor units

    Returns:
        ProgressFold with the running sum of amounts as current_value

    Raises:
        ValueError: If entries are not in strictly increasing sequence order
    """
    current_value = 0
    sequence = 0

    for entry in entries:
        if entry.sequence <= sequence:
            raise ValueError(
                f"Ledger entries out of order: sequence {entry.sequence} after {sequence}"
            )
        current_value += entry.amount
        sequence = entry.sequence

    return ProgressFold(
        current_value=current_value,
        percentage=percentage(current_value, target_value),
        sequence=sequence,
        contributors_summary=summarize_contributors(entries),
    )


def achieved_milestones(entries: Iterable[ProgressLogEntry]) -> dict[str, datetime]:
    """Map milestone id to the time its achievement was first recorded."""
    achieved: dict[str, datetime] = {}
    for entry in entries:
        if entry.action_type == ActionType.MILESTONE_ACHIEVED and entry.milestone_id:
            achieved.setdefault(entry.milestone_id, entry.created_at)
    return achieved


def completion_entry(entries: Iterable[ProgressLogEntry]) -> Optional[ProgressLogEntry]:
    """The goal_completed entry, if the ledger has one."""
    for entry in entries:
        if entry.action_type == ActionType.GOAL_COMPLETED:
            return entry
    return None


def history(
    entries: Sequence[ProgressLogEntry],
    target_value: int,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> list[ProgressHistoryPoint]:
    """
    Per-day closing value series for days that have ledger activity.

    Values are running totals over the whole ledger; the date range only
    filters which days are reported.
    """
    points: dict[date, ProgressHistoryPoint] = {}
    running = 0

    for entry in entries:
        running += entry.amount
        day = entry.created_at.date()
        point = points.get(day)
        if point is None:
            point = points[day] = ProgressHistoryPoint(
                date=day,
                value=running,
                percentage=percentage(running, target_value),
            )
        point.value = running
        point.percentage = percentage(running, target_value)
        if entry.action_type == ActionType.CONTRIBUTION:
            point.contributions += 1
        elif entry.action_type == ActionType.MILESTONE_ACHIEVED:
            point.milestones_achieved += 1

    return [
        point
        for day, point in sorted(points.items())
        if (start_date is None or day >= start_date)
        and (end_date is None or day <= end_date)
    ]


def trend_direction(first_half: int, second_half: int) -> TrendDirection:
    """
    Compare contribution totals of two consecutive spans.

    A change within 10% either way is stable.

    Examples:
        >>> trend_direction(100, 150).value
        'increasing'
        >>> trend_direction(100, 105).value
        'stable'
    """
    if second_half > first_half * 1.1:
        return TrendDirection.INCREASING
    if second_half < first_half * 0.9:
        return TrendDirection.DECREASING
    return TrendDirection.STABLE


def period_analytics(
    goal_id: str,
    entries: Sequence[ProgressLogEntry],
    target_value: int,
    milestone_count: int,
    period: AnalyticsPeriod,
    now: datetime,
    eta: EtaEstimate,
) -> ProgressAnalytics:
    """
    Contribution analytics over the trailing period ending at ``now``.

    Only contributions feed the totals and contributor ranking. The trend
    compares the first and second halves of the period.
    """
    days = PERIOD_DAYS[period]
    start = now - timedelta(days=days)
    midpoint = now - timedelta(days=days / 2)

    in_period = [entry for entry in entries if start <= entry.created_at <= now]
    contributions = [e for e in in_period if e.action_type == ActionType.CONTRIBUTION]
    total = sum(e.amount for e in contributions)

    first_half = sum(e.amount for e in contributions if e.created_at < midpoint)
    achieved = len(achieved_milestones(in_period))

    return ProgressAnalytics(
        goal_id=goal_id,
        period=period,
        total_contributions=total,
        contribution_count=len(contributions),
        average_daily_contribution=round(total / days, 2),
        contribution_frequency=round(len(contributions) * 7 / days, 2),
        milestone_achievement_rate=(
            round(achieved / milestone_count, 2) if milestone_count else 0.0
        ),
        completion_velocity=round(percentage(total, target_value) / days, 2),
        top_contributors=summarize_contributors(contributions)[:5],
        trend_analysis=TrendAnalysis(
            direction=trend_direction(first_half, total - first_half),
            confidence=eta.confidence,
            predicted_completion_date=eta.estimated_completion_date,
        ),
    )
