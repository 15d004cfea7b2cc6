"""ETA estimator - projects goal completion from recent contribution velocity."""
import math
from datetime import date, datetime, timedelta
from typing import Optional, Sequence

from app.config import settings
from app.models.progress import ActionType, EtaEstimate, ProgressLogEntry


# Only these action types count toward velocity
VELOCITY_ACTIONS = {ActionType.CONTRIBUTION, ActionType.MILESTONE_ACHIEVED}


def _window_start(entries: Sequence[ProgressLogEntry], now: datetime, window_days: int) -> datetime:
    return max(now - timedelta(days=window_days), entries[0].created_at)


def _velocity_entries(
    entries: Sequence[ProgressLogEntry],
    window_start: datetime,
    now: datetime,
) -> list[ProgressLogEntry]:
    return [
        entry
        for entry in entries
        if entry.action_type in VELOCITY_ACTIONS
        and entry.amount > 0
        and window_start <= entry.created_at <= now
    ]


def daily_average_contribution(
    entries: Sequence[ProgressLogEntry],
    now: datetime,
    window_days: int,
) -> float:
    """
    Average positive contribution per day over the trailing window.

    The window starts at ``now - window_days`` or at the first ledger entry,
    whichever is later, and spans at least one day. Refunds and adjustments
    are excluded so they do not understate pace.
    """
    if not entries:
        return 0.0

    window_start = _window_start(entries, now, window_days)
    total = sum(entry.amount for entry in _velocity_entries(entries, window_start, now))

    elapsed_days = max((now - window_start).total_seconds() / 86400, 1.0)
    return round(total / elapsed_days, 2)


def confidence(
    entries: Sequence[ProgressLogEntry],
    now: datetime,
    window_days: int,
) -> float:
    """
    How far the velocity can be trusted, from 0.0 to 1.0.

    The product of how much of the window the ledger covers and the share of
    its weeks that saw a contribution. A single deposit yesterday scores low;
    weekly deposits over the whole window score 1.0.
    """
    if not entries:
        return 0.0

    window_start = _window_start(entries, now, window_days)
    elapsed_days = max((now - window_start).total_seconds() / 86400, 1.0)
    weeks = max(math.ceil(elapsed_days / 7), 1)

    active_weeks = {
        min(int((entry.created_at - window_start).total_seconds() // (7 * 86400)), weeks - 1)
        for entry in _velocity_entries(entries, window_start, now)
    }

    coverage = min(elapsed_days / window_days, 1.0)
    return round(coverage * len(active_weeks) / weeks, 2)


def estimate(
    entries: Sequence[ProgressLogEntry],
    target_value: int,
    current_value: int,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
) -> EtaEstimate:
    """
    Estimate the completion date of a goal.

    Args:
        entries: Ledger entries in sequence order
        target_value: Goal target in minor units
        current_value: Current goal value in minor units
        now: Reference time (defaults to utcnow)
        window_days: Trailing velocity window (defaults to settings.eta_window_days)

    Returns:
        EtaEstimate; estimated_completion_date is None when the goal is not
        being funded or the projection falls beyond the calendar, and is
        never earlier than today
    """
    now = now or datetime.utcnow()
    window_days = window_days or settings.eta_window_days

    average = daily_average_contribution(entries, now, window_days)
    remaining = target_value - current_value

    if remaining <= 0:
        return EtaEstimate(
            estimated_completion_date=now.date(),
            daily_average_contribution=average,
            days_remaining=0,
            confidence=1.0,
        )

    if average <= 0:
        return EtaEstimate(daily_average_contribution=0.0)

    days = math.ceil(remaining / average)
    if days > (date.max - now.date()).days:
        return EtaEstimate(
            daily_average_contribution=average,
            days_remaining=days,
            confidence=confidence(entries, now, window_days),
        )

    return EtaEstimate(
        estimated_completion_date=now.date() + timedelta(days=days),
        daily_average_contribution=average,
        days_remaining=days,
        confidence=confidence(entries, now, window_days),
    )
