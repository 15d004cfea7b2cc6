"""Progress service - orchestrates ledger appends, recomputation, milestones and events."""
import logging
import math
import uuid
from datetime import date, datetime
from typing import Optional, Sequence

from app.config import settings
from app.exceptions import (
    ConflictError,
    GoalNotFoundError,
    PersistenceError,
    StaleStateError,
    ValidationError,
)
from app.models.goal import Goal, GoalStatus, Milestone
from app.models.progress import (
    ADJUSTMENT_ACTION_TYPES,
    CLIENT_ACTION_TYPES,
    ActionType,
    AnalyticsPeriod,
    ContributorSummary,
    EtaEstimate,
    FamilyProgressSummary,
    GoalSnapshotUpdate,
    MilestoneAchievement,
    ProgressAnalytics,
    ProgressEvent,
    ProgressHistoryPoint,
    ProgressLogEntry,
    ProgressLogEntryCreate,
    ProgressResult,
    ProgressSnapshot,
    UpcomingMilestone,
)
from app.services import eta_estimator, milestone_evaluator, progress_calculator
from app.services.event_publisher import EventPublisher
from app.stores.base import GoalStore, LedgerStore


logger = logging.getLogger(__name__)

RECENT_ACTIVITY_LIMIT = 10

# Goal statuses that stop accepting progress
FROZEN_STATUSES = {GoalStatus.PAUSED, GoalStatus.CANCELLED}


def validate_amount(action_type: ActionType, amount: int) -> None:
    """
    Check that an amount's sign matches its action type.

    Raises:
        ValidationError: If the action type is engine-only or the sign is wrong
    """
    if action_type not in CLIENT_ACTION_TYPES:
        raise ValidationError(
            f"{action_type.value} entries are recorded by the progress engine"
        )
    if action_type == ActionType.CONTRIBUTION and amount <= 0:
        raise ValidationError("Contribution amount must be positive")
    if action_type == ActionType.REFUND and amount >= 0:
        raise ValidationError("Refund amount must be negative")
    if action_type == ActionType.MANUAL_ADJUSTMENT and amount == 0:
        raise ValidationError("Adjustment amount must be non-zero")


def _head(entries: Sequence[ProgressLogEntry]) -> tuple[int, int]:
    """Sequence and value at the ledger head."""
    if not entries:
        return 0, 0
    return entries[-1].sequence, entries[-1].new_value


def _event_type(newly_achieved: list[Milestone], completed_now: bool) -> str:
    if completed_now:
        return "goal_completed"
    if newly_achieved:
        return "milestone_achieved"
    return "progress_update"


def _next_milestone(snapshot: ProgressSnapshot) -> Optional[Milestone]:
    """First unrecorded milestone of a goal that is still being funded."""
    if (
        snapshot.completed
        or snapshot.status in FROZEN_STATUSES
        or snapshot.daily_average_contribution <= 0
    ):
        return None
    for milestone in snapshot.milestones:
        if milestone.achieved_at is None:
            return milestone
    return None


class ProgressService:
    """Service for recording and deriving goal progress."""

    def __init__(
        self,
        goals: GoalStore,
        ledger: LedgerStore,
        publisher: EventPublisher,
        max_retries: Optional[int] = None,
    ):
        """Initialize service with its stores and collaborator publisher."""
        self.goals = goals
        self.ledger = ledger
        self.publisher = publisher
        self.max_retries = (
            settings.ledger_conflict_retries if max_retries is None else max_retries
        )

    async def _get_goal(self, goal_id: str) -> Goal:
        goal = await self.goals.get(goal_id)
        if not goal:
            raise GoalNotFoundError(goal_id)
        return goal

    async def apply_ledger_event(
        self,
        goal_id: str,
        action_type: ActionType,
        amount: int,
        user_id: str,
        reason: Optional[str] = None,
    ) -> ProgressResult:
        """
        Record a value-changing event and bring derived state up to date.

        Args:
            goal_id: Goal ID
            action_type: contribution, refund or manual_adjustment
            amount: Signed amount in minor units
            user_id: Acting user (trusted from the auth collaborator)
            reason: Optional free-text reason

        Returns:
            Consolidated result: new value, percentage, newly achieved
            milestones and completion flag

        Raises:
            GoalNotFoundError: If goal not found
            ValidationError: If the amount or goal state is rejected (nothing written)
            StaleStateError: If ledger conflicts outlast the retry budget (nothing written)
            PersistenceError: If storage is unavailable before the entry is written
        """
        validate_amount(action_type, amount)

        goal = await self._get_goal(goal_id)
        if goal.status in FROZEN_STATUSES:
            raise ValidationError(f"Goal is {goal.status.value} and not accepting progress")

        operation_id = uuid.uuid4().hex
        entries = await self._append_with_retry(
            goal, action_type, amount, user_id, reason, operation_id
        )
        logger.info(
            "Recorded %s of %s for goal %s at sequence %s",
            action_type.value,
            amount,
            goal_id,
            entries[-1].sequence,
        )

        # The ledger entry is committed; nothing below may fail the operation
        recorded, entries = await self._record_follow_ups(goal, entries, user_id, operation_id)
        snapshot = await self._refresh_snapshot(goal, entries)

        newly_achieved = self._milestones_for(snapshot, recorded)
        completed_now = any(e.action_type == ActionType.GOAL_COMPLETED for e in recorded)
        result = ProgressResult(
            goal_id=goal_id,
            current_value=snapshot.current_value,
            percentage=snapshot.percentage,
            newly_achieved_milestones=newly_achieved,
            completed=snapshot.completed,
            sequence=snapshot.sequence,
        )

        await self.publisher.publish(
            ProgressEvent(
                goal_id=goal_id,
                event_type=_event_type(newly_achieved, completed_now),
                payload={
                    **result.model_dump(mode="json"),
                    "action_type": action_type.value,
                    "amount": amount,
                    "user_id": user_id,
                },
            )
        )
        return result

    async def _append_with_retry(
        self,
        goal: Goal,
        action_type: ActionType,
        amount: int,
        user_id: str,
        reason: Optional[str],
        operation_id: str,
    ) -> list[ProgressLogEntry]:
        """Append the primary entry, re-reading the head on each conflict."""
        entries = await self.ledger.list_since(goal.id)

        for attempt in range(self.max_retries + 1):
            if any(entry.operation_id == operation_id for entry in entries):
                # An earlier attempt landed even though it reported a conflict
                return entries

            head_sequence, head_value = _head(entries)
            if head_value + amount < 0:
                raise ValidationError(
                    f"Amount {amount} would take the goal below zero (current {head_value})"
                )

            try:
                entry = await self.ledger.append(
                    ProgressLogEntryCreate(
                        goal_id=goal.id,
                        user_id=user_id,
                        action_type=action_type,
                        amount=amount,
                        previous_value=head_value,
                        expected_sequence=head_sequence,
                        operation_id=operation_id,
                        reason=reason,
                    )
                )
            except ConflictError:
                logger.info(
                    "Ledger conflict for goal %s at sequence %s (attempt %s of %s)",
                    goal.id,
                    head_sequence,
                    attempt + 1,
                    self.max_retries + 1,
                )
                entries = entries + await self.ledger.list_since(goal.id, head_sequence)
                continue

            return entries + [entry]

        logger.warning("Ledger conflict retries exhausted for goal %s", goal.id)
        raise StaleStateError(
            f"Goal {goal.id} changed concurrently; re-fetch progress and resubmit"
        )

    def _next_follow_up(
        self,
        goal: Goal,
        entries: Sequence[ProgressLogEntry],
        user_id: str,
        operation_id: str,
    ) -> Optional[ProgressLogEntryCreate]:
        """The next engine-written entry the ledger is missing, if any."""
        state = progress_calculator.fold(entries, goal.target_value)
        head_sequence, head_value = _head(entries)

        newly_achieved = milestone_evaluator.evaluate(
            state.current_value,
            goal.milestones,
            progress_calculator.achieved_milestones(entries).keys(),
        )
        if newly_achieved:
            milestone = newly_achieved[0]
            return ProgressLogEntryCreate(
                goal_id=goal.id,
                user_id=user_id,
                action_type=ActionType.MILESTONE_ACHIEVED,
                amount=0,
                previous_value=head_value,
                expected_sequence=head_sequence,
                operation_id=f"{operation_id}:milestone:{milestone.id}",
                milestone_id=milestone.id,
                reason=milestone.title,
            )

        if (
            state.current_value >= goal.target_value
            and progress_calculator.completion_entry(entries) is None
        ):
            return ProgressLogEntryCreate(
                goal_id=goal.id,
                user_id=user_id,
                action_type=ActionType.GOAL_COMPLETED,
                amount=0,
                previous_value=head_value,
                expected_sequence=head_sequence,
                operation_id=f"{operation_id}:completed",
            )

        return None

    async def _record_follow_ups(
        self,
        goal: Goal,
        entries: list[ProgressLogEntry],
        user_id: str,
        operation_id: str,
    ) -> tuple[list[ProgressLogEntry], list[ProgressLogEntry]]:
        """
        Append milestone_achieved and goal_completed entries the ledger is missing.

        Each entry goes through the same optimistic append, so a milestone that a
        concurrent operation already recorded is seen on re-read and skipped.

        Returns:
            Entries recorded by this call, and the updated ledger
        """
        recorded: list[ProgressLogEntry] = []
        conflicts = 0

        while True:
            pending = self._next_follow_up(goal, entries, user_id, operation_id)
            if pending is None:
                break

            try:
                entry = await self.ledger.append(pending)
            except ConflictError:
                conflicts += 1
                if conflicts > self.max_retries:
                    logger.warning(
                        "Deferred milestone evaluation for goal %s after %s conflicts",
                        goal.id,
                        conflicts,
                    )
                    break
                entries = entries + await self.ledger.list_since(goal.id, _head(entries)[0])
                continue
            except PersistenceError as e:
                logger.warning(
                    "Deferred milestone evaluation for goal %s: %s", goal.id, e
                )
                break

            entries = entries + [entry]
            recorded.append(entry)
            logger.info(
                "Recorded %s for goal %s at sequence %s",
                entry.action_type.value,
                goal.id,
                entry.sequence,
            )

        return recorded, entries

    def build_snapshot(
        self,
        goal: Goal,
        entries: Sequence[ProgressLogEntry],
        now: Optional[datetime] = None,
    ) -> ProgressSnapshot:
        """Derive the full progress snapshot of a goal from its ledger."""
        state = progress_calculator.fold(entries, goal.target_value)
        achieved = progress_calculator.achieved_milestones(entries)
        completion = progress_calculator.completion_entry(entries)
        eta = eta_estimator.estimate(
            entries, goal.target_value, state.current_value, now=now
        )

        milestones = [
            milestone.model_copy(update={"achieved_at": achieved.get(milestone.id)})
            for milestone in sorted(goal.milestones, key=lambda m: m.order)
        ]

        return ProgressSnapshot(
            goal_id=goal.id,
            goal_title=goal.title,
            target_value=goal.target_value,
            current_value=state.current_value,
            percentage=state.percentage,
            currency=goal.currency,
            status=GoalStatus.COMPLETED if completion else goal.status,
            completed=completion is not None,
            sequence=state.sequence,
            estimated_completion_date=eta.estimated_completion_date,
            daily_average_contribution=eta.daily_average_contribution,
            days_remaining=eta.days_remaining,
            confidence=eta.confidence,
            milestones=milestones,
            contributors_summary=state.contributors_summary,
            recent_activity=list(reversed(entries[-RECENT_ACTIVITY_LIMIT:])),
        )

    async def _refresh_snapshot(
        self,
        goal: Goal,
        entries: Sequence[ProgressLogEntry],
    ) -> ProgressSnapshot:
        """Derive and persist the snapshot. A failed write only leaves the cache stale."""
        snapshot = self.build_snapshot(goal, entries)
        completion = progress_calculator.completion_entry(entries)

        update = GoalSnapshotUpdate(
            current_value=snapshot.current_value,
            ledger_sequence=snapshot.sequence,
            milestones=snapshot.milestones,
            completed=snapshot.completed,
            completed_at=completion.created_at if completion else None,
            estimated_completion_date=snapshot.estimated_completion_date,
            daily_average_contribution=snapshot.daily_average_contribution,
        )
        try:
            await self.goals.save_snapshot(goal.id, update)
        except PersistenceError as e:
            logger.warning("Could not persist snapshot for goal %s: %s", goal.id, e)

        return snapshot

    @staticmethod
    def _milestones_for(
        snapshot: ProgressSnapshot,
        recorded: Sequence[ProgressLogEntry],
    ) -> list[Milestone]:
        recorded_ids = {
            entry.milestone_id
            for entry in recorded
            if entry.action_type == ActionType.MILESTONE_ACHIEVED
        }
        return [m for m in snapshot.milestones if m.id in recorded_ids]

    async def get_progress(self, goal_id: str) -> ProgressSnapshot:
        """
        Get the current progress snapshot, recomputed from the ledger.

        A stored snapshot that lags the ledger is repaired.

        Raises:
            GoalNotFoundError: If goal not found
        """
        goal = await self._get_goal(goal_id)
        entries = await self.ledger.list_since(goal_id)

        if goal.ledger_sequence != _head(entries)[0]:
            logger.info(
                "Snapshot for goal %s at sequence %s lags ledger at %s, rebuilding",
                goal_id,
                goal.ledger_sequence,
                _head(entries)[0],
            )
            return await self._refresh_snapshot(goal, entries)

        return self.build_snapshot(goal, entries)

    async def rebuild_snapshot(self, goal_id: str) -> ProgressSnapshot:
        """Replay a goal's ledger and rewrite its materialized snapshot."""
        goal = await self._get_goal(goal_id)
        entries = await self.ledger.list_since(goal_id)
        return await self._refresh_snapshot(goal, entries)

    async def check_milestones(self, goal_id: str, user_id: str) -> list[Milestone]:
        """
        Record any milestone or completion the ledger value already reached.

        Idempotent: running it again records nothing new.

        Returns:
            Milestones newly recorded by this call
        """
        goal = await self._get_goal(goal_id)
        entries = await self.ledger.list_since(goal_id)

        recorded, entries = await self._record_follow_ups(
            goal, entries, user_id, uuid.uuid4().hex
        )
        if not recorded:
            return []

        snapshot = await self._refresh_snapshot(goal, entries)
        newly_achieved = self._milestones_for(snapshot, recorded)
        completed_now = any(e.action_type == ActionType.GOAL_COMPLETED for e in recorded)

        await self.publisher.publish(
            ProgressEvent(
                goal_id=goal_id,
                event_type=_event_type(newly_achieved, completed_now),
                payload={
                    "current_value": snapshot.current_value,
                    "percentage": snapshot.percentage,
                    "newly_achieved_milestones": [
                        m.model_dump(mode="json") for m in newly_achieved
                    ],
                    "completed": snapshot.completed,
                    "sequence": snapshot.sequence,
                },
            )
        )
        return newly_achieved

    async def get_ledger(self, goal_id: str, since: int = 0) -> list[ProgressLogEntry]:
        """List a goal's ledger entries after a sequence cursor."""
        await self._get_goal(goal_id)
        return await self.ledger.list_since(goal_id, since)

    async def get_eta(self, goal_id: str, now: Optional[datetime] = None) -> EtaEstimate:
        """Estimate completion for a goal from its ledger."""
        goal = await self._get_goal(goal_id)
        entries = await self.ledger.list_since(goal_id)
        state = progress_calculator.fold(entries, goal.target_value)
        return eta_estimator.estimate(entries, goal.target_value, state.current_value, now=now)

    async def get_milestone_achievements(self, goal_id: str) -> list[Milestone]:
        """Achieved milestones in order, with the time each was recorded."""
        snapshot = await self.get_progress(goal_id)
        return [m for m in snapshot.milestones if m.achieved_at is not None]

    async def get_contributors(self, goal_id: str) -> list[ContributorSummary]:
        """Per-contributor totals for a goal."""
        goal = await self._get_goal(goal_id)
        entries = await self.ledger.list_since(goal_id)
        return progress_calculator.fold(entries, goal.target_value).contributors_summary

    async def get_history(
        self,
        goal_id: str,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> list[ProgressHistoryPoint]:
        """Per-day progress series for a goal."""
        goal = await self._get_goal(goal_id)
        entries = await self.ledger.list_since(goal_id)
        return progress_calculator.history(entries, goal.target_value, start_date, end_date)

    async def get_adjustments(self, goal_id: str) -> list[ProgressLogEntry]:
        """Manual adjustments and refunds recorded against a goal, in sequence order."""
        await self._get_goal(goal_id)
        entries = await self.ledger.list_since(goal_id)
        return [entry for entry in entries if entry.action_type in ADJUSTMENT_ACTION_TYPES]

    async def get_analytics(
        self,
        goal_id: str,
        period: AnalyticsPeriod = AnalyticsPeriod.MONTH,
        now: Optional[datetime] = None,
    ) -> ProgressAnalytics:
        """Contribution analytics for a goal over a trailing period."""
        now = now or datetime.utcnow()
        goal = await self._get_goal(goal_id)
        entries = await self.ledger.list_since(goal_id)
        state = progress_calculator.fold(entries, goal.target_value)
        eta = eta_estimator.estimate(entries, goal.target_value, state.current_value, now=now)
        return progress_calculator.period_analytics(
            goal_id,
            entries,
            goal.target_value,
            len(goal.milestones),
            period,
            now,
            eta,
        )

    async def _family_ledgers(
        self, family_id: str
    ) -> list[tuple[Goal, list[ProgressLogEntry]]]:
        goals = await self.goals.list_by_family(family_id)
        return [(goal, await self.ledger.list_since(goal.id)) for goal in goals]

    async def get_family_progress(
        self, family_id: str, now: Optional[datetime] = None
    ) -> list[ProgressSnapshot]:
        """Progress snapshot of every goal in a family, oldest goal first."""
        return [
            self.build_snapshot(goal, entries, now=now)
            for goal, entries in await self._family_ledgers(family_id)
        ]

    async def get_family_summary(
        self, family_id: str, now: Optional[datetime] = None
    ) -> FamilyProgressSummary:
        """
        Roll up progress across a family's goals.

        average_completion_rate caps each goal at 100%. Upcoming milestones are projected only for
        goals that are still being funded; recent achievements are newest first.
        """
        family = await self._family_ledgers(family_id)

        snapshots: list[ProgressSnapshot] = []
        total_contributions = 0
        upcoming: list[UpcomingMilestone] = []
        achievements: list[MilestoneAchievement] = []

        for goal, entries in family:
            snapshot = self.build_snapshot(goal, entries, now=now)
            snapshots.append(snapshot)
            total_contributions += sum(
                e.amount for e in entries if e.action_type == ActionType.CONTRIBUTION
            )

            next_milestone = _next_milestone(snapshot)
            if next_milestone is not None:
                upcoming.append(
                    UpcomingMilestone(
                        goal_id=goal.id,
                        goal_title=goal.title,
                        milestone_id=next_milestone.id,
                        milestone_title=next_milestone.title,
                        days_until_achievement=max(
                            math.ceil(
                                (next_milestone.target_value - snapshot.current_value)
                                / snapshot.daily_average_contribution
                            ),
                            0,
                        ),
                    )
                )

            achievements.extend(
                MilestoneAchievement(
                    milestone_id=m.id,
                    goal_id=goal.id,
                    goal_title=goal.title,
                    title=m.title,
                    achieved_at=m.achieved_at,
                    reward=m.reward,
                )
                for m in snapshot.milestones
                if m.achieved_at is not None
            )

        upcoming.sort(key=lambda u: (u.days_until_achievement, u.goal_title))
        achievements.sort(key=lambda a: a.achieved_at, reverse=True)

        return FamilyProgressSummary(
            family_id=family_id,
            total_goals=len(snapshots),
            active_goals=sum(1 for s in snapshots if s.status == GoalStatus.ACTIVE),
            completed_goals=sum(1 for s in snapshots if s.completed),
            total_value=sum(s.current_value for s in snapshots),
            total_contributions=total_contributions,
            average_completion_rate=(
                round(sum(min(s.percentage, 100.0) for s in snapshots) / len(snapshots), 2)
                if snapshots
                else 0.0
            ),
            upcoming_milestones=upcoming,
            recent_achievements=achievements[:RECENT_ACTIVITY_LIMIT],
        )
