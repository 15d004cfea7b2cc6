"""Tests for the goal stores."""
import pytest
from datetime import date, datetime
from unittest.mock import AsyncMock, MagicMock
from bson import ObjectId
from pymongo.errors import AutoReconnect, DuplicateKeyError

from app.models.goal import Milestone
from app.models.progress import GoalSnapshotUpdate


def goal_doc(**overrides):
    doc = {
        "_id": ObjectId(),
        "owner_id": "user123",
        "family_id": "family1",
        "title": "New Bikes",
        "description": "",
        "target_value": 1000,
        "currency": "USD",
        "status": "active",
        "milestones": [
            {
                "id": "m1",
                "title": "Half",
                "description": None,
                "target_value": 500,
                "order": 1,
                "reward": None,
                "achieved_at": None,
            }
        ],
        "current_value": 0,
        "ledger_sequence": 0,
        "completed_at": None,
        "estimated_completion_date": None,
        "daily_average_contribution": 0.0,
        "created_at": datetime.utcnow(),
        "updated_at": datetime.utcnow(),
    }
    doc.update(overrides)
    return doc


def snapshot(sequence, completed=False):
    return GoalSnapshotUpdate(
        current_value=600,
        ledger_sequence=sequence,
        milestones=[
            Milestone(
                id="m1",
                goal_id="goal1",
                title="Half",
                target_value=500,
                order=1,
                achieved_at=datetime(2026, 5, 1),
            )
        ],
        completed=completed,
        completed_at=datetime(2026, 5, 2) if completed else None,
        estimated_completion_date=date(2026, 6, 1),
        daily_average_contribution=12.5,
    )


@pytest.mark.asyncio
class TestMemoryGoalStore:
    """Tests for the in-memory goal store."""

    async def test_save_snapshot_applies_newer_sequence(self):
        from app.stores.memory_store import MemoryGoalStore

        store = MemoryGoalStore()
        goal = await store.create(goal_doc())

        assert await store.save_snapshot(goal.id, snapshot(3)) is True

        updated = await store.get(goal.id)
        assert updated.current_value == 600
        assert updated.ledger_sequence == 3
        assert updated.milestones[0].achieved_at == datetime(2026, 5, 1)
        assert updated.estimated_completion_date == date(2026, 6, 1)
        assert updated.status.value == "active"

    async def test_save_snapshot_never_regresses(self):
        from app.stores.memory_store import MemoryGoalStore

        store = MemoryGoalStore()
        goal = await store.create(goal_doc())
        await store.save_snapshot(goal.id, snapshot(5))

        assert await store.save_snapshot(goal.id, snapshot(4)) is False
        assert (await store.get(goal.id)).ledger_sequence == 5

    async def test_completed_snapshot_sets_status(self):
        from app.stores.memory_store import MemoryGoalStore

        store = MemoryGoalStore()
        goal = await store.create(goal_doc())

        await store.save_snapshot(goal.id, snapshot(2, completed=True))

        updated = await store.get(goal.id)
        assert updated.status.value == "completed"
        assert updated.completed_at == datetime(2026, 5, 2)

    async def test_get_missing_goal(self):
        from app.stores.memory_store import MemoryGoalStore

        assert await MemoryGoalStore().get("missing") is None


@pytest.mark.asyncio
class TestMongoGoalStore:
    """Tests for the MongoDB goal store."""

    def _store(self, mock_goals):
        from app.stores.mongo_store import MongoGoalStore

        mock_db = MagicMock()
        mock_db.__getitem__.return_value = mock_goals
        return MongoGoalStore(mock_db)

    async def test_get_with_invalid_id_skips_query(self):
        mock_goals = MagicMock()
        mock_goals.find_one = AsyncMock()

        store = self._store(mock_goals)

        assert await store.get("not-an-object-id") is None
        mock_goals.find_one.assert_not_called()

    async def test_get_converts_stored_dates(self):
        doc = goal_doc(estimated_completion_date=datetime(2026, 6, 1))
        mock_goals = MagicMock()
        mock_goals.find_one = AsyncMock(return_value=doc)

        store = self._store(mock_goals)
        goal = await store.get(str(doc["_id"]))

        assert goal.id == str(doc["_id"])
        assert goal.estimated_completion_date == date(2026, 6, 1)
        assert goal.milestones[0].goal_id == goal.id

    async def test_save_snapshot_is_conditional_on_sequence(self):
        mock_goals = MagicMock()
        mock_goals.update_one = AsyncMock(return_value=MagicMock(matched_count=1, modified_count=1))

        store = self._store(mock_goals)
        goal_id = str(ObjectId())
        written = await store.save_snapshot(goal_id, snapshot(7))

        query, update = mock_goals.update_one.call_args[0]
        assert written is True
        assert query["ledger_sequence"] == {"$lte": 7}
        assert update["$set"]["current_value"] == 600
        assert update["$set"]["estimated_completion_date"] == datetime(2026, 6, 1)
        assert "status" not in update["$set"]

    async def test_save_snapshot_skipped_when_newer_stored(self):
        mock_goals = MagicMock()
        mock_goals.update_one = AsyncMock(return_value=MagicMock(matched_count=0, modified_count=0))

        store = self._store(mock_goals)

        assert await store.save_snapshot(str(ObjectId()), snapshot(2)) is False

    async def test_create_assigns_id_before_insert(self):
        mock_goals = MagicMock()
        mock_goals.insert_one = AsyncMock()

        store = self._store(mock_goals)
        doc = goal_doc()
        del doc["_id"]
        goal = await store.create(doc)

        inserted = mock_goals.insert_one.call_args[0][0]
        assert isinstance(inserted["_id"], ObjectId)
        assert goal.id == str(inserted["_id"])
        assert "_id" not in doc

    async def test_create_retry_after_lost_ack_returns_stored_goal(self):
        doc = goal_doc()
        del doc["_id"]
        stored = {}

        async def insert_once_then_duplicate(inserted):
            if not stored:
                # First attempt lands but the acknowledgement is lost
                stored.update(inserted)
                raise AutoReconnect("connection reset")
            raise DuplicateKeyError("duplicate key")

        mock_goals = MagicMock()
        mock_goals.insert_one = AsyncMock(side_effect=insert_once_then_duplicate)
        mock_goals.find_one = AsyncMock(side_effect=lambda query: dict(stored))

        store = self._store(mock_goals)
        goal = await store.create(doc)

        first_id = mock_goals.insert_one.call_args_list[0][0][0]["_id"]
        second_id = mock_goals.insert_one.call_args_list[1][0][0]["_id"]
        assert first_id == second_id
        assert goal.id == str(first_id)
        assert mock_goals.insert_one.call_count == 2
        mock_goals.find_one.assert_called_once_with({"_id": first_id})
