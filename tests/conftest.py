"""Pytest configuration and fixtures."""
import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("STORAGE_BACKEND", "memory")

from datetime import datetime, timedelta

import pytest
import pytest_asyncio
from bson import ObjectId
from httpx import AsyncClient, ASGITransport

from app.main import app
from app.models.goal import GoalCreate, MilestoneCreate
from app.models.progress import ActionType, ProgressLogEntry
from app.services.event_publisher import EventPublisher, get_event_publisher
from app.services.goal_service import GoalService
from app.services.progress_service import ProgressService
from app.stores.memory_store import MemoryGoalStore, MemoryLedgerStore
from app.utils.auth import create_access_token


class RecordingPublisher(EventPublisher):
    """Publisher that keeps events instead of delivering them."""

    def __init__(self):
        super().__init__(urls=[])
        self.events = []

    async def publish(self, event):
        self.events.append(event)
        return 0


@pytest.fixture
def goal_store():
    return MemoryGoalStore()


@pytest.fixture
def ledger_store():
    return MemoryLedgerStore()


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def progress_service(goal_store, ledger_store, publisher):
    return ProgressService(goals=goal_store, ledger=ledger_store, publisher=publisher)


@pytest_asyncio.fixture
async def savings_goal(goal_store):
    """Goal with target 1000 and milestones at 250, 500 and 750."""
    service = GoalService(goal_store)
    return await service.create_goal(
        owner_id="user123",
        goal_create=GoalCreate(
            title="Family Vacation",
            family_id="family1",
            target_value=1000,
            currency="usd",
            milestones=[
                MilestoneCreate(title="Quarter", target_value=250, order=1),
                MilestoneCreate(title="Half", target_value=500, order=2),
                MilestoneCreate(title="Three quarters", target_value=750, order=3),
            ],
        ),
    )


@pytest.fixture
def make_entries():
    """
    Build a consistent ledger from (action_type, amount) items.

    Each item is a dict with action_type and amount, and optionally user_id,
    created_at and milestone_id. Sequence and values are chained.
    """

    def build(items, goal_id="goal1", start=None):
        start = start or datetime(2026, 1, 1, 12, 0, 0)
        entries = []
        value = 0
        for index, item in enumerate(items, start=1):
            amount = item.get("amount", 0)
            entries.append(
                ProgressLogEntry(
                    _id=str(ObjectId()),
                    goal_id=goal_id,
                    user_id=item.get("user_id", "user1"),
                    sequence=index,
                    action_type=ActionType(item["action_type"]),
                    amount=amount,
                    previous_value=value,
                    new_value=value + amount,
                    operation_id=f"op{index}",
                    milestone_id=item.get("milestone_id"),
                    created_at=item.get("created_at", start + timedelta(days=index - 1)),
                )
            )
            value += amount
        return entries

    return build


@pytest_asyncio.fixture
async def app_client(goal_store, ledger_store, publisher):
    """
    Create a test client backed by fresh in-memory stores.

    This fixture:
    - Points the storage dependencies at in-memory stores
    - Replaces the collaborator publisher with a recording one
    - Yields an async HTTP client for testing
    """
    from app.database import database

    original_goal_store = database.goal_store
    original_ledger_store = database.ledger_store
    database.goal_store = goal_store
    database.ledger_store = ledger_store
    app.dependency_overrides[get_event_publisher] = lambda: publisher

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test"
    ) as client:
        yield client

    app.dependency_overrides.clear()
    database.goal_store = original_goal_store
    database.ledger_store = original_ledger_store


@pytest.fixture
def auth_headers():
    token = create_access_token(user_id="user123")
    return {"Authorization": f"Bearer {token}"}
