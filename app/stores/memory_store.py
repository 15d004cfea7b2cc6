"""In-memory goal and ledger stores."""
import asyncio
import copy
from datetime import datetime
from typing import Optional

from bson import ObjectId

from app.models.goal import Goal
from app.models.progress import (
    GoalSnapshotUpdate,
    ProgressLogEntry,
    ProgressLogEntryCreate,
)
from app.stores.base import (
    check_head,
    doc_to_entry,
    doc_to_goal,
    entry_to_doc,
    snapshot_to_fields,
)


class MemoryLedgerStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._entries: dict[str, list[dict]] = {}

    async def append(self, entry: ProgressLogEntryCreate) -> ProgressLogEntry:
        async with self._lock:
            entries = self._entries.setdefault(entry.goal_id, [])
            head = entries[-1] if entries else None

            own_entry = check_head(head, entry)
            if own_entry is not None:
                return doc_to_entry(own_entry)

            doc = entry_to_doc(entry, created_at=datetime.utcnow())
            doc["_id"] = ObjectId()
            entries.append(doc)
            return doc_to_entry(doc)

    async def list_since(self, goal_id: str, cursor: int = 0) -> list[ProgressLogEntry]:
        async with self._lock:
            return [
                doc_to_entry(doc)
                for doc in self._entries.get(goal_id, [])
                if doc["sequence"] > cursor
            ]


class MemoryGoalStore:
    def __init__(self) -> None:
        self._lock = asyncio.Lock()
        self._goals: dict[str, dict] = {}

    async def create(self, goal_doc: dict) -> Goal:
        async with self._lock:
            doc = copy.deepcopy(goal_doc)
            doc["_id"] = str(ObjectId())
            self._goals[doc["_id"]] = doc
            return doc_to_goal(doc)

    async def get(self, goal_id: str) -> Optional[Goal]:
        async with self._lock:
            doc = self._goals.get(goal_id)
            return doc_to_goal(doc) if doc else None

    async def list_by_family(self, family_id: str) -> list[Goal]:
        async with self._lock:
            return [
                doc_to_goal(doc)
                for doc in self._goals.values()
                if doc["family_id"] == family_id
            ]

    async def list_ids(self) -> list[str]:
        async with self._lock:
            return list(self._goals)

    async def update(self, goal_id: str, fields: dict) -> Optional[Goal]:
        async with self._lock:
            doc = self._goals.get(goal_id)
            if not doc:
                return None
            doc.update(copy.deepcopy(fields))
            doc["updated_at"] = datetime.utcnow()
            return doc_to_goal(doc)

    async def save_snapshot(self, goal_id: str, snapshot: GoalSnapshotUpdate) -> bool:
        async with self._lock:
            doc = self._goals.get(goal_id)
            if not doc or doc.get("ledger_sequence", 0) > snapshot.ledger_sequence:
                return False
            doc.update(snapshot_to_fields(snapshot))
            doc["updated_at"] = datetime.utcnow()
            return True
