"""MongoDB goal and ledger stores using Motor."""
import asyncio
import logging
from datetime import datetime
from typing import Awaitable, Callable, Optional, TypeVar

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.errors import DuplicateKeyError, PyMongoError
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config import settings
from app.exceptions import ConflictError, PersistenceError
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


logger = logging.getLogger(__name__)

T = TypeVar("T")


async def guarded(operation: Callable[[], Awaitable[T]]) -> T:
    """
    Run a storage call with a timeout, retrying transient failures with backoff.

    Driver errors and timeouts are raised as PersistenceError once the retry
    budget is spent. Domain errors raised by the operation pass through untouched.
    """

    async def attempt_once() -> T:
        try:
            return await asyncio.wait_for(operation(), timeout=settings.store_timeout_seconds)
        except asyncio.TimeoutError as e:
            raise PersistenceError("Storage call timed out") from e
        except PyMongoError as e:
            raise PersistenceError(f"Storage unavailable: {e}") from e

    result = None
    async for attempt in AsyncRetrying(
        retry=retry_if_exception_type(PersistenceError),
        wait=wait_exponential(multiplier=0.1, max=settings.persistence_retry_max_wait),
        stop=stop_after_attempt(settings.persistence_retry_attempts),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    ):
        with attempt:
            result = await attempt_once()
    return result


async def ensure_indexes(db) -> None:
    """Create the indexes the stores rely on."""
    await db["progress_logs"].create_index(
        [("goal_id", ASCENDING), ("sequence", ASCENDING)],
        unique=True,
        name="goal_sequence_unique",
    )
    await db["goals"].create_index([("family_id", ASCENDING)], name="family_id")


class MongoLedgerStore:
    """Ledger backed by the ``progress_logs`` collection."""

    def __init__(self, db):
        """Initialize store with database connection."""
        self.db = db
        self.progress_logs = db["progress_logs"]

    async def _head(self, goal_id: str) -> Optional[dict]:
        return await self.progress_logs.find_one(
            {"goal_id": goal_id},
            sort=[("sequence", DESCENDING)],
        )

    async def append(self, entry: ProgressLogEntryCreate) -> ProgressLogEntry:
        """
        Append a ledger entry with optimistic concurrency.

        The unique (goal_id, sequence) index makes the insert itself the
        serialization point: of two writers that read the same head, only one
        insert succeeds and the other sees a ConflictError.

        Args:
            entry: Append request with the caller's expected head

        Returns:
            The stored entry

        Raises:
            ConflictError: If the head moved
            PersistenceError: If storage is unavailable
        """

        async def operation() -> ProgressLogEntry:
            head = await self._head(entry.goal_id)
            own_entry = check_head(head, entry)
            if own_entry is not None:
                return doc_to_entry(own_entry)

            doc = entry_to_doc(entry, created_at=datetime.utcnow())
            try:
                result = await self.progress_logs.insert_one(doc)
            except DuplicateKeyError:
                # Lost the race for this sequence number
                logger.info(
                    "Ledger append lost race for goal %s at sequence %s",
                    entry.goal_id,
                    doc["sequence"],
                )
                own_entry = check_head(await self._head(entry.goal_id), entry)
                if own_entry is not None:
                    return doc_to_entry(own_entry)
                raise ConflictError(entry.goal_id, entry.expected_sequence)
            doc["_id"] = result.inserted_id
            return doc_to_entry(doc)

        return await guarded(operation)

    async def list_since(self, goal_id: str, cursor: int = 0) -> list[ProgressLogEntry]:
        """List entries after ``cursor`` in sequence order."""

        async def operation() -> list[dict]:
            docs = self.progress_logs.find(
                {"goal_id": goal_id, "sequence": {"$gt": cursor}}
            ).sort("sequence", ASCENDING)
            return await docs.to_list(length=None)

        return [doc_to_entry(doc) for doc in await guarded(operation)]


class MongoGoalStore:
    """Goal documents backed by the ``goals`` collection."""

    def __init__(self, db):
        """Initialize store with database connection."""
        self.db = db
        self.goals = db["goals"]

    @staticmethod
    def _object_id(goal_id: str) -> Optional[ObjectId]:
        try:
            return ObjectId(goal_id)
        except (InvalidId, TypeError):
            return None

    async def create(self, goal_doc: dict) -> Goal:
        """
        Insert a goal document and return the Goal.

        The id is fixed before the first attempt, so a retry after an
        unacknowledged insert finds the stored goal instead of failing.
        """
        doc = dict(goal_doc)
        doc.setdefault("_id", ObjectId())

        async def operation():
            try:
                await self.goals.insert_one(doc)
            except DuplicateKeyError:
                stored = await self.goals.find_one({"_id": doc["_id"]})
                if stored is None:
                    raise
                logger.info("Goal %s was stored by an earlier attempt", doc["_id"])
                return stored
            return doc

        return doc_to_goal(await guarded(operation))

    async def get(self, goal_id: str) -> Optional[Goal]:
        """Get a goal by id, or None if it does not exist."""
        object_id = self._object_id(goal_id)
        if object_id is None:
            return None

        async def operation():
            return await self.goals.find_one({"_id": object_id})

        doc = await guarded(operation)
        return doc_to_goal(doc) if doc else None

    async def list_by_family(self, family_id: str) -> list[Goal]:
        """List goals owned by a family."""

        async def operation():
            cursor = self.goals.find({"family_id": family_id}).sort("created_at", ASCENDING)
            return await cursor.to_list(length=None)

        return [doc_to_goal(doc) for doc in await guarded(operation)]

    async def list_ids(self) -> list[str]:
        """List all goal ids."""

        async def operation():
            cursor = self.goals.find({}, {"_id": 1})
            return await cursor.to_list(length=None)

        return [str(doc["_id"]) for doc in await guarded(operation)]

    async def update(self, goal_id: str, fields: dict) -> Optional[Goal]:
        """Set fields on a goal and return the updated Goal, or None if missing."""
        object_id = self._object_id(goal_id)
        if object_id is None:
            return None

        update_doc = dict(fields)
        update_doc["updated_at"] = datetime.utcnow()

        async def operation():
            return await self.goals.find_one_and_update(
                {"_id": object_id},
                {"$set": update_doc},
                return_document=ReturnDocument.AFTER,
            )

        doc = await guarded(operation)
        return doc_to_goal(doc) if doc else None

    async def save_snapshot(self, goal_id: str, snapshot: GoalSnapshotUpdate) -> bool:
        """
        Write the materialized snapshot.

        The write is conditional on the stored ledger_sequence not being ahead of
        the snapshot, so a slow writer never regresses a newer view.

        Returns:
            True if the snapshot was written
        """
        object_id = self._object_id(goal_id)
        if object_id is None:
            return False

        update_doc = snapshot_to_fields(snapshot)
        update_doc["updated_at"] = datetime.utcnow()

        async def operation():
            return await self.goals.update_one(
                {
                    "_id": object_id,
                    "ledger_sequence": {"$lte": snapshot.ledger_sequence},
                },
                {"$set": update_doc},
            )

        result = await guarded(operation)
        return result.modified_count > 0 or result.matched_count > 0
