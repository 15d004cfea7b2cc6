"""Storage connection management for MongoDB (Motor) or the in-memory backend."""
import logging

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase

from app.config import settings
from app.stores.base import GoalStore, LedgerStore
from app.stores.memory_store import MemoryGoalStore, MemoryLedgerStore
from app.stores.mongo_store import MongoGoalStore, MongoLedgerStore, ensure_indexes


logger = logging.getLogger(__name__)


class Database:
    """Storage connection manager."""

    client: AsyncIOMotorClient | None = None
    db: AsyncIOMotorDatabase | None = None
    goal_store: GoalStore | None = None
    ledger_store: LedgerStore | None = None

    async def connect(self) -> None:
        """Connect the configured storage backend."""
        if settings.storage_backend == "memory":
            self.goal_store = MemoryGoalStore()
            self.ledger_store = MemoryLedgerStore()
            logger.info("Using in-memory storage backend")
            return

        self.client = AsyncIOMotorClient(
            settings.mongodb_url,
            serverSelectionTimeoutMS=int(settings.store_timeout_seconds * 1000),
        )
        self.db = self.client[settings.mongodb_db_name]
        await ensure_indexes(self.db)
        self.goal_store = MongoGoalStore(self.db)
        self.ledger_store = MongoLedgerStore(self.db)
        logger.info("Connected to MongoDB: %s", settings.mongodb_db_name)

    async def disconnect(self) -> None:
        """Disconnect from MongoDB."""
        if self.client:
            self.client.close()
            logger.info("Disconnected from MongoDB")
        self.client = None
        self.db = None
        self.goal_store = None
        self.ledger_store = None


# Global database instance
database = Database()


async def get_goal_store() -> GoalStore:
    """Dependency to get the goal store."""
    if database.goal_store is None:
        raise RuntimeError("Database not connected")
    return database.goal_store


async def get_ledger_store() -> LedgerStore:
    """Dependency to get the ledger store."""
    if database.ledger_store is None:
        raise RuntimeError("Database not connected")
    return database.ledger_store
