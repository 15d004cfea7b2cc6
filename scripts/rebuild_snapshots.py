"""Rebuild goal progress snapshots by replaying each goal's ledger.

Usage:
    python scripts/rebuild_snapshots.py \\
        --mongodb-url mongodb://localhost:27017 \\
        [--db-name goal_progress] [--goal-id <goal-id>]

Reads the same environment (.env) as the API for JWT and storage settings.
"""
import argparse
import asyncio
import sys
from pathlib import Path
from typing import Optional

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from motor.motor_asyncio import AsyncIOMotorClient
from app.exceptions import ProgressError
from app.services.event_publisher import EventPublisher
from app.services.progress_service import ProgressService
from app.stores.mongo_store import MongoGoalStore, MongoLedgerStore


async def rebuild(mongodb_url: str, db_name: str, goal_id: Optional[str] = None) -> dict:
    """Replay ledgers and rewrite snapshots; return counts."""
    client = AsyncIOMotorClient(mongodb_url)
    db = client[db_name]

    goals = MongoGoalStore(db)
    service = ProgressService(
        goals=goals,
        ledger=MongoLedgerStore(db),
        publisher=EventPublisher(urls=[]),
    )

    stats = {"total": 0, "success": 0, "failed": 0}
    try:
        goal_ids = [goal_id] if goal_id else await goals.list_ids()

        for current_id in goal_ids:
            stats["total"] += 1
            try:
                snapshot = await service.rebuild_snapshot(current_id)
            except ProgressError as e:
                stats["failed"] += 1
                print(f"  ✗ {current_id}: {e}")
                continue
            stats["success"] += 1
            print(
                f"  ✓ {current_id}: value={snapshot.current_value} "
                f"({snapshot.percentage}%) sequence={snapshot.sequence}"
            )
    finally:
        client.close()

    return stats


def main():
    parser = argparse.ArgumentParser(description="Rebuild goal progress snapshots from the ledger")
    parser.add_argument("--mongodb-url", required=True, help="MongoDB connection URL")
    parser.add_argument("--db-name", default="goal_progress", help="Database name")
    parser.add_argument("--goal-id", help="Only rebuild this goal")
    args = parser.parse_args()

    stats = asyncio.run(rebuild(args.mongodb_url, args.db_name, args.goal_id))
    print(f"\nRebuilt {stats['success']}/{stats['total']} goals ({stats['failed']} failed)")
    sys.exit(1 if stats["failed"] else 0)


if __name__ == "__main__":
    main()
