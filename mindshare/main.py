import argparse
import asyncio
import logging
import traceback
from dataclasses import asdict, is_dataclass
from enum import Enum
from typing import Optional

from mindshare.config import Config
from mindshare.database.database import Database
from mindshare.database.snapshot_store import SnapshotStore
from mindshare.services.fetch_client import MindshareFetchClient
from mindshare.services.leaderboard_cache import LeaderboardCache
from mindshare.services.mindshare_service import MindshareService
from mindshare.services.scheduler import TriggerCoordinator
from mindshare.utils.logger import setup_logger

class MindshareTracker:
    """Composition root: builds every component once and wires them together"""

    def __init__(self, database_url: Optional[str] = None):
        self.logger = setup_logger(__name__)
        self.db = Database(database_url)
        self.cache = LeaderboardCache()
        self.fetch_client = MindshareFetchClient(self.cache)
        self.store = SnapshotStore(self.db)
        self.coordinator = TriggerCoordinator(self.fetch_client, self.store)
        self.service = MindshareService(self.fetch_client, self.store, self.coordinator)

    async def setup(self):
        """Called when the tracker is starting up"""
        self.logger.info("Setting up mindshare tracker...")
        await self.db.initialize()
        self.logger.info("Mindshare tracker setup complete!")

    async def serve(self):
        """Run the scheduled triggers until cancelled"""
        await self.setup()
        self.coordinator.start()

        info = self.coordinator.schedule_info()
        for name, trigger in info['triggers'].items():
            self.logger.info(f"{name}: {trigger['rule']}, next run {trigger['next_fire_time']:%Y-%m-%d %H:%M:%S %Z}")

        try:
            await asyncio.Event().wait()
        finally:
            await self.coordinator.stop()

    async def close(self):
        """Cleanup when the tracker is shutting down"""
        self.logger.info("Shutting down mindshare tracker...")
        await self.coordinator.stop()
        await self.fetch_client.aclose()
        await self.db.close()


def _printable(value):
    if is_dataclass(value) and not isinstance(value, type):
        return _printable(asdict(value))
    if isinstance(value, dict):
        return {k: _printable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_printable(v) for v in value]
    if isinstance(value, Enum):
        return value.value
    return value


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Collect and store mindshare leaderboard snapshots")
    parser.add_argument('--database-url', help="Override DATABASE_URL")
    subparsers = parser.add_subparsers(dest='command', required=True)

    subparsers.add_parser('serve', help="Run the weekly collection and daily cleanup schedule")
    subparsers.add_parser('collect', help="Run a collection now")
    cleanup = subparsers.add_parser('cleanup', help="Prune old snapshots now")
    cleanup.add_argument('--weeks', type=int, default=None, help="Retention window in weeks")
    subparsers.add_parser('stats', help="Show database statistics")
    subparsers.add_parser('schedule', help="Show next scheduled runs")
    subparsers.add_parser('init-db', help="Create tables and indexes")
    dry_run = subparsers.add_parser('dry-run', help="Fetch and parse without saving")
    dry_run.add_argument('--limit', type=int, default=10)
    return parser


async def run_command(tracker: MindshareTracker, args) -> int:
    """Execute one CLI command and print its outcome; returns the exit code"""
    if args.command == 'serve':
        await tracker.serve()
        return 0

    await tracker.setup()
    service = tracker.service

    if args.command == 'init-db':
        result = await service.stats()
    elif args.command == 'collect':
        result = await service.run_collection_now()
    elif args.command == 'cleanup':
        result = await service.run_retention_now(args.weeks)
    elif args.command == 'stats':
        result = await service.stats()
    elif args.command == 'schedule':
        result = await service.schedule_countdown()
    elif args.command == 'dry-run':
        result = await service.dry_run(args.limit)
    else:
        raise ValueError(f"Unknown command: {args.command}")

    print(f"{result.status.value} at {result.timestamp.isoformat()}")
    if result.error:
        print(f"error ({result.error_type}): {result.error}")
    if result.data is not None:
        print(_printable(result.data))
    if args.command == 'dry-run' and result.success:
        print(result.data.data['metrics'].formatted())
    return 0 if result.success else 1


async def main(argv=None) -> int:
    """Main entry point"""
    args = build_parser().parse_args(argv)
    Config.validate()

    tracker = MindshareTracker(args.database_url)
    try:
        return await run_command(tracker, args)
    except KeyboardInterrupt:
        return 0
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        traceback.print_exc()
        return 1
    finally:
        await tracker.close()

def cli():
    raise SystemExit(asyncio.run(main()))

if __name__ == "__main__":
    cli()
