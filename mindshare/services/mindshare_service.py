"""
Mindshare service facade.

The single surface the outer layers (HTTP routes, CLI) call into. Every
method validates its arguments before touching the network or the store and
returns an OperationResult instead of raising, so callers only have to
translate outcomes into their own transport.
"""

import time
from datetime import date
from typing import Optional, Sequence

from mindshare.constants import PaginationConstants
from mindshare.data_models.leaderboard import Entry, LeaderboardWindow, Metrics, SyncStatus
from mindshare.data_models.results import OperationResult
from mindshare.utils.exceptions import InvalidRequestError, MindshareError
from mindshare.utils.logger import setup_logger

logger = setup_logger(__name__)


def validate_pagination(limit: int, offset: int):
    """Reject out-of-range pagination before any query runs."""
    if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= PaginationConstants.MAX_PAGE_SIZE:
        raise InvalidRequestError(f"limit must be between 1 and {PaginationConstants.MAX_PAGE_SIZE}")
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        raise InvalidRequestError("offset must be a non-negative integer")


def _validate_retention(retention_weeks: Optional[int]):
    if retention_weeks is None:
        return
    if not isinstance(retention_weeks, int) or isinstance(retention_weeks, bool) or retention_weeks < 1:
        raise InvalidRequestError("retention_weeks must be at least 1")


class MindshareService:
    """Outcome-returning wrapper around the fetch client, store and coordinator."""

    def __init__(self, fetch_client, store, coordinator):
        self.fetch_client = fetch_client
        self.store = store
        self.coordinator = coordinator
        self._started_at = time.monotonic()

    async def _call(self, operation: str, coro_factory, not_found: Optional[str] = None) -> OperationResult:
        try:
            data = await coro_factory()
        except MindshareError as e:
            logger.warning(f"{operation} failed: {e}")
            return OperationResult.failure(e)
        except Exception as e:
            logger.error(f"Unexpected error in {operation}: {e}", exc_info=True)
            return OperationResult.failure(e)

        if data is None and not_found:
            return OperationResult.not_found(not_found)
        return OperationResult.ok(data)

    # Fetch client

    async def acquire(self, window="7d", diagnostic: bool = False) -> OperationResult:
        async def op():
            parsed = LeaderboardWindow.parse(window)
            return await self.fetch_client.acquire(parsed, diagnostic=diagnostic)
        return await self._call("acquire", op)

    async def invalidate(self) -> OperationResult:
        self.fetch_client.invalidate()
        return OperationResult.ok({'invalidated': True})

    # Snapshot store

    async def save(self, metrics: Metrics, entries: Sequence[Entry], window="7d",
                   is_live: bool = True, collection_date: Optional[date] = None) -> OperationResult:
        async def op():
            parsed = LeaderboardWindow.parse(window)
            return await self.store.save(metrics, entries, parsed, is_live, collection_date)
        return await self._call("save", op)

    async def latest(self, window="7d") -> OperationResult:
        async def op():
            parsed = LeaderboardWindow.parse(window)
            return await self.store.latest(parsed)
        return await self._call("latest", op, not_found=f"No snapshots found for window {window}")

    async def entries(self, snapshot_id: str,
                      limit: int = PaginationConstants.DEFAULT_ENTRY_PAGE_SIZE,
                      offset: int = 0) -> OperationResult:
        async def op():
            validate_pagination(limit, offset)
            return await self.store.entries(snapshot_id, limit, offset)
        return await self._call("entries", op)

    async def entry_count(self, snapshot_id: str) -> OperationResult:
        return await self._call("entry_count", lambda: self.store.entry_count(snapshot_id))

    async def history(self, window="7d",
                      limit: int = PaginationConstants.DEFAULT_HISTORY_PAGE_SIZE,
                      offset: int = 0) -> OperationResult:
        async def op():
            parsed = LeaderboardWindow.parse(window)
            validate_pagination(limit, offset)
            return await self.store.history(parsed, limit, offset)
        return await self._call("history", op)

    async def complete(self, snapshot_id: str,
                       limit: int = PaginationConstants.DEFAULT_ENTRY_PAGE_SIZE,
                       offset: int = 0) -> OperationResult:
        async def op():
            validate_pagination(limit, offset)
            return await self.store.complete(snapshot_id, limit, offset)
        return await self._call("complete", op, not_found=f"Snapshot {snapshot_id} not found")

    async def prune(self, retention_weeks: Optional[int] = None) -> OperationResult:
        async def op():
            _validate_retention(retention_weeks)
            return await self.store.prune(retention_weeks)
        return await self._call("prune", op)

    async def stats(self) -> OperationResult:
        return await self._call("stats", self.store.stats)

    async def log_sync(self, snapshot_id: str, status, items_synced: int = 0,
                       error_message: Optional[str] = None) -> OperationResult:
        async def op():
            try:
                parsed = SyncStatus(status)
            except ValueError:
                raise InvalidRequestError(f"Unknown sync status '{status}'")
            return await self.store.log_sync(snapshot_id, parsed, items_synced, error_message)
        return await self._call("log_sync", op, not_found=f"Snapshot {snapshot_id} not found")

    # Trigger coordinator

    async def run_collection_now(self) -> OperationResult:
        return self._from_run(await self.coordinator.run_collection_now())

    async def run_retention_now(self, retention_weeks: Optional[int] = None) -> OperationResult:
        try:
            _validate_retention(retention_weeks)
        except InvalidRequestError as e:
            return OperationResult.failure(e)
        return self._from_run(await self.coordinator.run_retention_now(retention_weeks))

    async def dry_run(self, limit: int = PaginationConstants.DRY_RUN_ENTRY_LIMIT) -> OperationResult:
        try:
            validate_pagination(limit, 0)
        except InvalidRequestError as e:
            return OperationResult.failure(e)
        return self._from_run(await self.coordinator.dry_run(limit))

    async def schedule_info(self) -> OperationResult:
        return OperationResult.ok(self.coordinator.schedule_info())

    async def schedule_countdown(self) -> OperationResult:
        return OperationResult.ok(self.coordinator.schedule_countdown())

    async def health(self) -> OperationResult:
        async def op():
            stats = await self.store.stats()
            info = self.coordinator.schedule_info()
            return {
                'status': 'healthy',
                'uptime_seconds': round(time.monotonic() - self._started_at, 1),
                'database': 'initialized' if stats.initialized else 'not initialized',
                'scheduler': 'active' if info['active_jobs'] else 'inactive',
            }
        return await self._call("health", op)

    @staticmethod
    def _from_run(outcome) -> OperationResult:
        return OperationResult(
            status=outcome.status,
            data=outcome,
            error=outcome.error,
            error_type=outcome.error_type,
            timestamp=outcome.finished_at,
        )
