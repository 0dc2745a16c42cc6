"""
Snapshot Store - durable history of leaderboard snapshots.

Each snapshot is an immutable header row plus its ranked entry rows. Writes
go through a single transaction so concurrent readers see either the whole
snapshot or nothing. Reads against a database whose tables were never
created return empty results instead of raising.

Retention works in collection-date units: a snapshot is pruned once its
collection date is older than today minus the retention window, regardless
of when the row was physically written.
"""

import uuid
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Sequence, Union

import pytz
from sqlalchemy import select, delete, func
from sqlalchemy.exc import SQLAlchemyError

from mindshare.config import Config
from mindshare.constants import PaginationConstants, StorageConstants
from mindshare.data_models.leaderboard import (
    CompleteSnapshot, Entry, HistoryPage, LeaderboardWindow, Metrics, PruneResult,
    SnapshotHandle, SnapshotHeader, StoreStats, SyncLogHandle, SyncStatus
)
from mindshare.database.models import Snapshot, SnapshotEntry, SyncLog
from mindshare.services.base import BaseService
from mindshare.utils.exceptions import InvalidRequestError, StorageError
from mindshare.utils.logger import setup_logger

logger = setup_logger(__name__)


class SnapshotStore(BaseService):
    """Transactional save, point and range queries, and retention pruning."""

    def __init__(self, database, timezone_name: Optional[str] = None):
        super().__init__(database)
        self.tz = pytz.timezone(timezone_name or Config.SCHEDULE_TIMEZONE)
        self.logger = logger

    def today(self) -> date:
        """Current calendar day in the schedule timezone."""
        return datetime.now(self.tz).date()

    # ============================================================================
    # Writes
    # ============================================================================

    async def save(
        self,
        metrics: Metrics,
        entries: Sequence[Entry],
        window: LeaderboardWindow = LeaderboardWindow.DAYS_7,
        is_live: bool = True,
        collection_date: Optional[date] = None
    ) -> SnapshotHandle:
        """
        Save a complete snapshot of metrics and entries.

        The header and every entry row are written inside one transaction. If
        anything fails part way, the transaction rolls back and no row for
        the new snapshot id is visible.

        Args:
            metrics: Summary metrics for the window
            entries: Ranked entries; ranks must be exactly 1..N
            window: Window the data was collected for
            is_live: Whether the data came from a fresh upstream fetch
            collection_date: Calendar day to record, defaults to today

        Returns:
            SnapshotHandle describing the stored snapshot

        Raises:
            InvalidRequestError: If entry ranks are not contiguous from 1
            StorageError: If the database write fails
        """
        window = LeaderboardWindow.parse(window)
        entries = sorted(entries, key=lambda e: e.rank)
        ranks = [e.rank for e in entries]
        if ranks != list(range(1, len(entries) + 1)):
            raise InvalidRequestError("entry ranks must be unique and contiguous starting at 1")

        snapshot_id = str(uuid.uuid4())
        collection_date = collection_date or self.today()

        try:
            async with self.get_session() as session:
                session.add(Snapshot(
                    snapshot_id=snapshot_id,
                    collection_date=collection_date,
                    window_period=window.value,
                    is_live=is_live,
                    total_participants=metrics.total_participants,
                    total_activities=metrics.total_activities,
                    top_impressions=metrics.top_impressions,
                    top_engagements=metrics.top_engagements,
                ))
                await session.flush()

                for index, entry in enumerate(entries, start=1):
                    session.add(self._entry_row(snapshot_id, entry))
                    if index % StorageConstants.ENTRY_FLUSH_BATCH == 0:
                        await session.flush()
                # Commit happens when the transaction scope exits
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to save snapshot {snapshot_id}: {e}", exc_info=True)
            raise StorageError("save", str(e)) from e

        self.logger.info(
            f"Snapshot {snapshot_id} saved: window={window.value}, "
            f"date={collection_date}, entries={len(entries)}"
        )
        return SnapshotHandle(
            snapshot_id=snapshot_id,
            collection_date=collection_date,
            window=window,
            entry_count=len(entries),
            is_live=is_live,
            metrics=metrics,
            timestamp=datetime.now(timezone.utc),
        )

    def _entry_row(self, snapshot_id: str, entry: Entry) -> SnapshotEntry:
        return SnapshotEntry(
            snapshot_id=snapshot_id,
            rank=entry.rank,
            username=entry.username,
            mindshare=entry.mindshare,
            activity_count=entry.activity_count,
            impressions=entry.impressions,
            engagements=entry.engagements,
            profile_url=entry.profile_url,
        )

    async def log_sync(
        self,
        snapshot_id: str,
        status: SyncStatus,
        items_synced: int = 0,
        error_message: Optional[str] = None
    ) -> Optional[SyncLogHandle]:
        """
        Append a sync log record for an existing snapshot.

        Returns:
            SyncLogHandle, or None when the snapshot does not exist
        """
        status = SyncStatus(status)
        if items_synced < 0:
            raise InvalidRequestError("items_synced must not be negative")

        try:
            async with self.get_session() as session:
                exists = await session.scalar(
                    select(func.count(Snapshot.id)).where(Snapshot.snapshot_id == snapshot_id)
                )
                if not exists:
                    return None

                log = SyncLog(
                    snapshot_id=snapshot_id,
                    sync_status=status.value,
                    items_synced=items_synced,
                    error_message=error_message,
                )
                session.add(log)
                await session.flush()
                log_id = log.id
        except SQLAlchemyError as e:
            raise StorageError("log_sync", str(e)) from e

        return SyncLogHandle(
            log_id=log_id,
            snapshot_id=snapshot_id,
            status=status,
            items_synced=items_synced,
            timestamp=datetime.now(timezone.utc),
        )

    async def prune(self, retention_weeks: Optional[int] = None, today: Optional[date] = None) -> PruneResult:
        """
        Delete snapshots whose collection date is older than the retention window.

        Entries and sync logs are deleted before their headers, all in one
        transaction. Running it with nothing to delete is a no-op.

        Args:
            retention_weeks: Weeks of history to keep, defaults to Config.RETENTION_WEEKS
            today: Reference day, defaults to today in the schedule timezone

        Returns:
            PruneResult with deleted row counts and the cutoff date
        """
        retention_weeks = Config.RETENTION_WEEKS if retention_weeks is None else retention_weeks
        if retention_weeks < 0:
            raise InvalidRequestError("retention_weeks must not be negative")

        cutoff_date = (today or self.today()) - timedelta(weeks=retention_weeks)

        if not await self.db.tables_ready():
            return PruneResult(deleted_snapshots=0, deleted_entries=0, cutoff_date=cutoff_date)

        try:
            async with self.get_session() as session:
                result = await session.execute(
                    select(Snapshot.snapshot_id).where(Snapshot.collection_date < cutoff_date)
                )
                snapshot_ids = list(result.scalars().all())

                if not snapshot_ids:
                    return PruneResult(deleted_snapshots=0, deleted_entries=0, cutoff_date=cutoff_date)

                entry_result = await session.execute(
                    delete(SnapshotEntry).where(SnapshotEntry.snapshot_id.in_(snapshot_ids))
                )
                log_result = await session.execute(
                    delete(SyncLog).where(SyncLog.snapshot_id.in_(snapshot_ids))
                )
                snapshot_result = await session.execute(
                    delete(Snapshot).where(Snapshot.snapshot_id.in_(snapshot_ids))
                )
        except SQLAlchemyError as e:
            self.logger.error(f"Failed to prune snapshots before {cutoff_date}: {e}", exc_info=True)
            raise StorageError("prune", str(e)) from e

        pruned = PruneResult(
            deleted_snapshots=snapshot_result.rowcount,
            deleted_entries=entry_result.rowcount,
            cutoff_date=cutoff_date,
            deleted_sync_logs=log_result.rowcount,
        )
        self.logger.info(
            f"Pruned {pruned.deleted_snapshots} snapshots and {pruned.deleted_entries} entries "
            f"collected before {cutoff_date}"
        )
        return pruned

    # ============================================================================
    # Reads
    # ============================================================================

    async def latest(self, window: LeaderboardWindow = LeaderboardWindow.DAYS_7) -> Optional[SnapshotHeader]:
        """Get the most recent snapshot for a window (collection date, then write order)."""
        window = LeaderboardWindow.parse(window)
        if not await self.db.tables_ready():
            return None

        try:
            async with self.get_session() as session:
                row = await session.scalar(
                    select(Snapshot)
                    .where(Snapshot.window_period == window.value)
                    .order_by(Snapshot.collection_date.desc(), Snapshot.id.desc())
                    .limit(1)
                )
                return self._header(row) if row else None
        except SQLAlchemyError as e:
            raise StorageError("latest", str(e)) from e

    async def entries(
        self,
        snapshot_id: str,
        limit: int = PaginationConstants.DEFAULT_ENTRY_PAGE_SIZE,
        offset: int = 0
    ) -> List[Entry]:
        """Get a page of entries for a snapshot ordered by ascending rank."""
        if not await self.db.tables_ready():
            return []

        try:
            async with self.get_session() as session:
                result = await session.execute(
                    select(SnapshotEntry)
                    .where(SnapshotEntry.snapshot_id == snapshot_id)
                    .order_by(SnapshotEntry.rank.asc())
                    .limit(limit)
                    .offset(offset)
                )
                return [self._entry(row) for row in result.scalars()]
        except SQLAlchemyError as e:
            raise StorageError("entries", str(e)) from e

    async def entry_count(self, snapshot_id: str) -> int:
        """Get total entry count for a snapshot."""
        if not await self.db.tables_ready():
            return 0

        try:
            async with self.get_session() as session:
                count = await session.scalar(
                    select(func.count(SnapshotEntry.id)).where(SnapshotEntry.snapshot_id == snapshot_id)
                )
                return count or 0
        except SQLAlchemyError as e:
            raise StorageError("entry_count", str(e)) from e

    async def history(
        self,
        window: LeaderboardWindow = LeaderboardWindow.DAYS_7,
        limit: int = PaginationConstants.DEFAULT_HISTORY_PAGE_SIZE,
        offset: int = 0
    ) -> HistoryPage:
        """Get paginated snapshot headers for a window, newest first, with the total count."""
        window = LeaderboardWindow.parse(window)
        if not await self.db.tables_ready():
            return HistoryPage(snapshots=[], total_count=0, limit=limit, offset=offset)

        try:
            async with self.get_session() as session:
                total_count = await session.scalar(
                    select(func.count(Snapshot.id)).where(Snapshot.window_period == window.value)
                )
                result = await session.execute(
                    select(Snapshot)
                    .where(Snapshot.window_period == window.value)
                    .order_by(Snapshot.collection_date.desc(), Snapshot.id.desc())
                    .limit(limit)
                    .offset(offset)
                )
                snapshots = [self._header(row) for row in result.scalars()]
        except SQLAlchemyError as e:
            raise StorageError("history", str(e)) from e

        return HistoryPage(snapshots=snapshots, total_count=total_count or 0, limit=limit, offset=offset)

    async def complete(
        self,
        snapshot_id: str,
        limit: int = PaginationConstants.DEFAULT_ENTRY_PAGE_SIZE,
        offset: int = 0
    ) -> Optional[CompleteSnapshot]:
        """
        Get a snapshot header together with a page of its entries.

        Returns:
            CompleteSnapshot, or None when the snapshot does not exist. A
            snapshot with no entries is returned with an empty entry list.
        """
        if not await self.db.tables_ready():
            return None

        try:
            async with self.get_session() as session:
                row = await session.scalar(select(Snapshot).where(Snapshot.snapshot_id == snapshot_id))
                if row is None:
                    return None

                result = await session.execute(
                    select(SnapshotEntry)
                    .where(SnapshotEntry.snapshot_id == snapshot_id)
                    .order_by(SnapshotEntry.rank.asc())
                    .limit(limit)
                    .offset(offset)
                )
                entries = [self._entry(e) for e in result.scalars()]
                total_entries = await session.scalar(
                    select(func.count(SnapshotEntry.id)).where(SnapshotEntry.snapshot_id == snapshot_id)
                )
                header = self._header(row)
        except SQLAlchemyError as e:
            raise StorageError("complete", str(e)) from e

        return CompleteSnapshot(header=header, entries=entries, total_entries=total_entries or 0)

    async def stats(self) -> StoreStats:
        """Get aggregate counts; zeroed when the schema has not been created yet."""
        if not await self.db.tables_ready():
            self.logger.debug("Tables do not exist yet, returning empty stats")
            return StoreStats()

        try:
            async with self.get_session() as session:
                snapshot_count = await session.scalar(select(func.count(Snapshot.id)))
                entry_count = await session.scalar(select(func.count(SnapshotEntry.id)))
                sync_log_count = await session.scalar(select(func.count(SyncLog.id)))
                most_recent = await session.scalar(
                    select(Snapshot.collection_date)
                    .order_by(Snapshot.collection_date.desc(), Snapshot.id.desc())
                    .limit(1)
                )
        except SQLAlchemyError as e:
            raise StorageError("stats", str(e)) from e

        return StoreStats(
            snapshot_count=snapshot_count or 0,
            entry_count=entry_count or 0,
            most_recent_collection_date=most_recent,
            sync_log_count=sync_log_count or 0,
            initialized=True,
        )

    # ============================================================================
    # Row mapping
    # ============================================================================

    @staticmethod
    def _window(value: str) -> Union[LeaderboardWindow, str]:
        try:
            return LeaderboardWindow(value)
        except ValueError:
            # Written under a window set that is no longer offered
            return value

    @staticmethod
    def _header(row: Snapshot) -> SnapshotHeader:
        return SnapshotHeader(
            snapshot_id=row.snapshot_id,
            collection_date=row.collection_date,
            window=SnapshotStore._window(row.window_period),
            is_live=bool(row.is_live),
            metrics=Metrics(
                total_participants=row.total_participants,
                total_activities=row.total_activities,
                top_impressions=row.top_impressions,
                top_engagements=row.top_engagements,
            ),
            created_at=row.created_at,
        )

    @staticmethod
    def _entry(row: SnapshotEntry) -> Entry:
        return Entry(
            rank=row.rank,
            username=row.username,
            mindshare=row.mindshare,
            activity_count=row.activity_count,
            impressions=row.impressions,
            engagements=row.engagements,
            profile_url=row.profile_url,
        )
