from datetime import date, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from mindshare.constants import StorageConstants
from mindshare.data_models.leaderboard import LeaderboardWindow, SyncStatus
from mindshare.database.database import Database
from mindshare.database.snapshot_store import SnapshotStore
from mindshare.utils.exceptions import InvalidRequestError, StorageError
from mindshare.utils.payload_parser import extract_entries, extract_metrics

from conftest import make_payload

TODAY = date(2024, 6, 5)


def sample(entry_count=3, **metrics):
    payload = make_payload(entry_count=entry_count, **metrics)
    return extract_metrics(payload), extract_entries(payload)


async def test_save_writes_header_and_entries(store):
    metrics, entries = sample(entry_count=5)

    handle = await store.save(metrics, entries, LeaderboardWindow.DAYS_7, is_live=True, collection_date=TODAY)

    assert handle.entry_count == 5
    assert handle.collection_date == TODAY
    assert len(handle.snapshot_id) == 36

    header = await store.latest(LeaderboardWindow.DAYS_7)
    assert header.snapshot_id == handle.snapshot_id
    assert header.metrics == metrics
    assert header.is_live is True
    assert await store.entry_count(handle.snapshot_id) == 5


async def test_snapshot_ids_are_unique(store):
    metrics, entries = sample()
    first = await store.save(metrics, entries, collection_date=TODAY)
    second = await store.save(metrics, entries, collection_date=TODAY)
    assert first.snapshot_id != second.snapshot_id


async def test_entries_are_ordered_and_contiguous(store):
    metrics, entries = sample(entry_count=12)
    handle = await store.save(metrics, list(reversed(entries)), collection_date=TODAY)

    stored = await store.entries(handle.snapshot_id, limit=250, offset=0)
    assert [e.rank for e in stored] == list(range(1, 13))

    page = await store.entries(handle.snapshot_id, limit=5, offset=5)
    assert [e.rank for e in page] == [6, 7, 8, 9, 10]


async def test_save_rejects_gapped_ranks_without_writing(store):
    metrics, entries = sample(entry_count=3)
    with pytest.raises(InvalidRequestError):
        await store.save(metrics, [entries[0], entries[2]], collection_date=TODAY)

    stats = await store.stats()
    assert stats.snapshot_count == 0
    assert stats.entry_count == 0


async def test_save_is_all_or_nothing(store, monkeypatch):
    metrics, entries = sample(entry_count=6)
    monkeypatch.setattr(StorageConstants, "ENTRY_FLUSH_BATCH", 1)

    original_row = SnapshotStore._entry_row
    written = []

    def failing_row(self, snapshot_id, entry):
        if len(written) == 3:
            raise OperationalError("INSERT INTO mindshare_entries", {}, Exception("disk I/O error"))
        written.append(snapshot_id)
        return original_row(self, snapshot_id, entry)

    monkeypatch.setattr(SnapshotStore, "_entry_row", failing_row)

    with pytest.raises(StorageError):
        await store.save(metrics, entries, collection_date=TODAY)

    snapshot_id = written[0]
    assert await store.complete(snapshot_id) is None
    assert await store.entry_count(snapshot_id) == 0
    assert await store.latest(LeaderboardWindow.DAYS_7) is None
    stats = await store.stats()
    assert stats.snapshot_count == 0
    assert stats.entry_count == 0


async def test_latest_orders_by_date_then_write_order(store):
    metrics, entries = sample()
    await store.save(metrics, entries, collection_date=TODAY - timedelta(days=7))
    older_same_day = await store.save(metrics, entries, collection_date=TODAY)
    newest = await store.save(metrics, entries, collection_date=TODAY)
    # Backfilled snapshot written last but collected earlier
    await store.save(metrics, entries, collection_date=TODAY - timedelta(days=14))

    latest = await store.latest(LeaderboardWindow.DAYS_7)
    assert latest.snapshot_id == newest.snapshot_id
    assert latest.snapshot_id != older_same_day.snapshot_id


async def test_latest_is_per_window(store):
    metrics, entries = sample()
    await store.save(metrics, entries, LeaderboardWindow.DAYS_30, collection_date=TODAY)

    assert await store.latest(LeaderboardWindow.DAYS_7) is None
    assert (await store.latest(LeaderboardWindow.DAYS_30)).window is LeaderboardWindow.DAYS_30


async def test_history_pages_partition_results(store):
    metrics, entries = sample(entry_count=1)
    for weeks_ago in range(5):
        await store.save(metrics, entries, collection_date=TODAY - timedelta(weeks=weeks_ago))
    await store.save(metrics, entries, LeaderboardWindow.DAYS_30, collection_date=TODAY)

    everything = await store.history(LeaderboardWindow.DAYS_7, limit=10, offset=0)
    first = await store.history(LeaderboardWindow.DAYS_7, limit=2, offset=0)
    second = await store.history(LeaderboardWindow.DAYS_7, limit=2, offset=2)

    assert everything.total_count == 5
    assert first.total_count == second.total_count == 5
    first_ids = [s.snapshot_id for s in first.snapshots]
    second_ids = [s.snapshot_id for s in second.snapshots]
    assert not set(first_ids) & set(second_ids)
    assert first_ids + second_ids == [s.snapshot_id for s in everything.snapshots[:4]]
    dates = [s.collection_date for s in everything.snapshots]
    assert dates == sorted(dates, reverse=True)


async def test_complete_distinguishes_missing_from_empty(store):
    metrics, _ = sample()
    empty = await store.save(metrics, [], collection_date=TODAY)

    snapshot = await store.complete(empty.snapshot_id)
    assert snapshot is not None
    assert snapshot.entries == []
    assert snapshot.total_entries == 0

    assert await store.complete("00000000-0000-0000-0000-000000000000") is None


async def test_complete_returns_page_and_total(store):
    metrics, entries = sample(entry_count=8)
    handle = await store.save(metrics, entries, collection_date=TODAY)

    snapshot = await store.complete(handle.snapshot_id, limit=3, offset=3)
    assert [e.rank for e in snapshot.entries] == [4, 5, 6]
    assert snapshot.total_entries == 8
    assert snapshot.header.snapshot_id == handle.snapshot_id


async def test_prune_deletes_old_snapshots_and_is_idempotent(store):
    metrics, entries = sample(entry_count=4)
    old = await store.save(metrics, entries, collection_date=TODAY - timedelta(weeks=13))
    await store.log_sync(old.snapshot_id, SyncStatus.SUCCESS, items_synced=4)
    boundary = await store.save(metrics, entries, collection_date=TODAY - timedelta(weeks=12))
    recent = await store.save(metrics, entries, collection_date=TODAY)

    first = await store.prune(12, today=TODAY)
    assert first.deleted_snapshots == 1
    assert first.deleted_entries == 4
    assert first.deleted_sync_logs == 1
    assert first.cutoff_date == TODAY - timedelta(weeks=12)

    second = await store.prune(12, today=TODAY)
    assert (second.deleted_snapshots, second.deleted_entries) == (0, 0)

    assert await store.complete(old.snapshot_id) is None
    assert await store.complete(boundary.snapshot_id) is not None
    assert await store.complete(recent.snapshot_id) is not None
    assert (await store.stats()).sync_log_count == 0


async def test_prune_on_empty_store_returns_zeros(store):
    result = await store.prune(12, today=TODAY)
    assert (result.deleted_snapshots, result.deleted_entries) == (0, 0)


async def test_stats_counts_rows(store):
    metrics, entries = sample(entry_count=3)
    await store.save(metrics, entries, collection_date=TODAY - timedelta(days=1))
    handle = await store.save(metrics, entries, collection_date=TODAY)
    await store.log_sync(handle.snapshot_id, SyncStatus.PARTIAL, items_synced=2, error_message="rate limited")

    stats = await store.stats()
    assert stats.snapshot_count == 2
    assert stats.entry_count == 6
    assert stats.most_recent_collection_date == TODAY
    assert stats.sync_log_count == 1
    assert stats.initialized is True


async def test_log_sync_for_missing_snapshot_returns_none(store):
    assert await store.log_sync("missing", SyncStatus.FAILED) is None


async def test_uninitialized_store_returns_zeroed_results(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'never_initialized.db'}")
    store = SnapshotStore(db, timezone_name='UTC')
    try:
        stats = await store.stats()
        assert stats.snapshot_count == 0
        assert stats.entry_count == 0
        assert stats.most_recent_collection_date is None
        assert stats.initialized is False

        # The file now exists but the tables were never created
        assert await store.latest(LeaderboardWindow.DAYS_7) is None
        assert (await store.history(LeaderboardWindow.DAYS_7)).total_count == 0
        assert await store.entry_count("anything") == 0
        assert (await store.prune(12, today=TODAY)).deleted_snapshots == 0
    finally:
        await db.close()


async def test_initialize_is_idempotent(database, store):
    metrics, entries = sample()
    await store.save(metrics, entries, collection_date=TODAY)

    await database.initialize()
    await database.initialize()

    assert (await store.stats()).snapshot_count == 1


async def test_reopened_database_sees_existing_snapshots(tmp_path):
    url = f"sqlite:///{tmp_path / 'reopened.db'}"
    metrics, entries = sample(entry_count=2)

    first = Database(url)
    await first.initialize()
    handle = await SnapshotStore(first, timezone_name='UTC').save(metrics, entries, collection_date=TODAY)
    await first.close()

    # Fresh wrapper over the populated file, nothing has connected yet
    reopened = Database(url)
    store = SnapshotStore(reopened, timezone_name='UTC')
    try:
        latest = await store.latest(LeaderboardWindow.DAYS_7)
        assert latest.snapshot_id == handle.snapshot_id

        stats = await store.stats()
        assert stats.initialized is True
        assert stats.snapshot_count == 1
        assert stats.entry_count == 2
        assert (await store.history(LeaderboardWindow.DAYS_7)).total_count == 1
        assert await store.entry_count(handle.snapshot_id) == 2
    finally:
        await reopened.close()


async def test_snapshot_with_retired_window_is_still_readable(database, store):
    from mindshare.database.models import Snapshot

    async with database.transaction() as session:
        session.add(Snapshot(
            snapshot_id="legacy-0001",
            collection_date=TODAY,
            window_period="90d",
            is_live=True,
            total_participants=1,
            total_activities=2,
            top_impressions=3,
            top_engagements=4,
        ))

    snapshot = await store.complete("legacy-0001")
    assert snapshot.header.window == "90d"
    assert snapshot.header.metrics.top_engagements == 4
    assert (await store.stats()).snapshot_count == 1
