"""
Leaderboard data models for the mindshare tracker.

Provides immutable data transfer objects for upstream metrics, ranked entries
and the snapshot views returned by the snapshot store.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Dict, List, Optional, Union

from mindshare.utils.exceptions import InvalidRequestError
from mindshare.utils.formatting import format_compact_number


class LeaderboardWindow(Enum):
    """Period a leaderboard is computed over."""
    DAYS_7 = "7d"
    DAYS_30 = "30d"
    MONTHS_3 = "3m"
    MONTHS_6 = "6m"
    MONTHS_12 = "12m"

    @classmethod
    def parse(cls, value) -> "LeaderboardWindow":
        """Resolve a window from its value, rejecting unsupported ones."""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            supported = ", ".join(w.value for w in cls)
            raise InvalidRequestError(f"Unsupported window '{value}'. Supported windows: {supported}")


class SyncStatus(Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class Metrics:
    """Summary counters for a window at a point in time."""
    total_participants: int
    total_activities: int
    top_impressions: int
    top_engagements: int

    def formatted(self) -> Dict[str, str]:
        return {
            'total_participants': format_compact_number(self.total_participants),
            'total_activities': format_compact_number(self.total_activities),
            'top_impressions': format_compact_number(self.top_impressions),
            'top_engagements': format_compact_number(self.top_engagements),
        }


@dataclass(frozen=True)
class Entry:
    """Single ranked participant."""
    rank: int
    username: str
    mindshare: float
    activity_count: int
    impressions: int
    engagements: int
    profile_url: str


@dataclass(frozen=True)
class SnapshotHandle:
    """Result of a successful save."""
    snapshot_id: str
    collection_date: date
    window: LeaderboardWindow
    entry_count: int
    is_live: bool
    metrics: Metrics
    timestamp: datetime


@dataclass(frozen=True)
class SnapshotHeader:
    """Snapshot row without its entries."""
    snapshot_id: str
    collection_date: date
    # Raw string for windows this version no longer lists
    window: Union[LeaderboardWindow, str]
    is_live: bool
    metrics: Metrics
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class CompleteSnapshot:
    """Snapshot header plus one page of its entries."""
    header: SnapshotHeader
    entries: List[Entry]
    total_entries: int


@dataclass(frozen=True)
class HistoryPage:
    """Paginated snapshot headers, newest first."""
    snapshots: List[SnapshotHeader]
    total_count: int
    limit: int
    offset: int


@dataclass(frozen=True)
class PruneResult:
    deleted_snapshots: int
    deleted_entries: int
    cutoff_date: date
    deleted_sync_logs: int = 0


@dataclass(frozen=True)
class StoreStats:
    snapshot_count: int = 0
    entry_count: int = 0
    most_recent_collection_date: Optional[date] = None
    sync_log_count: int = 0
    initialized: bool = False


@dataclass(frozen=True)
class SyncLogHandle:
    log_id: int
    snapshot_id: str
    status: SyncStatus
    items_synced: int
    timestamp: datetime


@dataclass(frozen=True)
class FetchAttempt:
    """One failed upstream attempt."""
    source: str
    reason: str


@dataclass(frozen=True)
class FetchResult:
    """Upstream payload together with where it came from."""
    payload: dict
    is_live: bool
    source: str
    failed_attempts: List[FetchAttempt] = field(default_factory=list)
    from_cache: bool = False
