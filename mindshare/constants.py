"""
Tracker-wide constants for the mindshare tracker.

This module contains the magic numbers and upstream field names used throughout
the codebase to improve maintainability and clarity.
"""

class CacheConstants:
    """Constants for caching behavior."""

    # Default TTL for cached upstream payloads (seconds)
    DEFAULT_CACHE_TTL = 300  # 5 minutes

class PaginationConstants:
    """Constants for paginated queries."""

    # Upstream top-K limit, also the largest page a caller may request
    MAX_PAGE_SIZE = 250

    # Default page sizes
    DEFAULT_ENTRY_PAGE_SIZE = 250
    DEFAULT_HISTORY_PAGE_SIZE = 10

    # Entries shown by a dry run
    DRY_RUN_ENTRY_LIMIT = 10
    DRY_RUN_PREVIEW_SIZE = 5

class ScheduleConstants:
    """Constants for the recurring triggers."""

    WEEKLY_COLLECTION = "weekly-collection"
    DAILY_CLEANUP = "daily-cleanup"

    # Longest single sleep of a trigger loop; the fire time is recomputed after each one
    MAX_SLEEP_SECONDS = 60

class StorageConstants:
    """Constants for the snapshot store."""

    # Entry rows added between flushes while saving a snapshot
    ENTRY_FLUSH_BATCH = 50

class UpstreamFields:
    """Field names of the upstream community mindshare payload."""

    ROOT = "community_mindshare"
    TOTAL_PARTICIPANTS = "total_unique_yappers"
    TOTAL_ACTIVITIES = "total_unique_tweets"
    TOP_IMPRESSIONS = "top_250_yapper_impressions"
    TOP_ENGAGEMENTS = "top_250_yapper_likes"
    RANKED_LIST = "top_250_yappers"

    RANK = "rank"
    USERNAME = "username"
    MINDSHARE = "mindshare"
    ACTIVITY_COUNT = "tweet_counts"
    IMPRESSIONS = "total_impressions"
    ENGAGEMENTS = "total_likes"

    # Envelope field used by passthrough proxies
    PROXY_ENVELOPE = "contents"
