"""
Scheduler Service - recurring collection and retention triggers.

Two named triggers drive the tracker:
- weekly-collection: fetch the leaderboard, extract it and persist a snapshot
- daily-cleanup: prune snapshots older than the retention window

Both can also be run on demand. Each trigger moves through
Idle -> Running -> (Succeeded | Failed) -> Idle, and a trigger that is
already running rejects a second run instead of overlapping with itself.
Next fire times are derived from calendar rules, never from a timer's
countdown, so they survive restarts.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional

import pytz

from mindshare.config import Config
from mindshare.constants import PaginationConstants, ScheduleConstants
from mindshare.data_models.leaderboard import LeaderboardWindow
from mindshare.data_models.results import ResultStatus, RunOutcome, TriggerState
from mindshare.utils.formatting import format_duration
from mindshare.utils.logger import setup_logger
from mindshare.utils.payload_parser import extract_entries, extract_metrics

logger = setup_logger(__name__)

WEEKDAY_NAMES = ['Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday']


class RecurringTrigger(ABC):
    """Calendar rule producing the next fire time after a given instant."""

    def __init__(self, name: str, hour: int, minute: int = 0, timezone_name: Optional[str] = None):
        if not 0 <= hour <= 23 or not 0 <= minute <= 59:
            raise ValueError(f"Invalid fire time {hour:02d}:{minute:02d} for trigger {name}")
        self.name = name
        self.hour = hour
        self.minute = minute
        self.tz = pytz.timezone(timezone_name or Config.SCHEDULE_TIMEZONE)

    @abstractmethod
    def matches_day(self, day) -> bool:
        """Whether the trigger fires on this local calendar day"""
        pass

    @abstractmethod
    def describe(self) -> str:
        """Human-readable rule"""
        pass

    def next_fire_time(self, after: datetime) -> datetime:
        """First fire time strictly after the given aware datetime, in the trigger timezone."""
        if after.tzinfo is None:
            raise ValueError("after must be timezone-aware")
        local_after = after.astimezone(self.tz)

        day = local_after.date()
        for _ in range(8):
            if self.matches_day(day):
                naive = datetime(day.year, day.month, day.day, self.hour, self.minute)
                candidate = self.tz.normalize(self.tz.localize(naive))
                if candidate > local_after:
                    return candidate
            day += timedelta(days=1)
        raise RuntimeError(f"No fire time found for trigger {self.name}")


class WeeklyTrigger(RecurringTrigger):
    def __init__(self, name: str, weekday: int, hour: int, minute: int = 0, timezone_name: Optional[str] = None):
        if not 0 <= weekday <= 6:
            raise ValueError(f"Invalid weekday {weekday} for trigger {name}")
        super().__init__(name, hour, minute, timezone_name)
        self.weekday = weekday

    def matches_day(self, day) -> bool:
        return day.weekday() == self.weekday

    def describe(self) -> str:
        return f"Every {WEEKDAY_NAMES[self.weekday]} at {self.hour:02d}:{self.minute:02d}"


class DailyTrigger(RecurringTrigger):
    def matches_day(self, day) -> bool:
        return True

    def describe(self) -> str:
        return f"Every day at {self.hour:02d}:{self.minute:02d}"


@dataclass
class TriggerRuntime:
    """Mutable run state of one trigger."""
    state: TriggerState = TriggerState.IDLE
    last_status: Optional[TriggerState] = None
    last_started_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None
    last_error: Optional[str] = None
    run_count: int = 0


class TriggerCoordinator:
    """Runs collection and retention on schedule and on demand."""

    def __init__(
        self,
        fetch_client,
        store,
        collection_trigger: Optional[RecurringTrigger] = None,
        cleanup_trigger: Optional[RecurringTrigger] = None,
        window: Optional[LeaderboardWindow] = None,
        collection_limit: Optional[int] = None,
        retention_weeks: Optional[int] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc)
    ):
        self.fetch_client = fetch_client
        self.store = store
        self.window = LeaderboardWindow.parse(window or Config.COLLECTION_WINDOW)
        self.collection_limit = collection_limit or Config.COLLECTION_LIMIT
        self.retention_weeks = Config.RETENTION_WEEKS if retention_weeks is None else retention_weeks
        self._clock = clock

        collection_trigger = collection_trigger or WeeklyTrigger(
            ScheduleConstants.WEEKLY_COLLECTION, Config.COLLECTION_WEEKDAY, Config.COLLECTION_HOUR
        )
        cleanup_trigger = cleanup_trigger or DailyTrigger(
            ScheduleConstants.DAILY_CLEANUP, Config.CLEANUP_HOUR
        )
        self.triggers: Dict[str, RecurringTrigger] = {
            collection_trigger.name: collection_trigger,
            cleanup_trigger.name: cleanup_trigger,
        }
        self._actions: Dict[str, Callable[..., Awaitable]] = {
            collection_trigger.name: self._collect,
            cleanup_trigger.name: self._cleanup,
        }
        self._collection_name = collection_trigger.name
        self._cleanup_name = cleanup_trigger.name
        self.runtime: Dict[str, TriggerRuntime] = {name: TriggerRuntime() for name in self.triggers}
        self._tasks: Dict[str, asyncio.Task] = {}

    # ============================================================================
    # On-demand runs
    # ============================================================================

    async def run_collection_now(self) -> RunOutcome:
        """Run the weekly collection immediately, outside its cadence."""
        return await self._run(self._collection_name)

    async def run_retention_now(self, retention_weeks: Optional[int] = None) -> RunOutcome:
        """Run the retention sweep immediately, outside its cadence.

        Args:
            retention_weeks: Override the configured retention window for this run
        """
        return await self._run(self._cleanup_name, retention_weeks=retention_weeks)

    async def dry_run(self, limit: int = PaginationConstants.DRY_RUN_ENTRY_LIMIT) -> RunOutcome:
        """Fetch and extract the leaderboard without saving anything."""
        started_at = self._clock()
        try:
            result = await self.fetch_client.acquire(self.window, use_cache=False, diagnostic=True)
            metrics = extract_metrics(result.payload)
            entries = extract_entries(result.payload, limit)
        except Exception as e:
            logger.error(f"Dry run failed: {e}")
            return self._failed_outcome("dry-run", started_at, e)

        return RunOutcome(
            trigger="dry-run",
            status=ResultStatus.OK,
            started_at=started_at,
            finished_at=self._clock(),
            data={
                'metrics': metrics,
                'entries': entries[:PaginationConstants.DRY_RUN_PREVIEW_SIZE],
                'is_live': result.is_live,
                'source': result.source,
            },
        )

    # ============================================================================
    # Trigger execution
    # ============================================================================

    async def _run(self, name: str, **options) -> RunOutcome:
        runtime = self.runtime[name]
        started_at = self._clock()

        # No await between the check and the transition, so two callers cannot both pass
        if runtime.state is TriggerState.RUNNING:
            logger.warning(f"Trigger {name} is already running; skipping this request")
            return RunOutcome(
                trigger=name,
                status=ResultStatus.SKIPPED,
                started_at=started_at,
                finished_at=started_at,
                error=f"{name} is already running",
                error_type="already_running",
            )

        runtime.state = TriggerState.RUNNING
        runtime.last_started_at = started_at
        runtime.run_count += 1
        logger.info(f"Trigger {name} started")

        try:
            data = await self._actions[name](**options)
        except Exception as e:
            logger.error(f"Trigger {name} failed: {e}", exc_info=True)
            runtime.last_status = TriggerState.FAILED
            runtime.last_error = str(e)
            outcome = self._failed_outcome(name, started_at, e)
        else:
            runtime.last_status = TriggerState.SUCCEEDED
            runtime.last_error = None
            outcome = RunOutcome(
                trigger=name,
                status=ResultStatus.OK,
                started_at=started_at,
                finished_at=self._clock(),
                data=data,
            )
            logger.info(f"Trigger {name} completed")
        finally:
            runtime.state = TriggerState.IDLE
            runtime.last_finished_at = self._clock()

        return outcome

    def _failed_outcome(self, name: str, started_at: datetime, error: Exception) -> RunOutcome:
        return RunOutcome(
            trigger=name,
            status=ResultStatus.ERROR,
            started_at=started_at,
            finished_at=self._clock(),
            error=str(error),
            error_type=getattr(error, 'code', type(error).__name__),
        )

    async def _collect(self):
        result = await self.fetch_client.acquire(self.window, use_cache=False)
        metrics = extract_metrics(result.payload)
        entries = extract_entries(result.payload, self.collection_limit)
        logger.info(
            f"Collected metrics: {metrics.total_participants} participants, "
            f"{metrics.total_activities} activities, {len(entries)} entries"
        )

        snapshot = await self.store.save(metrics, entries, self.window, result.is_live)

        # Drop every cached window, then keep the payload that was just persisted
        self.fetch_client.invalidate()
        self.fetch_client.cache.put(self.window, result.payload, result.source)
        return snapshot

    async def _cleanup(self, retention_weeks: Optional[int] = None):
        weeks = self.retention_weeks if retention_weeks is None else retention_weeks
        return await self.store.prune(weeks)

    # ============================================================================
    # Scheduling
    # ============================================================================

    def start(self):
        """Start one independent task per trigger."""
        for name in self.triggers:
            task = self._tasks.get(name)
            if task is not None and not task.done():
                continue
            self._tasks[name] = asyncio.create_task(self._schedule_loop(name), name=f"trigger:{name}")
            logger.info(f"Started scheduler: {name} ({self.triggers[name].describe()})")

        logger.info(f"Scheduler service started with {len(self._tasks)} triggers")

    async def stop(self):
        """Cancel all trigger tasks and wait for them to finish."""
        tasks = list(self._tasks.items())
        self._tasks.clear()
        for name, task in tasks:
            task.cancel()
        for name, task in tasks:
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info(f"Stopped scheduler: {name}")

    def is_active(self, name: str) -> bool:
        task = self._tasks.get(name)
        return task is not None and not task.done()

    async def _schedule_loop(self, name: str):
        trigger = self.triggers[name]
        fire_at = trigger.next_fire_time(self._clock())
        while True:
            now = self._clock()
            if now < fire_at:
                # Sleep in short steps so wall clock jumps are picked up
                remaining = (fire_at - now).total_seconds()
                await asyncio.sleep(min(remaining, ScheduleConstants.MAX_SLEEP_SECONDS))
                continue

            logger.info(f"Scheduled trigger {name} firing ({fire_at.isoformat()})")
            try:
                outcome = await self._run(name)
            except Exception as e:
                logger.error(f"Scheduled run of {name} raised unexpectedly: {e}", exc_info=True)
            else:
                if not outcome.success:
                    logger.warning(f"Scheduled run of {name} ended with {outcome.status.value}: {outcome.error}")
            fire_at = trigger.next_fire_time(max(fire_at, self._clock()))

    # ============================================================================
    # Introspection
    # ============================================================================

    def schedule_info(self, now: Optional[datetime] = None) -> Dict:
        """Next computed fire time and activity of each trigger."""
        now = now or self._clock()
        triggers = {}
        for name, trigger in self.triggers.items():
            runtime = self.runtime[name]
            triggers[name] = {
                'next_fire_time': trigger.next_fire_time(now),
                'rule': trigger.describe(),
                'active': self.is_active(name),
                'state': runtime.state,
                'last_status': runtime.last_status,
                'last_started_at': runtime.last_started_at,
                'last_finished_at': runtime.last_finished_at,
                'last_error': runtime.last_error,
                'run_count': runtime.run_count,
            }
        return {
            'triggers': triggers,
            'active_jobs': sum(1 for name in self.triggers if self.is_active(name)),
            'timezone': str(self.triggers[self._collection_name].tz),
        }

    def schedule_countdown(self, now: Optional[datetime] = None) -> Dict:
        """Schedule info plus time remaining until each trigger fires."""
        now = now or self._clock()
        info = self.schedule_info(now)
        for trigger in info['triggers'].values():
            seconds = int((trigger['next_fire_time'] - now).total_seconds())
            trigger['seconds_remaining'] = seconds
            trigger['countdown'] = format_duration(seconds)
        return info
