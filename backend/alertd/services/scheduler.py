"""Scheduler service - one timer per enabled alert.

Design:
- Each polled alert gets its own APScheduler interval job, keyed by the
  alert path, so alerts tick independently of each other
- Jobs look the definition up in the current snapshot on every tick, so a
  reload that only edits an alert's body never touches its timer
- A job whose previous tick is still running is skipped (max_instances=1)
  and the skip is logged
- First ticks are spread over a random delay so alerts do not fire in lockstep
"""
import asyncio
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Dict, Optional, Set

from apscheduler.events import EVENT_JOB_MAX_INSTANCES, JobSubmissionEvent
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from ..utils.durations import format_duration
from .alerter import AlerterService
from .loader import DefinitionSnapshot
from .runtime import Runtime

logger = logging.getLogger(__name__)

# Job ids for housekeeping jobs start with this, alert jobs are plain paths
MAINTENANCE_PREFIX = "__"


class SchedulerService:
    """Service for scheduling and running alerts."""

    def __init__(self, runtime: Runtime, alerter: AlerterService, jitter_seconds: float = 5.0):
        self.runtime = runtime
        self.alerter = alerter
        self.jitter_seconds = jitter_seconds
        self.scheduler: Optional[AsyncIOScheduler] = None
        self._running = False
        self._intervals: Dict[str, timedelta] = {}
        self._in_flight: Set[asyncio.Task] = set()

    @property
    def running(self) -> bool:
        return self._running

    def scheduled_paths(self):
        return sorted(self._intervals)

    def start(self):
        """Start the scheduler and schedule the current snapshot."""
        if self._running:
            return

        self.scheduler = AsyncIOScheduler(timezone=timezone.utc)
        self.scheduler.add_listener(self._on_max_instances, EVENT_JOB_MAX_INSTANCES)
        self.scheduler.start()
        self._running = True
        self.sync(self.runtime.snapshot)
        logger.info(f"Scheduler started ({len(self._intervals)} alerts, jitter={self.jitter_seconds}s)")

    def add_maintenance_job(self, func: Callable[[], Awaitable[None]], seconds: float, name: str):
        """Run a housekeeping coroutine at a fixed interval."""
        self.scheduler.add_job(
            func,
            trigger=IntervalTrigger(seconds=seconds),
            id=f"{MAINTENANCE_PREFIX}{name}",
            replace_existing=True,
            max_instances=1,
        )

    def _first_run(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=random.uniform(0, self.jitter_seconds))

    def sync(self, snapshot: DefinitionSnapshot):
        """Bring the jobs in line with a snapshot.

        Jobs are added for new alerts, replaced when an interval changes
        and removed for alerts that are gone or disabled. Other jobs keep
        their timing.
        """
        wanted = {alert.path: alert.interval for alert in snapshot.scheduled_alerts()}

        for path in list(self._intervals):
            if path not in wanted:
                self.scheduler.remove_job(path)
                del self._intervals[path]
                logger.info(f"Unscheduled {path}")

        for path, interval in wanted.items():
            if self._intervals.get(path) == interval:
                continue
            seconds = interval.total_seconds()
            self.scheduler.add_job(
                self._tick,
                trigger=IntervalTrigger(seconds=seconds, start_date=self._first_run()),
                args=[path],
                id=path,
                replace_existing=True,
                max_instances=1,
                coalesce=True,
                misfire_grace_time=max(1, int(seconds)),
            )
            logger.info(f"{'Rescheduled' if path in self._intervals else 'Scheduled'} {path} every {format_duration(interval)}")
            self._intervals[path] = interval

    def _on_max_instances(self, event: JobSubmissionEvent):
        logger.warning(f"Alert {event.job_id} is still running from its previous tick, skipping this tick")

    async def _tick(self, path: str):
        """Run one alert against the snapshot current at tick time."""
        snapshot = self.runtime.snapshot
        definition = snapshot.get(path)
        if definition is None or not definition.enabled:
            logger.debug(f"Alert {path} no longer loaded, skipping tick")
            return

        task = asyncio.current_task()
        self._in_flight.add(task)
        try:
            await self.alerter.run_alert(definition, snapshot)
        except Exception as e:
            logger.error(f"Error running alert {path}: {type(e).__name__}: {e}")
        finally:
            self._in_flight.discard(task)

    async def run_once(self, snapshot: Optional[DefinitionSnapshot] = None) -> int:
        """Evaluate every enabled alert once, concurrently, and wait for all of them.

        Returns:
            Number of alerts evaluated
        """
        snapshot = snapshot or self.runtime.snapshot
        alerts = snapshot.scheduled_alerts()
        logger.info(f"Running {len(alerts)} alerts once")

        results = await asyncio.gather(
            *(self.alerter.run_alert(alert, snapshot) for alert in alerts),
            return_exceptions=True,
        )
        for alert, result in zip(alerts, results):
            if isinstance(result, Exception):
                logger.error(f"Error running alert {alert.path}: {type(result).__name__}: {result}")
        return len(alerts)

    async def shutdown(self):
        """Stop starting new ticks, let running ones finish, then stop."""
        if not self._running:
            return

        self.scheduler.pause()
        pending = [task for task in self._in_flight if not task.done()]
        if pending:
            logger.info(f"Waiting for {len(pending)} running alerts to finish")
            await asyncio.gather(*pending, return_exceptions=True)

        self.scheduler.shutdown(wait=False)
        self._running = False
        self._intervals.clear()
        logger.info("Scheduler stopped")
