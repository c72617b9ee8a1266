"""Reload coordinator.

File changes, SIGHUP, API requests and periodic glob re-resolution all post
into one queue. A single consumer task debounces bursts into one reload and
is the only writer of the published snapshot.
"""
import asyncio
import functools
import logging
from datetime import timedelta
from enum import Enum
from typing import Callable, Iterable, List, Optional, Set

from watchfiles import awatch

from .. import metrics
from .alerter import AlerterService
from .loader import DefinitionSnapshot, GlobResolver, LoadError, ResolvedPaths, is_yaml_file, load_snapshot
from .runtime import Runtime
from .scheduler import SchedulerService

logger = logging.getLogger(__name__)


class ReloadReason(str, Enum):
    FILES = "files"
    SIGNAL = "signal"
    API = "api"
    RESOLVE = "resolve"
    SHUTDOWN = "shutdown"


Loader = Callable[[List[str], timedelta, Optional[ResolvedPaths]], DefinitionSnapshot]


class ReloadCoordinator:
    """Debounces reload requests and publishes new snapshots."""

    def __init__(
        self,
        runtime: Runtime,
        alerter: AlerterService,
        scheduler: Optional[SchedulerService],
        globs: Iterable[str],
        default_interval: timedelta,
        debounce_seconds: float = 2.0,
        loader: Loader = load_snapshot,
        watch: bool = True,
    ):
        self.runtime = runtime
        self.alerter = alerter
        self.scheduler = scheduler
        self.globs = list(globs)
        self.default_interval = default_interval
        self.debounce_seconds = debounce_seconds
        self.loader = loader
        self.watch = watch
        self.reload_count = 0
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._watch_task: Optional[asyncio.Task] = None
        self._watch_stop: Optional[asyncio.Event] = None
        self._watched: frozenset = frozenset()

    def request(self, reason: ReloadReason = ReloadReason.API) -> None:
        """Ask for a reload. Safe to call from signal handlers on the loop."""
        if self._queue is None:
            logger.warning(f"Reload requested ({reason.value}) before the coordinator started, ignoring")
            return
        logger.debug(f"Reload requested: {reason.value}")
        self._queue.put_nowait(reason)

    async def _in_executor(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args))

    async def resolve(self) -> ResolvedPaths:
        return await self._in_executor(GlobResolver(self.globs).resolve)

    async def load(self, resolved: Optional[ResolvedPaths] = None) -> DefinitionSnapshot:
        """Run the loader off the event loop.

        Raises:
            LoadError: If nothing could be loaded at all
        """
        return await self._in_executor(self.loader, self.globs, self.default_interval, resolved)

    async def apply(self, snapshot: DefinitionSnapshot) -> None:
        """Publish a snapshot and bring timers, error reports and file watching in line."""
        self.runtime.publish(snapshot)
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.sync(snapshot)
        if snapshot.errors:
            await self.alerter.report_definition_errors(list(snapshot.errors), snapshot)
        if self._queue is not None and self.watch:
            self._restart_watcher(snapshot.resolved)

    async def reload(self, reasons: Set[ReloadReason]) -> bool:
        """Reload definitions.

        A batch made only of periodic re-resolution requests reloads only
        when the set of resolved paths changed.

        Returns:
            True if a new snapshot was published
        """
        resolved = await self.resolve()
        if reasons == {ReloadReason.RESOLVE} and not resolved.differs_from(self.runtime.snapshot.resolved):
            logger.debug("Resolved paths unchanged, not reloading")
            return False

        logger.info(f"Reloading definitions ({', '.join(sorted(r.value for r in reasons))})")
        try:
            snapshot = await self.load(resolved)
        except LoadError as e:
            logger.error(f"Reload failed, keeping current definitions: {e}")
            return False

        await self.apply(snapshot)
        self.reload_count += 1
        metrics.reloads.inc()
        return True

    async def _run(self) -> None:
        while True:
            reasons = {await self._queue.get()}
            # Keep collecting until the queue stays quiet for the debounce window
            while ReloadReason.SHUTDOWN not in reasons:
                try:
                    reasons.add(await asyncio.wait_for(self._queue.get(), timeout=self.debounce_seconds))
                except asyncio.TimeoutError:
                    break

            if ReloadReason.SHUTDOWN in reasons:
                return
            try:
                await self.reload(reasons)
            except Exception as e:
                logger.error(f"Error reloading definitions: {type(e).__name__}: {e}")

    def start(self) -> None:
        """Start consuming reload requests (and watching files)."""
        if self._task is not None:
            return
        self._queue = asyncio.Queue()
        self._task = asyncio.create_task(self._run())
        if self.watch:
            self._restart_watcher(self.runtime.snapshot.resolved)
        logger.info(f"Reload coordinator started (debounce={self.debounce_seconds}s)")

    async def stop(self) -> None:
        await self._stop_watcher()
        if self._task is not None:
            self._queue.put_nowait(ReloadReason.SHUTDOWN)
            await self._task
            self._task = None
        self._queue = None

    def _restart_watcher(self, resolved: ResolvedPaths) -> None:
        paths = resolved.all_paths()
        if paths == self._watched and self._watch_task is not None and not self._watch_task.done():
            return
        if self._watch_stop is not None:
            self._watch_stop.set()
        self._watched = paths
        if not paths:
            self._watch_task = None
            return
        self._watch_stop = asyncio.Event()
        self._watch_task = asyncio.create_task(self._watch(sorted(paths), self._watch_stop))

    async def _stop_watcher(self) -> None:
        if self._watch_stop is not None:
            self._watch_stop.set()
        if self._watch_task is not None:
            await asyncio.gather(self._watch_task, return_exceptions=True)
        self._watch_task = None
        self._watch_stop = None
        self._watched = frozenset()

    async def _watch(self, paths: List[str], stop_event: asyncio.Event) -> None:
        logger.info(f"Watching {len(paths)} paths for changes")
        try:
            async for changes in awatch(*paths, stop_event=stop_event):
                changed = sorted({path for _change, path in changes if is_yaml_file(path)})
                if changed:
                    logger.debug(f"Definition files changed: {', '.join(changed)}")
                    self.request(ReloadReason.FILES)
        except (FileNotFoundError, RuntimeError) as e:
            logger.warning(f"File watching stopped: {e}")
