"""Daemon lifecycle: start, stop and reload.

The CLI and any OS service host drive the daemon through these entry
points only; neither contains daemon logic of its own.
"""
import asyncio
import logging
import signal
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .config import Settings, get_database_url, settings
from .database import QueryClient
from .main import ControlServer, bind_first, create_app, create_server
from .services.alerter import AlerterService
from .services.email_sender import EmailConfig, EmailSenderService
from .services.evaluator import SourceEvaluator
from .services.loader import load_snapshot
from .services.notifier import NotificationPipeline
from .services.reload import Loader, ReloadCoordinator, ReloadReason
from .services.runtime import Runtime
from .services.scheduler import SchedulerService
from .utils.durations import parse_duration

logger = logging.getLogger(__name__)


class Daemon:
    """An alertd instance and everything it owns."""

    def __init__(
        self,
        config: Optional[Settings] = None,
        sender: Optional[EmailSenderService] = None,
        query_client: Optional[QueryClient] = None,
        loader: Loader = load_snapshot,
        echo: Callable[[str], None] = print,
    ):
        self.config = config or settings
        self.started_at = datetime.now(timezone.utc)
        self.default_interval: timedelta = parse_duration(self.config.default_interval)

        self.runtime = Runtime()
        self.query_client = query_client or QueryClient(get_database_url(self.config) or "")
        self.pipeline = NotificationPipeline(
            sender or EmailSenderService(EmailConfig.from_settings(self.config)),
            dry_run=self.config.dry_run,
            echo=echo,
        )
        self.evaluator = SourceEvaluator(self.query_client)
        self.alerter = AlerterService(
            self.runtime,
            self.evaluator,
            self.pipeline,
            event_state_mode=self.config.event_state_mode,
        )
        self.scheduler = SchedulerService(self.runtime, self.alerter, self.config.start_jitter_seconds)
        self.coordinator = ReloadCoordinator(
            self.runtime,
            self.alerter,
            self.scheduler,
            self.config.alert_globs,
            self.default_interval,
            debounce_seconds=self.config.reload_debounce_seconds,
            loader=loader,
        )

        self._stop_event: Optional[asyncio.Event] = None
        self._server: Optional[ControlServer] = None
        self._server_task: Optional[asyncio.Task] = None
        self.server_address: Optional[str] = None

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    async def load(self) -> None:
        """Initial load. A LoadError here is fatal to the caller."""
        snapshot = await self.coordinator.load()
        await self.coordinator.apply(snapshot)

    async def start(self) -> None:
        """Load definitions, start timers, reload handling and the control API."""
        logger.info("Starting alertd daemon")
        self._stop_event = asyncio.Event()
        await self.load()

        self.scheduler.start()
        self.scheduler.add_maintenance_job(self._resolve_globs, self.config.glob_resolve_seconds, "resolve_globs")
        self.coordinator.start()
        self._install_signal_handlers()

        if not self.config.no_server:
            sock, self.server_address = bind_first(self.config.server_addrs)
            self._server = create_server(create_app(self))
            self._server_task = asyncio.create_task(self._server.serve(sockets=[sock]))
            logger.info(f"Control API listening on {self.server_address}")

    async def _resolve_globs(self) -> None:
        self.coordinator.request(ReloadReason.RESOLVE)

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        handlers = [(signal.SIGINT, self.request_stop), (signal.SIGTERM, self.request_stop)]
        if hasattr(signal, "SIGHUP"):
            handlers.append((signal.SIGHUP, lambda: self.reload(ReloadReason.SIGNAL)))
        for signum, handler in handlers:
            try:
                loop.add_signal_handler(signum, handler)
            except (NotImplementedError, RuntimeError):
                # Not available on this platform or outside the main thread
                logger.debug(f"Cannot install handler for {signum}")

    def reload(self, reason: ReloadReason = ReloadReason.API) -> None:
        """Request a reload of every definition."""
        logger.info(f"Reload requested ({reason.value})")
        self.coordinator.request(reason)

    def request_stop(self) -> None:
        logger.info("Shutdown requested")
        if self._stop_event is not None:
            self._stop_event.set()

    async def stop(self) -> None:
        """Stop accepting work, let running alerts finish, release resources."""
        if self._server is not None:
            self._server.should_exit = True
            await asyncio.gather(self._server_task, return_exceptions=True)
            self._server = None
            self._server_task = None
        await self.coordinator.stop()
        await self.scheduler.shutdown()
        await self.query_client.close()
        logger.info("Shutdown complete")

    async def run(self) -> None:
        """Run until stopped by a signal or ``request_stop``."""
        try:
            await self.start()
            await self._stop_event.wait()
        finally:
            await self.stop()

    async def run_once(self) -> int:
        """Dry run: load, evaluate every enabled alert once and return.

        Returns:
            Number of alerts evaluated
        """
        logger.info("Dry run: evaluating every alert once")
        try:
            await self.load()
            return await self.scheduler.run_once()
        finally:
            await self.query_client.close()
