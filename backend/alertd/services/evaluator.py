"""Source evaluator - runs an alert's query or command and returns an Observation."""
import asyncio
import logging
import os
import tempfile
from datetime import datetime, timezone
from typing import Optional

from ..database import QueryClient
from ..models import AlertDefinition, CommandSource, EventSource, Observation, QuerySource
from ..utils.durations import format_duration

logger = logging.getLogger(__name__)


class EvaluationTimeout(Exception):
    """An evaluation ran past its alert's interval."""


class SourceEvaluator:
    """Evaluates polled sources.

    Failures never propagate: a failed query, a shell that cannot be
    started or a timeout all come back as a ``source-error`` observation.
    """

    def __init__(self, query_client: Optional[QueryClient] = None):
        self.query_client = query_client or QueryClient()

    async def evaluate(self, definition: AlertDefinition, now: Optional[datetime] = None) -> Observation:
        """Evaluate an alert's source once, bounded by the alert's interval."""
        now = now or datetime.now(timezone.utc)
        timeout = definition.interval.total_seconds()
        source = definition.source
        try:
            if isinstance(source, QuerySource):
                return await asyncio.wait_for(self._run_query(definition, source, now), timeout=timeout)
            if isinstance(source, CommandSource):
                return await self._run_command(source, timeout, now)
            if isinstance(source, EventSource):
                raise ValueError(f"event sources are not polled: {definition.path}")
            raise TypeError(f"unknown source type: {type(source).__name__}")
        except (asyncio.TimeoutError, EvaluationTimeout):
            message = f"evaluation timed out after {format_duration(definition.interval)}"
            logger.warning(f"{definition.path}: {message}")
            return Observation.source_error(message, observed_at=now)
        except Exception as e:
            logger.error(f"{definition.path}: source failed: {type(e).__name__}: {e}")
            return Observation.source_error(f"{type(e).__name__}: {e}", observed_at=now)

    async def _run_query(self, definition: AlertDefinition, source: QuerySource, now: datetime) -> Observation:
        not_before = now - definition.interval
        logger.debug(f"Querying for {definition.path} (not_before={not_before.isoformat()})")
        rows = await self.query_client.query(source.sql, not_before, definition.interval)
        return Observation.query(rows, observed_at=now)

    async def _run_command(self, source: CommandSource, timeout: float, now: datetime) -> Observation:
        # The interpreter gets the command text as a script file
        with tempfile.NamedTemporaryFile("w", prefix="alertd-", suffix=".script", delete=False) as script:
            script.write(source.run)
            script_path = script.name

        try:
            proc = await asyncio.create_subprocess_exec(
                source.shell, script_path,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
            try:
                stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=timeout)
            except asyncio.TimeoutError:
                proc.kill()
                await proc.wait()
                raise EvaluationTimeout()

            if stderr:
                logger.debug(f"{source.shell} stderr: {stderr.decode(errors='replace').strip()}")
            return Observation.command(
                stdout.decode(errors="replace"),
                proc.returncode,
                observed_at=now,
            )
        finally:
            os.unlink(script_path)
