"""Alerter service - applies state machine decisions and dispatches notifications."""
import logging
import socket
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, List, Mapping, Optional

from .. import metrics
from ..models import AlertDefinition, AlertRuntimeState, AlwaysSend, DefinitionError, EventType, Observation
from .evaluator import SourceEvaluator
from .events import (
    definition_error_key,
    error_context,
    fallback_definition,
    http_context,
    is_internal_key,
    source_error_key,
)
from .loader import DefinitionSnapshot
from .notifier import NotificationPipeline
from .runtime import Runtime
from .state_machine import Decision, commit, decide, decide_error_event
from .templates import build_context

logger = logging.getLogger(__name__)


@dataclass
class IngestResult:
    """Outcome of one HTTP event ingestion."""
    alerts: int = 0
    notified: int = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def describe_error(error: DefinitionError) -> str:
    """Error message with its location, for notifications and logs."""
    location = []
    if error.line is not None:
        location.append(f"line {error.line}")
    if error.column is not None:
        location.append(f"column {error.column}")
    if error.field_path:
        location.append(f"field {error.field_path}")
    if location:
        return f"{error.message} ({', '.join(location)})"
    return error.message


class AlerterService:
    """Runs alerts through evaluation, the state machine and the notification pipeline."""

    def __init__(
        self,
        runtime: Runtime,
        evaluator: SourceEvaluator,
        pipeline: NotificationPipeline,
        event_state_mode: str = "stateless",
        hostname: Optional[str] = None,
    ):
        self.runtime = runtime
        self.evaluator = evaluator
        self.pipeline = pipeline
        self.event_state_mode = event_state_mode
        self.hostname = hostname or socket.gethostname()

    @property
    def store(self):
        return self.runtime.store

    def _keeps(self, key: str, path: str) -> bool:
        """Whether state for ``key`` should still be written after an await."""
        return is_internal_key(key) or path in self.runtime.snapshot.alerts

    async def run_alert(self, definition: AlertDefinition, snapshot: Optional[DefinitionSnapshot] = None) -> Optional[Decision]:
        """Evaluate a polled alert once and act on the result."""
        snapshot = snapshot or self.runtime.snapshot
        state = self.store.get(definition.path)
        if state.is_paused(_utcnow()):
            logger.info(f"Alert {definition.path} is paused until {state.paused_until.isoformat()}, skipping evaluation")
            return None

        logger.debug(f"Evaluating {definition.path}")
        observation = await self.evaluator.evaluate(definition)

        if observation.failed:
            await self.report_source_error(definition, observation.error or "unknown error", snapshot)
            return None

        self.clear_source_error(definition.path)
        return await self.process(definition, observation, snapshot)

    async def process(
        self,
        definition: AlertDefinition,
        observation: Observation,
        snapshot: Optional[DefinitionSnapshot] = None,
        stateless: bool = False,
    ) -> Decision:
        """Run one state machine transition for an alert and notify if it says so.

        Args:
            definition: The alert
            observation: A successful observation of its source
            snapshot: Snapshot whose targets are used for delivery
            stateless: Decide against a fresh state, keeping only the pause deadline
        """
        snapshot = snapshot or self.runtime.snapshot
        key = definition.path
        now = observation.observed_at

        async with self.store.lock(key):
            prior = self.store.get(key)
            basis = AlertRuntimeState(paused_until=prior.paused_until) if stateless else prior
            decision = decide(definition, basis, observation, now)

            delivered = 0
            if decision.notify:
                logger.info(f"Alert {key}: notifying ({decision.reason})")
                context = build_context(definition, now, self.hostname, observation.template_context())
                context["triggered"] = decision.triggered
                context["cleared"] = decision.cleared
                delivered = await self.pipeline.dispatch(definition, snapshot.targets, context)
            elif decision.reason == "paused":
                logger.info(f"Alert {key} is paused until {prior.paused_until.isoformat()}, skipping")
            else:
                logger.debug(f"Alert {key}: no notification (triggered={decision.triggered})")

            if self._keeps(key, definition.path):
                self.store.set(key, commit(decision, delivered > 0, now))
        return decision

    async def trigger_event(self, event: EventType, context: Mapping[str, Any], snapshot: Optional[DefinitionSnapshot] = None) -> int:
        """Send an internal event to the alerts listening for it, or to the default target.

        Returns:
            Number of targets delivered to
        """
        snapshot = snapshot or self.runtime.snapshot
        now = _utcnow()
        listeners = snapshot.event_alerts(event)

        if listeners:
            delivered = 0
            for alert in listeners:
                if self.store.get(alert.path).is_paused(now):
                    logger.info(f"Event alert {alert.path} is paused, skipping {event.value}")
                    continue
                ctx = build_context(alert, now, self.hostname, context)
                ctx["triggered"] = True
                delivered += await self.pipeline.dispatch(alert, snapshot.targets, ctx)
            return delivered

        target = snapshot.targets.default_target()
        if target is None:
            logger.warning(f"No alerts or default target for {event.value} event, skipping notification")
            return 0

        logger.info(f"Using default target '{target.id}' for {event.value} event")
        fallback = fallback_definition(event, target)
        ctx = build_context(fallback, now, self.hostname, context)
        ctx["triggered"] = True
        return await self.pipeline.dispatch(fallback, snapshot.targets, ctx)

    async def report_source_error(self, definition: AlertDefinition, message: str, snapshot: Optional[DefinitionSnapshot] = None) -> Decision:
        """Record a source failure under the alert's source-error identity."""
        key = source_error_key(definition.path)
        now = _utcnow()
        if self.store.get(definition.path).is_paused(now):
            logger.info(f"Alert {definition.path} is paused, not reporting its source error")
            return Decision(notify=False, state=self.store.get(key), triggered=False, reason="paused")

        async with self.store.lock(key):
            decision = decide_error_event(self.store.get(key), now, definition.always_send)
            delivered = 0
            metrics.alerts_failed.inc()
            if decision.notify:
                logger.warning(f"Source error for {definition.path}: {message}")
                delivered = await self.trigger_event(
                    EventType.SOURCE_ERROR,
                    error_context(definition.path, message),
                    snapshot,
                )
            else:
                logger.debug(f"Source error for {definition.path} already reported")

            if self._keeps(key, definition.path):
                self.store.set(key, commit(decision, delivered > 0, now))
        return decision

    def clear_source_error(self, path: str) -> None:
        """Forget a source error after a successful evaluation."""
        key = source_error_key(path)
        if key in self.store:
            logger.info(f"Source for {path} recovered")
            self.store.discard(key)

    async def report_definition_errors(self, errors: List[DefinitionError], snapshot: Optional[DefinitionSnapshot] = None) -> int:
        """Report definition errors, each once per occurrence.

        Returns:
            Number of errors that produced a notification
        """
        snapshot = snapshot or self.runtime.snapshot
        notified = 0
        for error in errors:
            key = definition_error_key(error.path)
            now = _utcnow()
            async with self.store.lock(key):
                decision = decide_error_event(self.store.get(key), now, AlwaysSend.off())
                delivered = 0
                if decision.notify:
                    notified += 1
                    delivered = await self.trigger_event(
                        EventType.DEFINITION_ERROR,
                        error_context(error.path, describe_error(error)),
                        snapshot,
                    )
                if error.path in self.runtime.snapshot.error_paths():
                    self.store.set(key, commit(decision, delivered > 0, now))
        return notified

    async def ingest_event(self, message: str, subject: Optional[str] = None, extra: Optional[Mapping[str, Any]] = None) -> IngestResult:
        """Route an HTTP event through the state machine and notification pipeline."""
        snapshot = self.runtime.snapshot
        observation = Observation.event(http_context(message, subject, extra))
        stateless = self.event_state_mode == "stateless"

        definitions = snapshot.event_alerts(EventType.HTTP)
        if not definitions:
            target = snapshot.targets.default_target()
            if target is None:
                logger.warning("No http event alerts or default target, dropping event")
                return IngestResult()
            definitions = [fallback_definition(EventType.HTTP, target)]

        result = IngestResult(alerts=len(definitions))
        for definition in definitions:
            decision = await self.process(definition, observation, snapshot, stateless=stateless)
            if decision.notify:
                result.notified += 1
        logger.info(f"Ingested http event: {result.alerts} alerts, {result.notified} notified")
        return result
