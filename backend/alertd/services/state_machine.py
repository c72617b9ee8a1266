"""Trigger state machine.

Pure decision logic: given a definition, the prior runtime state and a new
observation, decide whether to notify and what state to keep. Nothing here
performs I/O; the alerter applies decisions and records deliveries.
"""
import hashlib
import json
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from typing import Any, FrozenSet, Optional, Tuple

from ..models import AlertDefinition, AlertRuntimeState, AlwaysSend, CommandSource, Observation, QuerySource, WhenChanged

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    """Outcome of one transition.

    ``state`` is the state to store if nothing gets delivered; use
    ``commit`` to record a delivery.
    """
    notify: bool
    state: AlertRuntimeState
    triggered: bool
    cleared: bool = False
    reason: str = ""


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float, Decimal)):
        return float(value)
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def compute_signature(observation: Observation, when_changed: WhenChanged) -> str:
    """Stable hash of the observation, restricted to the fields when-changed looks at."""
    filtered = [
        {key: value for key, value in record.items() if when_changed.includes(key)}
        for record in observation.records()
    ]
    encoded = json.dumps(filtered, sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


def evaluate_condition(
    definition: AlertDefinition,
    prior: AlertRuntimeState,
    observation: Observation,
) -> Tuple[bool, FrozenSet[str]]:
    """Whether the observation means the condition is present.

    Returns:
        (is_triggered, latched numerical fields)
    """
    source = definition.source
    if isinstance(source, QuerySource):
        if not source.numerical:
            return bool(observation.rows), frozenset()

        latched = set(prior.latched_fields)
        for threshold in source.numerical:
            values = [
                v for v in (_number(row.get(threshold.field)) for row in observation.rows)
                if v is not None
            ]
            if threshold.field in latched:
                # Only a configured clear level releases a latched field
                if threshold.clear_at is not None and all(threshold.crosses_clear(v) for v in values):
                    latched.discard(threshold.field)
            elif any(threshold.crosses_alert(v) for v in values):
                latched.add(threshold.field)
        return bool(latched), frozenset(latched)

    if isinstance(source, CommandSource):
        return observation.exit_code != 0, frozenset()

    # Event arrival is the trigger
    return True, frozenset()


def resend_due(always_send: AlwaysSend, prior: AlertRuntimeState, now: datetime) -> bool:
    if always_send.mode != "after":
        return False
    if prior.last_sent_at is None:
        return True
    return now - prior.last_sent_at >= always_send.after


def decide(
    definition: AlertDefinition,
    prior: AlertRuntimeState,
    observation: Observation,
    now: datetime,
) -> Decision:
    """Run one transition of the trigger state machine.

    Args:
        definition: The alert being evaluated
        prior: Its runtime state before this observation
        observation: A successful observation (source errors are routed
            to the alert's synthetic error identity instead)
        now: Observation time, compared against pause and resend deadlines

    Returns:
        Decision with the notify flag and the state to keep
    """
    if prior.is_paused(now):
        return Decision(notify=False, state=prior, triggered=prior.triggered, reason="paused")

    is_triggered, latched = evaluate_condition(definition, prior, observation)

    signature = prior.comparison_signature
    if definition.when_changed.enabled:
        signature = compute_signature(observation, definition.when_changed)

    notify = False
    cleared = False
    reason = ""
    if is_triggered:
        if definition.when_changed.enabled:
            if signature != prior.comparison_signature:
                notify, reason = True, "changed"
        elif not prior.triggered:
            notify, reason = True, "triggered"
        elif definition.always_send.mode == "always":
            notify, reason = True, "always-send"
        elif resend_due(definition.always_send, prior, now):
            notify, reason = True, "resend"
    elif prior.triggered and not definition.never_clears:
        notify, cleared, reason = True, True, "cleared"

    if is_triggered:
        triggered_at = prior.triggered_at if prior.triggered and prior.triggered_at else now
    else:
        triggered_at = None

    state = replace(
        prior,
        triggered=is_triggered,
        triggered_at=triggered_at,
        comparison_signature=signature,
        latched_fields=latched,
    )
    return Decision(notify=notify, state=state, triggered=is_triggered, cleared=cleared, reason=reason)


def decide_error_event(
    prior: AlertRuntimeState,
    now: datetime,
    always_send: Optional[AlwaysSend] = None,
) -> Decision:
    """Transition for a synthetic source-error or definition-error identity.

    Errors skip condition evaluation: they notify on first occurrence and
    then follow the resend policy.
    """
    always_send = always_send or AlwaysSend.off()
    if prior.is_paused(now):
        return Decision(notify=False, state=prior, triggered=prior.triggered, reason="paused")

    if not prior.triggered:
        notify, reason = True, "triggered"
    elif always_send.mode == "always":
        notify, reason = True, "always-send"
    elif resend_due(always_send, prior, now):
        notify, reason = True, "resend"
    else:
        notify, reason = False, ""

    state = replace(prior, triggered=True, triggered_at=prior.triggered_at or now)
    return Decision(notify=notify, state=state, triggered=True, reason=reason)


def commit(decision: Decision, delivered: bool, now: datetime) -> AlertRuntimeState:
    """State to store once the notification (if any) has been dispatched."""
    if decision.notify and delivered:
        return replace(decision.state, last_sent_at=now)
    return decision.state
