"""Per-alert runtime state, kept in memory only."""
from dataclasses import dataclass
from datetime import datetime
from typing import FrozenSet, Optional


@dataclass(frozen=True)
class AlertRuntimeState:
    """History the trigger state machine needs for one alert identity."""
    triggered: bool = False
    triggered_at: Optional[datetime] = None
    comparison_signature: Optional[str] = None
    last_sent_at: Optional[datetime] = None
    paused_until: Optional[datetime] = None
    # Numerical fields currently past alert-at and not yet cleared
    latched_fields: FrozenSet[str] = frozenset()

    def is_paused(self, now: datetime) -> bool:
        return self.paused_until is not None and now < self.paused_until

    @property
    def status(self) -> str:
        return "TRIGGERED" if self.triggered else "OK"
