"""Alert definitions - the immutable, validated form of an alert file."""
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from typing import FrozenSet, Optional, Tuple, Union

from ..utils.durations import format_duration


class EventType(str, Enum):
    """Events an event-source alert can listen for."""
    SOURCE_ERROR = "source-error"
    DEFINITION_ERROR = "definition-error"
    HTTP = "http"


@dataclass(frozen=True)
class NumericalThreshold:
    """Numerical trigger on one column of a query result.

    Normally higher is worse. When ``clear_at`` is above ``alert_at`` the
    threshold is inverted and lower is worse.
    """
    field: str
    alert_at: float
    clear_at: Optional[float] = None

    @property
    def inverted(self) -> bool:
        return self.clear_at is not None and self.clear_at > self.alert_at

    def crosses_alert(self, value: float) -> bool:
        if self.inverted:
            return value <= self.alert_at
        return value >= self.alert_at

    def crosses_clear(self, value: float) -> bool:
        """Whether a value is past the clear level. Never true without ``clear_at``."""
        if self.clear_at is None:
            return False
        if self.inverted:
            return value >= self.clear_at
        return value <= self.clear_at


@dataclass(frozen=True)
class QuerySource:
    sql: str
    numerical: Tuple[NumericalThreshold, ...] = ()


@dataclass(frozen=True)
class CommandSource:
    shell: str
    run: str


@dataclass(frozen=True)
class EventSource:
    event: EventType


Source = Union[QuerySource, CommandSource, EventSource]


def source_type(source: Source) -> str:
    """Short name of a source kind, as shown by the control API."""
    if isinstance(source, QuerySource):
        return "sql"
    if isinstance(source, CommandSource):
        return "shell"
    if isinstance(source, EventSource):
        return "event"
    raise TypeError(f"unknown source: {source!r}")


@dataclass(frozen=True)
class AlwaysSend:
    """Repeat policy while a condition stays triggered: off, always, or after a duration."""
    mode: str = "off"
    after: Optional[timedelta] = None

    @classmethod
    def off(cls) -> "AlwaysSend":
        return cls("off")

    @classmethod
    def always(cls) -> "AlwaysSend":
        return cls("always")

    @classmethod
    def resend_after(cls, after: timedelta) -> "AlwaysSend":
        return cls("after", after)

    def describe(self) -> str:
        if self.mode == "after":
            return f"after: {format_duration(self.after)}"
        return "true" if self.mode == "always" else "false"


@dataclass(frozen=True)
class WhenChanged:
    """Change detection over the observation, optionally restricted to some fields."""
    enabled: bool = False
    except_fields: FrozenSet[str] = frozenset()
    only_fields: FrozenSet[str] = frozenset()

    def __post_init__(self):
        if self.except_fields and self.only_fields:
            raise ValueError("when-changed: 'except' and 'only' are mutually exclusive")

    def includes(self, key: str) -> bool:
        if self.only_fields:
            return key in self.only_fields
        if self.except_fields:
            return key not in self.except_fields
        return True

    def describe(self) -> str:
        if not self.enabled:
            return "false"
        if self.only_fields:
            return f"only: {', '.join(sorted(self.only_fields))}"
        if self.except_fields:
            return f"except: {', '.join(sorted(self.except_fields))}"
        return "true"


@dataclass(frozen=True)
class SendSpec:
    """One notification target of an alert."""
    target_id: str
    body_template: str
    subject_template: Optional[str] = None


@dataclass(frozen=True)
class AlertDefinition:
    """A loaded alert. Its identity is the absolute path of its file."""
    path: str
    source: Source
    enabled: bool = True
    interval: timedelta = timedelta(minutes=1)
    always_send: AlwaysSend = field(default_factory=AlwaysSend.off)
    when_changed: WhenChanged = field(default_factory=WhenChanged)
    send: Tuple[SendSpec, ...] = ()

    @property
    def is_polled(self) -> bool:
        return not isinstance(self.source, EventSource)

    @property
    def never_clears(self) -> bool:
        """Numerical alerts without any clear level stay triggered once triggered."""
        return (
            isinstance(self.source, QuerySource)
            and bool(self.source.numerical)
            and all(t.clear_at is None for t in self.source.numerical)
        )


@dataclass(frozen=True)
class DefinitionError:
    """A definition file that could not be loaded."""
    path: str
    message: str
    line: Optional[int] = None
    column: Optional[int] = None
    field_path: Optional[str] = None
