"""Domain models."""
from .definition import (
    AlertDefinition,
    AlwaysSend,
    CommandSource,
    DefinitionError,
    EventSource,
    EventType,
    NumericalThreshold,
    QuerySource,
    SendSpec,
    WhenChanged,
    source_type,
)
from .observation import Observation
from .state import AlertRuntimeState
from .target import Target, TargetRegistry

__all__ = [
    "AlertDefinition",
    "AlwaysSend",
    "CommandSource",
    "DefinitionError",
    "EventSource",
    "EventType",
    "NumericalThreshold",
    "QuerySource",
    "SendSpec",
    "WhenChanged",
    "source_type",
    "Observation",
    "AlertRuntimeState",
    "Target",
    "TargetRegistry",
]
