"""Services for loading, evaluating, scheduling and alerting."""
from .alerter import AlerterService
from .evaluator import SourceEvaluator
from .notifier import NotificationPipeline
from .reload import ReloadCoordinator, ReloadReason
from .runtime import Runtime
from .scheduler import SchedulerService
from .state_store import StateStore

__all__ = [
    "AlerterService",
    "SourceEvaluator",
    "NotificationPipeline",
    "ReloadCoordinator",
    "ReloadReason",
    "Runtime",
    "SchedulerService",
    "StateStore",
]
