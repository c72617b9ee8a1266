"""Shared test fixtures and fakes."""
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Any, Dict, List, Optional

import pytest

from alertd.models import AlertDefinition, QuerySource, SendSpec, Target, TargetRegistry
from alertd.services.alerter import AlerterService
from alertd.services.evaluator import SourceEvaluator
from alertd.services.loader import DefinitionSnapshot
from alertd.services.notifier import NotificationPipeline
from alertd.services.runtime import Runtime

T0 = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)


class RecordingSender:
    """Mail transport that records what it was asked to send."""

    def __init__(self, fail_for: Optional[set] = None) -> None:
        self.sent: List[Dict[str, Any]] = []
        self.fail_for = fail_for or set()

    async def send_email(self, recipients, subject, text, html=None) -> bool:
        if set(recipients) & self.fail_for:
            return False
        self.sent.append({"recipients": list(recipients), "subject": subject, "text": text, "html": html})
        return True


class FakeQueryClient:
    """Query client returning queued row sets."""

    def __init__(self, results: Optional[List[Any]] = None) -> None:
        self.results = list(results or [])
        self.calls: List[tuple] = []

    async def query(self, sql, not_before, interval):
        self.calls.append((sql, not_before, interval))
        result = self.results.pop(0) if self.results else []
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self) -> None:
        pass


def make_alert(path: str = "/alerts/a.yml", **kwargs) -> AlertDefinition:
    kwargs.setdefault("source", QuerySource(sql="select 1"))
    kwargs.setdefault("send", (SendSpec(target_id="ops", body_template="{{ rows | length }} rows"),))
    return AlertDefinition(path=path, **kwargs)


def make_registry(**targets) -> TargetRegistry:
    if not targets:
        targets = {"ops": ["ops@example.com"]}
    return TargetRegistry({
        target_id: Target(id=target_id, addresses=tuple(addresses))
        for target_id, addresses in targets.items()
    })


def make_snapshot(alerts=(), registry: Optional[TargetRegistry] = None, errors=()) -> DefinitionSnapshot:
    return DefinitionSnapshot(
        alerts=MappingProxyType({alert.path: alert for alert in alerts}),
        targets=registry if registry is not None else make_registry(),
        errors=tuple(errors),
    )


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def query_client() -> FakeQueryClient:
    return FakeQueryClient()


@pytest.fixture
def runtime() -> Runtime:
    return Runtime()


@pytest.fixture
def alerter(runtime, sender, query_client) -> AlerterService:
    pipeline = NotificationPipeline(sender)
    return AlerterService(runtime, SourceEvaluator(query_client), pipeline, hostname="testhost")
