import asyncio
from dataclasses import replace
from datetime import timedelta

import pytest

from alertd.metrics import metrics_registry
from alertd.models import DefinitionError
from alertd.services.loader import GlobResolver, LoadError
from alertd.services.reload import ReloadCoordinator, ReloadReason

from conftest import make_alert, make_snapshot


class FakeLoader:
    """Loader returning queued snapshots (or raising queued errors)."""

    def __init__(self, *results):
        self.results = list(results)
        self.calls = 0

    def __call__(self, globs, default_interval, resolved=None):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        if resolved is not None:
            return replace(result, resolved=resolved)
        return result


def coordinator_for(runtime, alerter, tmp_path, loader, debounce=0.05):
    return ReloadCoordinator(
        runtime, alerter, None, [str(tmp_path)], timedelta(minutes=1),
        debounce_seconds=debounce, loader=loader, watch=False,
    )


@pytest.mark.asyncio
async def test_reload_publishes_new_snapshot(runtime, alerter, tmp_path) -> None:
    loader = FakeLoader(make_snapshot([make_alert("/alerts/new.yml")]))
    coordinator = coordinator_for(runtime, alerter, tmp_path, loader)
    reloads_before = metrics_registry.get_sample_value("alertd_reloads_total")

    assert await coordinator.reload({ReloadReason.API})

    assert list(runtime.snapshot.alerts) == ["/alerts/new.yml"]
    assert coordinator.reload_count == 1
    assert metrics_registry.get_sample_value("alertd_reloads_total") == reloads_before + 1
    assert metrics_registry.get_sample_value("alertd_alerts_loaded") == 1


@pytest.mark.asyncio
async def test_failed_load_keeps_current_snapshot(runtime, alerter, tmp_path) -> None:
    runtime.publish(make_snapshot([make_alert()]))
    coordinator = coordinator_for(runtime, alerter, tmp_path, FakeLoader(LoadError("no alert globs configured")))

    assert not await coordinator.reload({ReloadReason.SIGNAL})

    assert list(runtime.snapshot.alerts) == ["/alerts/a.yml"]


@pytest.mark.asyncio
async def test_resolve_only_batch_skips_unchanged_paths(runtime, alerter, tmp_path) -> None:
    loader = FakeLoader(make_snapshot([make_alert()]))
    coordinator = coordinator_for(runtime, alerter, tmp_path, loader)

    assert await coordinator.reload({ReloadReason.RESOLVE})
    assert runtime.snapshot.resolved == GlobResolver([str(tmp_path)]).resolve()
    assert not await coordinator.reload({ReloadReason.RESOLVE})
    assert await coordinator.reload({ReloadReason.RESOLVE, ReloadReason.FILES})

    assert loader.calls == 2


@pytest.mark.asyncio
async def test_reload_reports_definition_errors(runtime, alerter, sender, tmp_path) -> None:
    error = DefinitionError(path="/alerts/bad.yml", message="invalid YAML")
    coordinator = coordinator_for(runtime, alerter, tmp_path, FakeLoader(make_snapshot(errors=[error])))

    await coordinator.reload({ReloadReason.API})
    await coordinator.reload({ReloadReason.API})

    assert len(sender.sent) == 1
    assert "bad.yml" in sender.sent[0]["subject"]


@pytest.mark.asyncio
async def test_burst_of_requests_is_one_reload(runtime, alerter, tmp_path) -> None:
    loader = FakeLoader(make_snapshot([make_alert()]))
    coordinator = coordinator_for(runtime, alerter, tmp_path, loader)
    coordinator.start()
    try:
        for reason in (ReloadReason.FILES, ReloadReason.FILES, ReloadReason.SIGNAL, ReloadReason.API):
            coordinator.request(reason)
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.3)
    finally:
        await coordinator.stop()

    assert loader.calls == 1
    assert coordinator.reload_count == 1


@pytest.mark.asyncio
async def test_request_before_start_is_ignored(runtime, alerter, tmp_path) -> None:
    loader = FakeLoader(make_snapshot())
    coordinator = coordinator_for(runtime, alerter, tmp_path, loader)

    coordinator.request(ReloadReason.API)

    assert loader.calls == 0
