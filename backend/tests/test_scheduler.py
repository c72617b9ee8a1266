import asyncio
from datetime import timedelta

import pytest
import pytest_asyncio

from alertd.models import CommandSource, EventSource, EventType, SendSpec
from alertd.services.alerter import AlerterService
from alertd.services.evaluator import SourceEvaluator
from alertd.services.notifier import NotificationPipeline
from alertd.services.scheduler import SchedulerService

from conftest import FakeQueryClient, make_alert, make_snapshot


@pytest_asyncio.fixture
async def scheduler(runtime, alerter):
    service = SchedulerService(runtime, alerter, jitter_seconds=0)
    yield service
    await service.shutdown()


@pytest.mark.asyncio
async def test_sync_schedules_enabled_polled_alerts(runtime, scheduler) -> None:
    runtime.publish(make_snapshot([
        make_alert("/alerts/a.yml"),
        make_alert("/alerts/off.yml", enabled=False),
        make_alert("/alerts/http.yml", source=EventSource(event=EventType.HTTP)),
    ]))
    scheduler.start()

    assert scheduler.scheduled_paths() == ["/alerts/a.yml"]
    assert scheduler.scheduler.get_job("/alerts/a.yml") is not None


@pytest.mark.asyncio
async def test_sync_keeps_unchanged_timers_and_replaces_changed_ones(runtime, scheduler) -> None:
    runtime.publish(make_snapshot([make_alert("/alerts/a.yml"), make_alert("/alerts/b.yml")]))
    scheduler.start()
    untouched = scheduler.scheduler.get_job("/alerts/a.yml").next_run_time

    snapshot = make_snapshot([
        make_alert("/alerts/a.yml", send=(SendSpec(target_id="ops", body_template="edited"),)),
        make_alert("/alerts/c.yml", interval=timedelta(minutes=5)),
    ])
    runtime.publish(snapshot)
    scheduler.sync(snapshot)

    assert scheduler.scheduled_paths() == ["/alerts/a.yml", "/alerts/c.yml"]
    assert scheduler.scheduler.get_job("/alerts/b.yml") is None
    assert scheduler.scheduler.get_job("/alerts/a.yml").next_run_time == untouched
    assert scheduler.scheduler.get_job("/alerts/c.yml").trigger.interval == timedelta(minutes=5)


@pytest.mark.asyncio
async def test_tick_uses_the_current_snapshot(runtime, alerter, sender, query_client, scheduler) -> None:
    runtime.publish(make_snapshot([make_alert(send=(SendSpec(target_id="ops", body_template="v1"),))]))
    runtime.publish(make_snapshot([make_alert(send=(SendSpec(target_id="ops", body_template="v2"),))]))
    query_client.results = [[{"id": 1}]]

    await scheduler._tick("/alerts/a.yml")
    await scheduler._tick("/alerts/gone.yml")

    assert [mail["text"] for mail in sender.sent] == ["v2"]


@pytest.mark.asyncio
async def test_run_once_waits_for_every_alert(runtime, sender) -> None:
    printed = []
    alerter = AlerterService(
        runtime,
        SourceEvaluator(FakeQueryClient([[{"id": 1}]])),
        NotificationPipeline(sender, dry_run=True, echo=printed.append),
        hostname="testhost",
    )
    runtime.publish(make_snapshot([
        make_alert("/alerts/rows.yml"),
        make_alert("/alerts/slow.yml", source=CommandSource(shell="/bin/sh", run="sleep 0.2; exit 1"),
                   send=(SendSpec(target_id="ops", body_template="exit {{ exit_code }}"),)),
    ]))

    count = await SchedulerService(runtime, alerter).run_once()

    assert count == 2
    assert sender.sent == []
    assert len(printed) == 2
    assert any("exit 1" in block for block in printed)


@pytest.mark.asyncio
async def test_shutdown_waits_for_running_ticks(runtime, alerter, query_client, scheduler) -> None:
    gate = asyncio.Event()
    finished = []

    async def slow_query(sql, not_before, interval):
        await gate.wait()
        finished.append(sql)
        return []

    query_client.query = slow_query
    scheduler.start()
    runtime.publish(make_snapshot([make_alert()]))

    tick = asyncio.create_task(scheduler._tick("/alerts/a.yml"))
    await asyncio.sleep(0.05)
    stopping = asyncio.create_task(scheduler.shutdown())
    await asyncio.sleep(0.05)
    assert not stopping.done()

    gate.set()
    await asyncio.wait_for(stopping, timeout=2)
    await tick

    assert finished == ["select 1"]
    assert not scheduler.running
