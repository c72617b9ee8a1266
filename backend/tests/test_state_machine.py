from datetime import timedelta

from alertd.models import (
    AlertRuntimeState,
    AlwaysSend,
    CommandSource,
    EventSource,
    EventType,
    NumericalThreshold,
    Observation,
    QuerySource,
    WhenChanged,
)
from alertd.services.state_machine import commit, compute_signature, decide, decide_error_event

from conftest import T0, make_alert


def run_sequence(definition, observations, step=timedelta(minutes=1), state=None):
    """Feed observations one tick apart, delivering every notification."""
    state = state or AlertRuntimeState()
    decisions = []
    for index, observation in enumerate(observations):
        now = T0 + step * index
        decision = decide(definition, state, observation, now)
        state = commit(decision, delivered=decision.notify, now=now)
        decisions.append(decision)
    return decisions, state


def value_rows(*values):
    return [Observation.query([{"value": v}]) for v in values]


def threshold_alert(clear_at=50):
    source = QuerySource(sql="select value", numerical=(NumericalThreshold("value", alert_at=100, clear_at=clear_at),))
    return make_alert(source=source)


def test_threshold_sequence_notifies_on_trigger_and_clear() -> None:
    decisions, state = run_sequence(threshold_alert(), value_rows(40, 120, 80, 40))

    assert [d.notify for d in decisions] == [False, True, False, True]
    assert decisions[1].reason == "triggered"
    assert decisions[3].cleared
    assert not state.triggered


def test_threshold_without_clear_level_stays_triggered() -> None:
    decisions, state = run_sequence(threshold_alert(clear_at=None), value_rows(40, 120, 80, 40, 0))

    assert [d.notify for d in decisions] == [False, True, False, False, False]
    assert state.triggered
    assert state.status == "TRIGGERED"


def test_inverted_threshold_triggers_low_and_clears_high() -> None:
    source = QuerySource(sql="select free", numerical=(NumericalThreshold("value", alert_at=10, clear_at=30),))
    decisions, _ = run_sequence(make_alert(source=source), value_rows(50, 5, 20, 35))

    assert [d.notify for d in decisions] == [False, True, False, True]


def test_any_row_crossing_triggers() -> None:
    observation = Observation.query([{"value": 10}, {"value": 150}])
    decision = decide(threshold_alert(), AlertRuntimeState(), observation, T0)

    assert decision.notify
    assert decision.state.latched_fields == frozenset({"value"})


def test_plain_query_triggers_on_rows_and_clears_on_empty() -> None:
    observations = [Observation.query([]), Observation.query([{"id": 1}]), Observation.query([{"id": 2}]), Observation.query([])]
    decisions, _ = run_sequence(make_alert(), observations)

    assert [d.notify for d in decisions] == [False, True, False, True]
    assert decisions[3].cleared


def test_command_triggers_on_non_zero_exit() -> None:
    definition = make_alert(source=CommandSource(shell="sh", run="exit 1"))
    decisions, _ = run_sequence(definition, [Observation.command("", 0), Observation.command("bad", 2)])

    assert [d.notify for d in decisions] == [False, True]


def test_event_arrival_always_triggers() -> None:
    definition = make_alert(source=EventSource(event=EventType.HTTP))
    decision = decide(definition, AlertRuntimeState(), Observation.event({"message": "hi"}), T0)

    assert decision.notify
    assert decision.triggered


def test_always_send_notifies_every_trigger() -> None:
    definition = make_alert(always_send=AlwaysSend.always())
    decisions, _ = run_sequence(definition, [Observation.query([{"id": 1}])] * 3)

    assert [d.notify for d in decisions] == [True, True, True]


def test_resend_after_waits_for_the_interval() -> None:
    definition = make_alert(always_send=AlwaysSend.resend_after(timedelta(hours=1)))
    observations = [Observation.query([{"id": 1}])] * 9
    decisions, _ = run_sequence(definition, observations, step=timedelta(minutes=15))

    # ticks at 0, 15, 30, 45, 60, 75, 90, 105, 120 minutes
    assert [d.notify for d in decisions] == [True, False, False, False, True, False, False, False, True]


def test_when_changed_only_filter_ignores_other_fields() -> None:
    first = Observation.query([{"a": 1, "b": "x"}])
    second = Observation.query([{"a": 1, "b": "y"}])

    only_a = make_alert(when_changed=WhenChanged(enabled=True, only_fields=frozenset({"a"})))
    decisions, _ = run_sequence(only_a, [first, second])
    assert [d.notify for d in decisions] == [True, False]

    only_b = make_alert(when_changed=WhenChanged(enabled=True, only_fields=frozenset({"b"})))
    decisions, _ = run_sequence(only_b, [first, second])
    assert [d.notify for d in decisions] == [True, True]


def test_when_changed_except_filter() -> None:
    definition = make_alert(when_changed=WhenChanged(enabled=True, except_fields=frozenset({"checked_at"})))
    observations = [
        Observation.query([{"host": "db1", "checked_at": "10:00"}]),
        Observation.query([{"host": "db1", "checked_at": "10:01"}]),
        Observation.query([{"host": "db2", "checked_at": "10:02"}]),
    ]
    decisions, _ = run_sequence(definition, observations)

    assert [d.notify for d in decisions] == [True, False, True]


def test_when_changed_resend_needs_a_change() -> None:
    definition = make_alert(
        when_changed=WhenChanged(enabled=True),
        always_send=AlwaysSend.resend_after(timedelta(minutes=30)),
    )
    same = Observation.query([{"id": 1}])
    decisions, _ = run_sequence(definition, [same, same, same, Observation.query([{"id": 2}])], step=timedelta(minutes=30))

    assert [d.notify for d in decisions] == [True, False, False, True]


def test_signature_ignores_row_key_order() -> None:
    when_changed = WhenChanged(enabled=True)
    assert compute_signature(Observation.query([{"a": 1, "b": 2}]), when_changed) == compute_signature(
        Observation.query([{"b": 2, "a": 1}]), when_changed
    )


def test_pause_suppresses_until_deadline() -> None:
    definition = make_alert(always_send=AlwaysSend.always())
    deadline = T0 + timedelta(minutes=2)
    state = AlertRuntimeState(paused_until=deadline)
    decisions, state = run_sequence(definition, [Observation.query([{"id": 1}])] * 4, state=state)

    # ticks at 0, 1, 2, 3 minutes; the tick at the deadline resumes
    assert [d.notify for d in decisions] == [False, False, True, True]
    assert [d.reason for d in decisions[:2]] == ["paused", "paused"]


def test_last_sent_at_only_moves_on_delivery() -> None:
    definition = make_alert()
    decision = decide(definition, AlertRuntimeState(), Observation.query([{"id": 1}]), T0)

    assert commit(decision, delivered=False, now=T0).last_sent_at is None
    assert commit(decision, delivered=True, now=T0).last_sent_at == T0


def test_triggered_at_is_kept_while_triggered_and_reset_on_clear() -> None:
    observations = [Observation.query([{"id": 1}]), Observation.query([{"id": 1}]), Observation.query([])]
    definition = make_alert()
    state = AlertRuntimeState()
    stamps = []
    for index, observation in enumerate(observations):
        now = T0 + timedelta(minutes=index)
        state = commit(decide(definition, state, observation, now), True, now)
        stamps.append(state.triggered_at)

    assert stamps == [T0, T0, None]


def test_error_events_notify_once_then_follow_resend() -> None:
    state = AlertRuntimeState()
    first = decide_error_event(state, T0)
    state = commit(first, True, T0)
    second = decide_error_event(state, T0 + timedelta(minutes=5))

    assert first.notify
    assert not second.notify

    resend = AlwaysSend.resend_after(timedelta(minutes=10))
    assert not decide_error_event(state, T0 + timedelta(minutes=5), resend).notify
    assert decide_error_event(state, T0 + timedelta(minutes=10), resend).notify
