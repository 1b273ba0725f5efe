import threading
from datetime import timedelta

from flight_proxy.alert_state import AlertStateMachine
from flight_proxy.schemas import ErrorEvent, ErrorKind


def _event(kind=ErrorKind.SERVER_ERROR):
    return ErrorEvent(kind=kind, status_code=500, message="boom", endpoint="/api/v9/routes", method="GET")


def test_first_error_notifies_and_starts_streak(alerts):
    decision = alerts.observe("airlabs", _event())
    assert decision.should_notify is True
    assert decision.snapshot.error_count == 1
    assert decision.snapshot.in_error_state is True
    assert decision.snapshot.first_error_time is not None
    assert decision.snapshot.last_alert_time is not None


def test_second_error_within_cooldown_is_counted_but_silent(alerts, clock):
    alerts.observe("airlabs", _event())
    clock.advance(minutes=1)
    decision = alerts.observe("airlabs", _event())
    assert decision.should_notify is False
    assert decision.snapshot.error_count == 2


def test_error_after_cooldown_notifies_again(alerts, clock):
    first = alerts.observe("airlabs", _event())
    clock.advance(minutes=1)
    alerts.observe("airlabs", _event())
    clock.advance(minutes=15)
    decision = alerts.observe("airlabs", _event())
    assert decision.should_notify is True
    assert decision.snapshot.error_count == 3
    assert decision.snapshot.first_error_time == first.snapshot.first_error_time


def test_last_alert_time_only_moves_on_fire(alerts, clock):
    first = alerts.observe("airlabs", _event())
    clock.advance(minutes=5)
    second = alerts.observe("airlabs", _event())
    assert second.snapshot.last_alert_time == first.snapshot.last_alert_time
    # Still measured from the first alert, not the silent second error
    clock.advance(minutes=10)
    assert alerts.observe("airlabs", _event()).should_notify is True


def test_success_after_streak_recovers(alerts):
    alerts.observe("airlabs", _event())
    alerts.observe("airlabs", _event())
    decision = alerts.observe("airlabs", None)
    assert decision.should_notify is False
    assert decision.snapshot.error_count == 0
    assert decision.snapshot.in_error_state is False
    assert decision.snapshot.first_error_time is None


def test_cooldown_survives_recovery(alerts, clock):
    alerts.observe("airlabs", _event())
    alerts.observe("airlabs", None)
    clock.advance(minutes=2)
    decision = alerts.observe("airlabs", _event())
    assert decision.snapshot.error_count == 1
    assert decision.should_notify is False


def test_repeated_success_on_healthy_service_is_noop(alerts):
    before = alerts.snapshot("airlabs")
    for _ in range(3):
        decision = alerts.observe("airlabs", None)
        assert decision.should_notify is False
    after = alerts.snapshot("airlabs")
    assert after == before
    assert after.error_count == 0
    assert after.first_error_time is None


def test_services_are_tracked_independently(alerts):
    alerts.observe("airlabs", _event())
    decision = alerts.observe("farera", _event(ErrorKind.CONNECTION_ERROR))
    assert decision.should_notify is True
    assert alerts.snapshot("airlabs").error_count == 1
    assert alerts.snapshot("farera").error_count == 1


def test_snapshot_is_a_copy(alerts):
    decision = alerts.observe("airlabs", _event())
    decision.snapshot.error_count = 99
    assert alerts.snapshot("airlabs").error_count == 1


def test_snapshots_lists_tracked_services(alerts):
    alerts.track("farera")
    alerts.observe("airlabs", _event())
    states = alerts.snapshots()
    assert set(states) == {"airlabs", "farera"}
    assert states["farera"].in_error_state is False


def test_custom_cooldown(clock):
    machine = AlertStateMachine(cooldown=timedelta(minutes=1), clock=clock)
    machine.observe("airlabs", _event())
    clock.advance(seconds=61)
    assert machine.observe("airlabs", _event()).should_notify is True


def test_concurrent_errors_fire_exactly_once(alerts):
    barrier = threading.Barrier(16)
    decisions = []
    lock = threading.Lock()

    def worker():
        barrier.wait()
        decision = alerts.observe("airlabs", _event())
        with lock:
            decisions.append(decision)

    threads = [threading.Thread(target=worker) for _ in range(16)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert sum(d.should_notify for d in decisions) == 1
    assert alerts.snapshot("airlabs").error_count == 16
