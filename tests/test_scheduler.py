import threading

import pytest

from backend.clip_engine.scheduler import IntervalScheduler


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


def test_runs_immediately_then_on_interval():
    clock = FakeClock()
    runs = []
    sched = IntervalScheduler(5, lambda: runs.append(clock.now), clock=clock)

    assert sched.run_pending() is True
    clock.now = 3
    assert sched.run_pending() is False
    assert sched.seconds_until_next() == 2
    clock.now = 5
    assert sched.run_pending() is True
    assert runs == [0, 5]


def test_missed_intervals_run_once():
    clock = FakeClock()
    runs = []
    sched = IntervalScheduler(5, lambda: runs.append(clock.now), clock=clock)
    sched.run_pending()

    clock.now = 17
    assert sched.run_pending() is True
    assert sched.run_pending() is False
    clock.now = 21
    assert sched.run_pending() is False
    clock.now = 22
    assert sched.run_pending() is True
    assert runs == [0, 17, 22]


def test_task_errors_do_not_stop_schedule():
    clock = FakeClock()
    calls = []

    def task():
        calls.append(clock.now)
        raise RuntimeError("boom")

    sched = IntervalScheduler(1, task, clock=clock)
    assert sched.run_pending() is True
    clock.now = 1
    assert sched.run_pending() is True
    assert calls == [0, 1]


@pytest.mark.parametrize("interval", [0, -1])
def test_rejects_non_positive_interval(interval):
    with pytest.raises(ValueError):
        IntervalScheduler(interval, lambda: None)


def test_background_start_and_stop():
    ticked = threading.Event()
    sched = IntervalScheduler(0.01, ticked.set)

    sched.start()
    assert ticked.wait(2)
    assert sched.running
    sched.stop(timeout=2)
    assert not sched.running
