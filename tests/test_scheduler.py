import threading
import time

import pytest

from barleybox.scheduler import EventQueue

WAIT = 2.0


@pytest.fixture
def events():
    queue = EventQueue()
    queue.start()
    yield queue
    queue.stop()


def test_posted_callables_run_in_order_on_one_thread(events):
    seen: list[tuple[int, str]] = []
    done = threading.Event()

    for idx in range(5):
        events.post(lambda i=idx: seen.append((i, threading.current_thread().name)))
    events.post(done.set)

    assert done.wait(WAIT)
    assert [i for i, _ in seen] == [0, 1, 2, 3, 4]
    assert {name for _, name in seen} == {"barleybox-events"}


def test_failing_handler_does_not_stop_queue(events):
    done = threading.Event()

    def boom() -> None:
        raise RuntimeError("boom")

    events.post(boom)
    events.post(done.set)
    assert done.wait(WAIT)


def test_call_later_fires_on_queue(events):
    fired = threading.Event()
    names: list[str] = []

    def _fire() -> None:
        names.append(threading.current_thread().name)
        fired.set()

    events.call_later(0.01, _fire)
    assert fired.wait(WAIT)
    assert names == ["barleybox-events"]


def test_cancelled_timer_never_fires(events):
    fired = threading.Event()
    handle = events.call_later(0.05, fired.set)
    handle.cancel()

    assert not fired.wait(0.2)


def test_call_every_repeats_until_cancelled(events):
    count = 0
    third = threading.Event()

    def _tick() -> None:
        nonlocal count
        count += 1
        if count == 3:
            third.set()

    handle = events.call_every(0.01, _tick)
    assert third.wait(WAIT)
    events.run_sync(handle.cancel)

    seen = events.run_sync(lambda: count)
    time.sleep(0.05)
    assert events.run_sync(lambda: count) == seen


def test_run_sync_returns_result_and_raises(events):
    assert events.run_sync(lambda: 42) == 42

    def bad() -> int:
        raise ValueError("nope")

    with pytest.raises(ValueError, match="nope"):
        events.run_sync(bad)


def test_run_sync_without_worker_runs_inline():
    assert EventQueue().run_sync(lambda: "inline") == "inline"
