"""
Single-threaded event queue for the dashboard session.

paho-mqtt delivers callbacks on its own network thread and timers fire on
`threading.Timer` threads. None of them touch session state directly: they post
a callable here, and one worker thread runs the callables in arrival order. Device
and session state therefore never need a lock.

    paho thread   --post()-->  +-----------+
    timer threads --post()-->  | SimpleQueue | --> worker thread --> SessionController
    HTTP handlers --post()-->  +-----------+
"""

from __future__ import annotations

import logging
import queue
import threading
from concurrent.futures import Future
from typing import TYPE_CHECKING, Any, Final, Protocol

if TYPE_CHECKING:
    from collections.abc import Callable
    from logging import Logger

_STOP: Final = object()


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def post(self, fn: Callable[..., Any], *args: Any) -> None: ...  # noqa: ANN401

    def call_later(self, delay: float, fn: Callable[[], Any]) -> TimerHandle: ...

    def call_every(self, interval: float, fn: Callable[[], Any]) -> TimerHandle: ...


class _Timer:
    """One-shot timer whose callback runs on the event queue.

    `cancel()` is honoured even if the timer thread already posted the callback,
    since the cancelled flag is checked on the queue thread itself.
    """

    def __init__(self, owner: EventQueue, delay: float, fn: Callable[[], Any], *, repeat: bool = False) -> None:
        self._owner = owner
        self._delay = delay
        self._fn = fn
        self._repeat = repeat
        self._cancelled = False
        self._thread: threading.Timer | None = None
        self._arm()

    def _arm(self) -> None:
        self._thread = threading.Timer(self._delay, self._owner.post, args=(self._fire,))
        self._thread.daemon = True
        self._thread.start()

    def _fire(self) -> None:
        if self._cancelled:
            return
        if self._repeat:
            self._arm()
        self._fn()

    def cancel(self) -> None:
        self._cancelled = True
        if self._thread is not None:
            self._thread.cancel()


class EventQueue:
    """Runs posted callables one at a time on a dedicated worker thread."""

    _log: Logger

    def __init__(self) -> None:
        self._log = logging.getLogger("EventQueue")
        self._queue: queue.SimpleQueue[Any] = queue.SimpleQueue()
        self._thread: threading.Thread | None = None

    # ==================== Lifecycle ====================

    def start(self) -> None:
        if self._thread is not None:
            return

        self._thread = threading.Thread(target=self.run_forever, name="barleybox-events", daemon=True)
        self._thread.start()
        self._log.debug("Event queue started")

    def stop(self) -> None:
        self._queue.put(_STOP)
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=5)
        self._thread = None

    def run_forever(self) -> None:
        while True:
            item = self._queue.get()
            if item is _STOP:
                self._log.debug("Event queue stopped")
                return

            fn, args = item
            try:
                fn(*args)
            except Exception:
                # Keep the queue alive; a failing handler must not stall the session
                self._log.exception("Unhandled error in event handler %r", fn)

    # ==================== Scheduling ====================

    def post(self, fn: Callable[..., Any], *args: Any) -> None:  # noqa: ANN401
        self._queue.put((fn, args))

    def call_later(self, delay: float, fn: Callable[[], Any]) -> TimerHandle:
        return _Timer(self, delay, fn)

    def call_every(self, interval: float, fn: Callable[[], Any]) -> TimerHandle:
        return _Timer(self, interval, fn, repeat=True)

    def run_sync[T](self, fn: Callable[[], T], *, timeout: float = 5) -> T:
        """Run `fn` on the queue & wait for its result (for callers on other threads).

        Raises:
            TimeoutError: The queue did not get to `fn` within `timeout` seconds
        """

        if self._thread is None or self._thread is threading.current_thread():
            return fn()

        fut: Future[T] = Future()

        def _call() -> None:
            try:
                fut.set_result(fn())
            except Exception as e:  # noqa: BLE001
                fut.set_exception(e)

        self.post(_call)
        return fut.result(timeout=timeout)
