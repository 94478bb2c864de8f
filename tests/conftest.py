from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import pytest

from barleybox.errors import TransportError
from barleybox.session import SessionController
from barleybox.store import MemoryStore
from barleybox.transport import TransportOptions


class FakeTransport:
    """Records every call; tests fire transport events by hand."""

    def __init__(self, url: str, options: TransportOptions) -> None:
        self.url = url
        self.options = options
        self.on_connect = None
        self.on_message = None
        self.on_error = None
        self.on_offline = None
        self.on_reconnect = None

        self.is_connected = False
        self.connect_calls = 0
        self.subscriptions: list[tuple[str, int]] = []
        self.published: list[tuple[str, bytes]] = []
        self.detached = False
        self.closed = False
        self.refuse_subscriptions: set[str] = set()
        self.fail_publish = False

    @property
    def connected(self) -> bool:
        return self.is_connected

    def connect(self) -> None:
        self.connect_calls += 1

    def subscribe(self, topic, qos, callback) -> None:
        self.subscriptions.append((topic, qos))
        callback(TransportError(f"refused {topic}") if topic in self.refuse_subscriptions else None)

    def publish(self, topic: str, payload: bytes) -> None:
        if self.fail_publish:
            raise TransportError("queue full")
        self.published.append((topic, payload))

    def detach(self) -> None:
        self.detached = True
        self.on_connect = None
        self.on_message = None
        self.on_error = None
        self.on_offline = None
        self.on_reconnect = None

    def close(self) -> None:
        self.closed = True

    # ==================== Event helpers ====================

    def fire_connect(self) -> None:
        self.is_connected = True
        if self.on_connect:
            self.on_connect()

    def fire_message(self, topic: str, payload: bytes) -> None:
        if self.on_message:
            self.on_message(topic, payload)

    def fire_error(self, err: Exception) -> None:
        if self.on_error:
            self.on_error(err)

    def fire_offline(self) -> None:
        self.is_connected = False
        if self.on_offline:
            self.on_offline()

    def fire_reconnect(self) -> None:
        if self.on_reconnect:
            self.on_reconnect()


class FakeTransportFactory:
    def __init__(self) -> None:
        self.created: list[FakeTransport] = []

    def __call__(self, url: str, options: TransportOptions) -> FakeTransport:
        transport = FakeTransport(url, options)
        self.created.append(transport)
        return transport

    @property
    def last(self) -> FakeTransport:
        return self.created[-1]


@dataclass
class _ManualTimer:
    due: float
    fn: Any
    interval: float | None = None
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass
class ManualScheduler:
    """Deterministic clock: timers fire only when a test calls `advance()`."""

    now: float = 0.0
    timers: list[_ManualTimer] = field(default_factory=list)

    def post(self, fn, *args) -> None:
        fn(*args)

    def call_later(self, delay: float, fn) -> _ManualTimer:
        timer = _ManualTimer(self.now + delay, fn)
        self.timers.append(timer)
        return timer

    def call_every(self, interval: float, fn) -> _ManualTimer:
        timer = _ManualTimer(self.now + interval, fn, interval=interval)
        self.timers.append(timer)
        return timer

    def pending(self) -> list[_ManualTimer]:
        return [t for t in self.timers if not t.cancelled]

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [t for t in self.pending() if t.due <= target + 1e-9]
            if not due:
                break

            timer = min(due, key=lambda t: t.due)
            self.now = timer.due
            if timer.interval is None:
                timer.cancelled = True
            else:
                timer.due += timer.interval
            timer.fn()
        self.now = target


@dataclass
class Harness:
    session: SessionController
    factory: FakeTransportFactory
    scheduler: ManualScheduler
    store: MemoryStore

    @property
    def transport(self) -> FakeTransport:
        return self.factory.last

    def connect(self, identity: str = "box1", broker: str = "broker.example.com") -> FakeTransport:
        """Connect & complete the transport handshake."""
        assert self.session.connect(identity, broker)
        self.transport.fire_connect()
        return self.transport


def make_harness(store: MemoryStore | None = None) -> Harness:
    factory = FakeTransportFactory()
    scheduler = ManualScheduler()
    store = store if store is not None else MemoryStore()
    session = SessionController(
        transport_factory=factory,
        scheduler=scheduler,
        store=store,
        clock=lambda: 1_700_000_000_000,
    )
    return Harness(session=session, factory=factory, scheduler=scheduler, store=store)


@pytest.fixture
def harness() -> Harness:
    return make_harness()
