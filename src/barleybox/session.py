"""
Dashboard session for one barley box.

`SessionController` owns everything mutable about a session: the transport handle,
the derived topics, the connection state and the device's last-known state. Its
transport callbacks & timers are expected to run on a single event queue (see
`scheduler.EventQueue`), so nothing here takes a lock.

State Machine:
    disconnected --connect()--> connecting --on_connect--> connected
    connected --on_reconnect--> reconnecting --on_connect--> connected
    connected/reconnecting --on_offline / liveness poll--> disconnected
    any --connect() again--> connecting (previous transport detached & closed)

After every successful connect the controller subscribes to the device's
telemetry, config echo and status topics, waits SETTLE_DELAY for the device side
to attach, then asks the device to publish its config.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import asdict
from functools import partial
from typing import TYPE_CHECKING, Any, Final

from barleybox.activity import ActivityLog
from barleybox.codec import (
    CMD_PUBLISH_CONFIG,
    DeviceOnline,
    DeviceWarning,
    FeedTriggered,
    config_from_form,
    decode_config,
    decode_status,
    decode_telemetry,
    encode_command,
    encode_config,
    encode_control,
    to_display,
)
from barleybox.errors import BarleyBoxError, InvalidInput, MalformedPayload, NotConnected, TransportError
from barleybox.misc import time_now_ms
from barleybox.state import DeviceState
from barleybox.store import KEY_BROKER, KEY_DEVICE_ID, config_key
from barleybox.topics import derive, diagnostic_topic
from barleybox.transport import TransportOptions, broker_url

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping
    from logging import Logger

    from barleybox.codec import StatusEvent
    from barleybox.scheduler import Scheduler, TimerHandle
    from barleybox.state import Snapshot
    from barleybox.store import KeyValueStore
    from barleybox.topics import TopicSet
    from barleybox.transport import Transport, TransportFactory
    from barleybox.types import ControlChannel, SessionState

SETTLE_DELAY: Final = 2.0  # Secs between connect & config request (device needs time to attach)
FEED_FLAG_TTL: Final = 3.0  # Secs a feed pulse is shown as in progress
LIVENESS_INTERVAL: Final = 5.0  # Secs between transport liveness checks
RECONNECT_PERIOD_MS: Final = 5000

SUBSCRIBE_QOS: Final = 0
DIAGNOSTIC_PAYLOAD: Final = b"test message from dashboard"


def default_broker_url(broker: str) -> str:
    return broker_url(broker, scheme="wss", port=8084, path="/mqtt")


class SessionController:
    """Connection lifecycle, topic routing & command publishing for one device."""

    log: ActivityLog

    _log: Logger
    _factory: TransportFactory
    _scheduler: Scheduler
    _store: KeyValueStore
    _device: DeviceState

    _state: SessionState
    _identity: str | None
    _broker: str | None
    _topics: TopicSet | None
    _transport: Transport | None

    _settle_timer: TimerHandle | None
    _feed_timer: TimerHandle | None
    _liveness_timer: TimerHandle | None

    def __init__(
        self,
        *,
        transport_factory: TransportFactory,
        scheduler: Scheduler,
        store: KeyValueStore,
        url_for: Callable[[str], str] = default_broker_url,
        clock: Callable[[], int] = time_now_ms,
    ) -> None:
        self._log = logging.getLogger("Session")
        self.log = ActivityLog(self._log)

        self._factory = transport_factory
        self._scheduler = scheduler
        self._store = store
        self._url_for = url_for
        self._clock = clock
        self._device = DeviceState()

        self._state = "disconnected"
        self._identity = None
        self._broker = None
        self._topics = None
        self._transport = None

        self._settle_timer = None
        self._feed_timer = None
        self._liveness_timer = None

    # ==================== Read-only View ====================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def identity(self) -> str | None:
        return self._identity

    @property
    def broker(self) -> str | None:
        return self._broker

    @property
    def topics(self) -> TopicSet | None:
        return self._topics

    @property
    def transport_connected(self) -> bool:
        """The transport's own view of the broker link (may lag `state` until the liveness poll)."""
        return self._transport is not None and self._transport.connected

    def snapshot(self) -> Snapshot:
        return self._device.snapshot()

    def config_form(self) -> dict[str, Any]:
        """Current config in the units the operator edits."""
        return to_display(asdict(self._device.snapshot().config))

    # ==================== Lifecycle ====================

    def restore(self) -> tuple[str | None, str | None]:
        """Return the saved device ID & broker, pre-loading the device's last sent config."""

        identity = self._store.get(KEY_DEVICE_ID)
        broker = self._store.get(KEY_BROKER)
        if identity:
            self._load_cached_config(identity)
        return identity, broker

    def connect(self, identity: str, broker: str) -> bool:
        """Open a session to `identity` via `broker`, replacing any current one.

        Returns:
            False if the input was rejected or the transport couldn't be built
        """

        identity, broker = identity.strip(), broker.strip()
        if not identity or not broker:
            self.log.error(InvalidInput("device ID and broker address are required"))
            return False

        self._teardown()

        self._persist(KEY_DEVICE_ID, identity)
        self._persist(KEY_BROKER, broker)

        if identity != self._identity:
            self._cancel_feed_timer()
            self._device.reset()
            self._load_cached_config(identity)

        self._identity = identity
        self._broker = broker
        self._topics = derive(identity)

        url = self._url_for(broker)
        options = TransportOptions(
            client_id=f"dashboard-{identity}-{secrets.token_hex(4)}",
            clean=True,
            reconnect_period_ms=RECONNECT_PERIOD_MS,
        )

        self.log.info(f"Connecting to {url}...")
        try:
            transport = self._factory(url, options)
        except TransportError as e:
            self.log.error(e)
            self._set_state("disconnected")
            return False

        self._bind(transport)
        self._transport = transport
        self._set_state("connecting")
        transport.connect()

        if self._liveness_timer is None:
            self._liveness_timer = self._scheduler.call_every(LIVENESS_INTERVAL, self._check_liveness)
        return True

    def disconnect(self) -> None:
        """Close the current transport (if any) and stop polling it."""

        had_transport = self._transport is not None
        self._teardown()
        if self._liveness_timer is not None:
            self._liveness_timer.cancel()
            self._liveness_timer = None

        self._set_state("disconnected")
        if had_transport:
            self.log.info("Disconnected from broker")

    def close(self) -> None:
        self.disconnect()
        self._cancel_feed_timer()

    # ==================== Commands ====================

    def send_control(self, channel: ControlChannel, action: str) -> bool:
        """Publish an actuator intent (e.g. heater ON) to the device."""

        if not self._require_connected(f"control {channel}"):
            return False

        try:
            payload = encode_control(channel, action)
        except InvalidInput as e:
            self.log.error(e)
            return False

        if not self._publish(self._topics.control(channel), payload):  # type: ignore[union-attr]
            return False

        self.log.info(f"Sent {channel} command: {payload.decode()}")
        return True

    def send_mode(self, action: str) -> bool:
        return self.send_control("mode", action)

    def trigger_feed(self) -> bool:
        return self.send_control("feed", "TRIGGER")

    def fetch_config(self) -> bool:
        """Ask the device to publish its current config on the config echo topic."""

        if not self._require_connected("read config"):
            return False

        if not self._publish(self._topics.command, encode_command(CMD_PUBLISH_CONFIG)):  # type: ignore[union-attr]
            return False

        self.log.info("Requesting device config...")
        return True

    def send_config(self, form: Mapping[str, Any]) -> bool:
        """Send the filled-in fields of a config form (display units) to the device.

        Blank or invalid inputs are left out of the payload. The payload sent is
        remembered as this device's last config.
        """

        if not self._require_connected("send config"):
            return False

        if not config_from_form(form):
            self.log.warning("Config form has no valid fields; sending empty config")

        payload = encode_config(form)
        if not self._publish(self._topics.config_in, payload):  # type: ignore[union-attr]
            return False

        self.log.success("Config sent to device")
        self._persist(config_key(self._identity), payload.decode())  # type: ignore[arg-type]
        return True

    # ==================== Diagnostics ====================

    def resubscribe(self) -> bool:
        """Re-issue the inbound subscriptions on the live transport."""

        if self._transport is None or not self._transport.connected:
            self.log.error(NotConnected("cannot resubscribe: transport is not connected"))
            return False

        self._subscribe_all(self._transport)
        self.log.info("Resubscribing to device topics...")
        return True

    def publish_test(self) -> bool:
        """Publish a marker message to the device's scratch topic."""

        if self._transport is None or not self._transport.connected:
            self.log.error(NotConnected("cannot publish test message: transport is not connected"))
            return False

        topic = diagnostic_topic(self._identity)  # type: ignore[arg-type]
        if not self._publish(topic, DIAGNOSTIC_PAYLOAD):
            return False

        self.log.info(f"Test message sent to {topic}")
        return True

    # ==================== Transport Callbacks ====================

    def _bind(self, transport: Transport) -> None:
        """Attach callbacks that ignore events once `transport` is superseded."""

        def guarded(handler: Callable[..., None]) -> Callable[..., None]:
            def _call(*args: Any) -> None:  # noqa: ANN401
                if transport is not self._transport:
                    self._log.debug("Ignoring event from superseded transport")
                    return
                handler(*args)

            return _call

        transport.on_connect = guarded(self._handle_connect)
        transport.on_message = guarded(self._handle_message)
        transport.on_error = guarded(self._handle_error)
        transport.on_offline = guarded(self._handle_offline)
        transport.on_reconnect = guarded(self._handle_reconnect)

    def _handle_connect(self) -> None:
        self._set_state("connected")
        self.log.success(f"Connected to {self._broker}")

        self._subscribe_all(self._transport)  # type: ignore[arg-type]
        self.log.success(f"Subscribed to device {self._identity}")
        self.log.info("Waiting for device to come online...")

        self._cancel_settle_timer()
        self._settle_timer = self._scheduler.call_later(SETTLE_DELAY, self._settle_elapsed)

    def _handle_message(self, topic: str, payload: bytes) -> None:
        topics = self._topics
        if topics is None:
            return

        try:
            if topic == topics.telemetry:
                self._device.merge_telemetry(decode_telemetry(payload))
                self._log.debug("Telemetry received")
            elif topic == topics.config_out:
                self._device.merge_config(decode_config(payload))
                self.log.success("Device config loaded")
            elif topic == topics.status:
                for event in decode_status(payload):
                    self._apply_status(event)
            else:
                self._log.warning("[IGNORING] Message on unhandled topic %s", topic)
                return
        except MalformedPayload as e:
            self.log.error(e)
            return

        self._device.touch(self._clock())

    def _handle_error(self, err: Exception) -> None:
        self.log.error(err if isinstance(err, BarleyBoxError) else TransportError(str(err)))

    def _handle_offline(self) -> None:
        self._cancel_settle_timer()
        self._set_state("disconnected")
        self.log.warning("Connection to broker lost")

    def _handle_reconnect(self) -> None:
        self._set_state("reconnecting")
        self.log.info("Reconnecting...")

    def _on_subscribed(self, transport: Transport, topic: str, err: TransportError | None) -> None:
        if transport is not self._transport:
            return

        if err is not None:
            self.log.error(err)
            return

        self._log.debug("Subscribed to topic: [bright_green]%s[/]", topic)

    # ==================== Timers ====================

    def _settle_elapsed(self) -> None:
        self._settle_timer = None
        self.fetch_config()

    def _feed_elapsed(self) -> None:
        self._feed_timer = None
        self._device.clear_feeding()

    def _check_liveness(self) -> None:
        transport = self._transport
        if transport is None or self._state != "connected" or transport.connected:
            return

        self._set_state("disconnected")
        self.log.warning("Transport dropped without notice; marked as disconnected")

    # ==================== Utility Methods ====================

    def _apply_status(self, event: StatusEvent) -> None:
        self._device.apply_status(event)

        match event:
            case FeedTriggered():
                self.log.success("Feeder dispensed")
                self._cancel_feed_timer()
                self._feed_timer = self._scheduler.call_later(FEED_FLAG_TTL, self._feed_elapsed)
            case DeviceWarning(message=message):
                self.log.warning(f"Device warning: {message}")
            case DeviceOnline():
                self.log.success("Device online")

    def _subscribe_all(self, transport: Transport) -> None:
        for topic in self._topics.inbound():  # type: ignore[union-attr]
            transport.subscribe(topic, SUBSCRIBE_QOS, partial(self._on_subscribed, transport, topic))

    def _require_connected(self, what: str) -> bool:
        if self._state == "connected" and self._transport is not None:
            return True

        self.log.error(NotConnected(f"cannot {what}: connect to the device first"))
        return False

    def _publish(self, topic: str, payload: bytes) -> bool:
        try:
            self._transport.publish(topic, payload)  # type: ignore[union-attr]
        except TransportError as e:
            self.log.error(e)
            return False

        self._log.debug("[bright_white on grey30][Dashboard -> MQTT][/] %s %r", topic, payload)
        return True

    def _persist(self, key: str, value: str) -> None:
        try:
            self._store.set(key, value)
        except OSError as e:
            self.log.warning(f"Could not save {key}: {e}")

    def _load_cached_config(self, identity: str) -> None:
        raw = self._store.get(config_key(identity))
        if raw is None:
            return

        try:
            patch = decode_config(raw.encode())
        except MalformedPayload as e:
            self._log.warning("[IGNORING] Saved config for %s: %s", identity, e)
            return

        self._device.merge_config(patch)
        self._log.debug("Loaded saved config for %s", identity)

    def _teardown(self) -> None:
        self._cancel_settle_timer()

        transport, self._transport = self._transport, None
        if transport is None:
            return

        transport.detach()
        transport.close()

    def _cancel_settle_timer(self) -> None:
        if self._settle_timer is not None:
            self._settle_timer.cancel()
            self._settle_timer = None

    def _cancel_feed_timer(self) -> None:
        if self._feed_timer is not None:
            self._feed_timer.cancel()
            self._feed_timer = None

    def _set_state(self, state: SessionState) -> None:
        if state != self._state:
            self._log.debug("Session state: %s -> %s", self._state, state)
        self._state = state
