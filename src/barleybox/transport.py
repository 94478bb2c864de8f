"""
Publish/subscribe transport used by the session controller.

The controller only relies on the `Transport` protocol below; `MqttTransport`
implements it over paho-mqtt. Every paho callback is handed to `dispatch` (the
event queue's `post`) instead of being run on paho's network thread.

Event mapping (paho -> Transport):
    on_connect (success)  -> on_connect()
    on_connect (refused)  -> on_error(TransportError)
    on_connect_fail       -> on_error(TransportError)
    on_disconnect         -> on_offline()
    on_pre_connect (2nd+) -> on_reconnect()
    on_message            -> on_message(topic, payload)
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, ClassVar, Final, Protocol
from urllib.parse import urlsplit

from paho.mqtt.client import Client, ConnectFlags, DisconnectFlags, MQTTMessage
from paho.mqtt.enums import CallbackAPIVersion, MQTTErrorCode, MQTTProtocolVersion

from barleybox.errors import TransportError

if TYPE_CHECKING:
    from collections.abc import Callable
    from logging import Logger

    from paho.mqtt.properties import Properties
    from paho.mqtt.reasoncodes import ReasonCode

    type SubscribeCallback = Callable[[TransportError | None], None]
    type Dispatch = Callable[..., None]

_WS_SCHEMES: Final = ("ws", "wss")
_TLS_SCHEMES: Final = ("wss", "mqtts")
_DEFAULT_PORTS: Final = {"ws": 80, "wss": 443, "mqtt": 1883, "mqtts": 8883}


@dataclass(frozen=True)
class TransportOptions:
    client_id: str
    clean: bool = True
    reconnect_period_ms: int = 5000


class Transport(Protocol):
    on_connect: Callable[[], None] | None
    on_message: Callable[[str, bytes], None] | None
    on_error: Callable[[Exception], None] | None
    on_offline: Callable[[], None] | None
    on_reconnect: Callable[[], None] | None

    @property
    def connected(self) -> bool: ...

    def connect(self) -> None: ...

    def subscribe(self, topic: str, qos: int, callback: SubscribeCallback) -> None: ...

    def publish(self, topic: str, payload: bytes) -> None: ...

    def detach(self) -> None: ...

    def close(self) -> None: ...


type TransportFactory = Callable[[str, TransportOptions], Transport]


def broker_url(broker: str, *, scheme: str, port: int, path: str) -> str:
    """Build the broker URL for a bare host (full URLs are returned untouched)."""

    if "://" in broker:
        return broker

    path = path if scheme in _WS_SCHEMES else ""
    return f"{scheme}://{broker}:{port}{path}"


class MqttTransport:
    """paho-mqtt client behind the `Transport` protocol."""

    KEEPALIVE: ClassVar = 30

    url: str
    options: TransportOptions

    on_connect: Callable[[], None] | None
    on_message: Callable[[str, bytes], None] | None
    on_error: Callable[[Exception], None] | None
    on_offline: Callable[[], None] | None
    on_reconnect: Callable[[], None] | None

    _log: Logger
    _client: Client

    def __init__(self, url: str, options: TransportOptions, *, dispatch: Dispatch) -> None:
        self.url = url
        self.options = options
        self.detach()

        self._log = logging.getLogger("MqttTransport")
        self._dispatch = dispatch
        self._attempts = 0
        self._pending_subs: dict[int, SubscribeCallback] = {}
        self._subs_lock = threading.Lock()

        parts = urlsplit(url)
        if parts.scheme not in _DEFAULT_PORTS or not parts.hostname:
            msg = f"unsupported broker URL: {url}"
            raise TransportError(msg)

        self._host = parts.hostname
        self._port = parts.port or _DEFAULT_PORTS[parts.scheme]

        self._client = Client(
            callback_api_version=CallbackAPIVersion.VERSION2,
            client_id=options.client_id,
            clean_session=options.clean,
            protocol=MQTTProtocolVersion.MQTTv311,
            transport="websockets" if parts.scheme in _WS_SCHEMES else "tcp",
        )
        if parts.scheme in _WS_SCHEMES:
            self._client.ws_set_options(path=parts.path or "/mqtt")
        if parts.scheme in _TLS_SCHEMES:
            self._client.tls_set()

        period = max(1, options.reconnect_period_ms // 1000)
        self._client.reconnect_delay_set(min_delay=period, max_delay=period)

        self._client.on_connect = self._on_connect
        self._client.on_connect_fail = self._on_connect_fail
        self._client.on_disconnect = self._on_disconnect
        self._client.on_pre_connect = self._on_pre_connect
        self._client.on_message = self._on_message
        self._client.on_subscribe = self._on_subscribe

    # ==================== Transport API ====================

    @property
    def connected(self) -> bool:
        return self._client.is_connected()

    def connect(self) -> None:
        """Start connecting in the background; outcome arrives via callbacks."""

        self._log.debug("Connecting to [bright_magenta]%s[/] as %s", self.url, self.options.client_id)
        try:
            self._client.connect_async(self._host, self._port, keepalive=MqttTransport.KEEPALIVE)
        except (OSError, ValueError) as e:
            self._emit(self.on_error, TransportError(f"connect failed: {e}"))
            return

        if (res := self._client.loop_start()) != MQTTErrorCode.MQTT_ERR_SUCCESS:
            self._emit(self.on_error, TransportError(f"network loop failed to start: rc={res}"))

    def subscribe(self, topic: str, qos: int, callback: SubscribeCallback) -> None:
        with self._subs_lock:
            res, mid = self._client.subscribe(topic, qos=qos)
            if res == MQTTErrorCode.MQTT_ERR_SUCCESS and mid is not None:
                self._pending_subs[mid] = callback
                return

        self._dispatch(callback, TransportError(f"subscribe to {topic} failed: rc={res}"))

    def publish(self, topic: str, payload: bytes) -> None:
        """Fire-and-forget publish at QoS 0.

        Raises:
            TransportError: paho refused to queue the message
        """

        info = self._client.publish(topic, payload, qos=0)
        if info.rc != MQTTErrorCode.MQTT_ERR_SUCCESS:
            msg = f"publish to {topic} failed: rc={info.rc}"
            raise TransportError(msg)

    def detach(self) -> None:
        self.on_connect = None
        self.on_message = None
        self.on_error = None
        self.on_offline = None
        self.on_reconnect = None

    def close(self) -> None:
        self._client.disconnect()
        self._client.loop_stop()
        self._log.debug("Closed connection to [bright_magenta]%s[/]", self.url)

    # ==================== Internals ====================

    def _emit(self, handler: Callable[..., None] | None, *args: Any) -> None:  # noqa: ANN401
        if handler is not None:
            self._dispatch(handler, *args)

    ############################################### Paho MQTT Callbacks ################################################

    def _on_pre_connect(self, client: Client, userdata: Any) -> None:  # noqa: ANN401
        _ = client, userdata
        if self._attempts:
            self._emit(self.on_reconnect)
        self._attempts += 1

    def _on_connect(
        self,
        client: Client,
        userdata: Any,  # noqa: ANN401
        connect_flags: ConnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None = None,
    ) -> None:
        _ = client, userdata, connect_flags, properties
        if reason_code.is_failure:
            self._emit(self.on_error, TransportError(f"connection refused: {reason_code}"))
            return

        self._emit(self.on_connect)

    def _on_connect_fail(self, client: Client, userdata: Any) -> None:  # noqa: ANN401
        _ = client, userdata
        self._emit(self.on_error, TransportError(f"could not reach {self.url}"))

    def _on_disconnect(
        self,
        client: Client,
        userdata: Any,  # noqa: ANN401
        disconnect_flags: DisconnectFlags,
        reason_code: ReasonCode,
        properties: Properties | None = None,
    ) -> None:
        _ = client, userdata, disconnect_flags, properties
        self._log.debug("Disconnected from [bright_magenta]%s[/]: %s", self.url, reason_code)
        self._emit(self.on_offline)

    def _on_message(self, client: Client, userdata: Any, message: MQTTMessage) -> None:  # noqa: ANN401
        _ = client, userdata
        self._emit(self.on_message, message.topic, bytes(message.payload))

    def _on_subscribe(
        self,
        client: Client,
        userdata: Any,  # noqa: ANN401
        mid: int,
        reason_code_list: list[ReasonCode],
        properties: Properties | None = None,
    ) -> None:
        _ = client, userdata, properties
        with self._subs_lock:
            callback = self._pending_subs.pop(mid, None)

        if callback is None:
            return

        failed = [rc for rc in reason_code_list if rc.is_failure]
        err = TransportError(f"subscription refused: {failed[0]}") if failed else None
        self._dispatch(callback, err)


def mqtt_transport_factory(dispatch: Dispatch) -> TransportFactory:
    """Return a factory building `MqttTransport`s whose callbacks go through `dispatch`."""

    def _factory(url: str, options: TransportOptions) -> Transport:
        return MqttTransport(url, options, dispatch=dispatch)

    return _factory
