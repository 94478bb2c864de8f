"""Topic names for one barley box.

Every topic lives under the ``farm`` namespace and embeds the device identity:

    farm/telemetry/<id>          device -> dashboard  (sensor readings, actuator state)
    farm/status/<id>             device -> dashboard  (feed events, warnings, online)
    farm/config/<id>/current     device -> dashboard  (config echo)
    farm/config/<id>             dashboard -> device  (config push)
    farm/command/<id>            dashboard -> device  (e.g. "publish_config")
    farm/control/<id>/<channel>  dashboard -> device  (heater, mist, feed, mode)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Final

if TYPE_CHECKING:
    from barleybox.types import ControlChannel

NAMESPACE: Final = "farm"

# Characters that would split a topic level or act as wildcards. Escaping them keeps
# derive() injective: no identity can forge another identity's topics.
_ESCAPES: Final = (("%", "%25"), ("/", "%2F"), ("+", "%2B"), ("#", "%23"))


def _segment(identity: str) -> str:
    for char, repl in _ESCAPES:
        identity = identity.replace(char, repl)
    return identity


@dataclass(frozen=True)
class TopicSet:
    # Inbound (subscribed)
    telemetry: str
    status: str
    config_out: str

    # Outbound (published)
    config_in: str
    command: str
    control_heater: str
    control_mist: str
    control_feed: str
    control_mode: str

    def inbound(self) -> tuple[str, str, str]:
        """Topics the dashboard subscribes to, in subscription order."""
        return (self.telemetry, self.config_out, self.status)

    def control(self, channel: ControlChannel) -> str:
        return {
            "heater": self.control_heater,
            "mist": self.control_mist,
            "feed": self.control_feed,
            "mode": self.control_mode,
        }[channel]

    def all(self) -> tuple[str, ...]:
        return (
            self.telemetry,
            self.status,
            self.config_out,
            self.config_in,
            self.command,
            self.control_heater,
            self.control_mist,
            self.control_feed,
            self.control_mode,
        )


def derive(identity: str) -> TopicSet:
    """Derive the full topic set for a device identity."""
    seg = _segment(identity)
    return TopicSet(
        telemetry=f"{NAMESPACE}/telemetry/{seg}",
        status=f"{NAMESPACE}/status/{seg}",
        config_out=f"{NAMESPACE}/config/{seg}/current",
        config_in=f"{NAMESPACE}/config/{seg}",
        command=f"{NAMESPACE}/command/{seg}",
        control_heater=f"{NAMESPACE}/control/{seg}/heater",
        control_mist=f"{NAMESPACE}/control/{seg}/mist",
        control_feed=f"{NAMESPACE}/control/{seg}/feed",
        control_mode=f"{NAMESPACE}/control/{seg}/mode",
    )


def diagnostic_topic(identity: str) -> str:
    """Scratch topic used by the operator's diagnostic publish."""
    return f"{NAMESPACE}/test/{_segment(identity)}"
