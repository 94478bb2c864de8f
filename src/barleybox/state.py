"""
Canonical last-known state of the connected barley box.

Merge Semantics:
    Every inbound payload is a patch. Fields present in the patch overwrite the
    stored value; fields absent from it keep their previous value. This holds for
    telemetry, config echoes and status events alike, so a device that only reports
    what changed never blanks out the rest of the dashboard.

Units:
    Config is stored exactly as it travels on the wire (seconds, milliseconds).
    Display units are derived on demand by `codec.to_display()`.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import TYPE_CHECKING, Any

from barleybox.codec import DeviceOnline, DeviceWarning, FeedTriggered

if TYPE_CHECKING:
    from collections.abc import Mapping

    from barleybox.codec import StatusEvent
    from barleybox.types import Mode


@dataclass(frozen=True)
class Telemetry:
    """Latest sensor readings & actuator state. None means no reading yet."""

    temp_env: float | None = None   # Ambient temperature (°C)
    hum_env: float | None = None    # Ambient humidity (%)
    temp_sub: float | None = None   # Substrate (NTC) temperature (°C)
    mode: Mode | None = None
    heater_on: bool | None = None
    mist_on: bool | None = None


@dataclass(frozen=True)
class DeviceConfig:
    """Device configuration in wire units. None means the device hasn't reported the field."""

    # Heater
    T_heat_on: float | None = None
    T_heat_off: float | None = None
    heater_max_temp: float | None = None

    # Substrate sensor
    ntc_low_temp_threshold: float | None = None
    ntc_heat_on_minutes: int | None = None
    ntc_ref_voltage: float | None = None
    ntc_temp_offset: float | None = None

    # Mist
    H_mist_on: float | None = None
    H_mist_off: float | None = None
    mist_max_on_seconds: int | None = None
    mist_min_off_seconds: int | None = None

    # Feeder
    feed_duration_ms: int | None = None
    feed_min_interval_hours: int | None = None
    feed_interval_seconds: int | None = None
    feed_times_csv: str | None = None

    # System
    upload_interval_seconds: int | None = None
    mode: Mode | None = None


@dataclass(frozen=True)
class Snapshot:
    """Read-only view handed to presentation."""

    telemetry: Telemetry = field(default_factory=Telemetry)
    config: DeviceConfig = field(default_factory=DeviceConfig)
    feeding: bool = False               # Feed pulse in progress (auto-clears)
    online: bool = False                # Device announced itself on the status topic
    last_warning: str | None = None
    last_update_ms: int | None = None   # Last successfully handled message (ms since Epoch)


def _known(patch: Mapping[str, Any], cls: type) -> dict[str, Any]:
    names = {f.name for f in fields(cls)}
    return {k: v for k, v in patch.items() if k in names}


class DeviceState:
    """Mutable owner of the snapshot. Only the session controller writes to it."""

    _snap: Snapshot

    def __init__(self) -> None:
        self._snap = Snapshot()

    def merge_telemetry(self, patch: Mapping[str, Any]) -> None:
        telemetry = replace(self._snap.telemetry, **_known(patch, Telemetry))
        self._snap = replace(self._snap, telemetry=telemetry)

    def merge_config(self, patch: Mapping[str, Any]) -> None:
        config = replace(self._snap.config, **_known(patch, DeviceConfig))
        self._snap = replace(self._snap, config=config)

    def apply_status(self, event: StatusEvent) -> None:
        match event:
            case FeedTriggered():
                self._snap = replace(self._snap, feeding=True)
            case DeviceWarning(message=message):
                self._snap = replace(self._snap, last_warning=message)
            case DeviceOnline():
                self._snap = replace(self._snap, online=True)

    def clear_feeding(self) -> None:
        self._snap = replace(self._snap, feeding=False)

    def touch(self, ts_ms: int) -> None:
        self._snap = replace(self._snap, last_update_ms=ts_ms)

    def reset(self) -> None:
        self._snap = Snapshot()

    def snapshot(self) -> Snapshot:
        return self._snap
