"""Wire codec for the barley box protocol.

Inbound payloads (telemetry, config echo, status) are JSON objects where every
field is optional. Decoding yields a *patch*: only the fields that were present
and valid. A field that is present but fails validation (a string where a number
belongs, NaN, a non-boolean actuator flag...) is dropped, never coerced.

Outbound payloads:
    - control/command: the bare ASCII token, no JSON envelope
    - config: compact JSON holding only the fields the operator actually filled in

Operators enter some config fields in display units; the conversion table below
is the one place where display <-> wire units are translated.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, ClassVar, Final, Literal

from pydantic import BaseModel, ConfigDict, StrictBool, ValidationError, model_validator

from barleybox.errors import InvalidInput, MalformedPayload
from barleybox.types import Mode  # noqa: TC001 (pydantic resolves it at runtime)

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from barleybox.types import ControlChannel

type FieldKind = Literal["number", "integer", "bool", "mode", "text"]

BYTES_ENCODING: Final = "utf-8"
CONTROL_ENCODING: Final = "ascii"

MODES: Final = ("AUTO", "MANUAL")

CONTROL_ACTIONS: Final[dict[ControlChannel, tuple[str, ...]]] = {
    "heater": ("ON", "OFF", "AUTO"),
    "mist": ("ON", "OFF", "AUTO"),
    "feed": ("TRIGGER",),
    "mode": MODES,
}

CMD_PUBLISH_CONFIG: Final = "publish_config"

FEED_MIN_INTERVAL_HOURS_RANGE: Final = (1, 24)


# ==================== Field Validation ====================


def _is_finite_number(val: Any) -> bool:  # noqa: ANN401
    if not isinstance(val, int | float) or isinstance(val, bool):
        return False
    try:
        return math.isfinite(val)
    except OverflowError:  # int beyond float range
        return False


def _is_valid(kind: FieldKind, val: Any) -> bool:  # noqa: ANN401
    match kind:
        case "number":
            return _is_finite_number(val)
        case "integer":
            return _is_finite_number(val) and float(val).is_integer()
        case "bool":
            return isinstance(val, bool)
        case "mode":
            return val in MODES
        case "text":
            return isinstance(val, str)


class _Patch(BaseModel):
    """Base for inbound patches: drops invalid fields before validation."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    FIELD_KINDS: ClassVar[dict[str, FieldKind]] = {}
    NULLABLE: ClassVar[frozenset[str]] = frozenset()

    @model_validator(mode="before")
    @classmethod
    def _drop_invalid(cls, data: Any) -> Any:  # noqa: ANN401
        if not isinstance(data, dict):
            return data

        kept: dict[str, Any] = {}
        for name, val in data.items():
            kind = cls.FIELD_KINDS.get(name)
            if kind is None:
                continue
            if val is None:
                if name in cls.NULLABLE:
                    kept[name] = None
                continue
            if _is_valid(kind, val):
                kept[name] = val
        return kept

    def as_patch(self) -> dict[str, Any]:
        """Return only the fields that survived validation, in declaration order."""
        return {name: getattr(self, name) for name in type(self).model_fields if name in self.model_fields_set}


class TelemetryPatch(_Patch):
    FIELD_KINDS: ClassVar[dict[str, FieldKind]] = {
        "temp_env": "number",
        "hum_env": "number",
        "temp_sub": "number",
        "mode": "mode",
        "heater_on": "bool",
        "mist_on": "bool",
    }
    # JSON null on a reading means "sensor has no value", distinct from the field being absent
    NULLABLE: ClassVar[frozenset[str]] = frozenset({"temp_env", "hum_env", "temp_sub"})

    temp_env: float | None = None
    hum_env: float | None = None
    temp_sub: float | None = None
    mode: Mode | None = None
    heater_on: StrictBool | None = None
    mist_on: StrictBool | None = None


class ConfigPatch(_Patch):
    FIELD_KINDS: ClassVar[dict[str, FieldKind]] = {
        "T_heat_on": "number",
        "T_heat_off": "number",
        "heater_max_temp": "number",
        "ntc_low_temp_threshold": "number",
        "ntc_heat_on_minutes": "integer",
        "ntc_ref_voltage": "number",
        "ntc_temp_offset": "number",
        "H_mist_on": "number",
        "H_mist_off": "number",
        "mist_max_on_seconds": "integer",
        "mist_min_off_seconds": "integer",
        "feed_duration_ms": "integer",
        "feed_min_interval_hours": "integer",
        "feed_interval_seconds": "integer",
        "feed_times_csv": "text",
        "upload_interval_seconds": "integer",
        "mode": "mode",
    }

    T_heat_on: float | None = None
    T_heat_off: float | None = None
    heater_max_temp: float | None = None
    ntc_low_temp_threshold: float | None = None
    ntc_heat_on_minutes: int | None = None
    ntc_ref_voltage: float | None = None
    ntc_temp_offset: float | None = None
    H_mist_on: float | None = None
    H_mist_off: float | None = None
    mist_max_on_seconds: int | None = None
    mist_min_off_seconds: int | None = None
    feed_duration_ms: int | None = None
    feed_min_interval_hours: int | None = None
    feed_interval_seconds: int | None = None  # legacy firmware
    feed_times_csv: str | None = None
    upload_interval_seconds: int | None = None
    mode: Mode | None = None


# ==================== Status Events ====================


@dataclass(frozen=True)
class FeedTriggered:
    kind: Literal["feed-triggered"] = field(default="feed-triggered", init=False)


@dataclass(frozen=True)
class DeviceWarning:
    message: str
    kind: Literal["warning"] = field(default="warning", init=False)


@dataclass(frozen=True)
class DeviceOnline:
    kind: Literal["online"] = field(default="online", init=False)


type StatusEvent = FeedTriggered | DeviceWarning | DeviceOnline


# ==================== Unit Conversions ====================


def _identity(val: Any) -> Any:  # noqa: ANN401
    return val


def _round_half_up(val: float) -> int:
    return math.floor(val + 0.5)


def _ms_to_s(ms: int) -> float:
    return round(ms / 1000, 1)


def _s_to_ms(s: float) -> int:
    return _round_half_up(s * 1000)


def _s_to_min(s: int) -> int:
    return _round_half_up(s / 60)


def _min_to_s(minutes: int) -> int:
    return minutes * 60


@dataclass(frozen=True)
class Conversion:
    """How one config field is entered by the operator & carried on the wire."""

    wire: str
    display: str
    kind: FieldKind  # kind of the *display* input
    to_wire: Callable[[Any], Any] = _identity
    to_display: Callable[[Any], Any] = _identity
    valid_range: tuple[int, int] | None = None


CONVERSIONS: Final[tuple[Conversion, ...]] = (
    Conversion("T_heat_on", "T_heat_on", "number"),
    Conversion("T_heat_off", "T_heat_off", "number"),
    Conversion("heater_max_temp", "heater_max_temp", "number"),
    Conversion("ntc_low_temp_threshold", "ntc_low_temp_threshold", "number"),
    Conversion("ntc_heat_on_minutes", "ntc_heat_on_minutes", "integer"),
    Conversion("ntc_ref_voltage", "ntc_ref_voltage", "number"),
    Conversion("ntc_temp_offset", "ntc_temp_offset", "number"),
    Conversion("H_mist_on", "H_mist_on", "number"),
    Conversion("H_mist_off", "H_mist_off", "number"),
    Conversion("mist_max_on_seconds", "mist_max_on_seconds", "integer"),
    Conversion("mist_min_off_seconds", "mist_min_off_seconds", "integer"),
    Conversion("feed_duration_ms", "feed_duration_s", "number", _s_to_ms, _ms_to_s),
    Conversion(
        "feed_min_interval_hours",
        "feed_min_interval_hours",
        "integer",
        valid_range=FEED_MIN_INTERVAL_HOURS_RANGE,
    ),
    Conversion("feed_interval_seconds", "feed_interval_minutes", "integer", _min_to_s, _s_to_min),
    Conversion("feed_times_csv", "feed_times_csv", "text"),
    Conversion("upload_interval_seconds", "upload_interval_minutes", "integer", _min_to_s, _s_to_min),
    Conversion("mode", "mode", "mode"),
)


def to_display(config: Mapping[str, Any]) -> dict[str, Any]:
    """Convert stored (wire-unit) config fields to the units an operator edits."""
    return {
        conv.display: conv.to_display(config[conv.wire])
        for conv in CONVERSIONS
        if config.get(conv.wire) is not None
    }


# ==================== Operator Input Parsing ====================


def _parse_number(raw: Any) -> float | None:  # noqa: ANN401
    if isinstance(raw, str):
        try:
            raw = float(raw.strip())
        except ValueError:
            return None
    return float(raw) if _is_finite_number(raw) else None


def _parse_integer(raw: Any) -> int | None:  # noqa: ANN401
    if isinstance(raw, str):
        text = raw.strip()
        try:
            raw = int(text)
        except ValueError:
            raw = _parse_number(text)
    # Truncate like an integer input box would ("12.7" -> 12)
    return int(raw) if _is_finite_number(raw) else None


def _parse_input(kind: FieldKind, raw: Any) -> Any:  # noqa: ANN401
    match kind:
        case "number":
            return _parse_number(raw)
        case "integer":
            return _parse_integer(raw)
        case "mode":
            mode = raw.strip().upper() if isinstance(raw, str) else None
            return mode if mode in MODES else None
        case "text":
            text = raw.strip() if isinstance(raw, str) else ""
            return text or None
        case "bool":
            return raw if isinstance(raw, bool) else None


# ==================== Encoding ====================


def encode_control(channel: ControlChannel, action: str) -> bytes:
    """Encode an actuator intent as its bare token.

    Raises:
        InvalidInput: Unknown channel, or action not accepted on that channel
    """

    allowed = CONTROL_ACTIONS.get(channel)
    if allowed is None:
        msg = f"unknown control channel: {channel!r}"
        raise InvalidInput(msg)

    token = action.strip().upper()
    if token not in allowed:
        msg = f"action {action!r} not accepted on {channel} (expected one of {', '.join(allowed)})"
        raise InvalidInput(msg)

    return token.encode(CONTROL_ENCODING)


def encode_command(command: str) -> bytes:
    return command.encode(CONTROL_ENCODING)


def config_from_form(form: Mapping[str, Any]) -> dict[str, Any]:
    """Translate operator input (display units) into a wire-unit config patch.

    Blank or unparseable inputs are left out rather than defaulted, so a field the
    operator left empty is never sent to the device.
    """

    config: dict[str, Any] = {}
    for conv in CONVERSIONS:
        if conv.display not in form:
            continue

        val = _parse_input(conv.kind, form[conv.display])
        if val is None:
            continue

        if conv.valid_range is not None:
            low, high = conv.valid_range
            if not (low <= val <= high):
                continue

        try:
            config[conv.wire] = conv.to_wire(val)
        except OverflowError:  # finite input, out-of-range in wire units (e.g. 1e306 s -> ms)
            continue
    return config


def encode_config(form: Mapping[str, Any]) -> bytes:
    return json.dumps(config_from_form(form), separators=(",", ":")).encode(BYTES_ENCODING)


# ==================== Decoding ====================


def _load_object(payload: bytes, what: str) -> dict[str, Any]:
    """Decode payload bytes as a JSON object.

    Raises:
        MalformedPayload: Not UTF-8, not JSON, or not an object
    """

    try:
        data = json.loads(payload.decode(BYTES_ENCODING))
    except ValueError as e:  # UnicodeDecodeError, JSONDecodeError, or an int over the digit limit
        msg = f"{what} payload is not valid JSON: {e}"
        raise MalformedPayload(msg) from e

    if not isinstance(data, dict):
        msg = f"{what} payload: expected object, got {type(data).__name__}"
        raise MalformedPayload(msg)

    return data


def _decode_patch(model: type[_Patch], payload: bytes, what: str) -> dict[str, Any]:
    data = _load_object(payload, what)
    try:
        return model.model_validate(data).as_patch()
    except ValidationError as e:
        msg = f"{what} payload failed validation: {e}"
        raise MalformedPayload(msg) from e


def decode_telemetry(payload: bytes) -> dict[str, Any]:
    return _decode_patch(TelemetryPatch, payload, "telemetry")


def decode_config(payload: bytes) -> dict[str, Any]:
    return _decode_patch(ConfigPatch, payload, "config")


def decode_status(payload: bytes) -> list[StatusEvent]:
    """Decode a status payload into the events it carries (feed, warning, online)."""

    data = _load_object(payload, "status")
    events: list[StatusEvent] = []

    if data.get("event") == "feed":
        events.append(FeedTriggered())

    warning = data.get("warning")
    if isinstance(warning, str) and warning:
        events.append(DeviceWarning(warning))

    if data.get("status") == "online":
        events.append(DeviceOnline())

    return events
