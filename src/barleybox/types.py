from typing import Literal, TypedDict

type Mode = Literal["AUTO", "MANUAL"]
type ControlChannel = Literal["heater", "mist", "feed", "mode"]
type SessionState = Literal["disconnected", "connecting", "connected", "reconnecting"]
type LogKind = Literal["info", "success", "warning", "error"]


class StatusOk(TypedDict):
    ok: bool
