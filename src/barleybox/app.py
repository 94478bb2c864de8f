"""FastAPI surface for the barley box dashboard.

Provides endpoints for:
    - Reading the session state, the device snapshot & the activity log
    - Connecting to / disconnecting from a device
    - Sending actuator, mode, feed & config commands

Every call into the session goes through `run`, which executes it on the session's
event queue so HTTP handlers never race transport callbacks.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Any, Literal

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from barleybox.errors import NotConnected, TransportError
from barleybox.misc import fmt_clock
from barleybox.types import StatusOk  # noqa: TC001 (FastAPI reads return annotations)

if TYPE_CHECKING:
    from collections.abc import Callable

    from barleybox.activity import LogEntry
    from barleybox.session import SessionController

    type Runner = Callable[[Callable[[], Any]], Any]


class ConnectBody(BaseModel):
    device_id: str
    broker: str


def _direct(fn: Callable[[], Any]) -> Any:  # noqa: ANN401
    return fn()


def _status_for(entry: LogEntry | None) -> int:
    err = entry.error if entry is not None else None
    match err:
        case NotConnected():
            return 409
        case TransportError():
            return 502
        case _:
            return 400


def create_app(session: SessionController, run: Runner = _direct) -> FastAPI:
    """Build the API around one session."""

    app = FastAPI(title="barleybox")

    def outcome(op: Callable[[], bool]) -> StatusOk:
        ok, last = run(lambda: (op(), session.log.last))
        if not ok:
            detail = last.message if last is not None else "request failed"
            raise HTTPException(status_code=_status_for(last), detail=detail)
        return {"ok": True}

    @app.get("/state")
    def get_state() -> dict[str, Any]:
        """Session state, derived topics, device snapshot (wire units) & config in display units (polled by frontend)."""

        def _read() -> dict[str, Any]:
            return {
                "session": session.state,
                "device_id": session.identity,
                "broker": session.broker,
                "topics": list(session.topics.all()) if session.topics is not None else [],
                "transport_connected": session.transport_connected,
                "snapshot": asdict(session.snapshot()),
                "config_form": session.config_form(),
            }

        return run(_read)

    @app.get("/log")
    def get_log() -> list[dict[str, Any]]:
        entries = run(session.log.entries)
        return [{"ts": e.ts, "time": fmt_clock(e.ts), "kind": e.kind, "message": e.message} for e in entries]

    @app.post("/connect")
    def post_connect(body: ConnectBody) -> StatusOk:
        return outcome(lambda: session.connect(body.device_id, body.broker))

    @app.post("/disconnect")
    def post_disconnect() -> StatusOk:
        run(session.disconnect)
        return {"ok": True}

    # === Command Endpoints ===
    # Published to farm/control/<id>/<channel>, farm/config/<id> & farm/command/<id>

    @app.post("/control/{channel}/{action}")
    def post_control(channel: Literal["heater", "mist"], action: str) -> StatusOk:
        """Switch heater/mist ON, OFF or back to AUTO."""
        return outcome(lambda: session.send_control(channel, action))

    @app.post("/mode/{action}")
    def post_mode(action: str) -> StatusOk:
        """Set operating mode (AUTO/MANUAL)."""
        return outcome(lambda: session.send_mode(action))

    @app.post("/feed")
    def post_feed() -> StatusOk:
        return outcome(session.trigger_feed)

    @app.post("/config")
    def post_config(form: dict[str, Any]) -> StatusOk:
        """Send config form (display units); blank/invalid fields are not sent."""
        return outcome(lambda: session.send_config(form))

    @app.post("/config/fetch")
    def post_config_fetch() -> StatusOk:
        return outcome(session.fetch_config)

    # === Diagnostics ===

    @app.post("/diagnostics/resubscribe")
    def post_resubscribe() -> StatusOk:
        return outcome(session.resubscribe)

    @app.post("/diagnostics/test")
    def post_test_publish() -> StatusOk:
        return outcome(session.publish_test)

    return app
