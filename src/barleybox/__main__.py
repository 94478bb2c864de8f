"""
Dashboard entry point - device session plus HTTP API.

    1. Parse CLI args, configure logging & load env settings
    2. Start the event queue all MQTT callbacks & timers run on
    3. Restore the last device/broker and (optionally) reconnect
    4. Serve the FastAPI app via uvicorn

Architecture:
    Broker <--> MqttTransport --post()--> EventQueue --> SessionController --> DeviceState
    HTTP   -->  FastAPI app   --run_sync()-->  EventQueue --> SessionController
"""

from functools import partial

import uvicorn

from .app import create_app
from .misc import get_cli_args, get_env_vars, init_logging
from .scheduler import EventQueue
from .session import SessionController
from .store import JsonFileStore
from .transport import broker_url, mqtt_transport_factory


def main() -> None:
    args = get_cli_args()
    init_logging(args.log_level)
    env = get_env_vars()

    events = EventQueue()
    session = SessionController(
        transport_factory=mqtt_transport_factory(events.post),
        scheduler=events,
        store=JsonFileStore(env["data_dir"] / "barleybox.json"),
        url_for=partial(
            broker_url,
            scheme=env["broker_scheme"],
            port=env["broker_port"],
            path=env["broker_path"],
        ),
    )
    events.start()

    saved_id, saved_broker = events.run_sync(session.restore)
    device_id = args.device_id or saved_id
    broker = args.broker or saved_broker
    if args.auto_connect and device_id and broker:
        events.post(session.connect, device_id, broker)

    try:
        uvicorn.run(create_app(session, events.run_sync), host="0.0.0.0", port=env["app_port"])  # noqa: S104
    finally:
        events.run_sync(session.close)
        events.stop()


if __name__ == "__main__":
    main()
