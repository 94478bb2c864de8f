import os
import sys
from collections.abc import Callable
from functools import partial
from pathlib import Path
from typing import Final, TypedDict, cast

from dotenv import load_dotenv

from barleybox import __prog__

from .utils import cerr

_PORT_MIN: Final = 1
_PORT_MAX: Final = 65535

_SCHEMES: Final = ("wss", "ws", "mqtts", "mqtt")

# Public brokers expose MQTT-over-WebSocket (TLS) on 8084 at /mqtt
_DEFAULT_SCHEME: Final = "wss"
_DEFAULT_BROKER_PORT: Final = 8084
_DEFAULT_BROKER_PATH: Final = "/mqtt"
_DEFAULT_APP_PORT: Final = 8000


class EnvConf(TypedDict):
    broker_scheme: str
    broker_port: int
    broker_path: str
    app_port: int
    data_dir: Path


def _ensure_valid_port(name: str, default: int) -> int:
    val = os.getenv(name)
    if val is None or not val.strip():
        return default

    try:
        port = int(val)
    except ValueError as e:
        msg = f"[cyan]{name}[/] is not an integer: {val}"
        raise ValueError(msg) from e
    else:
        if not (_PORT_MIN <= port <= _PORT_MAX):
            msg = f"[cyan]{name}[/] is out of range: {val}"
            raise ValueError(msg)

    return port


def _ensure_valid_scheme(name: str) -> str:
    val = os.getenv(name, _DEFAULT_SCHEME).strip().lower()
    if val not in _SCHEMES:
        msg = f"[cyan]{name}[/] must be one of {', '.join(_SCHEMES)}: {val}"
        raise ValueError(msg)

    return val


def _ensure_valid_path(name: str) -> str:
    val = os.getenv(name, _DEFAULT_BROKER_PATH)
    if not val.startswith("/"):
        msg = f"[cyan]{name}[/] must start with '/': {val}"
        raise ValueError(msg)

    return val


def _ensure_valid_data_dir(name: str) -> Path:
    val = os.getenv(name, ".")
    path = Path(val)

    if path.exists() and not path.is_dir():
        msg = f"[cyan]{name}[/] is not a directory: {val}"
        raise ValueError(msg)

    if not path.exists():
        try:
            path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            msg = f"[cyan]{name}[/] cannot be created: {e}"
            raise ValueError(msg) from e

    return path


# EnvConf key -> validator (each reads & checks one variable)
_CHECKS: Final[tuple[tuple[str, Callable[[], object]], ...]] = (
    ("broker_scheme", partial(_ensure_valid_scheme, "BROKER_SCHEME")),
    ("broker_port", partial(_ensure_valid_port, "BROKER_PORT", _DEFAULT_BROKER_PORT)),
    ("broker_path", partial(_ensure_valid_path, "BROKER_PATH")),
    ("app_port", partial(_ensure_valid_port, "APP_PORT", _DEFAULT_APP_PORT)),
    ("data_dir", partial(_ensure_valid_data_dir, "DATA_DIR")),
)


def get_env_vars() -> EnvConf:
    """Load `.env` & return validated settings, exiting with every error found."""
    load_dotenv()

    conf: dict[str, object] = {}
    errs: list[str] = []
    for key, check in _CHECKS:
        try:
            conf[key] = check()
        except ValueError as e:
            errs.append(str(e))

    if errs:
        cerr.print("".join(f"[bold bright_red]{__prog__}: env-error:[/] {e}\n" for e in errs), end="")
        sys.exit(1)

    return cast("EnvConf", conf)
