from datetime import datetime
from time import time

from rich.console import Console

# Handles
cout = Console()
cerr = Console(stderr=True)


def time_now_ms() -> int:
    """Return time in milliseconds since the Epoch."""
    return int(time() * 1000)


def fmt_clock(ts_ms: int) -> str:
    """Format an Epoch-ms timestamp as local wall-clock time (HH:MM:SS)."""
    return datetime.fromtimestamp(ts_ms / 1000).strftime("%H:%M:%S")  # noqa: DTZ006
