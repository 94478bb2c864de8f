"""Operator-facing activity log for a dashboard session.

Every outcome the operator should see (connected, config sent, NotConnected, a
malformed payload...) lands here, newest last, and is mirrored to `logging`.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, ClassVar, Final

from rich.markup import escape

from barleybox.misc import time_now_ms

if TYPE_CHECKING:
    from collections.abc import Iterator
    from logging import Logger

    from barleybox.errors import BarleyBoxError
    from barleybox.types import LogKind

MAX_ENTRIES: Final = 30


@dataclass(frozen=True)
class LogEntry:
    ts: int  # ms since Epoch
    kind: LogKind
    message: str
    error: BarleyBoxError | None = None


class ActivityLog:
    KIND_2_LVL: ClassVar[dict[LogKind, int]] = {
        "info": logging.INFO,
        "success": logging.INFO,
        "warning": logging.WARNING,
        "error": logging.ERROR,
    }

    _log: Logger

    def __init__(self, logger: Logger, maxlen: int = MAX_ENTRIES) -> None:
        self._log = logger
        self._entries: deque[LogEntry] = deque(maxlen=maxlen)

    def add(self, kind: LogKind, message: str, *, error: BarleyBoxError | None = None) -> LogEntry:
        entry = LogEntry(ts=time_now_ms(), kind=kind, message=message, error=error)
        self._entries.append(entry)

        msg = f"[bright_green]{escape(message)}[/]" if kind == "success" else escape(message)
        self._log.log(ActivityLog.KIND_2_LVL[kind], "%s", msg)
        return entry

    def info(self, message: str) -> LogEntry:
        return self.add("info", message)

    def success(self, message: str) -> LogEntry:
        return self.add("success", message)

    def warning(self, message: str) -> LogEntry:
        return self.add("warning", message)

    def error(self, err: BarleyBoxError) -> LogEntry:
        return self.add("error", f"{type(err).__name__}: {err}", error=err)

    @property
    def last(self) -> LogEntry | None:
        return self._entries[-1] if self._entries else None

    def entries(self) -> list[LogEntry]:
        return list(self._entries)

    def __iter__(self) -> Iterator[LogEntry]:
        return iter(list(self._entries))

    def __len__(self) -> int:
        return len(self._entries)
