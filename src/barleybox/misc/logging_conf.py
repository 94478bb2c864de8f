from __future__ import annotations

import logging
from typing import TYPE_CHECKING, ClassVar, Final, Literal, cast, override

from rich.markup import escape

from .utils import cerr, cout, fmt_clock

if TYPE_CHECKING:
    from rich.console import Console

    type LogLvl = Literal[10, 20, 30, 40, 50]


LOG_ABBREV_2_LVL: Final[dict[str, LogLvl]] = {
    "DBG": logging.DEBUG,
    "INF": logging.INFO,
    "WRN": logging.WARNING,
    "ERR": logging.ERROR,
    "CRT": logging.CRITICAL,
}


LOG_LVL_2_COLOR: Final = {
    logging.DEBUG: "green",
    logging.INFO: "cyan",
    logging.WARNING: "yellow",
    logging.ERROR: "red",
    logging.CRITICAL: "bold red",
}

# Third-party loggers held at WARNING whatever the base level (uvicorn logs every request)
_QUIET_LOGGERS: Final = ("uvicorn.access", "httpx")


class _ComponentHandler(logging.Handler):
    """Rich-markup handler: `[LVL] (time) Component :: message`, tracebacks appended.

    Messages may carry Rich markup; tracebacks & component names are escaped.
    WARNING and above go to stderr.
    """

    LVL_2_ABBREV: ClassVar = {v: k for k, v in LOG_ABBREV_2_LVL.items()}

    @override
    def __init__(self) -> None:
        super().__init__()
        self._stdout = cout
        self._stderr = cerr

    def _console_for(self, lvlno: int) -> Console:
        return self._stderr if lvlno >= logging.WARNING else self._stdout

    @override
    def emit(self, record: logging.LogRecord) -> None:
        lvlno = cast("LogLvl", record.levelno)
        color = LOG_LVL_2_COLOR.get(lvlno)
        abbrev = _ComponentHandler.LVL_2_ABBREV.get(lvlno)
        if color is None or abbrev is None:
            self.handleError(record)
            return

        msg = record.getMessage()
        if lvlno >= logging.WARNING:
            msg = f"[{color}]{msg}[/]"

        clock = fmt_clock(int(record.created * 1000))
        line = f"[dim][{color}][{abbrev}][/] [white]({clock})[/] [magenta]{escape(record.name)}[/] ::[/] {msg}"
        if record.exc_info:
            tb = (self.formatter or logging.Formatter()).formatException(record.exc_info)
            line += "\n" + escape(tb)

        self._console_for(lvlno).print(line, highlight=False)


def init_logging(lvl: LogLvl) -> None:
    """Route all logging through the component handler.

    Args:
        lvl: Base logging level (third-party request loggers never go below WARNING)
    """
    logging.basicConfig(level=lvl, handlers=[_ComponentHandler()], force=True)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(lvl, logging.WARNING))
