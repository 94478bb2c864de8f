from __future__ import annotations

from argparse import ArgumentParser
from typing import TYPE_CHECKING, Final, NamedTuple, cast

from rich_argparse import RichHelpFormatter

from .logging_conf import LOG_ABBREV_2_LVL, LOG_LVL_2_COLOR

if TYPE_CHECKING:
    from .logging_conf import LogLvl

_HELP_STYLES: Final = {
    "argparse.args": "cyan",
    "argparse.groups": "green bold",
    "argparse.metavar": "dim cyan",
    "argparse.usage": "dim cyan",
    "argparse.prog": "cyan bold",
}


class _Args(NamedTuple):
    device_id: str | None
    broker: str | None
    auto_connect: bool
    log_level: LogLvl


def _lvl_choices() -> str:
    return ", ".join(f"[{LOG_LVL_2_COLOR[lvl]}]{abbr}[/]" for abbr, lvl in LOG_ABBREV_2_LVL.items())


def _mk_parser() -> ArgumentParser:
    RichHelpFormatter.usage_markup = True
    RichHelpFormatter.styles.update(_HELP_STYLES)

    parser = ArgumentParser(
        description="Operator dashboard backend for a barley box controller",
        formatter_class=RichHelpFormatter,
        usage="%(prog)s [cyan]\\[-d [dim]ID[/]] \\[-b [dim]HOST[/]] \\[options][/]",
    )

    session = parser.add_argument_group("session")
    session.add_argument("-d", "--device-id", help="device to open a session with (default: last used)", metavar="ID")
    session.add_argument(
        "-b",
        "--broker",
        help="broker host or full URL, e.g. [cyan]broker.mqttgo.io[/] (default: last used)",
        metavar="HOST",
    )
    session.add_argument(
        "--no-connect",
        action="store_false",
        dest="auto_connect",
        help="serve the API without connecting on start",
    )

    parser.add_argument(
        "-l",
        "--log-level",
        default="INF",
        choices=LOG_ABBREV_2_LVL,
        help=f"base logging level (default: [yellow]INF[/])\t[{_lvl_choices()}]",
        metavar="L",
    )
    return parser


def get_cli_args(argv: list[str] | None = None) -> _Args:
    """Parse `argv` (default: `sys.argv[1:]`)."""

    args = _mk_parser().parse_args(argv)
    return _Args(
        device_id=args.device_id,
        broker=args.broker,
        auto_connect=args.auto_connect,
        log_level=LOG_ABBREV_2_LVL[cast("str", args.log_level)],
    )
