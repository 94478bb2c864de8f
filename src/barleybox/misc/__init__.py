from typing import Final

from .argparser import get_cli_args
from .env import get_env_vars
from .logging_conf import init_logging
from .utils import cerr, cout, fmt_clock, time_now_ms

__all__: Final = ["cerr", "cout", "fmt_clock", "get_cli_args", "get_env_vars", "init_logging", "time_now_ms"]
