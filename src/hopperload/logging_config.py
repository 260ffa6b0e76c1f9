# hopperload/logging_config.py
import logging
import sys
from typing import Optional

from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers that drown out worker output at DEBUG
NOISY_LOGGERS = ("asyncio", "aiohttp.access", "aiohttp.client", "urllib3")


def _console_handler(use_rich: bool) -> logging.Handler:
    if use_rich:
        # RichHandler prints time and level columns itself
        handler = RichHandler(show_path=False, log_time_format=f"[{DATE_FORMAT}]")
        handler.setFormatter(logging.Formatter("%(name)s | %(message)s"))
        return handler
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    return handler


def _log_uncaught(exc_type, exc_value, exc_traceback) -> None:
    if issubclass(exc_type, KeyboardInterrupt):
        sys.__excepthook__(exc_type, exc_value, exc_traceback)
        return
    logging.getLogger("hopperload").critical(
        "Uncaught exception", exc_info=(exc_type, exc_value, exc_traceback)
    )


def setup_logging(
    level: str = "INFO",
    log_file: Optional[str] = None,
    rich_console: Optional[bool] = None,
) -> logging.Logger:
    """Configure the root logger for one load test run.

    Console lines go through rich when stdout is a terminal (or when
    ``rich_console`` forces it) and use ``LOG_FORMAT`` otherwise, so piped
    output stays grep-friendly. ``log_file`` always receives plain lines.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())
    root.handlers.clear()

    if rich_console is None:
        rich_console = sys.stdout.isatty()
    root.addHandler(_console_handler(rich_console))

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)
        root.info(f"Logging to file: {log_file}")

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(logging.WARNING, root.level))

    sys.excepthook = _log_uncaught
    return root
