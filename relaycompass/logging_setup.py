"""
Logging configuration

Log records go to stderr through rich so they never mix with the result
table printed on stdout.
"""

import logging

from rich.console import Console
from rich.logging import RichHandler


LOG_LEVELS = {
    'debug': logging.DEBUG,
    'info': logging.INFO,
    'warning': logging.WARNING,
    'error': logging.ERROR,
}


def parse_log_level(name: str) -> int:
    """Map a level name to a logging level"""
    try:
        return LOG_LEVELS[name.lower()]
    except KeyError:
        raise ValueError(
            f"invalid log level: {name} (must be debug, info, warning, or error)"
        )


def setup_logging(level: int = logging.ERROR) -> logging.Logger:
    """Attach a rich stderr handler to the package logger"""
    logger = logging.getLogger('relaycompass')
    logger.setLevel(level)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    handler = RichHandler(
        console=Console(stderr=True),
        show_path=False,
        log_time_format="[%X]",
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
