"""
Logging setup for wagate, built on loguru.

Modules call ``get_logger(__name__)`` and log with f-strings; the process
entry point calls ``setup_logging`` once.
"""

import sys
from typing import Optional

from loguru import logger as _logger

_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{extra[name]}</cyan> - <level>{message}</level>"
)

_logger.configure(extra={"name": "wagate"})


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure loguru sinks.

    Args:
        level: Minimum level for every sink.
        log_file: Optional path of a rotating log file.
    """
    _logger.remove()
    _logger.add(sys.stderr, level=level.upper(), format=_FORMAT, enqueue=False)

    if log_file:
        _logger.add(
            log_file,
            level=level.upper(),
            format=_FORMAT,
            rotation="10 MB",
            retention=5,
            encoding="utf-8",
        )


def get_logger(name: str):
    """Return a logger bound to the given module name."""
    return _logger.bind(name=name)
