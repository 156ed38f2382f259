"""Root logger configuration for novelcli runs.

Log records go to stderr (and optionally a file) so that the rich run report
on stdout stays readable. Settings come from ``logging.level``,
``logging.format`` and ``logging.file``; ``--verbose`` forces DEBUG.
"""

import logging
import sys
from typing import List, Optional, Tuple

from novelcli.infrastructure.config.settings import get_config

DEFAULT_LOG_LEVEL = logging.INFO
DEFAULT_LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# HTTP and SDK loggers stay at WARNING unless the pipeline itself logs at DEBUG
NOISY_LOGGERS = ("httpx", "httpcore", "openai", "groq")


def _handlers(log_file: Optional[str]) -> Tuple[List[logging.Handler], Optional[OSError]]:
    handlers: List[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if not log_file:
        return handlers, None
    try:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    except OSError as e:
        return handlers, e
    return handlers, None


def setup_logging(
    log_level: int = DEFAULT_LOG_LEVEL,
    log_format: str = DEFAULT_LOG_FORMAT,
    log_file: Optional[str] = None,
) -> None:
    """Replaces the root logger's handlers with stderr and optional file handlers.

    Args:
        log_level: Minimum level for the root logger and its handlers.
        log_format: ``logging.Formatter`` format string.
        log_file: Path of an additional log file, if any.
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(log_format)
    handlers, file_error = _handlers(log_file)
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    logger = logging.getLogger(__name__)
    if file_error is not None:
        logger.error(f"Failed to set up file logging to {log_file}: {file_error}")
    logger.debug(f"Logging configured: level={logging.getLevelName(log_level)}, file={log_file or '-'}")


def setup_logging_from_config(verbose: bool = False) -> None:
    """Reads logging settings from configuration and applies them."""
    level_name = "DEBUG" if verbose else str(get_config('logging.level', 'INFO')).upper()
    setup_logging(
        log_level=getattr(logging, level_name, DEFAULT_LOG_LEVEL),
        log_format=get_config('logging.format', DEFAULT_LOG_FORMAT),
        log_file=get_config('logging.file'),
    )
