"""
Logging configuration for the connectors and their test runs
"""

from typing import Iterable, Optional
import logging
import sys

from core.config import settings

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# HTTP client libraries log every single request at INFO
NOISY_LOGGERS = ("httpx", "httpcore")


def setup_logging(level: Optional[str] = None, quiet: Iterable[str] = NOISY_LOGGERS) -> int:
    """
    Configure the root logger once for the host process.

    Args:
        level: Level name overriding settings.LOG_LEVEL
        quiet: Loggers raised to WARNING

    Returns:
        The numeric level applied to the root logger
    """
    level_name = (level or settings.LOG_LEVEL).upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt=DATE_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)]
    )
    logging.getLogger().setLevel(log_level)

    for name in quiet:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(f"Connector logging configured at {level_name} level")
    return log_level
