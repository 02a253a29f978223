"""Centralized logging configuration for the DAB ADB bridge.

Call configure_logging() once at application startup, then use
standard logging.getLogger(__name__) throughout the codebase. Calling it
again replaces the bridge's own console handler and leaves handlers
installed by others (test capture, embedding applications) alone.
"""

import logging
import sys
from typing import TYPE_CHECKING, Dict

if TYPE_CHECKING:
    from .config import AppConfig

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Floor levels for third-party loggers that are chatty at DEBUG/INFO
QUIET_LOGGERS: Dict[str, int] = {
    "uvicorn.access": logging.WARNING,
    "asyncio": logging.WARNING,
}


class BridgeConsoleHandler(logging.StreamHandler):
    """Console handler owned by configure_logging()."""


def configure_logging(config: "AppConfig") -> None:
    """Configure application-wide logging from AppConfig.

    Args:
        config: Application configuration

    Example:
        >>> config = AppConfig.from_env()
        >>> configure_logging(config)
        >>> logging.getLogger(__name__).info("Bridge starting")
    """
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)

    for existing in [h for h in root_logger.handlers if isinstance(h, BridgeConsoleHandler)]:
        root_logger.removeHandler(existing)
        existing.close()

    handler = BridgeConsoleHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root_logger.addHandler(handler)

    for name, floor in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(max(log_level, floor))

    # Library warnings (deprecations from paho, pydantic) go through logging too
    logging.captureWarnings(True)
