"""
Service logger setup

Configures the root logger once per process from LoggingConfig.
"""

import logging
import sys
from typing import Optional

from core.config import LoggingConfig


def setup_service_logger(
    service_name: str,
    level: Optional[str] = None,
    config: Optional[LoggingConfig] = None,
) -> logging.Logger:
    """
    Configure console (and optional file) logging and return the service logger.

    Args:
        service_name: Logger name for the service
        level: Overrides the configured level
        config: Logging configuration, loaded from the environment when omitted
    """
    config = config or LoggingConfig.from_env()
    formatter = logging.Formatter(config.log_format)

    root = logging.getLogger()
    root.setLevel((level or config.log_level).upper())
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if config.enable_console:
        console = logging.StreamHandler(sys.stdout)
        console.setFormatter(formatter)
        root.addHandler(console)

    if config.log_file:
        file_handler = logging.FileHandler(config.log_file)
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    return logging.getLogger(service_name)
