"""Logging setup for the step-up engine."""

import logging
from typing import Optional

from pythonjsonlogger import jsonlogger

from .config import Settings, settings as default_settings


def configure_logging(config: Optional[Settings] = None) -> logging.Logger:
    """Install a JSON (or plain) handler on the root logger."""
    config = config or default_settings

    log_handler = logging.StreamHandler()
    if config.LOG_JSON:
        formatter = jsonlogger.JsonFormatter(
            "%(asctime)s %(name)s %(levelname)s %(message)s"
        )
    else:
        formatter = logging.Formatter("%(asctime)s %(name)s %(levelname)s %(message)s")
    log_handler.setFormatter(formatter)

    logger = logging.getLogger()
    for handler in list(logger.handlers):
        if getattr(handler, "_stepup_handler", False):
            logger.removeHandler(handler)
    log_handler._stepup_handler = True
    logger.addHandler(log_handler)
    logger.setLevel(config.LOG_LEVEL)

    return logger
