from __future__ import annotations

import logging
import os

LOGGER_NAME = "console_client"
LOG_LEVEL = os.getenv("CONSOLE_LOG_LEVEL", "INFO")
LOG_FORMAT = "ts=%(asctime)s level=%(levelname)s logger=%(name)s msg=%(message)s"

_HANDLER: logging.Handler | None = None


def configure_logging(level: str | None = None) -> logging.Logger:
    global _HANDLER
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel((level or LOG_LEVEL).upper())
    if _HANDLER is None:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        _HANDLER = handler
    return logger
