import json
import logging
import os
import sys

_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s | extras=%(extras)s"


def get_logger(name: str) -> logging.LoggerAdapter:
    logger = logging.getLogger(name)
    if not logger.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(level)
    # every record needs an "extras" attribute for the formatter
    return logging.LoggerAdapter(logger, extra={"extras": "{}"})


def with_extras(logger, **extras) -> logging.LoggerAdapter:
    # attach JSON extras for consistent structured logs
    base = logger.logger if hasattr(logger, "logger") else logger
    return logging.LoggerAdapter(
        base,
        extra={"extras": json.dumps(extras, ensure_ascii=False, default=str)},
    )
