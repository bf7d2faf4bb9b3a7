"""
全局日志
"""
import logging
import os
import sys

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s %(threadName)s - %(message)s"


def _build_logger() -> logging.Logger:
    _logger = logging.getLogger("otc_desk")
    if not _logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        _logger.addHandler(handler)
    _logger.setLevel(os.getenv("LOG_LEVEL", "INFO").upper())
    _logger.propagate = False
    return _logger


logger = _build_logger()
