"""
Logging for the query engine.

Every module takes a stdout logger from ``get_logger``.  Fan-out batches log
through ``batch_logger`` so the lines of one batch share a short batch tag.
"""
from __future__ import annotations

import logging
import sys
from typing import Any, MutableMapping

from src.core.config import get_settings

_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"

# client libraries that log every request at INFO
_CHATTY = ("httpx", "httpcore", "sqlalchemy.engine", "faker")


def _level() -> int:
    return getattr(logging, get_settings().log_level.upper(), logging.INFO)


def get_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_FORMAT, datefmt=_DATEFMT))
        logger.addHandler(handler)
        for chatty in _CHATTY:
            logging.getLogger(chatty).setLevel(max(_level(), logging.WARNING))
    logger.setLevel(_level())
    return logger


class BatchLogAdapter(logging.LoggerAdapter):
    """Prefixes messages with ``[batch <first 8 chars>]``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[batch {self.extra['batch_id'][:8]}] {msg}", kwargs


def batch_logger(logger: logging.Logger, batch_id: str) -> BatchLogAdapter:
    return BatchLogAdapter(logger, {"batch_id": batch_id})
