"""Logging setup: named loggers plus a circular in-memory buffer for /api/logs/recent."""

from __future__ import annotations

import logging
import sys
from collections import deque
from datetime import datetime
from typing import Deque

LOGGER_NAME = "focus_engine"

# Circular buffer of recent log entries (max 100)
log_buffer: Deque[dict] = deque(maxlen=100)


class LogBufferHandler(logging.Handler):
    """Captures formatted records into log_buffer."""

    def emit(self, record: logging.LogRecord):
        try:
            log_buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


buffer_handler = LogBufferHandler()
buffer_handler.setLevel(logging.DEBUG)
buffer_handler.setFormatter(logging.Formatter("%(message)s"))

logger = logging.getLogger(LOGGER_NAME)
logger.setLevel(logging.INFO)
if buffer_handler not in logger.handlers:
    logger.addHandler(buffer_handler)


def get_logger(name: str) -> logging.Logger:
    """Child logger under focus_engine (e.g. get_logger("lifecycle"))."""
    return logger.getChild(name)


def configure_logging(level: str = "INFO") -> None:
    """Attach a stdout handler to the package logger (CLI and server entry points)."""
    logger.setLevel(level.upper())
    for handler in logger.handlers:
        if getattr(handler, "_focus_stream", False):
            return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    handler._focus_stream = True
    logger.addHandler(handler)

    # uvicorn / fastapi records land in the same buffer
    logging.getLogger("uvicorn").addHandler(buffer_handler)
    logging.getLogger("fastapi").addHandler(buffer_handler)


def recent_logs(limit: int = 50) -> list[dict]:
    return list(log_buffer)[-limit:]
