"""Logging utilities for the shrinker batch."""

from __future__ import annotations

import logging
import os
import sys
from typing import IO, Any

import orjson

_DEFAULT_LEVEL = os.environ.get("ASHR_LOG_LEVEL", "INFO")
_PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line; ``ctx_*`` extras are copied through."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        for key, value in record.__dict__.items():
            if key.startswith("ctx_"):
                payload[key] = value
        return orjson.dumps(payload, default=str).decode("utf-8")


def configure_logging(
    level: str | int = _DEFAULT_LEVEL,
    use_json: bool = True,
    stream: IO[str] | None = None,
) -> None:
    """Configure the root logger.

    Logs go to stderr by default; stdout is reserved for the watermark line.
    """
    logging.captureWarnings(True)
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if use_json else logging.Formatter(_PLAIN_FORMAT))
    root.handlers = [handler]


def get_logger(name: str = "attachment_shrinker") -> logging.Logger:
    return logging.getLogger(name)


__all__ = ["JsonFormatter", "configure_logging", "get_logger"]
