"""Logging setup driven by LoggingSettings."""
from __future__ import annotations

import json
import logging
import sys

from .config import LoggingSettings, settings

TEXT_FORMAT = "%(asctime)s %(levelname)-8s %(name)s - %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "time": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


def setup_logging(config: LoggingSettings | None = None) -> None:
    """Configure the root logger.

    Safe to call more than once; handlers installed by a previous call are
    replaced.
    """
    config = config or settings.logging

    if config.format.lower() == "json":
        formatter: logging.Formatter = JsonFormatter()
    else:
        formatter = logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S")

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if config.file:
        handlers.append(logging.FileHandler(config.file, encoding="utf-8"))

    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, "_match_stream_handler", False):
            root.removeHandler(handler)

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._match_stream_handler = True
        root.addHandler(handler)

    root.setLevel(config.level.upper())
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
