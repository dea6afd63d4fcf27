"""Sink interface that parsed records are handed to."""

import logging
from datetime import datetime
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Sink(Protocol):
    """Accepts records from any tailer thread; implementations must be thread-safe."""

    def add_fields(self, measurement: str, fields: dict[str, Any],
                   tags: dict[str, str], timestamp: datetime) -> None:
        ...


class LoggingSink:
    """Writes each record to the log. Used by the command-line entry point."""

    def __init__(self, level: int = logging.INFO):
        self._level = level

    def add_fields(self, measurement, fields, tags, timestamp):
        logger.log(self._level, "%s tags=%s fields=%s ts=%s",
                   measurement, tags, fields, timestamp.isoformat())
