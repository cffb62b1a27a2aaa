"""
Structured JSON logging for the discovery service.

Every record is emitted as one JSON line on stdout so CloudWatch Logs
can index the fields of a discovery run (stage, counts, resource ids).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, Optional

DEFAULT_LOGGER_NAME = "cloudmap-ecs-discovery"


class JsonFormatter(logging.Formatter):
    """
    Render a LogRecord as a single JSON object.

    Fields: timestamp (ISO 8601, UTC), level, name, message, any context
    fields passed through ``extra`` and, when present, the exception text.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }

        context = getattr(record, "context_fields", None)
        if context:
            entry.update(context)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    Thin wrapper over ``logging.Logger`` that accepts a context dict.

    Fields bound with ``bind`` are added to every line; per-call ``extra``
    fields override them.

    >>> logger = StructuredLogger("pipeline").bind(run_id="3f9c1a2b")
    >>> logger.info("Stage finished", extra={"stage": "Resolving", "instances": 4})
    """

    def __init__(self, name: str, level: int = logging.INFO, fields: Optional[Dict[str, Any]] = None):
        self._logger = logging.getLogger(name)
        self._logger.setLevel(level)
        self._fields = dict(fields or {})

        if not self._logger.handlers:
            handler = logging.StreamHandler(sys.stdout)
            handler.setFormatter(JsonFormatter())
            self._logger.addHandler(handler)
        self._logger.propagate = False

    @property
    def name(self) -> str:
        return self._logger.name

    @property
    def fields(self) -> Dict[str, Any]:
        return dict(self._fields)

    def bind(self, **fields: Any) -> "StructuredLogger":
        """Return a logger for the same channel with extra default fields."""
        return StructuredLogger(self._logger.name, self._logger.level, {**self._fields, **fields})

    def _context(self, extra: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        merged = {**self._fields, **(extra or {})}
        return {"context_fields": merged} if merged else {}

    def debug(self, msg: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._logger.debug(msg, extra=self._context(extra))

    def info(self, msg: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._logger.info(msg, extra=self._context(extra))

    def warning(self, msg: str, extra: Optional[Dict[str, Any]] = None) -> None:
        self._logger.warning(msg, extra=self._context(extra))

    def error(
        self,
        msg: str,
        extra: Optional[Dict[str, Any]] = None,
        exc_info: bool = False,
    ) -> None:
        """
        Log an error, optionally with the active exception's traceback.

        Args:
            msg: Log message
            extra: Context fields merged into the JSON line
            exc_info: Attach the current traceback as ``exception``
        """
        self._logger.error(msg, extra=self._context(extra), exc_info=exc_info)


def setup_logger(name: str = DEFAULT_LOGGER_NAME, level: Optional[int] = None) -> StructuredLogger:
    """
    Create a structured logger.

    When ``level`` is omitted it is read from the LOG_LEVEL environment
    variable, falling back to INFO for unknown or missing values.

    Args:
        name: Logger name, usually the module's ``__name__``
        level: Explicit logging level

    Returns:
        StructuredLogger writing JSON lines to stdout
    """
    if level is None:
        level_name = os.getenv("LOG_LEVEL", "INFO").upper()
        level = getattr(logging, level_name, logging.INFO)

    return StructuredLogger(name, level)
