"""
Logging for the bridge.

All bridge loggers live below the ``theta_bridge`` namespace and share one
stderr handler installed on that namespace, so uvicorn and other libraries keep
their own configuration. Request context (request id, handler id, upstream URL)
is passed through ``extra`` and rendered after the message::

    2024-01-05 09:30:00 INFO  theta_bridge.services.worker: Request processed [request_id=... handler=stock-history-eod status_code=200]
"""

from __future__ import annotations

import logging
import os
import sys
from logging import LoggerAdapter
from typing import Any, Dict, List, Mapping, MutableMapping, Optional, Tuple

ROOT_LOGGER = "theta_bridge"
LOG_FORMAT = "%(asctime)s %(levelname)-5s %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_ENV_LEVEL = "THETA_BRIDGE_LOG_LEVEL"
_ENV_COLOR = "THETA_BRIDGE_LOG_COLOR"

# Context keys shown first, in this order; anything else follows alphabetically.
CONTEXT_KEYS: Tuple[str, ...] = (
    "request_id",
    "correlation_id",
    "handler",
    "method",
    "path",
    "url",
    "status_code",
    "attempt",
    "duration",
)

_COLORS: Mapping[int, str] = {
    logging.DEBUG: "\033[2m",
    logging.INFO: "\033[32m",
    logging.WARNING: "\033[33m",
    logging.ERROR: "\033[31m",
    logging.CRITICAL: "\033[1;31m",
}

_STANDARD_ATTRS = frozenset(logging.LogRecord("", 0, "", 0, "", None, None).__dict__) | {"message", "asctime", "taskName"}

_handler: Optional[logging.Handler] = None


def _level_from(value: Optional[int | str]) -> int:
    if isinstance(value, int):
        return value
    name = (value or os.getenv(_ENV_LEVEL) or "INFO").strip().upper()
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def _want_color(stream: Any) -> bool:
    setting = os.getenv(_ENV_COLOR, "").strip().lower()
    if setting in {"1", "true", "yes", "on", "always"}:
        return True
    if setting in {"0", "false", "no", "off", "never"}:
        return False
    isatty = getattr(stream, "isatty", None)
    return bool(isatty and isatty())


def _render(value: Any) -> str:
    if isinstance(value, bytes):
        return f"<{len(value)} bytes>"
    if isinstance(value, float):
        return f"{value:g}"
    if isinstance(value, (list, tuple)):
        return ",".join(_render(item) for item in value)
    text = str(value)
    return f'"{text}"' if " " in text else text


def record_context(record: logging.LogRecord) -> List[Tuple[str, Any]]:
    """Extract ``extra`` fields from ``record``: known keys first, the rest sorted."""

    fields = {
        key: value
        for key, value in vars(record).items()
        if key not in _STANDARD_ATTRS and not key.startswith("_") and value is not None
    }
    ordered = [(key, fields.pop(key)) for key in CONTEXT_KEYS if key in fields]
    ordered.extend(sorted(fields.items()))
    return ordered


class BridgeFormatter(logging.Formatter):
    """Plain-text formatter that appends request context in brackets."""

    def __init__(self, *, color: bool = False) -> None:
        super().__init__(LOG_FORMAT, datefmt=DATE_FORMAT)
        self.color = color

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        if self.color and record.levelno in _COLORS:
            line = line.replace(record.levelname, f"{_COLORS[record.levelno]}{record.levelname}\033[0m", 1)
        context = record_context(record)
        if context:
            line += " [" + " ".join(f"{key}={_render(value)}" for key, value in context) + "]"
        return line


def configure_logging(level: Optional[int | str] = None, *, force: bool = False) -> None:
    """
    Attach the stderr handler to the ``theta_bridge`` logger.

    Parameters
    ----------
    level:
        Level name or number. Defaults to ``THETA_BRIDGE_LOG_LEVEL`` or ``INFO``.
    force:
        Replace a handler installed earlier, e.g. to apply a new level.
    """

    global _handler
    if _handler is not None and not force:
        return
    package_logger = logging.getLogger(ROOT_LOGGER)
    if _handler is not None:
        package_logger.removeHandler(_handler)
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(BridgeFormatter(color=_want_color(handler.stream)))
    package_logger.addHandler(handler)
    package_logger.setLevel(_level_from(level))
    package_logger.propagate = False
    _handler = handler


class ContextLogger(LoggerAdapter):
    """Adapter whose bound context is merged with, not replaced by, per-call ``extra``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> Tuple[Any, MutableMapping[str, Any]]:
        context: Dict[str, Any] = dict(self.extra or {})
        context.update({key: value for key, value in (kwargs.get("extra") or {}).items() if value is not None})
        kwargs["extra"] = context
        return msg, kwargs


def get_logger(name: str, *, level: Optional[int | str] = None, extra: Optional[Mapping[str, object]] = None) -> ContextLogger:
    """Return a :class:`ContextLogger` for ``name`` carrying ``extra`` on every record."""

    configure_logging()
    logger = logging.getLogger(name)
    if level is not None:
        logger.setLevel(_level_from(level))
    return ContextLogger(logger, {key: value for key, value in (extra or {}).items() if value is not None})


def bind(logger: LoggerAdapter, **context: object) -> ContextLogger:
    """Derive a logger with extra bound context; ``logger`` itself is unchanged."""

    merged = dict(logger.extra or {})
    merged.update({key: value for key, value in context.items() if value is not None})
    return ContextLogger(logger.logger, merged)
