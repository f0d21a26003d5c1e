"""JSON log lines for the key server and its CLI.

Application events go through structlog; uvicorn and any other stdlib logger
are rendered by the same formatter, so one stream carries ``ts``, ``level``,
``msg`` and ``component`` for everything. Context bound with
``structlog.contextvars`` (the request path, the CLI command) is merged into
each line.
"""
from __future__ import annotations

import logging
import sys
from typing import IO, Any, Optional

import structlog

LEVELS = {
    "critical": logging.CRITICAL,
    "error": logging.ERROR,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

# uvicorn's loggers that carry their own handlers unless told otherwise.
_SERVER_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")


def _as_line(_logger: Any, _name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict["msg"] = event_dict.pop("event", "")
    event_dict["component"] = event_dict.pop("logger", None) or "aizen_keys"
    return event_dict


_SHARED = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.add_logger_name,
    structlog.processors.TimeStamper(fmt="iso", key="ts"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.format_exc_info,
]


def configure_logging(level: Optional[str] = None, *, stream: Optional[IO[str]] = None) -> None:
    numeric_level = LEVELS.get((level or "info").lower(), logging.INFO)

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=_SHARED,
            processors=[
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                _as_line,
                structlog.processors.JSONRenderer(),
            ],
        )
    )
    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(numeric_level)
    for name in _SERVER_LOGGERS:
        server_logger = logging.getLogger(name)
        server_logger.handlers.clear()
        server_logger.propagate = True

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level, *_SHARED, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


__all__ = ["LEVELS", "configure_logging"]
