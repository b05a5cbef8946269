"""
Structured logging for OpsDesk.

Every record emitted while a request is being served carries that request's
``request_id`` (and ``admin_id`` once the bearer token is resolved), so a
ticket submission can be followed from the HTTP line through the service
log to the notification outcome.

- Production (or LOG_FORMAT=json): one JSON object per line
- Development / testing: short readable lines, coloured on a TTY
- LOG_LEVEL overrides the default level (DEBUG in dev, INFO otherwise)
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from flask import g, has_request_context

# Fields services and middleware pass through ``extra={...}``
CONTEXT_FIELDS = (
    "request_id",
    "admin_id",
    "method",
    "path",
    "status",
    "duration_ms",
    "remote_addr",
    "entity_type",
    "entity_id",
    "template",
    "recipient",
    "error_code",
)

_QUIET_LOGGERS = ("werkzeug", "sqlalchemy.engine", "urllib3")


class RequestContextFilter(logging.Filter):
    """Copy the current request id / admin id onto records that lack them."""

    def filter(self, record: logging.LogRecord) -> bool:
        if has_request_context():
            if getattr(record, "request_id", None) is None:
                record.request_id = g.get("request_id")
            if getattr(record, "admin_id", None) is None:
                record.admin_id = g.get("admin_id")
        return True


def _context(record: logging.LogRecord) -> dict:
    return {
        key: getattr(record, key)
        for key in CONTEXT_FIELDS
        if getattr(record, key, None) is not None
    }


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "where": f"{record.module}.{record.funcName}:{record.lineno}",
        }
        entry.update(_context(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """``12:04:31 WARNING  opsdesk.services.notifications: ... [req=ab12 support_ticket#7]``"""

    LEVEL_COLOURS = {
        "DEBUG": "\033[36m",
        "INFO": "\033[32m",
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[35m",
    }

    def __init__(self, colour: bool = False):
        super().__init__()
        self.colour = colour

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        level = f"{record.levelname:<8}"
        if self.colour and record.levelname in self.LEVEL_COLOURS:
            level = f"{self.LEVEL_COLOURS[record.levelname]}{level}\033[0m"

        tags = []
        request_id = getattr(record, "request_id", None)
        if request_id:
            tags.append(f"req={request_id}")
        entity_type = getattr(record, "entity_type", None)
        if entity_type:
            tags.append(f"{entity_type}#{getattr(record, 'entity_id', '?')}")
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tags.append(f"{duration:.0f}ms")

        line = f"{stamp} {level} {record.name}: {record.getMessage()}"
        if tags:
            line += f" [{' '.join(tags)}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Install one stderr handler on the root logger.

    The handler list is replaced rather than appended to, so calling
    ``create_app()`` repeatedly (as the test suite does) never duplicates output.
    """
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if production else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    as_json = production or os.getenv("LOG_FORMAT", "").lower() == "json"
    if as_json:
        formatter = JSONFormatter()
    else:
        formatter = ReadableFormatter(colour=sys.stderr.isatty())

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)
    handler.addFilter(RequestContextFilter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not testing:
        app.logger.info("Logging configured: level=%s format=%s", level_name, "json" if as_json else "readable")
