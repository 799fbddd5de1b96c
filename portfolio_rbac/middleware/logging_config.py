"""
Logging setup for the portfolio RBAC service.

Authorization code logs with ``extra={"portfolio_id": ..., "user_id": ...,
"action": ...}`` and the request timer adds method/path/status/duration.
Both formatters read the same fields:

    production   one JSON object per line, fields at the top level
    development  ``12:01:07 INFO  portfolio_rbac.services.authorizer
                 [portfolio=p1 user=u2 action=remove_members] message``

LOG_LEVEL overrides the default level (DEBUG in development, INFO in
production).
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

SCOPE_FIELDS = ("portfolio_id", "user_id", "action")
REQUEST_FIELDS = ("request_id", "method", "path", "status", "duration_ms")


def _fields(record: logging.LogRecord, names) -> dict:
    return {name: getattr(record, name) for name in names if getattr(record, name, None) is not None}


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            **_fields(record, REQUEST_FIELDS),
            **_fields(record, SCOPE_FIELDS),
        }
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """One line per record with the authorization scope in brackets."""

    def format(self, record: logging.LogRecord) -> str:
        scope = _fields(record, SCOPE_FIELDS)
        tag = ""
        if scope:
            short = {"portfolio_id": "portfolio", "user_id": "user", "action": "action"}
            tag = " [" + " ".join(f"{short[k]}={v}" for k, v in scope.items()) + "]"
        line = f"{self.formatTime(record, '%H:%M:%S')} {record.levelname:<5} {record.name}{tag} {record.getMessage()}"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def configure_logging(app):
    """Attach one stderr handler to the ``portfolio_rbac`` logger."""
    is_testing = app.config.get("TESTING", False)
    is_prod = not app.config.get("DEBUG", False) and not is_testing

    level_name = os.getenv("LOG_LEVEL", "INFO" if is_prod else "DEBUG").upper()
    level = getattr(logging, level_name, logging.INFO)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if is_prod else ReadableFormatter())

    # root is left alone so pytest's caplog still sees records
    pkg = logging.getLogger("portfolio_rbac")
    pkg.handlers.clear()
    pkg.addHandler(handler)
    pkg.setLevel(level)

    for noisy in ("werkzeug", "sqlalchemy.engine"):
        logging.getLogger(noisy).setLevel(logging.WARNING)
    app.logger.setLevel(level)

    if not is_testing:
        pkg.info("Logging configured: level=%s format=%s", level_name, "json" if is_prod else "readable")
