"""
Gate Validator - Structured Logging

Every log line emitted while a gate transaction is in flight carries the
transaction context (request id, permit number, gate direction), in JSON
for log shippers or as a plain line for local development.
"""

import json
import logging
import os
import sys
import traceback
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional


_request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_gate_context: ContextVar[Dict[str, str]] = ContextVar("gate_context", default={})

# LogRecord attributes that are not caller-supplied extras
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {
    "message", "asctime", "request_id", "permit_number", "gate_type"
}

PLAIN_FORMAT = "%(asctime)s %(levelname)-7s %(name)s [%(request_id)s %(permit_number)s/%(gate_type)s] %(message)s"

QUIET_LOGGERS = ("uvicorn.access", "httpx", "httpcore")


class GateContextFilter(logging.Filter):
    """Stamp the current transaction context onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        context = _gate_context.get()
        record.request_id = _request_id.get() or "-"
        record.permit_number = context.get("permit_number", "-")
        record.gate_type = context.get("gate_type", "-")
        return True


class JSONFormatter(logging.Formatter):
    """One JSON object per record."""

    def __init__(self, service_name: str = "gate-validator"):
        super().__init__()
        self.service_name = service_name
        self.environment = os.environ.get("ENVIRONMENT", "development")

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "service": self.service_name,
            "env": self.environment,
            "src": f"{record.module}:{record.lineno}",
        }

        for key in ("request_id", "permit_number", "gate_type"):
            value = getattr(record, key, None)
            if value and value != "-":
                entry[key] = value

        if record.exc_info and record.exc_info[0]:
            exc_type, exc_value, exc_tb = record.exc_info
            entry["error"] = {
                "type": exc_type.__name__,
                "message": str(exc_value),
                "stack": "".join(traceback.format_exception(exc_type, exc_value, exc_tb)),
            }

        extras = {k: v for k, v in vars(record).items() if k not in _RECORD_ATTRS}
        if extras:
            entry["extra"] = extras

        return json.dumps(entry, default=str)


def setup_logging(
    level: str = "INFO",
    json_format: bool = True,
    service_name: str = "gate-validator"
) -> logging.Logger:
    """
    Route all logging to stdout with transaction context attached.

    Args:
        level: Root log level name
        json_format: JSON lines (production) instead of plain text
        service_name: Value of the "service" field in JSON output
    """
    numeric_level = logging.getLevelName(level.upper())
    if not isinstance(numeric_level, int):
        numeric_level = logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(GateContextFilter())
    handler.setFormatter(
        JSONFormatter(service_name=service_name) if json_format else logging.Formatter(PLAIN_FORMAT)
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(numeric_level)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def set_request_context(request_id: Optional[str] = None):
    """Bind the HTTP request id for the current task."""
    _request_id.set(request_id)


def set_gate_context(permit_number: str, gate_type: str):
    """Bind the gate transaction being processed by the current task."""
    _gate_context.set({"permit_number": permit_number, "gate_type": gate_type})


def clear_request_context():
    _request_id.set(None)
    _gate_context.set({})
