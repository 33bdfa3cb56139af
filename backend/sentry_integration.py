"""
Gate Validator - Sentry Integration

Reports authority outages and unclassified transaction failures to Sentry.
Disabled unless SENTRY_DSN is configured.

Permit, vehicle and container numbers identify real cargo movements and
are scrubbed from every event before it leaves the process; only the
permit prefix (the permit class) and gate direction are sent, as tags.
"""

import logging
import os
from typing import Any, Dict, Optional

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

# Substrings of keys whose values never reach Sentry
SENSITIVE_KEYS = (
    "permit", "vehicle", "container", "soapdata",
    "secret", "signature", "authorization", "cookie", "token",
)

# Known network noise from dashboards dropping sockets
IGNORED_ERRORS = ["ConnectionResetError", "BrokenPipeError", "WebSocketDisconnect"]


def init_sentry(
    dsn: Optional[str] = None,
    environment: str = "development",
    release: Optional[str] = None,
    traces_sample_rate: float = 0.0,
) -> bool:
    """
    Initialize Sentry for the gate validator.

    Returns True when Sentry is active.
    """
    dsn = dsn or os.environ.get("SENTRY_DSN", "")
    if not dsn:
        logger.info("SENTRY_DSN not set, error tracking disabled")
        return False

    try:
        sentry_sdk.init(
            dsn=dsn,
            environment=environment,
            release=release or os.environ.get("GIT_SHA"),
            traces_sample_rate=traces_sample_rate,
            integrations=[
                FastApiIntegration(transaction_style="url"),
                LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
            send_default_pii=False,
            max_request_body_size="never",
            before_send=filter_sensitive_data,
            ignore_errors=IGNORED_ERRORS,
        )
    except Exception as e:
        logger.error(f"Sentry initialization failed, continuing without it: {e}")
        return False

    logger.info(f"Sentry enabled ({environment})")
    return True


def _is_sensitive(key: Any) -> bool:
    normalized = str(key).lower().replace("_", "").replace("-", "")
    return any(marker in normalized for marker in SENSITIVE_KEYS)


def redact_dict(data: Any) -> Any:
    """Recursively replace values under sensitive keys."""
    if isinstance(data, dict):
        return {
            key: REDACTED if _is_sensitive(key) else redact_dict(value)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [redact_dict(item) for item in data]
    return data


def filter_sensitive_data(event: Dict[str, Any], hint: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    """before_send hook: scrub request data, headers, extras and breadcrumbs."""
    request = event.get("request")
    if isinstance(request, dict):
        for section in ("headers", "data", "cookies"):
            if section in request:
                request[section] = redact_dict(request[section])

    if "extra" in event:
        event["extra"] = redact_dict(event["extra"])

    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict) and "values" in breadcrumbs:
        for crumb in breadcrumbs["values"]:
            if "data" in crumb:
                crumb["data"] = redact_dict(crumb["data"])

    return event


def capture_exception(exception: Exception, **tags) -> Optional[str]:
    """
    Report an exception with gate tags (e.g. permit_prefix, gate_type).

    Returns the Sentry event id, or None when Sentry is disabled.
    """
    if not sentry_sdk.is_initialized():
        return None

    with sentry_sdk.new_scope() as scope:
        for key, value in tags.items():
            if value is not None:
                scope.set_tag(key, value)
        return sentry_sdk.capture_exception(exception)


def set_tag(key: str, value: str):
    if sentry_sdk.is_initialized():
        sentry_sdk.set_tag(key, value)
