"""JSON logging for session events, correlated by request id and user."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from flask import Flask, g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_HEADERS = ("X-Request-ID", "X-Correlation-ID")

# Attributes passed through ``extra=`` that end up in the JSON line
CONTEXT_KEYS = ("user_id", "device_id", "event", "count")

# Loggers that would otherwise emit one INFO line per cleanup tick
QUIET_LOGGERS = ("apscheduler",)


class JSONFormatter(logging.Formatter):
    """One JSON object per record.

    Refresh secrets never reach a log call in clear; services pass them
    through :func:`~authsession.services._shared.policies.common.obfuscate`.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(
            {key: getattr(record, key) for key in CONTEXT_KEYS if hasattr(record, key)}
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class SessionContextFilter(logging.Filter):
    """Stamp ``request_id`` and, once a bearer token verified, ``user_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not has_request_context():
            record.request_id = None
            return True
        record.request_id = ensure_request_id()
        claims = getattr(g, "access_claims", None)
        if claims is not None and not hasattr(record, "user_id"):
            record.user_id = claims.sub
        return True


def ensure_request_id() -> str:
    """Return the request's correlation id, adopting an inbound header when present."""

    if not has_request_context():
        return str(uuid4())
    if "request_id" not in g:
        inbound = next(
            (request.headers[h] for h in CORRELATION_HEADERS if request.headers.get(h)), None
        )
        g.request_id = inbound or str(uuid4())
    return g.request_id


def _level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return logging.getLevelNamesMapping().get(value.strip().upper(), logging.INFO)


def configure_logging(level: str | int = "INFO") -> None:
    """Send every record to stdout as JSON at ``level``.

    Safe to call more than once; the root handlers are replaced each time.
    """

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(SessionContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(_level(level))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root.level, logging.WARNING))


def init_app(app: Flask) -> None:
    """Seed a request id per request and echo it on the response."""

    app.logger.addFilter(SessionContextFilter())

    @app.before_request
    def _seed_request_id() -> None:
        ensure_request_id()

    @app.after_request
    def _echo_request_id(response):
        response.headers.setdefault(REQUEST_ID_HEADER, ensure_request_id())
        return response


__all__ = [
    "CONTEXT_KEYS",
    "JSONFormatter",
    "SessionContextFilter",
    "configure_logging",
    "ensure_request_id",
    "init_app",
]
