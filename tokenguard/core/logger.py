"""JSON logging for tokenguard with request correlation."""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from typing import IO, Any
from uuid import uuid4

from flask import Flask, Response, g, has_request_context, request

REQUEST_ID_HEADER = "X-Request-ID"
CORRELATION_HEADERS = ("X-Request-ID", "X-Correlation-ID")

# ``extra=`` keys the services and adapters attach to their records
EXTRA_KEYS = (
    "subject_id",
    "record_id",
    "token",
    "identifier",
    "attempts",
    "failed_attempts",
    "revoked",
    "removed",
    "operation",
    "attempt",
    "alert_message",
    "timestamp",
    "endpoint",
    "elapsed_ms",
)


class JSONFormatter(logging.Formatter):
    """One JSON object per record; security context comes from ``extra=``."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "time": datetime.now(UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
        }
        payload.update(
            (key, getattr(record, key)) for key in EXTRA_KEYS if hasattr(record, key)
        )
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class RequestIdFilter(logging.Filter):
    """Stamp ``request_id`` on every record (``None`` outside a request)."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - trivial
        record.request_id = ensure_request_id() if has_request_context() else None
        return True


def ensure_request_id() -> str:
    """Return the request's correlation id, adopting an inbound header or minting one."""

    if not has_request_context():
        return str(uuid4())
    if "request_id" not in g:
        inbound = next(
            (request.headers[h] for h in CORRELATION_HEADERS if request.headers.get(h)), None
        )
        g.request_id = inbound or str(uuid4())
    return g.request_id  # type: ignore[no-any-return]


class _TokenguardHandler(logging.StreamHandler):
    """Marker type so reconfiguration replaces only our own handler."""


def configure_logging(level: str | int = "INFO", *, stream: IO[str] | None = None) -> None:
    """
    Install the JSON handler on the root logger.

    Calling it again (one call per app factory run) swaps the previous
    tokenguard handler; handlers installed by others are left alone.
    """

    root = logging.getLogger()
    for existing in [h for h in root.handlers if isinstance(h, _TokenguardHandler)]:
        root.removeHandler(existing)

    handler = _TokenguardHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())
    handler.addFilter(RequestIdFilter())
    root.addHandler(handler)

    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        root.setLevel(resolved if isinstance(resolved, int) else logging.INFO)
    else:
        root.setLevel(level)


def init_app(app: Flask) -> None:
    """Seed a correlation id per request and echo it back in ``X-Request-ID``."""

    app.logger.addFilter(RequestIdFilter())

    @app.before_request
    def _seed_request_id() -> None:
        ensure_request_id()

    @app.after_request
    def _echo_request_id(response: Response) -> Response:
        response.headers.setdefault(REQUEST_ID_HEADER, ensure_request_id())
        return response


__all__ = [
    "JSONFormatter",
    "configure_logging",
    "ensure_request_id",
    "init_app",
]
