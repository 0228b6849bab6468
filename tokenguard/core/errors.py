"""Problem+JSON (RFC 7807) rendering for every error the token endpoints raise."""

from __future__ import annotations

import logging
import math
from datetime import timedelta
from http import HTTPStatus
from typing import Any

from flask import Flask, Response, jsonify, request
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from tokenguard.core.logger import ensure_request_id
from tokenguard.services._shared.errors import (
    AccountLocked,
    ConcurrentUsageDetected,
    ConfigurationError,
    CredentialExpired,
    DeviceMismatch,
    InvalidCredential,
    MalformedCredential,
    RateLimited,
    ServiceError,
    StorageUnavailable,
    UnknownRefreshToken,
    WrongCredentialKind,
)

log = logging.getLogger(__name__)

PROBLEM_MIMETYPE = "application/problem+json"

# Fallback codes for werkzeug's own HTTP exceptions
_STATUS_CODES = {
    HTTPStatus.BAD_REQUEST: "bad_request",
    HTTPStatus.UNAUTHORIZED: "unauthorized",
    HTTPStatus.FORBIDDEN: "forbidden",
    HTTPStatus.NOT_FOUND: "not_found",
    HTTPStatus.METHOD_NOT_ALLOWED: "method_not_allowed",
    HTTPStatus.UNSUPPORTED_MEDIA_TYPE: "unsupported_media_type",
    HTTPStatus.UNPROCESSABLE_ENTITY: "unprocessable_entity",
    HTTPStatus.TOO_MANY_REQUESTS: "too_many_requests",
    HTTPStatus.INTERNAL_SERVER_ERROR: "internal_server_error",
    HTTPStatus.SERVICE_UNAVAILABLE: "service_unavailable",
}

# Most specific first; InvalidCredential catches any other codec failure.
_CREDENTIAL_CODES: tuple[tuple[type[ServiceError], str], ...] = (
    (MalformedCredential, "invalid_token"),
    (CredentialExpired, "token_expired"),
    (WrongCredentialKind, "wrong_token_kind"),
    (UnknownRefreshToken, "unknown_refresh_token"),
    (ConcurrentUsageDetected, "token_reuse_detected"),
    (DeviceMismatch, "device_mismatch"),
    (InvalidCredential, "invalid_token"),
)


def render_problem(
    status: int,
    code: str,
    message: str,
    *,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> tuple[Response, int]:
    """
    Build the ``application/problem+json`` response for one error.

    Every body carries ``instance`` (the request path) and the request's
    correlation id, so a client report can be matched to server logs.
    """

    status = int(status)
    body: dict[str, Any] = {
        "type": "about:blank",
        "title": HTTPStatus(status).phrase,
        "status": status,
        "detail": message,
        "instance": request.path,
        "code": code,
        "request_id": ensure_request_id(),
    }
    if details:
        body["details"] = details

    response = jsonify(body)
    response.mimetype = PROBLEM_MIMETYPE
    for name, value in (headers or {}).items():
        response.headers[name] = value
    return response, status


class APIError(Exception):
    """
    An error raised directly by the HTTP layer.

    ``headers`` stays mutable so decorators can add rate-limit headers
    before re-raising.
    """

    def __init__(
        self,
        message: str,
        status_code: int = HTTPStatus.BAD_REQUEST,
        code: str = "bad_request",
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = int(status_code)
        self.code = code
        self.details = details or {}
        self.headers = headers or {}


class Unauthorized(APIError):
    def __init__(self, message: str = "Unauthorized", code: str = "unauthorized") -> None:
        super().__init__(message, status_code=HTTPStatus.UNAUTHORIZED, code=code)


class TooManyRequests(APIError):
    """429 with the wait repeated in ``Retry-After`` and ``details.retry_after``."""

    def __init__(self, message: str, *, retry_after: int, code: str = "too_many_requests") -> None:
        super().__init__(
            message,
            status_code=HTTPStatus.TOO_MANY_REQUESTS,
            code=code,
            details={"retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


def _whole_seconds(delta: timedelta) -> int:
    return max(0, math.ceil(delta.total_seconds()))


def translate_service_error(exc: ServiceError) -> APIError:
    """Pick the HTTP status and stable code for a service-layer failure."""

    for err_type, code in _CREDENTIAL_CODES:
        if isinstance(exc, err_type):
            return Unauthorized(str(exc), code=code)

    if isinstance(exc, AccountLocked):
        return TooManyRequests(
            str(exc), retry_after=_whole_seconds(exc.retry_after), code="account_locked"
        )
    if isinstance(exc, RateLimited):
        return TooManyRequests(
            str(exc), retry_after=_whole_seconds(exc.retry_after), code="rate_limited"
        )

    if isinstance(exc, StorageUnavailable):
        return APIError(
            "Service temporarily unavailable",
            status_code=HTTPStatus.SERVICE_UNAVAILABLE,
            code="service_unavailable",
        )
    if isinstance(exc, ConfigurationError):
        return APIError(
            "Server misconfigured",
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
            code="internal_server_error",
        )
    return APIError(str(exc))


def _log_problem(source: str, status: int, code: str, *, exc_info: bool = False) -> None:
    if status >= HTTPStatus.INTERNAL_SERVER_ERROR:
        log.error("%s: code=%s status=%s", source, code, status, exc_info=exc_info)
    else:
        log.warning("%s: code=%s status=%s", source, code, status)


def init_app(app: Flask) -> None:
    """Register the problem+json handlers; 5xx are logged with tracebacks."""

    def _render_api_error(err: APIError, source: str, *, exc_info: bool = False):
        _log_problem(source, err.status_code, err.code, exc_info=exc_info)
        return render_problem(
            err.status_code,
            err.code,
            err.message,
            details=err.details or None,
            headers=err.headers,
        )

    @app.errorhandler(APIError)
    def handle_api_error(err: APIError):
        return _render_api_error(err, "APIError")

    @app.errorhandler(ServiceError)
    def handle_service_error(err: ServiceError):
        return _render_api_error(translate_service_error(err), "ServiceError", exc_info=True)

    @app.errorhandler(ValidationError)
    def handle_validation_error(err: ValidationError):
        _log_problem("ValidationError", HTTPStatus.UNPROCESSABLE_ENTITY, "validation_error")
        return render_problem(
            HTTPStatus.UNPROCESSABLE_ENTITY,
            "validation_error",
            "Validation failed",
            details={"errors": err.messages},
        )

    @app.errorhandler(HTTPException)
    def handle_http_exception(err: HTTPException):
        status = err.code or HTTPStatus.INTERNAL_SERVER_ERROR
        code = _STATUS_CODES.get(status, "error")
        if status == HTTPStatus.NOT_FOUND:
            message = f"Route '{request.path}' not found"
        else:
            message = (err.description or code.replace("_", " ").capitalize()).strip()
        _log_problem("HTTPException", status, code)
        return render_problem(status, code, message)

    @app.errorhandler(Exception)
    def handle_unexpected_error(err: Exception):
        # Internal details never reach the client
        _log_problem(
            "Unhandled exception",
            HTTPStatus.INTERNAL_SERVER_ERROR,
            "internal_server_error",
            exc_info=True,
        )
        return render_problem(
            HTTPStatus.INTERNAL_SERVER_ERROR, "internal_server_error", "Unexpected error"
        )
