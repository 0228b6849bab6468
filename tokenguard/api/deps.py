"""Request guards: bearer-token verification and attempt rate limiting."""

from __future__ import annotations

import functools
import logging
from collections.abc import Callable
from typing import Any, TypeVar, cast

from flask import Response, current_app, g, jsonify, make_response, request
from marshmallow import ValidationError

from tokenguard.core.errors import APIError, TooManyRequests, Unauthorized
from tokenguard.core.extensions import get_context
from tokenguard.services._shared.errors import ServiceError, StorageUnavailable
from tokenguard.services.rate_limit.dto import Decision
from tokenguard.services.rate_limit.service import RateLimitEngine
from tokenguard.services.tokens.dto import AccessClaims, DeviceInfo

F = TypeVar("F", bound=Callable[..., Any])

SubjectResolver = Callable[[], str | None]

log = logging.getLogger(__name__)


def bearer_token() -> str:
    """Extract the bearer credential from ``Authorization``."""

    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise Unauthorized("Missing bearer token", code="missing_token")
    return token.strip()


def client_identifier() -> str:
    """Rate-limit identifier for the caller (remote address)."""

    if current_app.config.get("TOKENGUARD_TRUST_FORWARDED_FOR"):
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.remote_addr or "unknown"


def device_info(fingerprint: str | None = None) -> DeviceInfo:
    """Build the device context of the current request."""

    return DeviceInfo(
        fingerprint=fingerprint or request.headers.get("X-Device-Fingerprint") or None,
        source_address=client_identifier(),
        user_agent=request.headers.get("User-Agent"),
    )


def current_claims() -> AccessClaims:
    """Return the claims verified by :func:`require_access_token`."""

    claims = getattr(g, "access_claims", None)
    if claims is None:
        raise RuntimeError("current_claims() used outside a require_access_token view")
    return cast(AccessClaims, claims)


def require_access_token(func: F) -> F:
    """Ensure the request carries a valid access token; exposes it via ``current_claims``."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any):
        g.access_claims = get_context().tokens.verify_access(bearer_token())
        return func(*args, **kwargs)

    return wrapper  # type: ignore[return-value]


def _limit_headers(decision: Decision, limit: int) -> dict[str, str]:
    headers = {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(max(0, decision.remaining)),
        "X-RateLimit-Reset": str(int(decision.reset_time.timestamp())),
    }
    if decision.retry_after_seconds is not None:
        headers["Retry-After"] = str(decision.retry_after_seconds)
    return headers


def _record_outcome(
    engine: RateLimitEngine, identifier: str, subject_id: str | None, *, success: bool
) -> None:
    # The view has already run; a counter outage must not replace its result
    try:
        engine.record(identifier, subject_id, success=success)
    except StorageUnavailable:
        log.error(
            "rate limit storage unavailable; outcome not recorded",
            extra={"identifier": identifier, "subject_id": subject_id},
            exc_info=True,
        )


def rate_limited(subject_from: SubjectResolver | None = None) -> Callable[[F], F]:
    """
    Gate a view with the rate-limit engine and report its outcome.

    The view runs only when ``check`` allows it. Afterwards the attempt is
    recorded as a success for 2xx/3xx responses and as a failure otherwise
    (including views that raise). A storage outage while recording is logged
    and never masks the view's response or error.

    :param subject_from: Resolves the account being authenticated, enabling
        the brute-force lockout track.
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any):
            engine = get_context().rate_limiter
            limit = engine.config.rate_limit.max_attempts
            identifier = client_identifier()
            subject_id = subject_from() if subject_from else None

            decision = engine.check(identifier, subject_id)
            if not decision.allowed:
                err = TooManyRequests(
                    decision.reason or "Too many requests",
                    retry_after=decision.retry_after_seconds or 0,
                    code="account_locked" if decision.is_lockout else "rate_limited",
                )
                err.headers.update(_limit_headers(decision, limit))
                raise err

            try:
                response: Response = make_response(func(*args, **kwargs))
            except (ServiceError, APIError, ValidationError):
                _record_outcome(engine, identifier, subject_id, success=False)
                raise
            _record_outcome(
                engine, identifier, subject_id, success=200 <= response.status_code < 400
            )
            for name, value in _limit_headers(decision, limit).items():
                response.headers.setdefault(name, value)
            return response

        return wrapper  # type: ignore[return-value]

    return decorator


def json_response(payload: Any, *, status: int = 200) -> Response:
    """Return a JSON response enforcing a consistent MIME type."""

    response = jsonify(payload)
    response.status_code = status
    return response
