"""Flask extension binding: one :class:`SecurityContext` per application."""

from __future__ import annotations

import atexit
import logging
from typing import cast

import redis  # type: ignore[import-untyped]
from flask import Flask, current_app
from redis.exceptions import RedisError  # type: ignore[import-untyped]

from tokenguard.core.config import SecurityConfig, load_config_from_env
from tokenguard.factory import SecurityContext, create_context

EXTENSION_KEY = "tokenguard"
SWEEPER_KEY = "tokenguard_sweeper"

log = logging.getLogger(__name__)


def connect_redis(redis_url: str) -> redis.Redis:
    """Return a connected client, failing fast when the server is unreachable."""
    client = redis.Redis.from_url(redis_url)
    try:
        client.ping()
    except RedisError as exc:
        raise RuntimeError(f"Failed to connect to Redis at {redis_url!r}") from exc
    return client


def init_app(
    app: Flask,
    *,
    security: SecurityConfig | None = None,
    context: SecurityContext | None = None,
) -> SecurityContext:
    """Build (or adopt) the security context and attach it to ``app``.

    Parameters
    ----------
    app: flask.Flask
        Application receiving the context under ``app.extensions["tokenguard"]``.
    security: SecurityConfig, optional
        Configuration to use; read from ``TOKENGUARD_*`` variables when omitted.
    context: SecurityContext, optional
        Pre-built context (tests, custom stores). Takes precedence over ``security``.

    Notes
    -----
    Stores are Redis-backed when ``REDIS_URL`` is configured. A background
    sweeper is started when ``TOKENGUARD_SWEEP_INTERVAL`` is positive and the
    app is not in testing mode; it is stopped at interpreter exit.
    """
    if context is None:
        config = security or load_config_from_env()
        redis_url = app.config.get("REDIS_URL")
        client = connect_redis(redis_url) if redis_url else None
        if client is not None:
            app.extensions["redis_client"] = client
        context = create_context(config, redis_client=client)

    app.extensions[EXTENSION_KEY] = context

    interval = float(app.config.get("TOKENGUARD_SWEEP_INTERVAL") or 0)
    if interval > 0 and not app.testing:
        sweeper = context.sweeper(interval=interval).start()
        app.extensions[SWEEPER_KEY] = sweeper
        atexit.register(sweeper.stop)
        log.info("expiry sweeper started")
    return context


def get_context() -> SecurityContext:
    """Return the security context bound to the current application."""
    try:
        return cast(SecurityContext, current_app.extensions[EXTENSION_KEY])
    except KeyError as exc:
        raise RuntimeError("tokenguard is not initialized. Call init_app() first.") from exc
