"""Composition root: security context wiring and the Flask application factory."""

from __future__ import annotations

from dataclasses import dataclass

import redis  # type: ignore[import-untyped]
from flask import Flask

from tokenguard.core.config import BaseConfig, SecurityConfig, get_config
from tokenguard.core.logger import configure_logging
from tokenguard.core.logger import init_app as init_logging
from tokenguard.infra.jwt.pyjwt_claim_codec import PyJWTClaimCodec
from tokenguard.infra.redis.redis_credential_store import RedisCredentialStore
from tokenguard.infra.redis.redis_rate_limit_store import RedisRateLimitStore
from tokenguard.infra.sweeper import ExpirySweeper
from tokenguard.services._shared.ports import (
    ClaimCodec,
    CredentialStore,
    InMemoryCredentialStore,
    InMemoryRateLimitStore,
    RateLimitStore,
)
from tokenguard.services.rate_limit.service import RateLimitEngine
from tokenguard.services.tokens.service import SubjectLoader, TokenLifecycleManager


@dataclass(slots=True)
class SecurityContext:
    """
    Everything built from one :class:`SecurityConfig`.

    Stores have an explicit lifetime: the context owns them, and the sweeper
    (when started) must be stopped by the owner.
    """

    config: SecurityConfig
    codec: ClaimCodec
    credential_store: CredentialStore
    rate_limit_store: RateLimitStore
    tokens: TokenLifecycleManager
    rate_limiter: RateLimitEngine

    def sweep_expired(self) -> int:
        """Run one expiry pass over both stores. :returns: Entries removed."""
        return self.tokens.sweep_expired() + self.rate_limiter.sweep_expired()

    def sweeper(self, *, interval: float = 60.0) -> ExpirySweeper:
        """Build (but do not start) a background sweeper over both stores."""
        return ExpirySweeper(
            [self.tokens.sweep_expired, self.rate_limiter.sweep_expired], interval=interval
        )


def create_context(
    config: SecurityConfig,
    *,
    redis_client: redis.Redis | None = None,
    credential_store: CredentialStore | None = None,
    rate_limit_store: RateLimitStore | None = None,
    codec: ClaimCodec | None = None,
    subject_loader: SubjectLoader | None = None,
) -> SecurityContext:
    """
    Wire codec, stores, lifecycle manager and rate-limit engine.

    :param config: Validated configuration (validation happened at construction).
    :param redis_client: When given, stores not passed explicitly are Redis-backed.
    :param credential_store: Explicit credential store.
    :param rate_limit_store: Explicit rate-limit store.
    :param codec: Explicit codec; defaults to :class:`PyJWTClaimCodec`.
    :param subject_loader: Reloads subject attributes on refresh.
    """
    if credential_store is None:
        credential_store = (
            RedisCredentialStore(redis_client)
            if redis_client is not None
            else InMemoryCredentialStore()
        )
    if rate_limit_store is None:
        rate_limit_store = (
            RedisRateLimitStore(redis_client)
            if redis_client is not None
            else InMemoryRateLimitStore()
        )
    codec = codec or PyJWTClaimCodec(config.tokens)
    return SecurityContext(
        config=config,
        codec=codec,
        credential_store=credential_store,
        rate_limit_store=rate_limit_store,
        tokens=TokenLifecycleManager(
            config=config,
            codec=codec,
            store=credential_store,
            subject_loader=subject_loader,
        ),
        rate_limiter=RateLimitEngine(config=config, store=rate_limit_store),
    )


def create_app(
    config: str | type[BaseConfig] | object | None = None,
    *,
    security: SecurityConfig | None = None,
    context: SecurityContext | None = None,
) -> Flask:
    """Build a Flask application exposing the token endpoints and admin CLI."""

    app = Flask(__name__)
    app.config.from_object(get_config() if config is None else config)

    configure_logging(app.config.get("LOG_LEVEL", "INFO"))

    from tokenguard.core import extensions

    extensions.init_app(app, security=security, context=context)

    init_logging(app)

    from tokenguard.api import init_app as init_api

    init_api(app)

    from tokenguard.core import errors

    errors.init_app(app)

    from tokenguard import cli as tokenguard_cli

    tokenguard_cli.init_app(app)

    return app
