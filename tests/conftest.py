"""Global pytest fixtures for tokenguard."""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any

import fakeredis
import pytest
from flask import Flask
from flask.testing import FlaskClient, FlaskCliRunner

from tokenguard.core.config import (
    AlertSettings,
    BruteForceSettings,
    RateLimitSettings,
    SecurityConfig,
    SecuritySettings,
    TestingConfig,
    TokenSettings,
)
from tokenguard.factory import SecurityContext, create_app, create_context
from tokenguard.infra.jwt.pyjwt_claim_codec import PyJWTClaimCodec
from tokenguard.services._shared.ports import InMemoryCredentialStore, InMemoryRateLimitStore
from tokenguard.services.rate_limit.service import RateLimitEngine
from tokenguard.services.tokens.service import TokenLifecycleManager

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"


def make_config(
    *,
    security: dict[str, Any] | None = None,
    rate_limit: dict[str, Any] | None = None,
    brute_force: dict[str, Any] | None = None,
    alerts: dict[str, Any] | None = None,
) -> SecurityConfig:
    """Build a :class:`SecurityConfig` with test secrets and section overrides."""

    return SecurityConfig(
        tokens=TokenSettings(access_secret=ACCESS_SECRET, refresh_secret=REFRESH_SECRET),
        security=SecuritySettings(**(security or {})),
        rate_limit=RateLimitSettings(**(rate_limit or {})),
        brute_force=BruteForceSettings(**(brute_force or {})),
        alerts=AlertSettings(**(alerts or {})),
    )


@pytest.fixture()
def config_factory() -> Callable[..., SecurityConfig]:
    """Expose :func:`make_config` to tests needing non-default sections."""

    return make_config


@pytest.fixture()
def security_config() -> SecurityConfig:
    """Default configuration with test secrets."""

    return make_config()


@pytest.fixture()
def codec(security_config: SecurityConfig) -> PyJWTClaimCodec:
    return PyJWTClaimCodec(security_config.tokens)


@pytest.fixture()
def credential_store() -> InMemoryCredentialStore:
    return InMemoryCredentialStore()


@pytest.fixture()
def rate_limit_store() -> InMemoryRateLimitStore:
    return InMemoryRateLimitStore()


@pytest.fixture()
def manager_factory(
    credential_store: InMemoryCredentialStore,
) -> Callable[..., TokenLifecycleManager]:
    """Build a lifecycle manager over the shared in-memory store."""

    def _factory(config: SecurityConfig | None = None, **kwargs: Any) -> TokenLifecycleManager:
        config = config or make_config()
        return TokenLifecycleManager(
            config=config,
            codec=PyJWTClaimCodec(config.tokens),
            store=kwargs.pop("store", credential_store),
            **kwargs,
        )

    return _factory


@pytest.fixture()
def manager(manager_factory: Callable[..., TokenLifecycleManager]) -> TokenLifecycleManager:
    return manager_factory()


@pytest.fixture()
def engine_factory(
    rate_limit_store: InMemoryRateLimitStore,
) -> Callable[..., RateLimitEngine]:
    """Build a rate-limit engine from section overrides."""

    def _factory(*, store: Any = None, **sections: Any) -> RateLimitEngine:
        return RateLimitEngine(config=make_config(**sections), store=store or rate_limit_store)

    return _factory


@pytest.fixture()
def redis_client() -> Generator[fakeredis.FakeRedis, None, None]:
    """In-process Redis double."""

    client = fakeredis.FakeRedis()
    yield client
    client.flushall()


@pytest.fixture()
def context() -> SecurityContext:
    """In-memory security context with a generous attempt budget."""

    return create_context(make_config(rate_limit={"max_attempts": 100}))


@pytest.fixture()
def app(context: SecurityContext) -> Generator[Flask, None, None]:
    """Create and configure a Flask application for tests."""

    application = create_app(TestingConfig, context=context)
    with application.app_context():
        yield application


@pytest.fixture()
def app_factory() -> Callable[..., Flask]:
    """Build a testing app around a custom context.

    Accepts either a ready ``context`` or section overrides for :func:`make_config`.
    """

    def _factory(*, context: SecurityContext | None = None, **sections: Any) -> Flask:
        return create_app(TestingConfig, context=context or create_context(make_config(**sections)))

    return _factory


@pytest.fixture()
def client(app: Flask) -> FlaskClient:
    """Return a Flask test client."""

    return app.test_client()


@pytest.fixture()
def runner(app: Flask) -> FlaskCliRunner:
    """Return a runner for the app's click commands."""

    return app.test_cli_runner()


@pytest.fixture()
def freeze_time() -> Callable[[str | None], Any]:
    """Factory returning :func:`freezegun.freeze_time`.

    Examples
    --------
    >>> def test_with_frozen_time(freeze_time):
    ...     with freeze_time("2024-01-01"):
    ...         ...
    """

    from freezegun import freeze_time as _freeze_time

    def _factory(target: str | None = None) -> Any:
        return _freeze_time(target or "2024-01-01")

    return _factory
