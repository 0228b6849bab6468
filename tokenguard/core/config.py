"""Security settings resolved once per context, with env-based loading."""

from __future__ import annotations

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import timedelta
from typing import TYPE_CHECKING, Any, Final

from dotenv import load_dotenv

from tokenguard.services._shared.errors import ConfigurationError

if TYPE_CHECKING:  # pragma: no cover
    from tokenguard.services.rate_limit.dto import AlertEvent

# Prefix for every environment variable read by ``load_config_from_env``
ENV_PREFIX: Final[str] = "TOKENGUARD_"

_EXPIRY_RE = re.compile(r"^(\d+)([smhd])$")
_EXPIRY_UNITS: Final[Mapping[str, int]] = {
    "s": 1,
    "m": 60,
    "h": 60 * 60,
    "d": 24 * 60 * 60,
}

SUPPORTED_ALGORITHMS: Final[frozenset[str]] = frozenset({"HS256", "HS384", "HS512"})


def env_bool(name: str, default: bool = False) -> bool:
    """Parse a boolean flag from an environment variable.

    Parameters
    ----------
    name: str
        Environment variable to inspect.
    default: bool, optional
        Value returned when the variable is unset. Defaults to ``False``.

    Returns
    -------
    bool
        ``True`` if the value resembles ``{"1", "true", "yes", "y", "on"}``
        ignoring case; otherwise ``False`` or ``default`` when missing.
    """
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "y", "on"}


def env_list(name: str) -> list[str]:
    """Split a comma-separated environment variable, dropping blanks."""
    raw = os.getenv(name, "")
    return [item.strip() for item in raw.split(",") if item.strip()]


def parse_expiry(expiry: str) -> timedelta:
    """Parse an expiry string such as ``"15m"`` or ``"7d"``.

    :param expiry: ``<amount><unit>`` with unit one of ``s``, ``m``, ``h``, ``d``.
    :returns: Equivalent positive duration.
    :raises ConfigurationError: If the string does not match the format or is zero.
    """
    match = _EXPIRY_RE.match(expiry.strip()) if isinstance(expiry, str) else None
    if match is None:
        raise ConfigurationError(f"Invalid expiry format: {expiry!r}")
    amount, unit = match.groups()
    seconds = int(amount) * _EXPIRY_UNITS[unit]
    if seconds <= 0:
        raise ConfigurationError(f"Expiry must be positive: {expiry!r}")
    return timedelta(seconds=seconds)


def _require_positive(name: str, value: int) -> None:
    if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
        raise ConfigurationError(f"{name} must be a positive integer, got {value!r}")


# --------------------------------------------------------------------------- #
# Sections
# --------------------------------------------------------------------------- #


@dataclass(frozen=True, slots=True)
class TokenSettings:
    """Secrets and lifetimes of the two credential kinds.

    :param access_secret: HMAC key for access tokens.
    :param refresh_secret: HMAC key for refresh tokens.
    :param access_expiry: Access lifetime as an expiry string.
    :param refresh_expiry: Refresh lifetime as an expiry string.
    :param algorithm: JWS algorithm (HMAC family only).
    """

    access_secret: str
    refresh_secret: str
    access_expiry: str = "15m"
    refresh_expiry: str = "7d"
    algorithm: str = "HS256"

    def __post_init__(self) -> None:
        if not self.access_secret or not self.refresh_secret:
            raise ConfigurationError("Both access_secret and refresh_secret are required")
        if self.algorithm not in SUPPORTED_ALGORITHMS:
            raise ConfigurationError(f"Unsupported algorithm: {self.algorithm!r}")
        # Fail fast on malformed expiry strings
        parse_expiry(self.access_expiry)
        parse_expiry(self.refresh_expiry)

    @property
    def access_ttl(self) -> timedelta:
        return parse_expiry(self.access_expiry)

    @property
    def refresh_ttl(self) -> timedelta:
        return parse_expiry(self.refresh_expiry)


@dataclass(frozen=True, slots=True)
class SecuritySettings:
    """Toggles for the refresh-token security checks.

    ``max_concurrent_sessions`` of ``0`` disables the per-subject session cap.
    ``cascade_attempts`` bounds how often the replay cascade revocation is
    attempted against an unavailable store.
    """

    rotation_enabled: bool = True
    reuse_detection_enabled: bool = True
    device_binding_enabled: bool = False
    max_concurrent_sessions: int = 5
    cascade_attempts: int = 3

    def __post_init__(self) -> None:
        if self.max_concurrent_sessions < 0:
            raise ConfigurationError("max_concurrent_sessions cannot be negative")
        _require_positive("cascade_attempts", self.cascade_attempts)


@dataclass(frozen=True, slots=True)
class RateLimitSettings:
    """Address-level sliding window configuration."""

    max_attempts: int = 5
    window_ms: int = 15 * 60 * 1000
    block_duration_ms: int = 60 * 60 * 1000
    skip_successful: bool = False
    skip_failed: bool = False
    allow_list: frozenset[str] = field(default_factory=frozenset)
    deny_list: frozenset[str] = field(default_factory=frozenset)
    key_prefix: str = "rate_limit:"
    fail_open: bool = False

    def __post_init__(self) -> None:
        _require_positive("max_attempts", self.max_attempts)
        _require_positive("window_ms", self.window_ms)
        _require_positive("block_duration_ms", self.block_duration_ms)
        object.__setattr__(self, "allow_list", frozenset(self.allow_list))
        object.__setattr__(self, "deny_list", frozenset(self.deny_list))

    @property
    def window(self) -> timedelta:
        return timedelta(milliseconds=self.window_ms)

    @property
    def block_duration(self) -> timedelta:
        return timedelta(milliseconds=self.block_duration_ms)

    def key_for(self, identifier: str) -> str:
        return f"{self.key_prefix}{identifier}"


@dataclass(frozen=True, slots=True)
class BruteForceSettings:
    """Account-level lockout configuration."""

    enabled: bool = True
    max_failed_attempts: int = 10
    lockout_duration_ms: int = 60 * 60 * 1000
    reset_on_success: bool = True

    def __post_init__(self) -> None:
        _require_positive("max_failed_attempts", self.max_failed_attempts)
        _require_positive("lockout_duration_ms", self.lockout_duration_ms)

    @property
    def lockout_duration(self) -> timedelta:
        return timedelta(milliseconds=self.lockout_duration_ms)


@dataclass(frozen=True, slots=True)
class AlertSettings:
    """Threshold alerting; ``notify`` is an injected side-effecting callback."""

    enabled: bool = False
    threshold: int = 5
    notify: Callable[[AlertEvent], None] | None = None

    def __post_init__(self) -> None:
        _require_positive("threshold", self.threshold)
        if self.notify is not None and not callable(self.notify):
            raise ConfigurationError("alerts.notify must be callable")


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """
    Immutable configuration shared by the lifecycle manager and rate-limit engine.

    Built once per context; recreate the context to change it.
    """

    tokens: TokenSettings
    security: SecuritySettings = field(default_factory=SecuritySettings)
    rate_limit: RateLimitSettings = field(default_factory=RateLimitSettings)
    brute_force: BruteForceSettings = field(default_factory=BruteForceSettings)
    alerts: AlertSettings = field(default_factory=AlertSettings)

    @classmethod
    def from_mapping(
        cls,
        data: Mapping[str, Any],
        *,
        notify: Callable[[AlertEvent], None] | None = None,
    ) -> SecurityConfig:
        """Validate a nested mapping (e.g. parsed YAML/JSON) and build the config.

        :param data: Sections ``tokens``, ``security``, ``rate_limit``,
            ``brute_force`` and ``alerts``; only ``tokens`` is required.
        :param notify: Alert callback (callables cannot come from plain data).
        :raises ConfigurationError: On any validation failure.
        """
        from marshmallow import ValidationError

        from tokenguard.schemas.config import SecurityConfigSchema

        try:
            loaded = SecurityConfigSchema().load(dict(data))
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid security configuration: {exc.messages}") from exc
        return cls(
            tokens=TokenSettings(**loaded["tokens"]),
            security=SecuritySettings(**loaded.get("security", {})),
            rate_limit=RateLimitSettings(**loaded.get("rate_limit", {})),
            brute_force=BruteForceSettings(**loaded.get("brute_force", {})),
            alerts=AlertSettings(notify=notify, **loaded.get("alerts", {})),
        )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}") from exc


def load_config_from_env(
    *,
    prefix: str = ENV_PREFIX,
    notify: Callable[[AlertEvent], None] | None = None,
) -> SecurityConfig:
    """Build a :class:`SecurityConfig` from ``<prefix>*`` environment variables.

    A ``.env`` file is loaded first when present.

    Notes
    -----
    Unset variables keep the dataclass defaults; secrets have none and must be
    provided as ``<prefix>ACCESS_SECRET`` / ``<prefix>REFRESH_SECRET``.
    """
    load_dotenv()

    def name(key: str) -> str:
        return f"{prefix}{key}"

    rl_defaults = RateLimitSettings()
    bf_defaults = BruteForceSettings()
    sec_defaults = SecuritySettings()

    return SecurityConfig(
        tokens=TokenSettings(
            access_secret=os.getenv(name("ACCESS_SECRET"), ""),
            refresh_secret=os.getenv(name("REFRESH_SECRET"), ""),
            access_expiry=os.getenv(name("ACCESS_EXPIRY"), "15m"),
            refresh_expiry=os.getenv(name("REFRESH_EXPIRY"), "7d"),
            algorithm=os.getenv(name("ALGORITHM"), "HS256"),
        ),
        security=SecuritySettings(
            rotation_enabled=env_bool(name("ROTATION_ENABLED"), True),
            reuse_detection_enabled=env_bool(name("REUSE_DETECTION_ENABLED"), True),
            device_binding_enabled=env_bool(name("DEVICE_BINDING_ENABLED"), False),
            max_concurrent_sessions=_env_int(
                name("MAX_CONCURRENT_SESSIONS"), sec_defaults.max_concurrent_sessions
            ),
            cascade_attempts=_env_int(name("CASCADE_ATTEMPTS"), sec_defaults.cascade_attempts),
        ),
        rate_limit=RateLimitSettings(
            max_attempts=_env_int(name("RATE_LIMIT_MAX_ATTEMPTS"), rl_defaults.max_attempts),
            window_ms=_env_int(name("RATE_LIMIT_WINDOW_MS"), rl_defaults.window_ms),
            block_duration_ms=_env_int(
                name("RATE_LIMIT_BLOCK_DURATION_MS"), rl_defaults.block_duration_ms
            ),
            skip_successful=env_bool(name("RATE_LIMIT_SKIP_SUCCESSFUL"), False),
            skip_failed=env_bool(name("RATE_LIMIT_SKIP_FAILED"), False),
            allow_list=frozenset(env_list(name("RATE_LIMIT_ALLOW_LIST"))),
            deny_list=frozenset(env_list(name("RATE_LIMIT_DENY_LIST"))),
            fail_open=env_bool(name("RATE_LIMIT_FAIL_OPEN"), False),
        ),
        brute_force=BruteForceSettings(
            enabled=env_bool(name("BRUTE_FORCE_ENABLED"), True),
            max_failed_attempts=_env_int(
                name("BRUTE_FORCE_MAX_FAILED_ATTEMPTS"), bf_defaults.max_failed_attempts
            ),
            lockout_duration_ms=_env_int(
                name("BRUTE_FORCE_LOCKOUT_DURATION_MS"), bf_defaults.lockout_duration_ms
            ),
            reset_on_success=env_bool(name("BRUTE_FORCE_RESET_ON_SUCCESS"), True),
        ),
        alerts=AlertSettings(
            enabled=env_bool(name("ALERTS_ENABLED"), False),
            threshold=_env_int(name("ALERTS_THRESHOLD"), 5),
            notify=notify,
        ),
    )


# --------------------------------------------------------------------------- #
# Flask application settings
# --------------------------------------------------------------------------- #

# Public selector env var
ENV_VAR: Final[str] = "APP_ENV"  # 'development' | 'testing' | 'production'


class BaseConfig:
    """Flask settings shared across environments.

    Attributes
    ----------
    API_BASE_PREFIX: str
        Root path for the token endpoints blueprint.
    REDIS_URL: str | None
        When set, both stores are Redis-backed; otherwise in-memory.
    LOG_LEVEL: str
        Root logging verbosity (``INFO`` by default).
    TOKENGUARD_SWEEP_INTERVAL: float
        Seconds between expiry sweeps; ``0`` disables the background sweeper.
    TOKENGUARD_TRUST_FORWARDED_FOR: bool
        Use the first ``X-Forwarded-For`` hop as the rate-limit identifier.

    Notes
    -----
    Security settings (secrets, limits) are not Flask settings; they come from
    :func:`load_config_from_env` unless a :class:`SecurityConfig` is passed
    to the app factory.
    """

    API_BASE_PREFIX = "/api"
    REDIS_URL = os.getenv("REDIS_URL") or None
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    TOKENGUARD_SWEEP_INTERVAL = float(os.getenv("TOKENGUARD_SWEEP_INTERVAL", "60"))
    TOKENGUARD_TRUST_FORWARDED_FOR = env_bool("TOKENGUARD_TRUST_FORWARDED_FOR", False)

    JSON_SORT_KEYS = False
    PROPAGATE_EXCEPTIONS = False
    DEBUG = False
    TESTING = False


class DevelopmentConfig(BaseConfig):
    DEBUG = env_bool("FLASK_DEBUG", True)


class TestingConfig(BaseConfig):
    """Configuration for automated test runs.

    Notes
    -----
    - Forces in-memory stores and disables the background sweeper.
    """

    TESTING = True
    REDIS_URL = None
    TOKENGUARD_SWEEP_INTERVAL = 0.0


class ProductionConfig(BaseConfig):
    DEBUG = False
    PROPAGATE_EXCEPTIONS = False


# Map names -> classes (simple, explicit)
CONFIG_MAP: Mapping[str, type[BaseConfig]] = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
}


def get_config() -> type[BaseConfig]:
    """Return the configuration class inferred from ``APP_ENV``.

    Falls back to :class:`DevelopmentConfig` when ``APP_ENV`` is unset or
    unknown.
    """
    name = os.getenv(ENV_VAR, "development").strip().lower()
    return CONFIG_MAP.get(name, DevelopmentConfig)
