# tokenguard/services/_shared/base.py
from __future__ import annotations

from datetime import UTC, datetime

from tokenguard.core.config import SecurityConfig


class BaseService:
    """
    Base class for application services.

    Responsibilities
    ----------------
    * Hold the immutable :class:`~tokenguard.core.config.SecurityConfig`.
    * Provide a single clock (``now_utc``) so tests can freeze time.

    Notes
    -----
    - Services hold no authoritative state; stores own records and counters.
    - Services never import Flask or Redis.
    """

    def __init__(self, *, config: SecurityConfig) -> None:
        """
        Initialize the base service.

        :param config: Validated security configuration.
        :type config: SecurityConfig
        """
        self.config = config

    @staticmethod
    def now_utc() -> datetime:
        return datetime.now(UTC)


# Visible characters of a credential in log output
TOKEN_HINT_LENGTH = 8


def token_hint(token: str | None) -> str | None:
    """Shorten a credential to a prefix safe for logs (``"eyJhbGci…"``)."""
    if not token:
        return None
    return f"{token[:TOKEN_HINT_LENGTH]}…"
