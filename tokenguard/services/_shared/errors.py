"""
Domain-level exceptions used within the service layer.

These exceptions are **framework-agnostic** and never import Flask or Redis.
They are the stable contract between the stores, the lifecycle manager and the
rate-limit engine.

The translation to HTTP responses (RFC 7807) is handled by
``tokenguard/core/errors.py``.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta

# --------------------------------------------------------------------------- #
# Base types
# --------------------------------------------------------------------------- #


class ServiceError(Exception):
    """
    Base class for all service-level errors.

    Notes
    -----
    - These are *not* HTTP errors.
    - They are raised by stores, codecs and services alike.
    - The API layer translates them to :class:`~tokenguard.core.errors.APIError`.
    """

    pass


class ConfigurationError(ServiceError):
    """Raised when a :class:`~tokenguard.core.config.SecurityConfig` is invalid."""


class StorageUnavailable(ServiceError):
    """
    Raised by a store adapter when its backend cannot be reached.

    Adapters chain the original driver exception (``raise ... from exc``).
    """

    def __init__(self, message: str = "Storage is unavailable") -> None:
        super().__init__(message)


# --------------------------------------------------------------------------- #
# Credential verification
# --------------------------------------------------------------------------- #


class InvalidCredential(ServiceError):
    """Common parent of the three codec failures (malformed / expired / wrong kind)."""


class MalformedCredential(InvalidCredential):
    """Token is not a well-formed, correctly signed credential."""

    def __init__(self, message: str = "Malformed credential") -> None:
        super().__init__(message)


class CredentialExpired(InvalidCredential):
    """Token (or its stored record) is past its expiry."""

    def __init__(self, message: str = "Credential expired") -> None:
        super().__init__(message)


@dataclass(slots=True)
class WrongCredentialKind(InvalidCredential):
    """
    Raised when a token of one kind is presented where another is required.

    :param expected: Kind the caller asked for (``"access"`` / ``"refresh"``).
    :type expected: str
    :param actual: Kind carried by the token, when known.
    :type actual: str | None
    """

    expected: str
    actual: str | None = None

    def __str__(self) -> str:
        return f"Wrong credential kind: expected {self.expected}, got {self.actual or 'unknown'}"


# --------------------------------------------------------------------------- #
# Refresh security checks
# --------------------------------------------------------------------------- #


class UnknownRefreshToken(ServiceError):
    """The presented refresh token has no server-side record (revoked, swept, never issued)."""

    def __init__(self, message: str = "Unknown refresh token") -> None:
        super().__init__(message)


@dataclass(slots=True)
class ConcurrentUsageDetected(ServiceError):
    """
    A refresh token was presented after it had already been used.

    Every session of ``subject_id`` is revoked before this is raised.

    :param subject_id: Owner of the replayed token.
    :type subject_id: str
    :param revocation_completed: ``False`` when the cascade could not reach storage.
    :type revocation_completed: bool
    """

    subject_id: str
    revocation_completed: bool = True

    def __str__(self) -> str:
        return "Refresh token reuse detected. All sessions have been revoked."


class DeviceMismatch(ServiceError):
    """Device fingerprint presented on refresh does not match the bound device."""

    def __init__(self, message: str = "Device mismatch detected") -> None:
        super().__init__(message)


# --------------------------------------------------------------------------- #
# Rate limiting
# --------------------------------------------------------------------------- #


@dataclass(slots=True)
class RateLimited(ServiceError):
    """
    Raised when an identifier has exhausted its attempt budget.

    :param retry_after: Time until the caller may try again.
    :type retry_after: timedelta
    :param reason: Machine-readable reason from the decision.
    :type reason: str
    """

    retry_after: timedelta
    reason: str = "rate limit exceeded"

    def __str__(self) -> str:
        return f"Too many requests: {self.reason}"


@dataclass(slots=True)
class AccountLocked(ServiceError):
    """
    Raised when an account is locked by brute-force protection.

    :param subject_id: Locked account.
    :type subject_id: str
    :param retry_after: Time until the lock lifts.
    :type retry_after: timedelta
    """

    subject_id: str
    retry_after: timedelta

    def __str__(self) -> str:
        return "Account locked due to too many failed attempts"


__all__ = [
    "ServiceError",
    "ConfigurationError",
    "StorageUnavailable",
    "InvalidCredential",
    "MalformedCredential",
    "CredentialExpired",
    "WrongCredentialKind",
    "UnknownRefreshToken",
    "ConcurrentUsageDetected",
    "DeviceMismatch",
    "RateLimited",
    "AccountLocked",
]
