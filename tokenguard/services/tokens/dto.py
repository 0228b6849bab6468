"""DTOs exchanged by the token lifecycle service and its callers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

ACCESS: Literal["access"] = "access"
REFRESH: Literal["refresh"] = "refresh"


@dataclass(frozen=True, slots=True)
class Subject:
    """
    Identity credentials are issued for.

    :param id: Stable subject identifier (encoded as a string in ``sub``).
    :type id: str
    :param attrs: Extra claims copied into access tokens (e.g. ``email``).
    :type attrs: dict[str, Any]
    """

    id: str
    attrs: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class DeviceInfo:
    """
    Client context captured on issuance and presented on refresh.

    :param fingerprint: Opaque device fingerprint supplied by the client.
    :type fingerprint: str | None
    :param source_address: Remote address.
    :type source_address: str | None
    :param user_agent: User agent string.
    :type user_agent: str | None
    """

    fingerprint: str | None = None
    source_address: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True, slots=True)
class TokenPair:
    """Access/refresh pair returned by ``issue`` and ``refresh``."""

    access_token: str
    refresh_token: str


@dataclass(frozen=True, slots=True)
class AccessClaims:
    """Verified access-token payload; never persisted."""

    subject_id: str
    issued_at: datetime
    expires_at: datetime
    attrs: dict[str, Any] = field(default_factory=dict)
    kind: Literal["access"] = ACCESS


@dataclass(frozen=True, slots=True)
class RefreshClaims:
    """Verified refresh-token payload. ``unique_id`` is the token's ``jti``."""

    subject_id: str
    unique_id: str
    issued_at: datetime
    expires_at: datetime
    device_hash: str | None = None
    kind: Literal["refresh"] = REFRESH
