"""
tokenguard.services._shared.ports
=================================

Collection of *ports* (hexagonal interfaces) that define the contracts
between the services and their infrastructure.

Modules
-------
- :mod:`claim_codec`:
    Defines :class:`~.ClaimCodec`: signing and verification of access and refresh tokens.

- :mod:`credential_store`:
    Defines :class:`~.CredentialStore` and :class:`~.RefreshRecord`: refresh-token
    persistence with an atomic ``claim_if_unused``.

- :mod:`rate_limit_store`:
    Defines :class:`~.RateLimitStore`, :class:`~.RateLimitCounter` and
    :class:`~.LockoutCounter`: counters for rate limiting and account lockout.

Design Notes
------------
Concrete adapters (Redis, PyJWT) live under ``tokenguard.infra``. The in-memory
stores live next to their ports and are thread-safe.
"""

from __future__ import annotations

from .claim_codec import ClaimCodec
from .credential_store import (
    CredentialStore,
    InMemoryCredentialStore,
    RefreshRecord,
)
from .rate_limit_store import (
    InMemoryRateLimitStore,
    LockoutCounter,
    RateLimitCounter,
    RateLimitStore,
)

__all__ = [
    "ClaimCodec",
    "CredentialStore",
    "InMemoryCredentialStore",
    "RefreshRecord",
    "RateLimitStore",
    "InMemoryRateLimitStore",
    "RateLimitCounter",
    "LockoutCounter",
]
