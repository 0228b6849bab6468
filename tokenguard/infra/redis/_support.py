"""Helpers shared by the Redis adapters."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime

import redis  # type: ignore[import-untyped]

from tokenguard.services._shared.errors import StorageUnavailable

logger = logging.getLogger(__name__)


@contextmanager
def storage_errors(operation: str) -> Iterator[None]:
    """Translate driver failures into :class:`StorageUnavailable` (chained)."""
    try:
        yield
    except redis.RedisError as exc:
        logger.error("redis operation failed", extra={"operation": operation})
        raise StorageUnavailable() from exc


def decode(value: bytes | str | None, default: str = "") -> str:
    if value is None:
        return default
    return value.decode() if isinstance(value, bytes | bytearray) else str(value)


def to_ts(dt: datetime) -> str:
    return repr(dt.timestamp())


def from_ts(value: bytes | str | None) -> datetime | None:
    raw = decode(value)
    if not raw:
        return None
    return datetime.fromtimestamp(float(raw), tz=UTC)


def ttl_ms(until: datetime, now: datetime) -> int:
    """Relative expiry in milliseconds, at least 1."""
    return max(1, int((until - now).total_seconds() * 1000))
