from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import redis  # type: ignore[import-untyped]

from tokenguard.infra.redis._support import decode, from_ts, storage_errors, to_ts, ttl_ms
from tokenguard.services._shared.ports import LockoutCounter, RateLimitCounter, RateLimitStore


@dataclass(slots=True)
class RedisRateLimitStore(RateLimitStore):
    """
    Redis-backed counters.

    Rate-limit keys are used as given (the engine applies ``key_prefix``);
    lockout counters live under ``<lockout_prefix><subject_id>``. Increments
    use ``HINCRBY`` inside a transaction pipeline, and expiry is delegated to
    Redis TTL.

    :param r: A Redis client (already connected).
    :param lockout_prefix: Namespace for lockout counters.
    """

    r: redis.Redis
    lockout_prefix: str = "lockout:"

    # -------------------- helpers --------------------

    def _kl(self, subject_id: str) -> str:
        return f"{self.lockout_prefix}{subject_id}"

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    @staticmethod
    def _fields(h: dict[Any, Any]) -> dict[str, Any]:
        return {decode(k): v for k, v in h.items()}

    # ------------------------- rate track -------------------------

    def get_counter(self, key: str) -> RateLimitCounter | None:
        with storage_errors("get_counter"):
            h = self._fields(self.r.hgetall(key))
        first = from_ts(h.get("first"))
        if "attempts" not in h or first is None:
            return None
        return RateLimitCounter(
            attempts=int(decode(h["attempts"], "0")),
            first_attempt_at=first,
            last_attempt_at=from_ts(h.get("last")) or first,
            blocked_until=from_ts(h.get("blocked_until")),
        )

    def increment_counter(self, key: str, ttl: timedelta) -> RateLimitCounter:
        now = self._now()
        stamp = to_ts(now)
        with storage_errors("increment_counter"):
            pipe = self.r.pipeline(transaction=True)
            pipe.hsetnx(key, "first", stamp)
            pipe.hincrby(key, "attempts", 1)
            pipe.hset(key, "last", stamp)
            pipe.hmget(key, "first", "blocked_until")
            pipe.pttl(key)
            _, attempts, _, (first, blocked_until), remaining = pipe.execute()
            if remaining is None or int(remaining) < 0:
                # fresh counter: the window starts now and is not extended later
                self.r.pexpire(key, max(1, int(ttl.total_seconds() * 1000)))
        return RateLimitCounter(
            attempts=int(attempts),
            first_attempt_at=from_ts(first) or now,
            last_attempt_at=now,
            blocked_until=from_ts(blocked_until),
        )

    def set_blocked_until(self, key: str, until: datetime) -> None:
        now = self._now()
        stamp = to_ts(now)
        with storage_errors("set_blocked_until"):
            pipe = self.r.pipeline(transaction=True)
            pipe.hsetnx(key, "first", stamp)
            pipe.hsetnx(key, "last", stamp)
            pipe.hsetnx(key, "attempts", 0)
            pipe.hset(key, "blocked_until", to_ts(until))
            pipe.pexpire(key, ttl_ms(until, now))
            pipe.execute()

    def clear_counter(self, key: str) -> None:
        with storage_errors("clear_counter"):
            self.r.delete(key)

    # ------------------------ lockout track -----------------------

    def get_lockout(self, subject_id: str) -> LockoutCounter | None:
        with storage_errors("get_lockout"):
            h = self._fields(self.r.hgetall(self._kl(subject_id)))
        last = from_ts(h.get("last"))
        if "failed" not in h or last is None:
            return None
        return LockoutCounter(
            subject_id=subject_id,
            failed_attempts=int(decode(h["failed"], "0")),
            last_failed_at=last,
            locked_until=from_ts(h.get("locked_until")),
        )

    def increment_lockout(self, subject_id: str, ttl: timedelta) -> LockoutCounter:
        key = self._kl(subject_id)
        now = self._now()
        with storage_errors("increment_lockout"):
            pipe = self.r.pipeline(transaction=True)
            pipe.hincrby(key, "failed", 1)
            pipe.hset(key, "last", to_ts(now))
            pipe.hget(key, "locked_until")
            pipe.pexpire(key, max(1, int(ttl.total_seconds() * 1000)))
            failed, _, locked_until, _ = pipe.execute()
        return LockoutCounter(
            subject_id=subject_id,
            failed_attempts=int(failed),
            last_failed_at=now,
            locked_until=from_ts(locked_until),
        )

    def set_locked_until(self, subject_id: str, until: datetime) -> None:
        key = self._kl(subject_id)
        now = self._now()
        with storage_errors("set_locked_until"):
            pipe = self.r.pipeline(transaction=True)
            pipe.hsetnx(key, "failed", 0)
            pipe.hsetnx(key, "last", to_ts(now))
            pipe.hset(key, "locked_until", to_ts(until))
            pipe.pexpire(key, ttl_ms(until, now))
            pipe.execute()

    def clear_lockout(self, subject_id: str) -> None:
        with storage_errors("clear_lockout"):
            self.r.delete(self._kl(subject_id))

    def sweep_expired(self) -> int:
        """Redis TTL removes expired counters; nothing is left to sweep."""
        return 0
