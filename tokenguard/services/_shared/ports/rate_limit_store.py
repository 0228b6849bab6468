from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import UTC, datetime, timedelta
from typing import Protocol


@dataclass(frozen=True, slots=True)
class RateLimitCounter:
    """
    Attempt counter for one rate-limit key.

    :ivar attempts: Attempts recorded in the current window.
    :ivar first_attempt_at: Start of the window.
    :ivar last_attempt_at: Most recent attempt.
    :ivar blocked_until: End of an active block, if any.
    """

    attempts: int
    first_attempt_at: datetime
    last_attempt_at: datetime
    blocked_until: datetime | None = None


@dataclass(frozen=True, slots=True)
class LockoutCounter:
    """
    Failed-authentication counter for one account.

    :ivar subject_id: Account the failures belong to.
    :ivar failed_attempts: Consecutive failures since the last reset.
    :ivar last_failed_at: Most recent failure.
    :ivar locked_until: End of an active lockout, if any.
    """

    subject_id: str
    failed_attempts: int
    last_failed_at: datetime
    locked_until: datetime | None = None


class RateLimitStore(Protocol):
    """
    Counter storage for the rate-limit and brute-force tracks.

    Increments MUST be atomic increment-and-fetch. A counter expires ``ttl``
    after creation (further increments do not extend it); a lockout counter
    expires ``ttl`` after its latest failure. ``set_blocked_until`` and
    ``set_locked_until`` move expiry to the given instant. Expired entries
    read as absent.
    """

    def get_counter(self, key: str) -> RateLimitCounter | None: ...

    def increment_counter(self, key: str, ttl: timedelta) -> RateLimitCounter: ...

    def set_blocked_until(self, key: str, until: datetime) -> None: ...

    def clear_counter(self, key: str) -> None: ...

    def get_lockout(self, subject_id: str) -> LockoutCounter | None: ...

    def increment_lockout(self, subject_id: str, ttl: timedelta) -> LockoutCounter: ...

    def set_locked_until(self, subject_id: str, until: datetime) -> None: ...

    def clear_lockout(self, subject_id: str) -> None: ...

    def sweep_expired(self) -> int:
        """Remove expired counters of both tracks. :returns: Number removed."""


@dataclass(slots=True)
class _Entry:
    value: RateLimitCounter | LockoutCounter
    expires_at: datetime


class InMemoryRateLimitStore(RateLimitStore):
    """
    Process-local counter store.

    .. note::
       Both tracks live in separate dicts behind one lock.
    """

    def __init__(self) -> None:
        self._counters: dict[str, _Entry] = {}
        self._lockouts: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    @staticmethod
    def _live(table: dict[str, _Entry], key: str, now: datetime) -> _Entry | None:
        entry = table.get(key)
        if entry is not None and entry.expires_at <= now:
            del table[key]
            return None
        return entry

    # ------------------------- rate track -------------------------

    def get_counter(self, key: str) -> RateLimitCounter | None:
        with self._lock:
            entry = self._live(self._counters, key, self._now())
            return entry.value if entry else None  # type: ignore[return-value]

    def increment_counter(self, key: str, ttl: timedelta) -> RateLimitCounter:
        now = self._now()
        with self._lock:
            entry = self._live(self._counters, key, now)
            if entry is None:
                counter = RateLimitCounter(attempts=1, first_attempt_at=now, last_attempt_at=now)
                self._counters[key] = _Entry(counter, now + ttl)
                return counter
            current: RateLimitCounter = entry.value  # type: ignore[assignment]
            counter = replace(current, attempts=current.attempts + 1, last_attempt_at=now)
            entry.value = counter
            return counter

    def set_blocked_until(self, key: str, until: datetime) -> None:
        now = self._now()
        with self._lock:
            entry = self._live(self._counters, key, now)
            if entry is None:
                counter = RateLimitCounter(
                    attempts=0, first_attempt_at=now, last_attempt_at=now, blocked_until=until
                )
                self._counters[key] = _Entry(counter, until)
                return
            entry.value = replace(entry.value, blocked_until=until)  # type: ignore[type-var]
            entry.expires_at = until

    def clear_counter(self, key: str) -> None:
        with self._lock:
            self._counters.pop(key, None)

    # ------------------------ lockout track -----------------------

    def get_lockout(self, subject_id: str) -> LockoutCounter | None:
        with self._lock:
            entry = self._live(self._lockouts, subject_id, self._now())
            return entry.value if entry else None  # type: ignore[return-value]

    def increment_lockout(self, subject_id: str, ttl: timedelta) -> LockoutCounter:
        now = self._now()
        with self._lock:
            entry = self._live(self._lockouts, subject_id, now)
            if entry is None:
                counter = LockoutCounter(subject_id=subject_id, failed_attempts=1, last_failed_at=now)
            else:
                current: LockoutCounter = entry.value  # type: ignore[assignment]
                counter = replace(
                    current, failed_attempts=current.failed_attempts + 1, last_failed_at=now
                )
            self._lockouts[subject_id] = _Entry(counter, now + ttl)
            return counter

    def set_locked_until(self, subject_id: str, until: datetime) -> None:
        now = self._now()
        with self._lock:
            entry = self._live(self._lockouts, subject_id, now)
            if entry is None:
                counter = LockoutCounter(
                    subject_id=subject_id, failed_attempts=0, last_failed_at=now, locked_until=until
                )
                self._lockouts[subject_id] = _Entry(counter, until)
                return
            entry.value = replace(entry.value, locked_until=until)  # type: ignore[type-var]
            entry.expires_at = until

    def clear_lockout(self, subject_id: str) -> None:
        with self._lock:
            self._lockouts.pop(subject_id, None)

    def sweep_expired(self) -> int:
        now = self._now()
        removed = 0
        with self._lock:
            for table in (self._counters, self._lockouts):
                expired = [k for k, e in table.items() if e.expires_at <= now]
                for key in expired:
                    del table[key]
                removed += len(expired)
        return removed
