"""DTOs produced by the rate-limit engine."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Final

# Machine-readable decision reasons
REASON_ALLOW_LISTED: Final[str] = "whitelisted"
REASON_DENY_LISTED: Final[str] = "blacklisted"
REASON_ACCOUNT_LOCKED: Final[str] = "account locked due to too many failed attempts"
REASON_RATE_LIMITED: Final[str] = "rate limit exceeded"
REASON_BLOCKED: Final[str] = "temporarily blocked"
REASON_STORAGE_UNAVAILABLE: Final[str] = "storage_unavailable"


@dataclass(frozen=True, slots=True)
class Decision:
    """
    Outcome of a rate-limit check.

    :param allowed: Whether the caller may proceed.
    :type allowed: bool
    :param remaining: Attempts left in the current window.
    :type remaining: int
    :param reset_time: When the current window (or block) ends.
    :type reset_time: datetime
    :param retry_after: Wait before retrying; set on denials.
    :type retry_after: timedelta | None
    :param reason: Why the decision was made, when notable.
    :type reason: str | None
    """

    allowed: bool
    remaining: int
    reset_time: datetime
    retry_after: timedelta | None = None
    reason: str | None = None

    @property
    def retry_after_seconds(self) -> int | None:
        """``retry_after`` rounded up to whole seconds (for ``Retry-After``)."""
        if self.retry_after is None:
            return None
        return max(0, math.ceil(self.retry_after.total_seconds()))

    @property
    def is_lockout(self) -> bool:
        return self.reason == REASON_ACCOUNT_LOCKED


@dataclass(frozen=True, slots=True)
class AlertEvent:
    """Payload passed to the alert notifier when an identifier crosses the threshold."""

    identifier: str
    attempts: int
    timestamp: datetime
    message: str


@dataclass(frozen=True, slots=True)
class LimitStatus:
    """Raw counters for one identifier (and optionally one account)."""

    identifier: str
    attempts: int
    first_attempt_at: datetime | None
    blocked_until: datetime | None
    subject_id: str | None = None
    failed_attempts: int = 0
    locked_until: datetime | None = None
