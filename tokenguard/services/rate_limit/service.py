# tokenguard/services/rate_limit/service.py
from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime

from tokenguard.core.config import SecurityConfig
from tokenguard.services._shared.base import BaseService
from tokenguard.services._shared.errors import AccountLocked, RateLimited, StorageUnavailable
from tokenguard.services._shared.ports import RateLimitStore
from tokenguard.services.rate_limit.alerts import log_alert
from tokenguard.services.rate_limit.dto import (
    REASON_ACCOUNT_LOCKED,
    REASON_ALLOW_LISTED,
    REASON_BLOCKED,
    REASON_DENY_LISTED,
    REASON_RATE_LIMITED,
    REASON_STORAGE_UNAVAILABLE,
    AlertEvent,
    Decision,
    LimitStatus,
)

logger = logging.getLogger(__name__)


class RateLimitEngine(BaseService):
    """
    Decide whether a caller may attempt an authentication-adjacent action.

    Two independent tracks are kept: a per-identifier attempt window and a
    per-account failed-login lockout. ``check`` consults, in order, the
    allow-list, the deny-list, the account lockout and the attempt window.
    Callers report outcomes back through ``record``.
    """

    def __init__(self, *, config: SecurityConfig, store: RateLimitStore) -> None:
        """
        :param config: Validated security configuration.
        :param store: Counter storage for both tracks.
        """
        super().__init__(config=config)
        self.store = store
        self.notify: Callable[[AlertEvent], None] | None = None
        if config.alerts.enabled:
            self.notify = config.alerts.notify or log_alert

    # ------------------------------------------------------------------ #
    # Decisions
    # ------------------------------------------------------------------ #

    def check(self, identifier: str, subject_id: str | None = None) -> Decision:
        """
        Evaluate the caller without recording an attempt.

        :param identifier: Caller identifier (usually the remote address).
        :param subject_id: Account being authenticated, when known.
        :returns: The decision; denials carry ``retry_after`` and ``reason``.
        :raises StorageUnavailable: Store unreachable and ``fail_open`` is off.
        """
        now = self.now_utc()
        try:
            return self._decide(identifier, subject_id, now)
        except StorageUnavailable:
            if not self.config.rate_limit.fail_open:
                raise
            logger.error(
                "rate limit storage unavailable; allowing request",
                extra={"identifier": identifier},
            )
            return Decision(
                allowed=True,
                remaining=self.config.rate_limit.max_attempts,
                reset_time=now + self.config.rate_limit.window,
                reason=REASON_STORAGE_UNAVAILABLE,
            )

    def _decide(self, identifier: str, subject_id: str | None, now: datetime) -> Decision:
        rl = self.config.rate_limit
        bf = self.config.brute_force

        # Allow-list wins over deny-list
        if identifier in rl.allow_list:
            return Decision(
                allowed=True,
                remaining=rl.max_attempts,
                reset_time=now + rl.window,
                reason=REASON_ALLOW_LISTED,
            )
        if identifier in rl.deny_list:
            return Decision(
                allowed=False,
                remaining=0,
                reset_time=now + rl.block_duration,
                retry_after=rl.block_duration,
                reason=REASON_DENY_LISTED,
            )

        if subject_id and bf.enabled:
            lockout = self.store.get_lockout(subject_id)
            if lockout is not None:
                if lockout.locked_until is not None and lockout.locked_until > now:
                    return self._locked(lockout.locked_until, now)
                if lockout.failed_attempts >= bf.max_failed_attempts:
                    until = now + bf.lockout_duration
                    self.store.set_locked_until(subject_id, until)
                    logger.warning(
                        "account locked",
                        extra={
                            "subject_id": subject_id,
                            "failed_attempts": lockout.failed_attempts,
                        },
                    )
                    return self._locked(until, now)

        key = rl.key_for(identifier)
        counter = self.store.get_counter(key)
        if counter is None:
            return Decision(allowed=True, remaining=rl.max_attempts - 1, reset_time=now + rl.window)

        if counter.blocked_until is not None and counter.blocked_until > now:
            return Decision(
                allowed=False,
                remaining=0,
                reset_time=counter.blocked_until,
                retry_after=counter.blocked_until - now,
                reason=REASON_BLOCKED,
            )

        if now - counter.first_attempt_at > rl.window:
            self.store.clear_counter(key)
            return Decision(allowed=True, remaining=rl.max_attempts - 1, reset_time=now + rl.window)

        if counter.attempts >= rl.max_attempts:
            until = now + rl.block_duration
            self.store.set_blocked_until(key, until)
            logger.warning(
                "identifier blocked",
                extra={"identifier": identifier, "attempts": counter.attempts},
            )
            if counter.attempts >= self.config.alerts.threshold:
                self._alert(identifier, counter.attempts, now)
            return Decision(
                allowed=False,
                remaining=0,
                reset_time=until,
                retry_after=rl.block_duration,
                reason=REASON_RATE_LIMITED,
            )

        return Decision(
            allowed=True,
            remaining=rl.max_attempts - counter.attempts - 1,
            reset_time=counter.first_attempt_at + rl.window,
        )

    @staticmethod
    def _locked(until: datetime, now: datetime) -> Decision:
        return Decision(
            allowed=False,
            remaining=0,
            reset_time=until,
            retry_after=until - now,
            reason=REASON_ACCOUNT_LOCKED,
        )

    def _alert(self, identifier: str, attempts: int, now: datetime) -> None:
        if self.notify is None:
            return
        event = AlertEvent(
            identifier=identifier,
            attempts=attempts,
            timestamp=now,
            message=f"Rate limit exceeded for {identifier}: {attempts} attempts",
        )
        try:
            self.notify(event)
        except Exception:
            # the notifier must never change the decision
            logger.exception("alert notifier failed", extra={"identifier": identifier})

    def enforce(self, identifier: str, subject_id: str | None = None) -> Decision:
        """
        ``check`` that raises on denial.

        :raises AccountLocked: The account is locked out.
        :raises RateLimited: The identifier is blocked, deny-listed or over budget.
        """
        decision = self.check(identifier, subject_id)
        if decision.allowed:
            return decision
        retry_after = decision.retry_after or self.config.rate_limit.block_duration
        if decision.reason == REASON_ACCOUNT_LOCKED and subject_id:
            raise AccountLocked(subject_id=subject_id, retry_after=retry_after)
        raise RateLimited(retry_after=retry_after, reason=decision.reason or REASON_RATE_LIMITED)

    # ------------------------------------------------------------------ #
    # Outcomes
    # ------------------------------------------------------------------ #

    def record(self, identifier: str, subject_id: str | None = None, *, success: bool) -> None:
        """
        Report the outcome of an attempt.

        The attempt window counts every non-skipped attempt. With brute-force
        protection on and a known account, a success clears the account's
        failures (when ``reset_on_success``) and a failure adds one.
        """
        rl = self.config.rate_limit
        bf = self.config.brute_force
        skip = rl.skip_successful if success else rl.skip_failed
        try:
            if not skip:
                self.store.increment_counter(rl.key_for(identifier), rl.window)
            if subject_id and bf.enabled:
                if success:
                    if bf.reset_on_success:
                        self.store.clear_lockout(subject_id)
                else:
                    lockout = self.store.increment_lockout(subject_id, bf.lockout_duration)
                    if lockout.failed_attempts >= bf.max_failed_attempts:
                        logger.warning(
                            "failed attempts reached lockout threshold",
                            extra={
                                "subject_id": subject_id,
                                "failed_attempts": lockout.failed_attempts,
                            },
                        )
        except StorageUnavailable:
            if not rl.fail_open:
                raise
            logger.error(
                "rate limit storage unavailable; attempt not recorded",
                extra={"identifier": identifier},
            )

    # ------------------------------------------------------------------ #
    # Administration
    # ------------------------------------------------------------------ #

    def unlock_account(self, subject_id: str) -> None:
        self.store.clear_lockout(subject_id)
        logger.info("account unlocked", extra={"subject_id": subject_id})

    def unlock_identifier(self, identifier: str) -> None:
        self.store.clear_counter(self.config.rate_limit.key_for(identifier))
        logger.info("identifier unlocked", extra={"identifier": identifier})

    def status(self, identifier: str, subject_id: str | None = None) -> LimitStatus:
        """Return the raw counters behind ``check`` for ``identifier`` (and ``subject_id``)."""
        counter = self.store.get_counter(self.config.rate_limit.key_for(identifier))
        lockout = self.store.get_lockout(subject_id) if subject_id else None
        return LimitStatus(
            identifier=identifier,
            attempts=counter.attempts if counter else 0,
            first_attempt_at=counter.first_attempt_at if counter else None,
            blocked_until=counter.blocked_until if counter else None,
            subject_id=subject_id,
            failed_attempts=lockout.failed_attempts if lockout else 0,
            locked_until=lockout.locked_until if lockout else None,
        )

    def sweep_expired(self) -> int:
        return self.store.sweep_expired()
