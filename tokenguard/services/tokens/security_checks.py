"""Verdicts on whether a presented refresh token may be rotated."""

from __future__ import annotations

import hashlib
import hmac
import logging
from datetime import datetime

from tokenguard.core.config import SecuritySettings
from tokenguard.services._shared.errors import (
    ConcurrentUsageDetected,
    CredentialExpired,
    DeviceMismatch,
    StorageUnavailable,
)
from tokenguard.services._shared.ports import CredentialStore, RefreshRecord
from tokenguard.services.tokens.dto import DeviceInfo, RefreshClaims

logger = logging.getLogger(__name__)


def hash_device(fingerprint: str) -> str:
    """Return the SHA-256 hex digest embedded in refresh tokens for device binding."""
    return hashlib.sha256(fingerprint.encode("utf-8")).hexdigest()


class SecurityCheckEngine:
    """
    Run the refresh-time checks in order: reuse, device binding, expiry.

    Every failure is terminal. Only the reuse verdict touches other sessions:
    it revokes every record of the token's owner before raising.
    """

    def __init__(self, *, settings: SecuritySettings, store: CredentialStore) -> None:
        self.settings = settings
        self.store = store

    def check(
        self,
        record: RefreshRecord,
        claims: RefreshClaims,
        device: DeviceInfo | None,
        *,
        now: datetime,
    ) -> None:
        """
        Validate ``record`` against the presented token.

        :param record: Stored state of the presented token.
        :param claims: Verified claims of the presented token.
        :param device: Device context of the caller, if any.
        :param now: Evaluation instant (UTC).
        :raises ConcurrentUsageDetected: Token was already consumed.
        :raises DeviceMismatch: Fingerprint missing or different from the bound device.
        :raises CredentialExpired: Stored record is past its expiry (the record is deleted).
        """
        if self.settings.reuse_detection_enabled and record.used:
            self.on_reuse(record.subject_id, record_id=record.id)

        if self.settings.device_binding_enabled and claims.device_hash:
            fingerprint = device.fingerprint if device else None
            presented = hash_device(fingerprint) if fingerprint else ""
            if not hmac.compare_digest(presented, claims.device_hash):
                logger.warning(
                    "device mismatch on refresh",
                    extra={"subject_id": record.subject_id, "record_id": record.id},
                )
                raise DeviceMismatch()

        if record.expires_at < now:
            self.store.delete_refresh_record(record.token_value)
            raise CredentialExpired()

    def on_reuse(self, subject_id: str, *, record_id: str | None = None) -> None:
        """
        Revoke every session of ``subject_id`` and raise.

        Revocation is retried up to ``cascade_attempts`` times while the store
        is unavailable.

        :raises ConcurrentUsageDetected: Always; ``revocation_completed`` tells
            whether the cascade reached storage.
        """
        logger.warning(
            "refresh token reuse detected",
            extra={"subject_id": subject_id, "record_id": record_id},
        )
        last_error: StorageUnavailable | None = None
        for attempt in range(1, self.settings.cascade_attempts + 1):
            try:
                revoked = self.store.delete_all_refresh_records_for_subject(subject_id)
            except StorageUnavailable as exc:
                last_error = exc
                logger.error(
                    "cascade revocation failed",
                    extra={"subject_id": subject_id, "attempt": attempt},
                )
                continue
            logger.warning(
                "revoked all sessions after reuse",
                extra={"subject_id": subject_id, "revoked": revoked},
            )
            raise ConcurrentUsageDetected(subject_id=subject_id)
        raise ConcurrentUsageDetected(
            subject_id=subject_id, revocation_completed=False
        ) from last_error
