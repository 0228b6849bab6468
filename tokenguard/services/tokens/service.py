# tokenguard/services/tokens/service.py
from __future__ import annotations

import logging
from collections.abc import Callable

from tokenguard.core.config import SecurityConfig
from tokenguard.services._shared.base import BaseService, token_hint
from tokenguard.services._shared.errors import UnknownRefreshToken
from tokenguard.services._shared.ports import ClaimCodec, CredentialStore, RefreshRecord
from tokenguard.services.tokens.dto import (
    AccessClaims,
    DeviceInfo,
    RefreshClaims,
    Subject,
    TokenPair,
)
from tokenguard.services.tokens.security_checks import SecurityCheckEngine, hash_device

logger = logging.getLogger(__name__)

SubjectLoader = Callable[[str], Subject | None]


class TokenLifecycleManager(BaseService):
    """
    Token lifecycle service (issue / refresh / revoke).

    Signs credentials via a pluggable :class:`ClaimCodec`, persists refresh
    records via a :class:`CredentialStore` and applies the
    :class:`SecurityCheckEngine` on every refresh. Rotation consumes the
    presented token with the store's atomic ``claim_if_unused`` *before* the
    new pair is issued.
    """

    def __init__(
        self,
        *,
        config: SecurityConfig,
        codec: ClaimCodec,
        store: CredentialStore,
        subject_loader: SubjectLoader | None = None,
    ) -> None:
        """
        Initialize the service with its dependencies.

        :param config: Validated security configuration.
        :param codec: Adapter for signing/verifying tokens.
        :param store: Refresh record storage.
        :param subject_loader: Optional lookup used on refresh to reload the
            subject's attributes; returning ``None`` rejects the refresh.
        """
        super().__init__(config=config)
        self.codec = codec
        self.store = store
        self.subject_loader = subject_loader
        self.checks = SecurityCheckEngine(settings=config.security, store=store)

    # ------------------------------------------------------------------ #
    # Issue
    # ------------------------------------------------------------------ #

    def issue(self, subject: Subject, device: DeviceInfo | None = None) -> TokenPair:
        """
        Issue a fresh access/refresh pair and persist the refresh record.

        :param subject: Identity to issue for.
        :param device: Client context; its fingerprint is bound to the refresh
            token when device binding is enabled.
        :returns: The new pair.
        """
        device = device or DeviceInfo()
        tokens = self.config.tokens
        device_hash = (
            hash_device(device.fingerprint)
            if self.config.security.device_binding_enabled and device.fingerprint
            else None
        )

        access = self.codec.sign_access(subject.id, dict(subject.attrs), tokens.access_ttl)
        refresh, unique_id = self.codec.sign_refresh(subject.id, device_hash, tokens.refresh_ttl)

        now = self.now_utc()
        self.store.save_refresh_record(
            RefreshRecord(
                id=unique_id,
                subject_id=subject.id,
                token_value=refresh,
                created_at=now,
                expires_at=now + tokens.refresh_ttl,
                device_fingerprint=device.fingerprint,
                source_address=device.source_address,
                user_agent=device.user_agent,
            )
        )
        self._enforce_session_cap(subject.id, keep=refresh)
        logger.info("issued token pair", extra={"subject_id": subject.id, "record_id": unique_id})
        return TokenPair(access_token=access, refresh_token=refresh)

    def _enforce_session_cap(self, subject_id: str, *, keep: str) -> None:
        limit = self.config.security.max_concurrent_sessions
        if limit <= 0:
            return
        # oldest first; consumed records stay for reuse detection and do not count
        active = [
            r
            for r in self.store.list_refresh_records_for_subject(subject_id)
            if not r.used and r.token_value != keep
        ]
        excess = len(active) + 1 - limit
        for record in active[: max(0, excess)]:
            self.store.delete_refresh_record(record.token_value)
            logger.info(
                "evicted session over limit",
                extra={"subject_id": subject_id, "record_id": record.id},
            )

    # ------------------------------------------------------------------ #
    # Refresh with atomic rotation
    # ------------------------------------------------------------------ #

    def refresh(self, token: str, device: DeviceInfo | None = None) -> TokenPair:
        """
        Exchange a refresh token for a new pair.

        Security
        --------
        - Signature, kind and ``exp`` are verified by the codec.
        - A server-side record must exist.
        - Reuse of a consumed token revokes **all** sessions of its owner.
        - With rotation enabled the token is claimed atomically, so of two
          concurrent callers presenting it at most one succeeds.

        :raises InvalidCredential: Token is malformed, expired or an access token.
        :raises UnknownRefreshToken: No record (revoked, swept, never issued) or
            the subject no longer exists.
        :raises ConcurrentUsageDetected: Token was already used.
        :raises DeviceMismatch: Device binding failed; the token is not consumed.
        """
        claims = self.codec.verify_refresh(token)
        record = self.store.get_refresh_record(token)
        if record is None:
            logger.info(
                "refresh with unknown token",
                extra={"subject_id": claims.subject_id, "token": token_hint(token)},
            )
            raise UnknownRefreshToken()

        self.checks.check(record, claims, device, now=self.now_utc())
        subject = self._load_subject(claims)

        if self.config.security.rotation_enabled and not self.store.claim_if_unused(token):
            self._on_lost_claim(token)

        next_device = device or DeviceInfo(
            fingerprint=record.device_fingerprint,
            source_address=record.source_address,
            user_agent=record.user_agent,
        )
        return self.issue(subject, next_device)

    def _load_subject(self, claims: RefreshClaims) -> Subject:
        if self.subject_loader is None:
            return Subject(id=claims.subject_id)
        subject = self.subject_loader(claims.subject_id)
        if subject is None:
            raise UnknownRefreshToken("Subject no longer exists")
        return subject

    def _on_lost_claim(self, token: str) -> None:
        """Another caller consumed or removed the token between read and claim."""
        current = self.store.get_refresh_record(token)
        if (
            current is not None
            and current.used
            and self.config.security.reuse_detection_enabled
        ):
            self.checks.on_reuse(current.subject_id, record_id=current.id)
        raise UnknownRefreshToken()

    # ------------------------------------------------------------------ #
    # Revocation & queries
    # ------------------------------------------------------------------ #

    def revoke_one(self, token: str) -> None:
        """Delete exactly the record of ``token``; unknown tokens are ignored."""
        self.store.delete_refresh_record(token)

    def revoke_all(self, subject_id: str) -> int:
        """Delete every session of ``subject_id``. Idempotent. :returns: Records removed."""
        revoked = self.store.delete_all_refresh_records_for_subject(subject_id)
        logger.info("revoked all sessions", extra={"subject_id": subject_id, "revoked": revoked})
        return revoked

    def verify_access(self, token: str) -> AccessClaims:
        return self.codec.verify_access(token)

    def list_sessions(self, subject_id: str) -> list[RefreshRecord]:
        return self.store.list_refresh_records_for_subject(subject_id)

    def sweep_expired(self) -> int:
        return self.store.sweep_expired()
