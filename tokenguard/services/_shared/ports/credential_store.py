from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Protocol


@dataclass(frozen=True, slots=True)
class RefreshRecord:
    """
    Server-side state of one issued refresh token.

    :ivar id: Record identifier (the token's ``jti``).
    :ivar subject_id: Owner of the session.
    :ivar token_value: Encoded refresh token; identity of the record.
    :ivar device_fingerprint: Raw fingerprint presented at issuance, if any.
    :ivar source_address: Client address at issuance, if known.
    :ivar user_agent: Client user agent at issuance, if known.
    :ivar used: Whether the token has been consumed by a rotation.
    :ivar created_at: Issuance instant (UTC).
    :ivar expires_at: Absolute expiration (UTC).
    """

    id: str
    subject_id: str
    token_value: str
    created_at: datetime
    expires_at: datetime
    used: bool = False
    device_fingerprint: str | None = None
    source_address: str | None = None
    user_agent: str | None = None

    def __post_init__(self) -> None:
        if self.expires_at <= self.created_at:
            raise ValueError("expires_at must be later than created_at")

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at <= now

    def mark_used(self) -> RefreshRecord:
        """Return a copy flagged as consumed."""
        return replace(self, used=True)


class CredentialStore(Protocol):
    """
    Persistence contract for refresh-token records.

    Every method MAY raise :class:`~tokenguard.services._shared.errors.StorageUnavailable`.
    ``claim_if_unused`` MUST be atomic: of any number of concurrent callers
    presenting the same token, at most one observes ``True``.
    """

    def save_refresh_record(self, record: RefreshRecord) -> str:
        """Persist ``record`` (before the token is handed out). :returns: Record id."""

    def get_refresh_record(self, token_value: str) -> RefreshRecord | None:
        """Fetch a record; expired records read as absent."""

    def claim_if_unused(self, token_value: str) -> bool:
        """
        Atomically flip ``used`` from ``False`` to ``True``.

        :returns: ``True`` only for the caller that performed the flip.
        """

    def delete_refresh_record(self, token_value: str) -> None:
        """Delete a single record; missing records are ignored."""

    def delete_all_refresh_records_for_subject(self, subject_id: str) -> int:
        """
        Delete every record owned by ``subject_id``.

        :returns: Number of records removed.
        """

    def list_refresh_records_for_subject(self, subject_id: str) -> list[RefreshRecord]:
        """List non-expired records of a subject, oldest first."""

    def sweep_expired(self) -> int:
        """Remove expired records. :returns: Number removed."""


class InMemoryCredentialStore(CredentialStore):
    """
    Process-local credential store.

    .. note::
       A single lock guards both indexes, so ``claim_if_unused`` is atomic
       across threads.
    """

    def __init__(self) -> None:
        self._by_token: dict[str, RefreshRecord] = {}
        self._by_subject: dict[str, set[str]] = {}
        self._lock = threading.Lock()

    # ------------------------- helpers -------------------------

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    def _drop(self, token_value: str) -> RefreshRecord | None:
        # caller holds the lock
        record = self._by_token.pop(token_value, None)
        if record is not None:
            tokens = self._by_subject.get(record.subject_id)
            if tokens is not None:
                tokens.discard(token_value)
                if not tokens:
                    del self._by_subject[record.subject_id]
        return record

    def _live(self, token_value: str) -> RefreshRecord | None:
        # caller holds the lock
        record = self._by_token.get(token_value)
        if record is not None and record.is_expired(self._now()):
            self._drop(token_value)
            return None
        return record

    # -------------------------- API ----------------------------

    def save_refresh_record(self, record: RefreshRecord) -> str:
        with self._lock:
            self._by_token[record.token_value] = record
            self._by_subject.setdefault(record.subject_id, set()).add(record.token_value)
        return record.id

    def get_refresh_record(self, token_value: str) -> RefreshRecord | None:
        with self._lock:
            return self._live(token_value)

    def claim_if_unused(self, token_value: str) -> bool:
        with self._lock:
            record = self._live(token_value)
            if record is None or record.used:
                return False
            self._by_token[token_value] = record.mark_used()
            return True

    def delete_refresh_record(self, token_value: str) -> None:
        with self._lock:
            self._drop(token_value)

    def delete_all_refresh_records_for_subject(self, subject_id: str) -> int:
        with self._lock:
            tokens = list(self._by_subject.get(subject_id, ()))
            for token_value in tokens:
                self._drop(token_value)
            return len(tokens)

    def list_refresh_records_for_subject(self, subject_id: str) -> list[RefreshRecord]:
        with self._lock:
            records = [
                record
                for token_value in list(self._by_subject.get(subject_id, ()))
                if (record := self._live(token_value)) is not None
            ]
        return sorted(records, key=lambda r: r.created_at)

    def sweep_expired(self) -> int:
        now = self._now()
        with self._lock:
            expired = [t for t, r in self._by_token.items() if r.is_expired(now)]
            for token_value in expired:
                self._drop(token_value)
            return len(expired)
