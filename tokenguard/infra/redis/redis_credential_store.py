# comments in English; reST docstrings
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import redis  # type: ignore[import-untyped]

from tokenguard.infra.redis._support import decode, from_ts, storage_errors, to_ts, ttl_ms
from tokenguard.services._shared.ports import CredentialStore, RefreshRecord

_OPTIONAL_FIELDS = ("device_fingerprint", "source_address", "user_agent")


@dataclass(slots=True)
class RedisCredentialStore(CredentialStore):
    """
    Redis-backed refresh record store.

    Layout
    ------
    - ``<prefix><sha256(token)>``: hash with the record fields, expiring with the record.
    - ``<prefix>u:<subject_id>``: set of record keys owned by the subject.

    ``claim_if_unused`` uses WATCH/MULTI/EXEC (optimistic locking) so that at
    most one concurrent caller flips ``used``.

    :param r: A Redis client (already connected).
    :param prefix: Key namespace.
    """

    r: redis.Redis
    prefix: str = "rt:"

    # -------------------- helpers --------------------

    def _k(self, token_value: str) -> str:
        digest = hashlib.sha256(token_value.encode("utf-8")).hexdigest()
        return f"{self.prefix}{digest}"

    def _ku(self, subject_id: str) -> str:
        return f"{self.prefix}u:{subject_id}"

    @staticmethod
    def _now() -> datetime:
        return datetime.now(UTC)

    @staticmethod
    def _to_record(h: dict[Any, Any]) -> RefreshRecord | None:
        if not h:
            return None
        fields = {decode(k): v for k, v in h.items()}
        created_at = from_ts(fields.get("created_at"))
        expires_at = from_ts(fields.get("expires_at"))
        if created_at is None or expires_at is None:
            return None
        return RefreshRecord(
            id=decode(fields.get("id")),
            subject_id=decode(fields.get("subject_id")),
            token_value=decode(fields.get("token_value")),
            created_at=created_at,
            expires_at=expires_at,
            used=decode(fields.get("used"), "0") == "1",
            **{name: decode(fields[name]) for name in _OPTIONAL_FIELDS if name in fields},
        )

    def _read(self, key: str) -> RefreshRecord | None:
        record = self._to_record(self.r.hgetall(key))
        if record is not None and record.is_expired(self._now()):
            # TTL normally removes it first; clear it passively otherwise
            self.r.delete(key)
            self.r.srem(self._ku(record.subject_id), key)
            return None
        return record

    # -------------------- API ------------------------

    def save_refresh_record(self, record: RefreshRecord) -> str:
        """Insert the record before the token is handed to the client."""
        key = self._k(record.token_value)
        mapping = {
            "id": record.id,
            "subject_id": record.subject_id,
            "token_value": record.token_value,
            "created_at": to_ts(record.created_at),
            "expires_at": to_ts(record.expires_at),
            "used": "1" if record.used else "0",
        }
        for name in _OPTIONAL_FIELDS:
            value = getattr(record, name)
            if value is not None:
                mapping[name] = value

        with storage_errors("save_refresh_record"):
            pipe = self.r.pipeline(transaction=True)
            pipe.delete(key)
            pipe.hset(key, mapping=mapping)
            pipe.pexpire(key, ttl_ms(record.expires_at, self._now()))
            pipe.sadd(self._ku(record.subject_id), key)
            pipe.execute()
        return record.id

    def get_refresh_record(self, token_value: str) -> RefreshRecord | None:
        with storage_errors("get_refresh_record"):
            return self._read(self._k(token_value))

    def claim_if_unused(self, token_value: str) -> bool:
        key = self._k(token_value)
        with storage_errors("claim_if_unused"):
            # Retry loop for optimistic locking in case of concurrent modifications
            while True:
                try:
                    with self.r.pipeline() as p:
                        p.watch(key)
                        fields = p.hmget(key, "used", "expires_at")
                        used, expires_at = decode(fields[0]), from_ts(fields[1])
                        if not used or used == "1" or expires_at is None:
                            p.unwatch()
                            return False
                        if expires_at <= self._now():
                            p.unwatch()
                            return False
                        p.multi()
                        p.hset(key, "used", "1")
                        p.execute()
                    return True
                except redis.WatchError:
                    # Concurrent modification detected; re-read and decide again
                    continue

    def delete_refresh_record(self, token_value: str) -> None:
        key = self._k(token_value)
        with storage_errors("delete_refresh_record"):
            subject_id = self.r.hget(key, "subject_id")
            pipe = self.r.pipeline(transaction=True)
            pipe.delete(key)
            if subject_id:
                pipe.srem(self._ku(decode(subject_id)), key)
            pipe.execute()

    def delete_all_refresh_records_for_subject(self, subject_id: str) -> int:
        key_u = self._ku(subject_id)
        with storage_errors("delete_all_refresh_records_for_subject"):
            keys = [decode(member) for member in self.r.smembers(key_u)]
            if not keys:
                return 0
            pipe = self.r.pipeline(transaction=True)
            pipe.delete(*keys)
            # Only the members read above; records saved meanwhile stay indexed
            pipe.srem(key_u, *keys)
            removed, _ = pipe.execute()
        return int(removed)

    def list_refresh_records_for_subject(self, subject_id: str) -> list[RefreshRecord]:
        key_u = self._ku(subject_id)
        records: list[RefreshRecord] = []
        stale: list[str] = []
        with storage_errors("list_refresh_records_for_subject"):
            for key in sorted(decode(m) for m in self.r.smembers(key_u)):
                record = self._read(key)
                if record is None:
                    stale.append(key)
                else:
                    records.append(record)
            if stale:
                # Remove all stale entries from the subject's index in one call
                self.r.srem(key_u, *stale)
        return sorted(records, key=lambda rec: rec.created_at)

    def sweep_expired(self) -> int:
        """
        Drop index entries whose record hash has already expired.

        Record hashes themselves are removed by Redis TTL.

        :returns: Number of stale index entries removed.
        """
        removed = 0
        with storage_errors("sweep_expired"):
            for key_u in self.r.scan_iter(match=f"{self.prefix}u:*"):
                members = [decode(m) for m in self.r.smembers(key_u)]
                stale = [m for m in members if not self.r.exists(m)]
                if stale:
                    removed += int(self.r.srem(key_u, *stale))
        return removed
