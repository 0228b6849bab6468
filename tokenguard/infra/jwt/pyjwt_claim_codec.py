# tokenguard/infra/jwt/pyjwt_claim_codec.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any, Final
from uuid import uuid4

import jwt

from tokenguard.core.config import TokenSettings
from tokenguard.services._shared.errors import (
    CredentialExpired,
    MalformedCredential,
    WrongCredentialKind,
)
from tokenguard.services._shared.ports import ClaimCodec
from tokenguard.services.tokens.dto import ACCESS, REFRESH, AccessClaims, RefreshClaims

RESERVED_CLAIMS: Final[frozenset[str]] = frozenset(
    {"sub", "kind", "iat", "exp", "jti", "device_hash"}
)
_REQUIRED: Final[list[str]] = ["sub", "kind", "iat", "exp", "jti"]


def _ts(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value), tz=UTC)


@dataclass(slots=True)
class PyJWTClaimCodec(ClaimCodec):
    """
    HMAC-signed JWT codec built on PyJWT.

    Access and refresh tokens are signed with distinct secrets and carry an
    explicit ``kind`` claim that is checked after signature validation.

    :param settings: Secrets and algorithm.
    :type settings: TokenSettings
    """

    settings: TokenSettings

    # -------------------- helpers --------------------

    def _secret(self, kind: str) -> str:
        return self.settings.access_secret if kind == ACCESS else self.settings.refresh_secret

    def _encode(self, payload: dict[str, Any], kind: str) -> str:
        return jwt.encode(payload, self._secret(kind), algorithm=self.settings.algorithm)

    @staticmethod
    def _base_claims(subject_id: str, kind: str, expiry: timedelta) -> dict[str, Any]:
        now = datetime.now(UTC)
        return {
            "sub": str(subject_id),
            "kind": kind,
            "iat": now,
            "exp": now + expiry,
            "jti": uuid4().hex,
        }

    @staticmethod
    def _peek_kind(token: str) -> str | None:
        try:
            unverified = jwt.decode(token, options={"verify_signature": False})
        except jwt.InvalidTokenError:
            return None
        kind = unverified.get("kind")
        return kind if isinstance(kind, str) else None

    def _decode(self, token: str, expected: str) -> dict[str, Any]:
        """
        Verify ``token`` as a credential of kind ``expected``.

        :raises CredentialExpired: Signature valid but ``exp`` has passed.
        :raises WrongCredentialKind: Token belongs to the other kind.
        :raises MalformedCredential: Anything else (bad signature, missing claims, garbage).
        """
        if not isinstance(token, str) or not token:
            raise MalformedCredential()
        try:
            payload: dict[str, Any] = jwt.decode(
                token,
                self._secret(expected),
                algorithms=[self.settings.algorithm],
                options={"require": _REQUIRED},
            )
        except jwt.ExpiredSignatureError as exc:
            raise CredentialExpired() from exc
        except jwt.InvalidSignatureError as exc:
            # Signed with the other secret: report the kind mismatch when the payload says so
            actual = self._peek_kind(token)
            if actual is not None and actual != expected and actual in (ACCESS, REFRESH):
                raise WrongCredentialKind(expected=expected, actual=actual) from exc
            raise MalformedCredential() from exc
        except jwt.InvalidTokenError as exc:
            raise MalformedCredential() from exc

        actual_kind = payload.get("kind")
        if actual_kind != expected:
            raise WrongCredentialKind(
                expected=expected, actual=actual_kind if isinstance(actual_kind, str) else None
            )
        return payload

    # -------------------- API ------------------------

    def sign_access(self, subject_id: str, attrs: dict[str, Any], expiry: timedelta) -> str:
        payload = {k: v for k, v in (attrs or {}).items() if k not in RESERVED_CLAIMS}
        payload.update(self._base_claims(subject_id, ACCESS, expiry))
        return self._encode(payload, ACCESS)

    def sign_refresh(
        self, subject_id: str, device_hash: str | None, expiry: timedelta
    ) -> tuple[str, str]:
        payload = self._base_claims(subject_id, REFRESH, expiry)
        if device_hash:
            payload["device_hash"] = device_hash
        return self._encode(payload, REFRESH), payload["jti"]

    def verify_access(self, token: str) -> AccessClaims:
        payload = self._decode(token, ACCESS)
        return AccessClaims(
            subject_id=str(payload["sub"]),
            issued_at=_ts(payload["iat"]),
            expires_at=_ts(payload["exp"]),
            attrs={k: v for k, v in payload.items() if k not in RESERVED_CLAIMS},
        )

    def verify_refresh(self, token: str) -> RefreshClaims:
        payload = self._decode(token, REFRESH)
        device_hash = payload.get("device_hash")
        return RefreshClaims(
            subject_id=str(payload["sub"]),
            unique_id=str(payload["jti"]),
            issued_at=_ts(payload["iat"]),
            expires_at=_ts(payload["exp"]),
            device_hash=device_hash if isinstance(device_hash, str) else None,
        )
