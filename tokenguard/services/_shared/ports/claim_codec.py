from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any, Protocol

if TYPE_CHECKING:  # pragma: no cover
    from tokenguard.services.tokens.dto import AccessClaims, RefreshClaims


class ClaimCodec(Protocol):
    """
    Port for signing and verifying the two credential kinds.

    Implementations are stateless. Verification failures raise the
    :class:`~tokenguard.services._shared.errors.InvalidCredential` family.
    """

    def sign_access(self, subject_id: str, attrs: dict[str, Any], expiry: timedelta) -> str: ...

    def sign_refresh(
        self, subject_id: str, device_hash: str | None, expiry: timedelta
    ) -> tuple[str, str]:
        """:returns: ``(token, unique_id)``."""

    def verify_access(self, token: str) -> AccessClaims: ...

    def verify_refresh(self, token: str) -> RefreshClaims: ...
