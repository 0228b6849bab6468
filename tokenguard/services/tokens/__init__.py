from __future__ import annotations

from .dto import AccessClaims, DeviceInfo, RefreshClaims, Subject, TokenPair
from .service import TokenLifecycleManager

__all__ = [
    "AccessClaims",
    "DeviceInfo",
    "RefreshClaims",
    "Subject",
    "TokenPair",
    "TokenLifecycleManager",
]
