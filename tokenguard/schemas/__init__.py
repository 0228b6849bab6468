"""Marshmallow schemas for configuration, request payloads and admin output."""

from __future__ import annotations

from .config import SecurityConfigSchema
from .tokens import (
    AccessClaimsSchema,
    LimitStatusSchema,
    RefreshSchema,
    RevokeSchema,
    SessionSchema,
    TokenPairSchema,
)

__all__ = [
    "SecurityConfigSchema",
    "AccessClaimsSchema",
    "LimitStatusSchema",
    "RefreshSchema",
    "RevokeSchema",
    "SessionSchema",
    "TokenPairSchema",
]
