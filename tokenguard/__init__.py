"""Paired access/refresh credentials with rotation, reuse detection and rate limiting.

Provide convenient access to :func:`tokenguard.factory.create_context` and
:func:`tokenguard.factory.create_app` at package level.
"""

from __future__ import annotations

from .core.config import SecurityConfig, load_config_from_env
from .factory import SecurityContext, create_app, create_context

__version__ = "0.1.0"

__all__ = [
    "SecurityConfig",
    "SecurityContext",
    "create_app",
    "create_context",
    "load_config_from_env",
]
