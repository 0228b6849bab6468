from __future__ import annotations

from .dto import AlertEvent, Decision, LimitStatus
from .service import RateLimitEngine

__all__ = ["AlertEvent", "Decision", "LimitStatus", "RateLimitEngine"]
