from __future__ import annotations

import logging

from tokenguard.services.rate_limit.dto import AlertEvent

logger = logging.getLogger(__name__)


def log_alert(event: AlertEvent) -> None:
    """Default notifier: emit the alert as a ``WARNING`` record."""
    logger.warning(
        "security alert",
        extra={
            "identifier": event.identifier,
            "attempts": event.attempts,
            "alert_message": event.message,
            "timestamp": event.timestamp.isoformat(),
        },
    )
