"""Owned background thread that periodically removes expired entries."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence

from tokenguard.services._shared.errors import StorageUnavailable

logger = logging.getLogger(__name__)

Sweep = Callable[[], int]


class ExpirySweeper:
    """
    Call every ``sweep`` function each ``interval`` seconds until stopped.

    The thread is a daemon and is owned by whoever calls :meth:`start`; call
    :meth:`stop` (or use the sweeper as a context manager) to join it.

    :param sweeps: Zero-argument callables returning the number of entries removed,
        typically ``store.sweep_expired``.
    :param interval: Seconds between passes.
    """

    def __init__(self, sweeps: Sequence[Sweep], *, interval: float = 60.0) -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.sweeps = list(sweeps)
        self.interval = interval
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def run_once(self) -> int:
        """Run every sweep once. Storage outages are logged and the pass continues."""
        removed = 0
        for sweep in self.sweeps:
            try:
                removed += sweep()
            except StorageUnavailable:
                logger.error("expiry sweep failed", exc_info=True)
        if removed:
            logger.info("expired entries swept", extra={"removed": removed})
        return removed

    def _loop(self) -> None:
        while not self._stop.wait(self.interval):
            self.run_once()

    def start(self) -> ExpirySweeper:
        if self.running:
            return self
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="tokenguard-sweeper", daemon=True)
        self._thread.start()
        return self

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def __enter__(self) -> ExpirySweeper:
        return self.start()

    def __exit__(self, *exc: object) -> None:
        self.stop()
