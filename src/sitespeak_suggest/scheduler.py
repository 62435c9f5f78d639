"""Background thread driving periodic reconciliation."""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class BackgroundReconciler:
    """Calls ``tick`` every ``interval`` seconds on a daemon thread.

    A failing tick is logged and the loop carries on; a late or skipped
    tick only delays cache re-tuning and breaker transitions, both of
    which are also applied lazily on access.
    """

    def __init__(self, tick: Callable[[], Any], interval: float = 60.0, *, name: str = "sitespeak-reconciler"):
        if interval <= 0:
            raise ValueError("interval must be positive")
        self._tick = tick
        self.interval = interval
        self.name = name
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Spawn the background thread."""
        if self.running:
            logger.warning("%s already started", self.name)
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        logger.info("%s started (interval=%.1fs)", self.name, self.interval)

    def stop(self, timeout: float = 5.0) -> None:
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
            logger.info("%s stopped", self.name)

    def run_once(self) -> bool:
        """Run a single tick; returns False if it raised."""
        self.runs += 1
        try:
            self._tick()
        except Exception:
            self.failures += 1
            logger.exception("Background reconciliation failed")
            return False
        return True

    def _run(self) -> None:
        while not self._stop_event.wait(self.interval):
            self.run_once()

    def __enter__(self) -> "BackgroundReconciler":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()
