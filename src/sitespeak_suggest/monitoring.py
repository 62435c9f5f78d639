"""
Latency tracking for completion, cache and suggestion operations.

Keeps a bounded window of samples per operation and fires alert listeners
whenever a sample exceeds the operation's target.
"""

import logging
import threading
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Callable, Deque, Dict, Iterator, List, Optional

from .config import MonitoringConfig

logger = logging.getLogger(__name__)

AlertListener = Callable[[str, float, float], None]


def _percentile(samples: List[float], fraction: float) -> float:
    if not samples:
        return 0.0
    ordered = sorted(samples)
    index = min(len(ordered) - 1, int(round(fraction * (len(ordered) - 1))))
    return ordered[index]


class PerformanceMonitor:
    """
    Per-operation latency monitor.

    Operations are free-form names; ``completion``, ``cache`` and
    ``suggestion`` carry the configured targets. Other names are tracked
    without a target.
    """

    def __init__(self, config: Optional[MonitoringConfig] = None):
        self.config = config or MonitoringConfig()
        self.targets: Dict[str, float] = {
            "completion": self.config.completion_target_ms,
            "cache": self.config.cache_target_ms,
            "suggestion": self.config.suggestion_target_ms,
        }

        self._lock = threading.RLock()
        self._samples: Dict[str, Deque[float]] = defaultdict(lambda: deque(maxlen=self.config.window))
        self._counts: Dict[str, int] = defaultdict(int)
        self._breaches: Dict[str, int] = defaultdict(int)
        self._alert_listeners: List[AlertListener] = []

    def add_alert_listener(self, listener: AlertListener) -> None:
        """Register ``listener(operation, duration_ms, target_ms)``."""
        with self._lock:
            self._alert_listeners.append(listener)

    def record(self, operation: str, duration_ms: float) -> None:
        target = self.targets.get(operation)
        with self._lock:
            self._samples[operation].append(duration_ms)
            self._counts[operation] += 1
            breached = target is not None and duration_ms > target
            if breached:
                self._breaches[operation] += 1
            listeners = list(self._alert_listeners) if breached else []

        if not breached:
            return
        logger.warning("%s took %.2fms (target %.0fms)", operation, duration_ms, target)
        for listener in listeners:
            try:
                listener(operation, duration_ms, target)
            except Exception as exc:
                logger.warning("Alert listener failed: %s", exc)

    @contextmanager
    def timer(self, operation: str) -> Iterator[None]:
        """Record the wall time of the ``with`` block under ``operation``."""
        started = time.perf_counter()
        try:
            yield
        finally:
            self.record(operation, (time.perf_counter() - started) * 1000)

    def summary(self) -> Dict[str, Dict[str, Any]]:
        with self._lock:
            snapshot = {op: list(samples) for op, samples in self._samples.items()}
            counts = dict(self._counts)
            breaches = dict(self._breaches)

        report: Dict[str, Dict[str, Any]] = {}
        for operation, samples in snapshot.items():
            report[operation] = {
                "count": counts.get(operation, 0),
                "avg_ms": round(sum(samples) / len(samples), 3) if samples else 0.0,
                "p95_ms": round(_percentile(samples, 0.95), 3),
                "max_ms": round(max(samples), 3) if samples else 0.0,
                "target_ms": self.targets.get(operation),
                "breaches": breaches.get(operation, 0),
            }
        return report

    def reset(self) -> None:
        with self._lock:
            self._samples.clear()
            self._counts.clear()
            self._breaches.clear()
