"""Per-service circuit breaker for calls into the suggestion generator.

Thread-safe three-state model with an injectable clock so recovery
timing can be driven without sleeping.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from enum import Enum
from typing import Any, Callable, Deque, List, Optional

logger = logging.getLogger("sitespeak_suggest.circuit_breaker")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


StateListener = Callable[[str, CircuitState, CircuitState], None]


class CircuitBreaker:
    """Classic closed/open/half-open breaker for one downstream service.

    States:
    - CLOSED: calls pass; a success decrements the failure count by one
    - OPEN: calls are refused until ``recovery_timeout`` seconds have passed
      since the last recorded failure
    - HALF_OPEN: calls pass; ``half_open_success_threshold`` successes close
      the breaker, any failure re-opens it

    Parameters:
    - name: service name used in logs and status
    - failure_threshold: failures (net of hysteresis) needed to open
    - recovery_timeout: seconds after the last failure before probing
    - half_open_success_threshold: successes needed to close from half-open
    - clock: time source returning epoch seconds
    """

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        recovery_timeout: float = 30.0,
        half_open_success_threshold: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._name = name
        self._failure_threshold = failure_threshold
        self._recovery_timeout = recovery_timeout
        self._half_open_success_threshold = half_open_success_threshold
        self._clock = clock

        self._lock = threading.RLock()
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._request_count = 0
        self._last_failure_time: Optional[float] = None
        self._listeners: List[StateListener] = []

        # Recent failure timestamps for the status rate
        self._failure_timestamps: Deque[float] = deque(maxlen=100)

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> CircuitState:
        """Current state, applying any due open -> half-open transition."""
        self._maybe_half_open()
        with self._lock:
            return self._state

    @property
    def failure_count(self) -> int:
        with self._lock:
            return self._failure_count

    def add_listener(self, listener: StateListener) -> None:
        """Register ``listener(name, old_state, new_state)``."""
        with self._lock:
            self._listeners.append(listener)

    def allow_request(self) -> bool:
        return self.state != CircuitState.OPEN

    def record_success(self) -> None:
        transition = None
        with self._lock:
            self._request_count += 1
            self._success_count += 1
            if self._state == CircuitState.HALF_OPEN:
                if self._success_count >= self._half_open_success_threshold:
                    transition = self._set_state(CircuitState.CLOSED)
                    self._failure_count = 0
                    self._success_count = 0
            elif self._state == CircuitState.CLOSED:
                self._failure_count = max(0, self._failure_count - 1)
        self._notify(transition)

    def record_failure(self, exc: Optional[BaseException] = None) -> None:
        transition = None
        with self._lock:
            now = self._clock()
            self._request_count += 1
            self._failure_count += 1
            self._last_failure_time = now
            self._failure_timestamps.append(now)
            logger.debug(
                "%s failure %d/%d - %s",
                self._name,
                self._failure_count,
                self._failure_threshold,
                exc,
            )
            if self._state == CircuitState.HALF_OPEN:
                transition = self._set_state(CircuitState.OPEN)
            elif self._state == CircuitState.CLOSED and self._failure_count >= self._failure_threshold:
                transition = self._set_state(CircuitState.OPEN)
        self._notify(transition)

    def tick(self) -> CircuitState:
        return self.state

    def force_open(self) -> None:
        """Force the circuit open (useful for testing or manual intervention)."""
        with self._lock:
            self._last_failure_time = self._clock()
            transition = self._set_state(CircuitState.OPEN)
        self._notify(transition)

    def reset(self) -> None:
        """Return to CLOSED with all counters cleared."""
        with self._lock:
            transition = self._set_state(CircuitState.CLOSED)
            self._failure_count = 0
            self._success_count = 0
            self._request_count = 0
        self._notify(transition)

    def status(self) -> dict[str, Any]:
        """Return a JSON-serializable snapshot of the breaker state."""
        state = self.state
        with self._lock:
            return {
                "name": self._name,
                "state": state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "request_count": self._request_count,
                "last_failure_time": self._last_failure_time,
                "failure_rate_last_min": self._failure_rate(seconds=60),
                "failure_threshold": self._failure_threshold,
                "recovery_timeout": self._recovery_timeout,
            }

    # ------------------------------------------------------------------ #

    def _maybe_half_open(self) -> None:
        transition = None
        with self._lock:
            if self._state == CircuitState.OPEN and self._last_failure_time is not None:
                elapsed = self._clock() - self._last_failure_time
                if elapsed >= self._recovery_timeout:
                    logger.info("%s timeout elapsed (%.2fs); moving to HALF_OPEN", self._name, elapsed)
                    transition = self._set_state(CircuitState.HALF_OPEN)
                    self._success_count = 0
        self._notify(transition)

    def _set_state(self, new_state: CircuitState):
        old_state = self._state
        if old_state == new_state:
            return None
        self._state = new_state
        if new_state == CircuitState.OPEN:
            logger.warning("Circuit breaker opened for %s", self._name)
        elif new_state == CircuitState.CLOSED:
            logger.info("Circuit breaker closed for %s", self._name)
        return old_state, new_state

    def _notify(self, transition) -> None:
        if transition is None:
            return
        old_state, new_state = transition
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(self._name, old_state, new_state)
            except Exception as exc:
                logger.warning("State listener failed for %s: %s", self._name, exc)

    def _failure_rate(self, *, seconds: int = 60) -> float:
        """Failures per second over the recent window."""
        if seconds <= 0:
            return 0.0
        cutoff = self._clock() - seconds
        recent = [t for t in self._failure_timestamps if t >= cutoff]
        return len(recent) / seconds
