"""
sitespeak_suggest.resilience.gateway

Front door for every call into the external suggestion generator.

* ``execute_with_retry`` - breaker check, timeout, bounded backoff; raises
  on total failure.
* ``generate_suggestions`` - the same path, but any failure ends in the
  fallback chain and a structured response.
* ``handle_error`` - classify, record and fall back for errors raised
  elsewhere.

A gateway-wide maintenance window overrides every breaker while active.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import threading
import time
from collections import Counter, deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar, Union

from ..config import FallbackType, GatewayConfig
from ..exceptions import (
    CircuitOpenError,
    OperationTimeoutError,
    SuggestionError,
    SuggestionErrorCode,
    normalize_error,
)
from ..models import (
    CommandSuggestion,
    CompletionMatch,
    CompletionResult,
    IntentCategory,
    MatchType,
    SuggestionContext,
    SuggestionResponse,
)
from .circuit_breaker import CircuitBreaker, CircuitState, StateListener
from .fallback import FallbackChain, basic_completions
from .retry import RetryPolicy, Sleeper

logger = logging.getLogger(__name__)

T = TypeVar("T")

Operation = Callable[[], Union[Awaitable[T], T]]
Generator = Callable[[], Awaitable[Union[List[CommandSuggestion], SuggestionResponse]]]

MAINTENANCE_MODE = "MAINTENANCE_MODE"
CIRCUIT_OPEN = "CIRCUIT_OPEN"


class ResilienceGateway:
    """Circuit breakers, retry and fallback around the suggestion generator.

    Breakers are created for the configured services up front and lazily
    for any other service name. ``clock`` and ``sleep`` are injectable so
    recovery windows and backoff can be exercised without real time.
    """

    def __init__(
        self,
        config: Optional[GatewayConfig] = None,
        cache: Any = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Sleeper = asyncio.sleep,
    ) -> None:
        self.config = config or GatewayConfig()
        self.cache = cache
        self._clock = clock
        self.retry_policy = RetryPolicy(self.config.retry, sleep=sleep)
        self.fallbacks = FallbackChain(self.config.fallback_strategies, cache, clock=clock)

        self._lock = threading.RLock()
        self._listeners: List[StateListener] = []
        self._breakers: Dict[str, CircuitBreaker] = {}
        for name in self.config.circuit_breaker.services:
            self.breaker(name)

        self._maintenance_until: Optional[float] = None

        self._stats_lock = threading.Lock()
        self._total_errors = 0
        self._errors_by_code: Counter = Counter()
        self._errors_by_service: Counter = Counter()
        self._recent_errors: Deque[Dict[str, Any]] = deque(maxlen=self.config.recent_error_limit)

    # ------------------------------------------------------------------ #
    # Breakers and availability
    # ------------------------------------------------------------------ #

    def breaker(self, service_name: str) -> CircuitBreaker:
        with self._lock:
            breaker = self._breakers.get(service_name)
            if breaker is None:
                cfg = self.config.circuit_breaker
                breaker = CircuitBreaker(
                    service_name,
                    failure_threshold=cfg.failure_threshold,
                    recovery_timeout=cfg.recovery_timeout_seconds,
                    half_open_success_threshold=cfg.half_open_success_threshold,
                    clock=self._clock,
                )
                breaker.add_listener(self._forward_transition)
                self._breakers[service_name] = breaker
            return breaker

    def on_state_change(self, listener: StateListener) -> None:
        """Register ``listener(service_name, old_state, new_state)`` for every breaker."""
        with self._lock:
            self._listeners.append(listener)

    def is_service_available(self, service_name: str) -> bool:
        if self.in_maintenance:
            return False
        return self.breaker(service_name).allow_request()

    def breaker_status(self, service_name: Optional[str] = None) -> Dict[str, Any]:
        if service_name is not None:
            return self.breaker(service_name).status()
        with self._lock:
            breakers = list(self._breakers.values())
        return {b.name: b.status() for b in breakers}

    # ------------------------------------------------------------------ #
    # Maintenance mode
    # ------------------------------------------------------------------ #

    @property
    def in_maintenance(self) -> bool:
        """True while a maintenance window is open; expiry is applied lazily."""
        with self._lock:
            until = self._maintenance_until
        if until is None:
            return False
        if self._clock() >= until:
            self.exit_maintenance_mode()
            return False
        return True

    def enter_maintenance_mode(self, duration_ms: Optional[float] = None) -> None:
        if duration_ms is None:
            duration_ms = self.config.default_maintenance_ms
        with self._lock:
            self._maintenance_until = self._clock() + duration_ms / 1000.0
        logger.warning("Entering maintenance mode for %.0fms", duration_ms)

    def exit_maintenance_mode(self) -> None:
        with self._lock:
            was_active = self._maintenance_until is not None
            self._maintenance_until = None
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.reset()
        if was_active:
            logger.info("Exiting maintenance mode; all circuit breakers reset")

    def tick(self) -> Dict[str, str]:
        """Apply due maintenance expiry and open -> half-open transitions."""
        maintenance = self.in_maintenance
        with self._lock:
            breakers = list(self._breakers.values())
        states = {b.name: b.tick().value for b in breakers}
        if maintenance:
            logger.debug("Maintenance mode still active")
        return states

    # ------------------------------------------------------------------ #
    # Calls
    # ------------------------------------------------------------------ #

    async def execute_with_retry(self, operation: Operation, service_name: str = "suggestion_engine") -> Any:
        """Run ``operation`` with timeout and backoff; one breaker outcome per call.

        Raises :class:`CircuitOpenError` without calling ``operation`` when
        the breaker is open or maintenance mode is active. On total failure
        the last exception is re-raised (timeouts as
        :class:`OperationTimeoutError`).
        """
        if self.in_maintenance:
            raise CircuitOpenError("Suggestion system is in maintenance mode", reason=MAINTENANCE_MODE)
        breaker = self.breaker(service_name)
        if not breaker.allow_request():
            logger.warning("%s is OPEN - rejecting call", service_name)
            raise CircuitOpenError(f"Circuit breaker {service_name} is OPEN", reason=CIRCUIT_OPEN)

        timeout = self.config.operation_timeout_seconds
        last_exc: Optional[BaseException] = None
        last_error: Optional[SuggestionError] = None

        for attempt in range(self.retry_policy.attempts):
            try:
                result = operation()
                if inspect.isawaitable(result):
                    result = await asyncio.wait_for(result, timeout)
            except asyncio.TimeoutError as exc:
                last_error = OperationTimeoutError(
                    f"{service_name} timed out after {timeout}s", cause=exc
                )
                last_exc = last_error
            except Exception as exc:
                last_error = normalize_error(exc)
                last_exc = exc
            else:
                breaker.record_success()
                return result

            if not self.retry_policy.is_retryable(last_error) or attempt == self.retry_policy.max_retries:
                break
            await self.retry_policy.backoff(attempt, service_name, last_error)

        breaker.record_failure(last_exc)
        self._record_error(last_error, service_name)
        logger.error("Retry exhausted for %s: %s", service_name, last_error)
        raise last_exc

    async def generate_suggestions(
        self,
        generator: Generator,
        context: SuggestionContext,
        *,
        service_name: str = "suggestion_engine",
        cache_key: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> SuggestionResponse:
        """Ask the generator for suggestions; never raises.

        Successful results are written to the cache under ``cache_key``.
        Refused or failed calls are answered by the fallback chain.
        """
        started = self._clock()
        try:
            result = await self.execute_with_retry(generator, service_name)
        except CircuitOpenError as exc:
            return self._run_fallbacks(exc, context, service_name, cache_key, user_id)
        except Exception as exc:
            return self._run_fallbacks(normalize_error(exc), context, service_name, cache_key, user_id)

        if isinstance(result, SuggestionResponse):
            response = result
        else:
            suggestions = list(result or [])
            confidence = (
                sum(s.confidence for s in suggestions) / len(suggestions) if suggestions else 0.0
            )
            response = SuggestionResponse(suggestions=suggestions, confidence=confidence)
        response.processing_time_ms = (self._clock() - started) * 1000

        if self.cache is not None and cache_key and response.suggestions:
            self.cache.set(cache_key, list(response.suggestions), context, user_id)
        return response

    def handle_error(
        self,
        error: BaseException,
        context: SuggestionContext,
        service_name: str = "suggestion_engine",
        *,
        cache_key: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> SuggestionResponse:
        """Record ``error`` against ``service_name`` and answer from the fallback chain."""
        try:
            classified = normalize_error(error)
            self._record_error(classified, service_name)
            breaker = self.breaker(service_name)
            if breaker.state == CircuitState.OPEN:
                classified = CircuitOpenError(
                    f"Circuit breaker {service_name} is OPEN", reason=CIRCUIT_OPEN, cause=error
                )
            else:
                breaker.record_failure(error)
            return self._run_fallbacks(classified, context, service_name, cache_key, user_id)
        except Exception as exc:
            logger.error("Error handling failed for %s: %s", service_name, exc)
            return SuggestionResponse(
                suggestions=[],
                fallback_used=True,
                error=f"Service temporarily unavailable: {exc}",
            )

    def handle_completion_error(self, error: BaseException, partial_input: str) -> CompletionResult:
        """Static completions for outages of the completion path."""
        classified = normalize_error(error)
        self._record_error(classified, "auto_completion")
        matches: List[CompletionMatch] = []
        if classified.code in (SuggestionErrorCode.TIMEOUT, SuggestionErrorCode.AI_SERVICE_UNAVAILABLE):
            matches = [
                CompletionMatch(
                    text=command,
                    intent=IntentCategory.HELP_REQUEST,
                    confidence=0.5,
                    match_type=MatchType.FUZZY,
                    reasoning="Basic fallback completion",
                )
                for command in basic_completions(partial_input)
            ]
        return CompletionResult(
            matches=matches,
            confidence=0.5 if matches else 0.0,
            partial_input=partial_input,
            fallback_used=True,
        )

    def set_fallback_enabled(self, fallback_type: Union[FallbackType, str], enabled: bool) -> None:
        self.fallbacks.set_enabled(FallbackType(fallback_type), enabled)

    # ------------------------------------------------------------------ #
    # Error statistics
    # ------------------------------------------------------------------ #

    def error_stats(self) -> Dict[str, Any]:
        with self._stats_lock:
            return {
                "total_errors": self._total_errors,
                "errors_by_code": dict(self._errors_by_code),
                "errors_by_service": dict(self._errors_by_service),
                "recent_errors": list(self._recent_errors),
            }

    def clear_error_stats(self) -> None:
        with self._stats_lock:
            self._total_errors = 0
            self._errors_by_code.clear()
            self._errors_by_service.clear()
            self._recent_errors.clear()

    # ------------------------------------------------------------------ #
    # Internals
    # ------------------------------------------------------------------ #

    def _run_fallbacks(
        self,
        error: SuggestionError,
        context: SuggestionContext,
        service_name: str,
        cache_key: Optional[str],
        user_id: Optional[str],
    ) -> SuggestionResponse:
        if isinstance(error, CircuitOpenError):
            logger.info("Short-circuiting %s to fallbacks (%s)", service_name, error.reason)
        return self.fallbacks.run(
            context, error, service_name=service_name, cache_key=cache_key, user_id=user_id
        )

    def _record_error(self, error: SuggestionError, service_name: str) -> None:
        with self._stats_lock:
            self._total_errors += 1
            self._errors_by_code[error.code.value] += 1
            self._errors_by_service[service_name] += 1
            self._recent_errors.append({
                "timestamp": self._clock(),
                "code": error.code.value,
                "service": service_name,
                "message": error.message,
                "resolved": False,
            })

    def _forward_transition(self, name: str, old: CircuitState, new: CircuitState) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(name, old, new)
            except Exception as exc:
                logger.warning("State-change listener failed: %s", exc)
