"""
sitespeak_suggest.service

:class:`SuggestionService` wires one index, match engine, cache, resilience
gateway and performance monitor together. Applications construct it once
and pass it to whatever needs completions or suggestions.
"""

from __future__ import annotations

import asyncio
import logging
import threading
import time
from collections import defaultdict
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Union

from .cache import SuggestionCache
from .completion import CompletionIndex, MatchEngine
from .config import SuggestionConfig
from .exceptions import ServiceUnavailableError
from .health import health_report
from .models import (
    CommandSuggestion,
    CompletionMatch,
    CompletionResult,
    IndexEntry,
    SuggestionContext,
    SuggestionResponse,
)
from .monitoring import PerformanceMonitor
from .profiles import InMemoryProfileStore, UserProfileStore
from .resilience import ResilienceGateway
from .resilience.circuit_breaker import CircuitState
from .scheduler import BackgroundReconciler

logger = logging.getLogger(__name__)

SuggestionGenerator = Callable[[SuggestionContext, Optional[str]], Awaitable[List[CommandSuggestion]]]
Listener = Callable[[Dict[str, Any]], None]

EVENTS = ("completion", "suggestions", "fallback", "circuit_state")


def completion_key(partial_input: str, user_id: Optional[str], max_results: int) -> str:
    return f"completion:{user_id or '*'}:{max_results}:{partial_input.lower()}"


def suggestion_key(context: SuggestionContext, user_id: Optional[str]) -> str:
    return f"suggestions:{user_id or '*'}:{context.partition_key}"


class SuggestionService:
    """Completions and AI suggestions behind one object.

    ``generator`` is an async callable ``(context, user_id) -> suggestions``;
    without one, suggestion requests are answered by the fallback chain.
    """

    def __init__(
        self,
        config: Optional[SuggestionConfig] = None,
        generator: Optional[SuggestionGenerator] = None,
        profile_store: Optional[UserProfileStore] = None,
        *,
        clock: Callable[[], float] = time.time,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config or SuggestionConfig()
        self.generator = generator
        self.profile_store: UserProfileStore = profile_store or InMemoryProfileStore()

        self.index = CompletionIndex(self.config.index, clock=clock)
        self.engine = MatchEngine(self.config.matching)
        self.cache = SuggestionCache(self.config.cache, clock=clock)
        self.gateway = ResilienceGateway(self.config.gateway, self.cache, clock=clock, sleep=sleep)
        self.monitor = PerformanceMonitor(self.config.monitoring)

        self._lock = threading.Lock()
        self._listeners: Dict[str, List[Listener]] = defaultdict(list)
        self._seeded_users: set = set()
        self.gateway.on_state_change(self._on_circuit_change)

    # ------------------------------------------------------------------ #
    # Observers
    # ------------------------------------------------------------------ #

    def subscribe(self, event: str, callback: Listener) -> Callable[[], None]:
        """Register ``callback(payload)`` for ``event``; returns an unsubscribe function."""
        if event not in EVENTS:
            raise ValueError(f"Unknown event '{event}'. Expected one of: {', '.join(EVENTS)}")
        with self._lock:
            self._listeners[event].append(callback)

        def unsubscribe() -> None:
            with self._lock:
                if callback in self._listeners[event]:
                    self._listeners[event].remove(callback)

        return unsubscribe

    def _emit(self, event: str, payload: Dict[str, Any]) -> None:
        with self._lock:
            listeners = list(self._listeners.get(event, ()))
        for listener in listeners:
            try:
                listener(payload)
            except Exception as exc:
                logger.warning("Listener for %s failed: %s", event, exc)

    def _on_circuit_change(self, name: str, old: CircuitState, new: CircuitState) -> None:
        self._emit("circuit_state", {"service": name, "old": old.value, "new": new.value})

    # ------------------------------------------------------------------ #
    # Index
    # ------------------------------------------------------------------ #

    def add_commands(self, items: Iterable[Union[IndexEntry, CommandSuggestion]],
                     user_id: Optional[str] = None) -> int:
        return self.index.add(items, user_id)

    def _ensure_user_seeded(self, user_id: Optional[str]) -> None:
        if not user_id:
            return
        with self._lock:
            if user_id in self._seeded_users:
                return
            self._seeded_users.add(user_id)
        self.index.seed_user(user_id, self.profile_store)

    # ------------------------------------------------------------------ #
    # Completions
    # ------------------------------------------------------------------ #

    def get_completions(
        self,
        partial_input: str,
        context: SuggestionContext,
        user_id: Optional[str] = None,
        max_results: Optional[int] = None,
    ) -> CompletionResult:
        """Cached completions for ``partial_input``, computing them on a miss."""
        started = time.perf_counter()
        limit = max_results or self.config.matching.max_results
        key = completion_key(partial_input, user_id, limit)
        self._ensure_user_seeded(user_id)

        with self.monitor.timer("cache"):
            entry = self.cache.get(key, context, user_id)

        cache_hit = entry is not None and isinstance(entry.value, CompletionResult)
        if cache_hit:
            result = entry.value
        else:
            try:
                result = self.engine.complete(partial_input, self.index, user_id=user_id, max_results=limit)
            except Exception as exc:
                logger.error("Completion failed for %r: %s", partial_input, exc)
                result = self.gateway.handle_completion_error(exc, partial_input)
            if result.matches and not result.fallback_used:
                self.cache.set(key, result, context, user_id,
                               ttl=self.config.cache.completion_ttl_seconds)

        elapsed_ms = (time.perf_counter() - started) * 1000
        self.monitor.record("completion", elapsed_ms)
        self._emit("completion", {
            "partial_input": partial_input,
            "matches": len(result.matches),
            "confidence": result.confidence,
            "cache_hit": cache_hit,
            "processing_time_ms": elapsed_ms,
        })
        return result

    def learn_from_selection(
        self,
        selection: Union[CompletionMatch, CommandSuggestion, str],
        partial_input: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> bool:
        """Record an accepted completion; returns False for unknown commands."""
        if isinstance(selection, CompletionMatch):
            text = selection.text
        elif isinstance(selection, CommandSuggestion):
            text = selection.command
        else:
            text = selection

        self._ensure_user_seeded(user_id)
        known = self.index.learn_from_selection(text, user_id)

        # Global frequencies move too, so anonymous completions go stale with the user's.
        prefixes = ("completion:*:", f"completion:{user_id}:") if user_id else ("completion:*:",)
        suffix = f":{partial_input.lower()}" if partial_input else ""
        self.cache.delete_matching(lambda key: key.startswith(prefixes) and key.endswith(suffix))

        if user_id:
            try:
                self.profile_store.set(user_id, self.index.export_user(user_id))
            except Exception as exc:
                logger.warning("Failed to persist profile for %s: %s", user_id, exc)
        return known

    # ------------------------------------------------------------------ #
    # Suggestions
    # ------------------------------------------------------------------ #

    async def get_suggestions(self, context: SuggestionContext,
                              user_id: Optional[str] = None) -> SuggestionResponse:
        """Generator suggestions for ``context``; never raises."""
        started = time.perf_counter()
        key = suggestion_key(context, user_id)

        entry = self.cache.get(key, context, user_id)
        if entry is not None and isinstance(entry.value, list):
            suggestions = list(entry.value)
            response = SuggestionResponse(
                suggestions=suggestions,
                confidence=sum(s.confidence for s in suggestions) / len(suggestions) if suggestions else 0.0,
                cache_hit=True,
            )
        elif self.generator is None:
            response = self.gateway.fallbacks.run(
                context,
                ServiceUnavailableError("No suggestion generator configured"),
                cache_key=key,
                user_id=user_id,
            )
        else:
            generator = self.generator
            response = await self.gateway.generate_suggestions(
                lambda: generator(context, user_id),
                context,
                cache_key=key,
                user_id=user_id,
            )

        response.processing_time_ms = (time.perf_counter() - started) * 1000
        self.monitor.record("suggestion", response.processing_time_ms)
        payload = {
            "suggestions": len(response.suggestions),
            "fallback_used": response.fallback_used,
            "strategy": response.strategy,
            "cache_hit": response.cache_hit,
            "processing_time_ms": response.processing_time_ms,
        }
        self._emit("suggestions", payload)
        if response.fallback_used:
            self._emit("fallback", {"strategy": response.strategy, "error": response.error})
        return response

    # ------------------------------------------------------------------ #
    # Maintenance
    # ------------------------------------------------------------------ #

    def tick(self) -> Dict[str, Any]:
        """Reconcile the cache and apply due breaker/maintenance transitions."""
        return {"cache": self.cache.reconcile(), "breakers": self.gateway.tick()}

    def start_background(self, interval: Optional[float] = None) -> BackgroundReconciler:
        reconciler = BackgroundReconciler(
            self.tick, interval or self.config.cache.reconcile_interval_seconds
        )
        reconciler.start()
        return reconciler

    def health(self) -> Dict[str, Any]:
        return health_report(self)

    def stats(self) -> Dict[str, Any]:
        return {
            "index": self.index.stats(),
            "cache": self.cache.stats(),
            "errors": self.gateway.error_stats(),
            "breakers": self.gateway.breaker_status(),
            "latency": self.monitor.summary(),
        }
