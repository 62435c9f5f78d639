"""Exponential backoff policy for generator calls."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional

from ..config import RetryConfig
from ..exceptions import SuggestionError, SuggestionErrorCode

logger = logging.getLogger("sitespeak_suggest.retry")

Sleeper = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """Backoff schedule and retryability rules.

    Attempts are numbered from 0; the delay after attempt ``n`` is
    ``min(base * multiplier ** n, max)``. Delays are configured in
    milliseconds and returned in seconds.
    """

    def __init__(self, config: Optional[RetryConfig] = None, *, sleep: Sleeper = asyncio.sleep):
        self.config = config or RetryConfig()
        self._sleep = sleep

    @property
    def max_retries(self) -> int:
        return self.config.max_retries

    @property
    def attempts(self) -> int:
        """Total tries including the first."""
        return self.config.max_retries + 1

    def delay(self, attempt: int) -> float:
        cfg = self.config
        delay_ms = cfg.base_delay_ms * (cfg.backoff_multiplier ** attempt)
        return min(delay_ms, cfg.max_delay_ms) / 1000.0

    def schedule(self) -> List[float]:
        """Delays in seconds between consecutive attempts."""
        return [self.delay(attempt) for attempt in range(self.config.max_retries)]

    def is_retryable(self, error: SuggestionError) -> bool:
        return error.retryable and self.is_retryable_code(error.code)

    def is_retryable_code(self, code: SuggestionErrorCode) -> bool:
        return code in self.config.retryable_errors

    async def backoff(self, attempt: int, service_name: str, error: SuggestionError) -> None:
        delay = self.delay(attempt)
        logger.warning(
            "Retry %d/%d for %s after %.2fs - %s",
            attempt + 1,
            self.config.max_retries,
            service_name,
            delay,
            error,
        )
        await self._sleep(delay)
