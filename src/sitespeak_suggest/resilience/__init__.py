"""Circuit breaking, retry and fallback around the suggestion generator."""

from .circuit_breaker import CircuitBreaker, CircuitState
from .fallback import FallbackChain, FallbackStrategy, template_suggestions
from .gateway import ResilienceGateway
from .retry import RetryPolicy

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "FallbackChain",
    "FallbackStrategy",
    "ResilienceGateway",
    "RetryPolicy",
    "template_suggestions",
]
