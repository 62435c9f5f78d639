"""Exception hierarchy for the suggestion subsystem.

Every failure that crosses the generator boundary is expressed as a
:class:`SuggestionError` carrying a :class:`SuggestionErrorCode`. Raw
exceptions are classified by :func:`normalize_error` before the retry and
fallback machinery looks at them.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Optional


class SuggestionErrorCode(str, Enum):
    TIMEOUT = "TIMEOUT"
    AI_SERVICE_UNAVAILABLE = "AI_SERVICE_UNAVAILABLE"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    PERMISSIONS_ERROR = "PERMISSIONS_ERROR"
    INVALID_INPUT = "INVALID_INPUT"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


NON_RETRYABLE_CODES = frozenset({
    SuggestionErrorCode.PERMISSIONS_ERROR,
    SuggestionErrorCode.INVALID_INPUT,
})


class SuggestionError(Exception):
    """Base class for all classified errors raised by the subsystem.

    Stores optional context that can be rendered in logs and error stats.
    """

    default_code: SuggestionErrorCode = SuggestionErrorCode.UNKNOWN_ERROR

    def __init__(
        self,
        message: str,
        *,
        code: Optional[SuggestionErrorCode] = None,
        retryable: Optional[bool] = None,
        fallback_available: bool = True,
        cause: Optional[BaseException] = None,
        payload: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.code = code or self.default_code
        self.retryable = (self.code not in NON_RETRYABLE_CODES) if retryable is None else retryable
        self.fallback_available = fallback_available
        self.cause = cause
        self.payload = payload or {}

    @property
    def message(self) -> str:
        return str(self)

    def to_dict(self) -> dict[str, Any]:
        """Serializable representation for error stats and health reports."""
        data = {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "message": str(self),
            "retryable": self.retryable,
        }
        if self.payload:
            data["payload"] = self.payload
        if self.cause:
            data["cause"] = repr(self.cause)
        return data


class OperationTimeoutError(SuggestionError):
    """The external generator did not answer within its timeout."""
    default_code = SuggestionErrorCode.TIMEOUT


class ServiceUnavailableError(SuggestionError):
    """The generator signalled it cannot serve requests right now."""
    default_code = SuggestionErrorCode.AI_SERVICE_UNAVAILABLE


class RateLimitError(SuggestionError):
    default_code = SuggestionErrorCode.RATE_LIMIT_EXCEEDED


class PermissionDeniedError(SuggestionError):
    default_code = SuggestionErrorCode.PERMISSIONS_ERROR


class InvalidInputError(SuggestionError):
    default_code = SuggestionErrorCode.INVALID_INPUT


class CircuitOpenError(ServiceUnavailableError):
    """Raised without attempting the call when a breaker or maintenance mode refuses it."""

    def __init__(self, message: str, *, reason: str = "CIRCUIT_OPEN", **kwargs: Any) -> None:
        kwargs.setdefault("retryable", False)
        super().__init__(message, **kwargs)
        self.reason = reason


class ConfigError(ValueError):
    """Raised when component configuration is missing or malformed."""


# Message fragments checked in order; first hit wins.
_MESSAGE_RULES: tuple[tuple[tuple[str, ...], SuggestionErrorCode], ...] = (
    (("timeout", "timed out"), SuggestionErrorCode.TIMEOUT),
    (("rate limit",), SuggestionErrorCode.RATE_LIMIT_EXCEEDED),
    (("api", "service"), SuggestionErrorCode.AI_SERVICE_UNAVAILABLE),
    (("permission",), SuggestionErrorCode.PERMISSIONS_ERROR),
    (("validation", "invalid"), SuggestionErrorCode.INVALID_INPUT),
)


def classify_message(message: str) -> SuggestionErrorCode:
    lowered = message.lower()
    for fragments, code in _MESSAGE_RULES:
        if any(fragment in lowered for fragment in fragments):
            return code
    return SuggestionErrorCode.UNKNOWN_ERROR


def normalize_error(exc: BaseException) -> SuggestionError:
    """Return ``exc`` as a classified :class:`SuggestionError`."""
    if isinstance(exc, SuggestionError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return OperationTimeoutError(str(exc) or "operation timeout", cause=exc)
    message = str(exc) or exc.__class__.__name__
    return SuggestionError(message, code=classify_message(message), cause=exc)
