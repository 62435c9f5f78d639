"""Typed configuration for the suggestion subsystem.

One pydantic model per component, every field defaulted explicitly.
:class:`SuggestionConfig` is the root and can be read from YAML or from
``SITESPEAK_*`` environment variables.
"""

from __future__ import annotations

import os
from enum import Enum
from pathlib import Path
from typing import List

import yaml
from pydantic import BaseModel, Field, field_validator

from .exceptions import SuggestionErrorCode


class EvictionStrategyName(str, Enum):
    LRU = "lru"
    LFU = "lfu"
    TTL = "ttl"
    ADAPTIVE = "adaptive"


class FallbackType(str, Enum):
    CACHE = "cache"
    TEMPLATE = "template"
    MINIMAL = "minimal"
    OFFLINE = "offline"


class MatchingConfig(BaseModel):
    min_input_length: int = Field(default=2, ge=0, description="Shorter inputs short-circuit")
    max_results: int = Field(default=10, ge=1)
    fuzzy_threshold: float = Field(default=0.5, description="Levenshtein ratio must exceed this")
    semantic_threshold: float = Field(default=0.3, description="Token overlap must exceed this")
    pattern_matches_per_pattern: int = Field(default=3, ge=0)
    include_semantic: bool = True

    @field_validator("fuzzy_threshold", "semantic_threshold")
    def validate_threshold(cls, v):
        if not 0 <= v <= 1:
            raise ValueError("Thresholds must be between 0 and 1")
        return v


class IndexConfig(BaseModel):
    max_entries: int = Field(default=5000, ge=1, description="Trim triggers above this size")
    trim_to: int = Field(default=3000, ge=1, description="Entries kept after a trim")
    seed_defaults: bool = True

    @field_validator("trim_to")
    def validate_trim_to(cls, v, info):
        max_entries = info.data.get("max_entries") if info.data else None
        if max_entries is not None and v > max_entries:
            raise ValueError("trim_to cannot exceed max_entries")
        return v


class CacheConfig(BaseModel):
    enabled: bool = True
    max_entries: int = Field(default=10000, ge=1)
    ttl_seconds: float = Field(default=300.0, gt=0)
    completion_ttl_seconds: float = Field(default=60.0, gt=0)
    strategy: EvictionStrategyName = EvictionStrategyName.ADAPTIVE
    reconcile_interval_seconds: float = Field(default=60.0, gt=0)
    min_entries: int = Field(default=1000, ge=1, description="Floor for automatic shrinking")
    max_entries_ceiling: int = Field(default=20000, ge=1, description="Cap for automatic growth")
    # Hit-rate thresholds driving strategy and capacity re-tuning.
    lfu_below_hit_rate: float = 0.6
    lru_below_efficiency: float = 0.5
    grow_above_hit_rate: float = 0.8
    grow_below_utilization: float = 0.8
    shrink_below_hit_rate: float = 0.4
    resize_factor: float = Field(default=0.2, gt=0, lt=1)


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, ge=1)
    recovery_timeout_seconds: float = Field(default=30.0, ge=0)
    half_open_success_threshold: int = Field(default=3, ge=1)
    services: List[str] = Field(
        default_factory=lambda: [
            "suggestion_engine",
            "auto_completion",
            "context_discovery",
            "cache_manager",
        ]
    )


class RetryConfig(BaseModel):
    max_retries: int = Field(default=3, ge=0)
    base_delay_ms: float = Field(default=1000.0, ge=0)
    max_delay_ms: float = Field(default=10000.0, ge=0)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    retryable_errors: List[SuggestionErrorCode] = Field(
        default_factory=lambda: [
            SuggestionErrorCode.TIMEOUT,
            SuggestionErrorCode.AI_SERVICE_UNAVAILABLE,
            SuggestionErrorCode.RATE_LIMIT_EXCEEDED,
            SuggestionErrorCode.UNKNOWN_ERROR,
        ]
    )


class FallbackStrategyConfig(BaseModel):
    type: FallbackType
    priority: int
    enabled: bool = True
    description: str = ""


def _default_fallbacks() -> List[FallbackStrategyConfig]:
    return [
        FallbackStrategyConfig(type=FallbackType.CACHE, priority=1,
                               description="Use cached suggestions from previous requests"),
        FallbackStrategyConfig(type=FallbackType.TEMPLATE, priority=2,
                               description="Use predefined template suggestions"),
        FallbackStrategyConfig(type=FallbackType.MINIMAL, priority=3,
                               description="Provide a single help suggestion"),
        FallbackStrategyConfig(type=FallbackType.OFFLINE, priority=4,
                               description="Offline mode with static suggestions"),
    ]


class GatewayConfig(BaseModel):
    operation_timeout_seconds: float = Field(default=5.0, gt=0)
    default_maintenance_ms: int = Field(default=300000, ge=0)
    recent_error_limit: int = Field(default=100, ge=1)
    circuit_breaker: CircuitBreakerConfig = Field(default_factory=CircuitBreakerConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    fallback_strategies: List[FallbackStrategyConfig] = Field(default_factory=_default_fallbacks)


class MonitoringConfig(BaseModel):
    completion_target_ms: float = 50.0
    cache_target_ms: float = 10.0
    suggestion_target_ms: float = 200.0
    window: int = Field(default=1000, ge=1, description="Samples kept per operation")


class SuggestionConfig(BaseModel):
    """Root configuration for :class:`~sitespeak_suggest.service.SuggestionService`."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    index: IndexConfig = Field(default_factory=IndexConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    gateway: GatewayConfig = Field(default_factory=GatewayConfig)
    monitoring: MonitoringConfig = Field(default_factory=MonitoringConfig)

    @classmethod
    def from_file(cls, path: Path) -> "SuggestionConfig":
        """Load configuration from a YAML file."""
        path = Path(path)
        if not path.exists():
            raise FileNotFoundError(f"Configuration file not found: {path}")

        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}

        return cls(**data)

    @classmethod
    def from_env(cls) -> "SuggestionConfig":
        """Create configuration from environment variables.

        Environment variables (all optional):
          - SITESPEAK_CACHE_MAX_ENTRIES
          - SITESPEAK_CACHE_TTL_SECONDS
          - SITESPEAK_CACHE_STRATEGY (lru|lfu|ttl|adaptive)
          - SITESPEAK_RETRY_MAX_RETRIES
          - SITESPEAK_OPERATION_TIMEOUT
        """
        config = cls()

        max_entries = os.getenv("SITESPEAK_CACHE_MAX_ENTRIES")
        ttl = os.getenv("SITESPEAK_CACHE_TTL_SECONDS")
        strategy = os.getenv("SITESPEAK_CACHE_STRATEGY")
        max_retries = os.getenv("SITESPEAK_RETRY_MAX_RETRIES")
        timeout = os.getenv("SITESPEAK_OPERATION_TIMEOUT")

        cache_data = config.cache.model_dump()
        if max_entries:
            cache_data["max_entries"] = int(max_entries)
        if ttl:
            cache_data["ttl_seconds"] = float(ttl)
        if strategy:
            cache_data["strategy"] = strategy.lower()
        config.cache = CacheConfig(**cache_data)

        gateway_data = config.gateway.model_dump()
        if max_retries:
            gateway_data["retry"]["max_retries"] = int(max_retries)
        if timeout:
            gateway_data["operation_timeout_seconds"] = float(timeout)
        config.gateway = GatewayConfig(**gateway_data)

        return config

    def to_file(self, path: Path) -> None:
        """Write configuration to a YAML file."""
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.safe_dump(self.model_dump(mode="json"), f, sort_keys=False)
