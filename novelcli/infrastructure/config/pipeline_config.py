"""Typed configuration for each pipeline component.

Every component takes an explicit config dataclass with defaults; values are
validated in ``__post_init__`` so that a bad setting fails at startup rather
than in the middle of a run. ``PipelineConfig.from_settings`` builds the whole
tree from the layered settings store.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Optional

from novelcli.domain.errors import validation_error
from novelcli.infrastructure.config.settings import get_config

logger = logging.getLogger(__name__)

HOUR = 60 * 60


def _require(condition: bool, message: str, name: str, value: object) -> None:
    if not condition:
        raise validation_error(message, field=name, value=value)


@dataclass
class RetryPolicy:
    """Exponential backoff used by ``with_retry``."""
    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 1.5

    def __post_init__(self):
        _require(self.max_attempts >= 1, "max_attempts must be at least 1", "max_attempts", self.max_attempts)
        _require(self.base_delay >= 0, "base_delay must not be negative", "base_delay", self.base_delay)
        _require(self.backoff_multiplier >= 1, "backoff_multiplier must be at least 1",
                 "backoff_multiplier", self.backoff_multiplier)

    def delay_for(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        return self.base_delay * self.backoff_multiplier ** (attempt - 1)


@dataclass
class NamespaceConfig:
    max_size: int
    ttl: float # seconds

    def __post_init__(self):
        _require(self.max_size >= 1, "Cache namespace max_size must be at least 1", "max_size", self.max_size)
        _require(self.ttl > 0, "Cache namespace ttl must be positive", "ttl", self.ttl)


def _default_namespaces() -> Dict[str, NamespaceConfig]:
    return {
        "translation": NamespaceConfig(max_size=2000, ttl=2 * HOUR),
        "api": NamespaceConfig(max_size=1000, ttl=1 * HOUR),
        "content": NamespaceConfig(max_size=500, ttl=24 * HOUR),
        "scraping": NamespaceConfig(max_size=1000, ttl=30 * 60),
    }


@dataclass
class CacheConfig:
    namespaces: Dict[str, NamespaceConfig] = field(default_factory=_default_namespaces)
    cleanup_interval: float = 15 * 60
    enabled: bool = True

    def __post_init__(self):
        _require(self.cleanup_interval > 0, "cleanup_interval must be positive",
                 "cleanup_interval", self.cleanup_interval)


@dataclass
class CircuitBreakerConfig:
    failure_threshold: int = 5
    reset_timeout: float = 60.0
    max_reset_timeout: float = 300.0

    def __post_init__(self):
        _require(self.failure_threshold >= 1, "failure_threshold must be at least 1",
                 "failure_threshold", self.failure_threshold)
        _require(0 < self.reset_timeout <= self.max_reset_timeout,
                 "reset_timeout must be positive and not exceed max_reset_timeout",
                 "reset_timeout", self.reset_timeout)


@dataclass
class HealthThresholds:
    """Error rates (percent) and consecutive failure counts per health status."""
    critical_consecutive: int = 10
    critical_error_rate: float = 50.0
    degraded_consecutive: int = 5
    degraded_error_rate: float = 25.0
    warning_error_rate: float = 10.0


@dataclass
class AlertThresholds:
    error_rate: float = 25.0        # percent
    consecutive_failures: int = 5
    response_time_ms: float = 10000.0
    max_alerts: int = 100


@dataclass
class NavigatorConfig:
    chapter_delay: float = 3.0
    base_delay: float = 1.0
    min_delay: float = 0.5
    max_delay: float = 10.0
    adaptive_delay: bool = True
    auto_continue: bool = True
    max_chapters: int = 1000
    max_consecutive_errors: int = 3
    initial_processing_time: float = 5.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)

    def __post_init__(self):
        _require(0 <= self.min_delay <= self.max_delay, "min_delay must be between 0 and max_delay",
                 "min_delay", self.min_delay)
        _require(self.chapter_delay >= 0, "chapter_delay must not be negative", "chapter_delay", self.chapter_delay)
        _require(self.max_chapters >= 1, "max_chapters must be at least 1", "max_chapters", self.max_chapters)
        _require(self.max_consecutive_errors >= 1, "max_consecutive_errors must be at least 1",
                 "max_consecutive_errors", self.max_consecutive_errors)


@dataclass
class AdaptiveConcurrencyConfig:
    """Thresholds for resizing the batch semaphore between batches."""
    enabled: bool = True
    check_interval: float = 5.0
    scale_up_queue_length: int = 5
    scale_up_max_utilization: float = 0.7
    scale_up_factor: float = 2.0
    max_concurrency: int = 20
    scale_down_min_utilization: float = 0.9
    scale_down_factor: float = 0.8
    min_concurrency: int = 2
    wait_time_threshold: float = 1.0 # seconds
    wait_time_step: int = 2
    wait_time_max_concurrency: int = 10


@dataclass
class BatchConfig:
    batch_size: int = 3
    max_concurrency: int = 2
    delay_between_batches: float = 1.0
    adaptive: AdaptiveConcurrencyConfig = field(default_factory=AdaptiveConcurrencyConfig)

    def __post_init__(self):
        _require(self.batch_size >= 1, "batch_size must be at least 1", "batch_size", self.batch_size)
        _require(self.max_concurrency >= 1, "max_concurrency must be at least 1",
                 "max_concurrency", self.max_concurrency)
        _require(self.delay_between_batches >= 0, "delay_between_batches must not be negative",
                 "delay_between_batches", self.delay_between_batches)


@dataclass
class PipelineConfig:
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    cache: CacheConfig = field(default_factory=CacheConfig)
    circuit_breaker: CircuitBreakerConfig = field(default_factory=CircuitBreakerConfig)
    health: HealthThresholds = field(default_factory=HealthThresholds)
    alerts: AlertThresholds = field(default_factory=AlertThresholds)
    navigator: NavigatorConfig = field(default_factory=NavigatorConfig)
    batch: BatchConfig = field(default_factory=BatchConfig)

    @classmethod
    def from_settings(cls, overrides: Optional[Dict[str, object]] = None) -> "PipelineConfig":
        """Builds the configuration tree from ``get_config`` lookups.

        Args:
            overrides: Values taking precedence over settings, keyed like the
                settings (e.g. ``{'batch.batch_size': 5}``). ``None`` values are ignored.
        """
        overrides = {k: v for k, v in (overrides or {}).items() if v is not None}

        def value(key: str, default):
            if key in overrides:
                return overrides[key]
            return get_config(key, default)

        defaults = cls()
        retry = RetryPolicy(
            max_attempts=int(value('retry.max_attempts', defaults.retry.max_attempts)),
            base_delay=float(value('retry.base_delay', defaults.retry.base_delay)),
            backoff_multiplier=float(value('retry.backoff_multiplier', defaults.retry.backoff_multiplier)),
        )
        namespaces = {
            name: NamespaceConfig(
                max_size=int(value(f'cache.{name}.max_size', ns.max_size)),
                ttl=float(value(f'cache.{name}.ttl', ns.ttl)),
            )
            for name, ns in defaults.cache.namespaces.items()
        }
        cache = CacheConfig(
            namespaces=namespaces,
            cleanup_interval=float(value('cache.cleanup_interval', defaults.cache.cleanup_interval)),
            enabled=bool(value('cache.enabled', defaults.cache.enabled)),
        )
        breaker = CircuitBreakerConfig(
            failure_threshold=int(value('circuit_breaker.failure_threshold', defaults.circuit_breaker.failure_threshold)),
            reset_timeout=float(value('circuit_breaker.reset_timeout', defaults.circuit_breaker.reset_timeout)),
            max_reset_timeout=float(value('circuit_breaker.max_reset_timeout', defaults.circuit_breaker.max_reset_timeout)),
        )
        nav_defaults = defaults.navigator
        navigator = NavigatorConfig(
            chapter_delay=float(value('navigation.chapter_delay', nav_defaults.chapter_delay)),
            base_delay=float(value('navigation.base_delay', nav_defaults.base_delay)),
            min_delay=float(value('navigation.min_delay', nav_defaults.min_delay)),
            max_delay=float(value('navigation.max_delay', nav_defaults.max_delay)),
            adaptive_delay=bool(value('navigation.adaptive_delay', nav_defaults.adaptive_delay)),
            auto_continue=bool(value('navigation.auto_continue', nav_defaults.auto_continue)),
            max_chapters=int(value('navigation.max_chapters', nav_defaults.max_chapters)),
            max_consecutive_errors=int(value('navigation.max_consecutive_errors', nav_defaults.max_consecutive_errors)),
            retry=retry,
        )
        batch_defaults = defaults.batch
        batch = BatchConfig(
            batch_size=int(value('batch.batch_size', batch_defaults.batch_size)),
            max_concurrency=int(value('batch.max_concurrency', batch_defaults.max_concurrency)),
            delay_between_batches=float(value('batch.delay_between_batches', batch_defaults.delay_between_batches)),
            adaptive=AdaptiveConcurrencyConfig(
                enabled=bool(value('batch.adaptive_concurrency', True)),
                check_interval=float(value('batch.check_interval', batch_defaults.adaptive.check_interval)),
            ),
        )
        config = cls(retry=retry, cache=cache, circuit_breaker=breaker, navigator=navigator, batch=batch)
        logger.debug(f"Pipeline configuration built: {config}")
        return config
