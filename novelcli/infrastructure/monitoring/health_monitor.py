"""Per-provider health tracking with circuit breakers and alerting.

The monitor records the outcome of every remote call, derives a health status
per provider, drives a three-state circuit breaker, and raises de-duplicated
alerts. It never blocks calls itself; callers consult ``is_available``.
"""

import enum
import logging
import math
import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional

from novelcli.domain.events.api_events import CircuitBreakerStateChanged, HealthAlertRaised, dispatch_event
from novelcli.infrastructure.config.pipeline_config import (
    AlertThresholds, CircuitBreakerConfig, HealthThresholds,
)

logger = logging.getLogger(__name__)

MAX_RESPONSE_TIMES = 1000
MAX_HOURLY_BUCKETS = 168 # one week
HOUR = 3600


class HealthStatus(str, enum.Enum):
    HEALTHY = "healthy"
    WARNING = "warning"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_STATE_ORDER = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


class CircuitBreaker:
    """Three-state breaker fed with success/failure signals.

    The open -> half-open transition is evaluated lazily whenever the state is
    read or a signal arrives. Signals received while still open are ignored.
    """

    def __init__(
        self,
        provider: str,
        config: Optional[CircuitBreakerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.provider = provider
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at: Optional[float] = None
        self.next_retry_time: Optional[float] = None

    @property
    def state(self) -> CircuitState:
        if self._state is CircuitState.OPEN and self.next_retry_time is not None \
                and self._clock() >= self.next_retry_time:
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    def _transition(self, new_state: CircuitState) -> None:
        old_state = self._state
        self._state = new_state
        if new_state is CircuitState.OPEN:
            logger.warning(
                f"Circuit breaker OPEN for {self.provider} after {self.failure_count} failures; "
                f"next retry at {self.next_retry_time:.0f}"
            )
        else:
            logger.info(f"Circuit breaker for {self.provider}: {old_state.value} -> {new_state.value}")
        dispatch_event(CircuitBreakerStateChanged(
            provider=self.provider, old_state=old_state.value, new_state=new_state.value,
            failure_count=self.failure_count, next_retry_time=self.next_retry_time,
        ))

    def record_success(self) -> None:
        state = self.state
        if state is CircuitState.CLOSED:
            self.failure_count = 0
        elif state is CircuitState.HALF_OPEN:
            self.failure_count = 0
            self.opened_at = None
            self.next_retry_time = None
            self._transition(CircuitState.CLOSED)

    def record_failure(self) -> None:
        state = self.state
        now = self._clock()
        if state is CircuitState.CLOSED:
            self.failure_count += 1
            if self.failure_count >= self.config.failure_threshold:
                self.opened_at = now
                self.next_retry_time = now + self.config.reset_timeout
                self._transition(CircuitState.OPEN)
        elif state is CircuitState.HALF_OPEN:
            self.failure_count += 1
            cooldown = min(self.config.max_reset_timeout, self.config.reset_timeout * 2 ** self.failure_count)
            self.opened_at = now
            self.next_retry_time = now + cooldown
            self._transition(CircuitState.OPEN)

    def reset(self) -> None:
        self._state = CircuitState.CLOSED
        self.failure_count = 0
        self.opened_at = None
        self.next_retry_time = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "failure_count": self.failure_count,
            "opened_at": self.opened_at,
            "next_retry_time": self.next_retry_time,
        }


@dataclass
class HourlyBucket:
    hour: int # hours since epoch
    requests: int = 0
    successes: int = 0
    failures: int = 0
    retries: int = 0
    response_time_total: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "hour": self.hour,
            "requests": self.requests,
            "successes": self.successes,
            "failures": self.failures,
            "retries": self.retries,
            "error_rate": (self.failures / self.requests * 100) if self.requests else 0.0,
            "avg_response_time": (self.response_time_total / self.successes) if self.successes else 0.0,
        }


@dataclass
class ProviderMetrics:
    """Cumulative counters and rolling statistics for one provider."""
    provider: str
    breaker: CircuitBreaker
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    retried_requests: int = 0
    timeout_errors: int = 0
    rate_limit_errors: int = 0
    consecutive_failures: int = 0
    max_consecutive_failures: int = 0
    response_times: Deque[float] = field(default_factory=lambda: deque(maxlen=MAX_RESPONSE_TIMES))
    errors_by_type: Dict[str, int] = field(default_factory=dict)
    hourly: Dict[int, HourlyBucket] = field(default_factory=dict)
    first_error_time: Optional[float] = None
    last_error_time: Optional[float] = None
    last_success_time: Optional[float] = None
    status: HealthStatus = HealthStatus.HEALTHY

    @property
    def error_rate(self) -> float:
        """Failed requests as a percentage of all requests."""
        return (self.failed_requests / self.total_requests * 100) if self.total_requests else 0.0

    @property
    def success_rate(self) -> float:
        return (self.successful_requests / self.total_requests * 100) if self.total_requests else 100.0

    @property
    def average_response_time(self) -> float:
        return (sum(self.response_times) / len(self.response_times)) if self.response_times else 0.0

    def percentile(self, q: float) -> float:
        """Response time percentile, ``q`` in [0, 1]."""
        if not self.response_times:
            return 0.0
        ordered = sorted(self.response_times)
        index = min(len(ordered) - 1, math.floor(len(ordered) * q))
        return ordered[index]

    def bucket(self, now: float) -> HourlyBucket:
        hour = int(now // HOUR)
        bucket = self.hourly.get(hour)
        if bucket is None:
            bucket = HourlyBucket(hour=hour)
            self.hourly[hour] = bucket
            while len(self.hourly) > MAX_HOURLY_BUCKETS:
                del self.hourly[min(self.hourly)]
        return bucket

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "status": self.status.value,
            "total_requests": self.total_requests,
            "successful_requests": self.successful_requests,
            "failed_requests": self.failed_requests,
            "retried_requests": self.retried_requests,
            "timeout_errors": self.timeout_errors,
            "rate_limit_errors": self.rate_limit_errors,
            "consecutive_failures": self.consecutive_failures,
            "max_consecutive_failures": self.max_consecutive_failures,
            "error_rate": self.error_rate,
            "success_rate": self.success_rate,
            "average_response_time": self.average_response_time,
            "p50": self.percentile(0.50),
            "p90": self.percentile(0.90),
            "p95": self.percentile(0.95),
            "p99": self.percentile(0.99),
            "errors_by_type": dict(self.errors_by_type),
            "first_error_time": self.first_error_time,
            "last_error_time": self.last_error_time,
            "circuit_breaker": self.breaker.to_dict(),
        }


@dataclass
class HealthAlert:
    alert_type: str
    provider: str
    message: str
    severity: str
    value: float
    timestamp: float
    resolved: bool = False
    resolved_at: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.alert_type,
            "provider": self.provider,
            "message": self.message,
            "severity": self.severity,
            "value": self.value,
            "timestamp": self.timestamp,
            "resolved": self.resolved,
        }


class ProviderHealthMonitor:
    """Records call outcomes per provider and exposes health, rankings and alerts."""

    def __init__(
        self,
        breaker_config: Optional[CircuitBreakerConfig] = None,
        thresholds: Optional[HealthThresholds] = None,
        alert_thresholds: Optional[AlertThresholds] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.breaker_config = breaker_config or CircuitBreakerConfig()
        self.thresholds = thresholds or HealthThresholds()
        self.alert_thresholds = alert_thresholds or AlertThresholds()
        self._clock = clock
        self._providers: Dict[str, ProviderMetrics] = {}
        self._alerts: List[HealthAlert] = []
        self.start_time = clock()
        self.total_requests = 0
        self.total_failures = 0
        self.total_retries = 0
        logger.info(
            f"ProviderHealthMonitor initialized: breaker threshold={self.breaker_config.failure_threshold}, "
            f"reset={self.breaker_config.reset_timeout}s"
        )

    def _metrics(self, provider: str) -> ProviderMetrics:
        metrics = self._providers.get(provider)
        if metrics is None:
            metrics = ProviderMetrics(
                provider=provider,
                breaker=CircuitBreaker(provider, self.breaker_config, clock=self._clock),
            )
            self._providers[provider] = metrics
            logger.debug(f"Tracking new provider: {provider}")
        return metrics

    # --- Recording ---

    def record_success(self, provider: str, response_time_ms: float = 0.0, operation: str = "unknown") -> None:
        now = self._clock()
        metrics = self._metrics(provider)
        metrics.total_requests += 1
        metrics.successful_requests += 1
        metrics.consecutive_failures = 0
        metrics.last_success_time = now
        if response_time_ms > 0:
            metrics.response_times.append(response_time_ms)

        bucket = metrics.bucket(now)
        bucket.requests += 1
        bucket.successes += 1
        bucket.response_time_total += response_time_ms

        self.total_requests += 1
        metrics.breaker.record_success()
        self._update_status(metrics)
        self._check_alerts(metrics, response_time_ms)
        logger.debug(f"{provider}.{operation} succeeded in {response_time_ms:.0f}ms")

    def record_failure(
        self,
        provider: str,
        error_type: str = "unknown",
        operation: str = "unknown",
        is_timeout: bool = False,
        is_rate_limit: bool = False,
    ) -> None:
        now = self._clock()
        metrics = self._metrics(provider)
        metrics.total_requests += 1
        metrics.failed_requests += 1
        metrics.consecutive_failures += 1
        metrics.max_consecutive_failures = max(metrics.max_consecutive_failures, metrics.consecutive_failures)
        metrics.errors_by_type[error_type] = metrics.errors_by_type.get(error_type, 0) + 1
        if is_timeout:
            metrics.timeout_errors += 1
        if is_rate_limit:
            metrics.rate_limit_errors += 1
        if metrics.first_error_time is None:
            metrics.first_error_time = now
        metrics.last_error_time = now

        bucket = metrics.bucket(now)
        bucket.requests += 1
        bucket.failures += 1

        self.total_requests += 1
        self.total_failures += 1
        metrics.breaker.record_failure()
        self._update_status(metrics)
        self._check_alerts(metrics)
        logger.debug(
            f"{provider}.{operation} failed ({error_type}); consecutive failures: {metrics.consecutive_failures}"
        )

    def record_retry(self, provider: str, operation: str = "unknown") -> None:
        metrics = self._metrics(provider)
        metrics.retried_requests += 1
        metrics.bucket(self._clock()).retries += 1
        self.total_retries += 1
        logger.debug(f"{provider}.{operation} retry recorded")

    # --- Status ---

    def _update_status(self, metrics: ProviderMetrics) -> None:
        t = self.thresholds
        error_rate = metrics.error_rate
        if metrics.consecutive_failures >= t.critical_consecutive or error_rate >= t.critical_error_rate:
            status = HealthStatus.CRITICAL
        elif metrics.consecutive_failures >= t.degraded_consecutive or error_rate >= t.degraded_error_rate:
            status = HealthStatus.DEGRADED
        elif error_rate >= t.warning_error_rate:
            status = HealthStatus.WARNING
        else:
            status = HealthStatus.HEALTHY
        if status is not metrics.status:
            logger.info(f"Provider {metrics.provider} health: {metrics.status.value} -> {status.value}")
        metrics.status = status

    def is_available(self, provider: str) -> bool:
        """False only while the provider's breaker is open. Unknown providers are available."""
        metrics = self._providers.get(provider)
        if metrics is None:
            return True
        return metrics.breaker.state is not CircuitState.OPEN

    def select_available(self, providers: Iterable[str]) -> Optional[str]:
        """First available provider from a preference-ordered list."""
        for provider in providers:
            if self.is_available(provider):
                return provider
        return None

    def get_provider_status(self, provider: str) -> Dict[str, Any]:
        metrics = self._providers.get(provider)
        if metrics is None:
            return {"provider": provider, "status": "unknown", "available": True}
        status = metrics.to_dict()
        status["available"] = self.is_available(provider)
        return status

    def get_all_metrics(self) -> Dict[str, Any]:
        healthy = sum(1 for m in self._providers.values() if m.status is HealthStatus.HEALTHY)
        return {
            "global": {
                "start_time": self.start_time,
                "uptime": self._clock() - self.start_time,
                "total_requests": self.total_requests,
                "total_failures": self.total_failures,
                "total_retries": self.total_retries,
                "error_rate": (self.total_failures / self.total_requests * 100) if self.total_requests else 0.0,
                "healthy_providers": healthy,
                "total_providers": len(self._providers),
            },
            "providers": {name: m.to_dict() for name, m in self._providers.items()},
            "alerts": [a.to_dict() for a in self.get_active_alerts()],
        }

    def get_provider_rankings(self) -> List[Dict[str, Any]]:
        """Providers ordered by success rate, then response time, then breaker state."""
        ranked = sorted(
            self._providers.values(),
            key=lambda m: (-m.success_rate, m.average_response_time, _STATE_ORDER[m.breaker.state]),
        )
        return [
            {
                "rank": position,
                "provider": m.provider,
                "success_rate": m.success_rate,
                "average_response_time": m.average_response_time,
                "circuit_state": m.breaker.state.value,
                "status": m.status.value,
                "total_requests": m.total_requests,
            }
            for position, m in enumerate(ranked, start=1)
        ]

    def get_hourly_trends(self, provider: str, hours: int = 24) -> List[Dict[str, Any]]:
        """Hourly buckets for the last ``hours`` hours, oldest first; empty hours are zero-filled."""
        metrics = self._providers.get(provider)
        current_hour = int(self._clock() // HOUR)
        trends = []
        for hour in range(current_hour - hours + 1, current_hour + 1):
            bucket = metrics.hourly.get(hour) if metrics else None
            trends.append((bucket or HourlyBucket(hour=hour)).to_dict())
        return trends

    # --- Alerts ---

    def _check_alerts(self, metrics: ProviderMetrics, response_time_ms: float = 0.0) -> None:
        a = self.alert_thresholds
        if metrics.error_rate > a.error_rate:
            self._raise_alert("high_error_rate", metrics.provider, "warning", metrics.error_rate,
                              f"Error rate {metrics.error_rate:.1f}% exceeds {a.error_rate:.0f}%")
        if metrics.consecutive_failures >= a.consecutive_failures:
            self._raise_alert("consecutive_failures", metrics.provider, "critical", metrics.consecutive_failures,
                              f"{metrics.consecutive_failures} consecutive failures")
        if response_time_ms > a.response_time_ms:
            self._raise_alert("high_response_time", metrics.provider, "warning", response_time_ms,
                              f"Response time {response_time_ms:.0f}ms exceeds {a.response_time_ms:.0f}ms")
        if metrics.breaker.state is CircuitState.OPEN:
            self._raise_alert("circuit_breaker_open", metrics.provider, "critical", metrics.breaker.failure_count,
                              "Circuit breaker is open")

    def _raise_alert(self, alert_type: str, provider: str, severity: str, value: float, message: str) -> None:
        for alert in self._alerts:
            if alert.alert_type == alert_type and alert.provider == provider and not alert.resolved:
                alert.value = value
                return
        alert = HealthAlert(alert_type, provider, message, severity, value, self._clock())
        self._alerts.append(alert)
        if len(self._alerts) > self.alert_thresholds.max_alerts:
            del self._alerts[: len(self._alerts) - self.alert_thresholds.max_alerts]
        logger.warning(f"Health alert [{severity}] {provider}: {message}")
        dispatch_event(HealthAlertRaised(alert_type=alert_type, provider=provider, message=message, severity=severity))

    def get_active_alerts(self) -> List[HealthAlert]:
        return [a for a in self._alerts if not a.resolved]

    def resolve_alert(self, alert_type: str, provider: str) -> bool:
        """Marks the active alert of that type for that provider resolved."""
        for alert in self._alerts:
            if alert.alert_type == alert_type and alert.provider == provider and not alert.resolved:
                alert.resolved = True
                alert.resolved_at = self._clock()
                logger.info(f"Health alert resolved: {alert_type} for {provider}")
                return True
        return False

    def reset(self, provider: Optional[str] = None) -> None:
        """Clears metrics for one provider, or everything when ``provider`` is None."""
        if provider is not None:
            self._providers.pop(provider, None)
            self._alerts = [a for a in self._alerts if a.provider != provider]
            logger.info(f"Health metrics reset for {provider}")
            return
        self._providers.clear()
        self._alerts.clear()
        self.start_time = self._clock()
        self.total_requests = self.total_failures = self.total_retries = 0
        logger.info("All health metrics reset")
