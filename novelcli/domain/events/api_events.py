"""Domain Events related to provider calls and resilience.

Examples include events for when calls succeed, fail, are retried, fall back
to another provider, trip a circuit breaker or resize the batch semaphore.
"""

from dataclasses import dataclass, field
import logging
import time
from typing import Any, Optional

logger = logging.getLogger(__name__)

# Base Event Class
@dataclass
class DomainEvent:
    """Base class for domain events."""
    pass

# --- Provider Call Events ---

@dataclass
class ProviderCallSucceeded(DomainEvent):
    """Event triggered when a provider call succeeds."""
    provider: str # e.g., 'openai', 'groq', 'scraper'
    operation: str
    latency_ms: float
    timestamp: float = field(default_factory=time.time)

@dataclass
class ProviderCallFailed(DomainEvent):
    """Event triggered when a provider call fails."""
    provider: str
    operation: str
    error_type: str
    error_message: str
    timestamp: float = field(default_factory=time.time)

@dataclass
class RetryScheduled(DomainEvent):
    """Event triggered when a retry is scheduled for a failed operation."""
    operation: str
    attempt_number: int
    delay_seconds: float
    error_message: str = ""
    provider: Optional[str] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class ProviderFallbackTriggered(DomainEvent):
    """Event triggered when a provider fails and the next one in line is tried."""
    reason: str
    failed_provider: str
    fallback_provider: str
    timestamp: float = field(default_factory=time.time)

# --- Health Events ---

@dataclass
class CircuitBreakerStateChanged(DomainEvent):
    """Event triggered when a provider's circuit breaker changes state."""
    provider: str
    old_state: str
    new_state: str
    failure_count: int
    next_retry_time: Optional[float] = None
    timestamp: float = field(default_factory=time.time)

@dataclass
class HealthAlertRaised(DomainEvent):
    """Event triggered when the health monitor raises a new alert."""
    alert_type: str
    provider: str
    message: str
    severity: str
    timestamp: float = field(default_factory=time.time)

# --- Batch Events ---

@dataclass
class ConcurrencyAdjusted(DomainEvent):
    """Event triggered when the batch processor resizes its semaphore."""
    old_concurrency: int
    new_concurrency: int
    reason: str
    timestamp: float = field(default_factory=time.time)


def dispatch_event(event: Any) -> None:
    """Publishes a domain event. Events currently go to the debug log."""
    logger.debug(f"EVENT: {event}")
