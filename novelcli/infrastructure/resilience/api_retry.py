"""Services for executing remote calls with retries and provider fallback.

``with_retry`` implements exponential backoff for transient failures such as
rate limits, timeouts or dropped connections. ``ApiCallService`` adds
health-aware provider selection on top: every call is timed and its outcome
is recorded in the ``ProviderHealthMonitor``, providers whose circuit breaker
is open are skipped, and a failing provider falls back to the next one.
"""

import asyncio
import logging
import socket
import time
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, TypeVar

import httpx

from novelcli.domain.errors import ErrorKind, PipelineError, operational_error, processing_error
from novelcli.domain.events.api_events import (
    ProviderCallFailed, ProviderCallSucceeded, ProviderFallbackTriggered, RetryScheduled, dispatch_event,
)
from novelcli.infrastructure.config.pipeline_config import RetryPolicy
from novelcli.infrastructure.monitoring.health_monitor import ProviderHealthMonitor

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Transport-level failures that are worth retrying even when they reach us untagged
TRANSIENT_TRANSPORT_ERRORS = (socket.gaierror, ConnectionResetError, httpx.ConnectError)

RetryCallback = Callable[[int, BaseException, float], None]


def is_recoverable(error: BaseException) -> bool:
    """Returns True if retrying the operation that raised ``error`` may succeed."""
    if isinstance(error, PipelineError):
        return error.is_recoverable
    return isinstance(error, TRANSIENT_TRANSPORT_ERRORS)


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    backoff_multiplier: float = 1.5,
    context: Optional[Dict[str, Any]] = None,
    on_retry: Optional[RetryCallback] = None,
) -> T:
    """Awaits ``operation()`` retrying recoverable failures with exponential backoff.

    The delay before retry ``n`` is ``base_delay * backoff_multiplier ** (n - 1)``.

    Args:
        operation: Zero-argument coroutine factory to execute.
        max_attempts: Total number of attempts, including the first.
        base_delay: Delay in seconds before the first retry.
        backoff_multiplier: Factor applied to the delay after each retry.
        context: Caller context (e.g. ``operation``, ``url``) copied into the summary error.
        on_retry: Called as ``on_retry(attempt, error, delay)`` before each sleep.

    Returns:
        The result of the first successful attempt.

    Raises:
        PipelineError: PROCESSING kind once attempts are exhausted or a
            non-recoverable error occurs, chained to the last error.
    """
    context = dict(context or {})
    operation_name = context.get("operation", getattr(operation, "__name__", "operation"))
    last_error: Optional[BaseException] = None
    attempts = 0

    for attempt in range(1, max_attempts + 1):
        attempts = attempt
        try:
            return await operation()
        except Exception as e:
            last_error = e
            if not is_recoverable(e):
                logger.error(f"Non-recoverable error in {operation_name} on attempt {attempt}: {e}")
                break
            if attempt >= max_attempts:
                logger.error(f"Max attempts ({max_attempts}) reached for {operation_name}. Last error: {e}")
                break

            delay = base_delay * backoff_multiplier ** (attempt - 1)
            logger.warning(
                f"Recoverable error in {operation_name} on attempt {attempt}/{max_attempts}: "
                f"{type(e).__name__}: {e}. Retrying in {delay:.2f}s..."
            )
            dispatch_event(RetryScheduled(
                operation=str(operation_name), attempt_number=attempt,
                delay_seconds=delay, error_message=str(e),
            ))
            if on_retry:
                on_retry(attempt, e, delay)
            await asyncio.sleep(delay)

    raise processing_error(
        f"Operation failed after {attempts} attempts: {last_error}",
        **context,
    ) from last_error


def _error_flags(error: BaseException) -> Dict[str, bool]:
    """Derives timeout / rate-limit flags from error context or message."""
    context = getattr(error, "context", {}) or {}
    message = str(error).lower()
    is_timeout = bool(context.get("is_timeout")) or isinstance(error, (asyncio.TimeoutError, httpx.TimeoutException)) \
        or "timeout" in message or "timed out" in message
    is_rate_limit = bool(context.get("is_rate_limit")) or "rate limit" in message or "429" in message
    return {"is_timeout": is_timeout, "is_rate_limit": is_rate_limit}


class ApiCallService:
    """Dispatches remote calls to providers with health tracking, retries, and fallback."""

    def __init__(
        self,
        health_monitor: Optional[ProviderHealthMonitor] = None,
        retry_policy: Optional[RetryPolicy] = None,
        record_health: bool = True,
    ):
        """Initializes the ApiCallService.

        Args:
            health_monitor: Monitor receiving call outcomes; a private one is created if None.
            retry_policy: Backoff applied to each provider. ``max_attempts=1`` disables in-call retries.
            record_health: Whether outcomes are recorded in the monitor.
        """
        self.health_monitor = health_monitor or ProviderHealthMonitor()
        self.retry_policy = retry_policy or RetryPolicy(max_attempts=1)
        self.record_health = record_health
        logger.info(
            f"ApiCallService initialized: max_attempts={self.retry_policy.max_attempts}, "
            f"base_delay={self.retry_policy.base_delay}s, factor={self.retry_policy.backoff_multiplier}, "
            f"record_health={record_health}"
        )

    async def call(self, provider: str, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        """Executes one call against one provider, timing it and recording the outcome."""
        start_time = time.perf_counter()
        try:
            result = await func()
        except Exception as e:
            latency_ms = (time.perf_counter() - start_time) * 1000
            flags = _error_flags(e)
            logger.warning(f"Call {provider}.{operation} failed after {latency_ms:.0f}ms: {type(e).__name__}: {e}")
            dispatch_event(ProviderCallFailed(
                provider=provider, operation=operation, error_type=type(e).__name__, error_message=str(e),
            ))
            if self.record_health:
                self.health_monitor.record_failure(
                    provider, error_type=type(e).__name__, operation=operation, **flags,
                )
            raise
        latency_ms = (time.perf_counter() - start_time) * 1000
        dispatch_event(ProviderCallSucceeded(provider=provider, operation=operation, latency_ms=latency_ms))
        if self.record_health:
            self.health_monitor.record_success(provider, latency_ms, operation=operation)
        return result

    async def _call_with_policy(self, provider: str, operation: str, func: Callable[[], Awaitable[T]]) -> T:
        if self.retry_policy.max_attempts <= 1:
            return await self.call(provider, operation, func)

        def on_retry(attempt: int, error: BaseException, delay: float) -> None:
            if self.record_health:
                self.health_monitor.record_retry(provider, operation=operation)

        try:
            return await with_retry(
                lambda: self.call(provider, operation, func),
                max_attempts=self.retry_policy.max_attempts,
                base_delay=self.retry_policy.base_delay,
                backoff_multiplier=self.retry_policy.backoff_multiplier,
                context={"operation": operation, "provider": provider},
                on_retry=on_retry,
            )
        except PipelineError as e:
            # Surface the provider's own error so callers can classify it
            if e.kind is ErrorKind.PROCESSING and e.__cause__ is not None:
                raise e.__cause__ from None
            raise

    async def execute(self, operation: str, calls: Mapping[str, Callable[[], Awaitable[T]]]) -> T:
        """Runs ``operation`` on the first available provider, falling back on failure.

        Args:
            operation: Name of the operation (for logging, events and metrics).
            calls: Preference-ordered mapping of provider name to a zero-argument
                coroutine factory performing the call on that provider.

        Returns:
            The result from the first provider that succeeds.

        Raises:
            PipelineError: OPERATIONAL if no provider is available.
            Exception: The last provider's error if every available provider failed.
        """
        if not calls:
            raise operational_error(f"No providers configured for {operation}", operation=operation)

        candidates = [p for p in calls if self.health_monitor.is_available(p)]
        if not candidates:
            logger.error(f"All providers unavailable for {operation}: {list(calls)}")
            raise operational_error(
                f"No available provider for {operation} (circuit breakers open)",
                operation=operation, providers=list(calls),
            )

        last_error: Optional[BaseException] = None
        for index, provider in enumerate(candidates):
            if index > 0:
                logger.warning(f"Falling back from {candidates[index - 1]} to {provider} for {operation}")
                dispatch_event(ProviderFallbackTriggered(
                    reason=f"{type(last_error).__name__}: {last_error}",
                    failed_provider=candidates[index - 1], fallback_provider=provider,
                ))
            try:
                return await self._call_with_policy(provider, operation, calls[provider])
            except Exception as e:
                last_error = e
                if isinstance(e, PipelineError) and e.kind is ErrorKind.VALIDATION:
                    raise

        logger.error(f"All providers failed for {operation}. Last error: {last_error}")
        assert last_error is not None
        raise last_error
