import socket
from unittest.mock import AsyncMock, MagicMock

import pytest

from novelcli.domain.errors import (
    ErrorKind, PipelineError, fatal_error, operational_error, validation_error,
)
from novelcli.infrastructure.config.pipeline_config import CircuitBreakerConfig, RetryPolicy
from novelcli.infrastructure.monitoring.health_monitor import ProviderHealthMonitor
from novelcli.infrastructure.resilience.api_retry import ApiCallService, is_recoverable, with_retry


def flaky(failures, result="ok", error_factory=lambda: operational_error("rate limit exceeded")):
    """Coroutine factory failing ``failures`` times before returning ``result``."""
    calls = {"count": 0}

    async def operation():
        calls["count"] += 1
        if calls["count"] <= failures:
            raise error_factory()
        return result

    operation.calls = calls
    return operation


# --- with_retry ---

@pytest.mark.asyncio
async def test_retries_with_exponential_backoff(no_sleep):
    operation = flaky(2)

    result = await with_retry(operation, max_attempts=3, base_delay=0.1, backoff_multiplier=2.0)

    assert result == "ok"
    assert operation.calls["count"] == 3
    delays = [c.args[0] for c in no_sleep.await_args_list]
    assert delays == [pytest.approx(0.1), pytest.approx(0.2)]


@pytest.mark.asyncio
async def test_non_recoverable_error_is_attempted_once(no_sleep):
    operation = flaky(5, error_factory=lambda: fatal_error("invalid api key"))

    with pytest.raises(PipelineError) as exc_info:
        await with_retry(operation, max_attempts=3, base_delay=0.1)

    assert operation.calls["count"] == 1
    no_sleep.assert_not_awaited()
    assert exc_info.value.kind is ErrorKind.PROCESSING
    assert isinstance(exc_info.value.__cause__, PipelineError)
    assert exc_info.value.__cause__.kind is ErrorKind.FATAL


@pytest.mark.asyncio
async def test_exhausted_attempts_raise_summary_with_context(no_sleep):
    operation = flaky(10)

    with pytest.raises(PipelineError) as exc_info:
        await with_retry(operation, max_attempts=3, base_delay=1.0, context={"operation": "fetch", "url": "u1"})

    error = exc_info.value
    assert error.kind is ErrorKind.PROCESSING
    assert "after 3 attempts" in error.message
    assert error.context["url"] == "u1"
    assert operation.calls["count"] == 3
    assert no_sleep.await_count == 2


@pytest.mark.asyncio
async def test_on_retry_callback_receives_attempt_and_delay(no_sleep):
    on_retry = MagicMock()

    await with_retry(flaky(1), max_attempts=2, base_delay=0.5, on_retry=on_retry)

    on_retry.assert_called_once()
    attempt, error, delay = on_retry.call_args.args
    assert attempt == 1
    assert isinstance(error, PipelineError)
    assert delay == pytest.approx(0.5)


@pytest.mark.parametrize(
    "error, expected",
    [
        (operational_error("timeout"), True),
        (fatal_error("auth"), False),
        (validation_error("bad"), False),
        (socket.gaierror("dns"), True),
        (ConnectionResetError(), True),
        (ValueError("boom"), False),
    ],
)
def test_is_recoverable(error, expected):
    assert is_recoverable(error) is expected


# --- ApiCallService ---

@pytest.fixture
def monitor(clock):
    return ProviderHealthMonitor(breaker_config=CircuitBreakerConfig(failure_threshold=2), clock=clock)


@pytest.mark.asyncio
async def test_call_records_success(monitor):
    service = ApiCallService(health_monitor=monitor)

    result = await service.call("openai", "translate", AsyncMock(return_value="done"))

    assert result == "done"
    status = monitor.get_provider_status("openai")
    assert status["successful_requests"] == 1


@pytest.mark.asyncio
async def test_call_records_failure_flags_from_context(monitor):
    service = ApiCallService(health_monitor=monitor)
    func = AsyncMock(side_effect=operational_error("slow", is_timeout=True))

    with pytest.raises(PipelineError):
        await service.call("groq", "translate", func)

    status = monitor.get_provider_status("groq")
    assert status["failed_requests"] == 1
    assert status["timeout_errors"] == 1
    assert status["errors_by_type"] == {"PipelineError": 1}


@pytest.mark.asyncio
async def test_health_recording_can_be_disabled(monitor):
    service = ApiCallService(health_monitor=monitor, record_health=False)

    await service.call("openai", "translate", AsyncMock(return_value="done"))

    assert monitor.get_provider_status("openai")["status"] == "unknown"


@pytest.mark.asyncio
async def test_execute_falls_back_to_next_provider(monitor):
    service = ApiCallService(health_monitor=monitor)
    primary = AsyncMock(side_effect=operational_error("rate limit exceeded"))
    secondary = AsyncMock(return_value="from groq")

    result = await service.execute("translate", {"openai": primary, "groq": secondary})

    assert result == "from groq"
    primary.assert_awaited_once()
    secondary.assert_awaited_once()
    assert monitor.get_provider_status("openai")["rate_limit_errors"] == 1


@pytest.mark.asyncio
async def test_execute_skips_provider_with_open_breaker(monitor):
    service = ApiCallService(health_monitor=monitor)
    monitor.record_failure("openai")
    monitor.record_failure("openai")
    primary = AsyncMock(return_value="from openai")
    secondary = AsyncMock(return_value="from groq")

    result = await service.execute("translate", {"openai": primary, "groq": secondary})

    assert result == "from groq"
    primary.assert_not_awaited()


@pytest.mark.asyncio
async def test_execute_raises_operational_when_all_breakers_open(monitor):
    service = ApiCallService(health_monitor=monitor)
    for _ in range(2):
        monitor.record_failure("openai")

    with pytest.raises(PipelineError) as exc_info:
        await service.execute("translate", {"openai": AsyncMock()})
    assert exc_info.value.kind is ErrorKind.OPERATIONAL


@pytest.mark.asyncio
async def test_execute_reraises_last_error_when_all_fail(monitor):
    service = ApiCallService(health_monitor=monitor)
    calls = {
        "openai": AsyncMock(side_effect=operational_error("first")),
        "groq": AsyncMock(side_effect=fatal_error("second")),
    }

    with pytest.raises(PipelineError) as exc_info:
        await service.execute("translate", calls)
    assert exc_info.value.kind is ErrorKind.FATAL
    assert exc_info.value.message == "second"


@pytest.mark.asyncio
async def test_execute_does_not_fall_back_on_validation_error(monitor):
    service = ApiCallService(health_monitor=monitor)
    secondary = AsyncMock(return_value="unused")

    with pytest.raises(PipelineError) as exc_info:
        await service.execute("translate", {"openai": AsyncMock(side_effect=validation_error("bad voice")),
                                            "groq": secondary})
    assert exc_info.value.kind is ErrorKind.VALIDATION
    secondary.assert_not_awaited()


@pytest.mark.asyncio
async def test_execute_retries_within_provider_and_records_retries(monitor, no_sleep):
    service = ApiCallService(health_monitor=monitor, retry_policy=RetryPolicy(max_attempts=3, base_delay=0.1))
    operation = flaky(1, result="second time")

    result = await service.execute("translate", {"openai": operation})

    assert result == "second time"
    status = monitor.get_provider_status("openai")
    assert status["retried_requests"] == 1
    assert status["failed_requests"] == 1
    assert status["successful_requests"] == 1


@pytest.mark.asyncio
async def test_execute_surfaces_provider_error_after_retries(monitor, no_sleep):
    service = ApiCallService(health_monitor=monitor, retry_policy=RetryPolicy(max_attempts=2))

    with pytest.raises(PipelineError) as exc_info:
        await service.execute("fetch", {"scraper": flaky(5)})
    assert exc_info.value.kind is ErrorKind.OPERATIONAL
