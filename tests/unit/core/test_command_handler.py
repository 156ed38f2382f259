import pytest
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

from novelcli.core.command_handler import CommandHandler
from novelcli.core.services.batch_processor import BatchProcessor
from novelcli.core.services.chapter_service import ChapterService
from novelcli.core.services.navigator import ChapterNavigator
from novelcli.domain.errors import ErrorKind, fatal_error
from novelcli.domain.interfaces.user_interface import UserInterface
from novelcli.domain.models.common import ProcessedChapter
from novelcli.infrastructure.cache.caching_service import CacheManager
from novelcli.infrastructure.config.pipeline_config import (
    AdaptiveConcurrencyConfig, BatchConfig, NavigatorConfig, RetryPolicy,
)
from novelcli.infrastructure.monitoring.health_monitor import ProviderHealthMonitor

BASE = "https://ncode.syosetu.com/n1234ab"


def processed(number, next_number=None):
    return ProcessedChapter(
        title=f"Rozdział {number}",
        content="Treść",
        original_url=f"{BASE}/{number}/",
        series_id="n1234ab",
        chapter_number=number,
        filename=f"n1234ab_{number:03d}.md",
        file_path=Path(f"/out/n1234ab_{number:03d}.md"),
        next_chapter_url=f"{BASE}/{next_number}/" if next_number else None,
    )


@pytest.fixture
def mock_chapter_service():
    service = MagicMock(spec=ChapterService)
    service.process_chapter = AsyncMock(side_effect=[processed(1, 2), processed(2)])
    service.discover_next = AsyncMock(side_effect=[f"{BASE}/2/", None])
    return service


@pytest.fixture
def mock_ui():
    return MagicMock(spec=UserInterface)


@pytest.fixture
def command_handler(mock_chapter_service, mock_ui):
    navigator = ChapterNavigator(NavigatorConfig(retry=RetryPolicy(max_attempts=1)))
    batch_processor = BatchProcessor(BatchConfig(adaptive=AdaptiveConcurrencyConfig(enabled=False)))
    return CommandHandler(
        chapter_service=mock_chapter_service,
        navigator=navigator,
        batch_processor=batch_processor,
        ui=mock_ui,
    )


@pytest.mark.asyncio
async def test_handle_translate_sequential(command_handler, mock_ui, no_sleep):
    ok = await command_handler.handle_translate(f"{BASE}/1/")

    assert ok is True
    assert mock_ui.display_chapter_done.call_count == 2
    mock_ui.display_chapter_done.assert_any_call(1, "Rozdział 1", str(Path("/out/n1234ab_001.md")))
    summary = mock_ui.display_run_summary.call_args.args[0]
    assert summary["total_chapters"] == 2
    assert summary["last_url"] == f"{BASE}/2/"
    mock_ui.display_error.assert_not_called()


@pytest.mark.asyncio
async def test_max_chapters_overrides_navigator_limit(command_handler, mock_chapter_service, no_sleep):
    await command_handler.handle_translate(f"{BASE}/1/", max_chapters=1)

    assert mock_chapter_service.process_chapter.await_count == 1
    assert command_handler.navigator.config.max_chapters == 1


@pytest.mark.asyncio
async def test_handle_translate_batch(command_handler, mock_chapter_service, mock_ui, no_sleep):
    ok = await command_handler.handle_translate(f"{BASE}/1/", use_batch=True, max_chapters=5)

    assert ok is True
    mock_chapter_service.discover_next.assert_any_await(f"{BASE}/1/")
    assert mock_chapter_service.process_chapter.await_count == 2
    summary = mock_ui.display_run_summary.call_args.args[0]
    assert summary["start_url"] == f"{BASE}/1/"
    assert summary["succeeded"] == 2


@pytest.mark.asyncio
async def test_batch_failures_are_reported_as_warnings(command_handler, mock_chapter_service, mock_ui, no_sleep):
    mock_chapter_service.process_chapter.side_effect = [processed(1), RuntimeError("write failed")]

    ok = await command_handler.handle_translate(f"{BASE}/1/", use_batch=True)

    assert ok is True
    mock_ui.display_warning.assert_called_once()
    assert "Chapter 2 failed" in mock_ui.display_warning.call_args.args[0]


@pytest.mark.asyncio
async def test_invalid_url_aborts_before_processing(command_handler, mock_chapter_service, mock_ui):
    ok = await command_handler.handle_translate("https://example.com/story")

    assert ok is False
    mock_ui.display_error.assert_called_once()
    mock_chapter_service.process_chapter.assert_not_awaited()


@pytest.mark.asyncio
async def test_pipeline_error_is_reported_with_monitoring(mock_chapter_service, mock_ui, clock, no_sleep):
    mock_chapter_service.process_chapter.side_effect = fatal_error("bad chapter data")
    monitor = ProviderHealthMonitor(clock=clock)
    monitor.record_failure("openai", error_type="AuthenticationError")
    handler = CommandHandler(
        chapter_service=mock_chapter_service,
        navigator=ChapterNavigator(NavigatorConfig(retry=RetryPolicy(max_attempts=1), max_consecutive_errors=1)),
        batch_processor=BatchProcessor(),
        ui=mock_ui,
        health_monitor=monitor,
    )

    ok = await handler.handle_translate(f"{BASE}/1/")

    assert ok is False
    assert mock_ui.display_error.call_args.args[0].startswith("Run aborted:")
    rankings, alerts = mock_ui.display_provider_health.call_args.args
    assert rankings[0]["provider"] == "openai"


@pytest.mark.asyncio
async def test_unexpected_error_is_reported(command_handler, mock_chapter_service, mock_ui, no_sleep):
    mock_chapter_service.process_chapter.side_effect = KeyError("surprise")

    ok = await command_handler.handle_translate(f"{BASE}/1/")

    assert ok is False
    assert "Translate command failed" in mock_ui.display_error.call_args.args[0]


@pytest.mark.asyncio
async def test_cache_stats_shown_after_run(mock_chapter_service, mock_ui, clock):
    mock_chapter_service.process_chapter.side_effect = [processed(1)]
    cache = CacheManager(clock=clock)
    handler = CommandHandler(
        chapter_service=mock_chapter_service,
        navigator=ChapterNavigator(NavigatorConfig(retry=RetryPolicy(max_attempts=1))),
        batch_processor=BatchProcessor(),
        ui=mock_ui,
        cache=cache,
    )

    assert await handler.handle_translate(f"{BASE}/1/")

    stats = mock_ui.display_cache_stats.call_args.args[0]
    assert "translation" in stats
    assert cache._sweeper is None
