import pytest

from novelcli.core.services.navigator import ChapterNavigator, is_end_of_chain
from novelcli.domain.errors import (
    ErrorKind, PipelineError, fatal_error, not_found_error, operational_error,
)
from novelcli.infrastructure.config.pipeline_config import NavigatorConfig, RetryPolicy


def chain_step(links, calls=None):
    """Step function serving chapters from a url -> next url mapping."""

    async def step(url):
        if calls is not None:
            calls.append(url)
        if url not in links:
            raise not_found_error(f"404 for {url}", url=url)
        return {"title": f"Title {url}", "next_chapter_url": links[url]}

    return step


@pytest.fixture
def config():
    return NavigatorConfig(retry=RetryPolicy(max_attempts=2, base_delay=0.1))


@pytest.mark.asyncio
async def test_walks_chain_until_no_next_link(config, no_sleep):
    navigator = ChapterNavigator(config)

    outcome = await navigator.process_chapter_sequence("A", chain_step({"A": "B", "B": "C", "C": None}))

    assert outcome.total_chapters == 3
    assert outcome.last_url == "C"
    assert outcome.stop_reason == "completed"
    assert [r["title"] for r in outcome.results] == ["Title A", "Title B", "Title C"]
    assert navigator.get_processed_chapters() == ["A", "B", "C"]
    # Delays between chapters only
    assert no_sleep.await_count == 2


@pytest.mark.asyncio
async def test_revisited_url_stops_the_run(config, no_sleep):
    navigator = ChapterNavigator(config)

    outcome = await navigator.process_chapter_sequence("A", chain_step({"A": "B", "B": "A"}))

    assert outcome.total_chapters == 2
    assert outcome.stop_reason == "cycle"


@pytest.mark.asyncio
async def test_not_found_ends_chain_without_error(config, no_sleep):
    navigator = ChapterNavigator(config)
    calls = []

    outcome = await navigator.process_chapter_sequence("A", chain_step({"A": "B"}, calls))

    assert outcome.total_chapters == 1
    assert outcome.stop_reason == "end_of_chain"
    assert calls == ["A", "B"]


@pytest.mark.asyncio
async def test_max_chapters_limits_the_run(no_sleep):
    navigator = ChapterNavigator(NavigatorConfig(max_chapters=2))

    outcome = await navigator.process_chapter_sequence("A", chain_step({"A": "B", "B": "C", "C": None}))

    assert outcome.total_chapters == 2
    assert outcome.stop_reason == "max_chapters"


@pytest.mark.asyncio
async def test_failed_chapter_is_skipped_via_derived_url(config, no_sleep):
    async def step(url):
        if url == "A":
            raise fatal_error("broken page")
        return {"title": "B", "next_chapter_url": None}

    navigator = ChapterNavigator(config, next_url_resolver=lambda url: "B")

    outcome = await navigator.process_chapter_sequence("A", step)

    assert outcome.total_chapters == 1
    assert outcome.results[0]["title"] == "B"
    assert navigator.consecutive_errors == 0


@pytest.mark.asyncio
async def test_consecutive_errors_abort_with_navigation_error(config, no_sleep):
    async def step(url):
        raise operational_error("server error 503")

    navigator = ChapterNavigator(config, next_url_resolver=lambda url: url + "+")

    with pytest.raises(PipelineError) as exc_info:
        await navigator.process_chapter_sequence("A", step)

    assert exc_info.value.kind is ErrorKind.NAVIGATION
    assert navigator.consecutive_errors == 3
    assert exc_info.value.context["url"] == "A++"


@pytest.mark.asyncio
async def test_missing_next_url_after_failure_is_navigation_error(config, no_sleep):
    async def step(url):
        raise fatal_error("parse failure")

    navigator = ChapterNavigator(config, next_url_resolver=lambda url: None)

    with pytest.raises(PipelineError) as exc_info:
        await navigator.process_chapter_sequence("A", step)
    assert exc_info.value.kind is ErrorKind.NAVIGATION


@pytest.mark.asyncio
async def test_result_without_title_aborts(config, no_sleep):
    async def step(url):
        return {"title": "", "next_chapter_url": "B"}

    with pytest.raises(PipelineError) as exc_info:
        await ChapterNavigator(config).process_chapter_sequence("A", step)
    assert exc_info.value.kind is ErrorKind.PROCESSING


@pytest.mark.asyncio
async def test_invalid_arguments_are_rejected(config):
    navigator = ChapterNavigator(config)

    with pytest.raises(PipelineError) as exc_info:
        await navigator.process_chapter_sequence("  ", chain_step({}))
    assert exc_info.value.kind is ErrorKind.VALIDATION

    with pytest.raises(PipelineError):
        await navigator.process_chapter_sequence("A", "not callable")


@pytest.mark.asyncio
async def test_confirmation_callback_can_stop_the_run(no_sleep):
    asked = []

    async def confirm(result):
        asked.append(result["title"])
        return False

    navigator = ChapterNavigator(NavigatorConfig(auto_continue=False), confirm_continue=confirm)

    outcome = await navigator.process_chapter_sequence("A", chain_step({"A": "B", "B": None}))

    assert outcome.total_chapters == 1
    assert outcome.stop_reason == "stopped_by_user"
    assert asked == ["Title A"]


@pytest.mark.asyncio
async def test_without_auto_continue_or_callback_stops_after_first(no_sleep):
    navigator = ChapterNavigator(NavigatorConfig(auto_continue=False))

    outcome = await navigator.process_chapter_sequence("A", chain_step({"A": "B", "B": None}))

    assert outcome.total_chapters == 1


@pytest.mark.asyncio
async def test_adaptive_delay_follows_processing_time(clock, no_sleep):
    async def step(url):
        clock.advance(15.0)
        return {"title": url, "next_chapter_url": "B" if url == "A" else None}

    navigator = ChapterNavigator(NavigatorConfig(), clock=clock)

    await navigator.process_chapter_sequence("A", step)

    # Average starts at 5s: (5 + 15) / 2 = 10s -> 20% delay = 2s
    assert no_sleep.await_args_list[0].args == (pytest.approx(2.0),)


def test_delays_are_clamped():
    navigator = ChapterNavigator(NavigatorConfig(min_delay=0.5, max_delay=10.0, base_delay=1.0))

    navigator.avg_processing_time = 1.0
    assert navigator.calculate_adaptive_delay() == 0.5
    navigator.avg_processing_time = 100.0
    assert navigator.calculate_adaptive_delay() == 10.0

    navigator.consecutive_errors = 2
    assert navigator.calculate_error_delay() == 4.0
    navigator.consecutive_errors = 6
    assert navigator.calculate_error_delay() == 10.0


def test_fixed_delay_when_adaptive_is_off():
    navigator = ChapterNavigator(NavigatorConfig(adaptive_delay=False, chapter_delay=3.0))
    navigator.avg_processing_time = 100.0

    assert navigator.calculate_adaptive_delay() == 3.0


def test_negative_chapter_delay_is_rejected():
    with pytest.raises(PipelineError):
        ChapterNavigator().set_chapter_delay(-1)


def test_end_of_chain_detection_follows_causes():
    wrapped = PipelineError(ErrorKind.PROCESSING, "failed after 3 attempts")
    wrapped.__cause__ = not_found_error("gone")

    assert is_end_of_chain(wrapped)
    assert is_end_of_chain(RuntimeError("HTTP 404"))
    assert not is_end_of_chain(operational_error("timeout"))
    assert not is_end_of_chain(operational_error("HTTP 503: Service Unavailable (https://ncode.syosetu.com/n4404ab/2/)"))
    assert not is_end_of_chain(RuntimeError("connection reset on /n1404cd/404/"))


@pytest.mark.asyncio
async def test_transient_error_on_url_containing_404_backs_off_and_skips(config, no_sleep):
    base = "https://ncode.syosetu.com/n4404ab"
    calls = []

    async def step(url):
        calls.append(url)
        if url == f"{base}/2/":
            raise operational_error(f"HTTP 503: Service Unavailable ({url})", url=url)
        return {"title": url, "next_chapter_url": f"{base}/2/" if url == f"{base}/1/" else None}

    navigator = ChapterNavigator(config, next_url_resolver=lambda url: f"{base}/3/")

    outcome = await navigator.process_chapter_sequence(f"{base}/1/", step)

    assert outcome.stop_reason == "completed"
    assert outcome.total_chapters == 2
    assert outcome.last_url == f"{base}/3/"
    assert calls == [f"{base}/1/", f"{base}/2/", f"{base}/2/", f"{base}/3/"]
    # Error backoff after the first consecutive failure: 1.0 * 2 ** 1
    assert any(c.args == (2.0,) for c in no_sleep.await_args_list)
