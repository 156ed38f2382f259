"""Main entry point for the novelcli application.

Sets up the Typer CLI application, performs dependency injection (Composition Root),
defines CLI commands, and delegates execution to the CommandHandler.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Coroutine, Dict, List, Optional, TypeVar

import typer
from typing_extensions import Annotated

# --- Core Layer ---
from novelcli.core.command_handler import CommandHandler
from novelcli.core.services.batch_processor import BatchProcessor
from novelcli.core.services.chapter_service import ChapterService
from novelcli.core.services.navigator import ChapterNavigator

# --- Infrastructure Layer ---
# Config
from novelcli.infrastructure.config.pipeline_config import PipelineConfig, RetryPolicy
from novelcli.infrastructure.config.settings import (
    get_config, get_deepseek_api_key, get_groq_api_key, get_openai_api_key, get_target_language,
    get_translator_model, load_configuration,
)
# UI
from novelcli.infrastructure.cli.display import ConsoleDisplay
# Scraping and output
from novelcli.infrastructure.scrapers.syosetu_scraper import SyosetuScraper
from novelcli.infrastructure.filesystem.chapter_writer import MarkdownChapterWriter
# AI Clients
from novelcli.infrastructure.ai.openai.gpt_translator import GptTranslator
from novelcli.infrastructure.ai.openai.deepseek_translator import DeepSeekTranslator
from novelcli.infrastructure.ai.groq.groq_translator import GroqTranslator
from novelcli.infrastructure.ai.openai.tts_client import OpenAITTS
# Cache
from novelcli.infrastructure.cache.caching_service import CacheManager
# Resilience
from novelcli.infrastructure.resilience.api_retry import ApiCallService
from novelcli.infrastructure.resilience.semaphore import Semaphore
# Optimization
from novelcli.infrastructure.optimization.token_estimator import TokenEstimator
# Monitoring
from novelcli.infrastructure.monitoring.health_monitor import ProviderHealthMonitor
from novelcli.infrastructure.monitoring.logger_setup import setup_logging_from_config

logger = logging.getLogger(__name__)

T = TypeVar("T")

TRANSLATOR_CHOICES = ("openai", "deepseek", "groq")
TTS_CHOICES = ("none", "openai")


class InitializationError(Exception):
    """Raised when the dependencies for a command cannot be wired."""


def _build_translators(names: List[str], target_language: str, token_estimator: TokenEstimator) -> List[Any]:
    translators = []
    for name in names:
        if name == "openai":
            api_key = get_openai_api_key()
            factory = GptTranslator
        elif name == "deepseek":
            api_key = get_deepseek_api_key()
            factory = DeepSeekTranslator
        elif name == "groq":
            api_key = get_groq_api_key()
            factory = GroqTranslator
        else:
            raise InitializationError(f"Unknown translator '{name}'. Choose from: {', '.join(TRANSLATOR_CHOICES)}")
        if not api_key:
            logger.warning(f"{name} API key not found, {name} translator disabled.")
            continue
        translators.append(factory(
            api_key=api_key,
            model=get_translator_model(name),
            target_language=target_language,
            token_estimator=token_estimator,
        ))
    if not translators:
        raise InitializationError(
            "No translation providers configured or available. Set OPENAI_API_KEY, DEEPSEEK_API_KEY or GROQ_API_KEY."
        )
    return translators


def create_dependencies(options: Dict[str, Any]) -> Dict[str, Any]:
    """Creates and wires up all dependencies for one command run.

    This acts as the Composition Root.

    Args:
        options: Parsed CLI options; ``None`` values fall back to configuration.

    Raises:
        InitializationError: If no translator can be created or an option is invalid.
    """
    logger.info("Initializing application dependencies...")
    dependencies: Dict[str, Any] = {}

    config = PipelineConfig.from_settings({
        'batch.batch_size': options.get('batch_size'),
        'batch.max_concurrency': options.get('batch_concurrency'),
        'navigation.chapter_delay': options.get('delay'),
        'navigation.max_chapters': options.get('max_chapters'),
        'navigation.auto_continue': options.get('auto_continue'),
        'cache.enabled': options.get('caching'),
    })
    dependencies['config'] = config

    ui = ConsoleDisplay()
    dependencies['ui'] = ui

    monitoring = options.get('error_monitoring', True)
    health_monitor = ProviderHealthMonitor(
        breaker_config=config.circuit_breaker, thresholds=config.health, alert_thresholds=config.alerts,
    )
    dependencies['health_monitor'] = health_monitor
    # The navigator retries whole chapters; provider calls only fall back
    dependencies['api_calls'] = ApiCallService(
        health_monitor=health_monitor, retry_policy=RetryPolicy(max_attempts=1), record_health=monitoring,
    )

    dependencies['cache'] = CacheManager(config.cache) if config.cache.enabled else None

    token_estimator = TokenEstimator(get_config('translation.tokenizer_model'))
    target_language = get_target_language()
    translator_names = options.get('translators') or list(get_config('translation.providers', ['openai', 'deepseek', 'groq']))
    dependencies['translators'] = _build_translators(translator_names, target_language, token_estimator)

    tts = options.get('tts') or 'none'
    if tts not in TTS_CHOICES:
        raise InitializationError(f"Unknown TTS provider '{tts}'. Choose from: {', '.join(TTS_CHOICES)}")
    synthesizer = None
    if tts == 'openai':
        api_key = get_openai_api_key()
        if not api_key:
            raise InitializationError("OpenAI API key is required for --tts openai.")
        synthesizer = OpenAITTS(api_key=api_key, model=get_config('tts.model'))
    dependencies['synthesizer'] = synthesizer

    dependencies['scraper'] = SyosetuScraper(timeout=float(get_config('scraper.timeout', 30.0)))
    dependencies['writer'] = MarkdownChapterWriter(
        output_dir=options.get('output_dir') or get_config('output.dir', './output'),
        audio_dir=options.get('audio_dir') or get_config('output.audio_dir', './audio'),
    )

    dependencies['chapter_service'] = ChapterService(
        fetcher=dependencies['scraper'],
        translators=dependencies['translators'],
        writer=dependencies['writer'],
        api_calls=dependencies['api_calls'],
        cache=dependencies['cache'],
        synthesizer=synthesizer,
        voice=options.get('voice') or OpenAITTS.DEFAULT_VOICE,
        speed=options.get('speed') or 1.0,
        target_language=target_language,
        enable_caching=config.cache.enabled,
    )
    dependencies['navigator'] = ChapterNavigator(
        config=config.navigator,
        confirm_continue=lambda chapter: ui.ask_yes_no_question(f"Continue after '{chapter.title}'?"),
    )
    dependencies['batch_processor'] = BatchProcessor(
        config=config.batch, semaphore=Semaphore(config.batch.max_concurrency),
    )

    dependencies['command_handler'] = CommandHandler(
        chapter_service=dependencies['chapter_service'],
        navigator=dependencies['navigator'],
        batch_processor=dependencies['batch_processor'],
        ui=ui,
        cache=dependencies['cache'],
        health_monitor=health_monitor if monitoring else None,
    )
    logger.info("All dependencies initialized successfully.")
    return dependencies


# --- Typer App Definition ---
app = typer.Typer(
    name="novelcli",
    help="novelcli: translate web-novel chapters with provider fallback, caching and health monitoring.",
    add_completion=False,
)


# --- Helper for Running Async Commands ---
def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """Runs an async command from a sync Typer command."""
    return asyncio.run(coro)


async def _translate(dependencies: Dict[str, Any], url: str, use_batch: bool, max_chapters: Optional[int]) -> bool:
    handler: CommandHandler = dependencies['command_handler']
    try:
        return await handler.handle_translate(url, use_batch=use_batch, max_chapters=max_chapters)
    finally:
        await dependencies['scraper'].aclose()


# --- CLI Commands ---

@app.command()
def translate(
    url: Annotated[str, typer.Argument(help="URL of the first chapter (ncode.syosetu.com).")],
    output_dir: Annotated[Optional[Path], typer.Argument(help="Directory for Markdown files.")] = None,
    batch: Annotated[bool, typer.Option("--batch", help="Discover the chain first, then process it in batches.")] = False,
    batch_size: Annotated[Optional[int], typer.Option("--batch-size", min=1, help="Chapters per batch.")] = None,
    batch_concurrency: Annotated[
        Optional[int], typer.Option("--batch-concurrency", min=1, help="Chapters processed at once.")
    ] = None,
    delay: Annotated[Optional[float], typer.Option("--delay", min=0, help="Delay between chapters in seconds.")] = None,
    max_chapters: Annotated[Optional[int], typer.Option("--max-chapters", min=1, help="Stop after this many chapters.")] = None,
    auto_continue: Annotated[
        Optional[bool], typer.Option("--auto-continue/--no-auto-continue", help="Continue without asking.")
    ] = None,
    translator: Annotated[
        Optional[List[str]],
        typer.Option("--translator", "-t", help="Translation provider (openai, deepseek, groq). Repeat to set fallback order."),
    ] = None,
    tts: Annotated[str, typer.Option("--tts", help="Speech provider (none, openai).")] = "none",
    voice: Annotated[Optional[str], typer.Option("--voice", help="TTS voice.")] = None,
    audio_dir: Annotated[Optional[Path], typer.Option("--audio-dir", help="Directory for MP3 files.")] = None,
    speed: Annotated[float, typer.Option("--speed", min=0.25, max=4.0, help="TTS speed.")] = 1.0,
    caching: Annotated[bool, typer.Option("--caching/--no-caching", help="Cache pages and translations.")] = True,
    error_monitoring: Annotated[
        bool, typer.Option("--error-monitoring/--no-error-monitoring", help="Track provider health.")
    ] = True,
):
    """Translate a chain of chapters starting at URL."""
    options = {
        'output_dir': output_dir,
        'batch_size': batch_size,
        'batch_concurrency': batch_concurrency,
        'delay': delay,
        'max_chapters': max_chapters,
        'auto_continue': auto_continue,
        'translators': translator,
        'tts': tts,
        'voice': voice,
        'audio_dir': audio_dir,
        'speed': speed,
        'caching': caching,
        'error_monitoring': error_monitoring,
    }
    try:
        dependencies = create_dependencies(options)
    except Exception as e:
        logger.error(f"Fatal Error during application initialization: {e}", exc_info=True)
        ConsoleDisplay().display_error(f"Application Initialization Failed: {e}")
        raise typer.Exit(code=1)

    if not run_async(_translate(dependencies, url, batch, max_chapters)):
        raise typer.Exit(code=1)


@app.callback()
def main_callback(
    verbose: Annotated[bool, typer.Option("--verbose", "-v", help="Enable debug logging.")] = False,
):
    """Translate web-novel chapters chapter by chapter or in batches."""
    load_configuration()
    setup_logging_from_config(verbose=verbose)


# --- Main Execution Guard ---

def cli_entry_point():
    """Function to be called by the script entry point in pyproject.toml."""
    logger.info("Starting novelcli application...")
    app()  # Typer takes over


if __name__ == "__main__":
    cli_entry_point()
