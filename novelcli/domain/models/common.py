"""Defines common Value Objects used across different domain contexts.

These objects represent simple values such as cache keys and token usage,
and the chapter records passed between pipeline stages.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import NewType, Optional, TypedDict

# === Caching Context ===
CacheKey = NewType("CacheKey", str)            # provider:operation:<json params>

# === Token Management ===
TokenCount = NewType("TokenCount", int)


class TokenUsage(TypedDict):
    """Represents token usage information from an AI call."""
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


class ParsedChapterUrl(TypedDict):
    """Series and chapter number extracted from a chapter URL."""
    series_id: str
    chapter_number: int


# --- Chapter structures ---

@dataclass
class ScrapedChapter:
    """Raw chapter as returned by a fetcher."""
    title: str
    content: str
    url: str
    next_chapter_url: Optional[str] = None


@dataclass
class TranslatedChapter:
    """Chapter text after translation."""
    title: str
    content: str
    provider: Optional[str] = None
    token_usage: Optional[TokenUsage] = None


@dataclass
class ProcessedChapter:
    """Final record produced for one chapter of the chain."""
    title: str
    content: str
    original_url: str
    series_id: str
    chapter_number: int
    filename: str
    file_path: Optional[Path] = None
    audio_file_path: Optional[Path] = None
    next_chapter_url: Optional[str] = None
    from_cache: bool = False


@dataclass(frozen=True)
class ChapterRef:
    """A chapter URL with its position in a discovered chain."""
    url: str
    index: int
