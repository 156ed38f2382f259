"""URL and filename helpers for ncode.syosetu.com chapter pages."""

import logging
import re
from typing import Optional

from novelcli.domain.errors import PipelineError, validation_error
from novelcli.domain.models.common import ParsedChapterUrl

logger = logging.getLogger(__name__)

CHAPTER_URL_PATTERN = re.compile(r"https?://ncode\.syosetu\.com/([a-z0-9]+)/(\d+)/?")
UNSAFE_FILENAME_CHARS = re.compile(r'[<>:"/\\|?*]')
WHITESPACE = re.compile(r"\s+")
BASE_URL = "https://ncode.syosetu.com"


class SyosetuParser:
    """Static helpers; no state."""

    @staticmethod
    def parse_url(url: str) -> ParsedChapterUrl:
        """Extracts the series id and chapter number from a chapter URL.

        Raises:
            PipelineError: VALIDATION if ``url`` is not a Syosetu chapter URL.
        """
        match = CHAPTER_URL_PATTERN.search(url or "")
        if not match:
            raise validation_error(f"Invalid Syosetu URL: {url}", field="url", value=url)
        return ParsedChapterUrl(series_id=match.group(1), chapter_number=int(match.group(2)))

    @staticmethod
    def build_chapter_url(series_id: str, chapter_number: int) -> str:
        return f"{BASE_URL}/{series_id}/{chapter_number}/"

    @classmethod
    def next_chapter_url(cls, url: str) -> Optional[str]:
        """Chapter URL with the number incremented, or None if ``url`` does not parse."""
        try:
            parsed = cls.parse_url(url)
        except PipelineError as e:
            logger.debug(f"Cannot derive next chapter from {url}: {e}")
            return None
        return cls.build_chapter_url(parsed["series_id"], parsed["chapter_number"] + 1)

    @staticmethod
    def sanitize_filename(title: str) -> str:
        sanitized = UNSAFE_FILENAME_CHARS.sub("_", title)
        return WHITESPACE.sub("_", sanitized).strip()

    @classmethod
    def build_filename(cls, series_id: str, chapter_number: int, title: str, extension: str = "md") -> str:
        return f"{series_id}_{chapter_number:03d}_{cls.sanitize_filename(title)}.{extension}"
