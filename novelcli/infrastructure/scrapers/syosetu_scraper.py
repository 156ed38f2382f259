"""ChapterFetcher implementation for ncode.syosetu.com using httpx and BeautifulSoup.

HTTP failures are mapped onto pipeline error kinds so the retry executor and
navigator can react: 404 ends a chain, 429 / 5xx / timeouts / connection
failures are transient, everything else is fatal.
"""

import logging
import re
from typing import Optional
from urllib.parse import urljoin

import httpx
from bs4 import BeautifulSoup, Tag

from novelcli.domain.errors import fatal_error, not_found_error, operational_error
from novelcli.domain.interfaces.collaborators import ChapterFetcher
from novelcli.domain.models.common import ScrapedChapter

logger = logging.getLogger(__name__)

DEFAULT_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "ja,en;q=0.5",
    "Referer": "https://ncode.syosetu.com/",
}
# Adult-rated series redirect to an age gate without this cookie
DEFAULT_COOKIES = {"over18": "yes"}

TITLE_SUFFIX = re.compile(r"\s*-\s*小説家になろう$")
NEXT_LINK_MARKERS = ("次へ", "次の話", ">>")
CONTENT_SELECTORS = (
    "#novel_honbun .novel_view",
    ".novel_view",
    "#novel_honbun",
    ".novel_content",
    ".l-container",
)
STRIPPED_SELECTORS = (".p-novel__title", ".novel_subtitle", "script", "style")


class SyosetuScraper(ChapterFetcher):
    """Fetches chapter pages over a shared ``httpx.AsyncClient``."""

    provider_name = "scraper"

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = 30.0):
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            headers=DEFAULT_HEADERS,
            cookies=DEFAULT_COOKIES,
            timeout=timeout,
            follow_redirects=True,
        )
        logger.info(f"SyosetuScraper initialized (timeout={timeout}s)")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def fetch(self, url: str) -> ScrapedChapter:
        logger.debug(f"Fetching chapter: {url}")
        try:
            response = await self.client.get(url)
        except httpx.TimeoutException as e:
            raise operational_error(f"Timeout fetching {url}: {e}", url=url, is_timeout=True) from e
        except httpx.TransportError as e:
            raise operational_error(f"Connection error fetching {url}: {e}", url=url) from e

        self._raise_for_status(response, url)
        chapter = self.parse_chapter(response.text, url)
        logger.info(f"Fetched '{chapter.title}' ({len(chapter.content)} chars) from {url}")
        return chapter

    @staticmethod
    def _raise_for_status(response: httpx.Response, url: str) -> None:
        status = response.status_code
        if status < 400:
            return
        message = f"HTTP {status}: {response.reason_phrase} ({url})"
        if status == 404:
            raise not_found_error(message, url=url)
        if status == 429:
            raise operational_error(message, url=url, status_code=status, is_rate_limit=True)
        if status >= 500:
            raise operational_error(message, url=url, status_code=status)
        raise fatal_error(message, url=url, status_code=status)

    def parse_chapter(self, html: str, url: str) -> ScrapedChapter:
        """Extracts title, body text and next link from a chapter page.

        Raises:
            PipelineError: FATAL if no content container is found.
        """
        soup = BeautifulSoup(html, "lxml")
        title = self._extract_title(soup)
        container = self._find_content(soup)
        if container is None:
            raise fatal_error(f"No chapter content found at {url}", url=url)
        for selector in STRIPPED_SELECTORS:
            for element in container.select(selector):
                element.decompose()
        content = self._to_text(container)
        return ScrapedChapter(
            title=title,
            content=content,
            url=url,
            next_chapter_url=self.find_next_chapter_link(soup, url),
        )

    @staticmethod
    def _extract_title(soup: BeautifulSoup) -> str:
        heading = soup.select_one(".p-novel__title")
        if heading and heading.get_text(strip=True):
            return heading.get_text(strip=True)
        if soup.title and soup.title.get_text(strip=True):
            return TITLE_SUFFIX.sub("", soup.title.get_text(strip=True)).strip()
        return ""

    @staticmethod
    def _find_content(soup: BeautifulSoup) -> Optional[Tag]:
        bodies = [
            el for el in soup.select(".js-novel-text.p-novel__text")
            if not {"p-novel__text--preface", "p-novel__text--afterword"} & set(el.get("class", []))
        ]
        if bodies:
            return bodies[0]
        for selector in (".js-novel-text.p-novel__text",) + CONTENT_SELECTORS:
            element = soup.select_one(selector)
            if element is not None:
                return element
        return None

    @staticmethod
    def _to_text(container: Tag) -> str:
        for br in container.find_all("br"):
            br.replace_with("\n")
        paragraphs = [p.get_text() for p in container.find_all("p")]
        text = "\n".join(paragraphs) if paragraphs else container.get_text()
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = re.sub(r"[ \t]+", " ", text)
        return re.sub(r"\n{3,}", "\n\n", text).strip()

    @staticmethod
    def find_next_chapter_link(soup: BeautifulSoup, current_url: str) -> Optional[str]:
        for anchor in soup.find_all("a", href=True):
            text = anchor.get_text(strip=True)
            if any(marker in text for marker in NEXT_LINK_MARKERS):
                return urljoin(current_url, anchor["href"])
        return None
