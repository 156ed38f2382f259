"""ChapterWriter implementation writing Markdown and MP3 files to local disk.

Uses ``aiofiles`` for async I/O. Concurrent writes of the same filename are
collapsed into one: later callers await the write already in flight.
"""

import asyncio
import logging
from pathlib import Path
from typing import Dict, Union

import aiofiles

from novelcli.domain.interfaces.collaborators import ChapterWriter
from novelcli.domain.models.common import ProcessedChapter

logger = logging.getLogger(__name__)


def format_chapter_markdown(title: str, content: str) -> str:
    """Renders a chapter as Markdown: heading, rule, then one paragraph per non-empty line."""
    paragraphs = [line.strip() for line in content.split("\n") if line.strip()]
    return f"# {title}\n\n---\n\n" + "\n\n".join(paragraphs) + "\n"


class MarkdownChapterWriter(ChapterWriter):
    """Implementation of ChapterWriter for the local disk."""

    def __init__(self, output_dir: Union[str, Path] = "./output", audio_dir: Union[str, Path] = "./audio"):
        """Initializes the writer; directories are created on first write."""
        self.output_dir = Path(output_dir)
        self.audio_dir = Path(audio_dir)
        self._in_flight: Dict[Path, asyncio.Future] = {}
        logger.info(f"MarkdownChapterWriter initialized (output={self.output_dir}, audio={self.audio_dir})")

    async def _write_once(self, path: Path, data: Union[str, bytes]) -> Path:
        pending = self._in_flight.get(path)
        if pending is not None:
            logger.debug(f"Write already in progress, waiting: {path}")
            return await asyncio.shield(pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[path] = future
        try:
            await self._write(path, data)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Mark retrieved so an unobserved failure is not reported twice
            future.exception()
            raise
        else:
            future.set_result(path)
            return path
        finally:
            del self._in_flight[path]

    async def _write(self, path: Path, data: Union[str, bytes]) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if isinstance(data, bytes):
                async with aiofiles.open(path, mode='wb') as f:
                    await f.write(data)
            else:
                async with aiofiles.open(path, mode='w', encoding='utf-8') as f:
                    await f.write(data)
        except PermissionError as e:
            logger.error(f"Permission denied writing file: {path}")
            raise PermissionError(f"Permission denied: {path}") from e
        except OSError as e:
            logger.error(f"Error writing file {path}: {e}", exc_info=True)
            raise IOError(f"Failed to write file {path}: {e}") from e
        logger.debug(f"Successfully wrote {len(data)} {'bytes' if isinstance(data, bytes) else 'chars'} to {path}")

    async def write_chapter(self, chapter: ProcessedChapter, filename: str) -> Path:
        path = self.output_dir / filename
        written = await self._write_once(path, format_chapter_markdown(chapter.title, chapter.content))
        logger.info(f"Saved chapter: {written}")
        return written

    async def write_audio(self, data: bytes, filename: str) -> Path:
        path = self.audio_dir / filename
        written = await self._write_once(path, data)
        logger.info(f"Saved audio: {written} ({len(data) / 1024:.1f} KiB)")
        return written
