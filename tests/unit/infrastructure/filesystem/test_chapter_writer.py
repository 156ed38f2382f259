import asyncio

import pytest

from novelcli.domain.models.common import ProcessedChapter
from novelcli.infrastructure.filesystem.chapter_writer import MarkdownChapterWriter, format_chapter_markdown


def make_chapter(title="Rozdział 1", content="Pierwszy akapit.\n\n\n  Drugi akapit.  "):
    return ProcessedChapter(
        title=title, content=content, original_url="https://ncode.syosetu.com/n1234ab/1/",
        series_id="n1234ab", chapter_number=1, filename="n1234ab_001_Rozdzia_1.md",
    )


def test_format_chapter_markdown_collapses_blank_lines():
    markdown = format_chapter_markdown("Tytuł", "Linia 1\n\n\n  Linia 2 \n")

    assert markdown == "# Tytuł\n\n---\n\nLinia 1\n\nLinia 2\n"


@pytest.mark.asyncio
async def test_write_chapter_creates_output_dir(tmp_path):
    writer = MarkdownChapterWriter(output_dir=tmp_path / "out", audio_dir=tmp_path / "audio")
    chapter = make_chapter()

    path = await writer.write_chapter(chapter, chapter.filename)

    assert path == tmp_path / "out" / chapter.filename
    assert path.read_text(encoding="utf-8") == "# Rozdział 1\n\n---\n\nPierwszy akapit.\n\nDrugi akapit.\n"


@pytest.mark.asyncio
async def test_write_audio_writes_bytes(tmp_path):
    writer = MarkdownChapterWriter(output_dir=tmp_path / "out", audio_dir=tmp_path / "audio")

    path = await writer.write_audio(b"ID3mp3", "n1234ab_001.mp3")

    assert path.read_bytes() == b"ID3mp3"
    assert path.parent == tmp_path / "audio"


@pytest.mark.asyncio
async def test_concurrent_writes_of_same_file_share_one_write(tmp_path, mocker):
    writer = MarkdownChapterWriter(output_dir=tmp_path)
    write = mocker.spy(writer, "_write")
    chapter = make_chapter()

    paths = await asyncio.gather(*(writer.write_chapter(chapter, chapter.filename) for _ in range(3)))

    assert len(set(paths)) == 1
    assert write.call_count == 1
    assert writer._in_flight == {}


@pytest.mark.asyncio
async def test_write_failure_is_raised_as_io_error(tmp_path):
    blocker = tmp_path / "blocked"
    blocker.write_text("not a directory", encoding="utf-8")
    writer = MarkdownChapterWriter(output_dir=blocker)

    with pytest.raises(IOError):
        await writer.write_chapter(make_chapter(), "chapter.md")
    assert writer._in_flight == {}
