import pytest

from novelcli.domain.errors import ErrorKind, PipelineError
from novelcli.infrastructure.parsers.syosetu_parser import SyosetuParser


def test_parse_url_extracts_series_and_chapter():
    parsed = SyosetuParser.parse_url("https://ncode.syosetu.com/n1234ab/17/")
    assert parsed == {"series_id": "n1234ab", "chapter_number": 17}


@pytest.mark.parametrize("url", ["https://example.com/n1234ab/1/", "https://ncode.syosetu.com/n1234ab/", ""])
def test_parse_url_rejects_other_urls(url):
    with pytest.raises(PipelineError) as exc_info:
        SyosetuParser.parse_url(url)
    assert exc_info.value.kind is ErrorKind.VALIDATION


def test_next_chapter_url_increments_number():
    assert SyosetuParser.next_chapter_url("https://ncode.syosetu.com/n1234ab/9/") == \
        "https://ncode.syosetu.com/n1234ab/10/"


def test_next_chapter_url_is_none_for_unparseable_url():
    assert SyosetuParser.next_chapter_url("https://example.com/chapter") is None


def test_build_filename_sanitizes_title():
    filename = SyosetuParser.build_filename("n1234ab", 7, 'Chapter 7: "Into the Woods"?')
    assert filename == "n1234ab_007_Chapter_7___Into_the_Woods__.md"


def test_build_filename_with_audio_extension():
    assert SyosetuParser.build_filename("n1", 12, "Dawn", extension="mp3") == "n1_012_Dawn.mp3"
