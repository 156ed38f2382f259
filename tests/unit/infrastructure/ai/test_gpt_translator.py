from unittest.mock import MagicMock

import httpx
import openai
import pytest

from novelcli.domain.errors import ErrorKind, PipelineError
from novelcli.infrastructure.ai.openai.gpt_translator import GptTranslator, map_openai_error

REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def completion(content, prompt_tokens=10, completion_tokens=5):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    response.usage.prompt_tokens = prompt_tokens
    response.usage.completion_tokens = completion_tokens
    response.usage.total_tokens = prompt_tokens + completion_tokens
    response.model = "gpt-4o-mini"
    return response


@pytest.fixture
def mock_openai(mocker):
    """Patches the OpenAI client class used by the translator."""
    client_class = mocker.patch("novelcli.infrastructure.ai.openai.gpt_translator.OpenAI")
    return client_class.return_value


@pytest.fixture
def translator(mock_openai):
    return GptTranslator(api_key="sk-test", target_language="Polish")


def test_missing_api_key_raises():
    with pytest.raises(ValueError, match="API key"):
        GptTranslator()


def test_api_key_from_environment(monkeypatch, mock_openai):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-env")

    translator = GptTranslator()

    assert translator.model == GptTranslator.DEFAULT_MODEL


@pytest.mark.asyncio
async def test_translate_chapter_translates_title_and_content(translator, mock_openai):
    mock_openai.chat.completions.create.side_effect = [
        completion("  Rozdział 1  "),
        completion("Treść rozdziału.", prompt_tokens=100, completion_tokens=80),
    ]

    chapter = await translator.translate_chapter("第一話", "本文です。")

    assert chapter.title == "Rozdział 1"
    assert chapter.content == "Treść rozdziału."
    assert chapter.provider == "openai"
    assert chapter.token_usage == {"prompt_tokens": 110, "completion_tokens": 85, "total_tokens": 195}

    first_call = mock_openai.chat.completions.create.call_args_list[0].kwargs
    assert first_call["model"] == "gpt-4o-mini"
    assert first_call["temperature"] == 0.1
    assert "Polish" in first_call["messages"][0]["content"]
    assert "第一話" in first_call["messages"][1]["content"]


@pytest.mark.asyncio
async def test_long_content_is_translated_in_chunks(mock_openai):
    estimator = MagicMock()
    estimator.split_text.return_value = ["part one", "part two"]
    translator = GptTranslator(api_key="sk-test", token_estimator=estimator)
    mock_openai.chat.completions.create.side_effect = [
        completion("Tytuł"), completion("Pierwsza"), completion("Druga"),
    ]

    chapter = await translator.translate_chapter("title", "long content")

    assert chapter.content == "Pierwsza\n\nDruga"
    estimator.split_text.assert_called_once_with("long content", 2000)


@pytest.mark.asyncio
async def test_rate_limit_maps_to_operational_error(translator, mock_openai):
    mock_openai.chat.completions.create.side_effect = openai.RateLimitError(
        "slow down", response=httpx.Response(429, request=REQUEST), body=None
    )

    with pytest.raises(PipelineError) as exc_info:
        await translator.translate_text("text")

    assert exc_info.value.kind is ErrorKind.OPERATIONAL
    assert exc_info.value.context["is_rate_limit"] is True


@pytest.mark.asyncio
async def test_authentication_error_is_fatal(translator, mock_openai):
    mock_openai.chat.completions.create.side_effect = openai.AuthenticationError(
        "bad key", response=httpx.Response(401, request=REQUEST), body=None
    )

    with pytest.raises(PipelineError) as exc_info:
        await translator.translate_text("text")

    assert exc_info.value.kind is ErrorKind.FATAL


@pytest.mark.parametrize(
    "error, kind",
    [
        (openai.APITimeoutError(request=REQUEST), ErrorKind.OPERATIONAL),
        (openai.APIConnectionError(request=REQUEST), ErrorKind.OPERATIONAL),
        (openai.InternalServerError("down", response=httpx.Response(503, request=REQUEST), body=None),
         ErrorKind.OPERATIONAL),
        (openai.BadRequestError("bad", response=httpx.Response(400, request=REQUEST), body=None), ErrorKind.FATAL),
    ],
)
def test_map_openai_error(error, kind):
    assert map_openai_error(error).kind is kind


@pytest.mark.asyncio
async def test_malformed_response_is_fatal(translator, mock_openai):
    broken = MagicMock()
    broken.choices = []
    mock_openai.chat.completions.create.return_value = broken

    with pytest.raises(PipelineError) as exc_info:
        await translator.translate_text("text")

    assert exc_info.value.kind is ErrorKind.FATAL
