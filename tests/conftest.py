import pytest
from typer.testing import CliRunner
from unittest.mock import AsyncMock

from novelcli.infrastructure.config import settings


class FakeClock:
    """Manually advanced time source injected into time-dependent components."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture(scope="session")
def runner():
    """Provides a Typer CliRunner instance."""
    return CliRunner()


@pytest.fixture
def no_sleep(mocker):
    """Replaces asyncio.sleep everywhere with an AsyncMock recording the delays."""
    fake = AsyncMock(return_value=None)
    mocker.patch("asyncio.sleep", fake)
    return fake


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Keeps tests independent of the developer's config file, .env and API keys."""
    for key in ("OPENAI_API_KEY", "DEEPSEEK_API_KEY", "GROQ_API_KEY"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr(settings, "_config", {})
    monkeypatch.setattr(settings, "_loaded", True)
    settings.clear_test_config()
    yield
    settings.clear_test_config()
