"""Chapter translator backed by DeepSeek's OpenAI-compatible chat API."""

import os
from typing import Any, Optional

from novelcli.infrastructure.ai.openai.gpt_translator import GptTranslator


class DeepSeekTranslator(GptTranslator):
    """DeepSeek implementation of the ChapterTranslator interface.

    Reuses the OpenAI client pointed at the DeepSeek endpoint; error mapping
    and response parsing are identical.
    """

    provider_name = "deepseek"
    DEFAULT_MODEL = "deepseek-chat"
    API_KEY_ENV = "DEEPSEEK_API_KEY"
    BASE_URL = "https://api.deepseek.com"

    def __init__(self, api_key: Optional[str] = None, model: Optional[str] = None, **kwargs: Any):
        api_key = api_key or os.getenv(self.API_KEY_ENV)
        if api_key:
            self.validate_api_key(api_key)
        super().__init__(api_key=api_key, model=model, **kwargs)

    @staticmethod
    def validate_api_key(api_key: str) -> None:
        """Rejects keys that cannot be DeepSeek keys.

        Raises:
            ValueError: If the key is empty or lacks the ``sk-`` prefix.
        """
        if not isinstance(api_key, str) or not api_key:
            raise ValueError("DeepSeek API key is missing or invalid.")
        if not api_key.startswith("sk-"):
            raise ValueError('Invalid DeepSeek API key format (expected the "sk-" prefix).')
