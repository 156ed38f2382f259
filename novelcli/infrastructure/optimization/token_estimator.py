"""Service for estimating token counts and splitting long texts.

Uses ``tiktoken`` to measure chapter text before it is sent to a translation
model, and to split chapters that would exceed the model's output budget into
paragraph-aligned chunks.
Bounded Context: Token Management
"""

import logging
from typing import List, Optional

import tiktoken

from novelcli.domain.models.common import TokenCount

logger = logging.getLogger(__name__)

DEFAULT_TOKENIZER_MODEL = "cl100k_base" # Common for GPT-3.5/4 and close enough for Llama models
APPROX_CHARS_PER_TOKEN = 4

class TokenEstimator:
    """Estimates token counts using tiktoken."""

    def __init__(self, tokenizer_model_name: Optional[str] = None):
        """Initializes the TokenEstimator."""
        self.tokenizer_name = tokenizer_model_name or DEFAULT_TOKENIZER_MODEL
        self.tokenizer = tiktoken.get_encoding(self.tokenizer_name)
        logger.info(f"TokenEstimator initialized with tiktoken model: {self.tokenizer_name}")

    def estimate_tokens(self, text: str) -> TokenCount:
        """Estimates the token count for a single string of text.

        Args:
            text: The text to estimate tokens for.

        Returns:
            The estimated token count.
        """
        if not text:
            return TokenCount(0)
        count = len(self.tokenizer.encode(text))
        logger.debug(f"Estimated tokens for text (len {len(text)}): {count} (using {self.tokenizer_name})")
        return TokenCount(count)

    def split_text(self, text: str, max_tokens: int) -> List[str]:
        """Splits ``text`` into chunks of at most ``max_tokens`` tokens.

        Paragraph boundaries are kept where possible; a single paragraph larger
        than the limit is cut on token boundaries.
        """
        if self.estimate_tokens(text) <= max_tokens:
            return [text]

        chunks: List[str] = []
        current: List[str] = []
        current_tokens = 0
        for paragraph in text.split("\n"):
            paragraph_tokens = self.estimate_tokens(paragraph) + 1
            if paragraph_tokens > max_tokens:
                if current:
                    chunks.append("\n".join(current))
                    current, current_tokens = [], 0
                encoded = self.tokenizer.encode(paragraph)
                for start in range(0, len(encoded), max_tokens):
                    chunks.append(self.tokenizer.decode(encoded[start:start + max_tokens]))
                continue
            if current_tokens + paragraph_tokens > max_tokens and current:
                chunks.append("\n".join(current))
                current, current_tokens = [], 0
            current.append(paragraph)
            current_tokens += paragraph_tokens
        if current:
            chunks.append("\n".join(current))

        logger.debug(f"Split text of {len(text)} chars into {len(chunks)} chunks (max {max_tokens} tokens)")
        return chunks
