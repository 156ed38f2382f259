"""Request and response shapes exchanged with chat-completion translators."""

from dataclasses import dataclass
from typing import Optional, TypedDict

from .common import TokenUsage


class ChatMessage(TypedDict):
    role: str # 'system' or 'user'
    content: str


@dataclass
class StructuredAIResponse:
    """One completion parsed out of an SDK response object."""
    content: str
    token_usage: Optional[TokenUsage] = None
    model_name: Optional[str] = None
    latency_ms: Optional[float] = None
