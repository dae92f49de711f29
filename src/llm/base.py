"""Shared abstractions for language model clients."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from dataclasses import dataclass, field


@dataclass(frozen=True)
class ChatCompletion:
    """Text and accounting returned by a chat completion call."""

    text: str
    usage: dict[str, int] = field(default_factory=dict)
    model: str | None = None


class BaseLLMClient(ABC):
    """Abstract base class for LLM providers.

    Implementations translate provider failures into the pipeline error
    taxonomy (auth, rate limit, timeout, generic generation failure) and never
    retry on their own.
    """

    @abstractmethod
    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.3,
        max_tokens: int = 800,
    ) -> ChatCompletion:
        """Return a chat-style completion."""
