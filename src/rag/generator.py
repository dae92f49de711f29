"""Answer generation over a grounded (or general-knowledge) prompt."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from llm.base import BaseLLMClient
from pipeline.errors import GenerationError, GenerationTimeout, VoiceRagError
from prompts.loader import load_prompt
from rag.prompt_builder import RagPrompt

LOGGER = logging.getLogger(__name__)

SYSTEM_PROMPT = load_prompt("answer_system.txt")
HEALTH_CHECK_PROMPT = 'Hello, this is a test. Please respond with "Test successful".'


@dataclass(frozen=True)
class GenerationOptions:
    temperature: float = 0.3
    max_tokens: int = 800


@dataclass(frozen=True)
class GeneratedAnswer:
    text: str
    usage: dict[str, int] = field(default_factory=dict)
    duration_ms: float = 0.0
    model: str | None = None


class AnswerGenerator:
    """Issues one completion request per prompt; never retries."""

    def __init__(
        self,
        llm_client: BaseLLMClient,
        *,
        timeout: float = 60.0,
        defaults: GenerationOptions | None = None,
    ) -> None:
        self._llm = llm_client
        self._timeout = timeout
        self._defaults = defaults or GenerationOptions()

    @property
    def defaults(self) -> GenerationOptions:
        return self._defaults

    async def generate(
        self,
        prompt: RagPrompt | str,
        options: GenerationOptions | None = None,
    ) -> GeneratedAnswer:
        options = options or self._defaults
        prompt_text = prompt.text if isinstance(prompt, RagPrompt) else prompt
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt_text},
        ]

        LOGGER.info(
            "Generating answer (temperature=%.2f, max_tokens=%d, prompt_chars=%d)",
            options.temperature,
            options.max_tokens,
            len(prompt_text),
        )
        started = time.perf_counter()
        try:
            completion = await asyncio.wait_for(
                self._llm.chat(
                    messages,
                    temperature=options.temperature,
                    max_tokens=options.max_tokens,
                ),
                timeout=self._timeout,
            )
        except asyncio.TimeoutError as exc:
            raise GenerationTimeout() from exc
        except VoiceRagError:
            raise
        except Exception as exc:
            LOGGER.exception("Unexpected completion failure: %s", exc)
            raise GenerationError(f"RAG service error: {exc}") from exc

        duration_ms = (time.perf_counter() - started) * 1000
        text = completion.text.strip()
        if not text:
            raise GenerationError("Failed to get response from RAG system.")

        LOGGER.info(
            "Answer generated (%d chars in %.0f ms, usage=%s)",
            len(text),
            duration_ms,
            completion.usage,
        )
        return GeneratedAnswer(
            text=text,
            usage={
                key: value
                for key, value in completion.usage.items()
                if isinstance(value, int)
            },
            duration_ms=duration_ms,
            model=completion.model,
        )

    async def check_health(self) -> dict[str, Any]:
        try:
            completion = await asyncio.wait_for(
                self._llm.chat(
                    [{"role": "user", "content": HEALTH_CHECK_PROMPT}],
                    temperature=0,
                    max_tokens=10,
                ),
                timeout=self._timeout,
            )
        except (asyncio.TimeoutError, VoiceRagError) as exc:
            LOGGER.error("Completion service validation error: %s", exc)
            return {"healthy": False, "error": str(exc) or type(exc).__name__}
        return {"healthy": True, "model": completion.model, "response": completion.text}
