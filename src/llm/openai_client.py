"""OpenAI/Azure OpenAI client wrapper."""

from __future__ import annotations

import logging
from collections.abc import Iterable

import openai
from openai import AsyncAzureOpenAI, AsyncOpenAI

from config.settings import Settings, get_settings
from llm.base import BaseLLMClient, ChatCompletion
from pipeline.errors import (
    GenerationError,
    GenerationTimeout,
    ProviderAuthError,
    ProviderRateLimited,
)

LOGGER = logging.getLogger(__name__)


class OpenAIClient(BaseLLMClient):
    """Wrapper for the OpenAI Chat Completion API."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        settings = settings or get_settings()
        if client is None:
            if not settings.llm_api_key:
                raise ValueError("LLM API key must be configured for OpenAI client.")
            client = AsyncOpenAI(
                api_key=settings.llm_api_key,
                base_url=settings.llm_endpoint or None,
                timeout=settings.completion_timeout_seconds,
                max_retries=0,
            )
        self._client = client
        self._model = settings.llm_model

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.3,
        max_tokens: int = 800,
    ) -> ChatCompletion:
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=list(messages),
                temperature=temperature,
                max_tokens=max_tokens,
                top_p=0.95,
                frequency_penalty=0,
                presence_penalty=0,
            )
        except openai.RateLimitError as exc:
            raise ProviderRateLimited() from exc
        except openai.AuthenticationError as exc:
            raise ProviderAuthError() from exc
        except openai.APITimeoutError as exc:
            raise GenerationTimeout() from exc
        except openai.APIStatusError as exc:
            LOGGER.error("Completion request failed (status=%s): %s", exc.status_code, exc.message)
            raise GenerationError(f"RAG service error: {exc.message}") from exc
        except openai.APIError as exc:
            raise GenerationError(f"RAG service error: {exc}") from exc

        if not response.choices:
            raise GenerationError("LLM response contains no choices.")

        usage = response.usage.model_dump() if response.usage else {}
        return ChatCompletion(
            text=response.choices[0].message.content or "",
            usage={key: value for key, value in usage.items() if isinstance(value, int)},
            model=response.model,
        )


class AzureOpenAIClient(OpenAIClient):
    """Azure OpenAI deployment; ``llm_model`` names the deployment."""

    def __init__(self, settings: Settings | None = None) -> None:
        settings = settings or get_settings()
        if not settings.llm_api_key or not settings.llm_endpoint:
            raise ValueError("Azure OpenAI endpoint and API key must be configured.")

        client = AsyncAzureOpenAI(
            api_key=settings.llm_api_key,
            azure_endpoint=settings.llm_endpoint,
            api_version=settings.azure_openai_api_version,
            timeout=settings.completion_timeout_seconds,
            max_retries=0,
        )
        super().__init__(settings, client=client)
