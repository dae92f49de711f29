"""Client for self-hosted vLLM or TGI compatible inference endpoints."""

from __future__ import annotations

import logging
from typing import Iterable, List

import httpx

from config.settings import Settings, get_settings
from llm.base import BaseLLMClient, ChatCompletion
from pipeline.errors import (
    GenerationError,
    GenerationTimeout,
    ProviderAuthError,
    ProviderRateLimited,
)

LOGGER = logging.getLogger(__name__)


class VLLMClient(BaseLLMClient):
    """Minimal client for a self-hosted inference server."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = settings or get_settings()
        if not settings.llm_endpoint:
            raise ValueError("Self-hosted LLM endpoint must be configured.")

        self._endpoint = settings.llm_endpoint.rstrip("/")
        self._model = settings.llm_model
        self._api_key = settings.llm_api_key
        self._timeout = settings.completion_timeout_seconds
        self._transport = transport

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def chat(
        self,
        messages: Iterable[dict[str, str]],
        *,
        temperature: float = 0.3,
        max_tokens: int = 800,
    ) -> ChatCompletion:
        payload = {
            "model": self._model,
            "messages": list(messages),
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": 0.95,
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    f"{self._endpoint}/v1/chat/completions",
                    json=payload,
                    headers=self._headers(),
                )
            response.raise_for_status()
            data = response.json()
        except httpx.TimeoutException as exc:
            raise GenerationTimeout() from exc
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status == 429:
                raise ProviderRateLimited() from exc
            if status == 401:
                raise ProviderAuthError() from exc
            LOGGER.error("Inference server returned %s: %s", status, exc.response.text[:500])
            raise GenerationError(f"RAG service error: HTTP {status}") from exc
        except (httpx.HTTPError, ValueError) as exc:
            raise GenerationError(f"RAG service error: {exc}") from exc

        choices: List[dict] = data.get("choices", [])
        if not choices:
            raise GenerationError("LLM response contains no choices.")
        return ChatCompletion(
            text=choices[0]["message"]["content"] or "",
            usage=_int_usage(data.get("usage")),
            model=data.get("model"),
        )


def _int_usage(usage: dict | None) -> dict[str, int]:
    # Newer servers add nested or null detail fields next to the token counts.
    return {key: value for key, value in (usage or {}).items() if isinstance(value, int)}
