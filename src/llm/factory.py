"""Factory returning configured LLM client implementation."""

from __future__ import annotations

from config.settings import Settings, get_settings
from llm.base import BaseLLMClient
from llm.vllm_client import VLLMClient

try:  # optional imports
    from llm.openai_client import AzureOpenAIClient, OpenAIClient  # type: ignore
except ImportError:  # pragma: no cover - optional dependency
    AzureOpenAIClient = OpenAIClient = None  # type: ignore


def build_llm_client(settings: Settings | None = None) -> BaseLLMClient:
    """Instantiate the configured LLM connector."""

    settings = settings or get_settings()
    if settings.llm_provider == "self_hosted_vllm":
        return VLLMClient(settings)
    if settings.llm_provider in {"azure_openai", "openai"}:
        if OpenAIClient is None:
            raise ImportError("openai package not installed.")
        if settings.llm_provider == "azure_openai":
            return AzureOpenAIClient(settings)
        return OpenAIClient(settings)
    raise ValueError(f"Unsupported llm_provider: {settings.llm_provider}")
