"""Application-wide configuration loading and validation."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

SUPPORTED_AUDIO_EXTENSIONS = (
    "wav",
    "mp3",
    "m4a",
    "aac",
    "ogg",
    "flac",
    "webm",
    "amr",
    "3gp",
)


class Settings(BaseSettings):
    """Centralized environment configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
    )

    environment: Literal["local", "dev", "prod"] = Field(default="local")
    log_level: str = Field(default="INFO")

    # Azure Speech (shared by recognition and synthesis)
    azure_speech_key: str | None = Field(default=None)
    azure_speech_region: str | None = Field(default=None)

    # Speech recognition
    stt_provider: Literal["azure", "whisper"] = Field(default="azure")
    recognition_language: str = Field(default="en-US")
    initial_silence_timeout_ms: int = Field(default=8000, ge=0)
    end_silence_timeout_ms: int = Field(default=3000, ge=0)
    whisper_model_size: str = Field(default="Systran/faster-whisper-small")
    whisper_compute_type: str = Field(default="auto")  # e.g. float16, int8_float16
    whisper_device: str = Field(default="auto")

    # Text to speech
    tts_provider: Literal["azure", "coqui"] = Field(default="azure")
    default_voice: str = Field(default="en-US-JennyNeural")
    synthesis_format: Literal["mp3", "wav"] = Field(default="mp3")
    synthesis_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for a single synthesis call.",
    )

    # Azure Cognitive Search
    azure_search_endpoint: str | None = Field(default=None)
    azure_search_api_key: str | None = Field(default=None)
    azure_search_index_name: str | None = Field(default=None)
    azure_search_api_version: str = Field(default="2023-07-01-preview")
    search_top_k: int = Field(default=5, ge=1)
    search_timeout_seconds: float = Field(default=30.0, gt=0)

    # LLM connectivity
    llm_provider: Literal["azure_openai", "openai", "self_hosted_vllm"] = Field(
        default="azure_openai"
    )
    llm_endpoint: str | None = Field(
        default=None,
        description="Azure OpenAI resource endpoint or base URL of the inference server.",
    )
    llm_api_key: str | None = Field(default=None)
    llm_model: str = Field(
        default="gpt-4o-mini",
        description="Model identifier, or deployment name for Azure OpenAI.",
    )
    azure_openai_api_version: str = Field(default="2024-02-15-preview")
    completion_temperature: float = Field(default=0.3, ge=0.0, le=2.0)
    completion_max_tokens: int = Field(default=800, ge=1)
    completion_timeout_seconds: float = Field(default=60.0, gt=0)

    # Prompt assembly
    prompt_max_document_chars: int = Field(default=1500, ge=1)
    prompt_context_char_budget: int = Field(default=6000, ge=1)

    # Uploads and transient files
    max_upload_bytes: int = Field(default=25 * 1024 * 1024)
    allowed_audio_extensions: tuple[str, ...] = Field(default=SUPPORTED_AUDIO_EXTENSIONS)
    ffmpeg_binary: str = Field(default="ffmpeg")
    conversion_timeout_seconds: float = Field(default=60.0, gt=0)
    temp_dir: Path = Field(default=Path("./uploads"))

    @field_validator("temp_dir")
    @classmethod
    def ensure_temp_dir(cls, value: Path) -> Path:
        value.mkdir(parents=True, exist_ok=True)
        return value

    @field_validator("allowed_audio_extensions")
    @classmethod
    def normalize_extensions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(ext.lower().lstrip(".") for ext in value)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance."""

    return Settings()
