"""API-facing Pydantic models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from speech.tts import VoiceOptions


class VoiceOptionsPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    voice_name: str | None = Field(default=None, alias="voiceName")
    rate: str = "medium"
    pitch: str = "medium"
    volume: str = "medium"
    language: str = "en-US"

    def to_options(self) -> VoiceOptions:
        return VoiceOptions(
            voice_name=self.voice_name,
            rate=self.rate,
            pitch=self.pitch,
            volume=self.volume,
            language=self.language,
        )


class VoiceQueryResponse(BaseModel):
    question: str
    answer: str | None
    audio: str | None = Field(description="Base64-encoded audio of the spoken answer.")
    audio_mime: str | None = Field(default=None, alias="audioMime")
    timestamp: str

    model_config = ConfigDict(populate_by_name=True)


class VoiceQueryBase64Request(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    audio_base64: str = Field(alias="audioBase64", min_length=1)
    format: str = "wav"
    voice_options: VoiceOptionsPayload = Field(
        default_factory=VoiceOptionsPayload, alias="voiceOptions"
    )


class TextQueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    query: str = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    max_tokens: int | None = Field(default=None, ge=1, alias="maxTokens")
    top: int | None = Field(default=None, ge=1, le=50)
    search_mode: Literal["any", "all"] = Field(default="any", alias="searchMode")
    filter: str | None = None
    include_context: bool = Field(default=False, alias="includeContext")


class Timing(BaseModel):
    search_time: float = Field(alias="searchTime")
    completion_time: float = Field(alias="completionTime")
    total_time: float = Field(alias="totalTime")

    model_config = ConfigDict(populate_by_name=True)


class TextQueryResponse(BaseModel):
    answer: str
    documents_found: int = Field(alias="documentsFound")
    timing: Timing
    usage: dict[str, int]
    context: dict[str, Any] | None = None

    model_config = ConfigDict(populate_by_name=True)


class TranscriptionResponse(BaseModel):
    text: str
    confidence: float
    duration: float
    message: str | None = None


class TextToSpeechRequest(VoiceOptionsPayload):
    text: str = Field(min_length=1)
    format: Literal["audio", "json"] = "audio"


class SsmlRequest(BaseModel):
    ssml: str = Field(min_length=1)


class SynthesisResponse(BaseModel):
    audio_base64: str = Field(alias="audioBase64")
    format: str
    duration: float
    voice_used: str | None = Field(default=None, alias="voiceUsed")

    model_config = ConfigDict(populate_by_name=True)
