"""Text-to-speech rendering of generated answers."""

from __future__ import annotations

import asyncio
import base64
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any, TypeVar
from xml.sax.saxutils import escape, quoteattr

import soundfile as sf

from config.settings import Settings, get_settings
from pipeline.errors import InputError, ProviderTimeout, SynthesisError
from storage.temp_files import TempResourceManager

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

CONTENT_TYPES = {"mp3": "audio/mpeg", "wav": "audio/wav"}
_SSML_VOICE = re.compile(r"<voice[^>]*\bname\s*=\s*[\"']([^\"']+)[\"']", re.IGNORECASE)


@dataclass(frozen=True)
class VoiceOptions:
    """Per-call voice selection; ``None`` voice means the configured default."""

    voice_name: str | None = None
    rate: str = "medium"
    pitch: str = "medium"
    volume: str = "medium"
    language: str = "en-US"


@dataclass(frozen=True)
class SynthesizedAudio:
    audio: bytes
    format: str
    duration: float
    voice_used: str | None

    @property
    def content_type(self) -> str:
        return CONTENT_TYPES.get(self.format, "application/octet-stream")

    @property
    def audio_base64(self) -> str:
        return base64.b64encode(self.audio).decode("ascii")


def build_ssml(text: str, voice_name: str, options: VoiceOptions | None = None) -> str:
    options = options or VoiceOptions()
    return (
        f"<speak version='1.0' xmlns='http://www.w3.org/2001/10/synthesis' "
        f"xml:lang={quoteattr(options.language)}>"
        f"<voice name={quoteattr(voice_name)}>"
        f"<prosody rate={quoteattr(options.rate)} pitch={quoteattr(options.pitch)} "
        f"volume={quoteattr(options.volume)}>"
        f"{escape(text)}"
        "</prosody></voice></speak>"
    )


def _duration_seconds(value: Any) -> float:
    if isinstance(value, timedelta):
        return value.total_seconds()
    return float(value or 0) / 10_000_000  # SDK ticks


class BaseSynthesizer(ABC):
    """Interface for all text-to-speech synthesizers.

    Every rendering goes through a uniquely named temp file that is removed
    before the call returns, whether synthesis succeeded or raised.
    """

    def __init__(self, settings: Settings) -> None:
        self._temp_dir = settings.temp_dir
        self._timeout = settings.synthesis_timeout_seconds

    @abstractmethod
    async def synthesize(
        self,
        text: str,
        voice: VoiceOptions | None = None,
        *,
        temp_files: TempResourceManager | None = None,
    ) -> SynthesizedAudio:
        """Render plain text with the given voice options."""

    @abstractmethod
    async def synthesize_ssml(
        self, ssml: str, *, temp_files: TempResourceManager | None = None
    ) -> SynthesizedAudio:
        """Render pre-marked-up SSML."""

    @abstractmethod
    async def list_voices(self) -> list[dict[str, str]]:
        """Describe the voices available to this synthesizer."""

    @contextmanager
    def _temp_scope(self, temp_files: TempResourceManager | None) -> Iterator[TempResourceManager]:
        if temp_files is not None:
            yield temp_files
            return
        with TempResourceManager(self._temp_dir) as owned:
            yield owned

    async def _bounded(self, func: Callable[..., T], *args: Any) -> T:
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise ProviderTimeout(
                f"Speech synthesis timed out after {self._timeout:.0f}s."
            ) from exc

    @staticmethod
    def _release(temp_files: TempResourceManager, path: Path) -> None:
        if not temp_files.release(path):
            # The run was drained while this worker was still rendering.
            path.unlink(missing_ok=True)


class AzureSynthesizer(BaseSynthesizer):
    """Wrapper around Azure Cognitive Services Speech SDK."""

    def __init__(self, settings: Settings | None = None, *, speechsdk: Any = None) -> None:
        settings = settings or get_settings()
        super().__init__(settings)
        if speechsdk is None:
            try:
                import azure.cognitiveservices.speech as speechsdk
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise RuntimeError(
                    "azure-cognitiveservices-speech is required for AzureSynthesizer."
                ) from exc

        if not settings.azure_speech_key or not settings.azure_speech_region:
            raise ValueError("Azure speech key and region must be configured.")

        self._speechsdk = speechsdk
        self._key = settings.azure_speech_key
        self._region = settings.azure_speech_region
        self._default_voice = settings.default_voice
        self._format = settings.synthesis_format

    def _speech_config(self, voice_name: str) -> Any:
        sdk = self._speechsdk
        speech_config = sdk.SpeechConfig(subscription=self._key, region=self._region)
        speech_config.speech_synthesis_voice_name = voice_name
        output_format = (
            sdk.SpeechSynthesisOutputFormat.Audio16Khz32KBitRateMonoMp3
            if self._format == "mp3"
            else sdk.SpeechSynthesisOutputFormat.Riff16Khz16BitMonoPcm
        )
        speech_config.set_speech_synthesis_output_format(output_format)
        return speech_config

    async def synthesize(
        self,
        text: str,
        voice: VoiceOptions | None = None,
        *,
        temp_files: TempResourceManager | None = None,
    ) -> SynthesizedAudio:
        if not text or not text.strip():
            raise InputError("Text is required for synthesis.")
        voice = voice or VoiceOptions()
        voice_name = voice.voice_name or self._default_voice
        LOGGER.info("Starting text-to-speech synthesis (%d chars, voice=%s)", len(text), voice_name)
        return await self._render(build_ssml(text, voice_name, voice), voice_name, temp_files, "speech")

    async def synthesize_ssml(
        self, ssml: str, *, temp_files: TempResourceManager | None = None
    ) -> SynthesizedAudio:
        if not ssml or not ssml.strip():
            raise InputError("SSML input is required.")
        match = _SSML_VOICE.search(ssml)
        voice_name = match.group(1) if match else self._default_voice
        LOGGER.info("Starting SSML synthesis (voice=%s)", voice_name)
        return await self._render(ssml, voice_name, temp_files, "ssml_speech")

    async def _render(
        self,
        ssml: str,
        voice_name: str,
        temp_files: TempResourceManager | None,
        stem: str,
    ) -> SynthesizedAudio:
        with self._temp_scope(temp_files) as scope:
            audio, duration = await self._bounded(self._speak_to_file, ssml, voice_name, scope, stem)

        LOGGER.info("Speech synthesis completed (%d bytes, %.2fs)", len(audio), duration)
        return SynthesizedAudio(
            audio=audio,
            format=self._format,
            duration=duration,
            voice_used=voice_name,
        )

    def _speak_to_file(
        self,
        ssml: str,
        voice_name: str,
        temp_files: TempResourceManager,
        stem: str,
    ) -> tuple[bytes, float]:
        sdk = self._speechsdk
        path = temp_files.new_path(stem, f".{self._format}")
        try:
            audio_config = sdk.audio.AudioOutputConfig(filename=str(path))
            synthesizer = sdk.SpeechSynthesizer(
                speech_config=self._speech_config(voice_name),
                audio_config=audio_config,
            )
            result = synthesizer.speak_ssml_async(ssml).get()
            del synthesizer  # flushes and closes the output file

            if result.reason == sdk.ResultReason.Canceled:
                details = result.cancellation_details
                raise SynthesisError(
                    f"Speech synthesis failed: {details.error_details or details.reason}"
                )
            if result.reason != sdk.ResultReason.SynthesizingAudioCompleted:
                raise SynthesisError(f"Speech synthesis failed: {result.reason}")
            if not path.exists():
                raise SynthesisError("Audio file was not created.")

            audio = path.read_bytes()
            if not audio:
                raise SynthesisError("Synthesized audio is empty.")
            return audio, _duration_seconds(result.audio_duration)
        except RuntimeError as exc:
            LOGGER.error("Speech synthesis error: %s", exc)
            raise SynthesisError(f"Speech synthesis failed: {exc}") from exc
        finally:
            self._release(temp_files, path)

    async def list_voices(self) -> list[dict[str, str]]:
        return await self._bounded(self._list_voices_sync)

    def _list_voices_sync(self) -> list[dict[str, str]]:
        sdk = self._speechsdk
        synthesizer = sdk.SpeechSynthesizer(
            speech_config=self._speech_config(self._default_voice),
            audio_config=None,
        )
        result = synthesizer.get_voices_async().get()
        if result.reason != sdk.ResultReason.VoicesListRetrieved:
            raise SynthesisError("Failed to retrieve voices.")
        return [
            {
                "name": voice.name,
                "displayName": voice.short_name,
                "localName": voice.local_name,
                "gender": getattr(voice.gender, "name", str(voice.gender)),
                "locale": voice.locale,
            }
            for voice in result.voices
        ]


class CoquiSynthesizer(BaseSynthesizer):
    """Offline TTS using Coqui TTS models."""

    model_name = "tts_models/multilingual/multi-dataset/xtts_v2"

    def __init__(self, settings: Settings | None = None, *, tts: Any = None) -> None:
        settings = settings or get_settings()
        super().__init__(settings)
        if tts is None:
            try:
                from TTS.api import TTS  # type: ignore[import]
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise RuntimeError("TTS package required for CoquiSynthesizer.") from exc

            tts = TTS(model_name=self.model_name)
        self._tts = tts

    async def synthesize(
        self,
        text: str,
        voice: VoiceOptions | None = None,
        *,
        temp_files: TempResourceManager | None = None,
    ) -> SynthesizedAudio:
        if not text or not text.strip():
            raise InputError("Text is required for synthesis.")
        voice = voice or VoiceOptions()
        with self._temp_scope(temp_files) as scope:
            audio, duration = await self._bounded(self._render_to_file, text, voice, scope)
        return SynthesizedAudio(
            audio=audio,
            format="wav",
            duration=duration,
            voice_used=voice.voice_name or self.model_name,
        )

    def _render_to_file(
        self, text: str, voice: VoiceOptions, temp_files: TempResourceManager
    ) -> tuple[bytes, float]:
        path = temp_files.new_path("speech", ".wav")
        try:
            self._tts.tts_to_file(
                text=text,
                file_path=str(path),
                speaker=voice.voice_name,
                language=voice.language.split("-")[0],
            )
            duration = sf.info(str(path)).duration
            return path.read_bytes(), float(duration)
        except (RuntimeError, OSError, ValueError) as exc:
            raise SynthesisError(f"Speech synthesis failed: {exc}") from exc
        finally:
            self._release(temp_files, path)

    async def synthesize_ssml(
        self, ssml: str, *, temp_files: TempResourceManager | None = None
    ) -> SynthesizedAudio:
        raise SynthesisError("SSML input is not supported by the offline synthesizer.")

    async def list_voices(self) -> list[dict[str, str]]:
        speakers = getattr(self._tts, "speakers", None) or []
        return [{"name": speaker, "locale": "multilingual"} for speaker in speakers]


def build_synthesizer(settings: Settings | None = None) -> BaseSynthesizer:
    """Factory returning the configured synthesizer."""

    settings = settings or get_settings()
    if settings.tts_provider == "azure":
        return AzureSynthesizer(settings)
    if settings.tts_provider == "coqui":
        return CoquiSynthesizer(settings)
    raise ValueError(f"Unsupported TTS provider: {settings.tts_provider}")
