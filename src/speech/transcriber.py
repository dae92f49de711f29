"""Single-shot speech-to-text over a canonical waveform."""

from __future__ import annotations

import asyncio
import json
import logging
import math
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any

from langdetect import DetectorFactory, LangDetectException, detect

from config.settings import Settings, get_settings
from pipeline.errors import (
    ProviderAuthError,
    ProviderRateLimited,
    ProviderTimeout,
    TranscriptionError,
)
from speech.audio import AudioAsset

DetectorFactory.seed = 7  # deterministic language detection

LOGGER = logging.getLogger(__name__)

TICKS_PER_SECOND = 10_000_000


class TranscriptionStatus(str, Enum):
    RECOGNIZED = "recognized"
    NO_SPEECH = "no_speech"
    CANCELED = "canceled"
    ERROR = "error"


class CancellationKind(str, Enum):
    AUTH = "auth"
    QUOTA = "quota"
    NETWORK = "network"
    OTHER = "other"


@dataclass(frozen=True)
class TranscriptionResult:
    """Outcome of one recognition pass."""

    status: TranscriptionStatus
    text: str = ""
    confidence: float = 0.0
    duration: float = 0.0
    language: str | None = None
    cancellation: CancellationKind | None = None
    error_detail: str | None = None

    @property
    def has_speech(self) -> bool:
        return self.status == TranscriptionStatus.RECOGNIZED and bool(self.text.strip())

    def raise_for_status(self) -> None:
        """Raise the pipeline error matching a failed recognition.

        Recognized and NoSpeech results are not failures and return silently.
        """

        if self.status in (TranscriptionStatus.RECOGNIZED, TranscriptionStatus.NO_SPEECH):
            return

        detail = self.error_detail or None
        if self.status == TranscriptionStatus.CANCELED:
            if self.cancellation == CancellationKind.AUTH:
                raise ProviderAuthError(detail and f"Speech service authentication failed: {detail}")
            if self.cancellation == CancellationKind.QUOTA:
                raise ProviderRateLimited(detail and f"Speech service quota exceeded: {detail}")
            if self.cancellation == CancellationKind.NETWORK:
                raise ProviderTimeout(detail and f"Speech service unreachable: {detail}")
            raise TranscriptionError(f"Speech recognition cancelled: {detail or 'unknown reason'}")
        raise TranscriptionError(f"Speech recognition error: {detail or 'unknown error'}")


def no_speech_result(duration: float = 0.0) -> TranscriptionResult:
    return TranscriptionResult(status=TranscriptionStatus.NO_SPEECH, duration=duration)


class BaseTranscriber(ABC):
    """Interface for all speech-to-text backends.

    Implementations never delete the waveform they are given; the caller owns it.
    """

    @abstractmethod
    async def transcribe(self, asset: AudioAsset) -> TranscriptionResult:
        """Run one blocking recognition pass over a canonical waveform."""


@dataclass(frozen=True)
class RecognitionOptions:
    language: str
    initial_silence_timeout_ms: int
    end_silence_timeout_ms: int

    @classmethod
    def from_settings(cls, settings: Settings) -> RecognitionOptions:
        return cls(
            language=settings.recognition_language,
            initial_silence_timeout_ms=settings.initial_silence_timeout_ms,
            end_silence_timeout_ms=settings.end_silence_timeout_ms,
        )


class AzureTranscriber(BaseTranscriber):
    """Wrapper around the Azure Cognitive Services Speech SDK recognizer."""

    def __init__(self, settings: Settings | None = None, *, speechsdk: Any = None) -> None:
        settings = settings or get_settings()
        if speechsdk is None:
            try:
                import azure.cognitiveservices.speech as speechsdk
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise RuntimeError(
                    "azure-cognitiveservices-speech is required for AzureTranscriber."
                ) from exc

        if not settings.azure_speech_key or not settings.azure_speech_region:
            raise ValueError("Azure speech key and region must be configured.")

        self._speechsdk = speechsdk
        self._key = settings.azure_speech_key
        self._region = settings.azure_speech_region
        self._options = RecognitionOptions.from_settings(settings)

    async def transcribe(self, asset: AudioAsset) -> TranscriptionResult:
        LOGGER.info("Starting speech-to-text transcription for %s", asset.path.name)
        result = await asyncio.to_thread(self._recognize_once, asset, self._options)
        if result.status == TranscriptionStatus.RECOGNIZED:
            LOGGER.info(
                "Speech transcribed successfully (confidence=%.2f): %s",
                result.confidence,
                result.text[:100],
            )
        elif result.status == TranscriptionStatus.NO_SPEECH:
            LOGGER.warning("No speech could be recognized in %s", asset.path.name)
        else:
            LOGGER.error(
                "Speech recognition %s (%s): %s",
                result.status.value,
                result.cancellation.value if result.cancellation else "-",
                result.error_detail,
            )
        return result

    def _speech_config(self, options: RecognitionOptions) -> Any:
        sdk = self._speechsdk
        speech_config = sdk.SpeechConfig(subscription=self._key, region=self._region)
        speech_config.speech_recognition_language = options.language
        speech_config.output_format = sdk.OutputFormat.Detailed
        speech_config.set_property(
            sdk.PropertyId.SpeechServiceConnection_InitialSilenceTimeoutMs,
            str(options.initial_silence_timeout_ms),
        )
        speech_config.set_property(
            sdk.PropertyId.SpeechServiceConnection_EndSilenceTimeoutMs,
            str(options.end_silence_timeout_ms),
        )
        speech_config.request_word_level_timestamps()
        speech_config.enable_dictation()
        return speech_config

    def _recognize_once(self, asset: AudioAsset, options: RecognitionOptions) -> TranscriptionResult:
        sdk = self._speechsdk
        audio_config = sdk.audio.AudioConfig(filename=str(asset.path))
        recognizer = sdk.SpeechRecognizer(
            speech_config=self._speech_config(options),
            audio_config=audio_config,
        )
        try:
            result = recognizer.recognize_once_async().get()
        except Exception as exc:  # SDK raises bare RuntimeError on transport failures
            return TranscriptionResult(
                status=TranscriptionStatus.ERROR,
                error_detail=str(exc),
            )
        finally:
            del recognizer  # releases the SDK's handle on the waveform
        return self._to_result(result, options)

    def _to_result(self, result: Any, options: RecognitionOptions) -> TranscriptionResult:
        sdk = self._speechsdk
        duration = (result.duration or 0) / TICKS_PER_SECOND

        if result.reason == sdk.ResultReason.RecognizedSpeech:
            text = (result.text or "").strip()
            if not text:
                return no_speech_result(duration)
            return TranscriptionResult(
                status=TranscriptionStatus.RECOGNIZED,
                text=text,
                confidence=_detailed_confidence(result.json),
                duration=duration,
                language=options.language,
            )

        if result.reason == sdk.ResultReason.NoMatch:
            return no_speech_result(duration)

        if result.reason == sdk.ResultReason.Canceled:
            details = result.cancellation_details
            if details.reason == sdk.CancellationReason.EndOfStream:
                return no_speech_result(duration)
            return TranscriptionResult(
                status=TranscriptionStatus.CANCELED,
                cancellation=self._classify_cancellation(details),
                error_detail=details.error_details or str(details.reason),
            )

        return TranscriptionResult(
            status=TranscriptionStatus.ERROR,
            error_detail=f"Unexpected result: {result.reason}",
        )

    def _classify_cancellation(self, details: Any) -> CancellationKind:
        codes = self._speechsdk.CancellationErrorCode
        code = details.error_code
        if code in (codes.AuthenticationFailure, codes.Forbidden):
            return CancellationKind.AUTH
        if code == codes.TooManyRequests:
            return CancellationKind.QUOTA
        if code in (codes.ConnectionFailure, codes.ServiceTimeout, codes.ServiceUnavailable):
            return CancellationKind.NETWORK
        return CancellationKind.OTHER


def _detailed_confidence(raw_json: str | None) -> float:
    if not raw_json:
        return 1.0
    try:
        payload = json.loads(raw_json)
        best = payload.get("NBest") or []
        return max(0.0, min(1.0, float(best[0]["Confidence"]))) if best else 1.0
    except (ValueError, KeyError, TypeError, IndexError):
        LOGGER.debug("Could not read confidence from recognition JSON")
        return 1.0


class WhisperTranscriber(BaseTranscriber):
    """Offline recognition using faster-whisper."""

    def __init__(self, settings: Settings | None = None, *, model: Any = None) -> None:
        settings = settings or get_settings()
        if model is None:
            try:
                from faster_whisper import WhisperModel
            except ImportError as exc:  # pragma: no cover - optional dependency
                raise RuntimeError("faster-whisper is required for WhisperTranscriber.") from exc

            model = WhisperModel(
                model_size_or_path=settings.whisper_model_size,
                device=settings.whisper_device,
                compute_type=settings.whisper_compute_type,
            )
        self._model = model
        self._language_hint = settings.recognition_language.split("-")[0] or None

    async def transcribe(self, asset: AudioAsset) -> TranscriptionResult:
        LOGGER.info("Starting local transcription for %s", asset.path.name)
        try:
            return await asyncio.to_thread(self._transcribe_sync, asset)
        except (RuntimeError, OSError, ValueError) as exc:
            LOGGER.exception("Local transcription failed: %s", exc)
            return TranscriptionResult(status=TranscriptionStatus.ERROR, error_detail=str(exc))

    def _transcribe_sync(self, asset: AudioAsset) -> TranscriptionResult:
        segments, info = self._model.transcribe(
            str(asset.path),
            beam_size=5,
            task="transcribe",
            language=self._language_hint,
            temperature=0.0,
            vad_filter=True,
        )

        texts: list[str] = []
        confidences: list[float] = []
        for segment in segments:
            text = segment.text.strip()
            if not text:
                continue
            texts.append(text)
            confidences.append(max(0.0, min(1.0, math.exp(segment.avg_logprob))))

        duration = float(getattr(info, "duration", 0.0) or 0.0)
        if not texts:
            return no_speech_result(duration)

        merged = " ".join(texts).strip()
        return TranscriptionResult(
            status=TranscriptionStatus.RECOGNIZED,
            text=merged,
            confidence=float(sum(confidences) / len(confidences)),
            duration=duration,
            language=getattr(info, "language", None) or _safe_detect(merged),
        )


def _safe_detect(text: str) -> str | None:
    try:
        return detect(text)
    except LangDetectException:
        LOGGER.debug("Language detection failed for text: %s", text)
    return None


def build_transcriber(settings: Settings | None = None) -> BaseTranscriber:
    """Factory returning the configured transcriber."""

    settings = settings or get_settings()
    if settings.stt_provider == "azure":
        return AzureTranscriber(settings)
    if settings.stt_provider == "whisper":
        return WhisperTranscriber(settings)
    raise ValueError(f"Unsupported STT provider: {settings.stt_provider}")
