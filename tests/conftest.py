from __future__ import annotations

import os
import sys
from datetime import timedelta
from enum import Enum
from pathlib import Path
from types import SimpleNamespace

import numpy as np
import pytest
import soundfile as sf

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_PATH = REPO_ROOT / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


# ---------------------------------------------------------------------------
# Fake Azure Speech SDK
# ---------------------------------------------------------------------------


class ResultReason(Enum):
    RecognizedSpeech = 3
    NoMatch = 0
    Canceled = 1
    SynthesizingAudioCompleted = 10
    VoicesListRetrieved = 23


class CancellationReason(Enum):
    Error = 1
    EndOfStream = 2
    CancelledByUser = 3


class CancellationErrorCode(Enum):
    NoError = 0
    AuthenticationFailure = 1
    BadRequest = 2
    TooManyRequests = 3
    Forbidden = 4
    ConnectionFailure = 5
    ServiceTimeout = 6
    ServiceError = 7
    ServiceUnavailable = 8
    RuntimeError = 9


class PropertyId(Enum):
    SpeechServiceConnection_InitialSilenceTimeoutMs = 3200
    SpeechServiceConnection_EndSilenceTimeoutMs = 3201


class OutputFormat(Enum):
    Simple = 0
    Detailed = 1


class SpeechSynthesisOutputFormat(Enum):
    Audio16Khz32KBitRateMonoMp3 = 4
    Riff16Khz16BitMonoPcm = 2


class FakeSpeechConfig:
    def __init__(self, subscription: str, region: str) -> None:
        self.subscription = subscription
        self.region = region
        self.properties: dict = {}
        self.output_format = None
        self.speech_recognition_language = None
        self.speech_synthesis_voice_name = None
        self.synthesis_output_format = None
        self.dictation = False

    def set_property(self, key, value) -> None:
        self.properties[key] = value

    def request_word_level_timestamps(self) -> None:
        self.properties["word_timestamps"] = True

    def enable_dictation(self) -> None:
        self.dictation = True

    def set_speech_synthesis_output_format(self, value) -> None:
        self.synthesis_output_format = value


class _Future:
    def __init__(self, producer) -> None:
        self._producer = producer

    def get(self):
        return self._producer()


class FakeRecognizer:
    def __init__(self, sdk: FakeSpeechSDK, speech_config, audio_config) -> None:
        self._sdk = sdk
        self.speech_config = speech_config
        self.audio_config = audio_config

    def recognize_once_async(self) -> _Future:
        def produce():
            self._sdk.recognized_files.append(Path(self.audio_config.filename))
            if self._sdk.recognition_error is not None:
                raise self._sdk.recognition_error
            return self._sdk.recognition_result

        return _Future(produce)


class FakeSynthesizer:
    def __init__(self, sdk: FakeSpeechSDK, speech_config, audio_config) -> None:
        self._sdk = sdk
        self.speech_config = speech_config
        self.audio_config = audio_config

    def speak_ssml_async(self, ssml: str) -> _Future:
        def produce():
            self._sdk.spoken_ssml.append(ssml)
            path = Path(self.audio_config.filename)
            self._sdk.synthesis_files.append(path)
            path.write_bytes(self._sdk.audio_payload)
            if self._sdk.synthesis_error is not None:
                raise self._sdk.synthesis_error
            return SimpleNamespace(
                reason=self._sdk.synthesis_reason,
                audio_duration=timedelta(seconds=1.5),
                cancellation_details=SimpleNamespace(
                    reason=CancellationReason.Error,
                    error_details="Synthesis canceled by service",
                    error_code=CancellationErrorCode.ServiceError,
                ),
            )

        return _Future(produce)

    def get_voices_async(self) -> _Future:
        voices = [
            SimpleNamespace(
                name="Microsoft Server Speech Text to Speech Voice (en-US, JennyNeural)",
                short_name="en-US-JennyNeural",
                local_name="Jenny",
                gender=SimpleNamespace(name="Female"),
                locale="en-US",
            ),
            SimpleNamespace(
                name="Microsoft Server Speech Text to Speech Voice (de-CH, LeniNeural)",
                short_name="de-CH-LeniNeural",
                local_name="Leni",
                gender=SimpleNamespace(name="Female"),
                locale="de-CH",
            ),
        ]
        return _Future(lambda: SimpleNamespace(reason=ResultReason.VoicesListRetrieved, voices=voices))


class FakeSpeechSDK:
    """Stand-in for ``azure.cognitiveservices.speech`` driven by test attributes."""

    ResultReason = ResultReason
    CancellationReason = CancellationReason
    CancellationErrorCode = CancellationErrorCode
    PropertyId = PropertyId
    OutputFormat = OutputFormat
    SpeechSynthesisOutputFormat = SpeechSynthesisOutputFormat

    def __init__(self) -> None:
        self.audio = SimpleNamespace(
            AudioConfig=lambda filename: SimpleNamespace(filename=filename),
            AudioOutputConfig=lambda filename: SimpleNamespace(filename=filename),
        )
        self.configs: list[FakeSpeechConfig] = []
        self.recognition_result = recognized("what is the return policy")
        self.recognition_error: Exception | None = None
        self.recognized_files: list[Path] = []
        self.synthesis_reason = ResultReason.SynthesizingAudioCompleted
        self.synthesis_error: Exception | None = None
        self.audio_payload = b"ID3-fake-mp3-payload"
        self.spoken_ssml: list[str] = []
        self.synthesis_files: list[Path] = []

    def SpeechConfig(self, subscription: str, region: str) -> FakeSpeechConfig:
        config = FakeSpeechConfig(subscription, region)
        self.configs.append(config)
        return config

    def SpeechRecognizer(self, speech_config, audio_config) -> FakeRecognizer:
        return FakeRecognizer(self, speech_config, audio_config)

    def SpeechSynthesizer(self, speech_config, audio_config=None) -> FakeSynthesizer:
        return FakeSynthesizer(self, speech_config, audio_config)


def recognized(text: str, confidence: float = 0.93, duration_ticks: int = 21_000_000):
    return SimpleNamespace(
        reason=ResultReason.RecognizedSpeech,
        text=text,
        duration=duration_ticks,
        json=f'{{"NBest": [{{"Confidence": {confidence}}}]}}',
        cancellation_details=None,
    )


def no_match():
    return SimpleNamespace(
        reason=ResultReason.NoMatch,
        text="",
        duration=0,
        json=None,
        cancellation_details=None,
    )


def canceled(error_code: CancellationErrorCode, reason=CancellationReason.Error):
    return SimpleNamespace(
        reason=ResultReason.Canceled,
        text="",
        duration=0,
        json=None,
        cancellation_details=SimpleNamespace(
            reason=reason,
            error_code=error_code,
            error_details=f"{error_code.name} reported by service",
        ),
    )


@pytest.fixture()
def fake_speechsdk() -> FakeSpeechSDK:
    return FakeSpeechSDK()


# ---------------------------------------------------------------------------
# Settings and audio helpers
# ---------------------------------------------------------------------------


@pytest.fixture()
def temp_dir(tmp_path: Path) -> Path:
    path = tmp_path / "runtime"
    path.mkdir()
    return path


@pytest.fixture()
def settings(temp_dir: Path):
    from config.settings import Settings

    return Settings(
        _env_file=None,
        temp_dir=temp_dir,
        azure_speech_key="speech-key",
        azure_speech_region="westeurope",
        azure_search_endpoint="https://search.example.net",
        azure_search_api_key="search-key",
        azure_search_index_name="docs",
        llm_endpoint="https://llm.example.net",
        llm_api_key="llm-key",
        ffmpeg_binary="ffmpeg-not-installed-for-tests",
    )


def write_tone(
    path: Path,
    *,
    sample_rate: int = 16000,
    channels: int = 1,
    seconds: float = 0.5,
    subtype: str = "PCM_16",
    format: str | None = None,
) -> Path:
    t = np.linspace(0, seconds, int(sample_rate * seconds), endpoint=False)
    tone = 0.3 * np.sin(2 * np.pi * 440 * t).astype(np.float32)
    data = np.stack([tone] * channels, axis=1) if channels > 1 else tone
    sf.write(str(path), data, sample_rate, subtype=subtype, format=format)
    return path


@pytest.fixture()
def audio_dir(tmp_path: Path) -> Path:
    path = tmp_path / "incoming"
    path.mkdir()
    return path


# ---------------------------------------------------------------------------
# FastAPI application
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def app(tmp_path_factory: pytest.TempPathFactory):
    tmp_dir = tmp_path_factory.mktemp("uploads")

    # Must be set before importing modules that read settings at import time.
    os.environ["TEMP_DIR"] = str(tmp_dir)

    from config.settings import get_settings

    get_settings.cache_clear()

    import main

    return main.app


class FakeOrchestrator:
    """Canned pipeline results so API tests never reach speech or LLM providers."""

    def __init__(self, temp_dir: Path) -> None:
        self.temp_dir = temp_dir
        self.transcript = "what is the return policy"
        self.error: Exception | None = None
        self.uploads: list[tuple[Path, bytes]] = []
        self.voices: list = []
        self.text_calls: list[dict] = []
        self.synthesized: list[tuple[str, object]] = []

    def new_run(self):
        from pipeline.run import PipelineRun

        return PipelineRun.create(self.temp_dir)

    def _transcription(self):
        from speech.transcriber import TranscriptionResult, TranscriptionStatus, no_speech_result

        if not self.transcript:
            return no_speech_result(1.0)
        return TranscriptionResult(
            status=TranscriptionStatus.RECOGNIZED,
            text=self.transcript,
            confidence=0.91,
            duration=2.1,
        )

    def _audio(self):
        from speech.tts import SynthesizedAudio

        return SynthesizedAudio(
            audio=b"ID3-fake-mp3", format="mp3", duration=1.2, voice_used="en-US-JennyNeural"
        )

    async def voice_query(self, asset, *, voice=None, run=None, **kwargs):
        from pipeline.orchestrator import NO_SPEECH_MESSAGE, VoiceQueryResult

        self.uploads.append((asset.path, asset.path.read_bytes()))
        self.voices.append(voice)
        if self.error is not None:
            raise self.error
        transcription = self._transcription()
        if not transcription.has_speech:
            return VoiceQueryResult(
                question="",
                answer=None,
                audio=None,
                transcription=transcription,
                message=NO_SPEECH_MESSAGE,
            )
        return VoiceQueryResult(
            question=transcription.text,
            answer="Items can be returned within 14 days.",
            audio=self._audio(),
            transcription=transcription,
            documents_found=2,
        )

    async def text_query(self, query, *, search=None, generation=None, include_context=False, run=None):
        from pipeline.orchestrator import TextQueryResult

        self.text_calls.append(
            {"query": query, "search": search, "generation": generation, "include_context": include_context}
        )
        if self.error is not None:
            raise self.error
        return TextQueryResult(
            answer="Items can be returned within 14 days.",
            query=query,
            documents_found=2,
            timing={"searchTime": 12.5, "completionTime": 340.0, "totalTime": 360.1},
            usage={"total_tokens": 42},
            context={"documents": [], "prompt": "..."} if include_context else None,
        )

    async def transcribe_only(self, asset, *, run=None):
        from pipeline.orchestrator import NO_SPEECH_MESSAGE, TranscriptionOutcome

        self.uploads.append((asset.path, asset.path.read_bytes()))
        if self.error is not None:
            raise self.error
        transcription = self._transcription()
        if not transcription.has_speech:
            return TranscriptionOutcome(
                text="", confidence=0.0, duration=transcription.duration, message=NO_SPEECH_MESSAGE
            )
        return TranscriptionOutcome(
            text=transcription.text,
            confidence=transcription.confidence,
            duration=transcription.duration,
        )

    async def synthesize_only(self, text, *, voice=None, run=None):
        self.synthesized.append((text, voice))
        if self.error is not None:
            raise self.error
        return self._audio()

    async def synthesize_ssml(self, ssml, *, run=None):
        self.synthesized.append((ssml, None))
        if self.error is not None:
            raise self.error
        return self._audio()

    async def list_voices(self):
        return [
            {"name": "en-US-JennyNeural", "locale": "en-US"},
            {"name": "de-CH-LeniNeural", "locale": "de-CH"},
            {"name": "en-GB-Standard", "locale": "en-GB"},
        ]

    async def health(self):
        return {
            "search": {"healthy": True, "documentCount": 42},
            "completion": {"healthy": True, "model": "gpt-4o-mini"},
        }


@pytest.fixture()
def fake_orchestrator(tmp_path: Path) -> FakeOrchestrator:
    path = tmp_path / "api-runs"
    path.mkdir()
    return FakeOrchestrator(path)


@pytest.fixture()
def client(app, fake_orchestrator):
    # Override the orchestrator so tests never build speech or LLM clients.
    from fastapi.testclient import TestClient

    import api.dependencies as deps

    app.dependency_overrides[deps.get_orchestrator] = lambda: fake_orchestrator

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
