"""Main orchestration class for the voice question-answering pipeline."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Protocol

from config.settings import Settings, get_settings
from pipeline.errors import (
    GenerationError,
    InputError,
    SynthesisError,
    TranscriptionError,
    VoiceRagError,
)
from pipeline.run import PipelineRun, PipelineState
from rag.generator import AnswerGenerator, GeneratedAnswer, GenerationOptions
from rag.prompt_builder import RagPrompt, build_rag_prompt
from rag.retriever import AzureSearchRetriever, RetrievedDocument, SearchOptions
from speech.audio import AudioAsset, validate_asset
from speech.normalizer import FormatNormalizer
from speech.transcriber import BaseTranscriber, TranscriptionResult, build_transcriber
from speech.tts import BaseSynthesizer, SynthesizedAudio, VoiceOptions, build_synthesizer

LOGGER = logging.getLogger(__name__)

NO_SPEECH_MESSAGE = "No speech detected in audio"

# Unexpected exceptions escaping a stage are reported as that stage's error.
STAGE_ERRORS: dict[PipelineState, type[VoiceRagError]] = {
    PipelineState.TRANSCRIBING: TranscriptionError,
    PipelineState.GENERATING: GenerationError,
    PipelineState.SYNTHESIZING: SynthesisError,
}


class Retriever(Protocol):
    async def search(
        self, query: str, options: SearchOptions | None = None
    ) -> list[RetrievedDocument]: ...


def _utc_timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


@dataclass
class VoiceQueryResult:
    question: str
    answer: str | None
    audio: SynthesizedAudio | None
    transcription: TranscriptionResult
    documents_found: int = 0
    usage: dict[str, int] = field(default_factory=dict)
    message: str | None = None
    timestamp: str = field(default_factory=_utc_timestamp)

    @property
    def no_speech(self) -> bool:
        return not self.transcription.has_speech


@dataclass
class TextQueryResult:
    answer: str
    query: str
    documents_found: int
    timing: dict[str, float]
    usage: dict[str, int]
    context: dict[str, Any] | None = None


@dataclass
class TranscriptionOutcome:
    text: str
    confidence: float
    duration: float
    message: str | None = None


class PipelineOrchestrator:
    """Sequences transcription, retrieval, generation and synthesis for one request.

    Stages run strictly one after another. Whatever terminal state a run
    reaches, every transient file it created is released before the call
    returns or raises.
    """

    def __init__(
        self,
        *,
        settings: Settings | None = None,
        normalizer: FormatNormalizer | None = None,
        transcriber: BaseTranscriber | None = None,
        retriever: Retriever | None = None,
        generator: AnswerGenerator | None = None,
        synthesizer: BaseSynthesizer | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._normalizer = normalizer or FormatNormalizer(
            ffmpeg_binary=self._settings.ffmpeg_binary,
            timeout=self._settings.conversion_timeout_seconds,
        )
        self._transcriber = transcriber or build_transcriber(self._settings)
        self._retriever = retriever or AzureSearchRetriever(self._settings)
        self._generator = generator or self._build_generator()
        self._synthesizer = synthesizer or build_synthesizer(self._settings)

    def _build_generator(self) -> AnswerGenerator:
        from llm.factory import build_llm_client

        return AnswerGenerator(
            build_llm_client(self._settings),
            timeout=self._settings.completion_timeout_seconds,
            defaults=GenerationOptions(
                temperature=self._settings.completion_temperature,
                max_tokens=self._settings.completion_max_tokens,
            ),
        )

    def new_run(self) -> PipelineRun:
        return PipelineRun.create(self._settings.temp_dir)

    # ------------------------------------------------------------------
    # Pipeline variants
    # ------------------------------------------------------------------

    async def voice_query(
        self,
        asset: AudioAsset,
        *,
        voice: VoiceOptions | None = None,
        search: SearchOptions | None = None,
        generation: GenerationOptions | None = None,
        synthesize: bool = True,
        run: PipelineRun | None = None,
    ) -> VoiceQueryResult:
        """Voice in, answer (and optionally speech) out."""

        run = run or self.new_run()
        with self._supervise(run):
            run.temp_files.adopt(asset.path)
            self._validate_asset(asset)
            LOGGER.info(
                "Processing voice query (run=%s, %s, %d bytes)",
                run.run_id,
                asset.mimetype,
                asset.size_bytes,
            )

            transcription = await self._transcribe(run, asset)
            if run.state == PipelineState.NO_SPEECH:
                return VoiceQueryResult(
                    question="",
                    answer=None,
                    audio=None,
                    transcription=transcription,
                    message=NO_SPEECH_MESSAGE,
                )

            documents = await self._retrieve(run, transcription.text, search)
            _, answer = await self._generate(run, transcription.text, documents, generation)

            audio = None
            if synthesize:
                audio = await self._synthesize(run, answer.text, voice)
            else:
                run.transition(PipelineState.COMPLETED)

            return VoiceQueryResult(
                question=transcription.text,
                answer=answer.text,
                audio=audio,
                transcription=transcription,
                documents_found=len(documents),
                usage=answer.usage,
            )

    async def text_query(
        self,
        query: str,
        *,
        search: SearchOptions | None = None,
        generation: GenerationOptions | None = None,
        include_context: bool = False,
        run: PipelineRun | None = None,
    ) -> TextQueryResult:
        """Text in, grounded answer out; no transcription or synthesis."""

        run = run or self.new_run()
        with self._supervise(run):
            if not query or not query.strip():
                raise InputError("Query text is required.")
            query = query.strip()
            LOGGER.info("Processing text query (run=%s): %s", run.run_id, query[:100])

            documents = await self._retrieve(run, query, search)
            prompt, answer = await self._generate(run, query, documents, generation)
            run.transition(PipelineState.COMPLETED)

            return TextQueryResult(
                answer=answer.text,
                query=query,
                documents_found=len(documents),
                timing={
                    "searchTime": run.timings.get("search", 0.0),
                    "completionTime": run.timings.get("completion", 0.0),
                    "totalTime": run.elapsed_ms(),
                },
                usage=answer.usage,
                context=_context_preview(documents, prompt) if include_context else None,
            )

    async def transcribe_only(
        self, asset: AudioAsset, *, run: PipelineRun | None = None
    ) -> TranscriptionOutcome:
        run = run or self.new_run()
        with self._supervise(run):
            run.temp_files.adopt(asset.path)
            self._validate_asset(asset)
            transcription = await self._transcribe(run, asset)
            if run.state == PipelineState.NO_SPEECH:
                return TranscriptionOutcome(
                    text="",
                    confidence=0.0,
                    duration=transcription.duration,
                    message=NO_SPEECH_MESSAGE,
                )
            run.transition(PipelineState.COMPLETED)
            return TranscriptionOutcome(
                text=transcription.text,
                confidence=transcription.confidence,
                duration=transcription.duration,
            )

    async def synthesize_only(
        self,
        text: str,
        *,
        voice: VoiceOptions | None = None,
        run: PipelineRun | None = None,
    ) -> SynthesizedAudio:
        run = run or self.new_run()
        with self._supervise(run):
            if not text or not text.strip():
                raise InputError("Text is required for synthesis.")
            return await self._synthesize(run, text.strip(), voice)

    async def synthesize_ssml(
        self, ssml: str, *, run: PipelineRun | None = None
    ) -> SynthesizedAudio:
        run = run or self.new_run()
        with self._supervise(run):
            if not ssml or not ssml.strip():
                raise InputError("SSML input is required.")
            run.transition(PipelineState.SYNTHESIZING)
            with run.timed("synthesis"):
                audio = await self._synthesizer.synthesize_ssml(ssml, temp_files=run.temp_files)
            run.transition(PipelineState.COMPLETED)
            return audio

    async def list_voices(self) -> list[dict[str, str]]:
        return await self._synthesizer.list_voices()

    async def health(self) -> dict[str, Any]:
        search_health: dict[str, Any] = {"healthy": None}
        check = getattr(self._retriever, "check_health", None)
        if check is not None:
            search_health = await check()
        return {
            "search": search_health,
            "completion": await self._generator.check_health(),
        }

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    @contextmanager
    def _supervise(self, run: PipelineRun) -> Iterator[PipelineRun]:
        try:
            yield run
        except VoiceRagError as exc:
            LOGGER.error("Run %s failed in %s: %s", run.run_id, run.state.value, exc)
            run.fail(exc)
            raise
        except Exception as exc:
            error_cls = STAGE_ERRORS.get(run.state)
            LOGGER.exception("Run %s crashed in %s: %s", run.run_id, run.state.value, exc)
            run.fail(exc)
            if error_cls is None:
                raise
            raise error_cls(f"{error_cls.default_detail} ({exc})") from exc
        finally:
            run.timings["total"] = run.elapsed_ms()
            run.close()

    def _validate_asset(self, asset: AudioAsset) -> None:
        validate_asset(
            asset,
            max_bytes=self._settings.max_upload_bytes,
            allowed_extensions=self._settings.allowed_audio_extensions,
        )

    async def _transcribe(self, run: PipelineRun, asset: AudioAsset) -> TranscriptionResult:
        run.transition(PipelineState.TRANSCRIBING)
        with run.timed("transcription"):
            canonical = await self._normalizer.normalize(asset, run.temp_files)
            try:
                result = await self._transcriber.transcribe(canonical)
            finally:
                if canonical is not asset:
                    run.temp_files.release(canonical.path)

        result.raise_for_status()
        if result.has_speech:
            run.transition(PipelineState.TRANSCRIBED)
        else:
            run.transition(PipelineState.NO_SPEECH)
        return result

    async def _retrieve(
        self, run: PipelineRun, query: str, options: SearchOptions | None
    ) -> list[RetrievedDocument]:
        run.transition(PipelineState.RETRIEVING)
        with run.timed("search"):
            try:
                documents = await self._retriever.search(query, options)
            except Exception as exc:
                # Retrieval never aborts a run; the answer is generated without context.
                LOGGER.warning("Retrieval unavailable, continuing without context: %s", exc)
                run.errors.append(f"RetrievalUnavailable: {exc}")
                documents = []
        run.transition(PipelineState.GENERATING)
        return list(documents)

    async def _generate(
        self,
        run: PipelineRun,
        query: str,
        documents: list[RetrievedDocument],
        options: GenerationOptions | None,
    ) -> tuple[RagPrompt, GeneratedAnswer]:
        top_k = self._settings.search_top_k
        prompt = build_rag_prompt(
            query,
            documents,
            max_documents=top_k,
            max_document_chars=self._settings.prompt_max_document_chars,
            char_budget=self._settings.prompt_context_char_budget,
        )
        LOGGER.info(
            "Built RAG prompt (documents=%d, used=%d, fallback=%s, chars=%d)",
            len(documents),
            prompt.documents_used,
            prompt.used_fallback,
            len(prompt.text),
        )
        with run.timed("completion"):
            answer = await self._generator.generate(prompt, options)
        run.transition(PipelineState.GENERATED)
        return prompt, answer

    async def _synthesize(
        self, run: PipelineRun, text: str, voice: VoiceOptions | None
    ) -> SynthesizedAudio:
        run.transition(PipelineState.SYNTHESIZING)
        with run.timed("synthesis"):
            audio = await self._synthesizer.synthesize(text, voice, temp_files=run.temp_files)
        run.transition(PipelineState.COMPLETED)
        return audio


def _context_preview(documents: list[RetrievedDocument], prompt: RagPrompt) -> dict[str, Any]:
    return {
        "documents": [
            {
                "content": doc.content[:200] + "...",
                "source": doc.source,
                "score": doc.score,
            }
            for doc in documents
        ],
        "prompt": prompt.text[:500] + "...",
    }
