"""FastAPI routes exposing the voice query pipeline."""

from __future__ import annotations

import base64
import binascii
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse, Response

from api.dependencies import get_orchestrator
from api.schemas import (
    SsmlRequest,
    SynthesisResponse,
    TextQueryRequest,
    TextQueryResponse,
    TextToSpeechRequest,
    Timing,
    TranscriptionResponse,
    VoiceOptionsPayload,
    VoiceQueryBase64Request,
    VoiceQueryResponse,
)
from config.settings import get_settings
from pipeline.errors import InputError
from pipeline.run import PipelineRun
from rag.generator import GenerationOptions
from rag.retriever import SearchOptions
from speech.audio import AudioAsset
from speech.tts import SynthesizedAudio

if TYPE_CHECKING:  # pragma: no cover
    from pipeline.orchestrator import PipelineOrchestrator, VoiceQueryResult

LOGGER = logging.getLogger(__name__)

router = APIRouter()

ACCEPTED_CONTENT_PREFIXES = ("audio/", "video/", "application/octet-stream")


def _store_audio(data: bytes, extension: str, mimetype: str | None, run: PipelineRun) -> AudioAsset:
    settings = get_settings()
    extension = extension.lower().lstrip(".")
    if extension not in settings.allowed_audio_extensions:
        raise InputError("Only audio files are allowed.")
    if not data:
        raise InputError("No audio data received.")
    if len(data) > settings.max_upload_bytes:
        raise InputError(
            f"Audio file too large (max {settings.max_upload_bytes // (1024 * 1024)}MB)."
        )
    path = run.temp_files.write_bytes(data, "upload", f".{extension}")
    return AudioAsset.from_path(path, mimetype)


async def _ingest_upload(upload: UploadFile, run: PipelineRun) -> AudioAsset:
    if upload.content_type and not upload.content_type.startswith(ACCEPTED_CONTENT_PREFIXES):
        raise InputError("Only audio files are allowed.")
    data = await upload.read(get_settings().max_upload_bytes + 1)
    return _store_audio(data, Path(upload.filename or "").suffix, upload.content_type, run)


def _voice_response(result: VoiceQueryResult) -> JSONResponse | VoiceQueryResponse:
    if result.no_speech:
        return JSONResponse(
            status_code=400,
            content={
                "error": "No speech detected",
                "message": "Could not detect any speech in the audio",
                "question": "",
                "answer": None,
                "audio": None,
                "timestamp": result.timestamp,
            },
        )
    return VoiceQueryResponse(
        question=result.question,
        answer=result.answer,
        audio=result.audio.audio_base64 if result.audio else None,
        audio_mime=result.audio.content_type if result.audio else None,
        timestamp=result.timestamp,
    )


def _synthesis_response(audio: SynthesizedAudio) -> SynthesisResponse:
    return SynthesisResponse(
        audio_base64=audio.audio_base64,
        format=audio.format,
        duration=audio.duration,
        voice_used=audio.voice_used,
    )


@router.post("/voice-query", response_model=VoiceQueryResponse)
async def voice_query(
    audio: UploadFile = File(...),
    voice_name: str | None = Form(default=None, alias="voiceName"),
    rate: str = Form(default="medium"),
    pitch: str = Form(default="medium"),
    volume: str = Form(default="medium"),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    voice = VoiceOptionsPayload(
        voice_name=voice_name, rate=rate, pitch=pitch, volume=volume
    ).to_options()
    run = orchestrator.new_run()
    try:
        asset = await _ingest_upload(audio, run)
        result = await orchestrator.voice_query(asset, voice=voice, run=run)
    finally:
        run.close()
    return _voice_response(result)


@router.post("/voice-query-base64", response_model=VoiceQueryResponse)
async def voice_query_base64(
    payload: VoiceQueryBase64Request,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
):
    try:
        data = base64.b64decode(payload.audio_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InputError("audioBase64 is not valid base64.") from exc

    run = orchestrator.new_run()
    try:
        asset = _store_audio(data, payload.format, None, run)
        result = await orchestrator.voice_query(
            asset, voice=payload.voice_options.to_options(), run=run
        )
    finally:
        run.close()
    return _voice_response(result)


@router.post("/query", response_model=TextQueryResponse)
async def text_query(
    payload: TextQueryRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> TextQueryResponse:
    settings = get_settings()
    search = SearchOptions(
        top=payload.top or settings.search_top_k,
        search_mode=payload.search_mode,
        filter=payload.filter,
    )
    generation = GenerationOptions(
        temperature=(
            payload.temperature
            if payload.temperature is not None
            else settings.completion_temperature
        ),
        max_tokens=payload.max_tokens or settings.completion_max_tokens,
    )
    result = await orchestrator.text_query(
        payload.query,
        search=search,
        generation=generation,
        include_context=payload.include_context,
    )
    return TextQueryResponse(
        answer=result.answer,
        documents_found=result.documents_found,
        timing=Timing(
            search_time=result.timing["searchTime"],
            completion_time=result.timing["completionTime"],
            total_time=result.timing["totalTime"],
        ),
        usage=result.usage,
        context=result.context,
    )


@router.post("/speech-to-text", response_model=TranscriptionResponse)
async def speech_to_text(
    audio: UploadFile = File(...),
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> TranscriptionResponse:
    run = orchestrator.new_run()
    try:
        asset = await _ingest_upload(audio, run)
        outcome = await orchestrator.transcribe_only(asset, run=run)
    finally:
        run.close()
    return TranscriptionResponse(
        text=outcome.text,
        confidence=outcome.confidence,
        duration=outcome.duration,
        message=outcome.message,
    )


@router.post("/text-to-speech", response_model=None)
async def text_to_speech(
    payload: TextToSpeechRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> Response | SynthesisResponse:
    audio = await orchestrator.synthesize_only(payload.text, voice=payload.to_options())
    if payload.format == "json":
        return _synthesis_response(audio)

    LOGGER.info("Sending audio response (%d bytes, %s)", len(audio.audio), audio.content_type)
    return Response(
        content=audio.audio,
        media_type=audio.content_type,
        headers={
            "Content-Disposition": f'inline; filename="speech.{audio.format}"',
            "Cache-Control": "no-cache",
        },
    )


@router.post("/synthesize-ssml", response_model=SynthesisResponse)
async def synthesize_ssml(
    payload: SsmlRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> SynthesisResponse:
    audio = await orchestrator.synthesize_ssml(payload.ssml)
    return _synthesis_response(audio)


@router.get("/voices")
async def list_voices(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict:
    voices = await orchestrator.list_voices()
    popular = [
        voice
        for voice in voices
        if voice.get("locale", "").startswith("en-") and "Neural" in voice.get("name", "")
    ]
    return {"popularVoices": popular, "totalVoices": len(voices), "allVoices": voices}


@router.get("/health")
async def health(
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> dict:
    checks = await orchestrator.health()
    healthy = all(check.get("healthy") is not False for check in checks.values())
    return {"status": "ok" if healthy else "degraded", **checks}
