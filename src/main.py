"""Entry point for the voice question-answering service."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from api.dependencies import reset_orchestrator
from api.routes import router as api_router
from config.settings import get_settings
from pipeline.errors import VoiceRagError


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    reset_orchestrator()


settings = get_settings()

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

app = FastAPI(
    title="Voice RAG Assistant",
    description="Spoken questions answered from a search index and read back as speech.",
    lifespan=lifespan,
)
app.include_router(api_router, prefix="/api")


@app.exception_handler(VoiceRagError)
async def voice_rag_error_handler(request: Request, exc: VoiceRagError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.detail, "code": type(exc).__name__},
    )
