"""Shared FastAPI dependencies.

The orchestrator is built once per process from the current settings and
reused by every request; provider SDKs are only imported when it is built.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import TYPE_CHECKING

from config.settings import get_settings

if TYPE_CHECKING:  # pragma: no cover
    from pipeline.orchestrator import PipelineOrchestrator

LOGGER = logging.getLogger(__name__)


@lru_cache(maxsize=1)
def _orchestrator_factory() -> PipelineOrchestrator:
    from pipeline.orchestrator import PipelineOrchestrator

    settings = get_settings()
    LOGGER.info(
        "Building pipeline orchestrator (stt=%s, tts=%s, llm=%s, temp_dir=%s)",
        settings.stt_provider,
        settings.tts_provider,
        settings.llm_provider,
        settings.temp_dir,
    )
    return PipelineOrchestrator(settings=settings)


def get_orchestrator() -> PipelineOrchestrator:
    return _orchestrator_factory()


def reset_orchestrator() -> None:
    """Forget the cached orchestrator; the next request builds a fresh one."""

    _orchestrator_factory.cache_clear()
