"""Per-request state machine, timings and transient-file ownership."""

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from storage.temp_files import TempResourceManager

LOGGER = logging.getLogger(__name__)


class PipelineState(str, Enum):
    CREATED = "created"
    REJECTED = "rejected"
    TRANSCRIBING = "transcribing"
    TRANSCRIBED = "transcribed"
    NO_SPEECH = "no_speech"
    TRANSCRIPTION_FAILED = "transcription_failed"
    RETRIEVING = "retrieving"
    GENERATING = "generating"
    GENERATED = "generated"
    GENERATION_FAILED = "generation_failed"
    SYNTHESIZING = "synthesizing"
    SYNTHESIS_FAILED = "synthesis_failed"
    COMPLETED = "completed"


TRANSITIONS: dict[PipelineState, frozenset[PipelineState]] = {
    PipelineState.CREATED: frozenset(
        {
            PipelineState.TRANSCRIBING,
            PipelineState.RETRIEVING,
            PipelineState.SYNTHESIZING,
            PipelineState.REJECTED,
        }
    ),
    PipelineState.TRANSCRIBING: frozenset(
        {
            PipelineState.TRANSCRIBED,
            PipelineState.NO_SPEECH,
            PipelineState.TRANSCRIPTION_FAILED,
        }
    ),
    PipelineState.TRANSCRIBED: frozenset({PipelineState.RETRIEVING, PipelineState.COMPLETED}),
    PipelineState.RETRIEVING: frozenset({PipelineState.GENERATING}),
    PipelineState.GENERATING: frozenset(
        {PipelineState.GENERATED, PipelineState.GENERATION_FAILED}
    ),
    PipelineState.GENERATED: frozenset({PipelineState.SYNTHESIZING, PipelineState.COMPLETED}),
    PipelineState.SYNTHESIZING: frozenset(
        {PipelineState.COMPLETED, PipelineState.SYNTHESIS_FAILED}
    ),
}

TERMINAL_STATES = frozenset(
    {
        PipelineState.REJECTED,
        PipelineState.NO_SPEECH,
        PipelineState.TRANSCRIPTION_FAILED,
        PipelineState.GENERATION_FAILED,
        PipelineState.SYNTHESIS_FAILED,
        PipelineState.COMPLETED,
    }
)

# Stage whose fatal error ends the run -> terminal failure state.
FAILURE_STATES = {
    PipelineState.CREATED: PipelineState.REJECTED,  # invalid input, no stage started
    PipelineState.TRANSCRIBING: PipelineState.TRANSCRIPTION_FAILED,
    PipelineState.GENERATING: PipelineState.GENERATION_FAILED,
    PipelineState.SYNTHESIZING: PipelineState.SYNTHESIS_FAILED,
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class PipelineRun:
    """One end-to-end request through the orchestrator."""

    temp_files: TempResourceManager
    run_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    state: PipelineState = PipelineState.CREATED
    timings: dict[str, float] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)
    history: list[PipelineState] = field(default_factory=lambda: [PipelineState.CREATED])
    closed: bool = False
    started_at: float = field(default_factory=time.perf_counter, repr=False)

    @classmethod
    def create(cls, temp_dir: Path | str) -> PipelineRun:
        return cls(temp_files=TempResourceManager(temp_dir))

    @property
    def finished(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, target: PipelineState) -> None:
        allowed = TRANSITIONS.get(self.state, frozenset())
        if target not in allowed:
            raise InvalidTransition(f"{self.state.value} -> {target.value}")
        LOGGER.debug("Run %s: %s -> %s", self.run_id, self.state.value, target.value)
        self.state = target
        self.history.append(target)

    def fail(self, exc: BaseException) -> None:
        """Move to the terminal failure state of the current stage."""

        self.errors.append(f"{type(exc).__name__}: {exc}")
        failure = FAILURE_STATES.get(self.state)
        if failure is not None:
            self.transition(failure)

    def elapsed_ms(self) -> float:
        return round((time.perf_counter() - self.started_at) * 1000, 2)

    @contextmanager
    def timed(self, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            self.timings[name] = round((time.perf_counter() - started) * 1000, 2)

    def close(self) -> int:
        """Release every transient file owned by this run. Idempotent."""

        released = self.temp_files.cleanup()
        if not self.closed:
            self.closed = True
            LOGGER.info(
                "Run %s finished in state %s (timings=%s, released=%d)",
                self.run_id,
                self.state.value,
                self.timings,
                released,
            )
        return released
