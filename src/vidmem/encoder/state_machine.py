"""
Encoder State Machine

Each Encoder manages one video encoding session.

States
------
- READY       accepts chunks
- COLLECTING  has pending chunks
- BUILDING    a detached build task is running
- COMPLETED   build succeeded; stats available
- FAILED      build failed; failure available

Every (state, event) pair is listed in ``_TRANSITIONS``: it either names the
next state or the reason the event is rejected. COMPLETED and FAILED are
terminal until ``reset``. All states answer ``get_state``.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from pydantic import BaseModel, ConfigDict

from .pipeline import BuildError, BuildJob, EncodeStats, run_build
from ..config import Settings
from ..core.errors import VidmemError
from ..embeddings.chunking import EMPTY_CHUNK, TextChunker
from ..embeddings.embedder import EmbeddingProvider
from ..media.qr import QRCodec
from ..media.video import FrameCodec, OpenCVFrameCodec

logger = logging.getLogger("vidmem.encoder")


class EncoderState(str, Enum):
    READY = "ready"
    COLLECTING = "collecting"
    BUILDING = "building"
    COMPLETED = "completed"
    FAILED = "failed"


class EncoderEvent(str, Enum):
    ADD = "add"
    BUILD = "build"
    BUILD_SUCCEEDED = "build_succeeded"
    BUILD_FAILED = "build_failed"
    RESET = "reset"


class StateErrorReason(str, Enum):
    NO_CHUNKS = "no_chunks"
    BUILDING_IN_PROGRESS = "building_in_progress"
    ALREADY_COMPLETED = "already_completed"
    UNEXPECTED_CALL_IN_STATE = "unexpected_call_in_state"


class StateError(VidmemError):
    """Raised when a call is not allowed in the encoder's current state."""

    def __init__(self, reason: StateErrorReason, state: EncoderState) -> None:
        super().__init__(
            f"{reason.value} (encoder is {state.value})",
            code=reason.value,
        )
        self.reason = reason
        self.state = state


_S = EncoderState
_E = EncoderEvent
_R = StateErrorReason

_TRANSITIONS: Dict[Tuple[EncoderState, EncoderEvent], Union[EncoderState, StateErrorReason]] = {
    (_S.READY, _E.ADD): _S.COLLECTING,
    (_S.READY, _E.BUILD): _S.BUILDING,
    (_S.READY, _E.RESET): _S.READY,
    (_S.READY, _E.BUILD_SUCCEEDED): _R.UNEXPECTED_CALL_IN_STATE,
    (_S.READY, _E.BUILD_FAILED): _R.UNEXPECTED_CALL_IN_STATE,

    (_S.COLLECTING, _E.ADD): _S.COLLECTING,
    (_S.COLLECTING, _E.BUILD): _S.BUILDING,
    (_S.COLLECTING, _E.RESET): _S.READY,
    (_S.COLLECTING, _E.BUILD_SUCCEEDED): _R.UNEXPECTED_CALL_IN_STATE,
    (_S.COLLECTING, _E.BUILD_FAILED): _R.UNEXPECTED_CALL_IN_STATE,

    (_S.BUILDING, _E.ADD): _R.BUILDING_IN_PROGRESS,
    (_S.BUILDING, _E.BUILD): _R.BUILDING_IN_PROGRESS,
    (_S.BUILDING, _E.RESET): _R.BUILDING_IN_PROGRESS,
    (_S.BUILDING, _E.BUILD_SUCCEEDED): _S.COMPLETED,
    (_S.BUILDING, _E.BUILD_FAILED): _S.FAILED,

    (_S.COMPLETED, _E.ADD): _R.ALREADY_COMPLETED,
    (_S.COMPLETED, _E.BUILD): _R.ALREADY_COMPLETED,
    (_S.COMPLETED, _E.RESET): _S.READY,
    (_S.COMPLETED, _E.BUILD_SUCCEEDED): _R.UNEXPECTED_CALL_IN_STATE,
    (_S.COMPLETED, _E.BUILD_FAILED): _R.UNEXPECTED_CALL_IN_STATE,

    (_S.FAILED, _E.ADD): _R.UNEXPECTED_CALL_IN_STATE,
    (_S.FAILED, _E.BUILD): _R.UNEXPECTED_CALL_IN_STATE,
    (_S.FAILED, _E.RESET): _S.READY,
    (_S.FAILED, _E.BUILD_SUCCEEDED): _R.UNEXPECTED_CALL_IN_STATE,
    (_S.FAILED, _E.BUILD_FAILED): _R.UNEXPECTED_CALL_IN_STATE,
}


class EncoderSnapshot(BaseModel):
    """Point-in-time view of a session, safe to hand to callers."""

    session_id: str
    state: EncoderState
    chunk_count: int
    output_path: Optional[str] = None
    index_path: Optional[str] = None
    stats: Optional[EncodeStats] = None
    failure: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


class Encoder:
    """
    One encoding session: collect chunks, then build video + index.

    All methods must be called from the event loop that runs the build.
    Mutating calls are rejected immediately (never queued) while a build
    is in progress.
    """

    def __init__(
        self,
        session_id: str,
        settings: Settings,
        embedder: EmbeddingProvider,
        *,
        chunker: Optional[TextChunker] = None,
        qr_codec: Optional[QRCodec] = None,
        frame_codec: Optional[FrameCodec] = None,
    ) -> None:
        self.session_id = session_id
        self.settings = settings
        self.embedder = embedder
        self.chunker = chunker or TextChunker.from_settings(settings.chunking)
        self.qr_codec = qr_codec or QRCodec(settings.qr)
        self.frame_codec = frame_codec or OpenCVFrameCodec()

        self._state = EncoderState.READY
        self._pending: List[str] = []
        self._output_path: Optional[Path] = None
        self._index_path: Optional[Path] = None
        self._stats: Optional[EncodeStats] = None
        self._failure: Optional[BaseException] = None
        self._task: Optional[asyncio.Task] = None

        logger.info("Starting encoder session %s", session_id)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _check(self, event: EncoderEvent) -> EncoderState:
        """
        Return the state ``event`` leads to, or raise StateError.
        """
        outcome = _TRANSITIONS[(self._state, event)]
        if isinstance(outcome, StateErrorReason):
            error = StateError(outcome, self._state)
            if self._state is EncoderState.FAILED and self._failure is not None:
                raise error from self._failure
            raise error
        return outcome

    def _clear(self) -> None:
        self._pending = []
        self._output_path = None
        self._index_path = None
        self._stats = None
        self._failure = None
        self._task = None

    def _finish(
        self,
        stats: Optional[EncodeStats] = None,
        failure: Optional[BaseException] = None,
    ) -> None:
        if failure is None:
            self._state = self._check(EncoderEvent.BUILD_SUCCEEDED)
            self._stats = stats
            logger.info(
                "Encoder %s completed: %d frames in %s",
                self.session_id,
                stats.total_frames if stats else 0,
                self._output_path,
            )
        else:
            self._state = self._check(EncoderEvent.BUILD_FAILED)
            self._failure = failure
            logger.error(
                "Encoder %s failed: %s: %s",
                self.session_id,
                type(failure).__name__,
                failure,
                exc_info=failure,
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def state(self) -> EncoderState:
        return self._state

    @property
    def pending_chunks(self) -> Tuple[str, ...]:
        return tuple(self._pending)

    @property
    def stats(self) -> Optional[EncodeStats]:
        return self._stats

    @property
    def failure(self) -> Optional[BaseException]:
        return self._failure

    def get_state(self) -> EncoderSnapshot:
        return EncoderSnapshot(
            session_id=self.session_id,
            state=self._state,
            chunk_count=len(self._pending),
            output_path=str(self._output_path) if self._output_path else None,
            index_path=str(self._index_path) if self._index_path else None,
            stats=self._stats,
            failure=repr(self._failure) if self._failure is not None else None,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def add_chunks(self, chunks: Sequence[str]) -> None:
        """
        Append ``chunks`` to the pending list.

        Raises
        ------
        TypeError
            If ``chunks`` is not a sequence of strings.
        """
        if isinstance(chunks, (str, bytes)) or not isinstance(chunks, Sequence):
            raise TypeError(f"chunks must be a sequence of str, got {type(chunks).__name__}")
        if not all(isinstance(chunk, str) for chunk in chunks):
            raise TypeError("chunks must contain only str")

        next_state = self._check(EncoderEvent.ADD)
        self._pending.extend(chunks)
        self._state = next_state

        logger.debug("Added %d chunks, total: %d", len(chunks), len(self._pending))

    def add_text(self, text: str) -> None:
        """
        Chunk ``text`` with the configured chunker and append the pieces.
        """
        if not isinstance(text, str):
            raise TypeError(f"text must be str, got {type(text).__name__}")

        next_state = self._check(EncoderEvent.ADD)
        pieces = self.chunker.chunk(text) or [EMPTY_CHUNK]
        self._pending.extend(pieces)
        self._state = next_state

        logger.debug("Chunked text into %d chunks, total: %d", len(pieces), len(self._pending))

    def reset(self) -> None:
        """
        Clear chunks and previous results and return to READY.
        """
        self._state = self._check(EncoderEvent.RESET)
        self._clear()

    async def build(self, output_path: str | Path, index_path: str | Path) -> EncodeStats:
        """
        Build the QR video and its archive index from the pending chunks.

        The build runs as a detached task; this call waits for it without a
        timeout. Cancelling the caller does not cancel the build.

        Raises
        ------
        StateError
            ``no_chunks`` if nothing is pending (state unchanged), or the
            state's rejection reason.

        VidmemError
            The build's failure cause; the session is then FAILED.
        """
        next_state = self._check(EncoderEvent.BUILD)
        if not self._pending:
            raise StateError(StateErrorReason.NO_CHUNKS, self._state)

        job = BuildJob(
            session_id=self.session_id,
            chunks=tuple(self._pending),
            output_path=Path(output_path),
            index_path=Path(index_path),
        )

        self._state = next_state
        self._output_path = job.output_path
        self._index_path = job.index_path

        logger.info("Starting video build for %d chunks (session %s)", len(job.chunks), self.session_id)

        task = asyncio.create_task(
            self._supervised_build(job),
            name=f"vidmem-build-{self.session_id}",
        )
        task.add_done_callback(self._on_build_done)
        self._task = task

        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            if task.cancelled() and self._failure is not None:
                raise self._failure from None
            raise

    async def close(self) -> None:
        """
        Cancel an in-flight build and wait until the session has settled.
        """
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

    # ------------------------------------------------------------------
    # Build supervision
    # ------------------------------------------------------------------

    async def _supervised_build(self, job: BuildJob) -> EncodeStats:
        try:
            stats = await run_build(
                job,
                self.settings,
                self.embedder,
                self.qr_codec,
                self.frame_codec,
            )
        except asyncio.CancelledError:
            self._finish(failure=BuildError("Build was cancelled"))
            raise
        except Exception as exc:
            self._finish(failure=exc)
            raise

        self._finish(stats=stats)
        return stats

    def _on_build_done(self, task: asyncio.Task) -> None:
        # A task cancelled before its first step never reaches _supervised_build's handlers.
        if self._task is task and self._state is EncoderState.BUILDING:
            self._finish(failure=BuildError("Build task ended without reporting a result"))
