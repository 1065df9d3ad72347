"""
Encoder Routes

This module exposes endpoints for driving encoder sessions:
- Starting, listing, inspecting and stopping sessions
- Adding raw chunks or text to be chunked
- Building the QR video and archive index
- Resetting a finished or failed session

State machine rejections surface as 409 through the global StateError
handler; unknown session ids surface as 404.
"""

from typing import Annotated, Optional

from fastapi import APIRouter, Depends, status

from .dependencies import get_registry
from .models import (
    AddChunksRequest,
    AddTextRequest,
    BuildRequest,
    OperationResult,
    SessionList,
    StartEncoderRequest,
)
from ..encoder.pipeline import EncodeStats
from ..encoder.state_machine import EncoderSnapshot
from ..sessions.registry import SessionRegistry

router = APIRouter(prefix="/encoders", tags=["encoders"])

Registry = Annotated[SessionRegistry, Depends(get_registry)]


# ---------------------------------------------------------------------
# Session Lifecycle
# ---------------------------------------------------------------------

@router.post(
    "",
    response_model=EncoderSnapshot,
    status_code=status.HTTP_201_CREATED,
    summary="Start an encoder session",
)
async def start_encoder(
    registry: Registry,
    req: Optional[StartEncoderRequest] = None,
) -> EncoderSnapshot:
    session_id = req.session_id if req else None
    return registry.start_encoder(session_id).get_state()


@router.get("", response_model=SessionList, summary="List encoder sessions")
async def list_encoders(registry: Registry) -> SessionList:
    sessions = registry.list_encoders()
    return SessionList(sessions=sessions, count=len(sessions))


@router.get("/{session_id}", response_model=EncoderSnapshot, summary="Get session state")
async def get_encoder(session_id: str, registry: Registry) -> EncoderSnapshot:
    return registry.get_encoder(session_id).get_state()


@router.delete("/{session_id}", response_model=OperationResult, summary="Stop a session")
async def stop_encoder(session_id: str, registry: Registry) -> OperationResult:
    await registry.stop_encoder(session_id)
    return OperationResult(status="deleted", details={"session_id": session_id})


# ---------------------------------------------------------------------
# Session Commands
# ---------------------------------------------------------------------

@router.post("/{session_id}/chunks", response_model=EncoderSnapshot, summary="Add chunks")
async def add_chunks(
    session_id: str,
    req: AddChunksRequest,
    registry: Registry,
) -> EncoderSnapshot:
    encoder = registry.get_encoder(session_id)
    encoder.add_chunks(req.chunks)
    return encoder.get_state()


@router.post("/{session_id}/text", response_model=EncoderSnapshot, summary="Chunk and add text")
async def add_text(
    session_id: str,
    req: AddTextRequest,
    registry: Registry,
) -> EncoderSnapshot:
    encoder = registry.get_encoder(session_id)
    encoder.add_text(req.text)
    return encoder.get_state()


@router.post("/{session_id}/build", response_model=EncodeStats, summary="Build video and index")
async def build(
    session_id: str,
    req: BuildRequest,
    registry: Registry,
) -> EncodeStats:
    """
    Build the session's video and index and wait for the result.

    Workflow
    --------
    1. Freeze the pending chunks and start the detached build.
    2. Render one QR frame per chunk and write the video.
    3. Embed the chunks and save the archive index.
    4. Return the encode stats.
    """
    encoder = registry.get_encoder(session_id)
    return await encoder.build(req.output_path, req.index_path)


@router.post("/{session_id}/reset", response_model=EncoderSnapshot, summary="Reset a session")
async def reset(session_id: str, registry: Registry) -> EncoderSnapshot:
    encoder = registry.get_encoder(session_id)
    encoder.reset()
    return encoder.get_state()
