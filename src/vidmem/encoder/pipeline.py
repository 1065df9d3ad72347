"""
Build Pipeline

One pass over a frozen chunk list, chunk ``i`` stored in frame ``i``:

1. Resolve codec parameters
2. Render each chunk record as a QR image and feed it to the frame encoder
3. Flush the encoder and write the packet stream to the output path
4. Build the archive index over the same (chunk, frame) pairs and save it
5. Report EncodeStats

Steps 2-3 are CPU bound and run in a worker thread.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from ..config import Settings
from ..core.errors import VidmemError
from ..embeddings.embedder import EmbeddingProvider
from ..index.archive import ArchiveIndex
from ..index.models import IndexStats
from ..media.qr import QRCodec
from ..media.video import FrameCodec, prepare_frame

logger = logging.getLogger("vidmem.pipeline")


class BuildError(VidmemError):
    """Raised when a build fails for a reason outside the codec/index taxonomy."""

    code = "build_failed"


@dataclass(frozen=True)
class BuildJob:
    """Immutable snapshot of everything a build needs from its session."""

    session_id: str
    chunks: Tuple[str, ...]
    output_path: Path
    index_path: Path


class EncodeStats(BaseModel):
    total_chunks: int = Field(..., ge=0)
    total_frames: int = Field(..., ge=0)
    duration_seconds: float = Field(..., ge=0.0)
    fps: int = Field(..., gt=0)
    output_path: str
    index_path: str
    session_id: str
    packets_count: int = Field(default=0, ge=0)
    index_stats: Optional[IndexStats] = None

    model_config = ConfigDict(extra="forbid", frozen=True)


def serialize_chunk(chunk: str, frame_num: int) -> str:
    """JSON record stored in a frame's QR code."""
    return json.dumps({"id": frame_num, "text": chunk, "frame": frame_num})


def write_video(
    job: BuildJob,
    settings: Settings,
    qr_codec: QRCodec,
    frame_codec: FrameCodec,
) -> int:
    """
    Encode every chunk as one frame and write the stream to ``job.output_path``.

    Returns the number of packets written.
    """
    params = settings.codec_parameters
    encoder = frame_codec.open_encoder(settings.codec, params)

    packets: List[bytes] = []
    for frame_num, chunk in enumerate(job.chunks):
        image = qr_codec.encode(serialize_chunk(chunk, frame_num))
        packets.extend(encoder.encode(prepare_frame(image, params)))

    packets.extend(encoder.flush())

    job.output_path.parent.mkdir(parents=True, exist_ok=True)
    with job.output_path.open("wb") as f:
        for packet in packets:
            f.write(packet)

    logger.debug(
        "Wrote %d frames as %d packets to %s",
        len(job.chunks),
        len(packets),
        job.output_path,
    )
    return len(packets)


async def run_build(
    job: BuildJob,
    settings: Settings,
    embedder: EmbeddingProvider,
    qr_codec: QRCodec,
    frame_codec: FrameCodec,
) -> EncodeStats:
    """
    Execute the full pipeline for ``job``.

    Raises
    ------
    CodecError, ArchiveIndexError, EmbeddingError
        Propagated from the failing step.

    BuildError
        For any other failure.
    """
    try:
        packets_count = await asyncio.to_thread(write_video, job, settings, qr_codec, frame_codec)

        frame_numbers = list(range(len(job.chunks)))
        index = ArchiveIndex.create(settings, embedder)
        await index.add_items(job.chunks, frame_numbers)
        await asyncio.to_thread(index.save, job.index_path)
    except VidmemError:
        raise
    except Exception as exc:
        raise BuildError(f"Build failed: {type(exc).__name__}: {exc}") from exc

    fps = settings.codec_parameters.fps
    total_frames = len(frame_numbers)

    return EncodeStats(
        total_chunks=len(job.chunks),
        total_frames=total_frames,
        duration_seconds=total_frames / fps,
        fps=fps,
        output_path=str(job.output_path),
        index_path=str(job.index_path),
        session_id=job.session_id,
        packets_count=packets_count,
        index_stats=index.get_stats(),
    )
