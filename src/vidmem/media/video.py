"""
Video Frame Codec

Turns an ordered sequence of images into a video stream and reads frames
back in native order, using OpenCV's FFmpeg backend.

The encoder follows a packet interface: ``encode`` consumes one frame and
returns whatever packets are ready, ``flush`` returns the trailing packets.
OpenCV muxes into a container, so all data surfaces at ``flush`` as a
single packet.
"""

from __future__ import annotations

import logging
import tempfile
from pathlib import Path
from typing import Iterable, Iterator, List, Protocol

import cv2
import numpy as np

from .errors import CodecError
from ..config import CodecParameters

logger = logging.getLogger("vidmem.media")


class FrameEncoder(Protocol):
    def encode(self, frame: np.ndarray) -> List[bytes]:
        ...

    def flush(self) -> List[bytes]:
        ...


class FrameCodec(Protocol):
    def open_encoder(self, codec_name: str, params: CodecParameters) -> FrameEncoder:
        ...

    def open_reader(self, path: Path) -> Iterable[np.ndarray]:
        ...


def prepare_frame(image: np.ndarray, params: CodecParameters) -> np.ndarray:
    """
    Convert ``image`` to a BGR frame of the codec's geometry.
    """
    if image.ndim == 2:
        image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
    elif image.shape[2] == 4:
        image = cv2.cvtColor(image, cv2.COLOR_BGRA2BGR)

    if image.shape[:2] != (params.frame_height, params.frame_width):
        image = cv2.resize(
            image,
            (params.frame_width, params.frame_height),
            interpolation=cv2.INTER_NEAREST,
        )

    return np.ascontiguousarray(image, dtype=np.uint8)


# ---------------------------------------------------------------------
# Encoder
# ---------------------------------------------------------------------

# Ships with every OpenCV FFmpeg build, unlike hvc1/avc1
FALLBACK_FOURCC = "mp4v"


class OpenCVFrameEncoder:
    """
    Writes frames through ``cv2.VideoWriter`` into a private temp file.

    If the backend cannot open a writer for the codec's fourcc (the PyPI
    wheels ship no H.264/H.265 encoder), ``FALLBACK_FOURCC`` is used and
    ``fourcc`` records what was actually written.
    """

    def __init__(self, codec_name: str, params: CodecParameters) -> None:
        self.codec_name = codec_name
        self.params = params
        self.frames_written = 0

        self._tmpdir = tempfile.TemporaryDirectory(prefix="vidmem-")
        self._path = Path(self._tmpdir.name) / "stream.mp4"

        self.fourcc = params.fourcc
        self._writer = self._open_writer(self.fourcc)

        if not self._writer.isOpened() and self.fourcc != FALLBACK_FOURCC:
            logger.warning(
                "Video codec %s (%s) is not available in this OpenCV build, using %s",
                codec_name,
                params.fourcc,
                FALLBACK_FOURCC,
            )
            self._writer.release()
            self.fourcc = FALLBACK_FOURCC
            self._writer = self._open_writer(self.fourcc)

        if not self._writer.isOpened():
            self._tmpdir.cleanup()
            raise CodecError(
                f"Video codec {codec_name} ({self.fourcc}) is not available",
                code="codec_unavailable",
            )

    def _open_writer(self, fourcc: str) -> cv2.VideoWriter:
        return cv2.VideoWriter(
            str(self._path),
            cv2.VideoWriter_fourcc(*fourcc),
            float(self.params.fps),
            (self.params.frame_width, self.params.frame_height),
        )

    def encode(self, frame: np.ndarray) -> List[bytes]:
        expected = (self.params.frame_height, self.params.frame_width, 3)
        if frame.shape != expected:
            raise CodecError(f"Frame shape {frame.shape} does not match {expected}")

        self._writer.write(frame)
        self.frames_written += 1
        return []

    def flush(self) -> List[bytes]:
        try:
            self._writer.release()
            data = self._path.read_bytes() if self._path.exists() else b""
        finally:
            self._tmpdir.cleanup()

        if self.frames_written and not data:
            raise CodecError(f"Video codec {self.codec_name} produced no output")

        return [data] if data else []


# ---------------------------------------------------------------------
# Reader
# ---------------------------------------------------------------------

class VideoFrameReader:
    """
    Lazy, restartable sequence of BGR frames; each iteration reopens the file.
    """

    def __init__(self, path: Path) -> None:
        self.path = Path(path)

    def __iter__(self) -> Iterator[np.ndarray]:
        cap = cv2.VideoCapture(str(self.path))
        if not cap.isOpened():
            cap.release()
            raise CodecError(f"Failed to open video: {self.path}")

        try:
            while True:
                ok, frame = cap.read()
                if not ok or frame is None:
                    break
                yield frame
        finally:
            cap.release()


class OpenCVFrameCodec:
    def open_encoder(self, codec_name: str, params: CodecParameters) -> OpenCVFrameEncoder:
        return OpenCVFrameEncoder(codec_name, params)

    def open_reader(self, path: Path) -> VideoFrameReader:
        return VideoFrameReader(path)
