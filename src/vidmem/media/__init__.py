"""
Media Package

Symbol (QR) and frame (video) codecs used by the encoder and retriever.
"""

from .errors import CodecError
from .qr import QRCodec
from .video import (
    FrameCodec,
    FrameEncoder,
    OpenCVFrameCodec,
    OpenCVFrameEncoder,
    VideoFrameReader,
    prepare_frame,
)

__all__ = [
    "CodecError",
    "QRCodec",
    "FrameCodec",
    "FrameEncoder",
    "OpenCVFrameCodec",
    "OpenCVFrameEncoder",
    "VideoFrameReader",
    "prepare_frame",
]
