import io
import json
import threading
from pathlib import Path
from typing import List, Optional, Sequence

import numpy as np
import pytest

from vidmem.config import Settings
from vidmem.embeddings.embedder import reject_empty
from vidmem.media.errors import CodecError


# ---------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------

class FakeEmbedder:
    """Deterministic 3-d embedding: codes of the first, second and last char."""

    dimension = 3

    def __init__(self):
        self.calls: List[List[str]] = []
        self.closed = False

    @staticmethod
    def vector(text: str) -> List[float]:
        second = text[1] if len(text) > 1 else text[0]
        return [float(ord(text[0])), float(ord(second)), float(ord(text[-1]))]

    async def embed_text(self, text: str) -> List[float]:
        reject_empty([text])
        self.calls.append([text])
        return self.vector(text)

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        reject_empty(texts)
        self.calls.append(list(texts))
        return [self.vector(t) for t in texts]

    def close(self) -> None:
        self.closed = True


class FakeQRCodec:
    """
    Stores the payload bytes in a 256x256x3 image (4-byte length header).

    ``gate`` blocks ``encode`` until set; ``undecodable`` makes ``decode``
    fail for any payload containing that text.
    """

    shape = (256, 256, 3)

    def __init__(self, gate: Optional[threading.Event] = None, undecodable: Optional[str] = None):
        self.gate = gate
        self.undecodable = undecodable
        self.encode_calls = 0
        self.decode_calls = 0
        self._lock = threading.Lock()

    def encode(self, payload: str) -> np.ndarray:
        if self.gate is not None:
            self.gate.wait(timeout=10)
        with self._lock:
            self.encode_calls += 1

        data = payload.encode("utf-8")
        image = np.zeros(self.shape, dtype=np.uint8)
        flat = image.reshape(-1)
        flat[:4] = np.frombuffer(len(data).to_bytes(4, "big"), dtype=np.uint8)
        flat[4 : 4 + len(data)] = np.frombuffer(data, dtype=np.uint8)
        return image

    def decode(self, image: np.ndarray) -> str:
        with self._lock:
            self.decode_calls += 1

        flat = np.ascontiguousarray(image).reshape(-1)
        length = int.from_bytes(flat[:4].tobytes(), "big")
        text = flat[4 : 4 + length].tobytes().decode("utf-8")

        if self.undecodable and self.undecodable in text:
            raise CodecError("No QR code found in image", code="invalid_code")
        return text


class FakeFrameEncoder:
    def __init__(self, fail_on_flush: bool = False):
        self.frames: List[np.ndarray] = []
        self.fail_on_flush = fail_on_flush

    def encode(self, frame: np.ndarray) -> List[bytes]:
        self.frames.append(frame.copy())
        return []

    def flush(self) -> List[bytes]:
        if self.fail_on_flush:
            raise CodecError("encoder exploded")
        buf = io.BytesIO()
        np.save(buf, np.stack(self.frames))
        return [buf.getvalue()]


class FakeFrameReader:
    def __init__(self, codec: "FakeFrameCodec", path: Path):
        self.codec = codec
        self.path = Path(path)

    def __iter__(self):
        self.codec.scans += 1
        yield from np.load(self.path)


class FakeFrameCodec:
    """Frames are stored as a numpy array file; ``scans`` counts reader passes."""

    def __init__(self, fail_on_flush: bool = False):
        self.fail_on_flush = fail_on_flush
        self.opened_with: List[str] = []
        self.scans = 0

    def open_encoder(self, codec_name, params):
        self.opened_with.append(codec_name)
        return FakeFrameEncoder(self.fail_on_flush)

    def open_reader(self, path):
        return FakeFrameReader(self, path)


def frame_record(text: str, frame_num: int) -> str:
    return json.dumps({"id": frame_num, "text": text, "frame": frame_num})


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------

@pytest.fixture
def small_settings():
    return Settings(
        codec="h264",
        chunking={"chunk_size": 100, "overlap": 10},
        embedding={"dimension": 3},
        index={
            "metric": "cosine",
            "embedding_dimensions": 3,
            "max_elements": 100,
            "ef_construction": 100,
            "ef_search": 10,
        },
        retrieval={"top_k": 3, "max_workers": 4},
        _env_file=None,
    )


@pytest.fixture
def embedder():
    return FakeEmbedder()


@pytest.fixture
def qr_codec():
    return FakeQRCodec()


@pytest.fixture
def frame_codec():
    return FakeFrameCodec()
