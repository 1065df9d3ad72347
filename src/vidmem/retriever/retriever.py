"""
Retriever

Semantic search over an encoded video: query the archive index, map ranked
hits to frames, decode those frames and return the original chunk text.

Cache
-----
Decoded frames are cached per session by frame number. The cache is
unbounded and never invalidated; the video is immutable for the session's
lifetime.

Frame Resolution
----------------
A cache miss scans the whole video once in native order and decodes only
the missing frames on a bounded thread pool. Cost is O(frames in the video)
per miss regardless of how few frames were requested.
"""

from __future__ import annotations

import asyncio
import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from ..config import Settings
from ..embeddings.embedder import EmbeddingProvider
from ..index.archive import ArchiveIndex
from ..index.models import ChunkMetadata
from ..media.errors import CodecError
from ..media.qr import QRCodec
from ..media.video import FrameCodec, OpenCVFrameCodec

logger = logging.getLogger("vidmem.retriever")


def _record_text(decoded: Optional[str]) -> Optional[str]:
    """Extract ``text`` from a decoded frame record, or None if it is not one."""
    if decoded is None:
        return None
    try:
        record = json.loads(decoded)
    except ValueError:
        return None
    if isinstance(record, dict) and isinstance(record.get("text"), str):
        return record["text"]
    return None


class Retriever:
    """
    One retrieval session over a (video, index) pair.

    Searches are processed strictly one at a time because each may extend
    the shared decode cache.
    """

    def __init__(
        self,
        video_path: str | Path,
        index: ArchiveIndex,
        settings: Settings,
        *,
        index_path: Optional[str | Path] = None,
        qr_codec: Optional[QRCodec] = None,
        frame_codec: Optional[FrameCodec] = None,
    ) -> None:
        self.video_path = Path(video_path)
        self.index_path = Path(index_path) if index_path is not None else None
        self.index = index
        self.settings = settings
        self.qr_codec = qr_codec or QRCodec(settings.qr)
        self.frame_codec = frame_codec or OpenCVFrameCodec()

        self._cache: Dict[int, str] = {}
        self._lock = asyncio.Lock()

    @classmethod
    async def open(
        cls,
        video_path: str | Path,
        index_path: str | Path,
        settings: Settings,
        embedder: EmbeddingProvider,
        *,
        qr_codec: Optional[QRCodec] = None,
        frame_codec: Optional[FrameCodec] = None,
    ) -> "Retriever":
        """
        Load the archive index and open a session.

        Raises
        ------
        ArchiveIndexError
            If the index cannot be loaded.
        """
        index = await asyncio.to_thread(ArchiveIndex.load, settings, index_path, embedder)
        logger.info("Opened retriever for %s (%d items)", video_path, index.engine.item_count)
        return cls(
            video_path,
            index,
            settings,
            index_path=index_path,
            qr_codec=qr_codec,
            frame_codec=frame_codec,
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def search(self, query: str, top_k: Optional[int] = None) -> List[str]:
        """
        Return the text of the ``top_k`` chunks nearest to ``query``.

        Results follow the vector search ranking exactly. A hit whose frame
        could not be decoded falls back to its stored snippet.
        """
        if top_k is None:
            top_k = self.settings.retrieval.top_k

        async with self._lock:
            hits = await self.index.search(query, top_k)
            frames = await self._resolve_frames({hit.frame_num for hit in hits})
            return [self._hit_text(hit, frames) for hit in hits]

    @property
    def cached_frames(self) -> int:
        return len(self._cache)

    def info(self) -> Dict[str, Any]:
        return {
            "video_path": str(self.video_path),
            "index_path": str(self.index_path) if self.index_path else None,
            "cached_frames": len(self._cache),
            "index": self.index.get_stats().model_dump(),
        }

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _hit_text(hit: ChunkMetadata, frames: Dict[int, str]) -> str:
        text = _record_text(frames.get(hit.frame_num))
        return text if text is not None else hit.text_snippet

    async def _resolve_frames(self, frame_numbers: Set[int]) -> Dict[int, str]:
        cached = {n: self._cache[n] for n in frame_numbers if n in self._cache}
        missing = frame_numbers - cached.keys()

        if not missing:
            logger.debug("All %d frames served from cache", len(cached))
            return cached

        logger.debug("Decoding %d frames (%d cached)", len(missing), len(cached))
        decoded = await asyncio.to_thread(self._decode_frames, missing)

        self._cache.update(decoded)
        cached.update(decoded)
        return cached

    def _decode_frames(self, missing: Set[int]) -> Dict[int, str]:
        """
        Scan the video once and decode the frames in ``missing`` concurrently.

        Frames that fail to decode are left out of the result.
        """
        frames: Iterable = self.frame_codec.open_reader(self.video_path)
        decoded: Dict[int, str] = {}

        with ThreadPoolExecutor(
            max_workers=self.settings.retrieval.max_workers,
            thread_name_prefix="vidmem-decode",
        ) as pool:
            futures = {
                pool.submit(self.qr_codec.decode, frame): frame_num
                for frame_num, frame in enumerate(frames)
                if frame_num in missing
            }

            for future in as_completed(futures):
                frame_num = futures[future]
                try:
                    decoded[frame_num] = future.result()
                except CodecError as exc:
                    logger.warning("Failed to decode frame %d: %s", frame_num, exc)

        return decoded
