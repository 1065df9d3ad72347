"""
Session Registry

In-memory registry of encoder and retriever sessions.

Design choices
--------------
- In-memory only (no persistence across process restarts).
- Sessions share no state; the registry only maps ids to sessions.
- Thread-safe map access using a re-entrant lock.
- Stopping a session removes it first, then closes it outside the lock.
"""

from __future__ import annotations

import logging
import uuid
from pathlib import Path
from threading import RLock
from typing import Dict, List, Optional

from ..config import Settings
from ..core.errors import VidmemError
from ..embeddings.chunking import TextChunker
from ..embeddings.embedder import EmbeddingProvider
from ..encoder.state_machine import Encoder
from ..media.qr import QRCodec
from ..media.video import FrameCodec
from ..retriever.retriever import Retriever

logger = logging.getLogger("vidmem.registry")


class SessionNotFoundError(VidmemError):
    code = "session_not_found"


class SessionExistsError(VidmemError):
    code = "session_exists"


class SessionRegistry:
    """
    Registry mapping session ids to live Encoder and Retriever sessions.

    Parameters
    ----------
    settings : Settings
        Settings handed to every session.

    embedder : EmbeddingProvider
        Shared embedding provider.

    qr_codec, frame_codec, chunker : optional
        Overrides passed through to new sessions (used by tests).
    """

    def __init__(
        self,
        settings: Settings,
        embedder: EmbeddingProvider,
        *,
        qr_codec: Optional[QRCodec] = None,
        frame_codec: Optional[FrameCodec] = None,
        chunker: Optional[TextChunker] = None,
    ) -> None:
        self.settings = settings
        self.embedder = embedder
        self.qr_codec = qr_codec
        self.frame_codec = frame_codec
        self.chunker = chunker

        self._encoders: Dict[str, Encoder] = {}
        self._retrievers: Dict[str, Retriever] = {}
        self._lock = RLock()

    # ------------------------------------------------------------------
    # Encoders
    # ------------------------------------------------------------------

    def start_encoder(self, session_id: Optional[str] = None) -> Encoder:
        session_id = session_id or uuid.uuid4().hex

        with self._lock:
            if session_id in self._encoders:
                raise SessionExistsError(f"Encoder session already exists: {session_id}")

            encoder = Encoder(
                session_id,
                self.settings,
                self.embedder,
                chunker=self.chunker,
                qr_codec=self.qr_codec,
                frame_codec=self.frame_codec,
            )
            self._encoders[session_id] = encoder

        logger.info("Started encoder session %s", session_id)
        return encoder

    def get_encoder(self, session_id: str) -> Encoder:
        with self._lock:
            encoder = self._encoders.get(session_id)
        if encoder is None:
            raise SessionNotFoundError(f"Unknown encoder session: {session_id}")
        return encoder

    async def stop_encoder(self, session_id: str) -> None:
        """
        Remove an encoder session, cancelling any build in progress.
        """
        with self._lock:
            encoder = self._encoders.pop(session_id, None)
        if encoder is None:
            raise SessionNotFoundError(f"Unknown encoder session: {session_id}")

        await encoder.close()
        logger.info("Stopped encoder session %s", session_id)

    def list_encoders(self) -> List[str]:
        with self._lock:
            return sorted(self._encoders)

    def count_encoders(self) -> int:
        with self._lock:
            return len(self._encoders)

    # ------------------------------------------------------------------
    # Retrievers
    # ------------------------------------------------------------------

    async def start_retriever(
        self,
        video_path: str | Path,
        index_path: str | Path,
        retriever_id: Optional[str] = None,
    ) -> Retriever:
        """
        Open a retriever and register it.

        Raises
        ------
        SessionExistsError
            If ``retriever_id`` is already registered.

        ArchiveIndexError
            If the index cannot be loaded.
        """
        retriever_id = retriever_id or uuid.uuid4().hex

        with self._lock:
            if retriever_id in self._retrievers:
                raise SessionExistsError(f"Retriever already exists: {retriever_id}")

        retriever = await Retriever.open(
            video_path,
            index_path,
            self.settings,
            self.embedder,
            qr_codec=self.qr_codec,
            frame_codec=self.frame_codec,
        )

        with self._lock:
            if retriever_id in self._retrievers:
                raise SessionExistsError(f"Retriever already exists: {retriever_id}")
            self._retrievers[retriever_id] = retriever

        logger.info("Started retriever %s for %s", retriever_id, video_path)
        return retriever

    def get_retriever(self, retriever_id: str) -> Retriever:
        with self._lock:
            retriever = self._retrievers.get(retriever_id)
        if retriever is None:
            raise SessionNotFoundError(f"Unknown retriever: {retriever_id}")
        return retriever

    async def stop_retriever(self, retriever_id: str) -> None:
        with self._lock:
            retriever = self._retrievers.pop(retriever_id, None)
        if retriever is None:
            raise SessionNotFoundError(f"Unknown retriever: {retriever_id}")

        logger.info("Stopped retriever %s", retriever_id)

    def list_retrievers(self) -> List[str]:
        with self._lock:
            return sorted(self._retrievers)

    def count_retrievers(self) -> int:
        with self._lock:
            return len(self._retrievers)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop_all(self) -> None:
        """
        Stop every session. Intended for application shutdown and tests.
        """
        for session_id in self.list_encoders():
            await self.stop_encoder(session_id)
        for retriever_id in self.list_retrievers():
            await self.stop_retriever(retriever_id)
