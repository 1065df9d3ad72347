"""
Archive Index

Binds chunk ids, embeddings, text snippets and video frame numbers.

Key Properties
--------------
- Ids are contiguous and assigned at insertion time from the engine count
- ``len(metadata) == engine.item_count`` at all times
- ``frame_to_ids`` lists preserve insertion order
- Persisted as a JSON document plus a sibling native engine file
- Loading binds the caller's settings, not the stored advisory copy
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from pydantic import ValidationError

from .engine import HnswVectorEngine, VectorEngineError
from .models import SNIPPET_LENGTH, ChunkMetadata, IndexStats
from ..config import Settings
from ..core.errors import VidmemError
from ..embeddings.embedder import EmbeddingProvider

logger = logging.getLogger("vidmem.index")

ENGINE_SUFFIX = ".hnsw"


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class ArchiveIndexError(VidmemError):
    """Base error for archive index failures."""

    code = "index_error"


class ArchivePersistenceError(ArchiveIndexError):
    """Raised when saving or loading an index fails."""

    code = "index_persistence_error"


def engine_path_for(path: Path) -> Path:
    """
    Sibling path holding the engine's native serialization.

    ``archive.json`` maps to ``archive.hnsw``; any other name gets the
    suffix appended.
    """
    if path.suffix == ".json":
        return path.with_suffix(ENGINE_SUFFIX)
    return path.with_name(path.name + ENGINE_SUFFIX)


def _is_valid_chunk(chunk: object) -> bool:
    return isinstance(chunk, str) and bool(chunk.strip())


# ---------------------------------------------------------------------
# Archive Index
# ---------------------------------------------------------------------

class ArchiveIndex:
    """
    Vector index over archived chunks with frame mapping.

    The engine is owned exclusively by this index. Concurrent ``add_items``
    calls on the same instance must be serialized by the caller.
    """

    def __init__(
        self,
        settings: Settings,
        embedder: EmbeddingProvider,
        engine: HnswVectorEngine,
        metadata: Optional[Dict[int, ChunkMetadata]] = None,
        frame_to_ids: Optional[Dict[int, List[int]]] = None,
    ) -> None:
        self.settings = settings
        self.embedder = embedder
        self.engine = engine
        self.metadata: Dict[int, ChunkMetadata] = metadata or {}
        self.frame_to_ids: Dict[int, List[int]] = frame_to_ids or {}

    @classmethod
    def create(cls, settings: Settings, embedder: EmbeddingProvider) -> "ArchiveIndex":
        """
        Allocate an empty index sized by ``settings.index``.
        """
        cfg = settings.index
        try:
            engine = HnswVectorEngine(
                metric=cfg.metric,
                dimension=cfg.embedding_dimensions,
                max_elements=cfg.max_elements,
                ef_construction=cfg.ef_construction,
                m=cfg.m,
            )
        except VectorEngineError as exc:
            raise ArchiveIndexError(str(exc)) from exc

        return cls(settings, embedder, engine)

    # ------------------------------------------------------------------
    # Mutation
    # ------------------------------------------------------------------

    async def add_items(
        self,
        chunks: Sequence[str],
        frame_numbers: Sequence[int],
    ) -> "ArchiveIndex":
        """
        Embed and insert ``chunks``, each stored at the paired frame number.

        Pairs whose chunk is empty after trimming are dropped; survivors keep
        their relative order and receive contiguous ids starting at the
        current item count.

        Raises
        ------
        EmbeddingError
            Propagated unchanged from the embedding provider.

        ArchiveIndexError
            If the embeddings do not fit the engine or a frame number is
            invalid; the index is left unchanged.
        """
        pairs = [
            (chunk, frame)
            for chunk, frame in zip(chunks, frame_numbers)
            if _is_valid_chunk(chunk)
        ]

        if not pairs:
            logger.debug("No valid chunks to add (%d supplied)", len(chunks))
            return self

        valid_chunks = [chunk for chunk, _ in pairs]
        embeddings = await self.embedder.embed_texts(valid_chunks)

        if len(embeddings) != len(valid_chunks):
            raise ArchiveIndexError(
                f"Embedding provider returned {len(embeddings)} vectors for "
                f"{len(valid_chunks)} chunks."
            )

        start_id = self.engine.item_count
        new_ids = list(range(start_id, start_id + len(pairs)))

        # Validated before the engine grows so metadata never lags behind it
        try:
            records = [
                ChunkMetadata(
                    id=chunk_id,
                    text_snippet=chunk[:SNIPPET_LENGTH],
                    frame_num=frame,
                )
                for chunk_id, (chunk, frame) in zip(new_ids, pairs)
            ]
        except ValidationError as exc:
            raise ArchiveIndexError(f"Invalid chunk metadata: {exc}") from exc

        try:
            self.engine.add_items(embeddings, new_ids)
        except VectorEngineError as exc:
            raise ArchiveIndexError(str(exc)) from exc

        for record in records:
            self.metadata[record.id] = record
            self.frame_to_ids.setdefault(record.frame_num, []).append(record.id)

        logger.debug(
            "Added %d chunks (ids %d..%d), dropped %d empty",
            len(new_ids),
            new_ids[0],
            new_ids[-1],
            len(chunks) - len(pairs),
        )
        return self

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def search_with_scores(
        self,
        query: str,
        top_k: int = 5,
    ) -> List[Tuple[ChunkMetadata, float]]:
        """
        Return up to ``top_k`` ``(metadata, distance)`` pairs, nearest first.
        """
        query_embedding = await self.embedder.embed_text(query)

        try:
            ids, distances = self.engine.knn_query(
                query_embedding,
                k=top_k,
                ef_search=self.settings.index.ef_search,
            )
        except VectorEngineError as exc:
            raise ArchiveIndexError(str(exc)) from exc

        results: List[Tuple[ChunkMetadata, float]] = []
        for chunk_id, distance in zip(ids, distances):
            meta = self.metadata.get(chunk_id)
            if meta is None:
                logger.warning("Engine returned id %d with no metadata", chunk_id)
                continue
            results.append((meta, distance))

        return results[:top_k]

    async def search(self, query: str, top_k: int = 5) -> List[ChunkMetadata]:
        """
        Return up to ``top_k`` chunks nearest to ``query``, nearest first.
        """
        return [meta for meta, _ in await self.search_with_scores(query, top_k)]

    def get_stats(self) -> IndexStats:
        return IndexStats(
            total_items=self.engine.item_count,
            embedding_dimensions=self.settings.index.embedding_dimensions,
            metric=self.settings.index.metric,
            known_frames=len(self.frame_to_ids),
        )

    def get_chunk_by_id(self, chunk_id: int) -> Optional[ChunkMetadata]:
        return self.metadata.get(chunk_id)

    def get_chunks_by_frame(self, frame_num: int) -> List[ChunkMetadata]:
        return [
            self.metadata[chunk_id]
            for chunk_id in self.frame_to_ids.get(frame_num, [])
            if chunk_id in self.metadata
        ]

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: str | Path) -> None:
        """
        Write the metadata document to ``path`` and the engine beside it.
        """
        path = Path(path).expanduser().resolve()
        engine_path = engine_path_for(path)

        document = {
            "metadata": {
                str(chunk_id): meta.model_dump()
                for chunk_id, meta in self.metadata.items()
            },
            "frame_to_chunks": {
                str(frame): list(ids)
                for frame, ids in self.frame_to_ids.items()
            },
            "config": self.settings.advisory_copy(),
        }

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            self.engine.save(engine_path)
            with path.open("w", encoding="utf-8") as f:
                json.dump(document, f)
        except Exception as exc:
            raise ArchivePersistenceError(
                f"Failed to save archive index to {path}: {type(exc).__name__}"
            ) from exc

        logger.info("Saved archive index with %d items to %s", len(self.metadata), path)

    @classmethod
    def load(
        cls,
        settings: Settings,
        path: str | Path,
        embedder: EmbeddingProvider,
    ) -> "ArchiveIndex":
        """
        Restore an index saved with ``save``.

        The engine is sized from ``settings`` and the result is bound to
        ``settings``; the document's stored config is ignored.
        """
        path = Path(path).expanduser().resolve()
        engine_path = engine_path_for(path)
        cfg = settings.index

        try:
            with path.open("r", encoding="utf-8") as f:
                document = json.load(f)

            engine = HnswVectorEngine.load(
                engine_path,
                metric=cfg.metric,
                dimension=cfg.embedding_dimensions,
                max_elements=cfg.max_elements,
                ef_construction=cfg.ef_construction,
                m=cfg.m,
            )

            metadata = {
                int(k): ChunkMetadata(**v)
                for k, v in document.get("metadata", {}).items()
            }
            frame_to_ids = {
                int(k): [int(i) for i in v]
                for k, v in document.get("frame_to_chunks", {}).items()
            }
        except Exception as exc:
            raise ArchivePersistenceError(
                f"Failed to load archive index from {path}: {type(exc).__name__}: {exc}"
            ) from exc

        if len(metadata) != engine.item_count:
            raise ArchivePersistenceError(
                f"Index at {path} is inconsistent: {len(metadata)} metadata "
                f"entries for {engine.item_count} vectors"
            )

        logger.info("Loaded archive index with %d items from %s", len(metadata), path)
        return cls(settings, embedder, engine, metadata, frame_to_ids)
