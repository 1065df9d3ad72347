"""
FAISS HNSW Vector Engine

Approximate nearest-neighbour engine used by the archive index.

Key Properties
--------------
- HNSW graph (``IndexHNSWFlat``) behind an explicit ID map (``IndexIDMap2``)
- Cosine similarity is inner product over L2-normalised vectors
- Hard capacity limit (``max_elements``)
- Opaque native serialization via ``faiss.write_index`` / ``faiss.read_index``
"""

from __future__ import annotations

from pathlib import Path
from typing import List, Sequence, Tuple

import faiss
import numpy as np

from ..core.errors import VidmemError


class VectorEngineError(VidmemError):
    """Raised when the vector engine rejects an operation."""

    code = "vector_engine_error"


_METRICS = {
    "cosine": faiss.METRIC_INNER_PRODUCT,
    "ip": faiss.METRIC_INNER_PRODUCT,
    "l2": faiss.METRIC_L2,
}


class HnswVectorEngine:
    """
    HNSW index with caller-assigned integer ids.

    Not thread-safe: the owning archive index serializes access.
    """

    def __init__(
        self,
        metric: str,
        dimension: int,
        max_elements: int,
        ef_construction: int = 400,
        m: int = 16,
    ) -> None:
        if metric not in _METRICS:
            raise VectorEngineError(f"Unsupported metric: {metric}")

        self.metric = metric
        self.dimension = dimension
        self.max_elements = max_elements

        self._hnsw = faiss.IndexHNSWFlat(dimension, m, _METRICS[metric])
        self._hnsw.hnsw.efConstruction = ef_construction
        self._index = faiss.IndexIDMap2(self._hnsw)

    # ------------------------------------------------------------------
    # Internal Helpers
    # ------------------------------------------------------------------

    def _as_matrix(self, vectors: Sequence[Sequence[float]]) -> np.ndarray:
        matrix = np.ascontiguousarray(np.asarray(vectors, dtype="float32"))

        if matrix.ndim != 2 or matrix.shape[1] != self.dimension:
            raise VectorEngineError(
                f"Expected vectors of shape (*, {self.dimension}), got {matrix.shape}"
            )

        if self.metric == "cosine":
            faiss.normalize_L2(matrix)

        return matrix

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def item_count(self) -> int:
        return int(self._index.ntotal)

    def add_items(self, vectors: Sequence[Sequence[float]], ids: Sequence[int]) -> None:
        matrix = self._as_matrix(vectors)

        if len(ids) != matrix.shape[0]:
            raise VectorEngineError("Vector count does not match id count.")

        if self.item_count + len(ids) > self.max_elements:
            raise VectorEngineError(
                f"Index capacity exceeded: {self.item_count} + {len(ids)} > {self.max_elements}"
            )

        try:
            self._index.add_with_ids(matrix, np.asarray(ids, dtype="int64"))
        except Exception as exc:
            raise VectorEngineError(
                f"Failed to add vectors to FAISS: {type(exc).__name__}"
            ) from exc

    def knn_query(
        self,
        vector: Sequence[float],
        k: int,
        ef_search: int = 50,
    ) -> Tuple[List[int], List[float]]:
        """
        Return up to ``k`` ``(ids, distances)`` ordered nearest first.
        """
        if k <= 0 or self.item_count == 0:
            return [], []

        query = self._as_matrix([vector])
        self._hnsw.hnsw.efSearch = max(ef_search, k)

        try:
            distances, idxs = self._index.search(query, k)
        except Exception as exc:
            raise VectorEngineError(
                f"FAISS search failed: {type(exc).__name__}"
            ) from exc

        ids: List[int] = []
        scores: List[float] = []
        for distance, idx in zip(distances[0], idxs[0]):
            if idx == -1:
                continue
            ids.append(int(idx))
            scores.append(float(distance))

        return ids, scores

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def save(self, path: Path) -> None:
        faiss.write_index(self._index, str(path))

    @classmethod
    def load(
        cls,
        path: Path,
        metric: str,
        dimension: int,
        max_elements: int,
        ef_construction: int = 400,
        m: int = 16,
    ) -> "HnswVectorEngine":
        """
        Allocate an engine sized from the arguments and fill it from ``path``.
        """
        engine = cls(metric, dimension, max_elements, ef_construction=ef_construction, m=m)

        loaded = faiss.read_index(str(path))
        if loaded.d != dimension:
            raise VectorEngineError(
                f"Stored index has {loaded.d} dimensions, expected {dimension}"
            )

        engine._index = loaded
        engine._hnsw = faiss.downcast_index(loaded.index)
        return engine
