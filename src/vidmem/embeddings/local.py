"""
Local Embedding Provider

Runs a sentence-transformers model in-process. Inference is CPU/GPU bound,
so every request is handed to a fixed-size worker pool (``partitions``
threads sharing one loaded model) and awaited from the event loop.
"""

from __future__ import annotations

import asyncio
import logging
from concurrent.futures import ThreadPoolExecutor
from threading import Lock
from typing import Any, List, Optional, Sequence

from .embedder import EmbeddingError, reject_empty

logger = logging.getLogger("vidmem.embedder")


def _resolve_device(device: Optional[str]) -> str:
    """Prefer CUDA, then MPS, then CPU unless a device is given explicitly."""
    if device:
        return device
    try:
        import torch

        if torch.cuda.is_available():
            return "cuda"
        if getattr(torch.backends, "mps", None) and torch.backends.mps.is_available():
            return "mps"
    except ImportError:
        pass
    return "cpu"


class LocalEmbedder:
    """
    sentence-transformers embedding provider with a bounded worker pool.

    The model is loaded lazily on first use so that constructing the
    provider (e.g. at application start-up) stays cheap.
    """

    def __init__(
        self,
        model: str,
        dimension: int,
        batch_size: int = 32,
        max_sequence_length: int = 512,
        partitions: int = 1,
        device: Optional[str] = None,
    ) -> None:
        self.model_name = model
        self.dimension = dimension
        self.batch_size = batch_size
        self.max_sequence_length = max_sequence_length
        self.device = device

        self._model: Any = None
        self._model_lock = Lock()
        self._executor = ThreadPoolExecutor(
            max_workers=partitions,
            thread_name_prefix="vidmem-embed",
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_text(self, text: str) -> List[float]:
        embeddings = await self.embed_texts([text])
        return embeddings[0]

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        if not texts:
            return []

        reject_empty(texts)

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._encode, list(texts))

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _load_model(self) -> Any:
        with self._model_lock:
            if self._model is not None:
                return self._model

            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:
                raise EmbeddingError(
                    "sentence-transformers is not installed; "
                    "install vidmem[local] or use the openai provider",
                    code="model_unavailable",
                ) from exc

            device = _resolve_device(self.device)
            try:
                model = SentenceTransformer(self.model_name, device=device)
            except Exception as exc:
                logger.error("Failed to load embedding model %s: %s", self.model_name, exc)
                raise EmbeddingError(
                    f"Failed to load embedding model {self.model_name}",
                    code="model_unavailable",
                ) from exc

            model.max_seq_length = min(
                self.max_sequence_length,
                model.max_seq_length or self.max_sequence_length,
            )
            logger.info("Loaded embedding model: %s on %s", self.model_name, device)

            self._model = model
            return model

    def _encode(self, texts: List[str]) -> List[List[float]]:
        model = self._load_model()

        try:
            vectors = model.encode(
                texts,
                batch_size=self.batch_size,
                convert_to_numpy=True,
                show_progress_bar=False,
            )
        except Exception as exc:
            raise EmbeddingError(
                f"Embedding generation failed: {type(exc).__name__}"
            ) from exc

        if vectors.ndim != 2 or vectors.shape[1] != self.dimension:
            raise EmbeddingError(
                f"Model {self.model_name} produced vectors of shape {vectors.shape}, "
                f"expected (*, {self.dimension})."
            )

        return vectors.astype("float32").tolist()
