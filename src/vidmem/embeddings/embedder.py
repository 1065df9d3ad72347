"""
Embedding Providers

This module defines the embedding boundary used by the archive index and
ships an OpenAI-compatible HTTP implementation. It is responsible for:

- Efficient batching of text inputs
- Network and transport error isolation
- Strict response validation (shape and dimensionality)
- Deterministic output semantics for the vector engine

Any object with ``dimension``, ``embed_text`` and ``embed_texts`` can be
used as a provider; see ``EmbeddingProvider``.
"""

from __future__ import annotations

from typing import List, Optional, Protocol, Sequence, runtime_checkable
import logging
import httpx

from ..config import Settings
from ..core.errors import VidmemError

logger = logging.getLogger("vidmem.embedder")


# ---------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------

class EmbeddingError(VidmemError):
    """
    Raised when embedding generation fails.

    ``code`` is one of ``empty_text``, ``model_unavailable``, ``timeout``
    or ``other``.
    """

    code = "other"


class EmptyInputError(EmbeddingError):
    """Raised when asked to embed empty or whitespace-only text."""

    code = "empty_text"


# ---------------------------------------------------------------------
# Provider Contract
# ---------------------------------------------------------------------

@runtime_checkable
class EmbeddingProvider(Protocol):
    """
    Converts text into fixed-length float vectors.

    Output dimensionality must equal the configured
    ``index.embedding_dimensions``.
    """

    dimension: int

    async def embed_text(self, text: str) -> List[float]:
        ...

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        ...


def reject_empty(texts: Sequence[str]) -> None:
    for position, text in enumerate(texts):
        if not isinstance(text, str) or not text.strip():
            raise EmptyInputError(f"Cannot embed empty text at position {position}.")


# ---------------------------------------------------------------------
# OpenAI-compatible HTTP Provider
# ---------------------------------------------------------------------

class OpenAIEmbedder:
    """
    Asynchronous embedding generator backed by an OpenAI-compatible API.

    This class performs no caching and is safe to reuse across sessions.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        dimension: int,
        base_url: str = "https://api.openai.com/v1/embeddings",
        batch_size: int = 32,
        timeout: float = 60.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize an OpenAIEmbedder.

        Parameters
        ----------
        api_key : str
            Bearer token for the embeddings endpoint.

        model : str
            Embedding model name.

        dimension : int
            Expected (and requested) vector dimensionality.

        base_url : str
            Full URL of the embeddings endpoint.

        batch_size : int
            Maximum number of inputs per request.

        timeout : float
            HTTP timeout for each request.

        transport : Optional[httpx.AsyncBaseTransport]
            Transport override, mainly for tests.
        """
        self.api_key = api_key
        self.model = model
        self.dimension = dimension
        self.base_url = base_url
        self.batch_size = batch_size
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def embed_text(self, text: str) -> List[float]:
        embeddings = await self.embed_texts([text])
        return embeddings[0]

    async def embed_texts(self, texts: Sequence[str]) -> List[List[float]]:
        """
        Generate embeddings for a sequence of input texts.

        Raises
        ------
        EmptyInputError
            If any input is empty after trimming.

        EmbeddingError
            If any batch fails or the response is malformed.
        """
        if not texts:
            return []

        reject_empty(texts)

        all_embeddings: List[List[float]] = []
        headers = {"Authorization": f"Bearer {self.api_key}"}

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for start in range(0, len(texts), self.batch_size):
                batch = list(texts[start : start + self.batch_size])
                payload = {
                    "model": self.model,
                    "input": batch,
                    "dimensions": self.dimension,
                }

                try:
                    response = await client.post(
                        self.base_url,
                        json=payload,
                        headers=headers,
                    )
                    response.raise_for_status()
                except httpx.TimeoutException as exc:
                    logger.error(
                        "Embedding request timed out: batch size=%d",
                        len(batch),
                    )
                    raise EmbeddingError(
                        f"Embedding request timed out after {self.timeout}s",
                        code="timeout",
                    ) from exc
                except httpx.HTTPError as exc:
                    logger.error(
                        "Embedding request failed (%s): batch size=%d, error=%s",
                        type(exc).__name__,
                        len(batch),
                        str(exc),
                    )
                    raise EmbeddingError(
                        f"Embedding generation failed: {type(exc).__name__}",
                        code="model_unavailable",
                    ) from exc

                embeddings = self._extract_embeddings(response.json(), len(batch))
                all_embeddings.extend(embeddings)

        return all_embeddings

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _extract_embeddings(self, data: dict, expected: int) -> List[List[float]]:
        """
        Parse and validate embedding output format.

        OpenAI returns:
            { "data": [ {"embedding": [...]}, ... ] }
        """
        if "data" not in data:
            raise EmbeddingError("Embedding response missing 'data' field.")

        records = data["data"]
        if not isinstance(records, list):
            raise EmbeddingError("'data' field must be a list.")

        if len(records) != expected:
            raise EmbeddingError(
                f"Expected {expected} embeddings, got {len(records)}."
            )

        embeddings: List[List[float]] = []

        for index, record in enumerate(records):
            if not isinstance(record, dict) or "embedding" not in record:
                raise EmbeddingError(
                    f"Malformed embedding record at index {index}: {record!r}"
                )

            emb = record["embedding"]
            if not isinstance(emb, list) or not all(
                isinstance(x, (float, int)) for x in emb
            ):
                raise EmbeddingError(
                    f"Invalid embedding vector at index {index}: must be float list."
                )

            if len(emb) != self.dimension:
                raise EmbeddingError(
                    f"Embedding at index {index} has {len(emb)} dimensions, "
                    f"expected {self.dimension}."
                )

            embeddings.append([float(x) for x in emb])

        return embeddings


# ---------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------

def build_embedder(settings: Settings) -> EmbeddingProvider:
    """
    Construct the embedding provider selected by ``settings.embedding.provider``.
    """
    cfg = settings.embedding

    if cfg.provider == "openai":
        if cfg.api_key is None:
            raise EmbeddingError(
                "embedding.api_key is required for the openai provider",
                code="model_unavailable",
            )
        return OpenAIEmbedder(
            api_key=cfg.api_key.get_secret_value(),
            model=cfg.model,
            dimension=cfg.dimension,
            base_url=cfg.base_url,
            batch_size=cfg.batch_size,
            timeout=cfg.timeout,
        )

    from .local import LocalEmbedder

    return LocalEmbedder(
        model=cfg.model,
        dimension=cfg.dimension,
        batch_size=cfg.batch_size,
        max_sequence_length=cfg.max_sequence_length,
        partitions=cfg.partitions,
    )
