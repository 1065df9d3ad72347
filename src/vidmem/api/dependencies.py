from functools import lru_cache

from ..config import settings
from ..embeddings.embedder import EmbeddingProvider, build_embedder
from ..sessions.registry import SessionRegistry


@lru_cache
def get_embedder() -> EmbeddingProvider:
    return build_embedder(settings)


@lru_cache
def get_registry() -> SessionRegistry:
    return SessionRegistry(settings, get_embedder())
