"""
Archive Index Package

Vector index binding chunk embeddings to frame locations, backed by FAISS.
"""

from .archive import ArchiveIndex, ArchiveIndexError, ArchivePersistenceError, engine_path_for
from .engine import HnswVectorEngine, VectorEngineError
from .models import ChunkMetadata, IndexStats

__all__ = [
    "ArchiveIndex",
    "ArchiveIndexError",
    "ArchivePersistenceError",
    "engine_path_for",
    "HnswVectorEngine",
    "VectorEngineError",
    "ChunkMetadata",
    "IndexStats",
]
