"""
Archive Index Data Models

Each ChunkMetadata corresponds to ONE embedding vector and ONE video frame
location.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

SNIPPET_LENGTH = 100


class ChunkMetadata(BaseModel):
    """
    A single indexed chunk.

    This model is the authoritative schema for:
    - metadata persistence to JSON
    - vector search result mapping
    """

    id: int = Field(..., ge=0)
    text_snippet: str = Field(..., max_length=SNIPPET_LENGTH)
    frame_num: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)


class IndexStats(BaseModel):
    total_items: int = Field(..., ge=0)
    embedding_dimensions: int = Field(..., gt=0)
    metric: str
    known_frames: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid", frozen=True)
