"""
API Models

Pydantic models used for request/response validation across the encoder and
retriever endpoints.

Design Goals
------------
- Strong typing
- Unknown fields rejected
- Session snapshots and stats reuse the domain models directly
"""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class OperationResult(BaseModel):
    """
    Standardized mutation operation result.
    """
    status: Literal["created", "updated", "deleted", "ok"]
    count: Optional[int] = Field(default=None, ge=0)
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")


class SessionList(BaseModel):
    sessions: List[str]
    count: int = Field(..., ge=0)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Encoder Models
# ---------------------------------------------------------------------

class StartEncoderRequest(BaseModel):
    session_id: Optional[str] = Field(default=None, min_length=1, max_length=128)

    model_config = ConfigDict(extra="forbid")


class AddChunksRequest(BaseModel):
    chunks: List[str] = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


class AddTextRequest(BaseModel):
    text: str

    model_config = ConfigDict(extra="forbid")


class BuildRequest(BaseModel):
    """
    Destination paths for the video and its archive index.
    """
    output_path: str = Field(..., min_length=1)
    index_path: str = Field(..., min_length=1)

    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------
# Retriever Models
# ---------------------------------------------------------------------

class StartRetrieverRequest(BaseModel):
    video_path: str = Field(..., min_length=1)
    index_path: str = Field(..., min_length=1)
    retriever_id: Optional[str] = Field(default=None, min_length=1, max_length=128)

    model_config = ConfigDict(extra="forbid")


class RetrieverCreated(BaseModel):
    retriever_id: str
    info: Dict[str, Any]

    model_config = ConfigDict(extra="forbid")


class SearchRequest(BaseModel):
    query: str = Field(..., min_length=1)
    top_k: Optional[int] = Field(default=None, ge=1, le=1000)

    model_config = ConfigDict(extra="forbid")


class SearchResponse(BaseModel):
    results: List[str]

    model_config = ConfigDict(extra="forbid")
