"""
Configuration

Validated, immutable settings for encoding, indexing and retrieval.

Values are read from the environment (prefix ``VIDMEM_``, nested sections
separated by ``__``) and from an optional ``.env`` file, e.g.::

    VIDMEM_CODEC=h264
    VIDMEM_INDEX__METRIC=l2
    VIDMEM_CHUNKING__CHUNK_SIZE=512

Invalid combinations fail with ``pydantic.ValidationError`` before any
session is started.
"""

from __future__ import annotations

import os
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, SecretStr, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


CodecName = Literal["h265", "hevc", "h264", "mp4v"]
Metric = Literal["cosine", "l2", "ip"]

_HEX_COLOR = r"^#[0-9a-fA-F]{6}$"


def _cpu_count() -> int:
    return os.cpu_count() or 1


# ---------------------------------------------------------------------
# Sections
# ---------------------------------------------------------------------

class QRSettings(BaseModel):
    error_correction: Literal["low", "medium", "quartile", "high"] = "medium"
    fill_color: str = Field(default="#000000", pattern=_HEX_COLOR)
    back_color: str = Field(default="#ffffff", pattern=_HEX_COLOR)
    gzip: bool = False

    model_config = ConfigDict(frozen=True, extra="forbid")


class ChunkingSettings(BaseModel):
    chunk_size: int = Field(default=1024, gt=0)
    overlap: int = Field(default=32, ge=0)

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _overlap_below_chunk_size(self) -> "ChunkingSettings":
        if self.overlap >= self.chunk_size:
            raise ValueError(
                f"chunking.overlap ({self.overlap}) must be smaller than "
                f"chunking.chunk_size ({self.chunk_size})"
            )
        return self


class EmbeddingSettings(BaseModel):
    provider: Literal["local", "openai"] = "local"
    model: str = Field(default="sentence-transformers/all-MiniLM-L6-v2", min_length=1)
    dimension: int = Field(default=384, gt=0)
    batch_size: int = Field(default=32, gt=0)
    max_sequence_length: int = Field(default=512, gt=0)
    partitions: int = Field(default_factory=_cpu_count, gt=0)

    # Only used by the OpenAI-compatible provider
    api_key: Optional[SecretStr] = None
    base_url: str = "https://api.openai.com/v1/embeddings"
    timeout: float = Field(default=60.0, gt=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class IndexSettings(BaseModel):
    metric: Metric = "cosine"
    embedding_dimensions: int = Field(default=384, gt=0)
    max_elements: int = Field(default=10_000, gt=0)
    ef_construction: int = Field(default=400, gt=0)
    ef_search: int = Field(default=50, gt=0)
    m: int = Field(default=16, gt=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


class RetrievalSettings(BaseModel):
    top_k: int = Field(default=5, gt=0)
    max_workers: int = Field(default_factory=lambda: _cpu_count() * 2, gt=0)

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------
# Codec Parameters
# ---------------------------------------------------------------------

class CodecParameters(BaseModel):
    """
    Frame geometry and timing for one video codec.

    ``fourcc`` is the container tag handed to the frame writer;
    ``pixel_format`` is advisory and describes what the encoder emits.
    """

    fps: int = Field(..., gt=0)
    frame_width: int = Field(..., gt=0)
    frame_height: int = Field(..., gt=0)
    pixel_format: str
    fourcc: str = Field(..., min_length=4, max_length=4)

    model_config = ConfigDict(frozen=True, extra="forbid")


CODEC_PARAMETERS: Dict[str, CodecParameters] = {
    "h265": CodecParameters(fps=30, frame_width=256, frame_height=256, pixel_format="yuv420p", fourcc="hvc1"),
    "hevc": CodecParameters(fps=30, frame_width=256, frame_height=256, pixel_format="yuv420p", fourcc="hvc1"),
    "h264": CodecParameters(fps=30, frame_width=256, frame_height=256, pixel_format="yuv420p", fourcc="avc1"),
    "mp4v": CodecParameters(fps=30, frame_width=256, frame_height=256, pixel_format="yuv420p", fourcc="mp4v"),
}


def get_codec_parameters(codec_name: str) -> CodecParameters:
    """
    Return the parameters for ``codec_name``.

    Raises
    ------
    ValueError
        If the codec is not supported.
    """
    try:
        return CODEC_PARAMETERS[codec_name]
    except KeyError:
        raise ValueError(
            f"Unsupported codec: {codec_name}. Available: {sorted(CODEC_PARAMETERS)}"
        ) from None


# ---------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------

class Settings(BaseSettings):
    qr: QRSettings = Field(default_factory=QRSettings)
    codec: CodecName = "h265"
    chunking: ChunkingSettings = Field(default_factory=ChunkingSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    index: IndexSettings = Field(default_factory=IndexSettings)
    retrieval: RetrievalSettings = Field(default_factory=RetrievalSettings)

    model_config = SettingsConfigDict(
        env_prefix="VIDMEM_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
        frozen=True,
    )

    @model_validator(mode="after")
    def _embedding_matches_index(self) -> "Settings":
        if self.embedding.dimension != self.index.embedding_dimensions:
            raise ValueError(
                f"embedding.dimension ({self.embedding.dimension}) must equal "
                f"index.embedding_dimensions ({self.index.embedding_dimensions})"
            )
        return self

    @property
    def codec_parameters(self) -> CodecParameters:
        return get_codec_parameters(self.codec)

    def advisory_copy(self) -> dict:
        """
        Embedding and index settings as written next to a persisted index.
        """
        return {
            "embedding": self.embedding.model_dump(exclude={"api_key"}),
            "index": self.index.model_dump(),
        }


settings = Settings()
