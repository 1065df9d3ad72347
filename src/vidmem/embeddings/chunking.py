"""
Text Chunking

Splits free text into overlapping chunks, one chunk per video frame.
"""

from __future__ import annotations

from typing import List

from langchain_text_splitters import RecursiveCharacterTextSplitter

from ..config import ChunkingSettings

# Recorded in place of a chunk when the input yields nothing. It still takes
# a frame, but the archive index never stores it.
EMPTY_CHUNK = ""


class TextChunker:
    """Thin wrapper around ``RecursiveCharacterTextSplitter``."""

    def __init__(self, chunk_size: int, overlap: int) -> None:
        self.chunk_size = chunk_size
        self.overlap = overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=overlap,
            length_function=len,
            separators=["\n\n", "\n", ".", " ", ""],
        )

    @classmethod
    def from_settings(cls, chunking: ChunkingSettings) -> "TextChunker":
        return cls(chunk_size=chunking.chunk_size, overlap=chunking.overlap)

    def chunk(self, text: str) -> List[str]:
        """
        Split ``text`` into ordered chunks of at most ``chunk_size`` characters.

        Always returns at least one entry; empty input yields ``[EMPTY_CHUNK]``.
        """
        pieces = self._splitter.split_text(text)
        return pieces or [EMPTY_CHUNK]
