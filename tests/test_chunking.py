from vidmem.config import ChunkingSettings
from vidmem.embeddings.chunking import EMPTY_CHUNK, TextChunker


def test_empty_text_yields_sentinel():
    chunker = TextChunker(chunk_size=50, overlap=5)
    assert chunker.chunk("") == [EMPTY_CHUNK]
    assert chunker.chunk("   \n\n  ") == [EMPTY_CHUNK]


def test_short_text_is_single_chunk():
    chunker = TextChunker(chunk_size=50, overlap=5)
    assert chunker.chunk("hello world") == ["hello world"]


def test_long_text_respects_chunk_size():
    chunker = TextChunker.from_settings(ChunkingSettings(chunk_size=40, overlap=8))
    text = " ".join(f"word{i}" for i in range(100))

    chunks = chunker.chunk(text)

    assert len(chunks) > 1
    assert all(0 < len(c) <= 40 for c in chunks)
    assert chunks[0].startswith("word0")
    assert chunks[-1].endswith("word99")


def test_paragraphs_split_first():
    chunker = TextChunker(chunk_size=30, overlap=0)
    text = "First paragraph text.\n\nSecond paragraph text."

    assert chunker.chunk(text) == ["First paragraph text.", "Second paragraph text."]
