import json

import pytest

from vidmem.index import (
    ArchiveIndex,
    ArchiveIndexError,
    ArchivePersistenceError,
    engine_path_for,
)


@pytest.fixture
def index(small_settings, embedder):
    return ArchiveIndex.create(small_settings, embedder)


@pytest.mark.asyncio
async def test_add_items_filters_empty_chunks(index):
    await index.add_items(["valid chunk", "", "  ", "another valid"], [1, 2, 3, 5])

    assert index.engine.item_count == 2
    assert sorted(index.metadata) == [0, 1]
    assert index.metadata[0].text_snippet == "valid chunk"
    assert index.metadata[1].text_snippet == "another valid"
    assert set(index.frame_to_ids) == {1, 5}


@pytest.mark.asyncio
async def test_ids_are_contiguous_across_calls(index):
    await index.add_items(["first", "second"], [0, 1])
    await index.add_items(["", "third", "fourth"], [2, 3, 4])

    assert [index.metadata[i].text_snippet for i in range(4)] == [
        "first",
        "second",
        "third",
        "fourth",
    ]
    assert index.frame_to_ids == {0: [0], 1: [1], 3: [2], 4: [3]}


@pytest.mark.asyncio
async def test_all_empty_is_noop(index, embedder):
    await index.add_items(["", " \n"], [0, 1])

    assert index.engine.item_count == 0
    assert embedder.calls == []


@pytest.mark.asyncio
async def test_invalid_frame_number_leaves_index_unchanged(index):
    with pytest.raises(ArchiveIndexError):
        await index.add_items(["hello"], [-1])

    assert index.engine.item_count == len(index.metadata) == 0
    assert index.frame_to_ids == {}

    await index.add_items(["hello"], [0])

    assert index.engine.item_count == len(index.metadata) == 1
    assert index.metadata[0].frame_num == 0


@pytest.mark.asyncio
async def test_search_scenario(index):
    await index.add_items(["apple", "apricot", "banana"], [1, 2, 3])

    results = await index.search("apply", top_k=2)

    assert {r.text_snippet for r in results} == {"apple", "apricot"}


@pytest.mark.asyncio
async def test_search_returns_at_most_k_ordered(index):
    await index.add_items(["apple", "apricot", "banana"], [1, 2, 3])

    scored = await index.search_with_scores("apply", top_k=10)

    assert len(scored) == 3
    scores = [score for _, score in scored]
    # inner product: larger is nearer
    assert scores == sorted(scores, reverse=True)
    assert all(index.get_chunk_by_id(meta.id) == meta for meta, _ in scored)


@pytest.mark.asyncio
async def test_search_empty_index(index):
    assert await index.search("anything", top_k=5) == []


@pytest.mark.asyncio
async def test_snippet_truncated(index):
    long_text = "x" * 250
    await index.add_items([long_text], [7])

    assert index.metadata[0].text_snippet == "x" * 100
    assert index.get_chunks_by_frame(7)[0].frame_num == 7


@pytest.mark.asyncio
async def test_lookups(index):
    await index.add_items(["one", "two", "three"], [4, 4, 9])

    assert [m.text_snippet for m in index.get_chunks_by_frame(4)] == ["one", "two"]
    assert index.get_chunks_by_frame(99) == []
    assert index.get_chunk_by_id(42) is None

    stats = index.get_stats()
    assert stats.total_items == 3
    assert stats.embedding_dimensions == 3
    assert stats.metric == "cosine"
    assert stats.known_frames == 2


@pytest.mark.asyncio
async def test_capacity_exceeded(small_settings, embedder):
    tiny = small_settings.model_copy(
        update={"index": small_settings.index.model_copy(update={"max_elements": 2})}
    )
    index = ArchiveIndex.create(tiny, embedder)

    with pytest.raises(ArchiveIndexError):
        await index.add_items(["aa", "bb", "cc"], [0, 1, 2])


@pytest.mark.asyncio
async def test_save_load_round_trip(index, small_settings, embedder, tmp_path):
    await index.add_items(["apple", "apricot", "banana"], [1, 2, 3])
    path = tmp_path / "archive.json"

    index.save(path)

    assert path.exists()
    assert engine_path_for(path).exists()

    document = json.loads(path.read_text())
    assert set(document) == {"metadata", "frame_to_chunks", "config"}
    assert document["frame_to_chunks"] == {"1": [0], "2": [1], "3": [2]}

    loaded = ArchiveIndex.load(small_settings, path, embedder)

    assert loaded.metadata == index.metadata
    assert loaded.frame_to_ids == index.frame_to_ids
    assert loaded.settings is small_settings

    results = await loaded.search("banana", top_k=1)
    assert results[0].text_snippet == "banana"


def test_load_missing_file(small_settings, embedder, tmp_path):
    with pytest.raises(ArchivePersistenceError):
        ArchiveIndex.load(small_settings, tmp_path / "missing.json", embedder)


def test_engine_path_for(tmp_path):
    assert engine_path_for(tmp_path / "a.json") == tmp_path / "a.hnsw"
    assert engine_path_for(tmp_path / "a.idx") == tmp_path / "a.idx.hnsw"
