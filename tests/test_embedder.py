import json

import httpx
import pytest

from vidmem.config import Settings
from vidmem.embeddings.embedder import (
    EmbeddingError,
    EmptyInputError,
    OpenAIEmbedder,
    build_embedder,
)


def _embedder(handler, dimension=3, batch_size=2):
    return OpenAIEmbedder(
        api_key="sk-test",
        model="text-embedding-3-small",
        dimension=dimension,
        batch_size=batch_size,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_batches_requests():
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        requests.append(body)
        assert request.headers["Authorization"] == "Bearer sk-test"
        return httpx.Response(
            200,
            json={"data": [{"embedding": [float(len(t)), 0.0, 1.0]} for t in body["input"]]},
        )

    embedder = _embedder(handler)
    vectors = await embedder.embed_texts(["a", "bb", "ccc"])

    assert vectors == [[1.0, 0.0, 1.0], [2.0, 0.0, 1.0], [3.0, 0.0, 1.0]]
    assert [r["input"] for r in requests] == [["a", "bb"], ["ccc"]]
    assert requests[0]["dimensions"] == 3


@pytest.mark.asyncio
async def test_empty_input_rejected():
    embedder = _embedder(lambda request: httpx.Response(500))

    with pytest.raises(EmptyInputError) as excinfo:
        await embedder.embed_text("   ")

    assert excinfo.value.code == "empty_text"
    assert await embedder.embed_texts([]) == []


@pytest.mark.asyncio
async def test_wrong_dimension_rejected():
    embedder = _embedder(
        lambda request: httpx.Response(200, json={"data": [{"embedding": [1.0, 2.0]}]})
    )

    with pytest.raises(EmbeddingError):
        await embedder.embed_text("hello")


@pytest.mark.asyncio
async def test_http_error_is_model_unavailable():
    embedder = _embedder(lambda request: httpx.Response(503))

    with pytest.raises(EmbeddingError) as excinfo:
        await embedder.embed_text("hello")

    assert excinfo.value.code == "model_unavailable"


@pytest.mark.asyncio
async def test_timeout():
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(EmbeddingError) as excinfo:
        await _embedder(handler).embed_text("hello")

    assert excinfo.value.code == "timeout"


def test_openai_provider_requires_key():
    settings = Settings(embedding={"provider": "openai"}, _env_file=None)

    with pytest.raises(EmbeddingError):
        build_embedder(settings)


def test_build_openai_provider():
    settings = Settings(
        embedding={"provider": "openai", "api_key": "sk-test"},
        _env_file=None,
    )

    embedder = build_embedder(settings)

    assert isinstance(embedder, OpenAIEmbedder)
    assert embedder.dimension == 384
